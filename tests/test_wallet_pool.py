"""
Unit tests for wallet rotation and cooldowns.
"""

import pytest

from marketmaker.wallet_pool import WalletPool, WalletState


@pytest.fixture
def pool(make_wallets) -> WalletPool:
    return WalletPool.from_wallets(
        make_wallets(3),
        trades_per_wallet=2,
        failure_threshold=3,
        cooldown_base_seconds=100.0,
        cooldown_max_seconds=350.0,
    )


class TestRotation:
    """Test rotation granularity."""

    def test_rotates_after_quota(self, pool):
        """Each wallet does exactly two trades before the cursor moves on."""
        for _ in range(6):
            pool.record_trade(pool.current, success=True, now=0.0)

        assert pool.history == [0, 0, 1, 1, 2, 2]
        assert pool.cursor == 0
        assert pool.rotations == 3

    def test_failed_trades_count_towards_quota(self, pool):
        first = pool.current
        pool.record_trade(first, success=False, now=0.0)
        pool.record_trade(first, success=True, now=0.0)

        assert pool.current is not first
        assert first.total_trades == 2

    def test_advance_resets_trade_count(self, pool):
        pool.record_trade(pool.current, success=True, now=0.0)
        first = pool.current

        pool.advance()

        assert first.trades_since_rotation == 0
        assert pool.current.index == 1

    def test_active_count_limits_pool(self, make_wallets):
        pool = WalletPool.from_wallets(make_wallets(5), active_count=2)

        assert len(pool) == 2
        assert [h.label for h in pool.handles] == ["W1", "W2"]


class TestCooldown:
    """Test failure cooldowns and their escalation."""

    def _fail(self, pool, handle, times, now):
        for _ in range(times):
            handle.trades_since_rotation = 0
            pool.record_trade(handle, success=False, now=now)

    def test_threshold_parks_wallet(self, pool):
        handle = pool.current

        self._fail(pool, handle, 3, now=0.0)

        assert handle.state is WalletState.COOLING
        assert handle.parked_until == 100.0
        assert not handle.is_available(99.0)
        assert pool.current is not handle

    def test_below_threshold_stays_active(self, pool):
        handle = pool.current

        self._fail(pool, handle, 2, now=0.0)

        assert handle.state is WalletState.ACTIVE
        assert handle.consecutive_failures == 2

    def test_readmitted_after_cooldown(self, pool):
        handle = pool.current
        self._fail(pool, handle, 3, now=0.0)

        assert handle.is_available(100.0)
        assert handle.state is WalletState.ACTIVE
        assert handle.parked_until == 0.0

    def test_cooldown_escalates_and_caps(self, pool):
        """Repeated cooldowns double until the cap."""
        handle = pool.handles[0]
        durations = []
        now = 0.0
        for _ in range(4):
            self._fail(pool, handle, 3, now=now)
            durations.append(handle.parked_until - now)
            now = handle.parked_until

        assert durations == [100.0, 200.0, 350.0, 350.0]

    def test_success_resets_escalation(self, pool):
        handle = pool.handles[0]
        self._fail(pool, handle, 3, now=0.0)
        handle.refresh_state(100.0)

        handle.trades_since_rotation = 0
        pool.record_trade(handle, success=True, now=100.0)

        assert handle.cooldowns_served == 0
        assert handle.consecutive_failures == 0
        assert pool.cooldown_for(handle) == 100.0


class TestExclusion:
    """Test parking of unfunded wallets."""

    def test_exclude_moves_cursor(self, pool):
        handle = pool.current

        pool.exclude(handle, now=0.0, duration=3600.0)

        assert handle.state is WalletState.EXCLUDED
        assert pool.current is pool.handles[1]

    def test_excluded_wallet_rechecked_later(self, pool):
        handle = pool.handles[2]

        pool.exclude(handle, now=0.0, duration=3600.0)

        assert pool.cursor == 0
        assert not handle.is_available(3599.0)
        assert handle.is_available(3600.0)

    def test_counts_by_state(self, pool):
        pool.exclude(pool.handles[1], now=0.0, duration=10.0)
        pool.handles[2].park(WalletState.COOLING, 0.0, 10.0)

        assert pool.counts(5.0) == {"active": 1, "cooling": 1, "excluded": 1}
        assert pool.counts(10.0) == {"active": 3, "cooling": 0, "excluded": 0}
