"""
Shared fixtures and fakes for the market maker tests.
"""

from typing import Dict, List, Optional

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from marketmaker.config import Config, TOKEN_PROGRAM_ID
from marketmaker.cpmm import CpmmPool, NATIVE_MINT, POOL_STATE_DISCRIMINATOR, POOL_STATE_OFFSETS
from marketmaker.executor import ExecutionResult, FailureKind
from marketmaker.strategy import WalletBalances
from marketmaker.wallet import Wallet


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExecutor:
    """Stands in for TradeExecutor: fixed balances, scripted outcomes."""

    def __init__(self, balances: Dict[str, WalletBalances], fail_wallets=()):
        self.balances = balances
        self.fail_wallets = set(fail_wallets)
        self.executed = []

    async def fetch_balances(self, wallet: Wallet) -> WalletBalances:
        return self.balances[wallet.address]

    async def execute(self, decision) -> ExecutionResult:
        self.executed.append(decision)
        if decision.wallet.address in self.fail_wallets:
            return ExecutionResult(
                success=False,
                signature=None,
                decision=decision,
                failure=FailureKind.CONFIRMATION_TIMEOUT,
                error="not confirmed",
            )
        return ExecutionResult(success=True, signature="sig", decision=decision)


def build_config(**overrides) -> Config:
    """A valid Config with test-friendly defaults."""
    values = dict(
        rpc_url="http://localhost:8899",
        rpc_max_requests_per_second=100.0,
        pool_id=str(Pubkey.new_unique()),
        target_token_mint=str(Pubkey.new_unique()),
        wallet_dir="./wallet",
        wallet_count=3,
        active_wallet_count=100,
        main_wallet_private_key=None,
        distribute_reserve_sol=0.1,
        buy_probability=0.70,
        buy_fraction_min=0.50,
        buy_fraction_max=0.90,
        fee_reserve_sol=0.01,
        trades_per_wallet=2,
        min_delay_seconds=600.0,
        max_delay_seconds=7200.0,
        report_interval_minutes=30.0,
        failure_threshold=3,
        cooldown_base_seconds=1800.0,
        cooldown_max_seconds=21600.0,
        unfunded_recheck_seconds=3600.0,
        unfunded_backoff_seconds=3600.0,
        blockhash_refresh_ms=1000,
        blockhash_max_age_seconds=20.0,
        blockhash_hard_ceiling_seconds=60.0,
        blockhash_backoff_max_seconds=10.0,
        confirm_timeout_seconds=5.0,
        compute_unit_limit=200000,
        compute_unit_price=10000,
        token_account_ttl_seconds=300.0,
        cache_maintenance_interval_seconds=60.0,
        telegram_bot_token=None,
        telegram_chat_id=None,
        log_level="INFO",
        trade_log_dir="metrics",
    )
    values.update(overrides)
    return Config(**values)


def build_pool_data(
    token_0_mint: Pubkey,
    token_1_mint: Pubkey,
    token_0_program: Optional[Pubkey] = None,
    token_1_program: Optional[Pubkey] = None,
) -> Dict:
    """Raw PoolState bytes plus the keys written into it."""
    token_program = Pubkey.from_string(TOKEN_PROGRAM_ID)
    keys = {
        "amm_config": Pubkey.new_unique(),
        "pool_creator": Pubkey.new_unique(),
        "token_0_vault": Pubkey.new_unique(),
        "token_1_vault": Pubkey.new_unique(),
        "lp_mint": Pubkey.new_unique(),
        "token_0_mint": token_0_mint,
        "token_1_mint": token_1_mint,
        "token_0_program": token_0_program or token_program,
        "token_1_program": token_1_program or token_program,
        "observation_key": Pubkey.new_unique(),
    }
    data = bytearray(637)
    data[:8] = POOL_STATE_DISCRIMINATOR
    for name, key in keys.items():
        offset = POOL_STATE_OFFSETS[name]
        data[offset:offset + 32] = bytes(key)
    data[POOL_STATE_OFFSETS["mint_0_decimals"]] = 9
    data[POOL_STATE_OFFSETS["mint_1_decimals"]] = 6
    return {"data": bytes(data), "keys": keys}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_wallets():
    def _make(count: int) -> List[Wallet]:
        return [Wallet.from_keypair(Keypair(), name=f"W{i + 1}") for i in range(count)]
    return _make


@pytest.fixture
def config(tmp_path) -> Config:
    return build_config(trade_log_dir=str(tmp_path / "metrics"))


@pytest.fixture
def target_mint() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def cpmm_pool(target_mint) -> CpmmPool:
    """A pool with WSOL on side 0 and the target token on side 1."""
    pool_id = Pubkey.new_unique()
    built = build_pool_data(NATIVE_MINT, target_mint)
    return CpmmPool.from_account_data(pool_id, built["data"])
