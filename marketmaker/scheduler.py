"""
Stealth market maker scheduler.

One decision loop: pick the wallet in rotation, draw buy or sell, size the
trade, execute it, update counters and sleep a random delay. Failed trades
are counted and the loop carries on with the same cadence.
"""

import asyncio
import random
import time
from typing import Callable, Optional
import structlog

from .executor import ExecutionResult, TradeExecutor
from .monitor import Monitor
from .strategy import Action, StealthPolicy, TradeDecision
from .wallet_pool import WalletPool

logger = structlog.get_logger(__name__)


class MarketMaker:
    """Drives the wallet pool through randomized buy/sell cycles."""

    def __init__(
        self,
        pool: WalletPool,
        executor: TradeExecutor,
        policy: StealthPolicy,
        monitor: Monitor,
        unfunded_recheck_seconds: float = 3600.0,
        unfunded_backoff_seconds: float = 3600.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if len(pool) == 0:
            raise ValueError("Wallet pool is empty")
        self.pool = pool
        self.executor = executor
        self.policy = policy
        self.monitor = monitor
        self.unfunded_recheck_seconds = unfunded_recheck_seconds
        self.unfunded_backoff_seconds = unfunded_backoff_seconds
        self.rng = rng or random.SystemRandom()
        self._clock = clock
        self._stop_event = asyncio.Event()
        self.cycles = 0
        self.last_result: Optional[ExecutionResult] = None

    async def select_trade(self) -> Optional[TradeDecision]:
        """
        Find the next wallet that can trade and decide its trade.

        Walks at most one lap of the pool from the cursor. Wallets that are
        parked, whose balances cannot be read, or that can afford nothing
        are skipped; unfunded wallets are parked for a while.
        """
        for _ in range(len(self.pool)):
            now = self._clock()
            handle = self.pool.current
            if not handle.is_available(now):
                self.pool.advance()
                continue

            try:
                balances = await self.executor.fetch_balances(handle.wallet)
            except Exception as e:
                logger.warning("balance_check_failed", wallet=handle.label, error=str(e))
                self.pool.advance()
                continue

            decision = self.policy.decide(self.rng, handle, balances)
            if decision is None:
                logger.info(
                    "wallet_unfunded",
                    wallet=handle.label,
                    sol_lamports=balances.sol_lamports,
                    token_amount=balances.token_amount
                )
                self.pool.exclude(handle, now, self.unfunded_recheck_seconds)
                continue

            return decision

        return None

    def _update_state(self, result: ExecutionResult) -> None:
        handle = result.decision.wallet
        if result.success:
            if result.decision.action is Action.BUY:
                handle.buy_count += 1
                handle.buy_volume_lamports += result.decision.amount
            else:
                handle.sell_count += 1
                handle.sell_volume_tokens += result.decision.amount

        self.pool.record_trade(handle, result.success, self._clock())
        self.monitor.on_trade_executed(result)
        self.monitor.ledger.rotations = self.pool.rotations

        if not result.success:
            self.monitor.on_error(
                "trade_failed",
                f"{handle.label} {result.decision.action.value} failed: "
                f"{result.failure.value if result.failure else 'unknown'} {result.error or ''}"
            )

    async def run_cycle(self) -> float:
        """Run one decision cycle and return the delay before the next one."""
        self.cycles += 1
        decision = await self.select_trade()

        if decision is None:
            logger.warning(
                "no_tradeable_wallets",
                wallets=len(self.pool),
                backoff_seconds=self.unfunded_backoff_seconds
            )
            self.monitor.on_no_tradeable_wallets(self.unfunded_backoff_seconds)
            return self.unfunded_backoff_seconds

        result = await self.executor.execute(decision)
        self.last_result = result
        self._update_state(result)

        delay = self.policy.choose_delay(self.rng)
        logger.info(
            "cycle_complete",
            cycle=self.cycles,
            wallet=decision.wallet.label,
            action=decision.action.value,
            amount=decision.amount,
            success=result.success,
            next_delay_minutes=round(delay / 60, 1)
        )
        return delay

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self) -> None:
        """Main loop; returns after stop() is called."""
        logger.info(
            "market_maker_loop_started",
            wallets=len(self.pool),
            trades_per_wallet=self.pool.trades_per_wallet,
            buy_probability=self.policy.buy_probability
        )

        while not self._stop_event.is_set():
            try:
                delay = await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("cycle_error", error=str(e))
                self.monitor.on_error("cycle_error", str(e))
                delay = self.policy.choose_delay(self.rng)

            if await self._sleep(delay):
                break

        logger.info("market_maker_loop_stopped", cycles=self.cycles)

    def stop(self) -> None:
        """Ask the loop to stop; interrupts the current sleep."""
        self._stop_event.set()
