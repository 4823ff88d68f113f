"""
Blockhash processor.

Keeps a recent blockhash cached so transaction builders never pay an RPC
round-trip for it. A single background task owns the write path; readers
get an immutable snapshot that is swapped in one assignment.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional
from solders.hash import Hash
import structlog

from .errors import BlockhashUnavailableError, StaleBlockhashError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecentBlockhash:
    """A fetched blockhash and the monotonic time it was fetched at."""
    blockhash: str
    fetched_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    def to_hash(self) -> Hash:
        return Hash.from_string(self.blockhash)


class BlockhashProcessor:
    """Background refresher for the latest blockhash."""

    def __init__(
        self,
        rpc_client,
        refresh_interval: float = 1.0,
        max_age: float = 20.0,
        hard_ceiling: float = 60.0,
        backoff_max: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc = rpc_client
        self.refresh_interval = refresh_interval
        self.max_age = max_age
        self.hard_ceiling = hard_ceiling
        self.backoff_max = backoff_max
        self._clock = clock

        self._current: Optional[RecentBlockhash] = None
        self._consecutive_failures = 0
        self._refresh_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        # Stats
        self.refresh_count = 0
        self.failure_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def start(self) -> None:
        """
        Fetch the first blockhash and start the refresh loop.

        Raises BlockhashUnavailableError if the first fetch fails; nothing
        can be signed without it.
        """
        try:
            await self.refresh()
        except Exception as e:
            raise BlockhashUnavailableError(f"Initial blockhash fetch failed: {e}") from e

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "blockhash_processor_started",
            refresh_interval=self.refresh_interval,
            hard_ceiling=self.hard_ceiling
        )

    async def stop(self) -> None:
        """Stop the refresh loop after any in-flight fetch completes."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("blockhash_processor_stopped", refreshes=self.refresh_count)

    async def refresh(self) -> RecentBlockhash:
        """Fetch a new blockhash and replace the cached one."""
        async with self._refresh_lock:
            blockhash = await self.rpc.get_latest_blockhash()
            snapshot = RecentBlockhash(blockhash=blockhash, fetched_at=self._clock())
            self._current = snapshot
            self.refresh_count += 1
            return snapshot

    def read(self) -> Optional[RecentBlockhash]:
        """Return the cached snapshot without blocking (None before start)."""
        return self._current

    def age(self) -> Optional[float]:
        """Age in seconds of the cached blockhash."""
        snapshot = self._current
        if snapshot is None:
            return None
        return snapshot.age(self._clock())

    def current(self) -> Hash:
        """
        Return the cached blockhash if it is still usable.

        Serves a stale value while it is younger than the hard ceiling and
        raises StaleBlockhashError once it is older.
        """
        snapshot = self._current
        if snapshot is None:
            raise StaleBlockhashError(float("inf"), self.hard_ceiling)

        age = snapshot.age(self._clock())
        if age > self.hard_ceiling:
            raise StaleBlockhashError(age, self.hard_ceiling)
        return snapshot.to_hash()

    async def get_blockhash(self) -> Hash:
        """
        Return a blockhash fit for a new transaction.

        If the cached value is older than max_age a synchronous refresh is
        attempted; if that fails the cached value is used until it crosses
        the hard ceiling.
        """
        snapshot = self._current
        if snapshot is not None and snapshot.age(self._clock()) <= self.max_age:
            return snapshot.to_hash()

        try:
            return (await self.refresh()).to_hash()
        except Exception as e:
            logger.warning("blockhash_forced_refresh_failed", error=str(e), age=self.age())
            return self.current()

    def _next_delay(self) -> float:
        if self._consecutive_failures == 0:
            return self.refresh_interval
        return min(
            self.refresh_interval * (2 ** self._consecutive_failures),
            self.backoff_max
        )

    async def _run(self) -> None:
        """Refresh loop."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._next_delay())
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.refresh()
                if self._consecutive_failures:
                    logger.info(
                        "blockhash_refresh_recovered",
                        failures=self._consecutive_failures
                    )
                self._consecutive_failures = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._consecutive_failures += 1
                self.failure_count += 1
                logger.warning(
                    "blockhash_refresh_failed",
                    error=str(e),
                    consecutive_failures=self._consecutive_failures,
                    age=self.age(),
                    retry_in=self._next_delay()
                )
