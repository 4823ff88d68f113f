"""
Token account existence cache.

Remembers which token accounts are known to exist so the executor can skip
the on-chain check and the create instruction. Entries expire after a TTL
so an account closed elsewhere gets re-checked.
"""

import asyncio
import threading
import time
from typing import Callable, Dict, Iterable, Optional
import structlog

logger = structlog.get_logger(__name__)


class TokenAccountCache:
    """Thread-safe set of token account addresses with insertion times."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __contains__(self, address: object) -> bool:
        return self.contains(str(address))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, address: str) -> bool:
        """Membership test; does not touch the entry's age."""
        with self._lock:
            return str(address) in self._entries

    def add(self, address: str) -> None:
        """Record an account as confirmed to exist, resetting its age."""
        with self._lock:
            self._entries[str(address)] = self._clock()

    def add_many(self, addresses: Iterable[str]) -> None:
        now = self._clock()
        with self._lock:
            for address in addresses:
                self._entries[str(address)] = now

    def discard(self, address: str) -> None:
        with self._lock:
            self._entries.pop(str(address), None)

    def evict_expired(self) -> int:
        """Remove entries older than the TTL. Returns how many were removed."""
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [addr for addr, added in self._entries.items() if added < cutoff]
            for addr in expired:
                del self._entries[addr]
        return len(expired)


class CacheMaintenance:
    """Periodic task that evicts expired token account entries."""

    def __init__(self, cache: TokenAccountCache, interval_seconds: float = 60.0):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.total_evicted = 0

    def start(self) -> None:
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("cache_maintenance_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("cache_maintenance_stopped", total_evicted=self.total_evicted)

    def run_once(self) -> int:
        evicted = self.cache.evict_expired()
        self.total_evicted += evicted
        if evicted:
            logger.debug("token_accounts_evicted", evicted=evicted, remaining=len(self.cache))
        return evicted

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            self.run_once()


async def initialize_token_accounts(rpc_client, cache: TokenAccountCache, wallets, mint: str) -> int:
    """
    Seed the cache with every existing token account for `mint` owned by
    the given wallets. Lookup errors are logged and skipped.
    """
    found = 0
    for wallet in wallets:
        try:
            accounts = await rpc_client.get_token_accounts_by_owner(wallet.pubkey, mint=mint)
        except Exception as e:
            logger.warning("token_account_lookup_failed", wallet=wallet.address, error=str(e))
            continue
        cache.add_many(account.address for account in accounts)
        found += len(accounts)

    logger.info("token_accounts_initialized", wallets=len(wallets), accounts=found)
    return found
