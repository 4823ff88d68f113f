"""
Unit tests for the token account existence cache.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey

from marketmaker.errors import RPCError
from marketmaker.rpc import TokenAccount
from marketmaker.token_accounts import CacheMaintenance, TokenAccountCache, initialize_token_accounts


class TestTokenAccountCache:
    """Test membership and expiry."""

    def test_add_and_contains(self, clock):
        cache = TokenAccountCache(ttl_seconds=300.0, clock=clock)
        address = Pubkey.new_unique()

        assert address not in cache
        cache.add(str(address))

        assert address in cache
        assert cache.contains(str(address))
        assert len(cache) == 1

    def test_discard(self, clock):
        cache = TokenAccountCache(clock=clock)
        cache.add("acct")

        cache.discard("acct")
        cache.discard("never-added")

        assert "acct" not in cache

    def test_entries_expire_after_ttl(self, clock):
        cache = TokenAccountCache(ttl_seconds=300.0, clock=clock)
        cache.add("old")
        clock.advance(200.0)
        cache.add("young")

        clock.advance(101.0)
        evicted = cache.evict_expired()

        assert evicted == 1
        assert "old" not in cache
        assert "young" in cache

    def test_entry_at_ttl_is_kept(self, clock):
        cache = TokenAccountCache(ttl_seconds=300.0, clock=clock)
        cache.add("acct")

        clock.advance(300.0)

        assert cache.evict_expired() == 0
        assert "acct" in cache

    def test_re_adding_resets_age(self, clock):
        cache = TokenAccountCache(ttl_seconds=300.0, clock=clock)
        cache.add("acct")
        clock.advance(250.0)
        cache.add("acct")

        clock.advance(250.0)

        assert cache.evict_expired() == 0


class TestCacheMaintenance:
    """Test the periodic eviction task."""

    def test_run_once_counts_evictions(self, clock):
        cache = TokenAccountCache(ttl_seconds=10.0, clock=clock)
        cache.add_many(["a", "b", "c"])
        clock.advance(11.0)
        maintenance = CacheMaintenance(cache, interval_seconds=60.0)

        assert maintenance.run_once() == 3
        assert maintenance.total_evicted == 3
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_background_task_evicts(self):
        cache = TokenAccountCache(ttl_seconds=0.0)
        cache.add("acct")
        maintenance = CacheMaintenance(cache, interval_seconds=0.01)

        maintenance.start()
        await asyncio.sleep(0.1)
        await maintenance.stop()

        assert len(cache) == 0
        assert maintenance.total_evicted == 1


class TestInitializeTokenAccounts:
    """Test startup discovery."""

    @pytest.mark.asyncio
    async def test_seeds_cache_and_skips_errors(self, make_wallets, clock):
        wallets = make_wallets(3)
        mint = str(Pubkey.new_unique())
        accounts = {
            wallets[0].address: [TokenAccount(address="ata-1", mint=mint, amount=5)],
            wallets[2].address: [
                TokenAccount(address="ata-3a", mint=mint, amount=0),
                TokenAccount(address="ata-3b", mint=mint, amount=7),
            ],
        }

        async def lookup(owner, mint=None, program_id=None):
            key = str(owner)
            if key == wallets[1].address:
                raise RPCError("rate limited", "getTokenAccountsByOwner")
            return accounts[key]

        rpc = AsyncMock()
        rpc.get_token_accounts_by_owner.side_effect = lookup
        cache = TokenAccountCache(clock=clock)

        found = await initialize_token_accounts(rpc, cache, wallets, mint)

        assert found == 3
        assert len(cache) == 3
        assert all(a in cache for a in ("ata-1", "ata-3a", "ata-3b"))
        assert rpc.get_token_accounts_by_owner.await_count == 3
