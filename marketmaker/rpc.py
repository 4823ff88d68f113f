"""
RPC client wrapper for Solana.
Rate limited JSON-RPC over aiohttp with exponential backoff.
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from typing import Optional, Any, List
import aiohttp
from solders.transaction import VersionedTransaction
from solders.pubkey import Pubkey
import structlog

from .config import Config, BACKOFF_BASE_SECONDS, BACKOFF_MAX_SECONDS
from .errors import (
    RPCError,
    RateLimitedError,
    TransactionFailedError,
    ConfirmationTimeoutError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenAccount:
    """A token account returned by getTokenAccountsByOwner."""
    address: str
    mint: str
    amount: int


class RateLimiter:
    """Simple rate limiter using token bucket algorithm."""

    def __init__(self, max_per_second: float):
        self.max_per_second = max_per_second
        self.tokens = max_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.max_per_second, self.tokens + elapsed * self.max_per_second)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.max_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0
            else:
                self.tokens -= 1


class RPCClient:
    """Async RPC client for Solana with rate limiting and backoff."""

    def __init__(self, config: Config):
        self.config = config
        self.rpc_url = config.rpc_url
        self.rate_limiter = RateLimiter(config.rpc_max_requests_per_second)
        self._session: Optional[aiohttp.ClientSession] = None
        self._backoff_until: float = 0
        self._consecutive_errors = 0
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30)
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _wait_for_backoff(self) -> None:
        """Wait if we're in backoff period."""
        now = time.monotonic()
        if now < self._backoff_until:
            wait_time = self._backoff_until - now
            logger.warning("rpc_backoff_waiting", wait_seconds=round(wait_time, 2))
            await asyncio.sleep(wait_time)

    def _apply_backoff(self) -> None:
        """Apply exponential backoff after an error."""
        self._consecutive_errors += 1
        backoff = min(
            BACKOFF_BASE_SECONDS * (2 ** self._consecutive_errors),
            BACKOFF_MAX_SECONDS
        )
        self._backoff_until = time.monotonic() + backoff
        logger.warning("rpc_backoff_applied", backoff_seconds=backoff)

    def _reset_backoff(self) -> None:
        """Reset backoff after successful request."""
        self._consecutive_errors = 0
        self._backoff_until = 0

    async def _request(self, method: str, params: List[Any]) -> Any:
        """Make a JSON-RPC request and return its result field."""
        await self._wait_for_backoff()
        await self.rate_limiter.acquire()

        session = await self._get_session()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params
        }

        try:
            async with session.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status == 429:
                    self._apply_backoff()
                    raise RateLimitedError("Rate limited by RPC", method=method)

                response.raise_for_status()
                result = await response.json()

                if "error" in result:
                    error = result["error"]
                    message = error.get("message", error) if isinstance(error, dict) else error
                    raise RPCError(f"RPC error: {message}", method=method)

                self._reset_backoff()
                return result.get("result")

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._apply_backoff()
            logger.error("rpc_request_failed", method=method, error=str(e))
            raise RPCError(f"{method} failed: {e}", method=method) from e

    async def get_balance(self, pubkey: Pubkey) -> int:
        """Get SOL balance in lamports."""
        result = await self._request("getBalance", [str(pubkey), {"commitment": "confirmed"}])
        return int(result.get("value", 0))

    async def get_latest_blockhash(self) -> str:
        """Get the latest blockhash."""
        result = await self._request("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    async def get_account_data(self, pubkey: str) -> Optional[bytes]:
        """Get raw account data, or None if the account does not exist."""
        result = await self._request(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": "confirmed"}]
        )
        value = (result or {}).get("value")
        if not value:
            return None
        return base64.b64decode(value["data"][0])

    async def account_exists(self, pubkey: str) -> bool:
        """Check whether an account exists on chain."""
        return await self.get_account_data(pubkey) is not None

    async def get_token_accounts_by_owner(
        self,
        owner: Pubkey,
        mint: Optional[str] = None,
        program_id: Optional[str] = None
    ) -> List[TokenAccount]:
        """List token accounts owned by a wallet, filtered by mint or program."""
        if mint:
            account_filter = {"mint": mint}
        elif program_id:
            account_filter = {"programId": program_id}
        else:
            raise ValueError("Either mint or program_id is required")

        result = await self._request(
            "getTokenAccountsByOwner",
            [str(owner), account_filter, {"encoding": "jsonParsed", "commitment": "confirmed"}]
        )

        accounts = []
        for item in (result or {}).get("value", []):
            info = item["account"]["data"]["parsed"]["info"]
            accounts.append(TokenAccount(
                address=item["pubkey"],
                mint=info["mint"],
                amount=int(info["tokenAmount"]["amount"]),
            ))
        return accounts

    async def send_transaction(
        self,
        transaction: VersionedTransaction,
        skip_preflight: bool = False
    ) -> str:
        """Send a signed transaction and return signature."""
        tx_base64 = base64.b64encode(bytes(transaction)).decode('utf-8')

        options = {
            "skipPreflight": skip_preflight,
            "preflightCommitment": "confirmed",
            "encoding": "base64"
        }

        result = await self._request("sendTransaction", [tx_base64, options])

        if isinstance(result, str):
            return result

        raise RPCError(f"Unexpected sendTransaction result: {result}", method="sendTransaction")

    async def confirm_transaction(
        self,
        signature: str,
        timeout_seconds: float = 30.0
    ) -> str:
        """
        Wait for transaction confirmation.

        Returns the confirmation status. Raises TransactionFailedError if the
        transaction landed with an error and ConfirmationTimeoutError if it
        was not seen as confirmed within the timeout.
        """
        start_time = time.monotonic()

        while time.monotonic() - start_time < timeout_seconds:
            try:
                result = await self._request(
                    "getSignatureStatuses",
                    [[signature], {"searchTransactionHistory": False}]
                )
            except RPCError as e:
                logger.warning(
                    "confirm_transaction_error",
                    signature=signature,
                    error=str(e)
                )
                await asyncio.sleep(1.0)
                continue

            statuses = (result or {}).get("value", [])
            if statuses and statuses[0]:
                status = statuses[0]
                if status.get("err"):
                    logger.error(
                        "transaction_failed",
                        signature=signature,
                        error=status["err"]
                    )
                    raise TransactionFailedError(signature, status["err"])

                confirmation_status = status.get("confirmationStatus")
                if confirmation_status in ("confirmed", "finalized"):
                    logger.info(
                        "transaction_confirmed",
                        signature=signature,
                        status=confirmation_status
                    )
                    return confirmation_status

            await asyncio.sleep(0.5)

        logger.warning("transaction_timeout", signature=signature)
        raise ConfirmationTimeoutError(signature, timeout_seconds)


def create_rpc_client(config: Config) -> RPCClient:
    """Factory function to create an RPC client."""
    return RPCClient(config)
