"""
Error types for the market maker.

Fatal errors abort startup before any trade is sent. Transient errors are
raised by the RPC layer and turned into typed execution failures by the
executor, so the scheduler never sees them as exceptions.
"""


class MarketMakerError(Exception):
    """Base class for all market maker errors."""


# Fatal

class ConfigError(MarketMakerError, ValueError):
    """Invalid or missing configuration (including pool/token identifiers)."""


class NoWalletsError(MarketMakerError):
    """No usable wallets could be loaded from the key store."""


class BlockhashUnavailableError(MarketMakerError):
    """The initial blockhash fetch failed, so no transaction can be built."""


# Transient

class RPCError(MarketMakerError):
    """A JSON-RPC call failed or returned an error object."""

    def __init__(self, message: str, method: str = ""):
        super().__init__(message)
        self.method = method


class RateLimitedError(RPCError):
    """The RPC endpoint answered with HTTP 429."""


class TransactionFailedError(MarketMakerError):
    """The transaction landed but the ledger reported an error."""

    def __init__(self, signature: str, err):
        super().__init__(f"Transaction {signature} failed: {err}")
        self.signature = signature
        self.err = err


class ConfirmationTimeoutError(MarketMakerError):
    """No confirmation was observed before the timeout elapsed."""

    def __init__(self, signature: str, timeout_seconds: float):
        super().__init__(f"Transaction {signature} not confirmed after {timeout_seconds:.0f}s")
        self.signature = signature
        self.timeout_seconds = timeout_seconds


# Fail closed

class StaleBlockhashError(MarketMakerError):
    """The cached blockhash is older than the hard ceiling."""

    def __init__(self, age_seconds: float, ceiling_seconds: float):
        super().__init__(
            f"Blockhash age {age_seconds:.1f}s exceeds ceiling {ceiling_seconds:.1f}s"
        )
        self.age_seconds = age_seconds
        self.ceiling_seconds = ceiling_seconds


# Funding

class FundingError(MarketMakerError):
    """The main wallet cannot fund a distribution."""
