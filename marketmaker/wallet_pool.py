"""
Wallet pool with rotation and per-wallet cooldowns.

The pool keeps a cursor on the wallet currently trading. The cursor only
moves on after that wallet has done `trades_per_wallet` trades, or when
the wallet is skipped because it is cooling down or unfunded.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import structlog

from .wallet import Wallet

logger = structlog.get_logger(__name__)


class WalletState(Enum):
    ACTIVE = "active"
    COOLING = "cooling"      # Parked after repeated failures
    EXCLUDED = "excluded"    # Parked because nothing was affordable


@dataclass
class WalletHandle:
    """A wallet plus the scheduler's bookkeeping for it."""
    wallet: Wallet
    index: int
    trades_since_rotation: int = 0
    total_trades: int = 0
    buy_count: int = 0
    sell_count: int = 0
    buy_volume_lamports: int = 0
    sell_volume_tokens: int = 0
    consecutive_failures: int = 0
    cooldowns_served: int = 0
    state: WalletState = WalletState.ACTIVE
    parked_until: float = 0.0

    @property
    def address(self) -> str:
        return self.wallet.address

    @property
    def label(self) -> str:
        return self.wallet.name or self.wallet.short_address

    def refresh_state(self, now: float) -> WalletState:
        """Return to ACTIVE once a cooldown or exclusion has expired."""
        if self.state is not WalletState.ACTIVE and now >= self.parked_until:
            logger.info("wallet_readmitted", wallet=self.label, previous_state=self.state.value)
            self.state = WalletState.ACTIVE
            self.parked_until = 0.0
        return self.state

    def is_available(self, now: float) -> bool:
        return self.refresh_state(now) is WalletState.ACTIVE

    def park(self, state: WalletState, now: float, duration: float) -> None:
        self.state = state
        self.parked_until = now + duration


@dataclass
class WalletPool:
    """Ordered wallets with a rotation cursor."""
    handles: List[WalletHandle]
    trades_per_wallet: int = 2
    failure_threshold: int = 3
    cooldown_base_seconds: float = 1800.0
    cooldown_max_seconds: float = 21600.0
    cursor: int = 0
    rotations: int = 0
    history: List[int] = field(default_factory=list)

    @classmethod
    def from_wallets(cls, wallets: List[Wallet], active_count: Optional[int] = None, **kwargs) -> "WalletPool":
        """Build a pool from the first `active_count` wallets."""
        selected = wallets[:active_count] if active_count else list(wallets)
        handles = [WalletHandle(wallet=w, index=i) for i, w in enumerate(selected)]
        return cls(handles=handles, **kwargs)

    def __len__(self) -> int:
        return len(self.handles)

    @property
    def current(self) -> WalletHandle:
        return self.handles[self.cursor]

    def advance(self) -> WalletHandle:
        """Move the cursor to the next wallet and reset its trade count."""
        self.current.trades_since_rotation = 0
        self.cursor = (self.cursor + 1) % len(self.handles)
        self.rotations += 1
        self.current.trades_since_rotation = 0
        return self.current

    def record_trade(self, handle: WalletHandle, success: bool, now: float) -> None:
        """
        Count a dispatched trade against the wallet's rotation quota and
        update its failure streak. Rotates once the quota is reached.
        """
        handle.trades_since_rotation += 1
        handle.total_trades += 1
        self.history.append(handle.index)

        if success:
            handle.consecutive_failures = 0
            handle.cooldowns_served = 0
        else:
            handle.consecutive_failures += 1
            if handle.consecutive_failures >= self.failure_threshold:
                duration = self.cooldown_for(handle)
                handle.park(WalletState.COOLING, now, duration)
                handle.cooldowns_served += 1
                handle.consecutive_failures = 0
                logger.warning(
                    "wallet_cooling_down",
                    wallet=handle.label,
                    cooldown_seconds=duration,
                    cooldowns_served=handle.cooldowns_served
                )

        if handle is self.current and (
            handle.trades_since_rotation >= self.trades_per_wallet
            or handle.state is not WalletState.ACTIVE
        ):
            self.advance()

    def cooldown_for(self, handle: WalletHandle) -> float:
        """Cooldown doubles with each cooldown served since the last success."""
        return min(
            self.cooldown_base_seconds * (2 ** handle.cooldowns_served),
            self.cooldown_max_seconds
        )

    def exclude(self, handle: WalletHandle, now: float, duration: float) -> None:
        """Park an unfunded wallet and move past it."""
        handle.park(WalletState.EXCLUDED, now, duration)
        logger.info("wallet_excluded_unfunded", wallet=handle.label, recheck_seconds=duration)
        if handle is self.current:
            self.advance()

    def counts(self, now: float) -> dict:
        counts = {state.value: 0 for state in WalletState}
        for handle in self.handles:
            counts[handle.refresh_state(now).value] += 1
        return counts
