"""
Stealth trading policy.

Pure decision functions: which side to trade, how much, and how long to
wait afterwards. Randomness comes from an injected random.Random so the
policy can be exercised deterministically without a network.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import Config


class Action(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class WalletBalances:
    """Balances of one wallet at decision time."""
    sol_lamports: int
    token_amount: int


@dataclass(frozen=True)
class TradeDecision:
    """One trade to execute. Never persisted."""
    wallet: object  # WalletHandle
    action: Action
    amount: int  # lamports for a buy, token base units for a sell
    minimum_amount_out: int = 0  # any output is accepted


@dataclass(frozen=True)
class StealthPolicy:
    """Randomization parameters for the scheduler."""
    buy_probability: float = 0.70
    buy_fraction_min: float = 0.50
    buy_fraction_max: float = 0.90
    fee_reserve_lamports: int = 10_000_000
    min_delay_seconds: float = 600.0
    max_delay_seconds: float = 7200.0

    @classmethod
    def from_config(cls, config: Config) -> "StealthPolicy":
        return cls(
            buy_probability=config.buy_probability,
            buy_fraction_min=config.buy_fraction_min,
            buy_fraction_max=config.buy_fraction_max,
            fee_reserve_lamports=config.fee_reserve_lamports,
            min_delay_seconds=config.min_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
        )

    def available_lamports(self, balances: WalletBalances) -> int:
        """SOL that may be spent on a buy after keeping the fee reserve."""
        return max(0, balances.sol_lamports - self.fee_reserve_lamports)

    def can_buy(self, balances: WalletBalances) -> bool:
        # The smallest possible draw must still buy something
        return int(self.available_lamports(balances) * self.buy_fraction_min) > 0

    def can_sell(self, balances: WalletBalances) -> bool:
        return balances.token_amount > 0

    def is_affordable(self, balances: WalletBalances) -> bool:
        return self.can_buy(balances) or self.can_sell(balances)

    def choose_action(self, rng: random.Random, balances: WalletBalances) -> Optional[Action]:
        """
        Weighted draw between buy and sell.

        A wallet without tokens always buys and a wallet that cannot afford
        a buy sells its tokens. Returns None if neither side is possible.
        """
        can_buy = self.can_buy(balances)
        can_sell = self.can_sell(balances)
        if not can_buy and not can_sell:
            return None

        wants_buy = rng.random() < self.buy_probability
        if wants_buy and can_buy:
            return Action.BUY
        if not wants_buy and can_sell:
            return Action.SELL
        return Action.BUY if can_buy else Action.SELL

    def choose_buy_amount(self, rng: random.Random, balances: WalletBalances) -> int:
        """Uniform share of the available SOL, in lamports."""
        available = self.available_lamports(balances)
        fraction = rng.uniform(self.buy_fraction_min, self.buy_fraction_max)
        return min(int(available * fraction), available)

    def sell_amount(self, balances: WalletBalances) -> int:
        """Sells always exit the whole token position."""
        return balances.token_amount

    def choose_delay(self, rng: random.Random) -> float:
        """Seconds to wait before the next cycle."""
        return rng.uniform(self.min_delay_seconds, self.max_delay_seconds)

    def decide(
        self,
        rng: random.Random,
        wallet,
        balances: WalletBalances
    ) -> Optional[TradeDecision]:
        """Pick action and amount for a wallet, or None if it can do neither."""
        action = self.choose_action(rng, balances)
        if action is None:
            return None

        if action is Action.BUY:
            amount = self.choose_buy_amount(rng, balances)
        else:
            amount = self.sell_amount(balances)

        if amount <= 0:
            return None
        return TradeDecision(wallet=wallet, action=action, amount=amount)
