"""
Configuration loader for the CPMM market maker.
Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv
from solders.pubkey import Pubkey

from .errors import ConfigError


@dataclass
class Config:
    """Bot configuration loaded from environment variables."""

    # Network
    rpc_url: str
    rpc_max_requests_per_second: float

    # Pool
    pool_id: str
    target_token_mint: str

    # Wallets
    wallet_dir: str
    wallet_count: int  # Wallets to create with --wallet
    active_wallet_count: int  # Size of the rotating pool

    # Funding (--distribute / --collect)
    main_wallet_private_key: Optional[str]
    distribute_reserve_sol: float  # SOL the main wallet keeps back when distributing

    # Stealth trading
    buy_probability: float  # Chance that a cycle buys (0-1)
    buy_fraction_min: float  # Buy at least this share of available SOL
    buy_fraction_max: float  # Buy at most this share of available SOL
    fee_reserve_sol: float  # SOL kept back in every wallet for fees/rent
    trades_per_wallet: int  # Trades before rotating to the next wallet
    min_delay_seconds: float
    max_delay_seconds: float
    report_interval_minutes: float

    # Failure handling
    failure_threshold: int  # Consecutive failures before a cooldown
    cooldown_base_seconds: float
    cooldown_max_seconds: float
    unfunded_recheck_seconds: float  # How long an unfunded wallet is parked
    unfunded_backoff_seconds: float  # Sleep when no wallet is funded

    # Blockhash processor
    blockhash_refresh_ms: int
    blockhash_max_age_seconds: float
    blockhash_hard_ceiling_seconds: float
    blockhash_backoff_max_seconds: float

    # Execution
    confirm_timeout_seconds: float
    compute_unit_limit: int
    compute_unit_price: int  # micro-lamports per CU

    # Token account cache
    token_account_ttl_seconds: float
    cache_maintenance_interval_seconds: float

    # Alerts
    telegram_bot_token: Optional[str]
    telegram_chat_id: Optional[str]

    # Ops
    log_level: str
    trade_log_dir: str

    @property
    def fee_reserve_lamports(self) -> int:
        return int(self.fee_reserve_sol * LAMPORTS_PER_SOL)

    @property
    def distribute_reserve_lamports(self) -> int:
        return int(self.distribute_reserve_sol * LAMPORTS_PER_SOL)

    @property
    def blockhash_refresh_seconds(self) -> float:
        return self.blockhash_refresh_ms / 1000.0

    @property
    def report_interval_seconds(self) -> float:
        return self.report_interval_minutes * 60.0

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def validate(self) -> None:
        """Raise ConfigError if any setting is out of range."""
        for name in ("pool_id", "target_token_mint"):
            value = getattr(self, name)
            try:
                Pubkey.from_string(value)
            except ValueError:
                raise ConfigError(f"{name.upper()} is not a valid address: {value!r}")

        if self.target_token_mint == WSOL_MINT:
            raise ConfigError("TARGET_TOKEN_MINT must not be the wrapped SOL mint")
        if not 0.0 <= self.buy_probability <= 1.0:
            raise ConfigError("BUY_PROBABILITY must be between 0 and 1")
        if not 0.0 < self.buy_fraction_min <= self.buy_fraction_max <= 1.0:
            raise ConfigError("Buy fraction band must satisfy 0 < MIN <= MAX <= 1")
        if self.distribute_reserve_sol < 0:
            raise ConfigError("DISTRIBUTE_RESERVE_SOL must not be negative")
        if self.fee_reserve_sol < 0:
            raise ConfigError("FEE_RESERVE_SOL must not be negative")
        if self.trades_per_wallet < 1:
            raise ConfigError("TRADES_PER_WALLET must be at least 1")
        if self.active_wallet_count < 1:
            raise ConfigError("ACTIVE_WALLET_COUNT must be at least 1")
        if not 0 <= self.min_delay_seconds <= self.max_delay_seconds:
            raise ConfigError("Delay band must satisfy 0 <= MIN <= MAX")
        if self.failure_threshold < 1:
            raise ConfigError("FAILURE_THRESHOLD must be at least 1")
        if self.blockhash_max_age_seconds > self.blockhash_hard_ceiling_seconds:
            raise ConfigError("BLOCKHASH_MAX_AGE_SECONDS must not exceed the hard ceiling")


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    rpc_url = os.getenv('RPC_URL')
    if not rpc_url:
        raise ConfigError("RPC_URL environment variable is required")

    pool_id = os.getenv('POOL_ID', '')
    if not pool_id:
        raise ConfigError("POOL_ID environment variable is required")

    target_token_mint = os.getenv('TARGET_TOKEN_MINT', '')
    if not target_token_mint:
        raise ConfigError("TARGET_TOKEN_MINT environment variable is required")

    try:
        config = Config(
            # Network
            rpc_url=rpc_url,
            rpc_max_requests_per_second=float(os.getenv('RPC_MAX_REQUESTS_PER_SECOND', '10')),

            # Pool
            pool_id=pool_id,
            target_token_mint=target_token_mint,

            # Wallets
            wallet_dir=os.getenv('WALLET_DIR', './wallet'),
            wallet_count=int(os.getenv('WALLET_COUNT', '5')),
            active_wallet_count=int(os.getenv('ACTIVE_WALLET_COUNT', '100')),

            # Funding
            main_wallet_private_key=os.getenv('MAIN_WALLET_PRIVATE_KEY'),
            distribute_reserve_sol=float(os.getenv('DISTRIBUTE_RESERVE_SOL', '0.1')),

            # Stealth trading
            buy_probability=float(os.getenv('BUY_PROBABILITY', '0.70')),  # 70% buys / 30% sells
            buy_fraction_min=float(os.getenv('BUY_FRACTION_MIN', '0.50')),
            buy_fraction_max=float(os.getenv('BUY_FRACTION_MAX', '0.90')),
            fee_reserve_sol=float(os.getenv('FEE_RESERVE_SOL', '0.01')),
            trades_per_wallet=int(os.getenv('TRADES_PER_WALLET', '2')),
            min_delay_seconds=float(os.getenv('MIN_DELAY_SECONDS', '600')),  # 10 minutes
            max_delay_seconds=float(os.getenv('MAX_DELAY_SECONDS', '7200')),  # 2 hours
            report_interval_minutes=float(os.getenv('REPORT_INTERVAL_MINUTES', '30')),

            # Failure handling
            failure_threshold=int(os.getenv('FAILURE_THRESHOLD', '3')),
            cooldown_base_seconds=float(os.getenv('COOLDOWN_BASE_SECONDS', '1800')),
            cooldown_max_seconds=float(os.getenv('COOLDOWN_MAX_SECONDS', '21600')),  # 6 hours
            unfunded_recheck_seconds=float(os.getenv('UNFUNDED_RECHECK_SECONDS', '3600')),
            unfunded_backoff_seconds=float(os.getenv('UNFUNDED_BACKOFF_SECONDS', '3600')),

            # Blockhash processor
            blockhash_refresh_ms=int(os.getenv('BLOCKHASH_REFRESH_MS', '1000')),
            blockhash_max_age_seconds=float(os.getenv('BLOCKHASH_MAX_AGE_SECONDS', '20')),
            blockhash_hard_ceiling_seconds=float(os.getenv('BLOCKHASH_HARD_CEILING_SECONDS', '60')),
            blockhash_backoff_max_seconds=float(os.getenv('BLOCKHASH_BACKOFF_MAX_SECONDS', '10')),

            # Execution
            confirm_timeout_seconds=float(os.getenv('CONFIRM_TIMEOUT_SECONDS', '30')),
            compute_unit_limit=int(os.getenv('COMPUTE_UNIT_LIMIT', '200000')),
            compute_unit_price=int(os.getenv('COMPUTE_UNIT_PRICE', '10000')),

            # Token account cache
            token_account_ttl_seconds=float(os.getenv('TOKEN_ACCOUNT_TTL_SECONDS', '300')),
            cache_maintenance_interval_seconds=float(
                os.getenv('CACHE_MAINTENANCE_INTERVAL_SECONDS', '60')
            ),

            # Alerts
            telegram_bot_token=os.getenv('TELEGRAM_BOT_TOKEN'),
            telegram_chat_id=os.getenv('TELEGRAM_CHAT_ID'),

            # Ops
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            trade_log_dir=os.getenv('TRADE_LOG_DIR', 'metrics'),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting: {e}")

    config.validate()
    return config


LAMPORTS_PER_SOL = 1_000_000_000

# Wrapped SOL is the funding side of every pool we trade
WSOL_MINT = 'So11111111111111111111111111111111111111112'

# Program IDs
TOKEN_PROGRAM_ID = 'TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA'
TOKEN_2022_PROGRAM_ID = 'TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb'
ASSOCIATED_TOKEN_PROGRAM_ID = 'ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL'
RAYDIUM_CPMM_PROGRAM_ID = 'CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C'

# RPC backoff
BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MAX_SECONDS = 30.0
