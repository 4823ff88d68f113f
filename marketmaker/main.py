#!/usr/bin/env python3
"""
Stealth CPMM market maker.
Main entry point.

Usage:
    python -m marketmaker.main            # run the market maker
    python -m marketmaker.main --wallet   # generate WALLET_COUNT wallets
    python -m marketmaker.main --distribute  # fund wallets from MAIN_WALLET_PRIVATE_KEY
    python -m marketmaker.main --collect     # sweep wallets back to the main wallet
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import List, Optional
from dotenv import load_dotenv
from solders.pubkey import Pubkey
import structlog

from .blockhash import BlockhashProcessor
from .config import load_config, Config
from .cpmm import CpmmPool
from .errors import ConfigError, MarketMakerError
from .executor import create_executor, TradeExecutor
from .funding import collect_sol, distribute_sol
from .monitor import create_monitor, Monitor
from .rpc import create_rpc_client, RPCClient
from .scheduler import MarketMaker
from .strategy import StealthPolicy
from .token_accounts import TokenAccountCache, CacheMaintenance, initialize_token_accounts
from .wallet import load_wallets, generate_wallets, Wallet
from .wallet_pool import WalletPool


# Configure structured logging
def configure_logging(log_level: str) -> None:
    """Configure structured JSON logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )


logger = structlog.get_logger(__name__)


class MarketMakerBot:
    """Main bot class that wires and runs all components."""

    def __init__(self, config: Optional[Config] = None):
        self.config: Optional[Config] = config
        self.rpc: Optional[RPCClient] = None
        self.wallets: List[Wallet] = []
        self.blockhashes: Optional[BlockhashProcessor] = None
        self.token_accounts: Optional[TokenAccountCache] = None
        self.cache_maintenance: Optional[CacheMaintenance] = None
        self.executor: Optional[TradeExecutor] = None
        self.monitor: Optional[Monitor] = None
        self.market_maker: Optional[MarketMaker] = None
        self._shutdown_event = asyncio.Event()

    async def load_pool(self) -> CpmmPool:
        """Fetch and check the pool account. Misconfiguration is fatal."""
        pool_id = Pubkey.from_string(self.config.pool_id)
        data = await self.rpc.get_account_data(self.config.pool_id)
        if data is None:
            raise ConfigError(f"Pool account {self.config.pool_id} not found")

        pool = CpmmPool.from_account_data(pool_id, data)
        pool.validate_pair(Pubkey.from_string(self.config.target_token_mint))
        logger.info(
            "pool_loaded",
            pool=self.config.pool_id,
            token_0=str(pool.token_0_mint),
            token_1=str(pool.token_1_mint)
        )
        return pool

    async def initialize(self) -> None:
        """Initialize all components. Raises on any fatal error."""
        logger.info("initializing_market_maker")

        if self.config is None:
            self.config = load_config()
        configure_logging(self.config.log_level)

        # Wallets first: no point touching the network without them
        wallets = load_wallets(self.config.wallet_dir)
        self.wallets = wallets[:self.config.active_wallet_count]

        self.rpc = create_rpc_client(self.config)
        self.monitor = create_monitor(self.config)
        pool = await self.load_pool()

        self.blockhashes = BlockhashProcessor(
            self.rpc,
            refresh_interval=self.config.blockhash_refresh_seconds,
            max_age=self.config.blockhash_max_age_seconds,
            hard_ceiling=self.config.blockhash_hard_ceiling_seconds,
            backoff_max=self.config.blockhash_backoff_max_seconds,
        )
        await self.blockhashes.start()

        self.token_accounts = TokenAccountCache(ttl_seconds=self.config.token_account_ttl_seconds)
        await initialize_token_accounts(
            self.rpc, self.token_accounts, self.wallets, self.config.target_token_mint
        )
        self.cache_maintenance = CacheMaintenance(
            self.token_accounts,
            interval_seconds=self.config.cache_maintenance_interval_seconds
        )
        self.cache_maintenance.start()

        self.executor = create_executor(
            self.config, self.rpc, self.blockhashes, self.token_accounts, pool
        )

        wallet_pool = WalletPool.from_wallets(
            self.wallets,
            trades_per_wallet=self.config.trades_per_wallet,
            failure_threshold=self.config.failure_threshold,
            cooldown_base_seconds=self.config.cooldown_base_seconds,
            cooldown_max_seconds=self.config.cooldown_max_seconds,
        )
        self.market_maker = MarketMaker(
            wallet_pool,
            self.executor,
            StealthPolicy.from_config(self.config),
            self.monitor,
            unfunded_recheck_seconds=self.config.unfunded_recheck_seconds,
            unfunded_backoff_seconds=self.config.unfunded_backoff_seconds,
        )

        logger.info(
            "market_maker_initialized",
            wallets=len(self.wallets),
            pool=self.config.pool_id,
            token=self.config.target_token_mint,
            cached_token_accounts=len(self.token_accounts)
        )

    async def cleanup(self) -> None:
        """Clean up resources. Each component stops on its own."""
        logger.info("cleaning_up")

        if self.cache_maintenance:
            await self.cache_maintenance.stop()
        if self.blockhashes and self.blockhashes.is_running:
            await self.blockhashes.stop()
        if self.monitor:
            await self.monitor.close()
        if self.rpc:
            await self.rpc.close()

    async def run(self) -> None:
        """Initialize, then run the market maker until stopped."""
        try:
            await self.initialize()
            if self._shutdown_event.is_set():
                return

            self.monitor.on_startup(len(self.wallets))
            wallet_pool = self.market_maker.pool
            self.monitor.start_reporting(
                self.config.report_interval_seconds,
                wallet_states=lambda: wallet_pool.counts(time.monotonic())
            )

            await self.market_maker.run()

        except asyncio.CancelledError:
            logger.info("bot_cancelled")
        except Exception as e:
            if self.monitor:
                self.monitor.on_error(
                    "market_maker_crashed",
                    f"Market maker stopped: {e}",
                    critical=True
                )
            raise
        finally:
            await self.cleanup()

    def stop(self) -> None:
        """Signal the bot to stop."""
        logger.info("stop_requested")
        self._shutdown_event.set()
        if self.market_maker:
            self.market_maker.stop()


async def main() -> None:
    """Main entry point."""
    bot = MarketMakerBot()

    # Set up signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        bot.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.run()
    except MarketMakerError as e:
        logger.error("fatal_error", error=str(e))
        print(f"Fatal: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        logger.info("market_maker_shutdown_complete")


def generate_wallets_command() -> None:
    """Create WALLET_COUNT wallets in WALLET_DIR. Needs no RPC settings."""
    load_dotenv()
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    wallet_dir = os.getenv("WALLET_DIR", "./wallet")
    try:
        count = int(os.getenv("WALLET_COUNT", "5"))
    except ValueError:
        raise ConfigError("WALLET_COUNT must be an integer")
    wallets = generate_wallets(wallet_dir, count)
    print(f"Generated {len(wallets)} wallets in {wallet_dir}/")


async def funding_command(mode: str, config: Optional[Config] = None) -> None:
    """Run --distribute or --collect against the wallet directory."""
    if config is None:
        config = load_config()
    configure_logging(config.log_level)

    if not config.main_wallet_private_key:
        raise ConfigError("MAIN_WALLET_PRIVATE_KEY is required for --distribute and --collect")
    try:
        main_wallet = Wallet(config.main_wallet_private_key, name="main")
    except ValueError as e:
        raise ConfigError(f"MAIN_WALLET_PRIVATE_KEY is invalid: {e}")

    wallets = load_wallets(config.wallet_dir)
    rpc = create_rpc_client(config)
    try:
        if mode == "distribute":
            results = await distribute_sol(
                rpc,
                main_wallet,
                wallets,
                reserve_lamports=config.distribute_reserve_lamports,
                confirm_timeout_seconds=config.confirm_timeout_seconds,
            )
        else:
            results = await collect_sol(
                rpc,
                main_wallet.pubkey,
                wallets,
                confirm_timeout_seconds=config.confirm_timeout_seconds,
            )
    finally:
        await rpc.close()

    succeeded = [r for r in results if r.success]
    total = sum(r.sol for r in succeeded)
    print(f"{mode.capitalize()}: {len(succeeded)}/{len(results)} transfers succeeded, {total:.4f} SOL moved")


def run() -> None:
    """Entry point for the bot."""
    if "--wallet" in sys.argv[1:]:
        try:
            generate_wallets_command()
        except ConfigError as e:
            print(f"Fatal: {e}", file=sys.stderr)
            sys.exit(1)
        return

    for mode in ("distribute", "collect"):
        if f"--{mode}" in sys.argv[1:]:
            try:
                asyncio.run(funding_command(mode))
            except MarketMakerError as e:
                logger.error("fatal_error", error=str(e))
                print(f"Fatal: {e}", file=sys.stderr)
                sys.exit(1)
            return

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
