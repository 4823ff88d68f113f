"""
Monitoring and alerting for the market maker.
Handles Telegram notifications, the activity ledger and periodic reports.
"""

import asyncio
import csv
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Set
import aiohttp
import structlog

from .config import Config, LAMPORTS_PER_SOL
from .executor import ExecutionResult
from .strategy import Action

logger = structlog.get_logger(__name__)


@dataclass
class ActivityLedger:
    """Run-wide counters used for reporting. Only ever increase."""
    started_at: datetime = field(default_factory=datetime.utcnow)
    total_buys: int = 0
    total_sells: int = 0
    failed_trades: int = 0
    skipped_cycles: int = 0
    buy_volume_lamports: int = 0
    sell_volume_tokens: int = 0
    rotations: int = 0

    @property
    def total_trades(self) -> int:
        return self.total_buys + self.total_sells

    @property
    def buy_ratio(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.total_buys / self.total_trades

    @property
    def uptime_hours(self) -> float:
        return (datetime.utcnow() - self.started_at).total_seconds() / 3600

    def record(self, result: ExecutionResult) -> None:
        """Count one executed trade."""
        if not result.success:
            self.failed_trades += 1
            return
        if result.decision.action is Action.BUY:
            self.total_buys += 1
            self.buy_volume_lamports += result.decision.amount
        else:
            self.total_sells += 1
            self.sell_volume_tokens += result.decision.amount

    def snapshot(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "uptime_hours": round(self.uptime_hours, 2),
            "total_buys": self.total_buys,
            "total_sells": self.total_sells,
            "failed_trades": self.failed_trades,
            "skipped_cycles": self.skipped_cycles,
            "buy_ratio": round(self.buy_ratio, 3),
            "buy_volume_sol": self.buy_volume_lamports / LAMPORTS_PER_SOL,
            "sell_volume_tokens": self.sell_volume_tokens,
            "rotations": self.rotations,
        }


class TelegramAlert:
    """Telegram bot for sending alerts."""

    def __init__(self, bot_token: str, chat_id: str):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_url = f"https://api.telegram.org/bot{bot_token}"
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def send_message(
        self,
        text: str,
        parse_mode: str = "HTML",
        disable_notification: bool = False
    ) -> bool:
        """Send a message to the configured chat."""
        session = await self._get_session()

        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_notification": disable_notification
        }

        try:
            async with session.post(
                f"{self.api_url}/sendMessage",
                json=payload
            ) as response:
                if response.status == 200:
                    return True
                else:
                    error = await response.text()
                    logger.warning("telegram_send_failed", error=error[:100])
                    return False

        except Exception as e:
            logger.error("telegram_error", error=str(e))
            return False


def format_activity_report(stats: Dict[str, Any], wallet_states: Dict[str, int]) -> str:
    return f"""
📊 <b>Market Maker Activity</b>

<b>Uptime:</b> {stats['uptime_hours']:.1f}h
<b>Buys:</b> {stats['total_buys']}
<b>Sells:</b> {stats['total_sells']}
<b>Buy ratio:</b> {stats['buy_ratio'] * 100:.1f}%
<b>Failed:</b> {stats['failed_trades']}
<b>Buy volume:</b> {stats['buy_volume_sol']:.4f} SOL
<b>Rotations:</b> {stats['rotations']}

<b>Wallets:</b> {wallet_states.get('active', 0)} active, {wallet_states.get('cooling', 0)} cooling, {wallet_states.get('excluded', 0)} unfunded

<i>{datetime.utcnow().isoformat()}</i>
"""


class Monitor:
    """Ledger, trade log and best-effort notifications."""

    def __init__(self, config: Config, ledger: Optional[ActivityLedger] = None):
        self.config = config
        self.ledger = ledger or ActivityLedger()
        self.telegram: Optional[TelegramAlert] = None
        self._pending: Set[asyncio.Task] = set()
        self._report_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._wallet_states = lambda: {}

        self.trades_file = Path(config.trade_log_dir) / "trades.csv"
        self._ensure_csv_header()

        if config.telegram_enabled:
            self.telegram = TelegramAlert(
                config.telegram_bot_token,
                config.telegram_chat_id
            )

    def _ensure_csv_header(self) -> None:
        """Ensure trades CSV has header."""
        self.trades_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.trades_file.exists():
            with open(self.trades_file, 'w', newline='') as f:
                writer = csv.writer(f)
                writer.writerow([
                    'timestamp',
                    'wallet',
                    'action',
                    'amount',
                    'success',
                    'signature',
                    'failure',
                    'error'
                ])

    def _append_trade(self, result: ExecutionResult) -> None:
        try:
            with open(self.trades_file, 'a', newline='') as f:
                writer = csv.writer(f)
                writer.writerow([
                    datetime.utcnow().isoformat(),
                    result.decision.wallet.address,
                    result.decision.action.value,
                    result.decision.amount,
                    result.success,
                    result.signature or '',
                    result.failure.value if result.failure else '',
                    result.error or ''
                ])
        except OSError as e:
            logger.warning("trade_log_write_failed", error=str(e))

    def _dispatch(self, coro) -> None:
        """Run a notification in the background; failures are only logged."""
        if not self.telegram:
            coro.close()
            return
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def close(self) -> None:
        """Stop reporting, flush pending notifications and close resources."""
        self._stop_event.set()
        if self._report_task:
            await self._report_task
            self._report_task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self.telegram:
            await self.telegram.close()

    def on_startup(self, wallet_count: int) -> None:
        logger.info(
            "market_maker_started",
            wallets=wallet_count,
            buy_probability=self.config.buy_probability,
            trades_per_wallet=self.config.trades_per_wallet
        )
        message = f"""
🚀 <b>Market Maker Started</b>

<b>Pool:</b> <code>{self.config.pool_id}</code>
<b>Token:</b> <code>{self.config.target_token_mint}</code>
<b>Wallets:</b> {wallet_count}
<b>Buy/Sell:</b> {self.config.buy_probability * 100:.0f}% / {(1 - self.config.buy_probability) * 100:.0f}%
<b>Buy size:</b> {self.config.buy_fraction_min * 100:.0f}% - {self.config.buy_fraction_max * 100:.0f}% of SOL
<b>Rotation:</b> every {self.config.trades_per_wallet} trades
<b>Delay:</b> {self.config.min_delay_seconds / 60:.0f} - {self.config.max_delay_seconds / 60:.0f} min

<i>{datetime.utcnow().isoformat()}</i>
"""
        if self.telegram:
            self._dispatch(self.telegram.send_message(message))

    def on_trade_executed(self, result: ExecutionResult) -> None:
        """Record a trade in the ledger and the CSV log."""
        self.ledger.record(result)
        self._append_trade(result)

    def on_no_tradeable_wallets(self, backoff_seconds: float) -> None:
        self.ledger.skipped_cycles += 1
        message = (
            "⚠️ <b>No tradeable wallets</b>\n\n"
            f"Every wallet is unfunded or cooling down. Retrying in {backoff_seconds / 60:.0f} min."
        )
        if self.telegram:
            self._dispatch(self.telegram.send_message(message, disable_notification=True))

    def on_error(
        self,
        error_type: str,
        error_message: str,
        critical: bool = False
    ) -> None:
        """Log an error and forward it to Telegram without waiting."""
        if critical:
            logger.error(error_type, message=error_message)
        else:
            logger.warning(error_type, message=error_message)

        if self.telegram and (critical or self.config.log_level == "DEBUG"):
            emoji = "🚨" if critical else "⚠️"
            priority = "CRITICAL" if critical else "WARNING"
            message = f"""
{emoji} <b>{priority}: {error_type}</b>

{error_message}

<i>{datetime.utcnow().isoformat()}</i>
"""
            self._dispatch(self.telegram.send_message(message, disable_notification=not critical))

    def send_report(self) -> None:
        """Emit an activity snapshot."""
        stats = self.ledger.snapshot()
        wallet_states = self._wallet_states()
        logger.info("activity_report", wallets=wallet_states, **stats)
        if self.telegram:
            self._dispatch(self.telegram.send_message(
                format_activity_report(stats, wallet_states),
                disable_notification=True
            ))

    def start_reporting(self, interval_seconds: float, wallet_states=None) -> None:
        """Start the periodic report task."""
        if wallet_states is not None:
            self._wallet_states = wallet_states
        self._stop_event.clear()
        self._report_task = asyncio.create_task(self._report_loop(interval_seconds))

    async def _report_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.send_report()
            except Exception as e:
                logger.error("activity_report_failed", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get current statistics."""
        return self.ledger.snapshot()


def create_monitor(config: Config) -> Monitor:
    """Factory function to create a monitor."""
    return Monitor(config)
