"""
Unit tests for the activity ledger and trade log.
"""

import asyncio
import csv
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from marketmaker.executor import ExecutionResult, FailureKind
from marketmaker.monitor import ActivityLedger, Monitor, format_activity_report
from marketmaker.strategy import Action, TradeDecision
from marketmaker.wallet import Wallet
from marketmaker.wallet_pool import WalletHandle

from conftest import build_config


@pytest.fixture
def handle() -> WalletHandle:
    return WalletHandle(wallet=Wallet.from_keypair(Keypair(), name="W1"), index=0)


def result(handle, action, amount, success=True) -> ExecutionResult:
    decision = TradeDecision(wallet=handle, action=action, amount=amount)
    if success:
        return ExecutionResult(success=True, signature="sig", decision=decision)
    return ExecutionResult(
        success=False,
        signature=None,
        decision=decision,
        failure=FailureKind.RPC_ERROR,
        error="boom",
    )


class TestActivityLedger:
    """Test run-wide counters."""

    def test_record_counts_by_side(self, handle):
        ledger = ActivityLedger()

        ledger.record(result(handle, Action.BUY, 1_000_000_000))
        ledger.record(result(handle, Action.BUY, 500_000_000))
        ledger.record(result(handle, Action.SELL, 42))
        ledger.record(result(handle, Action.BUY, 7, success=False))

        assert ledger.total_buys == 2
        assert ledger.total_sells == 1
        assert ledger.failed_trades == 1
        assert ledger.total_trades == 3
        assert ledger.buy_volume_lamports == 1_500_000_000
        assert ledger.sell_volume_tokens == 42

    def test_snapshot(self, handle):
        ledger = ActivityLedger()
        ledger.record(result(handle, Action.BUY, 250_000_000))
        ledger.record(result(handle, Action.SELL, 1))

        stats = ledger.snapshot()

        assert stats["buy_ratio"] == 0.5
        assert stats["buy_volume_sol"] == 0.25
        assert "uptime_hours" in stats

    def test_empty_ratio(self):
        assert ActivityLedger().buy_ratio == 0.0

    def test_report_text(self):
        text = format_activity_report(
            ActivityLedger().snapshot(),
            {"active": 2, "cooling": 1, "excluded": 0},
        )

        assert "2 active" in text
        assert "1 cooling" in text


class TestMonitor:
    """Test trade logging and notifications."""

    def test_trade_log_written(self, handle, tmp_path):
        monitor = Monitor(build_config(trade_log_dir=str(tmp_path / "metrics")))

        monitor.on_trade_executed(result(handle, Action.BUY, 123))
        monitor.on_trade_executed(result(handle, Action.SELL, 9, success=False))

        with open(tmp_path / "metrics" / "trades.csv", newline='') as f:
            rows = list(csv.DictReader(f))

        assert len(rows) == 2
        assert rows[0]["wallet"] == handle.address
        assert rows[0]["action"] == "buy"
        assert rows[0]["amount"] == "123"
        assert rows[0]["success"] == "True"
        assert rows[1]["failure"] == "rpc_error"
        assert monitor.ledger.total_buys == 1
        assert monitor.ledger.failed_trades == 1

    def test_no_tradeable_wallets_counts_skip(self, config):
        monitor = Monitor(config)

        monitor.on_no_tradeable_wallets(3600.0)

        assert monitor.get_stats()["skipped_cycles"] == 1

    @pytest.mark.asyncio
    async def test_critical_error_sent_to_telegram(self, tmp_path):
        config = build_config(
            trade_log_dir=str(tmp_path),
            telegram_bot_token="123:abc",
            telegram_chat_id="42",
        )
        monitor = Monitor(config)
        monitor.telegram.send_message = AsyncMock(return_value=True)
        monitor.telegram.close = AsyncMock()

        monitor.on_error("market_maker_crashed", "boom", critical=True)
        monitor.on_error("trade_failed", "minor")
        await monitor.close()

        monitor.telegram.send_message.assert_awaited_once()
        assert "market_maker_crashed" in monitor.telegram.send_message.await_args.args[0]

    @pytest.mark.asyncio
    async def test_report_loop_uses_wallet_states(self, tmp_path):
        config = build_config(
            trade_log_dir=str(tmp_path),
            telegram_bot_token="123:abc",
            telegram_chat_id="42",
        )
        monitor = Monitor(config)
        monitor.telegram.send_message = AsyncMock(return_value=True)
        monitor.telegram.close = AsyncMock()

        monitor.start_reporting(0.01, wallet_states=lambda: {"active": 3})
        await asyncio.sleep(0.05)
        await monitor.close()

        assert monitor.telegram.send_message.await_count >= 1
        assert "3 active" in monitor.telegram.send_message.await_args.args[0]
