"""
Unit tests for configuration loading.
"""

import pytest
from solders.pubkey import Pubkey

from marketmaker.config import WSOL_MINT, load_config
from marketmaker.errors import ConfigError

ENV_KEYS = [
    "RPC_URL", "POOL_ID", "TARGET_TOKEN_MINT", "BUY_PROBABILITY",
    "BUY_FRACTION_MIN", "BUY_FRACTION_MAX", "TRADES_PER_WALLET",
    "MIN_DELAY_SECONDS", "MAX_DELAY_SECONDS", "FEE_RESERVE_SOL",
    "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "BLOCKHASH_REFRESH_MS",
    "MAIN_WALLET_PRIVATE_KEY", "DISTRIBUTE_RESERVE_SOL",
]


@pytest.fixture
def env(monkeypatch):
    """Minimal valid environment, isolated from any local .env file."""
    monkeypatch.setattr("marketmaker.config.load_dotenv", lambda: None)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RPC_URL", "https://rpc.example.com")
    monkeypatch.setenv("POOL_ID", str(Pubkey.new_unique()))
    monkeypatch.setenv("TARGET_TOKEN_MINT", str(Pubkey.new_unique()))
    return monkeypatch


class TestLoadConfig:
    """Test environment parsing and defaults."""

    def test_defaults(self, env):
        config = load_config()

        assert config.buy_probability == 0.70
        assert config.buy_fraction_min == 0.50
        assert config.buy_fraction_max == 0.90
        assert config.trades_per_wallet == 2
        assert config.min_delay_seconds == 600.0
        assert config.max_delay_seconds == 7200.0
        assert config.fee_reserve_lamports == 10_000_000
        assert config.blockhash_refresh_seconds == 1.0
        assert config.report_interval_seconds == 1800.0
        assert not config.telegram_enabled
        assert config.main_wallet_private_key is None
        assert config.distribute_reserve_lamports == 100_000_000

    def test_overrides(self, env):
        env.setenv("BUY_PROBABILITY", "0.55")
        env.setenv("TRADES_PER_WALLET", "4")
        env.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        env.setenv("TELEGRAM_CHAT_ID", "42")

        config = load_config()

        assert config.buy_probability == 0.55
        assert config.trades_per_wallet == 4
        assert config.telegram_enabled

    @pytest.mark.parametrize("missing", ["RPC_URL", "POOL_ID", "TARGET_TOKEN_MINT"])
    def test_required_settings(self, env, missing):
        env.delenv(missing)

        with pytest.raises(ConfigError, match=missing):
            load_config()

    def test_non_numeric_value(self, env):
        env.setenv("TRADES_PER_WALLET", "two")

        with pytest.raises(ConfigError):
            load_config()


class TestValidation:
    """Test range checks."""

    def test_inverted_buy_band(self, env):
        env.setenv("BUY_FRACTION_MIN", "0.9")
        env.setenv("BUY_FRACTION_MAX", "0.5")

        with pytest.raises(ConfigError):
            load_config()

    def test_buy_fraction_above_one(self, env):
        env.setenv("BUY_FRACTION_MAX", "1.5")

        with pytest.raises(ConfigError):
            load_config()

    def test_inverted_delay_band(self, env):
        env.setenv("MIN_DELAY_SECONDS", "100")
        env.setenv("MAX_DELAY_SECONDS", "50")

        with pytest.raises(ConfigError):
            load_config()

    def test_probability_out_of_range(self, env):
        env.setenv("BUY_PROBABILITY", "1.2")

        with pytest.raises(ConfigError):
            load_config()

    def test_zero_trades_per_wallet(self, env):
        env.setenv("TRADES_PER_WALLET", "0")

        with pytest.raises(ConfigError):
            load_config()

    def test_invalid_pool_address(self, env):
        env.setenv("POOL_ID", "not-a-pubkey")

        with pytest.raises(ConfigError):
            load_config()

    def test_target_cannot_be_wsol(self, env):
        env.setenv("TARGET_TOKEN_MINT", WSOL_MINT)

        with pytest.raises(ConfigError):
            load_config()

    def test_negative_distribute_reserve(self, env):
        env.setenv("DISTRIBUTE_RESERVE_SOL", "-0.5")

        with pytest.raises(ConfigError):
            load_config()
