"""Unit tests for the scripts.run_bridge bootstrap."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from core.events import ACTIVITY_TRADES, CRYPTO_PRICES
from scripts.run_bridge import build_config, load_env, parse_args, select_topics


class TestParseArgs:
    """Tests for command-line parsing."""

    def test_defaults_are_unset(self) -> None:
        """Unset flags parse to None."""
        args = parse_args([])
        assert args.ws_url is None
        assert args.pipe_path is None
        assert args.max_reconnect_attempts is None
        assert args.log_level == "INFO"
        assert args.with_crypto_prices is False

    def test_overrides(self) -> None:
        """Flags are parsed with their types."""
        args = parse_args(
            ["--pipe-path", "/tmp/other", "--reconnect-interval", "0.5", "--log-level", "DEBUG"]
        )
        assert args.pipe_path == "/tmp/other"
        assert args.reconnect_interval == 0.5
        assert args.log_level == "DEBUG"


class TestBuildConfig:
    """Tests for environment + flag configuration."""

    def test_defaults(self) -> None:
        """No environment and no flags gives the defaults."""
        config = build_config(parse_args([]), environ={})
        assert config.ws_url == "wss://ws-live-data.polymarket.com"
        assert config.pipe_path == "/tmp/pipe_1"

    def test_environment_values(self) -> None:
        """POLYMARKET_* variables populate the config."""
        config = build_config(
            parse_args([]),
            environ={
                "POLYMARKET_WS_URL": "ws://localhost:8765",
                "POLYMARKET_PING_INTERVAL": "2.5",
                "POLYMARKET_MAX_RECONNECT_ATTEMPTS": "3",
                "POLYMARKET_PIPE_PATH": "/tmp/pipe_2",
            },
        )
        assert config.ws_url == "ws://localhost:8765"
        assert config.ping_interval == 2.5
        assert config.max_reconnect_attempts == 3
        assert config.pipe_path == "/tmp/pipe_2"

    def test_flags_override_environment(self) -> None:
        """Flags win over environment values."""
        config = build_config(
            parse_args(["--max-reconnect-attempts", "9"]),
            environ={"POLYMARKET_MAX_RECONNECT_ATTEMPTS": "3"},
        )
        assert config.max_reconnect_attempts == 9

    def test_empty_environment_value_ignored(self) -> None:
        """Empty environment values fall back to defaults."""
        config = build_config(parse_args([]), environ={"POLYMARKET_PIPE_PATH": ""})
        assert config.pipe_path == "/tmp/pipe_1"

    def test_invalid_value_raises(self) -> None:
        """Invalid values raise ValidationError."""
        with pytest.raises(ValidationError):
            build_config(parse_args([]), environ={"POLYMARKET_WS_URL": "http://nope"})


class TestSelectTopics:
    """Tests for topic selection."""

    def test_default_activity_only(self) -> None:
        """Only activity trades by default."""
        assert select_topics(parse_args([])) == (ACTIVITY_TRADES,)

    def test_with_crypto_prices(self) -> None:
        """--with-crypto-prices adds the crypto topic."""
        assert select_topics(parse_args(["--with-crypto-prices"])) == (
            ACTIVITY_TRADES,
            CRYPTO_PRICES,
        )


class TestLoadEnv:
    """Tests for the .env parser."""

    def test_parses_file(self, tmp_path: Path) -> None:
        """Comments, export prefixes and quotes are handled."""
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "\n"
            "export POLYMARKET_DATA_SOURCE=polymarket-test\n"
            "POLYMARKET_PIPE_PATH='/tmp/pipe_9'\n"
            "not a pair\n",
            encoding="utf-8",
        )
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("POLYMARKET_DATA_SOURCE", None)
            os.environ.pop("POLYMARKET_PIPE_PATH", None)
            load_env(str(env_file))
            assert os.environ["POLYMARKET_DATA_SOURCE"] == "polymarket-test"
            assert os.environ["POLYMARKET_PIPE_PATH"] == "/tmp/pipe_9"

    def test_existing_variables_win(self, tmp_path: Path) -> None:
        """Variables already set are not overwritten."""
        env_file = tmp_path / ".env"
        env_file.write_text("POLYMARKET_PIPE_PATH=/tmp/from_file\n", encoding="utf-8")
        with patch.dict(os.environ, {"POLYMARKET_PIPE_PATH": "/tmp/from_env"}):
            load_env(str(env_file))
            assert os.environ["POLYMARKET_PIPE_PATH"] == "/tmp/from_env"

    def test_missing_file_ignored(self, tmp_path: Path) -> None:
        """Missing .env file is not an error."""
        load_env(str(tmp_path / "missing.env"))
