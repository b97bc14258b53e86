"""Tests for configuration loading and the usage viewer rendering."""

import pytest
from rich.console import Console

from codex_switcher.acquisition.base import normalize_auth_payload
from codex_switcher.core.config import DEFAULT_POLL_INTERVAL, load_config
from codex_switcher.core.types import StoredAccount, UsageSnapshot, UsageWindow, WindowKind
from codex_switcher.utils.tokens import mask_secret
from switcher_app.usage_viewer import (
    account_status,
    build_usage_table,
    create_progress_bar,
    format_reset_time,
)

from conftest import make_auth_payload


class TestConfig:
    """Environment and .env handling."""

    def test_defaults_and_paths(self, isolated_homes):
        config = load_config()
        assert config.poll_interval == DEFAULT_POLL_INTERVAL
        assert config.oauth_port == 1455
        assert config.auth_file == isolated_homes["codex"] / "auth.json"
        assert config.catalog_file == isolated_homes["data"] / "accounts.json"

    def test_env_overrides_and_bad_values(self, monkeypatch):
        monkeypatch.setenv("CODEX_SWITCHER_POLL_INTERVAL", "15")
        monkeypatch.setenv("CODEX_SWITCHER_MAX_CONCURRENT_POLLS", "many")
        monkeypatch.setenv("CODEX_SWITCHER_OAUTH_PORT", "0")
        config = load_config()
        assert config.poll_interval == 15
        assert config.max_concurrent_polls == 8
        assert config.oauth_port == 0

    def test_dotenv_does_not_override_environment(self, isolated_homes, monkeypatch):
        data_dir = isolated_homes["data"]
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / ".env").write_text(
            "CODEX_SWITCHER_BACKOFF_BASE=5\nCODEX_SWITCHER_BACKOFF_MAX=50\n"
        )
        monkeypatch.setenv("CODEX_SWITCHER_BACKOFF_MAX", "70")
        # load_dotenv writes into os.environ; let monkeypatch undo it
        monkeypatch.setenv("CODEX_SWITCHER_BACKOFF_BASE", "")
        monkeypatch.delenv("CODEX_SWITCHER_BACKOFF_BASE")

        config = load_config()

        assert config.backoff_base == 5
        assert config.backoff_max == 70

    def test_mask_secret(self):
        assert mask_secret("sk-abcdef123456") == "sk-a...3456"
        assert mask_secret("short") == "****"
        assert mask_secret(None) == "<none>"


class TestViewerRendering:
    """Table contents for the live viewer."""

    def _entry(self, email, usage=None):
        result = normalize_auth_payload(make_auth_payload(email))
        return StoredAccount(result.account, result.credential, usage)

    def _render(self, table) -> str:
        console = Console(record=True, width=160)
        console.print(table)
        return console.export_text()

    def test_rows_show_windows_and_status(self):
        now = 1_000_000.0
        fresh = UsageSnapshot(
            short=UsageWindow(WindowKind.SHORT, 42.0, 300, resets_at=now + 3600),
            weekly=UsageWindow(WindowKind.WEEKLY, 100.0, 10080, resets_at=now + 86400),
            fetched_at=now - 30,
        )
        stale = fresh.marked_stale(now - 120, "HTTP 429")
        accounts = [
            self._entry("alice@example.com", fresh),
            self._entry("bob@example.com", stale),
            self._entry("carol@example.com"),
        ]

        text = self._render(
            build_usage_table(accounts, "alice@example.com", {"carol@example.com"}, now)
        )

        assert "alice@example.com" in text
        assert "42.0%" in text
        assert "in 1h" in text
        assert "Exhausted" in text
        assert "Stale" in text
        assert "since 2 min ago" in text
        assert "Expired" in text

    def test_account_status(self):
        assert account_status(self._entry("a@example.com"), set()) == "pending"
        api = normalize_auth_payload({"OPENAI_API_KEY": "sk-1234567890abcdef"})
        assert account_status(StoredAccount(api.account, api.credential), set()) == "unsupported"

    @pytest.mark.parametrize(
        "percent,bar",
        [(None, "░" * 10), (0, "░" * 10), (55, "▓" * 5 + "░" * 5), (150, "▓" * 10)],
    )
    def test_progress_bar(self, percent, bar):
        assert create_progress_bar(percent) == bar

    def test_format_reset_time(self):
        assert format_reset_time(None) == "-"
        assert format_reset_time(1000.0 + 5400, now=1000.0).startswith("in 1h 30m")
        assert format_reset_time(500.0, now=1000.0).startswith("now")
