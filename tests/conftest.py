"""
Pytest configuration and shared fixtures.

Every test runs with CODEX_HOME and CODEX_SWITCHER_HOME pointed at a
temp directory, so nothing touches the real ~/.codex.
"""

import base64
import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from codex_switcher.acquisition.oauth import OAuthAcquisition
from codex_switcher.auth_file import AuthFileAdapter
from codex_switcher.core.config import SwitcherConfig
from codex_switcher.store.catalog import CredentialStore


def _b64(data: Dict[str, Any]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_jwt(claims: Dict[str, Any]) -> str:
    """Unsigned JWT carrying `claims`."""
    return f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(claims)}.sig"


def make_id_token(
    email: str,
    account_id: str = "acct-123",
    plan_type: str = "plus",
    sub: Optional[str] = None,
) -> str:
    return make_jwt(
        {
            "email": email,
            "sub": sub or f"user-{email}",
            "https://api.openai.com/auth": {
                "chatgpt_plan_type": plan_type,
                "chatgpt_account_id": account_id,
            },
        }
    )


def make_auth_payload(
    email: str,
    account_id: str = "acct-123",
    plan_type: str = "plus",
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    """auth.json payload as the Codex CLI writes it after a ChatGPT login."""
    return {
        "OPENAI_API_KEY": None,
        "tokens": {
            "id_token": make_id_token(email, account_id, plan_type),
            "access_token": access_token
            or make_jwt({"sub": f"user-{email}", "exp": 4102444800}),
            "refresh_token": f"rt-{email}",
            "account_id": account_id,
        },
        "last_refresh": "2025-01-01T00:00:00.000000Z",
    }


@pytest.fixture(autouse=True)
def isolated_homes(tmp_path: Path, monkeypatch) -> Dict[str, Path]:
    """Point both homes at tmp_path and clear tuning variables."""
    codex_home = tmp_path / "codex"
    data_home = tmp_path / "switcher"
    codex_home.mkdir()
    monkeypatch.setenv("CODEX_HOME", str(codex_home))
    monkeypatch.setenv("CODEX_SWITCHER_HOME", str(data_home))
    for name in (
        "CODEX_SWITCHER_POLL_INTERVAL",
        "CODEX_SWITCHER_MAX_CONCURRENT_POLLS",
        "CODEX_SWITCHER_BACKOFF_BASE",
        "CODEX_SWITCHER_BACKOFF_MAX",
        "CODEX_SWITCHER_OAUTH_PORT",
        "CODEX_SWITCHER_USAGE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    return {"codex": codex_home, "data": data_home}


@pytest.fixture(autouse=True)
def reset_oauth_guard():
    """Make sure no test leaks a pending OAuth flow into the next one."""
    OAuthAcquisition._in_flight = None
    yield
    OAuthAcquisition._in_flight = None


@pytest.fixture
def config(isolated_homes) -> SwitcherConfig:
    return SwitcherConfig(
        auth_file=isolated_homes["codex"] / "auth.json",
        catalog_file=isolated_homes["data"] / "accounts.json",
        oauth_port=0,
        oauth_timeout=5,
        backoff_base=30,
        backoff_max=1800,
    )


@pytest.fixture
def adapter(config) -> AuthFileAdapter:
    return AuthFileAdapter(config.auth_file)


@pytest.fixture
async def store(config) -> CredentialStore:
    store = CredentialStore(config.catalog_file)
    await store.load()
    return store
