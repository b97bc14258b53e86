# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime configuration.

Values come from the process environment, optionally seeded from a .env
file in the switcher data directory. Real environment variables always
win over the .env file.

Environment variables:
    CODEX_HOME: Codex CLI home (auth.json lives here)
    CODEX_SWITCHER_HOME: switcher data directory
    CODEX_SWITCHER_POLL_INTERVAL: seconds between usage poll cycles (default: 60)
    CODEX_SWITCHER_MAX_CONCURRENT_POLLS: global ceiling on in-flight polls (default: 8)
    CODEX_SWITCHER_BACKOFF_BASE: first backoff after a failed poll, seconds (default: 30)
    CODEX_SWITCHER_BACKOFF_MAX: backoff cap, seconds (default: 1800)
    CODEX_SWITCHER_HTTP_TIMEOUT: usage/token request timeout, seconds (default: 30)
    CODEX_SWITCHER_OAUTH_PORT: OAuth callback port, 0 for ephemeral (default: 1455)
    CODEX_SWITCHER_OAUTH_TIMEOUT: seconds to wait for the OAuth callback (default: 300)
    CODEX_SWITCHER_USAGE_URL: usage endpoint override
    CODEX_SWITCHER_LOG_LEVEL: log level used by the interactive tools (default: WARNING)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from ..utils.paths import get_catalog_file, get_codex_auth_file, get_data_file

lib_logger = logging.getLogger("codex_switcher")

DEFAULT_USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_MAX_CONCURRENT_POLLS = 8
DEFAULT_BACKOFF_BASE = 30.0
DEFAULT_BACKOFF_MAX = 1800.0
DEFAULT_HTTP_TIMEOUT = 30.0
# The Codex OAuth client only accepts this redirect port
DEFAULT_OAUTH_PORT = 1455
DEFAULT_OAUTH_TIMEOUT = 300.0


def _env_int(name: str, default: int) -> int:
    """Parse an integer from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value '{raw}', using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    """Parse a float from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value '{raw}', using default {default}")
        return default


@dataclass
class SwitcherConfig:
    """
    Complete configuration for an AccountManager.

    Paths are resolved at construction time so tests can point both homes
    at a temp directory through the environment.
    """

    auth_file: Path = field(default_factory=get_codex_auth_file)
    catalog_file: Path = field(default_factory=get_catalog_file)
    usage_url: str = DEFAULT_USAGE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_concurrent_polls: int = DEFAULT_MAX_CONCURRENT_POLLS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    oauth_port: int = DEFAULT_OAUTH_PORT
    oauth_timeout: float = DEFAULT_OAUTH_TIMEOUT
    log_level: str = "WARNING"


def load_config(env_file: Optional[Union[str, Path]] = None) -> SwitcherConfig:
    """
    Build a SwitcherConfig from the environment.

    Args:
        env_file: Explicit .env to load. Defaults to <data dir>/.env when present.

    Returns:
        Populated SwitcherConfig
    """
    dotenv_path = Path(env_file) if env_file else get_data_file(".env")
    if dotenv_path.is_file():
        load_dotenv(dotenv_path, override=False)
        lib_logger.debug(f"Loaded environment overrides from {dotenv_path}")

    config = SwitcherConfig(
        usage_url=os.environ.get("CODEX_SWITCHER_USAGE_URL", DEFAULT_USAGE_URL),
        poll_interval=max(
            1.0, _env_float("CODEX_SWITCHER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
        ),
        max_concurrent_polls=max(
            1,
            _env_int("CODEX_SWITCHER_MAX_CONCURRENT_POLLS", DEFAULT_MAX_CONCURRENT_POLLS),
        ),
        backoff_base=max(
            0.0, _env_float("CODEX_SWITCHER_BACKOFF_BASE", DEFAULT_BACKOFF_BASE)
        ),
        backoff_max=max(
            0.0, _env_float("CODEX_SWITCHER_BACKOFF_MAX", DEFAULT_BACKOFF_MAX)
        ),
        http_timeout=max(
            1.0, _env_float("CODEX_SWITCHER_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)
        ),
        oauth_port=_env_int("CODEX_SWITCHER_OAUTH_PORT", DEFAULT_OAUTH_PORT),
        oauth_timeout=max(
            1.0, _env_float("CODEX_SWITCHER_OAUTH_TIMEOUT", DEFAULT_OAUTH_TIMEOUT)
        ),
        log_level=os.environ.get("CODEX_SWITCHER_LOG_LEVEL", "WARNING").upper(),
    )
    return config
