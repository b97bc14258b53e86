# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/codex_switcher/utils/paths.py
"""
Filesystem locations used by the switcher.

Two homes are involved:
- CODEX_HOME (default ~/.codex): owned by the Codex CLI, holds auth.json
- CODEX_SWITCHER_HOME (default ~/.codex-switcher): our private data dir,
  holds the account catalog and an optional .env
"""

import os
from pathlib import Path

AUTH_FILE_NAME = "auth.json"
CATALOG_FILE_NAME = "accounts.json"


def get_codex_home() -> Path:
    """Codex CLI home, honouring the CODEX_HOME override."""
    codex_home = os.environ.get("CODEX_HOME")
    if codex_home:
        return Path(codex_home).expanduser()
    return Path.home() / ".codex"


def get_codex_auth_file() -> Path:
    """Path of the auth.json the Codex CLI reads its credential from."""
    return get_codex_home() / AUTH_FILE_NAME


def get_data_dir() -> Path:
    """Switcher data directory (not created here)."""
    data_home = os.environ.get("CODEX_SWITCHER_HOME")
    if data_home:
        return Path(data_home).expanduser()
    return Path.home() / ".codex-switcher"


def get_data_file(name: str) -> Path:
    return get_data_dir() / name


def get_catalog_file() -> Path:
    return get_data_file(CATALOG_FILE_NAME)
