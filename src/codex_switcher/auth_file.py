# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/codex_switcher/auth_file.py
"""
Adapter for the Codex CLI's auth.json.

The CLI owns the schema:

    {
      "OPENAI_API_KEY": null | "sk-...",
      "tokens": null | {"id_token", "access_token", "refresh_token", "account_id"},
      "last_refresh": null | "2025-01-01T00:00:00Z"
    }

The adapter never builds that object itself. It writes the payload a
credential was captured with, pretty-printed the way the CLI prints it,
so an activated file is byte-identical to what the CLI would have left.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .core.errors import AuthFileWriteError, ParseError
from .core.types import Credential
from .utils.paths import get_codex_auth_file
from .utils.resilient_io import read_bytes_if_exists, remove_if_exists, write_text_atomic

lib_logger = logging.getLogger("codex_switcher")

API_KEY_FIELD = "OPENAI_API_KEY"
TOKENS_FIELD = "tokens"
LAST_REFRESH_FIELD = "last_refresh"


def render_payload(payload: Dict[str, Any]) -> str:
    """Serialize an auth.json payload exactly as the CLI writes it."""
    return json.dumps(payload, indent=2, ensure_ascii=False)


class AuthFileAdapter:
    """
    Reads and writes the single active-credential file.

    All methods are blocking; async callers run them in a worker thread.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_codex_auth_file()

    def render(self, credential: Credential) -> str:
        return render_payload(credential.payload)

    def write(self, credential: Credential) -> None:
        """
        Durably replace auth.json with `credential`.

        Returns only once the new content is fsynced and renamed into
        place. Any failure is raised as AuthFileWriteError and leaves
        the previous file untouched.
        """
        content = self.render(credential)
        try:
            write_text_atomic(self.path, content)
        except OSError as e:
            lib_logger.error(f"Failed to write {self.path}: {e}")
            raise AuthFileWriteError(f"Failed to write {self.path}: {e}") from e
        lib_logger.debug(f"Wrote active credential to {self.path}")

    def read_bytes(self) -> Optional[bytes]:
        return read_bytes_if_exists(self.path)

    def read_text(self) -> Optional[str]:
        """
        Raises:
            ParseError: the file is not valid UTF-8
        """
        raw = self.read_bytes()
        if raw is None:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"{self.path} is not valid UTF-8: {e}") from e

    def read(self) -> Optional[Dict[str, Any]]:
        """
        Parse the current auth.json.

        Returns:
            The payload dict, or None if the file does not exist

        Raises:
            ParseError: the file exists but is not a UTF-8 JSON object
        """
        text = self.read_text()
        if text is None:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ParseError(f"{self.path} does not contain a JSON object")
        return data

    def matches(self, credential: Credential) -> bool:
        """True if the file on disk is byte-identical to `credential`'s rendering."""
        return self.read_bytes() == self.render(credential).encode("utf-8")

    def clear(self) -> bool:
        """Remove auth.json. Returns True if a file was removed."""
        try:
            removed = remove_if_exists(self.path)
        except OSError as e:
            lib_logger.error(f"Failed to remove {self.path}: {e}")
            raise AuthFileWriteError(f"Failed to remove {self.path}: {e}") from e
        if removed:
            lib_logger.debug(f"Removed {self.path}")
        return removed

    def has_active_login(self) -> bool:
        """True if the CLI currently has an API key or tokens to use."""
        try:
            data = self.read()
        except ParseError:
            return False
        if not data:
            return False
        return bool(data.get(API_KEY_FIELD)) or bool(data.get(TOKENS_FIELD))
