# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/codex_switcher/utils/resilient_io.py
"""
Atomic file writes.

Every durable write goes temp file -> fsync -> os.replace, so a crash
leaves either the old file or the new one, never a torn mix.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

lib_logger = logging.getLogger("codex_switcher")

PRIVATE_FILE_MODE = 0o600


def write_text_atomic(path: Path, content: str, mode: int = PRIVATE_FILE_MODE) -> None:
    """
    Write text to `path` atomically and durably.

    The parent directory is created if needed. The temp file is removed
    again if anything fails; the original exception propagates.

    Args:
        path: Destination file
        content: Text to write (UTF-8)
        mode: Permission bits for the new file
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        if os.name != "nt":
            os.chmod(path, mode)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, data: Any, mode: int = PRIVATE_FILE_MODE) -> None:
    write_text_atomic(path, json.dumps(data, indent=2), mode=mode)


def read_text_if_exists(path: Path) -> Optional[str]:
    """Read a file, returning None if it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def read_bytes_if_exists(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def remove_if_exists(path: Path) -> bool:
    """Delete a file. Returns True if something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        lib_logger.debug(f"Nothing to remove at {path}")
        return False
