# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Import an existing auth.json as a new account.

The blob is usually a copy of ~/.codex/auth.json taken after logging in
with the Codex CLI itself, but any file in that schema works.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..core.errors import ParseError
from ..core.types import AcquisitionResult, AuthMode
from ..utils.tokens import mask_secret
from .base import Acquisition, AcquisitionKind, normalize_auth_payload

lib_logger = logging.getLogger("codex_switcher")


def parse_auth_blob(blob: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Decode an auth.json blob.

    Raises:
        ParseError: not valid JSON, or not a JSON object
    """
    if isinstance(blob, dict):
        return blob
    if isinstance(blob, bytes):
        try:
            blob = blob.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"auth.json is not valid UTF-8: {e}") from e
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as e:
        raise ParseError(f"auth.json is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("auth.json must contain a JSON object")
    return data


class ImportAcquisition(Acquisition):
    """
    Acquire a credential from an auth.json blob.

    Parsing is synchronous and happens on parse()/acquire(). Whether an
    existing account with the same id may be replaced is carried by
    `overwrite` and enforced by whoever persists the result.

    Example:
        acquisition = ImportAcquisition.from_file("~/backup/auth.json")
        result = acquisition.parse()
    """

    kind = AcquisitionKind.IMPORT

    def __init__(
        self,
        blob: Union[str, bytes, Dict[str, Any]],
        label: Optional[str] = None,
        overwrite: bool = False,
        source: Optional[str] = None,
    ):
        self.blob = blob
        self.label = label
        self.overwrite = overwrite
        self.source = source

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        label: Optional[str] = None,
        overwrite: bool = False,
    ) -> "ImportAcquisition":
        """
        Raises:
            ParseError: the file cannot be read
        """
        file_path = Path(path).expanduser()
        try:
            blob = file_path.read_bytes()
        except OSError as e:
            raise ParseError(f"Failed to read {file_path}: {e}") from e
        return cls(blob, label=label, overwrite=overwrite, source=str(file_path))

    def parse(self) -> AcquisitionResult:
        payload = parse_auth_blob(self.blob)
        result = normalize_auth_payload(payload, label=self.label)
        secret = (
            result.credential.api_key
            if result.account.auth_mode == AuthMode.API_KEY
            else result.credential.access_token
        )
        lib_logger.debug(
            f"Parsed {result.account.auth_mode} credential for '{result.account.id}' "
            f"({mask_secret(secret)})"
            + (f" from {self.source}" if self.source else "")
        )
        return result

    async def acquire(self) -> AcquisitionResult:
        return self.parse()
