# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Codex account switcher.

Keeps several Codex CLI logins, mirrors the selected one into
$CODEX_HOME/auth.json and tracks each account's quota usage.
"""

from .acquisition import (
    AcquisitionKind,
    ImportAcquisition,
    OAuthAcquisition,
)
from .activation import ActivationEngine, ActivationResult
from .auth_file import AuthFileAdapter
from .core.config import SwitcherConfig, load_config
from .core.errors import (
    AcquisitionCancelledError,
    AuthFileWriteError,
    ConflictError,
    DuplicateError,
    HttpError,
    NotFoundError,
    OAuthError,
    OAuthTimeoutError,
    ParseError,
    StorageError,
    SwitcherError,
    ValidationError,
)
from .core.types import (
    Account,
    AuthMode,
    Credential,
    StoredAccount,
    UsageSnapshot,
    UsageWindow,
)
from .manager import AccountManager
from .store import CredentialStore
from .usage import CredentialExpired, PollEvent, PollStatus, UsageClient, UsagePoller

__version__ = "0.1.0"

__all__ = [
    "Account",
    "AccountManager",
    "AcquisitionCancelledError",
    "AcquisitionKind",
    "ActivationEngine",
    "ActivationResult",
    "AuthFileAdapter",
    "AuthFileWriteError",
    "AuthMode",
    "ConflictError",
    "Credential",
    "CredentialExpired",
    "CredentialStore",
    "DuplicateError",
    "HttpError",
    "ImportAcquisition",
    "NotFoundError",
    "OAuthAcquisition",
    "OAuthError",
    "OAuthTimeoutError",
    "ParseError",
    "PollEvent",
    "PollStatus",
    "StorageError",
    "StoredAccount",
    "SwitcherConfig",
    "SwitcherError",
    "UsageClient",
    "UsagePoller",
    "UsageSnapshot",
    "UsageWindow",
    "ValidationError",
    "load_config",
]
