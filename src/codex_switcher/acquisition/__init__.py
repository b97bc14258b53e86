# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .base import (
    Acquisition,
    AcquisitionKind,
    build_tokens_payload,
    normalize_auth_payload,
    run_acquisition,
)
from .importer import ImportAcquisition, parse_auth_blob
from .oauth import OAuthAcquisition, OAuthCallbackServer

__all__ = [
    "Acquisition",
    "AcquisitionKind",
    "ImportAcquisition",
    "OAuthAcquisition",
    "OAuthCallbackServer",
    "build_tokens_payload",
    "normalize_auth_payload",
    "parse_auth_blob",
    "run_acquisition",
]
