# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .catalog import CredentialStore, validate_entry

__all__ = ["CredentialStore", "validate_entry"]
