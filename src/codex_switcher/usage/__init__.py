# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .client import UsageClient, parse_usage_payload
from .poller import (
    AccountPollState,
    CredentialExpired,
    PollEvent,
    PollStatus,
    UsagePoller,
)

__all__ = [
    "AccountPollState",
    "CredentialExpired",
    "PollEvent",
    "PollStatus",
    "UsageClient",
    "UsagePoller",
    "parse_usage_payload",
]
