# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the switcher library.

This module contains the dataclasses passed between the store, the
activation engine, the acquisition strategies and the usage poller.
Every persisted type round-trips through to_dict()/from_dict().
"""

import copy
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


# =============================================================================
# AUTH MODES
# =============================================================================


class AuthMode:
    """
    How an account authenticates against the upstream service.

    CHATGPT accounts carry OAuth tokens; API_KEY accounts carry a raw
    OPENAI_API_KEY and have no usage endpoint.
    """

    CHATGPT = "chatgpt"
    API_KEY = "api_key"

    ALL = (CHATGPT, API_KEY)


class WindowKind:
    """Quota window identifiers."""

    SHORT = "short"  # primary window, a few hours
    WEEKLY = "weekly"  # secondary window


# =============================================================================
# ACCOUNT / CREDENTIAL
# =============================================================================


@dataclass
class Account:
    """
    One operator-owned identity.

    The id is derived from the authenticated principal (email for
    ChatGPT logins, a key hash for API keys) so re-importing the same
    login always lands on the same entry.
    """

    id: str
    label: str
    created_at: float
    auth_mode: str = AuthMode.CHATGPT
    email: Optional[str] = None
    plan_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "created_at": self.created_at,
            "auth_mode": self.auth_mode,
            "email": self.email,
            "plan_type": self.plan_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            id=data["id"],
            label=data.get("label") or data["id"],
            created_at=data.get("created_at", 0.0),
            auth_mode=data.get("auth_mode", AuthMode.CHATGPT),
            email=data.get("email"),
            plan_type=data.get("plan_type"),
        )


@dataclass
class Credential:
    """
    Token material for one account.

    `payload` is the exact auth.json object the Codex CLI reads. It is
    kept verbatim (including key order) so activation can write it back
    byte-for-byte; the other fields are parsed views of it.
    """

    auth_mode: str
    payload: Dict[str, Any]
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    chatgpt_account_id: Optional[str] = None
    api_key: Optional[str] = None
    expires_at: Optional[float] = None  # None when the token carries no exp

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auth_mode": self.auth_mode,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "chatgpt_account_id": self.chatgpt_account_id,
            "api_key": self.api_key,
            "expires_at": self.expires_at,
            "payload": copy.deepcopy(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            auth_mode=data["auth_mode"],
            payload=data["payload"],
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            chatgpt_account_id=data.get("chatgpt_account_id"),
            api_key=data.get("api_key"),
            expires_at=data.get("expires_at"),
        )


# =============================================================================
# USAGE
# =============================================================================


@dataclass
class UsageWindow:
    """One quota window reading."""

    kind: str
    used_percent: float  # 0-100
    window_minutes: Optional[int] = None
    resets_at: Optional[float] = None  # Unix timestamp
    refreshed_at: float = 0.0

    @property
    def used_fraction(self) -> float:
        return max(0.0, min(1.0, self.used_percent / 100))

    @property
    def remaining_percent(self) -> float:
        return max(0.0, 100 - self.used_percent)

    @property
    def is_exhausted(self) -> bool:
        return self.used_percent >= 100

    def seconds_until_reset(self) -> Optional[float]:
        if self.resets_at is None:
            return None
        return max(0.0, self.resets_at - time.time())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "used_percent": self.used_percent,
            "window_minutes": self.window_minutes,
            "resets_at": self.resets_at,
            "refreshed_at": self.refreshed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageWindow":
        return cls(
            kind=data["kind"],
            used_percent=float(data.get("used_percent", 0.0)),
            window_minutes=data.get("window_minutes"),
            resets_at=data.get("resets_at"),
            refreshed_at=data.get("refreshed_at", 0.0),
        )


@dataclass
class CreditsInfo:
    """Credits block from the usage endpoint."""

    has_credits: bool
    unlimited: bool
    balance: Optional[str] = None  # numeric string or "unlimited"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_credits": self.has_credits,
            "unlimited": self.unlimited,
            "balance": self.balance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreditsInfo":
        return cls(
            has_credits=bool(data.get("has_credits", False)),
            unlimited=bool(data.get("unlimited", False)),
            balance=data.get("balance"),
        )


@dataclass
class UsageSnapshot:
    """
    Latest usage reading for an account.

    Replaced wholesale on every successful poll. A failed poll keeps the
    windows from the previous reading and only sets `stale_since` and
    `error`, so consumers always have the last known numbers.
    """

    short: Optional[UsageWindow] = None
    weekly: Optional[UsageWindow] = None
    plan_type: Optional[str] = None
    credits: Optional[CreditsInfo] = None
    fetched_at: Optional[float] = None
    stale_since: Optional[float] = None
    error: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        return self.stale_since is not None

    @property
    def has_data(self) -> bool:
        return self.short is not None or self.weekly is not None

    def marked_stale(self, since: float, error: str) -> "UsageSnapshot":
        """Copy of this snapshot flagged stale. Keeps the first failure time."""
        return UsageSnapshot(
            short=self.short,
            weekly=self.weekly,
            plan_type=self.plan_type,
            credits=self.credits,
            fetched_at=self.fetched_at,
            stale_since=self.stale_since if self.stale_since is not None else since,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "short": self.short.to_dict() if self.short else None,
            "weekly": self.weekly.to_dict() if self.weekly else None,
            "plan_type": self.plan_type,
            "credits": self.credits.to_dict() if self.credits else None,
            "fetched_at": self.fetched_at,
            "stale_since": self.stale_since,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageSnapshot":
        short = data.get("short")
        weekly = data.get("weekly")
        credits = data.get("credits")
        return cls(
            short=UsageWindow.from_dict(short) if short else None,
            weekly=UsageWindow.from_dict(weekly) if weekly else None,
            plan_type=data.get("plan_type"),
            credits=CreditsInfo.from_dict(credits) if credits else None,
            fetched_at=data.get("fetched_at"),
            stale_since=data.get("stale_since"),
            error=data.get("error"),
        )


# =============================================================================
# CATALOG ENTRIES
# =============================================================================


@dataclass
class StoredAccount:
    """An account with its single credential and its latest usage snapshot."""

    account: Account
    credential: Credential
    usage: Optional[UsageSnapshot] = None

    @property
    def id(self) -> str:
        return self.account.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account.to_dict(),
            "credential": self.credential.to_dict(),
            "usage": self.usage.to_dict() if self.usage else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredAccount":
        usage = data.get("usage")
        return cls(
            account=Account.from_dict(data["account"]),
            credential=Credential.from_dict(data["credential"]),
            usage=UsageSnapshot.from_dict(usage) if usage else None,
        )


@dataclass
class ActiveMarker:
    """Which account is currently mirrored into the CLI's auth file."""

    account_id: str
    activated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"account_id": self.account_id, "activated_at": self.activated_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveMarker":
        return cls(
            account_id=data["account_id"],
            activated_at=data.get("activated_at", 0.0),
        )


@dataclass
class AcquisitionResult:
    """Normalized output of any acquisition strategy."""

    account: Account
    credential: Credential


def seconds_to_minutes(seconds: Optional[float]) -> Optional[int]:
    """Round a window length up to whole minutes."""
    if seconds is None:
        return None
    return int(math.ceil(float(seconds) / 60))
