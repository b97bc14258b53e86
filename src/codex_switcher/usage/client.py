# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Client for the ChatGPT usage endpoint.

API Details:
- Endpoint: GET https://chatgpt.com/backend-api/wham/usage
- Auth: Authorization: Bearer <access_token>, ChatGPT-Account-Id header
- Response:
    {
      "plan_type": "plus",
      "rate_limit": {
        "primary_window": {"used_percent": 12, "limit_window_seconds": 18000, "reset_at": 1700000000},
        "secondary_window": {...}
      },
      "credits": {"has_credits": false, "unlimited": false, "balance": "0"}
    }

The primary window maps to the short quota window, the secondary one to
the weekly window.
"""

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from ..core.config import DEFAULT_HTTP_TIMEOUT, DEFAULT_USAGE_URL
from ..core.errors import HttpError, ParseError
from ..core.types import (
    AuthMode,
    Credential,
    CreditsInfo,
    UsageSnapshot,
    UsageWindow,
    WindowKind,
    seconds_to_minutes,
)

lib_logger = logging.getLogger("codex_switcher")

CODEX_USER_AGENT = "codex-cli/1.0.0"


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None when absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now if now is not None else time.time()
    return max(0.0, when.timestamp() - now)


def _parse_window(
    kind: str, data: Any, refreshed_at: float
) -> Optional[UsageWindow]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ParseError(f"Usage response has a malformed {kind} window")
    try:
        used_percent = float(data.get("used_percent", 0) or 0)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Usage response has a non-numeric used_percent: {e}") from e

    reset_at = data.get("reset_at")
    if reset_at is not None:
        if isinstance(reset_at, str):
            reset_at = _parse_iso_timestamp(reset_at)
        elif isinstance(reset_at, (int, float)):
            reset_at = float(reset_at)
        else:
            reset_at = None
    if reset_at is None and isinstance(data.get("reset_after_seconds"), (int, float)):
        reset_at = refreshed_at + float(data["reset_after_seconds"])

    limit_seconds = data.get("limit_window_seconds")
    return UsageWindow(
        kind=kind,
        used_percent=used_percent,
        window_minutes=(
            seconds_to_minutes(limit_seconds)
            if isinstance(limit_seconds, (int, float))
            else None
        ),
        resets_at=reset_at,
        refreshed_at=refreshed_at,
    )


def _parse_iso_timestamp(value: str) -> Optional[float]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def parse_usage_payload(data: Any, fetched_at: Optional[float] = None) -> UsageSnapshot:
    """
    Convert a usage response body into a UsageSnapshot.

    Raises:
        ParseError: the body is not a usage object
    """
    if not isinstance(data, dict):
        raise ParseError("Usage response must be a JSON object")
    fetched_at = fetched_at if fetched_at is not None else time.time()

    rate_limit = data.get("rate_limit") or {}
    if not isinstance(rate_limit, dict):
        raise ParseError("Usage response has a malformed rate_limit section")

    credits_data = data.get("credits")
    credits = None
    if isinstance(credits_data, dict):
        balance = credits_data.get("balance")
        credits = CreditsInfo(
            has_credits=bool(credits_data.get("has_credits", False)),
            unlimited=bool(credits_data.get("unlimited", False)),
            balance=str(balance) if balance is not None else None,
        )

    return UsageSnapshot(
        short=_parse_window(WindowKind.SHORT, rate_limit.get("primary_window"), fetched_at),
        weekly=_parse_window(
            WindowKind.WEEKLY, rate_limit.get("secondary_window"), fetched_at
        ),
        plan_type=data.get("plan_type"),
        credits=credits,
        fetched_at=fetched_at,
    )


class UsageClient:
    """
    Fetches usage snapshots for ChatGPT credentials.

    A shared httpx.AsyncClient can be passed either at construction or
    per call; otherwise a short-lived one is created for each request.
    """

    def __init__(
        self,
        url: str = DEFAULT_USAGE_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.http_client = client

    def build_headers(self, credential: Credential) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
            "User-Agent": CODEX_USER_AGENT,
        }
        if credential.chatgpt_account_id:
            headers["ChatGPT-Account-Id"] = credential.chatgpt_account_id
        return headers

    async def fetch_usage(
        self,
        credential: Credential,
        client: Optional[httpx.AsyncClient] = None,
    ) -> UsageSnapshot:
        """
        Fetch the current usage for one credential.

        Raises:
            ValueError: the credential is not a ChatGPT login
            HttpError: non-2xx response (retry_after set from Retry-After)
            ParseError: the body is not a usage object
            httpx.RequestError: network failure
        """
        if credential.auth_mode != AuthMode.CHATGPT or not credential.access_token:
            raise ValueError("Usage info is only available for ChatGPT logins")

        headers = self.build_headers(credential)
        client = client or self.http_client
        if client is not None:
            response = await client.get(self.url, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as new_client:
                response = await new_client.get(self.url, headers=headers)

        if not response.is_success:
            raise HttpError(
                response.status_code,
                response.text[:200],
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ParseError("Usage response is not valid JSON") from e

        snapshot = parse_usage_payload(data)
        if snapshot.short:
            lib_logger.debug(
                f"Fetched usage: short window {snapshot.short.used_percent:.1f}% used"
            )
        else:
            lib_logger.debug("Fetched usage: no rate limit data")
        return snapshot
