# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Common shape for credential acquisition strategies.

Every strategy yields an AcquisitionResult built by
normalize_auth_payload(), so the store only ever sees one
account/credential shape regardless of where a login came from.
Acquisition never persists anything; the caller decides.
"""

import logging
import time
from typing import Any, Dict, Optional

from ..auth_file import API_KEY_FIELD, TOKENS_FIELD
from ..core.errors import ParseError
from ..core.types import Account, AcquisitionResult, AuthMode, Credential
from ..utils.tokens import api_key_account_id, extract_identity_claims, token_expiry

lib_logger = logging.getLogger("codex_switcher")


class AcquisitionKind:
    """Tag identifying an acquisition strategy."""

    OAUTH = "oauth"
    IMPORT = "import"


class Acquisition:
    """
    Base class for acquisition strategies.

    Subclasses set `kind` and implement acquire(). Callers branch on
    `kind` (see run_acquisition), never on the concrete class.
    """

    kind: str = ""

    async def acquire(self) -> AcquisitionResult:
        raise NotImplementedError


async def run_acquisition(acquisition: Acquisition) -> AcquisitionResult:
    """Dispatch an acquisition by its tag."""
    if acquisition.kind == AcquisitionKind.OAUTH:
        lib_logger.debug("Starting OAuth acquisition")
    elif acquisition.kind == AcquisitionKind.IMPORT:
        lib_logger.debug("Starting import acquisition")
    else:
        raise ValueError(f"Unknown acquisition kind: {acquisition.kind!r}")
    return await acquisition.acquire()


def normalize_auth_payload(
    payload: Any,
    label: Optional[str] = None,
    now: Optional[float] = None,
) -> AcquisitionResult:
    """
    Turn an auth.json-shaped payload into an Account and its Credential.

    An OPENAI_API_KEY takes precedence over tokens, matching how the CLI
    itself picks its auth mode. The payload dict is kept as-is on the
    credential.

    Args:
        payload: Parsed auth.json object
        label: Display label; defaults to the email or the account id
        now: Creation timestamp override (tests)

    Raises:
        ParseError: payload is not an auth.json object, or no identity
            can be derived from it
    """
    if not isinstance(payload, dict):
        raise ParseError("auth.json must contain a JSON object")

    created_at = now if now is not None else time.time()
    api_key = payload.get(API_KEY_FIELD)
    tokens = payload.get(TOKENS_FIELD)

    if api_key is not None and not isinstance(api_key, str):
        raise ParseError(f"{API_KEY_FIELD} must be a string or null")
    if tokens is not None and not isinstance(tokens, dict):
        raise ParseError(f"'{TOKENS_FIELD}' must be an object or null")

    if api_key:
        account_id = api_key_account_id(api_key)
        account = Account(
            id=account_id,
            label=label or account_id,
            created_at=created_at,
            auth_mode=AuthMode.API_KEY,
        )
        credential = Credential(
            auth_mode=AuthMode.API_KEY, payload=payload, api_key=api_key
        )
        return AcquisitionResult(account=account, credential=credential)

    if tokens:
        access_token = tokens.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ParseError("tokens.access_token is missing")
        id_token = tokens.get("id_token")
        if id_token is not None and not isinstance(id_token, str):
            raise ParseError("tokens.id_token must be a string")
        refresh_token = tokens.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ParseError("tokens.refresh_token must be a string")

        claims = extract_identity_claims(id_token)
        chatgpt_account_id = tokens.get("account_id") or claims["chatgpt_account_id"]
        account_id = claims["email"] or chatgpt_account_id or claims["subject"]
        if not account_id:
            raise ParseError(
                "Cannot identify the account: id_token has no email or subject "
                "and tokens.account_id is empty"
            )

        account = Account(
            id=account_id,
            label=label or claims["email"] or account_id,
            created_at=created_at,
            auth_mode=AuthMode.CHATGPT,
            email=claims["email"],
            plan_type=claims["plan_type"],
        )
        credential = Credential(
            auth_mode=AuthMode.CHATGPT,
            payload=payload,
            access_token=access_token,
            refresh_token=refresh_token or None,
            id_token=id_token,
            chatgpt_account_id=chatgpt_account_id,
            expires_at=token_expiry(access_token),
        )
        return AcquisitionResult(account=account, credential=credential)

    raise ParseError("auth.json contains neither an API key nor tokens")


def build_tokens_payload(
    id_token: str,
    access_token: str,
    refresh_token: Optional[str],
    account_id: Optional[str],
    last_refresh: str,
) -> Dict[str, Any]:
    """Assemble an auth.json payload in the CLI's own field order."""
    return {
        API_KEY_FIELD: None,
        TOKENS_FIELD: {
            "id_token": id_token,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "account_id": account_id,
        },
        "last_refresh": last_refresh,
    }
