# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/codex_switcher/utils/tokens.py
"""
Unverified JWT claim extraction and secret masking.

Claims are only read to label accounts (email, plan, account id, expiry);
nothing here validates a signature, and nothing here should be used to
make a trust decision.
"""

import base64
import hashlib
import json
import logging
from typing import Any, Dict, Optional

lib_logger = logging.getLogger("codex_switcher")

# Namespaced claim the OpenAI issuer puts ChatGPT-specific data under
OPENAI_AUTH_CLAIM = "https://api.openai.com/auth"


def decode_jwt_claims(token: Optional[str]) -> Dict[str, Any]:
    """
    Decode the payload segment of a JWT without verifying it.

    Returns:
        The claims dict, or {} for anything that isn't a well-formed JWT
    """
    if not token or not isinstance(token, str):
        return {}
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(segment.encode("ascii"))
        claims = json.loads(raw)
    except (ValueError, UnicodeError) as e:
        lib_logger.debug(f"Could not decode JWT payload: {e}")
        return {}
    return claims if isinstance(claims, dict) else {}


def extract_identity_claims(id_token: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Pull the fields used to identify a ChatGPT login out of an id_token.

    Returns:
        {"email", "plan_type", "chatgpt_account_id", "subject"}; any may be None
    """
    claims = decode_jwt_claims(id_token)
    auth_claims = claims.get(OPENAI_AUTH_CLAIM)
    if not isinstance(auth_claims, dict):
        auth_claims = {}
    email = claims.get("email")
    return {
        "email": email.strip().lower() if isinstance(email, str) and email else None,
        "plan_type": auth_claims.get("chatgpt_plan_type"),
        "chatgpt_account_id": auth_claims.get("chatgpt_account_id"),
        "subject": claims.get("sub"),
    }


def token_expiry(token: Optional[str]) -> Optional[float]:
    """`exp` claim of a JWT as a float timestamp, or None."""
    exp = decode_jwt_claims(token).get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return float(exp)
    return None


def api_key_account_id(api_key: str) -> str:
    """Stable, non-reversible id for an API-key account."""
    digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    return f"apikey-{digest[:12]}"


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a secret for display/logging.

    Examples:
        "sk-abcdef123456" -> "sk-a...3456"
        "short" -> "****"
    """
    if not value:
        return "<none>"
    if len(value) <= visible * 2:
        return "*" * 4
    return f"{value[:visible]}...{value[-visible:]}"
