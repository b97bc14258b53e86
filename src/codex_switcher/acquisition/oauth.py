# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Browser OAuth login for ChatGPT accounts.

Implements the authorization code flow with PKCE against the OpenAI
issuer, using a short-lived local callback listener:

1. Bind http://localhost:<port>/auth/callback
2. Hand the authorization URL to the caller (who shows/opens it)
3. Wait for the redirect carrying `code` and `state`
4. Exchange the code for id/access/refresh tokens

Only one flow may wait for a callback at a time per process. A second
acquire() while one is pending raises ConflictError; it never cancels
the first.
"""

import asyncio
import base64
import hashlib
import html
import inspect
import logging
import os
import secrets
import socket
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from aiohttp import web

from ..core.config import DEFAULT_OAUTH_PORT, DEFAULT_OAUTH_TIMEOUT
from ..core.errors import (
    AcquisitionCancelledError,
    ConflictError,
    OAuthError,
    OAuthTimeoutError,
)
from ..core.types import AcquisitionResult
from .base import (
    Acquisition,
    AcquisitionKind,
    build_tokens_payload,
    normalize_auth_payload,
)

lib_logger = logging.getLogger("codex_switcher")

# OAuth endpoints
OPENAI_ISSUER = "https://auth.openai.com"
OPENAI_AUTHORIZE_ENDPOINT = f"{OPENAI_ISSUER}/oauth/authorize"
OPENAI_TOKEN_ENDPOINT = f"{OPENAI_ISSUER}/oauth/token"

# Public client id used by the Codex CLI
CODEX_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
CODEX_SCOPES = "openid profile email offline_access"

CALLBACK_PATH = "/auth/callback"
CALLBACK_HOST = "127.0.0.1"

_SUCCESS_PAGE = (
    "<html><body><h2>Login complete</h2>"
    "<p>You can close this window and return to the switcher.</p></body></html>"
)
_ERROR_PAGE = (
    "<html><body><h2>Login failed</h2><p>{reason}</p>"
    "<p>Return to the switcher and try again.</p></body></html>"
)


def generate_pkce_pair() -> Tuple[str, str]:
    """Returns (code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def build_authorize_url(
    redirect_uri: str,
    state: str,
    code_challenge: str,
    authorize_endpoint: str = OPENAI_AUTHORIZE_ENDPOINT,
    client_id: str = CODEX_CLIENT_ID,
) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": CODEX_SCOPES,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "id_token_add_organizations": "true",
        "codex_cli_simplified_flow": "true",
        "state": state,
    }
    return f"{authorize_endpoint}?{urlencode(params)}"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class OAuthCallbackServer:
    """
    Minimal HTTP server for handling OAuth callbacks.

    Binds its own socket so port 0 works: `port` holds the real port
    once start() returns.
    """

    def __init__(self, port: int = DEFAULT_OAUTH_PORT, host: str = CALLBACK_HOST):
        self.host = host
        self.port = port
        self.app = web.Application()
        self.app.router.add_get(CALLBACK_PATH, self._handle_callback)
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.SockSite] = None
        self._sock: Optional[socket.socket] = None
        self.result_future: Optional[asyncio.Future] = None
        self.expected_state: Optional[str] = None

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.port}{CALLBACK_PATH}"

    async def start(self, expected_state: str) -> None:
        """
        Start listening.

        Raises:
            OAuthError: the port is already in use
        """
        self.expected_state = expected_state
        self.result_future = asyncio.get_running_loop().create_future()

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise OAuthError(
                f"OAuth callback port {self.port} is unavailable: {e}"
            ) from e
        self._sock = sock
        self.port = sock.getsockname()[1]

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.SockSite(self.runner, sock)
        await self.site.start()
        lib_logger.debug(f"OAuth callback server started on port {self.port}")

    async def stop(self) -> None:
        """Stop listening and release the port. Safe to call more than once."""
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if self.result_future is not None and not self.result_future.done():
            self.result_future.cancel()
        lib_logger.debug("OAuth callback server stopped")

    def _fail(self, reason: str) -> web.Response:
        lib_logger.error(f"OAuth callback rejected: {reason}")
        if self.result_future is not None and not self.result_future.done():
            self.result_future.set_exception(OAuthError(reason))
        return web.Response(
            status=400,
            text=_ERROR_PAGE.format(reason=html.escape(reason)),
            content_type="text/html",
        )

    async def _handle_callback(self, request: web.Request) -> web.Response:
        query = request.query

        if "error" in query:
            description = query.get("error_description") or query.get("error")
            return self._fail(f"Provider returned an error: {description}")

        # Check state before code so a forged redirect cannot resolve the flow
        if query.get("state", "") != self.expected_state:
            return self._fail("State parameter mismatch")

        code = query.get("code")
        if not code:
            return self._fail("Missing authorization code")

        if self.result_future is not None and not self.result_future.done():
            self.result_future.set_result(code)
        return web.Response(text=_SUCCESS_PAGE, content_type="text/html")

    async def wait_for_callback(
        self,
        timeout: float = DEFAULT_OAUTH_TIMEOUT,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Wait for the redirect and return the authorization code.

        Raises:
            OAuthTimeoutError: nothing arrived within `timeout` seconds
            AcquisitionCancelledError: `cancel_event` was set first
            OAuthError: the provider redirected with an error
        """
        if self.result_future is None:
            raise RuntimeError("Callback server has not been started")

        cancel_task: Optional[asyncio.Task] = None
        waiters = {self.result_future}
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if self.result_future in done:
            return self.result_future.result()
        if cancel_task is not None and cancel_task in done:
            raise AcquisitionCancelledError("OAuth login was cancelled")
        raise OAuthTimeoutError(f"Timed out after {timeout:.0f}s waiting for OAuth callback")


class OAuthAcquisition(Acquisition):
    """
    Acquire a ChatGPT credential through the browser.

    Args:
        on_url: Called with the authorization URL once the listener is up.
            May be a coroutine function. Showing the URL or opening a
            browser is entirely up to the caller.
        port: Callback port (0 = ephemeral)
        timeout: Seconds to wait for the callback
        cancel_event: Setting this event aborts the wait
        http_client: Client for the token exchange (a private one is
            created when omitted)
        label: Display label for the new account
    """

    kind = AcquisitionKind.OAUTH

    # Process-wide: the flow owning the callback listener
    _in_flight: Optional["OAuthAcquisition"] = None

    def __init__(
        self,
        on_url: Optional[Callable[[str], Any]] = None,
        port: int = DEFAULT_OAUTH_PORT,
        timeout: float = DEFAULT_OAUTH_TIMEOUT,
        cancel_event: Optional[asyncio.Event] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        label: Optional[str] = None,
        authorize_endpoint: str = OPENAI_AUTHORIZE_ENDPOINT,
        token_endpoint: str = OPENAI_TOKEN_ENDPOINT,
        client_id: str = CODEX_CLIENT_ID,
        http_timeout: float = 30.0,
    ):
        self.on_url = on_url
        self.port = port
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.http_client = http_client
        self.label = label
        self.authorize_endpoint = authorize_endpoint
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.http_timeout = http_timeout
        self.authorization_url: Optional[str] = None

    @classmethod
    def is_pending(cls) -> bool:
        return cls._in_flight is not None

    async def acquire(self) -> AcquisitionResult:
        """
        Run the full flow and return the normalized login.

        Raises:
            ConflictError: another OAuth flow is already pending
            OAuthTimeoutError / AcquisitionCancelledError / OAuthError
        """
        if OAuthAcquisition._in_flight is not None:
            raise ConflictError("Another OAuth login is already in progress")
        OAuthAcquisition._in_flight = self
        try:
            return await self._run_flow()
        finally:
            OAuthAcquisition._in_flight = None

    async def _run_flow(self) -> AcquisitionResult:
        state = secrets.token_urlsafe(32)
        verifier, challenge = generate_pkce_pair()

        server = OAuthCallbackServer(port=self.port)
        try:
            await server.start(expected_state=state)
            redirect_uri = server.redirect_uri
            self.authorization_url = build_authorize_url(
                redirect_uri,
                state,
                challenge,
                authorize_endpoint=self.authorize_endpoint,
                client_id=self.client_id,
            )
            if self.on_url is not None:
                maybe_awaitable = self.on_url(self.authorization_url)
                if inspect.isawaitable(maybe_awaitable):
                    await maybe_awaitable

            code = await server.wait_for_callback(
                timeout=self.timeout, cancel_event=self.cancel_event
            )
        finally:
            await server.stop()

        lib_logger.info("Received authorization code, exchanging for tokens...")
        token_data = await self.exchange_code(code, redirect_uri, verifier)

        payload = build_tokens_payload(
            id_token=token_data["id_token"],
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            account_id=None,
            last_refresh=_utc_timestamp(),
        )
        result = normalize_auth_payload(payload, label=self.label)
        # account_id comes from the id_token claims; record it in the file too
        payload["tokens"]["account_id"] = result.credential.chatgpt_account_id
        lib_logger.info(f"OAuth login completed for '{result.account.id}'")
        return result

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Raises:
            OAuthError: non-200 answer or a response without tokens
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        try:
            if self.http_client is not None:
                response = await self.http_client.post(
                    self.token_endpoint, data=data, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                    response = await client.post(
                        self.token_endpoint, data=data, headers=headers
                    )
        except httpx.RequestError as e:
            raise OAuthError(f"Token exchange request failed: {e}") from e

        if response.status_code != 200:
            lib_logger.error(
                f"OAuth token exchange failed: {response.status_code} {response.text[:200]}"
            )
            raise OAuthError(f"Token exchange failed: HTTP {response.status_code}")

        try:
            token_data = response.json()
        except ValueError as e:
            raise OAuthError("Token endpoint returned invalid JSON") from e

        for key in ("id_token", "access_token"):
            if not isinstance(token_data.get(key), str) or not token_data[key]:
                raise OAuthError(f"Missing {key} in token response")
        return token_data
