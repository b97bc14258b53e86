# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy for the switcher library.

Store and activation errors are raised synchronously to the caller.
Usage polling failures are never raised out of the poller; they are
reported through its listener channel instead.
"""

from typing import Optional


class SwitcherError(Exception):
    """Base exception for all switcher errors."""

    pass


class ValidationError(SwitcherError):
    """A credential or account is structurally malformed."""

    pass


class NotFoundError(SwitcherError, KeyError):
    """No stored account has the requested id."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class ParseError(SwitcherError):
    """An auth.json blob or the catalog file could not be parsed."""

    pass


class DuplicateError(SwitcherError):
    """An imported credential resolves to an account id that already exists."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Account '{account_id}' already exists (pass overwrite=True to replace it)"
        )


class ConflictError(SwitcherError):
    """Another OAuth attempt is already waiting for its callback."""

    pass


class OAuthError(SwitcherError):
    """The provider rejected the authorization or the token exchange failed."""

    pass


class OAuthTimeoutError(SwitcherError, TimeoutError):
    """The OAuth callback did not arrive before the deadline."""

    pass


class AcquisitionCancelledError(SwitcherError):
    """The caller cancelled a pending OAuth attempt."""

    pass


class HttpError(SwitcherError):
    """The usage endpoint answered with a non-success status."""

    def __init__(
        self,
        status: int,
        message: str = "",
        retry_after: Optional[float] = None,
    ):
        self.status = status
        self.retry_after = retry_after
        super().__init__(f"HTTP {status}" + (f": {message}" if message else ""))

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class AuthFileWriteError(SwitcherError):
    """The active credential could not be written to the CLI's auth file."""

    pass


class StorageError(SwitcherError):
    """The account catalog could not be persisted."""

    pass
