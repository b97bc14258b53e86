# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Activation engine: decides which stored credential the Codex CLI sees.

Ordering rule for every switch: write auth.json first, and only once
that write is durable move the active marker. If the file write fails
the marker still names the previous account, which is still what the
file holds.

Deactivation policy: auth.json is deleted. The CLI then reports that it
is logged out instead of silently using an account the switcher no
longer considers active.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .auth_file import AuthFileAdapter
from .core.errors import AuthFileWriteError, NotFoundError, StorageError
from .core.types import Account, Credential, StoredAccount
from .store.catalog import CredentialStore, validate_entry

lib_logger = logging.getLogger("codex_switcher")


@dataclass
class ActivationResult:
    """Outcome of an activate() call."""

    account_id: str
    previous_id: Optional[str]
    changed: bool  # marker moved to a different account
    healed: bool = False  # auth.json had drifted and was rewritten


class ActivationEngine:
    """
    Owns the active marker and mirrors the active credential to disk.

    All operations hold the store's lock, so they serialize with every
    catalog mutation.
    """

    def __init__(self, store: CredentialStore, adapter: AuthFileAdapter):
        self._store = store
        self._adapter = adapter

    @property
    def active_id(self) -> Optional[str]:
        return self._store.active_id

    def active_account(self) -> Optional[StoredAccount]:
        active_id = self._store.active_id
        return self._store.find(active_id) if active_id else None

    async def activate(self, account_id: str) -> ActivationResult:
        """
        Make `account_id` the CLI's credential.

        Re-activating the active account rewrites auth.json only if it no
        longer matches the stored credential.

        Raises:
            NotFoundError: unknown account id
            AuthFileWriteError: auth.json could not be written (marker unchanged)
            StorageError: the marker could not be persisted (auth.json is
                put back to the previous account)
        """
        async with self._store.lock:
            entry = self._store.get(account_id)
            previous_id = self._store.active_id

            if previous_id == account_id:
                in_sync = await asyncio.to_thread(self._adapter.matches, entry.credential)
                if in_sync:
                    lib_logger.debug(f"Account '{account_id}' already active")
                    return ActivationResult(account_id, previous_id, changed=False)
                lib_logger.warning(
                    f"{self._adapter.path} drifted from active account "
                    f"'{account_id}'; rewriting"
                )
                await asyncio.to_thread(self._adapter.write, entry.credential)
                return ActivationResult(account_id, previous_id, changed=False, healed=True)

            await asyncio.to_thread(self._adapter.write, entry.credential)
            try:
                await self._store.set_active_locked(account_id)
            except StorageError:
                previous = self._store.find(previous_id) if previous_id else None
                await self._restore_file(previous)
                raise

        lib_logger.info(
            f"Activated account '{account_id}'"
            + (f" (was '{previous_id}')" if previous_id else "")
        )
        return ActivationResult(account_id, previous_id, changed=True)

    async def put_locked(self, account: Account, credential: Credential) -> StoredAccount:
        """
        Save an account; if it is the active one, auth.json follows.

        For the active account the file is written before the catalog
        commit, and restored to the old credential if the commit fails.
        Caller must hold the store lock.

        Raises:
            AuthFileWriteError: auth.json could not be written (catalog unchanged)
            ValidationError / StorageError: from the store
        """
        if self._store.active_id != account.id:
            return await self._store.put_locked(account, credential)

        validate_entry(account, credential)
        previous = self._store.get(account.id)
        await asyncio.to_thread(self._adapter.write, credential)
        try:
            entry = await self._store.put_locked(account, credential)
        except StorageError:
            await self._restore_file(previous)
            raise
        lib_logger.info(f"Rewrote {self._adapter.path} for active account '{account.id}'")
        return entry

    async def _restore_file(self, entry: Optional[StoredAccount]) -> None:
        """Put auth.json back to `entry`'s credential, or remove it if None."""
        try:
            if entry is None:
                await asyncio.to_thread(self._adapter.clear)
            else:
                await asyncio.to_thread(self._adapter.write, entry.credential)
        except AuthFileWriteError as e:
            lib_logger.error(f"Could not restore {self._adapter.path}: {e}")

    async def deactivate(self) -> Optional[str]:
        """
        Clear the marker and delete auth.json.

        A no-op when nothing is active; an auth.json the switcher did not
        write is never deleted.

        Returns:
            The id that was active, or None
        """
        async with self._store.lock:
            return await self._deactivate_locked()

    async def _deactivate_locked(self) -> Optional[str]:
        previous_id = self._store.active_id
        if previous_id is None:
            # auth.json was not written by us; leave it alone
            return None
        # Marker before file: a marker must never outlive its file
        await self._store.set_active_locked(None)
        await asyncio.to_thread(self._adapter.clear)
        lib_logger.info(f"Deactivated account '{previous_id}'")
        return previous_id

    async def remove(self, account_id: str) -> StoredAccount:
        """
        Delete an account, deactivating it first if it is the active one.

        Raises:
            NotFoundError: unknown account id
        """
        async with self._store.lock:
            if account_id not in self._store:
                raise NotFoundError(account_id)
            if self._store.active_id == account_id:
                await self._deactivate_locked()
            return await self._store.remove_locked(account_id)

    async def verify(self) -> bool:
        """
        Check that auth.json still holds the active credential.

        Returns True when no account is active.
        """
        async with self._store.lock:
            entry = self.active_account()
            if entry is None:
                return True
            return await asyncio.to_thread(self._adapter.matches, entry.credential)
