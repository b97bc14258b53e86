# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Durable catalog of saved accounts.

The catalog file is the source of truth; the in-memory dict is a cache
that load() rehydrates from it. Every mutation is applied to a copy of
the cached state, persisted atomically, and only then swapped in, so a
failed write can never leave memory and disk disagreeing.

File layout (accounts.json):

    {
      "version": 1,
      "active": {"account_id": "...", "activated_at": 1700000000.0} | null,
      "accounts": [
        {"account": {...}, "credential": {...}, "usage": {...} | null},
        ...
      ]
    }
"""

import asyncio
import json
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.errors import NotFoundError, ParseError, StorageError, ValidationError
from ..core.types import (
    Account,
    ActiveMarker,
    AuthMode,
    Credential,
    StoredAccount,
    UsageSnapshot,
)
from ..utils.paths import get_catalog_file
from ..utils.resilient_io import read_text_if_exists, write_json_atomic

lib_logger = logging.getLogger("codex_switcher")

CATALOG_VERSION = 1


def validate_entry(account: Account, credential: Credential) -> None:
    """
    Reject structurally malformed account/credential pairs.

    Raises:
        ValidationError: describing the first problem found
    """
    if not isinstance(account.id, str) or not account.id.strip():
        raise ValidationError("Account id must be a non-empty string")
    if credential.auth_mode not in AuthMode.ALL:
        raise ValidationError(f"Unknown auth mode: {credential.auth_mode!r}")
    if account.auth_mode != credential.auth_mode:
        raise ValidationError(
            f"Account '{account.id}' is {account.auth_mode} but its credential is "
            f"{credential.auth_mode}"
        )
    if not isinstance(credential.payload, dict):
        raise ValidationError(f"Credential payload for '{account.id}' must be an object")
    if credential.auth_mode == AuthMode.CHATGPT and not credential.access_token:
        raise ValidationError(f"ChatGPT credential for '{account.id}' has no access_token")
    if credential.auth_mode == AuthMode.API_KEY and not credential.api_key:
        raise ValidationError(f"API key credential for '{account.id}' has no api_key")
    try:
        json.dumps(credential.payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Credential payload for '{account.id}' is not JSON serializable: {e}"
        ) from e


class CredentialStore:
    """
    Persistent, insertion-ordered map of account id -> StoredAccount.

    Mutations serialize through `lock`. The activation engine shares the
    same lock so catalog writes and marker updates never interleave;
    methods with a `_locked` suffix expect the caller to hold it.

    Example:
        store = CredentialStore("accounts.json")
        await store.load()
        await store.put(account, credential)
        for entry in store.list():
            ...
    """

    def __init__(self, file_path: Optional[Union[str, Path]] = None):
        self.file_path = Path(file_path) if file_path else get_catalog_file()
        self.lock = asyncio.Lock()
        self._entries: Dict[str, StoredAccount] = {}
        self._active: Optional[ActiveMarker] = None
        self._loaded = False

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load(self) -> int:
        """
        Rehydrate the cache from disk. A missing file is an empty catalog.

        Returns:
            Number of accounts loaded

        Raises:
            ParseError: the catalog exists but is malformed
        """
        async with self.lock:
            try:
                text = await asyncio.to_thread(read_text_if_exists, self.file_path)
            except UnicodeDecodeError as e:
                raise ParseError(
                    f"Account catalog {self.file_path} is not valid UTF-8: {e}"
                ) from e
            if text is None:
                self._entries = {}
                self._active = None
            else:
                self._entries, self._active = self._parse(text)
            self._loaded = True
            lib_logger.debug(
                f"Loaded {len(self._entries)} account(s) from {self.file_path}"
            )
            return len(self._entries)

    def _parse(self, text: str):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Account catalog {self.file_path} is corrupt: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("accounts"), list):
            raise ParseError(f"Account catalog {self.file_path} has an unexpected layout")

        entries: Dict[str, StoredAccount] = {}
        try:
            for raw in data["accounts"]:
                entry = StoredAccount.from_dict(raw)
                entries[entry.id] = entry
            active_raw = data.get("active")
            active = ActiveMarker.from_dict(active_raw) if active_raw else None
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(
                f"Account catalog {self.file_path} has a malformed entry: {e}"
            ) from e

        if active and active.account_id not in entries:
            lib_logger.warning(
                f"Catalog marks unknown account '{active.account_id}' active; ignoring"
            )
            active = None
        return entries, active

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, account_id: str) -> StoredAccount:
        """
        Raises:
            NotFoundError: no account with this id
        """
        entry = self._entries.get(account_id)
        if entry is None:
            raise NotFoundError(account_id)
        return entry

    def find(self, account_id: str) -> Optional[StoredAccount]:
        return self._entries.get(account_id)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list(self) -> List[StoredAccount]:
        """All accounts in insertion order."""
        return list(self._entries.values())

    @property
    def active_id(self) -> Optional[str]:
        return self._active.account_id if self._active else None

    @property
    def active_marker(self) -> Optional[ActiveMarker]:
        return self._active

    @property
    def loaded(self) -> bool:
        return self._loaded

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def put(self, account: Account, credential: Credential) -> StoredAccount:
        """
        Insert or replace an account's credential.

        Replacing keeps the entry's position, its original created_at and
        its last usage snapshot.

        Raises:
            ValidationError: malformed account/credential
            StorageError: the catalog could not be written
        """
        async with self.lock:
            return await self.put_locked(account, credential)

    async def put_locked(self, account: Account, credential: Credential) -> StoredAccount:
        validate_entry(account, credential)
        entries = dict(self._entries)
        previous = entries.get(account.id)
        if previous is not None:
            account = replace(account, created_at=previous.account.created_at)
        entry = StoredAccount(
            account=account,
            credential=credential,
            usage=previous.usage if previous else None,
        )
        entries[account.id] = entry
        await self._commit(entries, self._active)
        lib_logger.info(
            f"{'Updated' if previous else 'Saved'} account '{account.id}'"
        )
        return entry

    async def remove(self, account_id: str) -> StoredAccount:
        """
        Delete an account. Clears the active marker if it pointed here.

        The CLI's auth.json is not touched; go through the activation
        engine when the file has to follow.

        Raises:
            NotFoundError: no account with this id
        """
        async with self.lock:
            return await self.remove_locked(account_id)

    async def remove_locked(self, account_id: str) -> StoredAccount:
        if account_id not in self._entries:
            raise NotFoundError(account_id)
        entries = dict(self._entries)
        removed = entries.pop(account_id)
        active = self._active
        if active and active.account_id == account_id:
            active = None
        await self._commit(entries, active)
        lib_logger.info(f"Removed account '{account_id}'")
        return removed

    async def set_active_locked(self, account_id: Optional[str]) -> None:
        """Persist the active marker. Caller must hold `lock`."""
        if account_id is not None and account_id not in self._entries:
            raise NotFoundError(account_id)
        marker = ActiveMarker(account_id=account_id) if account_id else None
        await self._commit(self._entries, marker)

    async def update_usage(self, account_id: str, snapshot: UsageSnapshot) -> bool:
        """
        Replace an account's usage snapshot.

        Returns:
            False if the account no longer exists (removed mid-poll)
        """
        async with self.lock:
            entry = self._entries.get(account_id)
            if entry is None:
                lib_logger.debug(f"Dropping usage for removed account '{account_id}'")
                return False
            account = entry.account
            if snapshot.plan_type and snapshot.plan_type != account.plan_type:
                account = replace(account, plan_type=snapshot.plan_type)
            entries = dict(self._entries)
            entries[account_id] = StoredAccount(
                account=account, credential=entry.credential, usage=snapshot
            )
            await self._commit(entries, self._active)
            return True

    async def mark_usage_stale(
        self, account_id: str, error: str, since: Optional[float] = None
    ) -> bool:
        """
        Flag the current snapshot stale without discarding its numbers.

        Returns:
            False if the account no longer exists
        """
        since = since if since is not None else time.time()
        async with self.lock:
            entry = self._entries.get(account_id)
            if entry is None:
                return False
            current = entry.usage or UsageSnapshot()
            entries = dict(self._entries)
            entries[account_id] = StoredAccount(
                account=entry.account,
                credential=entry.credential,
                usage=current.marked_stale(since, error),
            )
            await self._commit(entries, self._active)
            return True

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _serialize(
        self, entries: Dict[str, StoredAccount], active: Optional[ActiveMarker]
    ) -> Dict[str, Any]:
        return {
            "version": CATALOG_VERSION,
            "active": active.to_dict() if active else None,
            "accounts": [entry.to_dict() for entry in entries.values()],
        }

    async def _commit(
        self, entries: Dict[str, StoredAccount], active: Optional[ActiveMarker]
    ) -> None:
        """Write the new state to disk, then adopt it in memory."""
        data = self._serialize(entries, active)
        try:
            await asyncio.to_thread(write_json_atomic, self.file_path, data)
        except OSError as e:
            lib_logger.error(f"Failed to persist account catalog {self.file_path}: {e}")
            raise StorageError(f"Failed to persist account catalog: {e}") from e
        self._entries = entries
        self._active = active
