# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
AccountManager facade.

This is the main public API: it wires the auth file adapter, the
credential store, the activation engine and the usage poller together.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .acquisition.base import Acquisition, AcquisitionKind, run_acquisition
from .acquisition.importer import ImportAcquisition
from .acquisition.oauth import OAuthAcquisition
from .activation import ActivationEngine, ActivationResult
from .auth_file import AuthFileAdapter
from .core.config import SwitcherConfig, load_config
from .core.errors import DuplicateError, NotFoundError
from .core.types import StoredAccount
from .store.catalog import CredentialStore
from .usage.client import UsageClient
from .usage.poller import PollEvent, UsagePoller

lib_logger = logging.getLogger("codex_switcher")


class AccountManager:
    """
    Manage saved Codex accounts and which one the CLI is using.

    Usage:
        manager = AccountManager()
        await manager.initialize()
        entry = await manager.add_account(ImportAcquisition.from_file(path))
        await manager.switch(entry.id)
        ...
        await manager.shutdown()
    """

    def __init__(
        self,
        config: Optional[SwitcherConfig] = None,
        usage_client: Optional[UsageClient] = None,
    ):
        self.config = config or load_config()
        self.adapter = AuthFileAdapter(self.config.auth_file)
        self.store = CredentialStore(self.config.catalog_file)
        self.activation = ActivationEngine(self.store, self.adapter)
        self.usage_client = usage_client or UsageClient(
            url=self.config.usage_url, timeout=self.config.http_timeout
        )
        self.poller = UsagePoller(
            self.store,
            self.usage_client,
            interval=self.config.poll_interval,
            max_concurrency=self.config.max_concurrent_polls,
            backoff_base=self.config.backoff_base,
            backoff_max=self.config.backoff_max,
        )
        self._initialized = False

    async def initialize(self) -> int:
        """
        Load the catalog from disk.

        Returns:
            Number of saved accounts
        """
        count = await self.store.load()
        self._initialized = True
        active_id = self.store.active_id
        if active_id and not await self.activation.verify():
            lib_logger.warning(
                f"{self.adapter.path} no longer matches active account '{active_id}'"
            )
        lib_logger.debug(f"AccountManager initialized with {count} account(s)")
        return count

    @property
    def initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # ACQUISITION
    # =========================================================================

    def oauth_acquisition(
        self,
        on_url: Optional[Callable[[str], Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        label: Optional[str] = None,
    ) -> OAuthAcquisition:
        """Build an OAuth acquisition using the configured port and timeout."""
        return OAuthAcquisition(
            on_url=on_url,
            port=self.config.oauth_port,
            timeout=self.config.oauth_timeout,
            cancel_event=cancel_event,
            label=label,
            http_timeout=self.config.http_timeout,
        )

    def import_acquisition(
        self,
        path: Union[str, Path],
        label: Optional[str] = None,
        overwrite: bool = False,
    ) -> ImportAcquisition:
        return ImportAcquisition.from_file(path, label=label, overwrite=overwrite)

    async def add_account(
        self,
        acquisition: Acquisition,
        activate: bool = False,
        overwrite: bool = False,
    ) -> StoredAccount:
        """
        Run an acquisition and save its result.

        Imports refuse to replace an existing account unless `overwrite`
        is set here or on the acquisition. An OAuth login always replaces
        the stored credential for the same account. If the replaced
        account is the active one, auth.json follows the new credential.

        Raises:
            DuplicateError: import collides with an existing account
            ParseError / OAuthError / ConflictError / OAuthTimeoutError /
            AcquisitionCancelledError: from the acquisition
            ValidationError / StorageError: from the store
            AuthFileWriteError: the active account was replaced but auth.json
                could not be rewritten (catalog unchanged)
        """
        result = await run_acquisition(acquisition)
        account_id = result.account.id

        allow_replace = (
            acquisition.kind == AcquisitionKind.OAUTH
            or overwrite
            or getattr(acquisition, "overwrite", False)
        )

        async with self.store.lock:
            if account_id in self.store and not allow_replace:
                raise DuplicateError(account_id)
            entry = await self.activation.put_locked(result.account, result.credential)

        if activate and self.store.active_id != account_id:
            await self.activation.activate(account_id)
        return entry

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def switch(self, account_id: str) -> ActivationResult:
        """Make `account_id` the account the Codex CLI uses."""
        return await self.activation.activate(account_id)

    async def deactivate(self) -> Optional[str]:
        return await self.activation.deactivate()

    async def remove_account(self, account_id: str) -> StoredAccount:
        return await self.activation.remove(account_id)

    def list_accounts(self) -> List[StoredAccount]:
        return self.store.list()

    def get_account(self, account_id: str) -> StoredAccount:
        return self.store.get(account_id)

    def active_account(self) -> Optional[StoredAccount]:
        return self.activation.active_account()

    @property
    def active_id(self) -> Optional[str]:
        return self.store.active_id

    def current_login(self) -> Optional[Dict[str, Any]]:
        """The parsed auth.json the CLI currently sees, or None."""
        return self.adapter.read()

    def has_active_login(self) -> bool:
        return self.adapter.has_active_login()

    # =========================================================================
    # USAGE
    # =========================================================================

    async def refresh_usage(self, account_id: str) -> PollEvent:
        """
        Poll one account now, ignoring its backoff window.

        Raises:
            NotFoundError: unknown account id
        """
        if account_id not in self.store:
            raise NotFoundError(account_id)
        return await self.poller.poll_account(account_id, force=True)

    async def refresh_all_usage(self) -> List[PollEvent]:
        return await self.poller.poll_cycle()

    def start_polling(self) -> None:
        self.poller.start()

    async def shutdown(self) -> None:
        await self.poller.stop()
        lib_logger.debug("AccountManager shut down")
