# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Background usage poller.

Every tick starts an independent poll task per stored account, bounded
by a global semaphore and sharing one HTTP client. The loop never waits
for those tasks, so one slow account does not hold back the others.
Per account:

    idle -> polling -> updated | stale-retained

A tick for an account that is still polling, or that is inside its
backoff window, is skipped rather than queued. Failures never escape a
poll; they mark the account's last snapshot stale and are reported to
listeners as events.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union

import httpx

from ..core.config import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_MAX_CONCURRENT_POLLS,
    DEFAULT_POLL_INTERVAL,
)
from ..core.errors import HttpError, StorageError
from ..core.types import AuthMode, StoredAccount, UsageSnapshot
from ..store.catalog import CredentialStore
from .client import UsageClient

lib_logger = logging.getLogger("codex_switcher")


class PollStatus:
    UPDATED = "updated"
    STALE = "stale"
    SKIPPED = "skipped"
    UNSUPPORTED = "unsupported"


@dataclass
class PollEvent:
    """Outcome of one poll attempt for one account."""

    account_id: str
    status: str
    snapshot: Optional[UsageSnapshot] = None
    error: Optional[str] = None
    retry_at: Optional[float] = None  # end of the backoff window, if any
    timestamp: float = field(default_factory=time.time)


@dataclass
class CredentialExpired:
    """The usage endpoint rejected an account's token (HTTP 401)."""

    account_id: str
    timestamp: float = field(default_factory=time.time)


PollerEvent = Union[PollEvent, CredentialExpired]
Listener = Callable[[PollerEvent], Any]


@dataclass
class AccountPollState:
    """Scheduling state for one account."""

    failures: int = 0
    next_allowed_at: float = 0.0
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    expired: bool = False


class UsagePoller:
    """
    Periodically refreshes usage snapshots in the store.

    Example:
        poller = UsagePoller(store, UsageClient())
        poller.add_listener(lambda event: print(event))
        poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        store: CredentialStore,
        client: UsageClient,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_concurrency: int = DEFAULT_MAX_CONCURRENT_POLLS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._client = client
        self.interval = interval
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._in_flight: Set[str] = set()
        self._states: Dict[str, AccountPollState] = {}
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def _emit(self, event: PollerEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                lib_logger.error(f"Usage listener {listener!r} failed: {e}")

    # =========================================================================
    # STATE
    # =========================================================================

    def get_state(self, account_id: str) -> AccountPollState:
        state = self._states.get(account_id)
        if state is None:
            state = AccountPollState()
            self._states[account_id] = state
        return state

    def is_polling(self, account_id: str) -> bool:
        return account_id in self._in_flight

    def compute_backoff(self, failures: int, retry_after: Optional[float] = None) -> float:
        """Exponential backoff for the n-th consecutive failure, at least retry_after."""
        if failures <= 0:
            return 0.0
        delay = min(self.backoff_max, self.backoff_base * (2 ** (failures - 1)))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    # =========================================================================
    # POLLING
    # =========================================================================

    async def poll_cycle(self) -> List[PollEvent]:
        """
        Poll every stored account once, concurrently.

        Never raises for per-account failures.
        """
        entries = self._store.list()
        if not entries:
            return []

        if self._client.http_client is not None:
            results = await self._poll_entries(entries, None)
        else:
            # One client per cycle, shared by every account
            async with httpx.AsyncClient(timeout=self._client.timeout) as client:
                results = await self._poll_entries(entries, client)

        events: List[PollEvent] = []
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                lib_logger.error(f"Unexpected error polling '{entry.id}': {result}")
                continue
            events.append(result)

        updated = sum(1 for e in events if e.status == PollStatus.UPDATED)
        lib_logger.debug(f"Usage cycle complete: {updated}/{len(entries)} updated")
        return events

    async def _poll_entries(
        self, entries: List[StoredAccount], client: Optional[httpx.AsyncClient]
    ) -> List[Any]:
        return await asyncio.gather(
            *(self.poll_account(entry.id, client=client) for entry in entries),
            return_exceptions=True,
        )

    async def poll_account(
        self,
        account_id: str,
        client: Optional[httpx.AsyncClient] = None,
        force: bool = False,
    ) -> PollEvent:
        """
        Poll one account now.

        Args:
            account_id: Account to poll
            client: Shared HTTP client, or None to use the UsageClient default
            force: Ignore the backoff window (an in-flight poll still wins)
        """
        entry = self._store.find(account_id)
        if entry is None:
            self._states.pop(account_id, None)
            return await self._finish(
                PollEvent(account_id, PollStatus.SKIPPED, error="Account not found")
            )

        if entry.credential.auth_mode != AuthMode.CHATGPT:
            return await self._finish(
                PollEvent(
                    account_id,
                    PollStatus.UNSUPPORTED,
                    error="Usage info not available for API key accounts",
                )
            )

        if account_id in self._in_flight:
            lib_logger.debug(f"Skipping '{account_id}': previous poll still running")
            return await self._finish(
                PollEvent(account_id, PollStatus.SKIPPED, error="Poll already in flight")
            )

        state = self.get_state(account_id)
        now = self._clock()
        if not force and now < state.next_allowed_at:
            return await self._finish(
                PollEvent(
                    account_id,
                    PollStatus.SKIPPED,
                    error="Backing off",
                    retry_at=state.next_allowed_at,
                )
            )

        self._in_flight.add(account_id)
        try:
            async with self._semaphore:
                try:
                    snapshot = await self._client.fetch_usage(entry.credential, client=client)
                except HttpError as e:
                    return await self._on_failure(account_id, e, e.retry_after)
                except Exception as e:
                    return await self._on_failure(account_id, e, None)
            return await self._on_success(account_id, snapshot)
        finally:
            self._in_flight.discard(account_id)

    async def _on_success(self, account_id: str, snapshot: UsageSnapshot) -> PollEvent:
        state = self.get_state(account_id)
        state.failures = 0
        state.next_allowed_at = 0.0
        state.last_error = None
        state.expired = False

        try:
            stored = await self._store.update_usage(account_id, snapshot)
        except StorageError as e:
            state.last_error = str(e)
            return await self._finish(
                PollEvent(account_id, PollStatus.STALE, snapshot=snapshot, error=str(e))
            )
        if not stored:
            self._states.pop(account_id, None)
            return PollEvent(account_id, PollStatus.SKIPPED, error="Account removed")

        return await self._finish(
            PollEvent(account_id, PollStatus.UPDATED, snapshot=snapshot)
        )

    async def _on_failure(
        self, account_id: str, error: Exception, retry_after: Optional[float]
    ) -> PollEvent:
        now = self._clock()
        state = self.get_state(account_id)
        state.failures += 1
        delay = self.compute_backoff(state.failures, retry_after)
        state.next_allowed_at = now + delay
        message = str(error) or type(error).__name__
        state.last_error = message

        lib_logger.warning(
            f"Usage poll for '{account_id}' failed ({message}); "
            f"backing off {delay:.0f}s"
        )

        if isinstance(error, HttpError) and error.is_unauthorized:
            state.expired = True
            await self._emit(CredentialExpired(account_id, timestamp=now))

        snapshot = None
        try:
            if await self._store.mark_usage_stale(account_id, message, since=now):
                entry = self._store.find(account_id)
                snapshot = entry.usage if entry else None
        except StorageError as e:
            lib_logger.error(f"Could not mark usage stale for '{account_id}': {e}")

        return await self._finish(
            PollEvent(
                account_id,
                PollStatus.STALE,
                snapshot=snapshot,
                error=message,
                retry_at=state.next_allowed_at,
                timestamp=now,
            )
        )

    async def _finish(self, event: PollEvent) -> PollEvent:
        state = self._states.get(event.account_id)
        if state is not None:
            state.last_status = event.status
        await self._emit(event)
        return event

    # =========================================================================
    # SCHEDULER
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        lib_logger.debug(f"Usage poller started (interval {self.interval:.0f}s)")

    async def stop(self) -> None:
        """Stop the loop and cancel any polls still running."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop_event = None
        lib_logger.debug("Usage poller stopped")

    async def _run(self) -> None:
        stop_event = self._stop_event
        if self._client.http_client is not None:
            await self._schedule(stop_event, None)
        else:
            # One client for the poller's lifetime, shared by every account
            async with httpx.AsyncClient(timeout=self._client.timeout) as client:
                await self._schedule(stop_event, client)

    async def _schedule(
        self, stop_event: asyncio.Event, client: Optional[httpx.AsyncClient]
    ) -> None:
        try:
            while not stop_event.is_set():
                try:
                    await self._tick(client)
                except Exception as e:
                    lib_logger.error(f"Usage poll tick failed: {e}")
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._cancel_polls()

    async def _tick(self, client: Optional[httpx.AsyncClient]) -> None:
        """
        Start a poll for every account that has none running.

        Does not wait for the polls; a slow account never delays the next
        tick for the others.
        """
        for entry in self._store.list():
            if entry.id in self._tasks:
                lib_logger.debug(f"Skipping '{entry.id}': previous poll still running")
                await self._finish(
                    PollEvent(entry.id, PollStatus.SKIPPED, error="Poll already in flight")
                )
                continue
            task = asyncio.create_task(self.poll_account(entry.id, client=client))
            self._tasks[entry.id] = task
            task.add_done_callback(
                lambda t, account_id=entry.id: self._poll_done(account_id, t)
            )

    def _poll_done(self, account_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(account_id) is task:
            del self._tasks[account_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            lib_logger.error(f"Unexpected error polling '{account_id}': {error}")

    async def _cancel_polls(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
