"""Tests for switching the account the Codex CLI sees."""

import json

import pytest

from codex_switcher.acquisition.base import normalize_auth_payload
from codex_switcher.activation import ActivationEngine
from codex_switcher.auth_file import AuthFileAdapter, render_payload
from codex_switcher.core.errors import (
    AuthFileWriteError,
    NotFoundError,
    ParseError,
    StorageError,
)
from codex_switcher.store.catalog import CredentialStore

from conftest import make_auth_payload


async def _add(store, email, **kwargs):
    result = normalize_auth_payload(make_auth_payload(email, **kwargs))
    return await store.put(result.account, result.credential)


@pytest.fixture
def engine(store, adapter):
    return ActivationEngine(store, adapter)


class TestActivate:
    """activate() writes the file first, then moves the marker."""

    @pytest.mark.asyncio
    async def test_file_matches_stored_credential(self, store, adapter, engine):
        entry = await _add(store, "alice@example.com")
        result = await engine.activate("alice@example.com")

        assert result.changed
        assert result.previous_id is None
        assert adapter.path.read_text(encoding="utf-8") == render_payload(
            entry.credential.payload
        )
        assert json.loads(adapter.path.read_text())["tokens"]["account_id"] == "acct-123"
        assert store.active_id == "alice@example.com"

    @pytest.mark.asyncio
    async def test_switch_back_restores_bytes(self, store, adapter, engine):
        """A -> B -> A leaves auth.json byte-identical to the first activation."""
        await _add(store, "alice@example.com")
        await _add(store, "bob@example.com", account_id="acct-bob")

        await engine.activate("alice@example.com")
        first = adapter.path.read_bytes()
        await engine.activate("bob@example.com")
        assert adapter.path.read_bytes() != first
        await engine.activate("alice@example.com")

        assert adapter.path.read_bytes() == first

    @pytest.mark.asyncio
    async def test_unknown_account(self, engine):
        with pytest.raises(NotFoundError):
            await engine.activate("nobody@example.com")

    @pytest.mark.asyncio
    async def test_write_failure_keeps_marker_and_retry_succeeds(
        self, store, adapter, engine, monkeypatch
    ):
        """If auth.json cannot be written the previous account stays active."""
        await _add(store, "alice@example.com")
        await _add(store, "bob@example.com", account_id="acct-bob")
        await engine.activate("alice@example.com")
        alice_bytes = adapter.path.read_bytes()

        real_write = AuthFileAdapter.write

        def failing_write(self, credential):
            raise AuthFileWriteError("injected failure")

        monkeypatch.setattr(AuthFileAdapter, "write", failing_write)
        with pytest.raises(AuthFileWriteError):
            await engine.activate("bob@example.com")

        assert store.active_id == "alice@example.com"
        assert adapter.path.read_bytes() == alice_bytes
        reloaded = CredentialStore(store.file_path)
        await reloaded.load()
        assert reloaded.active_id == "alice@example.com"

        monkeypatch.setattr(AuthFileAdapter, "write", real_write)
        result = await engine.activate("bob@example.com")
        assert result.changed
        assert store.active_id == "bob@example.com"
        assert adapter.matches(store.get("bob@example.com").credential)

    @pytest.mark.asyncio
    async def test_reactivate_heals_drifted_file(self, store, adapter, engine):
        await _add(store, "alice@example.com")
        await engine.activate("alice@example.com")
        adapter.path.write_text('{"OPENAI_API_KEY": "sk-someone-else"}')

        assert not await engine.verify()
        result = await engine.activate("alice@example.com")

        assert result.healed
        assert not result.changed
        assert await engine.verify()

    @pytest.mark.asyncio
    async def test_reactivate_in_sync_is_noop(self, store, engine):
        await _add(store, "alice@example.com")
        await engine.activate("alice@example.com")
        result = await engine.activate("alice@example.com")
        assert not result.changed
        assert not result.healed


class TestDeactivateAndRemove:
    """Deactivation deletes auth.json; removal of the active account deactivates."""

    @pytest.mark.asyncio
    async def test_deactivate_deletes_file(self, store, adapter, engine):
        await _add(store, "alice@example.com")
        await engine.activate("alice@example.com")

        assert await engine.deactivate() == "alice@example.com"
        assert store.active_id is None
        assert not adapter.path.exists()
        assert not adapter.has_active_login()

    @pytest.mark.asyncio
    async def test_deactivate_without_active_leaves_foreign_file(self, adapter, engine):
        adapter.path.write_text('{"OPENAI_API_KEY": "sk-from-the-cli"}')
        assert await engine.deactivate() is None
        assert adapter.path.exists()

    @pytest.mark.asyncio
    async def test_remove_active_account_then_activate_other(self, store, adapter, engine):
        """alice active, remove alice: nothing active, no file; then bob can be activated."""
        await _add(store, "alice@example.com")
        await _add(store, "bob@example.com", account_id="acct-bob")
        await engine.activate("alice@example.com")

        removed = await engine.remove("alice@example.com")

        assert removed.id == "alice@example.com"
        assert store.active_id is None
        assert not adapter.path.exists()
        assert [e.id for e in store.list()] == ["bob@example.com"]

        await engine.activate("bob@example.com")
        assert store.active_id == "bob@example.com"
        assert adapter.matches(store.get("bob@example.com").credential)

    @pytest.mark.asyncio
    async def test_switch_to_bob_then_remove_bob(self, store, adapter, engine):
        """alice active; activate bob; remove bob: no active account and no auth.json."""
        await _add(store, "alice")
        await _add(store, "bob", account_id="acct-bob")
        await engine.activate("alice")

        await engine.activate("bob")
        on_disk = json.loads(adapter.path.read_text())
        bob = store.get("bob").credential
        assert on_disk["tokens"]["access_token"] == bob.access_token
        assert on_disk["tokens"]["refresh_token"] == "rt-bob"
        assert on_disk["tokens"]["account_id"] == "acct-bob"
        assert store.active_id == "bob"

        await engine.remove("bob")

        assert store.active_id is None
        assert not adapter.path.exists()
        assert [e.id for e in store.list()] == ["alice"]

    @pytest.mark.asyncio
    async def test_remove_inactive_account_keeps_file(self, store, adapter, engine):
        await _add(store, "alice@example.com")
        await _add(store, "bob@example.com", account_id="acct-bob")
        await engine.activate("alice@example.com")
        before = adapter.path.read_bytes()

        await engine.remove("bob@example.com")

        assert store.active_id == "alice@example.com"
        assert adapter.path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_remove_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.remove("nobody@example.com")


class TestMarkerAndFileAgree:
    """auth.json and the active marker never disagree after a failure."""

    @pytest.mark.asyncio
    async def test_marker_write_failure_restores_previous_file(
        self, store, adapter, engine, monkeypatch
    ):
        await _add(store, "alice@example.com")
        await _add(store, "bob@example.com", account_id="acct-bob")
        await engine.activate("alice@example.com")
        alice_bytes = adapter.path.read_bytes()

        async def failing_set_active(self, account_id):
            raise StorageError("disk full")

        monkeypatch.setattr(CredentialStore, "set_active_locked", failing_set_active)
        with pytest.raises(StorageError):
            await engine.activate("bob@example.com")

        assert store.active_id == "alice@example.com"
        assert adapter.path.read_bytes() == alice_bytes
        assert await engine.verify()

    @pytest.mark.asyncio
    async def test_marker_write_failure_with_nothing_active_removes_file(
        self, store, adapter, engine, monkeypatch
    ):
        await _add(store, "alice@example.com")

        async def failing_set_active(self, account_id):
            raise StorageError("disk full")

        monkeypatch.setattr(CredentialStore, "set_active_locked", failing_set_active)
        with pytest.raises(StorageError):
            await engine.activate("alice@example.com")

        assert store.active_id is None
        assert not adapter.path.exists()

    @pytest.mark.asyncio
    async def test_undecodable_file_is_drift(self, store, adapter, engine):
        """A non-UTF-8 auth.json is healed on re-activation, not a crash."""
        await _add(store, "alice@example.com")
        await engine.activate("alice@example.com")
        adapter.path.write_bytes(b"\xff\xfe garbage")

        assert not adapter.has_active_login()
        with pytest.raises(ParseError):
            adapter.read()
        assert not await engine.verify()

        result = await engine.activate("alice@example.com")

        assert result.healed
        assert await engine.verify()
        assert adapter.has_active_login()
