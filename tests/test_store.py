"""Tests for the persistent account catalog."""

import json
import os
import stat

import pytest

from codex_switcher.acquisition.base import normalize_auth_payload
from codex_switcher.core.errors import NotFoundError, ParseError, StorageError, ValidationError
from codex_switcher.core.types import (
    AuthMode,
    Credential,
    UsageSnapshot,
    UsageWindow,
    WindowKind,
)
from codex_switcher.store.catalog import CredentialStore, validate_entry

from conftest import make_auth_payload


def _entry(email, **kwargs):
    result = normalize_auth_payload(make_auth_payload(email, **kwargs))
    return result.account, result.credential


class TestDurability:
    """The catalog survives a fresh process."""

    @pytest.mark.asyncio
    async def test_round_trip_through_new_instance(self, store, config):
        """Accounts, credentials and the active marker are rehydrated."""
        alice = _entry("alice@example.com")
        bob = _entry("bob@example.com", account_id="acct-bob")
        await store.put(*alice)
        await store.put(*bob)
        async with store.lock:
            await store.set_active_locked("bob@example.com")

        reloaded = CredentialStore(config.catalog_file)
        assert await reloaded.load() == 2
        assert [e.id for e in reloaded.list()] == ["alice@example.com", "bob@example.com"]
        assert reloaded.active_id == "bob@example.com"
        assert reloaded.get("alice@example.com").credential.payload == alice[1].payload
        assert reloaded.get("bob@example.com").account.plan_type == "plus"

    @pytest.mark.asyncio
    async def test_missing_file_is_empty_catalog(self, config):
        store = CredentialStore(config.catalog_file)
        assert await store.load() == 0
        assert store.list() == []
        assert store.active_id is None

    @pytest.mark.asyncio
    async def test_catalog_is_private(self, store, config):
        await store.put(*_entry("alice@example.com"))
        mode = stat.S_IMODE(os.stat(config.catalog_file).st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_corrupt_catalog_raises_parse_error(self, config):
        config.catalog_file.parent.mkdir(parents=True, exist_ok=True)
        config.catalog_file.write_text("{not json")
        with pytest.raises(ParseError):
            await CredentialStore(config.catalog_file).load()

    @pytest.mark.asyncio
    async def test_marker_for_unknown_account_is_dropped(self, config):
        config.catalog_file.parent.mkdir(parents=True, exist_ok=True)
        config.catalog_file.write_text(
            json.dumps(
                {
                    "version": 1,
                    "active": {"account_id": "ghost", "activated_at": 1.0},
                    "accounts": [],
                }
            )
        )
        store = CredentialStore(config.catalog_file)
        await store.load()
        assert store.active_id is None


class TestMutations:
    """put / remove / usage updates."""

    @pytest.mark.asyncio
    async def test_replace_keeps_position_created_at_and_usage(self, store):
        account, credential = _entry("alice@example.com")
        await store.put(account, credential)
        await store.put(*_entry("bob@example.com"))
        snapshot = UsageSnapshot(
            short=UsageWindow(kind=WindowKind.SHORT, used_percent=40), fetched_at=1.0
        )
        await store.update_usage("alice@example.com", snapshot)

        new_account, new_credential = _entry("alice@example.com", access_token="fresh")
        entry = await store.put(new_account, new_credential)

        assert [e.id for e in store.list()] == ["alice@example.com", "bob@example.com"]
        assert entry.account.created_at == account.created_at
        assert entry.credential.access_token == "fresh"
        assert entry.usage.short.used_percent == 40

    @pytest.mark.asyncio
    async def test_remove_unknown_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.remove("nobody@example.com")

    @pytest.mark.asyncio
    async def test_remove_clears_marker_of_removed_account(self, store):
        await store.put(*_entry("alice@example.com"))
        async with store.lock:
            await store.set_active_locked("alice@example.com")
        await store.remove("alice@example.com")
        assert store.active_id is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_update_usage_for_removed_account_is_dropped(self, store):
        assert await store.update_usage("gone@example.com", UsageSnapshot()) is False

    @pytest.mark.asyncio
    async def test_failed_write_leaves_memory_untouched(self, store, monkeypatch):
        """A catalog write failure must not change the cached state."""
        await store.put(*_entry("alice@example.com"))

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("codex_switcher.store.catalog.write_json_atomic", boom)
        with pytest.raises(StorageError):
            await store.put(*_entry("bob@example.com"))
        assert [e.id for e in store.list()] == ["alice@example.com"]


class TestValidation:
    """Structurally malformed entries are rejected before any write."""

    def test_missing_access_token(self):
        account, credential = _entry("alice@example.com")
        credential.access_token = None
        with pytest.raises(ValidationError):
            validate_entry(account, credential)

    def test_mode_mismatch(self):
        account, _ = _entry("alice@example.com")
        credential = Credential(
            auth_mode=AuthMode.API_KEY, payload={"OPENAI_API_KEY": "sk-x"}, api_key="sk-x"
        )
        with pytest.raises(ValidationError):
            validate_entry(account, credential)

    def test_unknown_mode(self):
        account, credential = _entry("alice@example.com")
        credential.auth_mode = "cookie"
        with pytest.raises(ValidationError):
            validate_entry(account, credential)

    @pytest.mark.asyncio
    async def test_put_rejects_invalid_entry(self, store):
        account, credential = _entry("alice@example.com")
        account.id = "  "
        with pytest.raises(ValidationError):
            await store.put(account, credential)
        assert len(store) == 0
