"""Tests for importing auth.json files and the manager's add_account policy."""

import json

import pytest

from codex_switcher.acquisition.base import AcquisitionKind, normalize_auth_payload
from codex_switcher.acquisition.importer import ImportAcquisition, parse_auth_blob
from codex_switcher.auth_file import AuthFileAdapter
from codex_switcher.core.errors import (
    AuthFileWriteError,
    DuplicateError,
    ParseError,
    StorageError,
)
from codex_switcher.core.types import AuthMode
from codex_switcher.manager import AccountManager
from codex_switcher.store.catalog import CredentialStore

from conftest import make_auth_payload


class TestParse:
    """Blob parsing and normalization."""

    def test_chatgpt_login(self):
        result = ImportAcquisition(json.dumps(make_auth_payload("Alice@Example.com"))).parse()
        assert result.account.id == "alice@example.com"
        assert result.account.auth_mode == AuthMode.CHATGPT
        assert result.account.plan_type == "plus"
        assert result.credential.chatgpt_account_id == "acct-123"
        assert result.credential.refresh_token == "rt-Alice@Example.com"

    def test_api_key_wins_over_tokens(self):
        payload = make_auth_payload("alice@example.com")
        payload["OPENAI_API_KEY"] = "sk-test-1234567890"
        result = ImportAcquisition(payload).parse()
        assert result.account.auth_mode == AuthMode.API_KEY
        assert result.account.id.startswith("apikey-")
        assert result.credential.api_key == "sk-test-1234567890"

    def test_bytes_with_bom(self):
        raw = b"\xef\xbb\xbf" + json.dumps(make_auth_payload("a@example.com")).encode()
        assert parse_auth_blob(raw)["tokens"]["account_id"] == "acct-123"

    @pytest.mark.parametrize(
        "blob",
        [
            "{not json",
            "[1, 2, 3]",
            json.dumps({"OPENAI_API_KEY": None, "tokens": None}),
            json.dumps({"tokens": {"id_token": None, "refresh_token": "x"}}),
            json.dumps({"tokens": "nope"}),
        ],
    )
    def test_malformed_blobs(self, blob):
        with pytest.raises(ParseError):
            ImportAcquisition(blob).parse()

    def test_from_missing_file(self, tmp_path):
        with pytest.raises(ParseError):
            ImportAcquisition.from_file(tmp_path / "nope.json")

    def test_payload_kept_verbatim(self):
        payload = make_auth_payload("alice@example.com")
        payload["extra_field"] = {"kept": True}
        result = normalize_auth_payload(payload)
        assert list(result.credential.payload) == [
            "OPENAI_API_KEY",
            "tokens",
            "last_refresh",
            "extra_field",
        ]


class TestAddAccount:
    """Duplicate handling when an import is persisted."""

    @pytest.fixture
    async def manager(self, config):
        manager = AccountManager(config)
        await manager.initialize()
        yield manager
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_duplicate_import_rejected(self, manager, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text(json.dumps(make_auth_payload("alice@example.com")))
        await manager.add_account(ImportAcquisition.from_file(path))

        with pytest.raises(DuplicateError) as excinfo:
            await manager.add_account(ImportAcquisition.from_file(path))
        assert excinfo.value.account_id == "alice@example.com"
        assert len(manager.list_accounts()) == 1
        stored = manager.get_account("alice@example.com").credential
        assert stored.refresh_token == "rt-alice@example.com"

    @pytest.mark.asyncio
    async def test_overwrite_replaces_credential(self, manager):
        await manager.add_account(ImportAcquisition(make_auth_payload("alice@example.com")))
        fresh = make_auth_payload("alice@example.com", access_token="fresh-token")

        entry = await manager.add_account(ImportAcquisition(fresh), overwrite=True)

        assert entry.credential.access_token == "fresh-token"
        assert len(manager.list_accounts()) == 1

    @pytest.mark.asyncio
    async def test_overwrite_of_active_account_updates_file(self, manager):
        await manager.add_account(
            ImportAcquisition(make_auth_payload("alice@example.com")), activate=True
        )
        fresh = make_auth_payload("alice@example.com", access_token="fresh-token")
        await manager.add_account(ImportAcquisition(fresh, overwrite=True))

        login = manager.current_login()
        assert login["tokens"]["access_token"] == "fresh-token"

    @pytest.mark.asyncio
    async def test_import_with_activate(self, manager):
        entry = await manager.add_account(
            ImportAcquisition(make_auth_payload("alice@example.com")), activate=True
        )
        assert manager.active_id == entry.id
        assert manager.has_active_login()
        assert manager.active_account().id == entry.id

    @pytest.mark.asyncio
    async def test_catalog_survives_restart(self, manager, config):
        await manager.add_account(ImportAcquisition(make_auth_payload("alice@example.com")))
        await manager.add_account(
            ImportAcquisition(make_auth_payload("bob@example.com", account_id="b")),
            activate=True,
        )

        restarted = AccountManager(config)
        assert await restarted.initialize() == 2
        assert restarted.active_id == "bob@example.com"
        assert restarted.get_account("alice@example.com").account.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_failed_file_write_keeps_active_account_consistent(
        self, manager, monkeypatch
    ):
        await manager.add_account(
            ImportAcquisition(make_auth_payload("alice@example.com")), activate=True
        )
        old_bytes = manager.config.auth_file.read_bytes()

        def failing_write(self, credential):
            raise AuthFileWriteError("injected failure")

        monkeypatch.setattr(AuthFileAdapter, "write", failing_write)
        fresh = make_auth_payload("alice@example.com", access_token="fresh-token")
        with pytest.raises(AuthFileWriteError):
            await manager.add_account(ImportAcquisition(fresh, overwrite=True))

        assert manager.active_id == "alice@example.com"
        assert manager.get_account("alice@example.com").credential.access_token != "fresh-token"
        assert manager.config.auth_file.read_bytes() == old_bytes
        assert await manager.activation.verify()

    @pytest.mark.asyncio
    async def test_failed_catalog_write_restores_active_file(self, manager, monkeypatch):
        await manager.add_account(
            ImportAcquisition(make_auth_payload("alice@example.com")), activate=True
        )
        old_bytes = manager.config.auth_file.read_bytes()

        async def failing_put(self, account, credential):
            raise StorageError("disk full")

        monkeypatch.setattr(CredentialStore, "put_locked", failing_put)
        fresh = make_auth_payload("alice@example.com", access_token="fresh-token")
        with pytest.raises(StorageError):
            await manager.add_account(ImportAcquisition(fresh, overwrite=True))

        assert manager.config.auth_file.read_bytes() == old_bytes
        assert await manager.activation.verify()

    def test_kinds(self):
        assert ImportAcquisition({}).kind == AcquisitionKind.IMPORT
