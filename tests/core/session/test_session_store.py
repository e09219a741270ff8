"""Tests for the durable session store."""

import json
import os

import pytest

from conftest import ALICE_CREDENTIALS, ALICE_WALLET

from pinwallet.core.session import (
    FileStorage,
    MemoryStorage,
    SessionError,
    SessionSnapshot,
    SessionStore,
)
from pinwallet.providers.custody import CredentialPair, WalletRecord


@pytest.fixture
def snapshot() -> SessionSnapshot:
    return SessionSnapshot("alice1", ALICE_CREDENTIALS, [ALICE_WALLET])


class TestSessionStore:

    def test_save_then_load(self, store, snapshot):
        store.save(snapshot)

        loaded = store.load()
        assert loaded.identity == "alice1"
        assert loaded.credentials == ALICE_CREDENTIALS
        assert loaded.primary_wallet.address == "0xabc"
        assert loaded.primary_wallet.chain_label == "ARC-TESTNET"

    def test_keys_are_prefixed(self, storage, store, snapshot):
        store.save(snapshot)

        assert storage.get_item("test.identity") == "alice1"
        assert storage.get_item("test.session_token") == "t1"
        assert storage.get_item("test.encryption_key") == "k1"
        assert json.loads(storage.get_item("test.wallets"))[0]["id"] == "w1"

    def test_partial_session_is_no_session(self, storage, store, snapshot):
        store.save(snapshot)
        storage.remove_item("test.encryption_key")

        assert store.load() is None
        assert store.has_session() is False

    def test_empty_wallet_list_is_no_session(self, storage, store):
        storage.set_item("test.identity", "alice1")
        storage.set_item("test.session_token", "t1")
        storage.set_item("test.encryption_key", "k1")
        storage.set_item("test.wallets", "[]")

        assert store.load() is None

    def test_corrupt_wallet_json_is_no_session(self, storage, store, snapshot):
        store.save(snapshot)
        storage.set_item("test.wallets", "{not json")

        assert store.wallets() == []
        assert store.load() is None

    def test_incomplete_snapshot_rejected(self, store):
        with pytest.raises(SessionError):
            store.save(SessionSnapshot("alice1", ALICE_CREDENTIALS, []))

    def test_unknown_wallet_fields_round_trip(self, store):
        wallet = WalletRecord.from_api(
            {"id": "w1", "address": "0xabc", "blockchain": "ARC-TESTNET", "accountType": "SCA", "state": "LIVE"}
        )
        store.save(SessionSnapshot("alice1", ALICE_CREDENTIALS, [wallet]))

        restored = store.primary_wallet()
        assert restored.raw["accountType"] == "SCA"
        assert restored.raw["state"] == "LIVE"

    def test_clear_keeps_device_id(self, storage, store, snapshot):
        store.save(snapshot)
        store.device_id = "device-1"

        store.clear()

        assert storage.keys() == ["test.device_id"]
        assert store.device_id == "device-1"

    def test_replace_wallets_requires_session(self, store):
        with pytest.raises(SessionError):
            store.replace_wallets([ALICE_WALLET])

    def test_credentials_reader(self, store, snapshot):
        assert store.credentials() is None
        store.save(snapshot)
        assert store.credentials() == CredentialPair("t1", "k1")


class TestFileStorage:

    def test_persists_across_instances(self, tmp_path, snapshot):
        path = tmp_path / "session.json"
        SessionStore(FileStorage(path), prefix="p").save(snapshot)

        reopened = SessionStore(FileStorage(path), prefix="p")

        assert reopened.load().identity == "alice1"

    def test_file_is_private(self, tmp_path):
        path = tmp_path / "nested" / "session.json"
        FileStorage(path).set_item("k", "v")

        assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)

    def test_unreadable_file_is_empty(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("garbage")

        assert FileStorage(path).get_item("k") is None

    def test_remove_missing_key_is_noop(self, tmp_path):
        storage = FileStorage(tmp_path / "session.json")
        storage.remove_item("missing")

        assert not (tmp_path / "session.json").exists()


def test_memory_storage_initial_items():
    storage = MemoryStorage({"a": "1"})

    assert storage.get_item("a") == "1"
    assert storage.keys() == ["a"]
