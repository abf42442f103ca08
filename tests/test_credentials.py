"""Tests for the encrypted credential store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from markpilot.services.credentials import CredentialChange, CredentialStore, mask_api_key
from markpilot.services.settings import SecretVault

_KEY = "sk-proj-abcdefghijklmnop1234"


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MARKPILOT_API_KEY", raising=False)


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "credentials.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_store_and_get_roundtrip(store: CredentialStore) -> None:
    store.store_api_key(f"  {_KEY} ")

    assert store.get_api_key() == _KEY
    assert store.has_api_key()
    assert _KEY not in store.path.read_text(encoding="utf-8")


@pytest.mark.parametrize("key", ["", "   ", "pk-live-123", "not-a-key"])
def test_invalid_keys_are_rejected(store: CredentialStore, key: str) -> None:
    with pytest.raises(ValueError):
        store.store_api_key(key)
    assert not store.has_api_key()


def test_delete_removes_key(store: CredentialStore) -> None:
    store.store_api_key(_KEY)

    store.delete_api_key()

    assert store.get_api_key() is None
    assert not store.path.exists()


def test_corrupted_file_is_discarded(store: CredentialStore) -> None:
    store.path.write_text("{broken", encoding="utf-8")

    assert store.get_api_key() is None
    assert not store.path.exists()


def test_undecryptable_entry_is_discarded(store: CredentialStore, tmp_path: Path) -> None:
    foreign = SecretVault(key_path=tmp_path / "other.key").encrypt(_KEY)
    store.path.write_text(json.dumps({"api_key_ciphertext": foreign}), encoding="utf-8")

    assert store.get_api_key() is None
    assert not store.path.exists()


def test_environment_key_takes_precedence(store: CredentialStore, monkeypatch: pytest.MonkeyPatch) -> None:
    store.store_api_key(_KEY)
    monkeypatch.setenv("MARKPILOT_API_KEY", "sk-from-env")

    assert store.get_api_key() == "sk-from-env"


def test_masked_key(store: CredentialStore) -> None:
    assert store.masked_key() is None
    store.store_api_key(_KEY)

    assert store.masked_key() == "sk-proj...****...1234"
    assert mask_api_key("sk-short") == "sk-...****"


def test_subscribers_hear_store_and_delete(store: CredentialStore) -> None:
    changes: list[CredentialChange] = []
    unsubscribe = store.subscribe(changes.append)

    store.store_api_key(_KEY)
    store.delete_api_key()
    unsubscribe()
    store.store_api_key(_KEY)

    assert changes == [
        CredentialChange(action="stored", has_key=True),
        CredentialChange(action="deleted", has_key=False),
    ]


def test_rejected_key_does_not_notify(store: CredentialStore) -> None:
    changes: list[CredentialChange] = []
    store.subscribe(changes.append)

    with pytest.raises(ValueError):
        store.store_api_key("bogus")

    assert changes == []
