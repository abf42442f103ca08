"""Encrypted API key storage with change notifications."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Literal

from ..utils.events import ListenerList
from .settings import SecretVault, default_settings_dir

__all__ = ["API_KEY_ENV", "CredentialChange", "CredentialStore", "mask_api_key"]

LOGGER = logging.getLogger(__name__)

API_KEY_ENV = "MARKPILOT_API_KEY"
_API_KEY_PREFIX = "sk-"
_CIPHERTEXT_FIELD = "api_key_ciphertext"

ChangeAction = Literal["stored", "deleted"]


@dataclass(slots=True, frozen=True)
class CredentialChange:
    """Payload delivered to credential subscribers."""

    action: ChangeAction
    has_key: bool


def mask_api_key(api_key: str) -> str:
    """Return a display-safe form such as ``sk-proj...****...abcd``."""

    if len(api_key) < 12:
        return "sk-...****"
    return f"{api_key[:7]}...****...{api_key[-4:]}"


class CredentialStore:
    """Stores a single OpenAI API key encrypted on disk.

    ``MARKPILOT_API_KEY`` takes precedence over the stored key when set. A
    stored entry that cannot be parsed or decrypted is deleted and reported as
    absent so the user is prompted for a fresh key.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        directory = default_settings_dir()
        self._path = path or (directory / "credentials.json")
        self._vault = vault or SecretVault(key_path=self._path.parent / "settings.key")
        self._listeners: ListenerList[[CredentialChange]] = ListenerList("credentials")

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def store_api_key(self, api_key: str) -> None:
        """Encrypt and persist ``api_key``.

        Raises:
            ValueError: if the key is blank or lacks the ``sk-`` prefix.
        """

        key = (api_key or "").strip()
        if not key:
            raise ValueError("API key cannot be empty")
        if not key.startswith(_API_KEY_PREFIX):
            raise ValueError("Invalid OpenAI API key format (must start with 'sk-')")
        payload = {_CIPHERTEXT_FIELD: self._vault.encrypt(key), "stored_at": time.time()}
        self._write(payload)
        LOGGER.info("API key stored (%s)", mask_api_key(key))
        self._listeners.notify(CredentialChange(action="stored", has_key=True))

    def get_api_key(self) -> str | None:
        env_key = os.environ.get(API_KEY_ENV)
        if env_key and env_key.strip():
            return env_key.strip()
        payload = self._read()
        if payload is None:
            return None
        token = payload.get(_CIPHERTEXT_FIELD)
        if not isinstance(token, str) or not token:
            LOGGER.warning("Credential file %s has no ciphertext; removing it", self._path)
            self._discard()
            return None
        try:
            key = self._vault.decrypt(token)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt stored API key (%s); removing it", exc)
            self._discard()
            return None
        return key or None

    def has_api_key(self) -> bool:
        return self.get_api_key() is not None

    def delete_api_key(self) -> None:
        self._discard()
        LOGGER.info("API key deleted")
        self._listeners.notify(CredentialChange(action="deleted", has_key=False))

    def masked_key(self) -> str | None:
        key = self.get_api_key()
        return mask_api_key(key) if key else None

    def subscribe(self, listener: Callable[[CredentialChange], None]) -> Callable[[], None]:
        """Call ``listener`` after every store or delete; returns an unsubscribe callable."""

        return self._listeners.subscribe(listener)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _read(self) -> Dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("Credential file %s is corrupted (%s); removing it", self._path, exc)
            self._discard()
            return None
        if not isinstance(payload, dict):
            LOGGER.warning("Credential file %s does not hold an object; removing it", self._path)
            self._discard()
            return None
        return payload

    def _write(self, payload: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._path)

    def _discard(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
