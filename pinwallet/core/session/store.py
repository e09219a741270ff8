"""
Durable session store.

Keeps the session snapshot as four independent string entries (identity,
session token, encryption key, wallet-list JSON) in a key/value storage that
survives process restarts. A resume needs all four; any subset counts as no
session. The device id lives under its own key and outlives disconnects.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from pinwallet.config import settings
from pinwallet.providers.custody import CredentialPair, CustodyError, WalletRecord

from .models import SessionError, SessionSnapshot


logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """String-keyed durable storage."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)


class FileStorage(KeyValueStorage):
    """
    JSON object on disk, rewritten atomically on every change.

    The file is read once on construction; this process is the only writer.
    """

    def __init__(self, path: os.PathLike) -> None:
        self.path = Path(path).expanduser()
        self._items: Dict[str, str] = self._read()

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._write()

    def remove_item(self, key: str) -> None:
        if key in self._items:
            del self._items[key]
            self._write()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable session file {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._items, handle)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class SessionStore:
    """
    Single-writer persistence of the session snapshot.

    Only the onboarding state machine and explicit disconnects write; the
    connector and balance readers only read.
    """

    IDENTITY = "identity"
    SESSION_TOKEN = "session_token"
    ENCRYPTION_KEY = "encryption_key"
    WALLETS = "wallets"
    DEVICE_ID = "device_id"

    SESSION_FIELDS = (IDENTITY, SESSION_TOKEN, ENCRYPTION_KEY, WALLETS)

    def __init__(self, storage: Optional[KeyValueStorage] = None, prefix: Optional[str] = None) -> None:
        self.storage = storage or MemoryStorage()
        self.prefix = prefix if prefix is not None else settings.session_key_prefix

    def key(self, name: str) -> str:
        return f"{self.prefix}.{name}" if self.prefix else name

    def _get(self, name: str) -> Optional[str]:
        return self.storage.get_item(self.key(name))

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load(self) -> Optional[SessionSnapshot]:
        """Return the persisted snapshot, or None unless every field is present."""
        identity = self._get(self.IDENTITY)
        token = self._get(self.SESSION_TOKEN)
        key = self._get(self.ENCRYPTION_KEY)
        wallets = self.wallets()
        if not (identity and token and key and wallets):
            return None
        return SessionSnapshot(
            identity=identity,
            credentials=CredentialPair(session_token=token, encryption_key=key),
            wallets=wallets,
        )

    def save(self, snapshot: SessionSnapshot) -> None:
        if not snapshot.is_complete:
            raise SessionError("Refusing to persist an incomplete session snapshot")

        # Wallets go last so a crash mid-save never leaves a resumable session
        self.storage.set_item(self.key(self.IDENTITY), snapshot.identity)
        self.storage.set_item(self.key(self.SESSION_TOKEN), snapshot.credentials.session_token)
        self.storage.set_item(self.key(self.ENCRYPTION_KEY), snapshot.credentials.encryption_key)
        self.storage.set_item(
            self.key(self.WALLETS),
            json.dumps([wallet.to_dict() for wallet in snapshot.wallets]),
        )
        logger.info(f"Session saved for user {snapshot.identity}")

    def replace_wallets(self, wallets: List[WalletRecord]) -> None:
        """Overwrite the stored wallet list of an existing session."""
        if not wallets:
            raise SessionError("Refusing to persist an empty wallet list")
        if self.load() is None:
            raise SessionError("No persisted session to update")
        self.storage.set_item(self.key(self.WALLETS), json.dumps([w.to_dict() for w in wallets]))

    def clear(self) -> None:
        for name in self.SESSION_FIELDS:
            self.storage.remove_item(self.key(name))
        logger.info("Session cleared")

    def has_session(self) -> bool:
        return self.load() is not None

    # ------------------------------------------------------------------
    # Field readers
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Optional[str]:
        return self._get(self.IDENTITY)

    @property
    def session_token(self) -> Optional[str]:
        return self._get(self.SESSION_TOKEN)

    @property
    def encryption_key(self) -> Optional[str]:
        return self._get(self.ENCRYPTION_KEY)

    def credentials(self) -> Optional[CredentialPair]:
        token, key = self.session_token, self.encryption_key
        if not (token and key):
            return None
        return CredentialPair(session_token=token, encryption_key=key)

    def wallets(self) -> List[WalletRecord]:
        raw = self._get(self.WALLETS)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                return []
            return [WalletRecord.from_api(entry) for entry in entries if isinstance(entry, dict)]
        except (ValueError, CustodyError):
            logger.warning("Stored wallet list is not valid JSON; ignoring it")
            return []

    def primary_wallet(self) -> Optional[WalletRecord]:
        wallets = self.wallets()
        return wallets[0] if wallets else None

    # ------------------------------------------------------------------
    # Device id
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> Optional[str]:
        return self._get(self.DEVICE_ID)

    @device_id.setter
    def device_id(self, value: str) -> None:
        self.storage.set_item(self.key(self.DEVICE_ID), value)


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore(FileStorage(settings.session_store_path))
    return _session_store
