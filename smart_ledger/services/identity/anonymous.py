"""
Anonymous Client Identity

Used with the REST backend, which has no server-side sessions. The
client generates a random RFC 4122 version-4 identifier once, keeps it
under a fixed key in local storage, and reuses it on every start.
"""

import json
from pathlib import Path
from typing import Optional
from uuid import uuid4

import structlog

from smart_ledger.config import get_settings
from smart_ledger.models.identity import Identity
from smart_ledger.services.identity.interface import (
    IdentityListener,
    IdentityProviderInterface,
    Unsubscribe,
)


logger = structlog.get_logger(__name__)

CLIENT_ID_KEY = "smart_ledger_client_id"


class LocalStorage:
    """
    Tiny persistent key-value store backed by one JSON file.

    Mirrors the browser's localStorage: string keys, string values,
    missing keys read as None.
    """

    def __init__(self, path: Optional[str | Path] = None):
        self._path = Path(path or get_settings().app.local_storage_path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("local_storage_unreadable", path=str(self._path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def remove_item(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class AnonymousIdentityProvider(IdentityProviderInterface):
    """
    Identity from a locally generated client id.

    The identity never changes during a session, so listeners are
    accepted but never called. Sign-out keeps the id: forgetting it
    would orphan every record saved under it.
    """

    supports_sign_in = False

    def __init__(self, storage: Optional[LocalStorage] = None):
        self._storage = storage or LocalStorage()
        self._listeners: list[IdentityListener] = []

    def client_id(self) -> str:
        """Return the stored client id, generating it on first use."""
        client_id = self._storage.get_item(CLIENT_ID_KEY)
        if not client_id:
            client_id = str(uuid4())
            self._storage.set_item(CLIENT_ID_KEY, client_id)
            logger.info("anonymous_client_id_created", path=str(self._storage.path))
        return client_id

    async def get_current_identity(self) -> Optional[Identity]:
        return Identity(owner_id=self.client_id(), is_anonymous=True)

    def on_change(self, listener: IdentityListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_out(self) -> None:
        return None
