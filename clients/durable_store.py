"""
Durable client-state storage.

Everything the client must remember across restarts (token, verification
progress, device fingerprint) goes through a DurableStore. ValkeyClient is
the shared, cross-process implementation; MemoryStore keeps state for the
life of the process only.
"""

import json
import threading
from typing import Protocol


class DurableStore(Protocol):
    """Key/value store for persisted client state."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> bool: ...

    def get_json(self, key: str) -> dict | list | None: ...

    def set_json(self, key: str, value: dict | list) -> None: ...


class MemoryStore:
    """
    In-process DurableStore.

    Usage:
        store = MemoryStore()
        store.set_json("verification:registration", {...})
    """

    def __init__(self, namespace: str = "socialclient"):
        self._namespace = namespace
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[self._key(key)] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(self._key(key), None) is not None

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Raises ValueError if value is not valid JSON.
        """
        value = self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def set_json(self, key: str, value: dict | list) -> None:
        self.set(key, json.dumps(value))
