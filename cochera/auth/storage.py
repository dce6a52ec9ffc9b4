from __future__ import annotations

from threading import Lock
from typing import Protocol

from supabase_auth import SyncSupportedStorage


class EphemeralStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def clear(self, prefix: str = "") -> None: ...


class MemoryStorage(SyncSupportedStorage):
    """Volatile key/value store living as long as its tab session.

    Also the token storage handed to the tab's Supabase client.
    """

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self, prefix: str = "") -> None:
        with self._lock:
            for key in [k for k in self._items if k.startswith(prefix)]:
                del self._items[key]

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)
