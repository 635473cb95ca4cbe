"""
Storage Adapter.

Uniform key-value interface over the two stores a browser profile offers:
a session-scoped store (gone when the tab, here the process, goes away) and
a durable store (survives restarts until explicitly cleared).

Reads of missing keys return None and removes of missing keys are no-ops.
Capacity failures surface as StorageQuotaExceeded; anything else that
prevents access surfaces as StorageUnavailable.

Thread Safety:
    Last writer wins. No locking is done across processes sharing the same
    durable directory.
"""

import errno
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote


__all__ = [
    "StorageScope",
    "StorageError",
    "StorageUnavailable",
    "StorageQuotaExceeded",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "StorageAdapter",
]


logger = logging.getLogger(__name__)

_CAPACITY_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class StorageScope(str, Enum):
    """Lifetime of a backing store."""

    SESSION = "session"
    DURABLE = "durable"


class StorageError(Exception):
    """Base class for storage failures."""

    def __init__(self, key: str, cause: Optional[Exception] = None, detail: str = "") -> None:
        self.key = key
        self.cause = cause
        message = f"Storage failure for key '{key}'"
        if detail:
            message = f"{message}: {detail}"
        elif cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StorageUnavailable(StorageError):
    """Raised when the store cannot be read or written at all."""


class StorageQuotaExceeded(StorageError):
    """Raised when a write is rejected for capacity reasons."""


class KeyValueStore(Protocol):
    """Minimal Web-Storage-like contract each backend implements."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


def _quota_check(key: str, used: int, quota_bytes: Optional[int]) -> None:
    if quota_bytes is not None and used > quota_bytes:
        raise StorageQuotaExceeded(
            key, detail=f"{used} bytes would exceed quota of {quota_bytes} bytes"
        )


class MemoryKeyValueStore:
    """
    In-process store standing in for the session-scoped store.

    Contents live exactly as long as the instance. An optional byte quota
    (UTF-8 size of keys plus values) mimics the browser's capacity limit.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        total = len(key.encode("utf-8")) + len(value.encode("utf-8"))
        for existing_key, existing_value in self._items.items():
            if existing_key != key:
                total += len(existing_key.encode("utf-8")) + len(existing_value.encode("utf-8"))
        return total

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        _quota_check(key, self._size_with(key, value), self._quota_bytes)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class JsonFileKeyValueStore:
    """
    Directory-backed store standing in for the durable store.

    Each key is one file, named by the percent-encoded key with a
    ``.json`` suffix. Writes go to a temporary sibling file first and are
    moved into place, so a crash mid-write never leaves a truncated value.

    Example:
        >>> store = JsonFileKeyValueStore(Path("./storage"))
        >>> store.set_item("interviewSessionBackup", '{"startTime": 0}')
        >>> store.get_item("interviewSessionBackup")
        '{"startTime": 0}'
    """

    def __init__(self, directory: Path, quota_bytes: Optional[int] = None) -> None:
        self.directory = Path(directory)
        self._quota_bytes = quota_bytes

    def _ensure_directory(self, key: str) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(key, e) from e

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _used_bytes_excluding(self, path: Path) -> int:
        if not self.directory.exists():
            return 0
        total = 0
        for entry in self.directory.glob("*.json"):
            if entry != path:
                total += entry.stat().st_size
        return total

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailable(key, e) from e

    def set_item(self, key: str, value: str) -> None:
        self._ensure_directory(key)
        path = self._path_for(key)
        encoded = value.encode("utf-8")

        try:
            used = self._used_bytes_excluding(path)
        except OSError as e:
            raise StorageUnavailable(key, e) from e
        _quota_check(key, used + len(encoded), self._quota_bytes)

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(encoded)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            if e.errno in _CAPACITY_ERRNOS:
                raise StorageQuotaExceeded(key, e) from e
            raise StorageUnavailable(key, e) from e

    def remove_item(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(key, e) from e


class StorageAdapter:
    """
    Routes reads and writes to the backend for each StorageScope.

    Backend errors that are not already StorageError are wrapped as
    StorageUnavailable, so callers only ever handle the storage error kinds.

    Example:
        >>> adapter = StorageAdapter(
        ...     session_store=MemoryKeyValueStore(),
        ...     durable_store=JsonFileKeyValueStore(Path("./storage")),
        ... )
        >>> adapter.write(StorageScope.DURABLE, "currentUserId", "user-1")
        >>> adapter.read(StorageScope.DURABLE, "currentUserId")
        'user-1'
    """

    def __init__(self, session_store: KeyValueStore, durable_store: KeyValueStore) -> None:
        self._backends: dict[StorageScope, KeyValueStore] = {
            StorageScope.SESSION: session_store,
            StorageScope.DURABLE: durable_store,
        }

    def backend(self, scope: StorageScope) -> KeyValueStore:
        """Return the backend serving a scope."""
        return self._backends[StorageScope(scope)]

    def write(self, scope: StorageScope, key: str, value: str) -> None:
        """
        Store a serialized value under key.

        Raises:
            StorageQuotaExceeded: If the backend is out of capacity.
            StorageUnavailable: If the backend cannot be written.
        """
        scope = StorageScope(scope)
        try:
            self.backend(scope).set_item(key, value)
        except StorageError:
            raise
        except OSError as e:
            raise StorageUnavailable(key, e) from e
        logger.debug("Wrote %d chars to %s:%s", len(value), scope.value, key)

    def read(self, scope: StorageScope, key: str) -> Optional[str]:
        """
        Read a serialized value, or None if the key is absent.

        Raises:
            StorageUnavailable: If the backend cannot be read.
        """
        try:
            return self.backend(scope).get_item(key)
        except StorageError:
            raise
        except OSError as e:
            raise StorageUnavailable(key, e) from e

    def remove(self, scope: StorageScope, key: str) -> None:
        """
        Remove a key. Removing an absent key is a no-op.

        Raises:
            StorageUnavailable: If the backend cannot be modified.
        """
        scope = StorageScope(scope)
        try:
            self.backend(scope).remove_item(key)
        except StorageError:
            raise
        except OSError as e:
            raise StorageUnavailable(key, e) from e
        logger.debug("Removed %s:%s", scope.value, key)
