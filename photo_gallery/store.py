"""Key/value persistence for gallery metadata.

Values are JSON text. Stores may enforce a byte quota; a write that would
exceed it raises StorageCapacityError and leaves the previous value intact.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class StorageCapacityError(Exception):
    """The store rejected a write because it would exceed its quota."""


def _check_key(key: str) -> None:
    if not _KEY_RE.match(key):
        raise ValueError(f"Invalid store key: {key!r}")


class MetadataStore(ABC):
    """Async key/value contract the gallery persists through."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value. Raises StorageCapacityError when over quota."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """Return all stored keys, sorted."""


class MemoryStore(MetadataStore):
    def __init__(self, quota: int = 0):
        self._quota = quota
        self._data: dict[str, str] = {}

    def _used_without(self, key: str) -> int:
        return sum(len(v.encode()) for k, v in self._data.items() if k != key)

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        _check_key(key)
        if self._quota:
            needed = self._used_without(key) + len(value.encode())
            if needed > self._quota:
                raise StorageCapacityError(
                    f"Writing {key} needs {needed} bytes, quota is {self._quota}"
                )
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore(MetadataStore):
    """One ``<key>.json`` file per key under a directory."""

    def __init__(self, root: Path, quota: int = 0):
        self._root = Path(root)
        self._quota = quota

    def _path(self, key: str) -> Path:
        _check_key(key)
        return self._root / f"{key}.json"

    def _used_without(self, key: str) -> int:
        if not self._root.is_dir():
            return 0
        skip = self._path(key).name
        return sum(
            p.stat().st_size for p in self._root.glob("*.json") if p.name != skip
        )

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text()

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        data = value.encode()
        if self._quota:
            needed = self._used_without(key) + len(data)
            if needed > self._quota:
                raise StorageCapacityError(
                    f"Writing {key} needs {needed} bytes, quota is {self._quota}"
                )
        self._root.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.rename(path)
        logger.debug("Wrote %s (%d bytes)", path.name, len(data))

    def _delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _keys(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def list_keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys)
