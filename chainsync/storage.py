"""
Durable key-value storage.

The session and transfer history are persisted as opaque JSON strings under
namespaced keys. Readers that find a corrupt value clear it and carry on as if
the key were absent.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from .config import settings

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Get/set/delete contract over string values"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key is a no-op."""
        pass

    def get_json(self, key: str) -> Optional[Any]:
        """Decode the JSON stored under ``key``; corrupt values are cleared."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt JSON stored under %s", key)
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, separators=(",", ":")))


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and short-lived hosts"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class FileStore(KeyValueStore):
    """One file per key under a directory.

    Writes go to a temporary sibling first and are moved into place, so a
    crash mid-write leaves either the old value or the new one.
    """

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory or settings.storage_dir)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
