from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class DurableKeyValueStore(ABC):
    """Persistence boundary: JSON-compatible values keyed by string."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore(DurableKeyValueStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileKeyValueStore(DurableKeyValueStore):
    """
    Single JSON document on disk, rewritten atomically on every set.

    A corrupt or unreadable file is logged and treated as empty so the
    process can still start.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = RLock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("durable store unreadable path=%s error=%s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("durable store root is not an object path=%s", self._path)
            return {}
        return raw

    def _flush(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_name, self._path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            staged = dict(self._data)
            staged[key] = copy.deepcopy(value)
            self._flush(staged)
            self._data = staged

    def delete(self, key: str) -> None:
        with self._lock:
            if key in self._data:
                staged = {k: v for k, v in self._data.items() if k != key}
                self._flush(staged)
                self._data = staged
