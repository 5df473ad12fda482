"""
Key-value storage used for carts and saved addresses.

Mirrors the browser storage contract the pages rely on: string values keyed by
name, plus a change notification that other readers of the same keys observe.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

StorageListener = Callable[[str], None]


class KeyValueStorage(ABC):
    """String key-value store with change listeners."""

    def __init__(self):
        self._listeners: List[StorageListener] = []

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def set_many(self, values: Dict[str, str]) -> None:
        """Write several keys, notifying only once all of them are stored."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """Register a listener called with the key after every write."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as e:
                logger.error(f"Storage listener failed for key {key}: {e}")


class MemoryStorage(KeyValueStorage):
    """In-process storage. Every write notifies all subscribers."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._notify(key)

    def set_many(self, values: Dict[str, str]) -> None:
        self._data.update(values)
        for key in values:
            self._notify(key)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
        self._notify(key)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFileStorage(KeyValueStorage):
    """Storage persisted as one JSON object on disk (used by the CLI)."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.warning(f"Storage file {self.path} unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)
        self._notify(key)

    def set_many(self, values: Dict[str, str]) -> None:
        with self._lock:
            data = self._read_all()
            data.update(values)
            self._write_all(data)
        for key in values:
            self._notify(key)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            data.pop(key, None)
            self._write_all(data)
        self._notify(key)
