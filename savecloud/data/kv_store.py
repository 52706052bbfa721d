"""Key-value store: single JSON file of raw string values."""

from __future__ import annotations

import json
import threading
from enum import StrEnum
from pathlib import Path
from typing import Any

from loguru import logger


class Encoding(StrEnum):
    """How a value is encoded before it is stored."""

    JSON = "json"
    TEXT = "text"


class KeyValueStore:
    """
    Durable string-keyed store.

    Values are kept as strings inside ``store.json``; JSON-encoded values are
    serialized on ``put`` and decoded on ``get``.

    ``get`` raises ``KeyError`` for a missing key and ``ValueError`` for a
    value that cannot be decoded; callers decide whether that is fatal.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._path = data_dir / "store.json"
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
            self._values = {str(k): str(v) for k, v in data.items()}
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.error(f"Failed to load key-value store: {e}")

    def _save(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._values, f, ensure_ascii=False, indent=2)
            tmp.replace(self._path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def get(self, key: str, encoding: Encoding = Encoding.JSON) -> Any:
        with self._lock:
            raw = self._values[key]
        if encoding == Encoding.JSON:
            return json.loads(raw)
        return raw

    def put(self, key: str, value: Any, encoding: Encoding = Encoding.JSON) -> None:
        raw = json.dumps(value, ensure_ascii=False) if encoding == Encoding.JSON else str(value)
        with self._lock:
            self._values[key] = raw
            self._save()

    def delete(self, key: str) -> None:
        """Remove a key. Deleting an absent key is not an error."""
        with self._lock:
            if self._values.pop(key, None) is None:
                return
            self._save()

    def __contains__(self, key: str) -> bool:
        return key in self._values
