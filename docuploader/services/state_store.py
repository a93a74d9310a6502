"""
State stores - durable key-value storage for session state.

JsonFileStore keeps every key in one JSON document on disk and rewrites it
atomically on each change.
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class MemoryStore:
    """In-process store; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Key-value store backed by a JSON file.

    The file is read lazily on first access. A missing or unreadable file
    starts an empty store; write failures are raised to the caller.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._data: Optional[Dict[str, str]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._data = {str(k): str(v) for k, v in raw.items()} if isinstance(raw, dict) else {}
            logger.debug("JsonFileStore: Loaded %d keys from %s", len(self._data), self._path)
        except FileNotFoundError:
            self._data = {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("JsonFileStore: Failed to load %s: %s - starting fresh", self._path, e)
            self._data = {}
        return self._data

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        if data.get(key) == value:
            return
        data[key] = value
        self._save()

    def clear(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        del data[key]
        self._save()
