"""Durable key/value storage for client-side state.

A small JSON file plays the role a browser's ``localStorage`` plays for a
web client: it survives restarts and holds a handful of string keys.

Keys in use:
    - SESSION_KEY: the signed-in user record, restored on next start.
    - OUTBOX_KEY: messages queued while offline, written only when the
      client is about to be discarded with a non-empty outbox.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SESSION_KEY = "forumUser"
OUTBOX_KEY = "pendingMessages"


class LocalStore:
    """JSON-file backed key/value store.

    The whole file is rewritten on every change; the store only ever holds a
    user record and a short outbox.

    Args:
        path: File to persist to. ``None`` keeps everything in memory.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read local store {self.path}: {e}")
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.error(f"Ignoring local store {self.path}: expected an object")

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(self._data, fh, indent=2)
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save()

    def __contains__(self, key: str) -> bool:
        return key in self._data
