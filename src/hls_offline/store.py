"""JSON-backed key-value settings store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from .exceptions import StoreError

log = logging.getLogger(__name__)

_LOCKS: Dict[Path, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    # One lock per settings file, shared by every store object in the process.
    key = path.resolve()
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.RLock())


class SettingsStore:
    """
    A flat mapping of string keys to JSON values persisted in one file.

    Each write replaces the whole file through a temporary sibling so a crash
    never leaves a half-written document behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("[!] Ignoring unreadable settings file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            log.warning("[!] Ignoring settings file %s: top level is not an object", self.path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StoreError(f"Cannot write settings file {self.path}: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self.transaction() as data:
            data[key] = value

    def remove(self, key: str) -> None:
        with self.transaction() as data:
            data.pop(key, None)

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return self._read()

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """Read-modify-write the whole document while holding the file lock."""
        with self._lock:
            data = self._read()
            yield data
            self._write(data)
