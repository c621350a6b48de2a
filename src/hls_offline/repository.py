"""Download history kept in the settings store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .store import SettingsStore

log = logging.getLogger(__name__)

ASSET_PATH_KEY = "assetPath"
DOWNLOADED_PATHS_KEY = "DownloadedVideoPaths"


def _path_list(data: Dict[str, Any]) -> List[str]:
    value = data.get(DOWNLOADED_PATHS_KEY)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


class DownloadRepository:
    """
    Owns the "current asset" pointer and the ordered list of downloaded paths.

    Both keys are only ever changed here, inside one store transaction, so the
    pointer can never name a path that was removed from the list.
    """

    def __init__(self, store: SettingsStore) -> None:
        self.store = store

    def current_path(self) -> Optional[str]:
        value = self.store.get(ASSET_PATH_KEY)
        return value if isinstance(value, str) else None

    def paths(self) -> List[str]:
        return _path_list(self.store.as_dict())

    def __contains__(self, path: object) -> bool:
        return path in self.paths()

    def record_completion(self, path: str) -> None:
        """Make ``path`` the current asset and append it to the history."""
        with self.store.transaction() as data:
            paths = _path_list(data)
            paths.append(path)
            data[DOWNLOADED_PATHS_KEY] = paths
            data[ASSET_PATH_KEY] = path
        log.debug("Recorded download %s (%d in history)", path, len(paths))

    def append(self, path: str) -> None:
        with self.store.transaction() as data:
            paths = _path_list(data)
            paths.append(path)
            data[DOWNLOADED_PATHS_KEY] = paths

    def remove(self, path: str) -> bool:
        """
        Drop the first entry equal to ``path``.

        The current pointer is cleared if and only if it equals ``path``, even
        when the history no longer lists it. Returns whether a history entry
        was removed.
        """
        with self.store.transaction() as data:
            paths = _path_list(data)
            removed = path in paths
            if removed:
                paths.remove(path)
                data[DOWNLOADED_PATHS_KEY] = paths
            if data.get(ASSET_PATH_KEY) == path:
                del data[ASSET_PATH_KEY]
        return removed

    def clear_current(self) -> None:
        self.store.remove(ASSET_PATH_KEY)
