"""Download orchestration and the lifecycle of offline assets."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .assets import ALLOWS_CELLULAR_ACCESS, UrlAsset, parse_stream_url
from .events import DownloadFailed, DownloadFinished, EventChannel, ProgressEvent, VideoDeleted
from .repository import DownloadRepository
from .session import AssetDownloadTask, FFmpegDownloadSession, TimeRange

log = logging.getLogger(__name__)

DEFAULT_TITLE = "Test Download"

SessionFactory = Callable[["DownloadManager"], FFmpegDownloadSession]


def progress_percent(loaded_time_ranges: Sequence[TimeRange], expected_time_range: TimeRange) -> float:
    """Share of the expected duration covered by the loaded ranges, in ``[0, 100]``."""
    expected = expected_time_range.duration
    if not expected or expected <= 0:
        return 0.0
    loaded = sum(time_range.duration for time_range in loaded_time_ranges)
    return min(max(loaded / expected * 100.0, 0.0), 100.0)


class DownloadManager:
    """
    Starts asset downloads, relays their progress and records finished files.

    The manager is the session's delegate: the session is built by
    ``session_factory`` with the manager already in place.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        repository: DownloadRepository,
        events: EventChannel,
        root: Path,
    ) -> None:
        self.root = Path(root)
        self.repository = repository
        self.events = events
        self._progress: Dict[int, float] = {}
        self.session = session_factory(self)

    # -- downloads ---------------------------------------------------------

    def start_download(self, url: str, title: str = DEFAULT_TITLE) -> Optional[AssetDownloadTask]:
        """Submit ``url`` for offline download; a malformed URL is ignored."""
        stream_url = parse_stream_url(url)
        if stream_url is None:
            log.debug("Ignoring malformed URL %r", url)
            return None
        asset = UrlAsset(stream_url, {ALLOWS_CELLULAR_ACCESS: False})
        task = self.session.make_asset_download_task(asset, title)
        task.resume()
        return task

    def restore_pending_downloads(self) -> List[AssetDownloadTask]:
        tasks = self.session.get_all_tasks()
        for task in tasks:
            log.info("[*] Resuming %r", task)
            task.resume()
        return tasks

    def close(self) -> None:
        self.session.close()

    # -- delegate callbacks --------------------------------------------------

    def did_load_time_range(
        self,
        session: FFmpegDownloadSession,
        task: AssetDownloadTask,
        time_range: TimeRange,
        loaded_time_ranges: Sequence[TimeRange],
        expected_time_range: TimeRange,
    ) -> None:
        percent = progress_percent(loaded_time_ranges, expected_time_range)
        percent = max(percent, self._progress.get(task.task_identifier, 0.0))
        self._progress[task.task_identifier] = percent
        log.debug("Progress %r %.1f", task, percent)
        self.events.publish(ProgressEvent(task.task_identifier, percent))

    def did_finish_downloading_to(
        self, session: FFmpegDownloadSession, task: AssetDownloadTask, location: Path
    ) -> None:
        path = self.relative_path(location)
        self.repository.record_completion(path)
        self.events.publish(DownloadFinished(task.task_identifier, path))

    def did_complete_with_error(
        self,
        session: FFmpegDownloadSession,
        task: AssetDownloadTask,
        error: Optional[BaseException],
    ) -> None:
        self._progress.pop(task.task_identifier, None)
        if error is not None:
            log.error("[!] Download failed %r: %s", task, error)
            self.events.publish(DownloadFailed(task.task_identifier, error))
            return
        log.info("[*] DOWNLOAD: FINISHED %r", task)

    # -- offline assets ------------------------------------------------------

    def relative_path(self, location: Path) -> str:
        return Path(os.path.relpath(location, self.root)).as_posix()

    def resolve(self, path: str) -> Optional[Path]:
        """Absolute location of a stored path, or ``None`` if it leaves the root."""
        root = self.root.resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            log.error("[!] Refusing path outside %s: %s", root, path)
            return None
        return target

    def get_path(self) -> str:
        return self.repository.current_path() or ""

    def play_offline_asset(self, path: Optional[str] = None) -> Optional[UrlAsset]:
        """
        Asset for ``path`` (default: the most recent download) if it can be
        played without a network connection.
        """
        path = path or self.repository.current_path()
        if not path:
            return None
        target = self.resolve(path)
        if target is None:
            return None
        asset = UrlAsset.for_local_path(target)
        cache = asset.asset_cache
        if cache is not None and cache.is_playable_offline:
            return asset
        return None

    def delete_offline_asset(self) -> bool:
        path = self.repository.current_path()
        if not path:
            return False
        return self.delete_downloaded_video(path)

    def delete_downloaded_video(self, path: str) -> bool:
        """
        Remove the file at ``path`` and its history entry.

        Filesystem errors are logged and leave the history untouched. Returns
        whether anything was removed.
        """
        target = self.resolve(path)
        if target is None:
            return False

        deleted_file = False
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
            deleted_file = True
        except FileNotFoundError:
            log.warning("[!] %s is already gone", path)
        except OSError as exc:
            log.error("[!] An error occurred deleting offline asset %s: %s", path, exc)
            return False

        removed = self.repository.remove(path)
        if deleted_file or removed:
            self.events.publish(VideoDeleted(path))
        return deleted_file or removed
