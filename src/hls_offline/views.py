"""
View models for the two screens: starting a download and browsing the
downloaded videos. They hold no persistence logic of their own.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, List, Optional, Union

from .assets import UrlAsset
from .events import DownloadFailed, DownloadFinished, EventChannel, ProgressEvent, VideoDeleted
from .manager import DEFAULT_TITLE, DownloadManager
from .session import AssetDownloadTask, TaskState

TaskEvent = Union[ProgressEvent, DownloadFinished, DownloadFailed]


class DownloadState(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"


class DownloadViewModel:
    def __init__(self, manager: DownloadManager, events: EventChannel) -> None:
        self.manager = manager
        self.events = events
        self.video_url = ""
        self.state = DownloadState.IDLE
        self.progress = 0.0
        self.player_presented = False
        self.task: Optional[AssetDownloadTask] = None
        self._lock = threading.Lock()
        self._starting = False
        self._held: List[TaskEvent] = []
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def is_downloading(self) -> bool:
        return self.state is DownloadState.DOWNLOADING

    @property
    def download_completed(self) -> bool:
        return self.state is DownloadState.COMPLETED

    def start_download(self, title: str = DEFAULT_TITLE) -> Optional[AssetDownloadTask]:
        """
        Ask the manager for a download of ``video_url``.

        Events published while the manager is still starting the task are
        held back and applied once the task is known, so a download that
        finishes or fails right away is not missed.
        """
        self._subscribe()
        with self._lock:
            self._starting = True
        task: Optional[AssetDownloadTask] = None
        try:
            task = self.manager.start_download(self.video_url, title=title)
        finally:
            with self._lock:
                self._starting = False
                held, self._held = self._held, []
                if task is not None:
                    self.task = task
                    self.progress = 0.0
                    self.state = DownloadState.DOWNLOADING
                for event in held:
                    self._apply(event)
                if task is not None and task.state == TaskState.COMPLETED:
                    self._settle(task)
        return task

    def _subscribe(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.events.subscribe(ProgressEvent, self._on_event),
            self.events.subscribe(DownloadFinished, self._on_event),
            self.events.subscribe(DownloadFailed, self._on_event),
        ]

    def _is_current(self, task_identifier: int) -> bool:
        return self.task is not None and self.task.task_identifier == task_identifier

    def _on_event(self, event: TaskEvent) -> None:
        with self._lock:
            if self._starting:
                self._held.append(event)
                return
            self._apply(event)

    def _apply(self, event: TaskEvent) -> None:
        if not self._is_current(event.task_identifier):
            return
        if isinstance(event, ProgressEvent):
            self.progress = event.percent
            if event.percent >= 100.0:
                self.state = DownloadState.COMPLETED
        elif isinstance(event, DownloadFinished):
            self.progress = 100.0
            self.state = DownloadState.COMPLETED
        else:
            self.progress = 0.0
            self.state = DownloadState.IDLE

    def _settle(self, task: AssetDownloadTask) -> None:
        # the task completed before its events could reach this view
        if task.error is not None:
            self.progress = 0.0
            self.state = DownloadState.IDLE
        else:
            self.progress = 100.0
            self.state = DownloadState.COMPLETED

    def present_player(self) -> Optional[UrlAsset]:
        self.player_presented = True
        return self.manager.play_offline_asset()

    def dismiss_player(self) -> None:
        self.player_presented = False

    def delete_downloaded_video(self) -> bool:
        deleted = self.manager.delete_offline_asset()
        self.state = DownloadState.IDLE
        self.progress = 0.0
        return deleted

    def _unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def close(self) -> None:
        self._unsubscribe()


class DownloadsListViewModel:
    """Lists stored paths and refreshes whenever one is added or deleted."""

    def __init__(self, manager: DownloadManager, events: EventChannel) -> None:
        self.manager = manager
        self.events = events
        self.downloaded_videos: List[str] = []
        self.player_presented = False
        self._unsubscribers: List[Callable[[], None]] = []

    def appear(self) -> List[str]:
        if not self._unsubscribers:
            self._unsubscribers = [
                self.events.subscribe(VideoDeleted, lambda _event: self.fetch_downloaded_videos()),
                self.events.subscribe(DownloadFinished, lambda _event: self.fetch_downloaded_videos()),
            ]
        return self.fetch_downloaded_videos()

    def disappear(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def fetch_downloaded_videos(self) -> List[str]:
        self.downloaded_videos = self.manager.repository.paths()
        return self.downloaded_videos

    def play(self, path: str) -> Optional[UrlAsset]:
        self.player_presented = True
        return self.manager.play_offline_asset(path)

    def delete(self, path: str) -> bool:
        deleted = self.manager.delete_downloaded_video(path)
        self.fetch_downloaded_videos()
        return deleted
