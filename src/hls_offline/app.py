"""Composition root: builds and wires every long-lived object."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import AppConfig
from .dispatch import SerialDispatcher
from .events import EventChannel
from .manager import DownloadManager
from .repository import DownloadRepository
from .session import FFmpegDownloadSession
from .store import SettingsStore
from .views import DownloadsListViewModel, DownloadViewModel


@dataclass
class OfflineApp:
    config: AppConfig
    repository: DownloadRepository
    events: EventChannel
    delegate_queue: SerialDispatcher
    manager: DownloadManager
    download_view: DownloadViewModel
    downloads_list: DownloadsListViewModel

    def close(self) -> None:
        self.download_view.close()
        self.downloads_list.disappear()
        self.manager.close()
        self.delegate_queue.shutdown(wait=True)

    def __enter__(self) -> "OfflineApp":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_app(config: Optional[AppConfig] = None) -> OfflineApp:
    config = config or AppConfig.from_env()
    config.root.mkdir(parents=True, exist_ok=True)

    repository = DownloadRepository(SettingsStore(config.settings_path))
    events = EventChannel()
    delegate_queue = SerialDispatcher(f"{config.session_identifier}-delegate")

    def make_session(delegate: DownloadManager) -> FFmpegDownloadSession:
        return FFmpegDownloadSession(
            config.session_identifier,
            config.root,
            delegate,
            delegate_queue,
            ffmpeg=config.ffmpeg,
            ffprobe=config.ffprobe,
        )

    manager = DownloadManager(make_session, repository, events, config.root)
    return OfflineApp(
        config=config,
        repository=repository,
        events=events,
        delegate_queue=delegate_queue,
        manager=manager,
        download_view=DownloadViewModel(manager, events),
        downloads_list=DownloadsListViewModel(manager, events),
    )
