"""Download HLS streams for offline playback and keep track of the copies."""

from .app import OfflineApp, build_app
from .config import AppConfig
from .manager import DownloadManager, progress_percent
from .repository import DownloadRepository
from .session import FFmpegDownloadSession
from .views import DownloadState

__all__ = [
    "AppConfig",
    "DownloadManager",
    "DownloadRepository",
    "DownloadState",
    "FFmpegDownloadSession",
    "OfflineApp",
    "build_app",
    "progress_percent",
]

__version__ = "0.1.0"
