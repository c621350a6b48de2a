"""
Background asset-download session backed by ffmpeg.

The session owns the worker threads, the on-disk packaging of downloaded
streams and the ledger of outstanding tasks. Everything it reports to its
delegate goes through the delegate queue, one callback at a time.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .assets import PARTIAL_SUFFIX, UrlAsset
from .dispatch import SerialDispatcher
from .exceptions import FFmpegError
from .store import SettingsStore

log = logging.getLogger(__name__)

LEDGER_TASKS_KEY = "tasks"
LEDGER_NEXT_IDENTIFIER_KEY = "next_task_identifier"
PROTOCOL_WHITELIST = "file,http,https,tcp,tls,crypto"


@dataclass(frozen=True)
class TimeRange:
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


class TaskState(str, Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    COMPLETED = "completed"


class AssetDownloadTask:
    def __init__(
        self,
        session: "FFmpegDownloadSession",
        task_identifier: int,
        url_asset: UrlAsset,
        title: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.session = session
        self.task_identifier = task_identifier
        self.url_asset = url_asset
        self.title = title
        self.options = dict(options or {})
        self.state = TaskState.SUSPENDED
        self.error: Optional[BaseException] = None
        self.location: Optional[Path] = None
        self._done = threading.Event()

    def resume(self) -> None:
        self.session.resume(self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the completion callback for this task has run."""
        return self._done.wait(timeout)

    def __repr__(self) -> str:
        return (
            f"<AssetDownloadTask {self.task_identifier} {self.state.value} "
            f"title={self.title!r} url={self.url_asset.url!r}>"
        )


class AssetDownloadDelegate(Protocol):
    def did_load_time_range(
        self,
        session: "FFmpegDownloadSession",
        task: AssetDownloadTask,
        time_range: TimeRange,
        loaded_time_ranges: Sequence[TimeRange],
        expected_time_range: TimeRange,
    ) -> None:
        ...

    def did_finish_downloading_to(
        self, session: "FFmpegDownloadSession", task: AssetDownloadTask, location: Path
    ) -> None:
        ...

    def did_complete_with_error(
        self,
        session: "FFmpegDownloadSession",
        task: AssetDownloadTask,
        error: Optional[BaseException],
    ) -> None:
        ...


def _safe_filename(title: str) -> str:
    return title.replace("/", "_").replace("\\", "_").replace(":", "_")


def _ledger_entries(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    entries = data.get(LEDGER_TASKS_KEY)
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, dict)]


def _parse_out_time(value: str) -> Optional[float]:
    # ffmpeg reports out_time_ms in microseconds as well, despite the name.
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


class FFmpegDownloadSession:
    """
    Downloads HLS streams for offline playback by remuxing them with ffmpeg.

    Parameters
    ----------
    identifier:
        Session name; also names the download directory and the task ledger.
    root:
        Application storage root. Downloads land in ``Library/<identifier>``.
    delegate:
        Receives progress, location and completion callbacks.
    delegate_queue:
        Serial queue the callbacks are delivered on. A private one is created
        when omitted.
    """

    def __init__(
        self,
        identifier: str,
        root: Path,
        delegate: AssetDownloadDelegate,
        delegate_queue: Optional[SerialDispatcher] = None,
        *,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
    ) -> None:
        self.identifier = identifier
        self.root = Path(root)
        self.delegate = delegate
        self._owns_queue = delegate_queue is None
        self.delegate_queue = delegate_queue or SerialDispatcher(identifier)
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.download_dir = self.root / "Library" / identifier
        self.ledger = SettingsStore(self.root / ".sessions" / f"{identifier}.json")

        self._lock = threading.RLock()
        self._tasks: Dict[int, AssetDownloadTask] = {}
        self._next_identifier = 1
        self._processes: Dict[int, subprocess.Popen] = {}
        self._workers: Dict[int, threading.Thread] = {}
        self._closed = False
        self._restore_ledger()

    def _restore_ledger(self) -> None:
        data = self.ledger.as_dict()
        stored_next = data.get(LEDGER_NEXT_IDENTIFIER_KEY)
        if isinstance(stored_next, int) and stored_next > 0:
            self._next_identifier = stored_next
        entries = data.get(LEDGER_TASKS_KEY, [])
        for entry in entries if isinstance(entries, list) else []:
            try:
                identifier = int(entry["task_identifier"])
                asset = UrlAsset(entry["url"], dict(entry.get("asset_options") or {}))
                title = str(entry.get("title") or "")
            except (KeyError, TypeError, ValueError):
                log.warning("[!] Dropping malformed ledger entry: %r", entry)
                continue
            task = AssetDownloadTask(self, identifier, asset, title, entry.get("options"))
            self._tasks[identifier] = task
            self._next_identifier = max(self._next_identifier, identifier + 1)
        if self._tasks:
            log.info("[*] Restored %d outstanding download task(s)", len(self._tasks))

    def _remember(self, task: AssetDownloadTask) -> None:
        with self.ledger.transaction() as data:
            entries = [e for e in _ledger_entries(data) if e.get("task_identifier") != task.task_identifier]
            entries.append(
                {
                    "task_identifier": task.task_identifier,
                    "url": task.url_asset.url,
                    "asset_options": task.url_asset.options,
                    "title": task.title,
                    "options": task.options,
                }
            )
            data[LEDGER_TASKS_KEY] = entries
            data[LEDGER_NEXT_IDENTIFIER_KEY] = self._next_identifier

    def _forget(self, task: AssetDownloadTask) -> None:
        with self.ledger.transaction() as data:
            data[LEDGER_TASKS_KEY] = [
                e for e in _ledger_entries(data) if e.get("task_identifier") != task.task_identifier
            ]

    def make_asset_download_task(
        self, asset: UrlAsset, title: str, options: Optional[Dict[str, Any]] = None
    ) -> AssetDownloadTask:
        """Create a suspended task; nothing is fetched until it is resumed."""
        with self._lock:
            task = AssetDownloadTask(self, self._next_identifier, asset, title, options)
            self._next_identifier += 1
            self._tasks[task.task_identifier] = task
            self._remember(task)
        log.debug("Created %r", task)
        return task

    def get_all_tasks(self) -> List[AssetDownloadTask]:
        """Every task that has not completed, including ones restored from the ledger."""
        with self._lock:
            return [task for task in self._tasks.values() if task.state is not TaskState.COMPLETED]

    def resume(self, task: AssetDownloadTask) -> None:
        with self._lock:
            if self._closed or task.state is not TaskState.SUSPENDED:
                return
            task.state = TaskState.RUNNING
            worker = threading.Thread(
                target=self._run,
                args=(task,),
                name=f"{self.identifier}-task-{task.task_identifier}",
                daemon=True,
            )
            self._workers[task.task_identifier] = worker
        worker.start()

    def close(self, timeout: float = 5.0) -> None:
        """
        Stop delivering callbacks and terminate running ffmpeg processes.

        Interrupted tasks stay in the ledger and are offered again by
        ``get_all_tasks`` in the next session.
        """
        with self._lock:
            self._closed = True
            processes = list(self._processes.values())
            workers = list(self._workers.values())
        for proc in processes:
            log.info("[*] Stopping ffmpeg (pid %s)", proc.pid)
            proc.terminate()
        for worker in workers:
            if worker is not threading.current_thread():
                worker.join(timeout)
        if self._owns_queue:
            self.delegate_queue.shutdown(wait=True)

    def _run(self, task: AssetDownloadTask) -> None:
        log.info("[*] Downloading: %s", task.url_asset.url)
        error: Optional[BaseException] = None
        try:
            expected = self.read_duration(task.url_asset.url)
            task.location = self._download(task, expected)
        except Exception as exc:  # reported through did_complete_with_error
            error = exc
        finally:
            with self._lock:
                self._workers.pop(task.task_identifier, None)
                closed = self._closed
        if closed:
            log.info("[*] Session closed; %r stays pending", task)
            with self._lock:
                task.state = TaskState.SUSPENDED
            task._done.set()
            return
        try:
            self._forget(task)
        except Exception as exc:
            log.error("[!] Could not update task ledger: %s", exc)

        if error is None and task.location is not None:
            self.delegate_queue.dispatch(self.delegate.did_finish_downloading_to, self, task, task.location)
        if self.delegate_queue.dispatch(self._complete, task, error) is None:
            with self._lock:
                task.state = TaskState.COMPLETED
                task.error = error
            task._done.set()

    def _complete(self, task: AssetDownloadTask, error: Optional[BaseException]) -> None:
        with self._lock:
            task.state = TaskState.COMPLETED
            task.error = error
        try:
            self.delegate.did_complete_with_error(self, task, error)
        finally:
            task._done.set()

    def _report(
        self,
        task: AssetDownloadTask,
        previous: float,
        loaded: float,
        expected: Optional[float],
    ) -> None:
        self.delegate_queue.dispatch(
            self.delegate.did_load_time_range,
            self,
            task,
            TimeRange(previous, loaded - previous),
            [TimeRange(0.0, loaded)],
            TimeRange(0.0, expected or 0.0),
        )

    def read_duration(self, url: str) -> Optional[float]:
        """Total stream duration in seconds, or ``None`` when ffprobe cannot tell."""
        cmd = [
            self.ffprobe,
            "-v",
            "error",
            "-protocol_whitelist",
            PROTOCOL_WHITELIST,
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            url,
        ]
        try:
            result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=False)
        except FileNotFoundError as exc:
            raise FFmpegError("ffprobe not found. Please ensure FFmpeg is installed and in PATH.", cmd) from exc
        if result.returncode != 0:
            log.warning("[!] ffprobe could not read %s: %s", url, result.stderr.strip())
            return None
        try:
            duration = float(result.stdout.strip().splitlines()[0])
        except (IndexError, ValueError):
            return None
        return duration if duration > 0 else None

    def _download(self, task: AssetDownloadTask, expected: Optional[float]) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.download_dir / f"{_safe_filename(task.title)}_{task.task_identifier}.mp4"
        partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

        cmd = [
            self.ffmpeg,
            "-y",
            "-nostdin",
            "-hide_banner",
            "-loglevel",
            "error",
            "-protocol_whitelist",
            PROTOCOL_WHITELIST,
            "-i",
            task.url_asset.url,
            "-c",
            "copy",
            "-bsf:a",
            "aac_adtstoasc",
            "-f",
            "mp4",
            "-progress",
            "pipe:1",
            "-nostats",
            str(partial_path),
        ]
        log.debug("Running command: %s", " ".join(cmd))

        loaded = 0.0
        with tempfile.TemporaryFile(mode="w+", encoding="utf-8") as stderr_file:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr_file, text=True, bufsize=1)
            except FileNotFoundError as exc:
                raise FFmpegError("ffmpeg not found. Please ensure FFmpeg is installed and in PATH.", cmd) from exc

            with self._lock:
                self._processes[task.task_identifier] = proc
                closed = self._closed
            if closed:
                proc.terminate()
            try:
                assert proc.stdout is not None
                for line in proc.stdout:
                    key, _, value = line.strip().partition("=")
                    if key not in ("out_time_us", "out_time_ms"):
                        continue
                    seconds = _parse_out_time(value)
                    if seconds is None or seconds <= loaded:
                        continue
                    if expected:
                        seconds = min(seconds, expected)
                    self._report(task, loaded, seconds, expected)
                    loaded = seconds
                proc.stdout.close()
                returncode = proc.wait()
            finally:
                with self._lock:
                    self._processes.pop(task.task_identifier, None)

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read()
                if partial_path.exists():
                    partial_path.unlink()
                raise FFmpegError(f"Download of {task.url_asset.url} failed", cmd, returncode, stderr)

        os.replace(partial_path, final_path)
        full = expected or loaded
        if full > 0 and (loaded < full or not expected):
            self._report(task, loaded, full, full)
        log.info("[*] Download completed: %s", final_path)
        return final_path
