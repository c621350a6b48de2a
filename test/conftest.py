from pathlib import Path
from typing import List, Optional

import pytest

from hls_offline.events import EventChannel
from hls_offline.manager import DownloadManager
from hls_offline.repository import DownloadRepository
from hls_offline.session import TimeRange
from hls_offline.store import SettingsStore


class FakeTask:
    def __init__(self, session, task_identifier, url_asset, title, options=None):
        self.session = session
        self.task_identifier = task_identifier
        self.url_asset = url_asset
        self.title = title
        self.options = options or {}
        self.state = "suspended"
        self.error = None
        self.location = None
        self.resumed = 0

    def resume(self):
        self.resumed += 1
        self.state = "running"

    def wait(self, timeout=None):
        return self.state == "completed"


class FakeSession:
    """In-memory session; tests drive the delegate callbacks by hand."""

    def __init__(self, delegate, root: Path):
        self.delegate = delegate
        self.root = root
        self.tasks: List[FakeTask] = []
        self.closed = False

    def make_asset_download_task(self, asset, title, options=None):
        task = FakeTask(self, len(self.tasks) + 1, asset, title, options)
        self.tasks.append(task)
        return task

    def get_all_tasks(self):
        return [task for task in self.tasks if task.state != "completed"]

    def close(self):
        self.closed = True

    def report(self, task, loaded: float, expected: float):
        self.delegate.did_load_time_range(
            self, task, TimeRange(0.0, loaded), [TimeRange(0.0, loaded)], TimeRange(0.0, expected)
        )

    def finish(self, task, relative_path: str, content: bytes = b"data"):
        location = self.root / relative_path
        location.parent.mkdir(parents=True, exist_ok=True)
        location.write_bytes(content)
        task.location = location
        self.delegate.did_finish_downloading_to(self, task, location)
        task.state = "completed"
        self.delegate.did_complete_with_error(self, task, None)

    def fail(self, task, error: Optional[BaseException]):
        task.state = "completed"
        task.error = error
        self.delegate.did_complete_with_error(self, task, error)


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def store(root):
    return SettingsStore(root / "settings.json")


@pytest.fixture
def repository(store):
    return DownloadRepository(store)


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def manager(root, repository, events):
    return DownloadManager(lambda delegate: FakeSession(delegate, root), repository, events, root)


@pytest.fixture
def session(manager):
    return manager.session
