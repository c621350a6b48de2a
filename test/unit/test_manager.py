import pytest

from hls_offline.assets import ALLOWS_CELLULAR_ACCESS
from hls_offline.events import DownloadFailed, DownloadFinished, ProgressEvent, VideoDeleted
from hls_offline.manager import DEFAULT_TITLE, progress_percent
from hls_offline.session import TimeRange

URL = "https://cdn.example.com/vod/master.m3u8"


def collect(events, event_type):
    seen = []
    events.subscribe(event_type, seen.append)
    return seen


def test_start_download_submits_task_without_cellular_access(manager, session):
    task = manager.start_download(URL)

    assert task is session.tasks[0]
    assert task.resumed == 1
    assert task.title == DEFAULT_TITLE
    assert task.url_asset.url == URL
    assert task.url_asset.options == {ALLOWS_CELLULAR_ACCESS: False}
    assert task.url_asset.allows_cellular_access is False


@pytest.mark.parametrize("bad", ["", "   ", "not a url", "ftp//missing-colon", "http://", "https://exa mple.com/x.m3u8"])
def test_malformed_url_is_silently_ignored(manager, session, bad):
    assert manager.start_download(bad) is None
    assert session.tasks == []


def test_url_is_trimmed(manager):
    task = manager.start_download(f"  {URL}\n")
    assert task.url_asset.url == URL


def test_completion_records_relative_path(manager, session, repository, events):
    finished = collect(events, DownloadFinished)
    task = manager.start_download(URL)

    session.finish(task, "videos/a.m3u8")

    assert repository.paths() == ["videos/a.m3u8"]
    assert repository.current_path() == "videos/a.m3u8"
    assert manager.get_path() == "videos/a.m3u8"
    assert finished == [DownloadFinished(task.task_identifier, "videos/a.m3u8")]


def test_two_downloads_overwrite_current_and_keep_history(manager, session, repository):
    first = manager.start_download(URL)
    second = manager.start_download(URL)
    session.finish(first, "videos/a.m3u8")
    session.finish(second, "videos/b.m3u8")

    assert manager.get_path() == "videos/b.m3u8"
    assert repository.paths() == ["videos/a.m3u8", "videos/b.m3u8"]


def test_progress_is_percent_of_expected_duration(manager, session, events):
    progress = collect(events, ProgressEvent)
    task = manager.start_download(URL)

    session.report(task, 15.0, 60.0)
    session.report(task, 60.0, 60.0)

    assert [event.percent for event in progress] == [25.0, 100.0]
    assert all(event.task_identifier == task.task_identifier for event in progress)


def test_progress_is_monotonic_and_bounded(manager, session, events):
    progress = collect(events, ProgressEvent)
    task = manager.start_download(URL)

    session.report(task, 30.0, 60.0)
    session.report(task, 10.0, 60.0)
    session.report(task, 90.0, 60.0)

    assert [event.percent for event in progress] == [50.0, 50.0, 100.0]
    assert all(0.0 <= event.percent <= 100.0 for event in progress)


def test_progress_sums_loaded_ranges():
    loaded = [TimeRange(0.0, 10.0), TimeRange(20.0, 5.0)]
    assert progress_percent(loaded, TimeRange(0.0, 30.0)) == pytest.approx(50.0)


def test_progress_with_unknown_duration_is_zero():
    assert progress_percent([TimeRange(0.0, 12.0)], TimeRange(0.0, 0.0)) == 0.0


def test_failed_download_is_logged_and_published(manager, session, repository, events, caplog):
    failures = collect(events, DownloadFailed)
    task = manager.start_download(URL)
    error = RuntimeError("network down")

    session.fail(task, error)

    assert failures == [DownloadFailed(task.task_identifier, error)]
    assert repository.paths() == []
    assert "Download failed" in caplog.text


def test_restore_pending_downloads_resumes_outstanding_tasks(manager, session):
    pending = session.make_asset_download_task(object(), "left over")
    done = session.make_asset_download_task(object(), "done")
    done.state = "completed"

    resumed = manager.restore_pending_downloads()

    assert resumed == [pending]
    assert pending.resumed == 1
    assert done.resumed == 0


def test_play_offline_asset_returns_cached_asset(manager, session, root):
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4")

    asset = manager.play_offline_asset()

    assert asset is not None
    assert asset.local_path == (root / "videos" / "a.mp4").resolve()


def test_play_offline_asset_without_download_is_none(manager):
    assert manager.play_offline_asset() is None


def test_play_offline_asset_with_missing_or_empty_file_is_none(manager, session, root):
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4", content=b"")
    assert manager.play_offline_asset() is None

    (root / "videos" / "a.mp4").unlink()
    assert manager.play_offline_asset() is None


def test_play_specific_path(manager, session):
    first = manager.start_download(URL)
    second = manager.start_download(URL)
    session.finish(first, "videos/a.mp4")
    session.finish(second, "videos/b.mp4")

    asset = manager.play_offline_asset("videos/a.mp4")
    assert asset.local_path.name == "a.mp4"


def test_delete_downloaded_video_removes_file_and_entry(manager, session, repository, events, root):
    deleted = collect(events, VideoDeleted)
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4")

    assert manager.delete_downloaded_video("videos/a.mp4") is True

    assert not (root / "videos" / "a.mp4").exists()
    assert repository.paths() == []
    assert repository.current_path() is None
    assert deleted == [VideoDeleted("videos/a.mp4")]


def test_delete_other_video_keeps_current(manager, session, repository):
    first = manager.start_download(URL)
    second = manager.start_download(URL)
    session.finish(first, "videos/a.mp4")
    session.finish(second, "videos/b.mp4")

    manager.delete_downloaded_video("videos/a.mp4")

    assert repository.paths() == ["videos/b.mp4"]
    assert repository.current_path() == "videos/b.mp4"


def test_delete_unknown_path_is_noop(manager, session, repository, events):
    deleted = collect(events, VideoDeleted)
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4")

    assert manager.delete_downloaded_video("videos/missing.mp4") is False

    assert repository.paths() == ["videos/a.mp4"]
    assert repository.current_path() == "videos/a.mp4"
    assert deleted == []


def test_delete_entry_whose_file_is_gone(manager, session, repository, root):
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4")
    (root / "videos" / "a.mp4").unlink()

    assert manager.delete_downloaded_video("videos/a.mp4") is True
    assert repository.paths() == []


def test_delete_filesystem_error_is_swallowed(manager, session, repository, monkeypatch, caplog):
    task = manager.start_download(URL)
    session.finish(task, "videos/a.mp4")

    def refuse(self, *args, **kwargs):
        raise PermissionError("read-only")

    monkeypatch.setattr("pathlib.Path.unlink", refuse)

    assert manager.delete_downloaded_video("videos/a.mp4") is False
    assert repository.paths() == ["videos/a.mp4"]
    assert "error occurred deleting offline asset" in caplog.text


def test_delete_refuses_paths_outside_root(manager, repository, tmp_path):
    outside = tmp_path / "outside.mp4"
    outside.write_bytes(b"keep me")

    assert manager.delete_downloaded_video("../outside.mp4") is False
    assert manager.delete_downloaded_video("") is False
    assert outside.exists()


def test_delete_offline_asset_deletes_current(manager, session, repository, root):
    first = manager.start_download(URL)
    second = manager.start_download(URL)
    session.finish(first, "videos/a.mp4")
    session.finish(second, "videos/b.mp4")

    assert manager.delete_offline_asset() is True

    assert not (root / "videos" / "b.mp4").exists()
    assert (root / "videos" / "a.mp4").exists()
    assert repository.paths() == ["videos/a.mp4"]
    assert repository.current_path() is None


def test_delete_offline_asset_without_current_is_noop(manager):
    assert manager.delete_offline_asset() is False


def test_close_closes_session(manager, session):
    manager.close()
    assert session.closed is True
