from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional

import typer

from .app import build_app
from .batch import download_from_csv
from .config import AppConfig
from .events import EventChannel, ProgressEvent
from .logger import setup_logging
from .manager import DEFAULT_TITLE
from .session import AssetDownloadTask

app = typer.Typer(help="Download HLS streams for offline playback, then play or delete them.")


@app.callback()
def main_callback(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(
        None, "--home", envvar="HLS_OFFLINE_HOME", help="Storage root for downloads and settings"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", envvar="HLS_OFFLINE_LOG_FILE", help="Also log to this file"),
) -> None:
    config = AppConfig.from_env(root=home, verbose=verbose, log_file=str(log_file) if log_file else None)
    setup_logging(verbose=config.verbose, log_file=config.log_file)
    ctx.obj = config


def _wait_with_progress(app_events: EventChannel, tasks: List[AssetDownloadTask], label: str) -> None:
    identifiers = {task.task_identifier for task in tasks}
    drawn = {identifier: 0 for identifier in identifiers}

    with typer.progressbar(length=100 * len(tasks), label=label) as bar:

        def on_progress(event: ProgressEvent) -> None:
            if event.task_identifier not in identifiers:
                return
            target = int(event.percent)
            if target > drawn[event.task_identifier]:
                bar.update(target - drawn[event.task_identifier])
                drawn[event.task_identifier] = target

        unsubscribe = app_events.subscribe(ProgressEvent, on_progress)
        try:
            for task in tasks:
                task.wait()
        finally:
            unsubscribe()


@app.command()
def download(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="HLS manifest URL (.m3u8)"),
    title: str = typer.Option(DEFAULT_TITLE, "--title", "-t", help="Asset title, used in the file name"),
) -> None:
    """Download one stream and wait until it is stored."""
    with build_app(ctx.obj) as offline:
        view = offline.download_view
        view.video_url = url
        task = view.start_download(title=title)
        if task is None:
            typer.echo(f"[!] Not a valid stream URL: {url}", err=True)
            raise typer.Exit(code=1)

        _wait_with_progress(offline.events, [task], "Downloading")
        if task.error is not None:
            typer.echo(f"[!] Download failed: {task.error}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"[*] Saved to {offline.manager.get_path()}")


@app.command()
def resume(ctx: typer.Context) -> None:
    """Resume downloads left unfinished by a previous run."""
    with build_app(ctx.obj) as offline:
        tasks = offline.manager.restore_pending_downloads()
        if not tasks:
            typer.echo("[*] No pending downloads")
            return
        _wait_with_progress(offline.events, tasks, f"Resuming {len(tasks)}")
        failed = [task for task in tasks if task.error is not None]
        for task in failed:
            typer.echo(f"[!] {task.title}: {task.error}", err=True)
        typer.echo(f"[*] Resumed {len(tasks)} download(s), {len(failed)} failed")
        if failed:
            raise typer.Exit(code=1)


@app.command("list")
def list_downloads(ctx: typer.Context) -> None:
    """Show downloaded videos; the current one is marked with '*'."""
    with build_app(ctx.obj) as offline:
        videos = offline.downloads_list.appear()
        if not videos:
            typer.echo("[*] No downloaded videos")
            return
        current = offline.manager.get_path()
        for path in videos:
            marker = "*" if path == current else " "
            typer.echo(f"{marker} {path}")


@app.command()
def play(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Stored path (default: most recent download)"),
    player: str = typer.Option("ffplay", "--player", envvar="HLS_OFFLINE_PLAYER", help="Player executable"),
    print_path: bool = typer.Option(False, "--print-path", help="Only print the playable file path"),
) -> None:
    """Play a downloaded video if it is fully available offline."""
    with build_app(ctx.obj) as offline:
        asset = offline.downloads_list.play(path) if path else offline.download_view.present_player()
        if asset is None or asset.local_path is None:
            typer.echo("Error: Video not found", err=True)
            raise typer.Exit(code=1)

        local_path = str(asset.local_path)
        if print_path:
            typer.echo(local_path)
            return

        cmd = [player, "-autoexit", local_path] if Path(player).name.startswith("ffplay") else [player, local_path]
        try:
            subprocess.run(cmd, check=False)
        except FileNotFoundError:
            typer.echo(f"[!] Player not found: {player}", err=True)
            raise typer.Exit(code=1)


@app.command()
def delete(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Stored path (default: most recent download)"),
) -> None:
    """Delete a downloaded video and its history entry."""
    with build_app(ctx.obj) as offline:
        target = path or offline.manager.get_path()
        if path:
            deleted = offline.downloads_list.delete(path)
        else:
            deleted = offline.download_view.delete_downloaded_video()
        if deleted:
            typer.echo(f"[*] Deleted {target}")
        else:
            typer.echo("[*] Nothing to delete")


@app.command()
def batch(
    ctx: typer.Context,
    csv: Path = typer.Argument(..., exists=True, readable=True, help="CSV file with a URL column"),
    column: str = typer.Option("url", "--column", "-c", help="Name of the URL column"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0, help="Seconds to wait for each download"),
    max_threads: Optional[int] = typer.Option(
        None,
        "--max-threads",
        "-t",
        min=1,
        help="Downloads to run at once (default: the smaller of CPU count and 8)",
    ),
) -> None:
    """Download every stream listed in a CSV file."""
    with build_app(ctx.obj) as offline:
        try:
            stats = download_from_csv(
                str(csv), offline.manager, column=column, timeout=timeout, max_threads=max_threads
            )
        except ValueError as exc:
            typer.echo(f"[!] {exc}", err=True)
            raise typer.Exit(code=1)
        for stored in stats.paths:
            typer.echo(f"[*] Saved to {stored}")
        typer.echo(f"[*] {stats.successful} downloaded, {stats.failed} failed")
        if stats.failed:
            raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
