"""Queue downloads for every stream URL listed in a CSV file."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from .manager import DEFAULT_TITLE, DownloadManager
from .session import AssetDownloadTask

log = logging.getLogger(__name__)


@dataclass
class DownloadStats:
    successful: int = 0
    failed: int = 0
    paths: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful + self.failed


def read_url_rows(csv_file: Path, column: str = "url") -> Iterable[Tuple[str, str]]:
    """
    Yield ``(title, url)`` pairs from ``csv_file``.

    Lines starting with ``//`` are comments. The title comes from a ``title``
    or ``file`` column when present, otherwise the row number is used.
    """
    with csv_file.open("r", encoding="utf-8") as handle:
        lines = [line for line in handle if not line.strip().startswith("//")]
    try:
        df = pd.read_csv(io.StringIO("".join(lines)), dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError as exc:
        raise ValueError("CSV file is empty or missing headers.") from exc
    if column not in df.columns:
        raise ValueError(f"CSV must contain a '{column}' column, found {list(df.columns)}")

    title_column = next((name for name in ("title", "file") if name in df.columns), None)
    for idx, row in df.iterrows():
        title = str(row[title_column]).strip() if title_column else ""
        yield title or f"{DEFAULT_TITLE} {idx + 1}", str(row[column]).strip()


def download_from_csv(
    csv_file: str,
    manager: DownloadManager,
    *,
    column: str = "url",
    timeout: Optional[float] = None,
    max_threads: Optional[int] = None,
) -> DownloadStats:
    """
    Download every row, keeping at most ``max_threads`` downloads in flight,
    and summarise the results.
    """
    csv_path = Path(csv_file)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_file}")

    max_threads = max_threads or min(os.cpu_count() or 1, 8)
    log.info("[*] Reading CSV file: %s", csv_file)
    log.info("[*] Using %d parallel downloads", max_threads)
    stats = DownloadStats()
    in_flight: List[AssetDownloadTask] = []

    def collect(task: AssetDownloadTask) -> None:
        if not task.wait(timeout):
            log.error("[!] Timed out waiting for %r", task)
            stats.failed += 1
        elif task.error is not None or task.location is None:
            stats.failed += 1
        else:
            stats.successful += 1
            stats.paths.append(manager.relative_path(task.location))

    for title, url in read_url_rows(csv_path, column):
        if len(in_flight) >= max_threads:
            collect(in_flight.pop(0))
        task = manager.start_download(url, title=title)
        if task is None:
            log.warning("[!] No valid stream URL for %s, skipping.", title)
            stats.failed += 1
            continue
        in_flight.append(task)

    for task in in_flight:
        collect(task)

    log.info("=" * 50)
    log.info("[*] Download Summary:")
    log.info("[*] Total files processed: %d", stats.total)
    log.info("[*] Successfully downloaded: %d", stats.successful)
    log.info("[*] Failed downloads: %d", stats.failed)
    log.info("=" * 50)
    return stats
