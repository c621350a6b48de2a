"""Asset handles, URL parsing and the offline-cache check."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlsplit
from urllib.request import url2pathname

ALLOWS_CELLULAR_ACCESS = "allows_cellular_access"
PARTIAL_SUFFIX = ".part"

_WHITESPACE = re.compile(r"\s")


def parse_stream_url(text: Optional[str]) -> Optional[str]:
    """Return ``text`` as an absolute stream URL, or ``None`` if it is not one."""
    if not text:
        return None
    candidate = text.strip()
    if not candidate or _WHITESPACE.search(candidate):
        return None
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme in ("http", "https") and parts.hostname:
        return candidate
    if scheme == "file" and parts.path:
        return candidate
    return None


@dataclass(frozen=True)
class UrlAsset:
    url: str
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_local_path(cls, path: Path) -> "UrlAsset":
        return cls(Path(path).resolve().as_uri())

    @property
    def local_path(self) -> Optional[Path]:
        parts = urlsplit(self.url)
        if parts.scheme != "file":
            return None
        return Path(url2pathname(parts.path))

    @property
    def allows_cellular_access(self) -> bool:
        return bool(self.options.get(ALLOWS_CELLULAR_ACCESS, True))

    @property
    def asset_cache(self) -> Optional["AssetCache"]:
        path = self.local_path
        return AssetCache(path) if path is not None else None


class AssetCache:
    """Offline copy of an asset on local disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def is_playable_offline(self) -> bool:
        if self.path.name.endswith(PARTIAL_SUFFIX):
            return False
        try:
            return self.path.is_file() and self.path.stat().st_size > 0
        except OSError:
            return False
