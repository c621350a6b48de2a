"""Runtime configuration, resolved from defaults, environment and CLI options."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import typer

APP_NAME = "hls-offline"
DEFAULT_SESSION_IDENTIFIER = "io.hlsoffline.background"

ENV_VARS = {
    "root": "HLS_OFFLINE_HOME",
    "session_identifier": "HLS_OFFLINE_SESSION_ID",
    "ffmpeg": "HLS_OFFLINE_FFMPEG",
    "ffprobe": "HLS_OFFLINE_FFPROBE",
    "log_file": "HLS_OFFLINE_LOG_FILE",
}


def _default_root() -> Path:
    return Path(typer.get_app_dir(APP_NAME))


@dataclass
class AppConfig:
    root: Path = field(default_factory=_default_root)
    session_identifier: str = DEFAULT_SESSION_IDENTIFIER
    settings_file: str = "settings.json"
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    log_file: Optional[str] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser()

    @property
    def settings_path(self) -> Path:
        return self.root / self.settings_file

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "AppConfig":
        """
        Build a config from ``HLS_OFFLINE_*`` variables.

        Keyword overrides win over the environment; ``None`` overrides are
        ignored so unset CLI options fall through to the environment.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name, var in ENV_VARS.items():
            raw = environ.get(var)
            if raw:
                values[name] = raw

        known = {f.name for f in fields(cls)}
        for name, value in overrides.items():
            if name not in known:
                raise TypeError(f"Unknown config option: {name}")
            if value is not None:
                values[name] = value
        return cls(**values)
