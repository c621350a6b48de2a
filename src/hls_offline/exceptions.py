"""Exceptions raised by hls_offline."""

from __future__ import annotations

from typing import List, Optional, Union


class HlsOfflineError(Exception):
    """Base exception for all application-specific errors."""


class StoreError(HlsOfflineError):
    """Raised when the settings file cannot be written."""


class FFmpegError(HlsOfflineError):
    """Raised when an ffmpeg or ffprobe invocation fails."""

    def __init__(
        self,
        message: str,
        command: Optional[Union[List[str], str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        self.message = message
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.command:
            cmd = " ".join(self.command) if isinstance(self.command, list) else self.command
            parts.append(f"Command: {cmd}")
        if self.returncode is not None:
            parts.append(f"Exit code: {self.returncode}")
        if self.stderr:
            stderr = str(self.stderr)
            if len(stderr) > 500:
                stderr = stderr[:500] + "... [truncated]"
            parts.append(f"Error output: {stderr}")
        return "\n".join(parts)
