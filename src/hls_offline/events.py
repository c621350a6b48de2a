"""Typed events shared between the download manager and the views."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

log = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[Any], None]


@dataclass(frozen=True)
class ProgressEvent:
    task_identifier: int
    percent: float


@dataclass(frozen=True)
class DownloadFinished:
    task_identifier: int
    path: str


@dataclass(frozen=True)
class DownloadFailed:
    task_identifier: int
    error: Optional[BaseException]


@dataclass(frozen=True)
class VideoDeleted:
    path: str


class EventChannel:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                log.exception("[!] Event handler %r failed for %r", handler, event)
