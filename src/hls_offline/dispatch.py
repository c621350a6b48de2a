from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


def _log_failure(future: "concurrent.futures.Future[Any]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.error("[!] Delegate callback failed: %s", exc, exc_info=exc)


class SerialDispatcher:
    """Runs submitted callbacks one at a time, in submission order, on one thread."""

    def __init__(self, name: str = "delegate-queue") -> None:
        self.name = name
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._shutdown = False

    def dispatch(self, fn: Callable[..., Any], *args: Any) -> Optional["concurrent.futures.Future[Any]"]:
        """Queue ``fn(*args)``; returns ``None`` once the queue has been shut down."""
        with self._lock:
            if self._shutdown:
                log.debug("Dropping %s: %s is shut down", getattr(fn, "__name__", fn), self.name)
                return None
            future = self._executor.submit(fn, *args)
        future.add_done_callback(_log_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait)
