"""Restart signalling towards the proxy service.

The guard never restarts the proxy itself. It raises a flag that the
component owning the proxy process polls and consumes.
"""

from __future__ import annotations

import threading
from typing import Protocol

from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)


class RestartSignal(Protocol):
    def set_to_need_restart(self) -> None: ...


class ProxyService:
    """Thread-safe holder of the "restart needed" flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._need_restart = False
        self.restart_requests = 0

    def set_to_need_restart(self) -> None:
        with self._lock:
            self._need_restart = True
            self.restart_requests += 1
        logger.info("Proxy restart requested", event="guard.proxy.restart_requested")

    def is_need_restart(self) -> bool:
        with self._lock:
            return self._need_restart

    def consume_need_restart(self) -> bool:
        """Return the flag and clear it; used by whoever performs the restart."""
        with self._lock:
            pending, self._need_restart = self._need_restart, False
            return pending
