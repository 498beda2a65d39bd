# FILE: project_chat/supervisor/ports.py
"""Port allocation for supervised processes.

A port is handed out only if the OS just let us bind it (free on the host at
that moment) and it is not already reserved by this process. Reservations
are held until release(), so two concurrent starts never get the same port.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Set

from project_chat.config import DEFAULT_BIND_HOST
from project_chat.errors import PortAllocationFailed

logger = logging.getLogger(__name__)


class PortAllocator:
    def __init__(self, host: str = DEFAULT_BIND_HOST, max_attempts: int = 20):
        self.host = host
        self.max_attempts = max_attempts
        self._lock = threading.Lock()
        self._reserved: Set[int] = set()

    def _probe(self) -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            return s.getsockname()[1]

    def allocate(self) -> int:
        with self._lock:
            last_error = None
            for _ in range(self.max_attempts):
                try:
                    port = self._probe()
                except OSError as e:
                    last_error = e
                    continue
                if port in self._reserved:
                    continue
                self._reserved.add(port)
                logger.debug("[ports] Reserved %d", port)
                return port
        raise PortAllocationFailed(
            f"No free port on {self.host} after {self.max_attempts} attempts"
            + (f": {last_error}" if last_error else "")
        )

    def release(self, port: int) -> None:
        with self._lock:
            self._reserved.discard(port)

    @property
    def reserved(self) -> Set[int]:
        with self._lock:
            return set(self._reserved)


__all__ = ["PortAllocator"]
