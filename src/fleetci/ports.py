# ports.py
from __future__ import annotations

import random
import socket
import threading
from typing import Callable, Iterable, List, Optional, Set

from .errors import PortUnavailable

MAX_ATTEMPTS = 666
PORT_RANGE = (40000, 50000)


def port_is_free(port: int, host: str = "127.0.0.1") -> bool:
    """Bind and immediately release `port`; True when the bind succeeded."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError:
        return False
    finally:
        sock.close()
    return True


def random_port() -> int:
    low, high = PORT_RANGE
    return random.randint(low + 1, high)


class PortAllocator:
    """
    Hands out ports to browser-hosted tasks.

    A claimed port stays reserved until released, even if the bind probe
    would succeed again; no two in-flight tasks ever hold the same port.
    """

    def __init__(
        self,
        preferred: Iterable[int] = (),
        *,
        max_attempts: int = MAX_ATTEMPTS,
        probe: Callable[[int], bool] = port_is_free,
        candidates: Callable[[], int] = random_port,
    ):
        self._preferred: List[int] = list(preferred)
        self._max_attempts = max_attempts
        self._probe = probe
        self._candidates = candidates
        self._claimed: Set[int] = set()
        self._lock = threading.Lock()

    @property
    def claimed(self) -> Set[int]:
        with self._lock:
            return set(self._claimed)

    def _try(self, port: int, exclude: Set[int]) -> bool:
        # caller holds the lock
        if port in self._claimed or port in exclude:
            return False
        if not self._probe(port):
            return False
        self._claimed.add(port)
        return True

    def claim(self, exclude: Iterable[int] = ()) -> int:
        """Reserve a port; ports in `exclude` (earlier failed attempts) are never handed out."""
        skip = set(exclude)
        with self._lock:
            for port in self._preferred:
                if self._try(port, skip):
                    return port

            for _ in range(self._max_attempts + 1):
                port = self._candidates()
                if self._try(port, skip):
                    return port

        raise PortUnavailable(self._max_attempts)

    def release(self, port: Optional[int]) -> None:
        if port is None:
            return
        with self._lock:
            self._claimed.discard(port)
