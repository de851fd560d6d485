"""
Local resource allocation for sandboxes.

PortAllocator hands out TCP ports from a fixed window, lowest first.
NullAllocator is used by remote backends that need no local resource.
"""
from __future__ import annotations

import logging
import socket
from typing import Optional, Set

from rundev.exceptions import CapacityExceeded

logger = logging.getLogger(__name__)


def port_is_bindable(port: int, host: str = "0.0.0.0") -> bool:
    """True if nothing outside our bookkeeping currently holds ``port``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # Match what the dev server itself sets, so TIME_WAIT remnants of a
    # stopped session do not count as held.
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


class PortAllocator:
    """
    Allocates ports from the inclusive range ``[start, end]``.

    acquire() and release() never await, so under asyncio they are atomic
    with respect to other coroutines.
    """

    def __init__(self, start: int, end: int, check_bind: bool = True) -> None:
        if start > end:
            raise ValueError(f"Empty port range: {start}-{end}")
        self._start = start
        self._end = end
        self._check_bind = check_bind
        self._in_use: Set[int] = set()

    @property
    def capacity(self) -> int:
        return self._end - self._start + 1

    @property
    def in_use(self) -> int:
        return len(self._in_use)

    def acquire(self) -> int:
        """
        Reserve the lowest free port.

        Raises:
            CapacityExceeded: If every port in range is marked in use or held
                by another process.
        """
        for port in range(self._start, self._end + 1):
            if port in self._in_use:
                continue
            if self._check_bind and not port_is_bindable(port):
                logger.debug("Port %d held outside rundev, skipping", port)
                continue
            self._in_use.add(port)
            return port
        raise CapacityExceeded(
            f"No free port in range {self._start}-{self._end}",
            details={"capacity": self.capacity, "in_use": self.in_use},
        )

    def release(self, port: Optional[int]) -> None:
        """Return ``port`` to the pool. Releasing a free port is a no-op."""
        if port is None:
            return
        self._in_use.discard(port)


class NullAllocator:
    """Allocator for backends that address sandboxes remotely."""

    capacity = 0
    in_use = 0

    def acquire(self) -> None:
        return None

    def release(self, resource: Optional[int]) -> None:
        return None
