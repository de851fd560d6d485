"""Tests for local port allocation."""

from __future__ import annotations

import socket

import pytest

from rundev.allocator import NullAllocator, PortAllocator, port_is_bindable
from rundev.exceptions import CapacityExceeded


def test_acquire_lowest_first() -> None:
    allocator = PortAllocator(5100, 5102, check_bind=False)

    assert [allocator.acquire() for _ in range(3)] == [5100, 5101, 5102]
    assert allocator.in_use == 3


def test_exhausted_range_raises() -> None:
    allocator = PortAllocator(5100, 5101, check_bind=False)
    allocator.acquire()
    allocator.acquire()

    with pytest.raises(CapacityExceeded) as exc_info:
        allocator.acquire()

    assert exc_info.value.details == {"capacity": 2, "in_use": 2}


def test_release_makes_port_reusable() -> None:
    allocator = PortAllocator(5100, 5101, check_bind=False)
    first = allocator.acquire()
    allocator.acquire()

    allocator.release(first)

    assert allocator.acquire() == first


def test_release_is_idempotent() -> None:
    allocator = PortAllocator(5100, 5101, check_bind=False)
    port = allocator.acquire()

    allocator.release(port)
    allocator.release(port)
    allocator.release(None)

    assert allocator.in_use == 0


def test_skips_ports_held_by_other_processes() -> None:
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("0.0.0.0", 0))
    holder.listen()
    held = holder.getsockname()[1]
    try:
        assert not port_is_bindable(held)
        allocator = PortAllocator(held, held, check_bind=True)
        with pytest.raises(CapacityExceeded):
            allocator.acquire()
    finally:
        holder.close()


def test_time_wait_port_is_reusable() -> None:
    """A port left in TIME_WAIT by a stopped dev server can be handed out again."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    port = listener.getsockname()[1]

    client = socket.create_connection(("127.0.0.1", port))
    server_side, _ = listener.accept()
    # The side that closes first holds TIME_WAIT on the listening port.
    server_side.close()
    listener.close()
    client.close()

    assert port_is_bindable(port)
    assert PortAllocator(port, port).acquire() == port


def test_empty_range_rejected() -> None:
    with pytest.raises(ValueError):
        PortAllocator(5200, 5100)


def test_null_allocator() -> None:
    allocator = NullAllocator()

    assert allocator.acquire() is None
    allocator.release(None)
