"""Shared fixtures: in-memory serial endpoints and polling helpers."""

import socket
import threading
import time
from typing import Dict, List

import pytest
import serial

from serialhub.config import PortConfig
from serialhub.errors import PortUnavailable
from serialhub.trace import TraceRecord, TraceSink


class FakeSerial:
    """Serial endpoint backed by in-memory buffers.

    ``feed`` plays the device sending bytes to us; ``written`` collects what
    the hub wrote to the device. With ``slow_writes`` each byte is appended
    separately, yielding in between, so unsynchronised writers interleave.
    """

    def __init__(self, name: str, timeout: float = 0.05, slow_writes: bool = False):
        self.name = name
        self.timeout = timeout
        self.slow_writes = slow_writes
        self.is_open = True
        self.written = bytearray()
        self.fail_writes = 0
        self.failed_writes = 0
        self._inbound = bytearray()
        self._cond = threading.Condition()

    def feed(self, data: bytes):
        with self._cond:
            self._inbound += data
            self._cond.notify_all()

    @property
    def in_waiting(self) -> int:
        with self._cond:
            self._check_open()
            return len(self._inbound)

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            self._check_open()
            self._cond.wait_for(lambda: self._inbound or not self.is_open, self.timeout)
            self._check_open()
            chunk = bytes(self._inbound[:size])
            del self._inbound[:size]
            return chunk

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            self.fail_writes -= 1
            self.failed_writes += 1
            raise serial.SerialException("write failed")
        if not self.slow_writes:
            with self._cond:
                self._check_open()
                self.written += data
                self._cond.notify_all()
            return len(data)
        for b in data:
            with self._cond:
                self._check_open()
                self.written.append(b)
                self._cond.notify_all()
            time.sleep(0)
        return len(data)

    def close(self):
        with self._cond:
            self.is_open = False
            self._cond.notify_all()

    def _check_open(self):
        if not self.is_open:
            raise serial.SerialException("port is closed")


class FakePorts:
    """Opener handing out FakeSerial instances by port name."""

    def __init__(self, missing=(), slow_writes=False):
        self.missing = set(missing)
        self.slow_writes = slow_writes
        self.ports: Dict[str, FakeSerial] = {}
        self.opened: List[PortConfig] = []

    def __call__(self, cfg: PortConfig) -> FakeSerial:
        if cfg.name in self.missing:
            raise PortUnavailable(f"Cannot open {cfg.name}: no such device")
        self.opened.append(cfg)
        port = FakeSerial(cfg.name, slow_writes=self.slow_writes)
        self.ports[cfg.name] = port
        return port


def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def connect(port: int, timeout: float = 2.0) -> socket.socket:
    sock = socket.create_connection(("127.0.0.1", port), timeout=timeout)
    return sock


def connect_small_buffer(port: int, rcvbuf: int = 4096, timeout: float = 20.0) -> socket.socket:
    """Client whose tiny receive buffer fills up as soon as it stops reading."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, rcvbuf)
    sock.settimeout(timeout)
    sock.connect(("127.0.0.1", port))
    return sock


def recv_until_closed(sock: socket.socket, limit: int) -> bytes:
    data = bytearray()
    while len(data) < limit:
        try:
            chunk = sock.recv(65536)
        except ConnectionResetError:
            break
        if not chunk:
            break
        data += chunk
    return bytes(data)


def recv_exactly(sock: socket.socket, count: int) -> bytes:
    data = b""
    while len(data) < count:
        chunk = sock.recv(count - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture()
def fake_ports() -> FakePorts:
    return FakePorts()


@pytest.fixture()
def records() -> List[TraceRecord]:
    return []


@pytest.fixture()
def trace(records) -> TraceSink:
    return TraceSink(handler=records.append, enabled=True)
