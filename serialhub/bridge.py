"""Bridge lifecycle and the serial-to-serial bridge."""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import serial

from serialhub.config import JOIN_TIMEOUT, READ_TIMEOUT, PortConfig
from serialhub.errors import PortUnavailable
from serialhub.pump import ByteCounter, pump
from serialhub.trace import TraceSink

logger = logging.getLogger("serialhub")


def open_serial(cfg: PortConfig) -> serial.Serial:
    """Open the serial port with the given settings and the relay read timeout."""
    try:
        return serial.serial_for_url(cfg.name, timeout=READ_TIMEOUT, **cfg.serial_kwargs())
    except (serial.SerialException, OSError, ValueError) as exc:
        raise PortUnavailable(f"Cannot open {cfg.name}: {exc}") from exc


def close_quietly(endpoint):
    """Close a serial port or socket, ignoring errors from an already broken one."""
    if endpoint is None:
        return
    try:
        endpoint.close()
    except (serial.SerialException, OSError) as exc:
        logger.debug("Error while closing %r: %s", endpoint, exc)


def cancel_read(endpoint):
    """Wake a read blocked on a serial port so its pump sees the stop event."""
    cancel = getattr(endpoint, "cancel_read", None)
    if cancel is None:
        return
    try:
        cancel()
    except (serial.SerialException, OSError) as exc:
        logger.debug("Error while cancelling read on %r: %s", endpoint, exc)


class BridgeKind(enum.Enum):
    SERIAL = "Serial"
    LOOPBACK = "Loopback"
    TCP_SERIAL = "TCP-Serial"


class BridgeState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class BridgeStatus:
    id: int
    kind: BridgeKind
    endpoints: str
    rx_bytes: int
    tx_bytes: int
    clients: Optional[int] = None


class Bridge:
    """One relay topology with a start/stop/status lifecycle.

    Subclasses implement ``_open`` (acquire endpoints and spawn threads),
    ``_close`` (release endpoints) and ``endpoints``. A bridge runs at most
    once; a stopped bridge is never restarted.
    """

    kind: BridgeKind

    def __init__(self, bridge_id: int, trace: Optional[TraceSink] = None):
        self.id = bridge_id
        self.trace = trace or TraceSink()
        self.rx = ByteCounter()
        self.tx = ByteCounter()
        self.state = BridgeState.CREATED
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._threads_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self.state is BridgeState.RUNNING

    def start(self):
        with self._state_lock:
            if self.state is not BridgeState.CREATED:
                raise RuntimeError(f"Bridge #{self.id} is {self.state.value} and cannot be started")
            try:
                self._open()
            except Exception:
                self._stop_event.set()
                self._close()
                self.state = BridgeState.STOPPED
                raise
            self.state = BridgeState.RUNNING
        logger.info("Bridge #%s started: %s", self.id, self.endpoints())

    def stop(self):
        with self._state_lock:
            if self.state is BridgeState.STOPPED:
                return
            self.state = BridgeState.STOPPED
            self._stop_event.set()
            self._close()
            self._join()
        logger.info("Bridge #%s stopped", self.id)

    def status(self) -> BridgeStatus:
        return BridgeStatus(
            id=self.id,
            kind=self.kind,
            endpoints=self.endpoints(),
            rx_bytes=self.rx.value,
            tx_bytes=self.tx.value,
            clients=self.client_count(),
        )

    def endpoints(self) -> str:
        raise NotImplementedError

    def client_count(self) -> Optional[int]:
        return None

    def _open(self):
        raise NotImplementedError

    def _close(self):
        raise NotImplementedError

    def _spawn(self, target: Callable, *args, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def threads(self) -> List[threading.Thread]:
        """Snapshot of the relay threads started and not yet reaped."""
        with self._threads_lock:
            return list(self._threads)

    def _join(self):
        current = threading.current_thread()
        for thread in self.threads():
            if thread is not current:
                thread.join(timeout=JOIN_TIMEOUT)


class SerialBridge(Bridge):
    """Relay two serial ports to each other, one pump thread per direction."""

    kind = BridgeKind.SERIAL

    def __init__(
        self,
        bridge_id: int,
        port1: PortConfig,
        port2: PortConfig,
        trace: Optional[TraceSink] = None,
        opener: Callable[[PortConfig], object] = open_serial,
    ):
        super().__init__(bridge_id, trace)
        self.port1 = port1
        self.port2 = port2
        self._opener = opener
        self._sp1 = None
        self._sp2 = None

    def endpoints(self) -> str:
        return f"{self.port1.name} <-> {self.port2.name}"

    def _open(self):
        self._sp1 = self._opener(self.port1)
        self._sp2 = self._opener(self.port2)
        self._spawn(
            pump, self._sp1, self._sp2.write, self.rx, self._stop_event, self.port1.name, self.trace,
            name=f"SerialBridge-{self.id}-{self.port1.name}",
        )
        self._spawn(
            pump, self._sp2, self._sp1.write, self.tx, self._stop_event, self.port2.name, self.trace,
            name=f"SerialBridge-{self.id}-{self.port2.name}",
        )

    def _close(self):
        cancel_read(self._sp1)
        cancel_read(self._sp2)
        self._join()
        close_quietly(self._sp1)
        close_quietly(self._sp2)
