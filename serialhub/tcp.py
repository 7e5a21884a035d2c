"""TCP bridges: client fan-out on loopback, and a serial port shared by TCP clients."""

import logging
import select
import socket
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

import serial

from serialhub.bridge import Bridge, BridgeKind, cancel_read, close_quietly, open_serial
from serialhub.config import (
    ACCEPT_TIMEOUT,
    BUFFER_SIZE,
    FAILURE_BACKOFF,
    READ_TIMEOUT,
    SEND_TIMEOUT,
    PortConfig,
)
from serialhub.errors import PortUnavailable
from serialhub.pump import pump
from serialhub.trace import TraceSink

logger = logging.getLogger("serialhub")

LOOPBACK_HOST = "127.0.0.1"
ANY_HOST = "0.0.0.0"


@dataclass(eq=False)
class ClientConnection:
    client_id: int
    sock: socket.socket
    address: Tuple = field(default=("?", "?"))

    @property
    def rx_label(self) -> str:
        return f"C{self.client_id} RX"

    @property
    def tx_label(self) -> str:
        return f"C{self.client_id} TX"


class ClientSet:
    """TCP clients of one bridge; membership decides who receives broadcasts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._clients: Dict[int, ClientConnection] = {}
        self._next_id = 1

    def add(self, sock: socket.socket, address) -> ClientConnection:
        """Track a newly accepted socket under the next client id."""
        with self._lock:
            conn = ClientConnection(self._next_id, sock, address)
            self._next_id += 1
            self._clients[conn.client_id] = conn
        return conn

    def remove(self, conn: ClientConnection) -> bool:
        """Forget and close a client; False if it was already gone."""
        with self._lock:
            present = self._clients.pop(conn.client_id, None) is not None
        _close_socket(conn.sock)
        return present

    def broadcast(
        self,
        data: bytes,
        exclude: Optional[ClientConnection] = None,
        on_sent: Optional[Callable[[ClientConnection], None]] = None,
    ) -> int:
        """Send ``data`` to every client but ``exclude``; returns how many got it.

        A client whose send fails or times out may have received only part of
        the chunk, so it is dropped and its socket closed. The others still
        get the data.
        """
        delivered = 0
        failed = []
        with self._lock:
            for conn in self._clients.values():
                if conn is exclude:
                    continue
                try:
                    conn.sock.sendall(data)
                except OSError as exc:
                    logger.info("Dropping client %s after failed send: %s", conn.client_id, exc)
                    failed.append(conn)
                    continue
                delivered += 1
                if on_sent is not None:
                    on_sent(conn)
            for conn in failed:
                del self._clients[conn.client_id]
        for conn in failed:
            _close_socket(conn.sock)
        return delivered

    def close_all(self):
        """Close every client socket and empty the set."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for conn in clients:
            _close_socket(conn.sock)

    def __len__(self):
        with self._lock:
            return len(self._clients)


def _close_socket(sock: socket.socket):
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    close_quietly(sock)


def open_listener(host: str, port: int) -> socket.socket:
    """Bind and listen, raising PortUnavailable if the address is taken."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen()
        sock.settimeout(ACCEPT_TIMEOUT)
    except OSError as exc:
        sock.close()
        raise PortUnavailable(f"Cannot listen on {host}:{port}: {exc}") from exc
    return sock


class TcpBridge(Bridge):
    """Accept loop and per-client read loops shared by the TCP bridge kinds."""

    def __init__(
        self,
        bridge_id: int,
        host: str,
        port: int,
        trace: Optional[TraceSink] = None,
        send_timeout: float = SEND_TIMEOUT,
    ):
        super().__init__(bridge_id, trace)
        self.host = host
        self.port = port
        self.send_timeout = send_timeout
        self.clients = ClientSet()
        self._listener: Optional[socket.socket] = None

    def client_count(self) -> int:
        return len(self.clients)

    def _listen(self):
        self._listener = open_listener(self.host, self.port)
        self.port = self._listener.getsockname()[1]
        self._spawn(self._accept_loop, name=f"{type(self).__name__}-{self.id}-accept")

    def _close(self):
        close_quietly(self._listener)
        self.clients.close_all()

    def _accept_loop(self):
        listener = self._listener
        while not self._stop_event.is_set():
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                logger.debug("Bridge #%s accept failed: %s", self.id, exc)
                self._stop_event.wait(FAILURE_BACKOFF)
                continue
            # Reads are polled with select; the timeout only bounds sendall.
            sock.settimeout(self.send_timeout)
            conn = self.clients.add(sock, address)
            logger.info(
                "Bridge #%s: client %s connected from %s:%s",
                self.id, conn.client_id, address[0], address[1],
            )
            self._spawn(
                self._client_loop, conn,
                name=f"{type(self).__name__}-{self.id}-client-{conn.client_id}",
            )

    def _client_loop(self, conn: ClientConnection):
        try:
            while not self._stop_event.is_set():
                try:
                    readable, _, _ = select.select([conn.sock], [], [], READ_TIMEOUT)
                    if not readable:
                        continue
                    data = conn.sock.recv(BUFFER_SIZE)
                except (OSError, ValueError) as exc:
                    # ValueError: the socket was closed by a broadcast or stop.
                    logger.debug("Bridge #%s: client %s read failed: %s", self.id, conn.client_id, exc)
                    break
                if not data:
                    break
                self.trace.emit(conn.rx_label, data)
                self.rx.add(len(data))
                self._on_client_data(conn, data)
        finally:
            if self.clients.remove(conn):
                logger.info("Bridge #%s: client %s disconnected", self.id, conn.client_id)

    def _on_client_data(self, conn: ClientConnection, data: bytes):
        raise NotImplementedError


class TcpLoopback(TcpBridge):
    """Every client's bytes go to every other client connected to a loopback port."""

    kind = BridgeKind.LOOPBACK

    def __init__(
        self,
        bridge_id: int,
        port: int,
        trace: Optional[TraceSink] = None,
        host: str = LOOPBACK_HOST,
        send_timeout: float = SEND_TIMEOUT,
    ):
        super().__init__(bridge_id, host, port, trace, send_timeout)

    def endpoints(self) -> str:
        return f"TCP:{self.port} ({self.client_count()} clients)"

    def _open(self):
        self._listen()

    def _on_client_data(self, conn: ClientConnection, data: bytes):
        def sent(recipient: ClientConnection):
            self.trace.emit(recipient.tx_label, data)
            self.tx.add(len(data))

        self.clients.broadcast(data, exclude=conn, on_sent=sent)


class TcpSerialGateway(TcpBridge):
    """One serial port shared by any number of TCP clients."""

    kind = BridgeKind.TCP_SERIAL

    def __init__(
        self,
        bridge_id: int,
        port_config: PortConfig,
        tcp_port: int,
        trace: Optional[TraceSink] = None,
        opener: Callable[[PortConfig], object] = open_serial,
        host: str = ANY_HOST,
        send_timeout: float = SEND_TIMEOUT,
    ):
        super().__init__(bridge_id, host, tcp_port, trace, send_timeout)
        self.port_config = port_config
        self._opener = opener
        self._serial = None
        self._serial_lock = threading.Lock()

    def endpoints(self) -> str:
        return f"{self.port_config.name} <-> TCP:{self.port} ({self.client_count()} clients)"

    def _open(self):
        self._serial = self._opener(self.port_config)
        self._listen()
        self._spawn(
            pump, self._serial, self.clients.broadcast, self.tx, self._stop_event,
            self.port_config.name, self.trace,
            name=f"TcpSerialGateway-{self.id}-serial",
        )

    def _close(self):
        super()._close()
        cancel_read(self._serial)
        self._join()
        close_quietly(self._serial)

    def _on_client_data(self, conn: ClientConnection, data: bytes):
        try:
            with self._serial_lock:
                self._serial.write(data)
        except (serial.SerialException, OSError) as exc:
            logger.warning(
                "Bridge #%s: write from client %s to %s failed: %s",
                self.id, conn.client_id, self.port_config.name, exc,
            )
