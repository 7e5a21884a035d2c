"""The set of running bridges and the id counter that names them."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from serialhub.bridge import Bridge, BridgeKind, BridgeStatus, SerialBridge, open_serial
from serialhub.config import DEFAULT_LOOPBACK_PORT, PortConfig, parse_tcp_port
from serialhub.tcp import TcpLoopback, TcpSerialGateway
from serialhub.trace import TraceSink

logger = logging.getLogger("serialhub")


class BridgeRegistry:
    """Creates, tracks and stops bridges.

    Ids start at 1 and are never reused, not even for a bridge whose start
    failed. A bridge is only listed once it is running, and every read or
    change of the active set happens under one lock.
    """

    def __init__(
        self,
        trace: Optional[TraceSink] = None,
        serial_opener: Callable[[PortConfig], object] = open_serial,
    ):
        self.trace = trace or TraceSink()
        self._serial_opener = serial_opener
        self._lock = threading.Lock()
        self._bridges: Dict[int, Bridge] = {}
        self._next_id = 1

    def create(self, kind: BridgeKind, **params) -> int:
        """Allocate an id, build a bridge of ``kind`` and start it.

        Start failures (PortUnavailable) propagate to the caller; the id stays
        consumed and the bridge is not added.
        """
        kind = BridgeKind(kind)
        with self._lock:
            bridge_id = self._next_id
            self._next_id += 1
        bridge = self._build(kind, bridge_id, params)
        bridge.start()
        with self._lock:
            self._bridges[bridge_id] = bridge
        return bridge_id

    def _build(self, kind: BridgeKind, bridge_id: int, params: dict) -> Bridge:
        if kind is BridgeKind.SERIAL:
            return SerialBridge(bridge_id, trace=self.trace, opener=self._serial_opener, **params)
        if kind is BridgeKind.LOOPBACK:
            return TcpLoopback(bridge_id, trace=self.trace, **params)
        return TcpSerialGateway(bridge_id, trace=self.trace, opener=self._serial_opener, **params)

    def bridge(self, spec1: str, spec2: str) -> int:
        port1 = PortConfig.parse(spec1)
        port2 = PortConfig.parse(spec2)
        return self.create(BridgeKind.SERIAL, port1=port1, port2=port2)

    def loopback(self, port=DEFAULT_LOOPBACK_PORT) -> int:
        return self.create(BridgeKind.LOOPBACK, port=parse_tcp_port(port))

    def tcpserial(self, spec: str, tcp_port) -> int:
        port_config = PortConfig.parse(spec)
        return self.create(BridgeKind.TCP_SERIAL, port_config=port_config, tcp_port=parse_tcp_port(tcp_port))

    def get(self, bridge_id: int) -> Optional[Bridge]:
        with self._lock:
            return self._bridges.get(bridge_id)

    def stop(self, bridge_id: int) -> bool:
        """Stop and forget a bridge; False if no running bridge has that id."""
        with self._lock:
            bridge = self._bridges.pop(bridge_id, None)
        if bridge is None:
            return False
        bridge.stop()
        return True

    def stop_all(self) -> int:
        with self._lock:
            bridges = list(self._bridges.values())
            self._bridges.clear()
        for bridge in bridges:
            bridge.stop()
        if bridges:
            logger.info("Stopped %d bridge(s)", len(bridges))
        return len(bridges)

    def status(self) -> List[BridgeStatus]:
        with self._lock:
            return [self._bridges[i].status() for i in sorted(self._bridges)]

    def __len__(self):
        with self._lock:
            return len(self._bridges)

    def __contains__(self, bridge_id):
        with self._lock:
            return bridge_id in self._bridges
