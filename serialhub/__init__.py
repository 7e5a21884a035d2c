"""Serial hub: relay bytes between serial ports and TCP clients."""

from serialhub.bridge import BridgeKind, BridgeState, BridgeStatus, SerialBridge
from serialhub.config import Parity, PortConfig, StopBits
from serialhub.errors import ConfigError, HubError, PortUnavailable
from serialhub.registry import BridgeRegistry
from serialhub.tcp import TcpLoopback, TcpSerialGateway
from serialhub.trace import TraceRecord, TraceSink

__all__ = [
    "BridgeKind",
    "BridgeRegistry",
    "BridgeState",
    "BridgeStatus",
    "ConfigError",
    "HubError",
    "Parity",
    "PortConfig",
    "PortUnavailable",
    "SerialBridge",
    "StopBits",
    "TcpLoopback",
    "TcpSerialGateway",
    "TraceRecord",
    "TraceSink",
]
