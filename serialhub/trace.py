"""Byte-level transfer tracing, switched on and off at runtime."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("serialhub.trace")


@dataclass(frozen=True)
class TraceRecord:
    label: str
    hex: str
    ascii: str

    @classmethod
    def from_bytes(cls, label: str, data: bytes) -> "TraceRecord":
        return cls(
            label=label,
            hex=" ".join(f"{b:02X}" for b in data),
            ascii="".join(chr(b) if 32 <= b <= 126 else "." for b in data),
        )

    def __str__(self):
        return f"[{self.label}] {self.hex}  |{self.ascii}|"


def _log_record(record: TraceRecord):
    logger.info("%s", record)


class TraceSink:
    """Hands one TraceRecord at a time to a handler while tracing is enabled.

    ``enabled`` is read by every relay thread without locking; a toggle is
    picked up by the next chunk each thread sees.
    """

    def __init__(
        self,
        handler: Optional[Callable[[TraceRecord], None]] = None,
        enabled: bool = False,
    ):
        self.enabled = enabled
        self._handler = handler or _log_record
        self._lock = threading.Lock()

    def toggle(self) -> bool:
        self.enabled = not self.enabled
        return self.enabled

    def emit(self, label: str, data: bytes):
        if not self.enabled:
            return
        record = TraceRecord.from_bytes(label, data)
        with self._lock:
            self._handler(record)
