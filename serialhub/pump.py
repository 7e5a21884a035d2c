"""The read-then-forward loop shared by every bridge kind."""

import logging
import threading
from typing import Callable

import serial

from serialhub.config import BUFFER_SIZE, FAILURE_BACKOFF
from serialhub.trace import TraceSink

logger = logging.getLogger("serialhub")


class ByteCounter:
    """Running total of bytes moved in one direction.

    Increments are not synchronised; the value is a diagnostic.
    """

    def __init__(self):
        self.value = 0

    def add(self, count: int):
        self.value += count

    def __int__(self):
        return self.value


def read_chunk(source) -> bytes:
    """Read what the source has buffered, or wait up to its timeout for one byte."""
    waiting = getattr(source, "in_waiting", 0)
    return source.read(min(waiting, BUFFER_SIZE) or 1)


def pump(
    source,
    forward: Callable[[bytes], object],
    counter: ByteCounter,
    stop_event: threading.Event,
    label: str,
    trace: TraceSink,
):
    """Move bytes from ``source`` to ``forward`` until ``stop_event`` is set.

    An empty read means the read timeout expired and is not an error. Read or
    forward failures back off briefly and retry while the bridge is running;
    closing the source from another thread makes the pending read fail, which
    ends the loop once the stop event is set.
    """
    while not stop_event.is_set():
        try:
            data = read_chunk(source)
            if not data:
                continue
            trace.emit(label, data)
            forward(data)
            counter.add(len(data))
        except (serial.SerialException, OSError) as exc:
            if stop_event.is_set():
                break
            logger.debug("%s: I/O error, retrying: %s", label, exc)
            stop_event.wait(FAILURE_BACKOFF)
    logger.debug("%s: pump finished", label)
