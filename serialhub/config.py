"""Port specifications, defaults and command-line argument parsing for the hub."""

import argparse
import enum
from dataclasses import dataclass

import serial

from serialhub.errors import ConfigError


DEFAULT_BAUD = 9600
DEFAULT_DATA_BITS = 8
DEFAULT_LOOPBACK_PORT = 9600

READ_TIMEOUT = 0.1
ACCEPT_TIMEOUT = 0.1
SEND_TIMEOUT = 5.0
FAILURE_BACKOFF = 0.01
JOIN_TIMEOUT = 1.0
BUFFER_SIZE = 4096


class Parity(enum.Enum):
    NONE = ("N", serial.PARITY_NONE)
    ODD = ("O", serial.PARITY_ODD)
    EVEN = ("E", serial.PARITY_EVEN)
    MARK = ("M", serial.PARITY_MARK)
    SPACE = ("S", serial.PARITY_SPACE)

    def __init__(self, letter, pyserial):
        self.letter = letter
        self.pyserial = pyserial

    @classmethod
    def from_text(cls, text: str) -> "Parity":
        """Map a parity letter (case-insensitive) to a member, NONE if unknown."""
        letter = text.strip()[:1].upper()
        for member in cls:
            if member.letter == letter:
                return member
        return cls.NONE


class StopBits(enum.Enum):
    ONE = ("1", serial.STOPBITS_ONE)
    ONE_POINT_FIVE = ("1.5", serial.STOPBITS_ONE_POINT_FIVE)
    TWO = ("2", serial.STOPBITS_TWO)

    def __init__(self, text, pyserial):
        self.text = text
        self.pyserial = pyserial

    @classmethod
    def from_text(cls, text: str) -> "StopBits":
        """Map "1", "1.5" or "2" to a member, ONE for anything else."""
        text = text.strip()
        for member in cls:
            if member.text == text:
                return member
        return cls.ONE


@dataclass(frozen=True)
class PortConfig:
    """Connection parameters of one serial endpoint."""

    name: str
    baud_rate: int = DEFAULT_BAUD
    data_bits: int = DEFAULT_DATA_BITS
    parity: Parity = Parity.NONE
    stop_bits: StopBits = StopBits.ONE

    def __post_init__(self):
        if not self.name or ":" in self.name or self.name != self.name.strip():
            raise ConfigError(f"Invalid serial port name: {self.name!r}")
        if self.baud_rate <= 0:
            raise ConfigError(f"Baud rate must be positive, got {self.baud_rate}")
        if not (5 <= self.data_bits <= 8):
            raise ConfigError(f"Data bits must be between 5 and 8, got {self.data_bits}")

    @classmethod
    def parse(cls, spec: str) -> "PortConfig":
        """Parse ``name[:baud[,dataBits[,parity[,stopBits]]]]``.

        Omitted or empty fields take their defaults. Raises ConfigError when
        the numeric fields are not integers or the spec has too many fields.
        """
        name, _, suffix = spec.strip().partition(":")
        fields = suffix.split(",") if suffix else []
        if len(fields) > 4:
            raise ConfigError(f"Too many fields in port spec {spec!r}")
        fields += [""] * (4 - len(fields))
        baud, data_bits, parity, stop_bits = (f.strip() for f in fields)
        return cls(
            name=name.strip(),
            baud_rate=_parse_int(baud, DEFAULT_BAUD, "baud rate", spec),
            data_bits=_parse_int(data_bits, DEFAULT_DATA_BITS, "data bits", spec),
            parity=Parity.from_text(parity) if parity else Parity.NONE,
            stop_bits=StopBits.from_text(stop_bits) if stop_bits else StopBits.ONE,
        )

    def format(self) -> str:
        """Render the canonical spec, always with all four trailing fields."""
        return (
            f"{self.name}:{self.baud_rate},{self.data_bits},"
            f"{self.parity.letter},{self.stop_bits.text}"
        )

    def serial_kwargs(self) -> dict:
        """Keyword arguments for ``serial.serial_for_url``."""
        return {
            "baudrate": self.baud_rate,
            "bytesize": self.data_bits,
            "parity": self.parity.pyserial,
            "stopbits": self.stop_bits.pyserial,
        }

    def __str__(self):
        return self.format()


def _parse_int(text, default, what, spec):
    """Parse an integer field, using ``default`` when it is empty."""
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        raise ConfigError(f"Invalid {what} {text!r} in port spec {spec!r}") from None


def parse_port_spec(spec: str) -> PortConfig:
    """Parse a port spec string into a PortConfig."""
    return PortConfig.parse(spec)


def format_port_spec(cfg: PortConfig) -> str:
    """Render a PortConfig back to its canonical spec string."""
    return cfg.format()


def parse_tcp_port(text) -> int:
    """Parse a TCP port number; 0 lets the OS pick a free port."""
    try:
        port = int(text)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid TCP port {text!r}") from None
    if not (0 <= port <= 65535):
        raise ConfigError(f"TCP port must be between 0 and 65535, got {port}")
    return port


def parse_args(argv=None):
    """Parse command-line arguments and return a validated namespace."""
    parser = argparse.ArgumentParser(
        prog="serialhub",
        description=(
            "Relay bytes between serial ports and TCP sockets. "
            "Without a command an interactive console is started."
        ),
    )
    parser.add_argument(
        "command",
        nargs="*",
        help=(
            "One-shot command: 'bridge <spec1> <spec2>', 'loopback [port]', "
            "'tcpserial <spec> <port>' or 'list'"
        ),
    )
    parser.add_argument(
        "--hex",
        action="store_true",
        help="Start with hex tracing of every transfer enabled",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (connection events, errors)",
    )
    args = parser.parse_args(argv)
    _validate(args)
    return args


def _validate(args):
    """Validate parsed arguments; raise ValueError on invalid values."""
    if args.command and args.command[0].lower() not in ("bridge", "loopback", "tcpserial", "list"):
        raise ValueError(f"Unknown command {args.command[0]!r}")
