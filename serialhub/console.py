"""Interactive command console: parses command lines and prints results."""

import sys
from typing import List, Optional, TextIO

from serial.tools import list_ports

from serialhub.bridge import BridgeStatus
from serialhub.config import DEFAULT_LOOPBACK_PORT
from serialhub.errors import HubError
from serialhub.registry import BridgeRegistry
from serialhub.trace import TraceRecord, TraceSink

HELP = """Commands:
  bridge <spec1> <spec2>   - Bridge two serial ports
  loopback [port]          - TCP loopback between clients (default: 9600)
  tcpserial <spec> <port>  - Bridge a serial port to TCP clients
  list                     - Show available serial ports
  status                   - Show active bridges
  stop <id>                - Stop a bridge
  hex                      - Toggle hex tracing of transfers
  quit                     - Stop all bridges and exit

Port spec: name[:baud[,dataBits[,parity[,stopBits]]]], e.g. COM5:19200,7,E,2"""

RULE = "-" * 79


def format_status_line(status: BridgeStatus) -> str:
    """One row of the status table."""
    return f"  {status.id:>2} | {status.kind.value:<10} | {status.endpoints:<34} | {status.rx_bytes:>8} | {status.tx_bytes:>8}"


def format_status_table(statuses: List[BridgeStatus]) -> str:
    """The status table printed by the "status" command."""
    lines = [
        "Active Bridges:",
        RULE,
        f"  ID | {'Type':<10} | {'Endpoints':<34} | {'Rx':>8} | {'Tx':>8}",
        RULE,
    ]
    lines += [format_status_line(s) for s in statuses] or ["  (none)"]
    lines.append(RULE)
    return "\n".join(lines)


class HubConsole:
    """Maps command lines onto a BridgeRegistry and a TraceSink."""

    def __init__(
        self,
        registry: Optional[BridgeRegistry] = None,
        out: Optional[TextIO] = None,
    ):
        self.out = out or sys.stdout
        if registry is None:
            registry = BridgeRegistry(trace=TraceSink(handler=self.print_trace))
        self.registry = registry
        self.trace = registry.trace
        self.running = True
        self.failed = False

    def print(self, text: str = ""):
        """Write a line to the console output."""
        print(text, file=self.out, flush=True)

    def print_trace(self, record: TraceRecord):
        """Trace handler printing each record as one line."""
        self.print(str(record))

    def fail(self, text: str):
        """Report a failed command; ``failed`` stays set until the next one."""
        self.failed = True
        self.print(text)

    def execute(self, line: str) -> bool:
        """Run one command line; returns False once the console should exit."""
        parts = line.split()
        if not parts:
            return self.running
        cmd, args = parts[0].lower(), parts[1:]
        self.failed = False
        handler = getattr(self, f"do_{cmd}", None)
        if handler is None:
            self.fail("Unknown command. Type 'help' for options.")
            return self.running
        try:
            handler(args)
        except (HubError, ValueError) as exc:
            self.fail(f"Error: {exc}")
        return self.running

    def run(self, stdin: Optional[TextIO] = None):
        """Read and execute commands until quit or end of input."""
        self.print(HELP)
        while self.running:
            self.out.write("\n> ")
            self.out.flush()
            line = (stdin or sys.stdin).readline()
            if not line:
                self.do_quit([])
                break
            self.execute(line)

    def do_bridge(self, args):
        """bridge <spec1> <spec2>"""
        if len(args) < 2:
            self.fail("Usage: bridge <spec1> <spec2>")
            return
        bridge_id = self.registry.bridge(args[0], args[1])
        self.print(f"Started bridge #{bridge_id}: {self.registry.get(bridge_id).endpoints()}")

    def do_loopback(self, args):
        """loopback [port]"""
        bridge_id = self.registry.loopback(args[0] if args else DEFAULT_LOOPBACK_PORT)
        port = self.registry.get(bridge_id).port
        self.print(f"Started loopback #{bridge_id} on TCP port {port}")
        self.print(f"  Connect apps to 127.0.0.1:{port} - data is relayed between them")

    def do_tcpserial(self, args):
        """tcpserial <spec> <port>"""
        if len(args) < 2:
            self.fail("Usage: tcpserial <spec> <port>")
            return
        bridge_id = self.registry.tcpserial(args[0], args[1])
        self.print(f"Started TCP-Serial bridge #{bridge_id}: {self.registry.get(bridge_id).endpoints()}")

    def do_list(self, args):
        """List serial devices found on this machine."""
        self.print("Available serial ports:")
        self.print("-----------------------")
        ports = sorted(list_ports.comports(), key=lambda p: p.device)
        if not ports:
            self.print("  (none found)")
        for port in ports:
            self.print(f"  {port.device:<16} {port.description}")

    def do_status(self, args):
        """Print the active bridges."""
        self.print(format_status_table(self.registry.status()))

    def do_stop(self, args):
        """stop <id>"""
        if not args:
            self.fail("Usage: stop <id>")
            return
        bridge_id = int(args[0])
        if self.registry.stop(bridge_id):
            self.print(f"Stopped bridge #{bridge_id}")
        else:
            self.fail(f"Bridge #{bridge_id} not found")

    def do_hex(self, args):
        """Toggle hex tracing."""
        enabled = self.trace.toggle()
        self.print(f"Hex trace {'enabled' if enabled else 'disabled'}")

    def do_help(self, args):
        """Print the command summary."""
        self.print(HELP)

    def do_quit(self, args):
        """Stop every bridge and leave the console."""
        self.registry.stop_all()
        self.running = False

    do_exit = do_quit
