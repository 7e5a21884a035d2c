"""Entry point: run one command until interrupted, or the interactive console."""

import logging
import sys
import threading

from serialhub.config import parse_args
from serialhub.console import HubConsole


def wait_for_exit(console: HubConsole):
    """Block until Enter is pressed or Ctrl+C; without a terminal, until Ctrl+C."""
    console.print("\nPress Ctrl+C or Enter to stop...")
    if not sys.stdin.readline():
        threading.Event().wait()


def main(argv=None):
    try:
        args = parse_args(argv)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    console = HubConsole()
    console.trace.enabled = args.hex
    try:
        if not args.command:
            console.run()
            return
        console.execute(" ".join(args.command))
        if console.failed:
            sys.exit(1)
        if len(console.registry):
            wait_for_exit(console)
    except KeyboardInterrupt:
        pass
    finally:
        console.registry.stop_all()


if __name__ == "__main__":
    main()
