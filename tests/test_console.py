import io

import pytest

from conftest import FakePorts
from serialhub.__main__ import main
from serialhub.console import HubConsole, format_status_table
from serialhub.registry import BridgeRegistry


@pytest.fixture()
def console():
    out = io.StringIO()
    registry = BridgeRegistry(serial_opener=FakePorts(missing={"GONE"}))
    con = HubConsole(registry, out=out)
    yield con
    registry.stop_all()


def output(con):
    return con.out.getvalue()


def test_bridge_and_stop(console):
    console.execute("bridge COM1 COM2:19200")
    assert "Started bridge #1: COM1 <-> COM2" in output(console)
    console.execute("stop 1")
    assert "Stopped bridge #1" in output(console)
    console.execute("stop 1")
    assert "Bridge #1 not found" in output(console)


def test_stop_unknown(console):
    console.execute("stop 99")
    assert "Bridge #99 not found" in output(console)
    assert len(console.registry) == 0


def test_errors_are_reported_not_raised(console):
    console.execute("bridge COM1:fast COM2")
    console.execute("bridge COM1 GONE")
    console.execute("stop abc")
    text = output(console)
    assert text.count("Error:") == 3
    assert "Cannot open GONE" in text


def test_usage_and_unknown_commands(console):
    console.execute("bridge COM1")
    console.execute("tcpserial COM1")
    console.execute("frobnicate")
    console.execute("   ")
    text = output(console)
    assert "Usage: bridge <spec1> <spec2>" in text
    assert "Usage: tcpserial <spec> <port>" in text
    assert "Unknown command" in text


def test_status_table(console):
    console.execute("status")
    assert "(none)" in output(console)
    console.execute("loopback 0")
    console.execute("status")
    text = output(console)
    assert "Started loopback #1" in text
    assert "Loopback" in text


def test_format_status_table_lists_rows():
    registry = BridgeRegistry(serial_opener=FakePorts())
    try:
        registry.bridge("X1", "X2")
        table = format_status_table(registry.status())
    finally:
        registry.stop_all()
    assert "X1 <-> X2" in table
    assert "(none)" not in table


def test_hex_toggles_trace(console):
    assert console.trace.enabled is False
    console.execute("hex")
    assert console.trace.enabled is True
    console.execute("HEX")
    assert console.trace.enabled is False
    assert "Hex trace enabled" in output(console)


def test_default_console_prints_trace_records():
    out = io.StringIO()
    con = HubConsole(out=out)
    con.execute("hex")
    con.trace.emit("P1", b"AB\n")
    assert "[P1] 41 42 0A  |AB.|" in out.getvalue()


def test_quit_stops_everything(console):
    console.execute("loopback 0")
    assert console.execute("quit") is False
    assert len(console.registry) == 0


def test_run_reads_until_quit(console):
    console.run(io.StringIO("loopback 0\nstatus\nquit\nstatus\n"))
    assert console.running is False
    assert output(console).count("Active Bridges:") == 1


def test_run_stops_on_end_of_input(console):
    console.run(io.StringIO("loopback 0\n"))
    assert len(console.registry) == 0


def test_list_ports(console, monkeypatch):
    class Port:
        device = "/dev/ttyFAKE0"
        description = "Fake adapter"

    monkeypatch.setattr("serialhub.console.list_ports.comports", lambda: [Port()])
    console.execute("list")
    assert "/dev/ttyFAKE0" in output(console)


def test_main_rejects_bad_arguments(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["teleport"])
    assert exc.value.code == 1
    assert "Unknown command" in capsys.readouterr().err


def test_main_one_shot_list(monkeypatch, capsys):
    monkeypatch.setattr("serialhub.console.list_ports.comports", lambda: [])
    main(["list"])
    assert "(none found)" in capsys.readouterr().out


def test_failed_flag_tracks_last_command(console):
    console.execute("stop 99")
    assert console.failed
    console.execute("status")
    assert not console.failed
    console.execute("bridge COM1")
    assert console.failed
    console.execute("frobnicate")
    assert console.failed


def test_main_one_shot_failure_exits_with_error(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["bridge", "/dev/serialhub-missing-a", "/dev/serialhub-missing-b"])
    assert exc.value.code == 1
    assert "Error:" in capsys.readouterr().out


def test_main_one_shot_stops_on_enter(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("\n"))
    main(["loopback", "0"])
    out = capsys.readouterr().out
    assert "Started loopback #1" in out
    assert "Press Ctrl+C or Enter to stop" in out
