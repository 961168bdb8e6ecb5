import socket

import pytest

from ziptrials.telemetry.monitor import MonitorState, ProgressMonitor, main
from ziptrials.telemetry.protocol import parse_line

unix_sockets = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"),
    reason="Unix datagram sockets not available on this platform",
)


def _raw_sender():
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    return sock


# =============================================================================
# SECTION 1 -- MonitorState
# =============================================================================

class TestMonitorState:
    def test_bar_counters(self):
        state = MonitorState()
        for line in ("pb 1 max 3", "pb 1 step", "pb 1 step", "pb 2 max 100", "pb 2 value 40"):
            state.apply(parse_line(line))
        assert state.bars[1].value == 2
        assert state.bars[1].maximum == 3
        assert state.bars[2].value == 40

    def test_max_resets_value(self):
        state = MonitorState()
        for line in ("pb 2 max 10", "pb 2 value 10", "pb 2 max 20"):
            state.apply(parse_line(line))
        assert state.bars[2].value == 0

    def test_summary(self):
        state = MonitorState()
        for line in ("test Zip64 Update", "pb 0 max 5", "pb 0 step", "status Verifying the zip"):
            state.apply(parse_line(line))
        assert state.test == "Zip64 Update"
        assert state.summary() == "[0: 1/5] Verifying the zip"


# =============================================================================
# SECTION 2 -- Receiving
# =============================================================================

@unix_sockets
class TestProgressMonitor:
    def test_malformed_lines_are_skipped(self, tmp_path):
        with ProgressMonitor("skip", tmp_path, timeout=5.0) as monitor:
            sender = _raw_sender()
            try:
                for line in ("bogus line", "pb 9 max 1", "status ok", "stop"):
                    sender.sendto(line.encode(), str(monitor.address))
            finally:
                sender.close()
            received = [m.to_line() for m in monitor.collect()]
        assert received == ["status ok", "stop"]

    def test_timeout_raises(self, tmp_path):
        with ProgressMonitor("quiet", tmp_path, timeout=0.05) as monitor:
            with pytest.raises(socket.timeout):
                monitor.receive()

    def test_socket_removed_on_close(self, tmp_path):
        with ProgressMonitor("gone", tmp_path, timeout=1.0) as monitor:
            assert monitor.address.exists()
        assert not monitor.address.exists()

    def test_stale_socket_is_replaced(self, tmp_path):
        stale = ProgressMonitor("stale", tmp_path)
        stale.bind()
        stale._sock.close()
        stale._sock = None
        assert stale.address.exists()
        with ProgressMonitor("stale", tmp_path, timeout=1.0) as monitor:
            assert monitor.address.exists()

    def test_receive_before_bind_raises(self, tmp_path):
        with pytest.raises(RuntimeError, match="not bound"):
            ProgressMonitor("unbound", tmp_path).receive()


# =============================================================================
# SECTION 3 -- Command line
# =============================================================================

@unix_sockets
class TestMonitorMain:
    def test_times_out_with_exit_code_1(self, tmp_path, capsys):
        code = main(["--channel", "cli", "--channel-dir", str(tmp_path), "--timeout", "0.05"])
        assert code == 1
        assert "MONITOR: listening on" in capsys.readouterr().out
