# ziptrials/telemetry/monitor.py
# ProgressMonitor -- consumer end of a telemetry channel.
#
# Runs as a separate process next to a harness run:
#   python -m ziptrials.telemetry.monitor --channel Zip64_Setup
#
# Binds the channel socket, prints every message with the current bar
# counters and exits when "stop" arrives. Malformed lines are reported on
# stderr and skipped; they never end the session.

import argparse
import contextlib
import logging
import socket
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from ziptrials.telemetry.channel import channel_path
from ziptrials.telemetry.protocol import (
    CMD_PB,
    CMD_STOP,
    PB_MAX,
    PB_STEP,
    PB_VALUE,
    ProtocolMessage,
    parse_line,
)

logger = logging.getLogger(__name__)

_MAX_DATAGRAM = 64 * 1024


@dataclass
class BarView:
    maximum: int = 0
    value:   int = 0


@dataclass
class MonitorState:
    """Bar counters and the latest status as seen by the monitor."""
    test:   str = ""
    status: str = ""
    bars:   Dict[int, BarView] = field(default_factory=dict)

    def apply(self, message: ProtocolMessage) -> None:
        if message.command == "test":
            self.test = message.text
        elif message.command == "status":
            self.status = message.text
        elif message.command == CMD_PB:
            bar = self.bars.setdefault(message.bar, BarView())
            if message.action == PB_MAX:
                bar.maximum = message.amount
                bar.value = 0
            elif message.action == PB_VALUE:
                bar.value = message.amount
            elif message.action == PB_STEP:
                bar.value += 1

    def summary(self) -> str:
        bars = " ".join(
            f"[{i}: {b.value}/{b.maximum}]" for i, b in sorted(self.bars.items())
        )
        return f"{bars} {self.status}".strip()


class ProgressMonitor:
    """
    Binds a channel name and yields the messages sent to it.

    Usage:
        with ProgressMonitor("Zip64_Setup", timeout=5.0) as monitor:
            for message in monitor.messages():
                ...
    """

    def __init__(
        self,
        name:      str,
        directory: Optional[Path] = None,
        timeout:   Optional[float] = None,
    ):
        self.name    = name
        self.address = channel_path(name, directory)
        self.timeout = timeout
        self.state   = MonitorState()
        self._sock: Optional[socket.socket] = None

    def bind(self) -> None:
        # A socket file left by a crashed monitor blocks bind().
        with contextlib.suppress(FileNotFoundError):
            self.address.unlink()
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        sock.bind(str(self.address))
        sock.settimeout(self.timeout)
        self._sock = sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            with contextlib.suppress(FileNotFoundError):
                self.address.unlink()

    def __enter__(self) -> "ProgressMonitor":
        self.bind()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def receive(self) -> ProtocolMessage:
        """
        Block for the next well-formed message. Raises socket.timeout when the
        monitor's timeout elapses with nothing received.
        """
        if self._sock is None:
            raise RuntimeError(f"Monitor for channel '{self.name}' is not bound.")
        while True:
            data = self._sock.recv(_MAX_DATAGRAM)
            line = data.decode("utf-8", errors="replace")
            try:
                message = parse_line(line)
            except ValueError as exc:
                logger.warning("Ignoring malformed telemetry line %r: %s", line, exc)
                continue
            self.state.apply(message)
            return message

    def messages(self) -> Iterator[ProtocolMessage]:
        """Yield messages up to and including "stop"."""
        while True:
            message = self.receive()
            yield message
            if message.command == CMD_STOP:
                return

    def collect(self) -> List[ProtocolMessage]:
        return list(self.messages())


def launch_monitor(
    name:      str,
    directory: Optional[Path] = None,
    timeout:   Optional[float] = None,
) -> subprocess.Popen:
    """Start a monitor for `name` in a separate Python process."""
    cmd = [sys.executable, "-m", "ziptrials.telemetry.monitor", "--channel", name]
    if directory is not None:
        cmd += ["--channel-dir", str(directory)]
    if timeout is not None:
        cmd += ["--timeout", str(timeout)]
    return subprocess.Popen(cmd)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print progress telemetry sent to a named channel.",
        prog="python -m ziptrials.telemetry.monitor",
    )
    parser.add_argument("--channel", required=True, help="Channel name to listen on.")
    parser.add_argument("--channel-dir", default=None, help="Directory holding channel sockets.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a message before giving up. Default: wait forever.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Returns:
        0 -- "stop" received.
        1 -- timed out waiting for a message.
    """
    args = _parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    directory = Path(args.channel_dir) if args.channel_dir else None

    with ProgressMonitor(args.channel, directory=directory, timeout=args.timeout) as monitor:
        print(f"MONITOR: listening on {monitor.address}")
        sys.stdout.flush()
        try:
            for message in monitor.messages():
                if message.command == "test":
                    print(f"== {message.text}")
                elif message.command != CMD_STOP:
                    print(monitor.state.summary())
                sys.stdout.flush()
        except socket.timeout:
            print(f"MONITOR: no message within {args.timeout}s", file=sys.stderr)
            return 1
    print("MONITOR: stop received")
    return 0


if __name__ == "__main__":
    sys.exit(main())
