# ziptrials/telemetry/channel.py
# TelemetryChannel -- one-way, best-effort line channel to a progress monitor.
#
# A channel name maps to a Unix datagram socket path. Each line is one
# datagram sent without blocking. If nobody is bound to the path yet, or the
# monitor went away, the datagram is dropped and the caller never sees an
# error. Datagrams on a local socket arrive in send order.
#
# On platforms without Unix datagram sockets the channel opens detached:
# every send is dropped.

import logging
import os
import re
import socket
import tempfile
from pathlib import Path
from typing import Optional

from ziptrials.telemetry.protocol import stop_line

logger = logging.getLogger(__name__)

# Overrides the directory holding channel sockets.
CHANNEL_DIR_ENV: str = "ZIPTRIALS_CHANNEL_DIR"

_SOCKET_PREFIX = "ziptrials-"
_UNSAFE_CHARS  = re.compile(r"[^A-Za-z0-9_.-]")


def channel_dir() -> Path:
    return Path(os.environ.get(CHANNEL_DIR_ENV) or tempfile.gettempdir())


def channel_path(name: str, directory: Optional[Path] = None) -> Path:
    """Socket path for a channel name. Characters unsafe in a file name become '_'."""
    if not name:
        raise ValueError("Channel name must be non-empty.")
    base = directory if directory is not None else channel_dir()
    return Path(base) / f"{_SOCKET_PREFIX}{_UNSAFE_CHARS.sub('_', name)}.sock"


class TelemetryChannel:
    """
    Producer end of a telemetry session.

    Usage:
        with TelemetryChannel.opened("Zip64_Setup") as channel:
            channel.send("test Zip64 Update")
        # "stop" has been sent, whatever happened inside the block.

    Counters:
      sent    -- lines handed to the socket.
      dropped -- lines lost (no listener, detached, closed, buffer full).
    """

    def __init__(self, directory: Optional[Path] = None):
        self._directory = directory
        self._sock: Optional[socket.socket] = None
        self._open = False
        self.name: str = ""
        self.address: Optional[Path] = None
        self.sent = 0
        self.dropped = 0

    @classmethod
    def opened(cls, name: str, directory: Optional[Path] = None) -> "TelemetryChannel":
        channel = cls(directory=directory)
        channel.open(name)
        return channel

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def detached(self) -> bool:
        return self._open and self._sock is None

    def open(self, name: str) -> None:
        """
        Establish the channel. Succeeds whether or not a monitor is listening.
        Opening an already open channel closes the previous session first.
        """
        if self._open:
            self.close()
        self.name = name
        self.address = channel_path(name, self._directory)
        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
            sock.setblocking(False)
            self._sock = sock
        except (AttributeError, OSError) as exc:
            logger.debug("Telemetry channel '%s' opened detached: %s", name, exc)
            self._sock = None
        self._open = True

    def send(self, line: str) -> bool:
        """
        Transmit one line. Returns True if the socket accepted it.
        Delivery failures are absorbed.
        """
        if not self._open or self._sock is None:
            self.dropped += 1
            return False
        try:
            self._sock.sendto(line.encode("utf-8"), str(self.address))
        except OSError as exc:
            self.dropped += 1
            logger.debug("Telemetry line dropped on '%s': %s", self.name, exc)
            return False
        self.sent += 1
        return True

    def close(self) -> None:
        """Send "stop", then release the socket. No-op when already closed."""
        if not self._open:
            return
        try:
            self.send(stop_line())
        finally:
            self._open = False
            if self._sock is not None:
                try:
                    self._sock.close()
                except OSError as exc:
                    logger.debug("Telemetry channel '%s' close failed: %s", self.name, exc)
                self._sock = None

    def __enter__(self) -> "TelemetryChannel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
