# ziptrials/telemetry/__init__.py
# Progress telemetry: line protocol, producer channel, engine event bridge
# and the out-of-process monitor.
#
# Monitor entry point:
#   python -m ziptrials.telemetry.monitor --channel [name]

from .protocol import ProtocolMessage, parse_line
from .channel import TelemetryChannel, channel_path
from .progress_bridge import BarState, PassKind, ProgressEventBridge, translate
from .monitor import ProgressMonitor, launch_monitor

__all__ = [
    "ProtocolMessage",
    "parse_line",
    "TelemetryChannel",
    "channel_path",
    "BarState",
    "PassKind",
    "ProgressEventBridge",
    "translate",
    "ProgressMonitor",
    "launch_monitor",
]
