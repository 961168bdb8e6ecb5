# ziptrials/telemetry/progress_bridge.py
# ProgressEventBridge -- mirrors archive engine progress onto a telemetry
# channel as two progress bars.
#
#   bar 1 -- archive level: one step per completed entry.
#   bar 2 -- entry level: bytes of the current entry.
#
# The bridge holds no archive state. The only state is BarState: whether
# each bar has received its maximum in the current pass. No "value" or
# "step" line is sent for a bar before its "max" line. BarState is reset at
# every pass boundary.

import contextlib
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from ziptrials.engine.archive_engine import ZipArchive
from ziptrials.engine.events import ProgressEvent, ProgressEventKind, ProgressObserver
from ziptrials.telemetry.channel import TelemetryChannel
from ziptrials.telemetry.protocol import (
    BAR_ARCHIVE,
    BAR_ENTRY,
    pb_max_line,
    pb_step_line,
    pb_value_line,
    status_line,
)


class Phase(Enum):
    ARCHIVE_STARTED   = "archive-started"
    ENTRY_BEGIN       = "entry-begin"
    ENTRY_BYTES       = "entry-bytes"
    ENTRY_END         = "entry-end"
    ARCHIVE_COMPLETED = "archive-completed"


class PassKind(Enum):
    SAVE    = "save"
    EXTRACT = "extract"


PHASES = {
    ProgressEventKind.SAVE_STARTED:         Phase.ARCHIVE_STARTED,
    ProgressEventKind.BEFORE_WRITE_ENTRY:   Phase.ENTRY_BEGIN,
    ProgressEventKind.ENTRY_BYTES_READ:     Phase.ENTRY_BYTES,
    ProgressEventKind.AFTER_WRITE_ENTRY:    Phase.ENTRY_END,
    ProgressEventKind.SAVE_COMPLETED:       Phase.ARCHIVE_COMPLETED,
    ProgressEventKind.BEFORE_EXTRACT_ENTRY: Phase.ENTRY_BEGIN,
    ProgressEventKind.ENTRY_BYTES_WRITTEN:  Phase.ENTRY_BYTES,
    ProgressEventKind.AFTER_EXTRACT_ENTRY:  Phase.ENTRY_END,
}

# Word used in "status <word> <entry>" when an entry begins.
_BEGIN_WORDS = {
    PassKind.SAVE:    "Compressing",
    PassKind.EXTRACT: "Extracting",
}

# Default verb for byte progress and pass start/completion lines.
_VERBS = {
    PassKind.SAVE:    "Saving",
    PassKind.EXTRACT: "Extracting",
}


@dataclass
class BarState:
    """
    Fields:
        archive_max_set -- bar 1 has its maximum for this pass
        entry_max_set   -- bar 2 has its maximum for the current entry
        entries_total   -- maximum sent to bar 1, 0 until it is sent
    """
    archive_max_set: bool = False
    entry_max_set:   bool = False
    entries_total:   int  = 0

    def reset(self) -> None:
        self.archive_max_set = False
        self.entry_max_set = False
        self.entries_total = 0


def pass_kind_of(kind: ProgressEventKind) -> PassKind:
    return PassKind.SAVE if kind.is_save else PassKind.EXTRACT


def percent(transferred: int, total: int) -> float:
    """Share of an entry transferred, in percent. A zero-size entry counts as complete."""
    if total <= 0:
        return 100.0
    return transferred / total * 100


def translate_phase(
    phase:         Phase,
    state:         BarState,
    pass_kind:     PassKind,
    verb:          str = "",
    entry_name:    str = "",
    transferred:   int = 0,
    total_bytes:   int = 0,
    entries_total: int = 0,
) -> List[str]:
    """
    Protocol lines for one phase of a pass. Updates `state` in place.
    """
    verb = verb or _VERBS[pass_kind]
    lines: List[str] = []

    if phase is Phase.ARCHIVE_STARTED:
        state.reset()
        lines.append(status_line(f"{verb} started..."))

    elif phase is Phase.ENTRY_BEGIN:
        if not state.archive_max_set:
            lines.append(pb_max_line(BAR_ARCHIVE, entries_total))
            state.archive_max_set = True
            state.entries_total = entries_total
        lines.append(status_line(f"{_BEGIN_WORDS[pass_kind]} {entry_name}"))
        state.entry_max_set = False

    elif phase is Phase.ENTRY_BYTES:
        if not state.entry_max_set:
            lines.append(pb_max_line(BAR_ENTRY, total_bytes))
            state.entry_max_set = True
        pct = percent(transferred, total_bytes)
        lines.append(status_line(
            f"{verb} {entry_name} :: [{transferred}/{total_bytes}] ({pct:,.0f}%)"
        ))
        lines.append(pb_value_line(BAR_ENTRY, transferred))

    elif phase is Phase.ENTRY_END:
        lines.append(pb_step_line(BAR_ARCHIVE))

    elif phase is Phase.ARCHIVE_COMPLETED:
        state.reset()
        lines.append(pb_max_line(BAR_ARCHIVE, 1))
        lines.append(pb_value_line(BAR_ARCHIVE, 1))
        lines.append(status_line(f"{verb} completed"))

    return lines


def translate(event: ProgressEvent, state: BarState, verb: str = "") -> List[str]:
    """Protocol lines for one engine event. Updates `state` in place."""
    return translate_phase(
        PHASES[event.kind],
        state,
        pass_kind_of(event.kind),
        verb=verb,
        entry_name=event.entry_name,
        transferred=event.bytes_transferred,
        total_bytes=event.total_bytes,
        entries_total=event.entries_total,
    )


class ProgressEventBridge(ProgressObserver):
    """
    Observer that forwards translated engine events to a TelemetryChannel.

    Register it for exactly one pass:
        with bridge.observing(zip_archive):
            zip_archive.save(path, policy)

    Extract passes have no engine-level start or completion event; the
    consumer driving the pass calls begin_pass() and end_pass() itself.
    """

    def __init__(
        self,
        channel: TelemetryChannel,
        state:   Optional[BarState] = None,
        verb:    str = "",
    ):
        self._channel = channel
        self.state = state if state is not None else BarState()
        self.verb = verb

    def _send_all(self, lines: List[str]) -> None:
        for line in lines:
            self._channel.send(line)

    def on_progress(self, event: ProgressEvent) -> None:
        self._send_all(translate(event, self.state, self.verb))

    def attach(self, archive: ZipArchive) -> None:
        archive.add_observer(self)

    def detach(self, archive: ZipArchive) -> None:
        archive.remove_observer(self)

    @contextlib.contextmanager
    def observing(self, archive: ZipArchive, verb: str = "") -> Iterator["ProgressEventBridge"]:
        previous_verb = self.verb
        self.verb = verb or previous_verb
        self.attach(archive)
        try:
            yield self
        finally:
            self.detach(archive)
            self.verb = previous_verb

    def begin_pass(self, pass_kind: PassKind = PassKind.EXTRACT, entries_total: Optional[int] = None) -> None:
        """
        Start a pass. When the caller handles only part of the archive it
        passes that count as entries_total, which then fixes bar 1's maximum
        for the whole pass.
        """
        self._send_all(translate_phase(Phase.ARCHIVE_STARTED, self.state, pass_kind, self.verb))
        if entries_total is not None:
            self._send_all([pb_max_line(BAR_ARCHIVE, entries_total)])
            self.state.archive_max_set = True
            self.state.entries_total = entries_total

    def end_pass(self, pass_kind: PassKind = PassKind.EXTRACT) -> None:
        self._send_all(translate_phase(Phase.ARCHIVE_COMPLETED, self.state, pass_kind, self.verb))
