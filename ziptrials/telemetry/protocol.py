# ziptrials/telemetry/protocol.py
# Line protocol spoken on a telemetry channel.
#
# One command per line, space-delimited. Only the last field of `test` and
# `status` may contain spaces; it runs to the end of the line. No escaping.
#
#   test <name>            announce a named test scenario
#   status <text>          free-text status
#   pb <index> max <N>     set bar maximum
#   pb <index> value <N>   set bar value
#   pb <index> step        increment bar by one
#   stop                   terminal message of a session
#
# Bar 0 is the overall test-step counter, bar 1 the archive-level entry
# counter, bar 2 the entry-level byte counter.

from dataclasses import dataclass
from typing import Optional

CMD_TEST   = "test"
CMD_STATUS = "status"
CMD_PB     = "pb"
CMD_STOP   = "stop"

PB_MAX   = "max"
PB_VALUE = "value"
PB_STEP  = "step"

BAR_OVERALL = 0
BAR_ARCHIVE = 1
BAR_ENTRY   = 2

_BARS = (BAR_OVERALL, BAR_ARCHIVE, BAR_ENTRY)


@dataclass(frozen=True)
class ProtocolMessage:
    """
    One parsed protocol line.

    Fields:
      command -- "test", "status", "pb" or "stop".
      text    -- Free text for test/status. Empty otherwise.
      bar     -- Bar index for pb. None otherwise.
      action  -- "max", "value" or "step" for pb. Empty otherwise.
      amount  -- N for pb max/value. None otherwise.
    """
    command: str
    text:    str = ""
    bar:     Optional[int] = None
    action:  str = ""
    amount:  Optional[int] = None

    def to_line(self) -> str:
        if self.command in (CMD_TEST, CMD_STATUS):
            return f"{self.command} {self.text}"
        if self.command == CMD_PB:
            if self.action == PB_STEP:
                return f"pb {self.bar} step"
            return f"pb {self.bar} {self.action} {self.amount}"
        return self.command


def _check_bar(bar: int) -> int:
    if bar not in _BARS:
        raise ValueError(f"Bar index must be one of {_BARS}. Received: {bar}")
    return bar


def _check_amount(amount: int) -> int:
    if amount < 0:
        raise ValueError(f"Bar amount must be >= 0. Received: {amount}")
    return amount


def _one_line(text: str) -> str:
    # A newline would split the message into two commands.
    return " ".join(str(text).splitlines())


def announce_line(name: str) -> str:
    return f"{CMD_TEST} {_one_line(name)}"


def status_line(text: str) -> str:
    return f"{CMD_STATUS} {_one_line(text)}"


def pb_max_line(bar: int, maximum: int) -> str:
    return f"{CMD_PB} {_check_bar(bar)} {PB_MAX} {_check_amount(int(maximum))}"


def pb_value_line(bar: int, value: int) -> str:
    return f"{CMD_PB} {_check_bar(bar)} {PB_VALUE} {_check_amount(int(value))}"


def pb_step_line(bar: int) -> str:
    return f"{CMD_PB} {_check_bar(bar)} {PB_STEP}"


def stop_line() -> str:
    return CMD_STOP


def parse_line(line: str) -> ProtocolMessage:
    """
    Parse one protocol line. Trailing newline characters are ignored.
    Raises ValueError on an unknown command or a malformed pb command.
    """
    line = line.rstrip("\r\n")
    command, _, rest = line.partition(" ")

    if command in (CMD_TEST, CMD_STATUS):
        return ProtocolMessage(command=command, text=rest)

    if command == CMD_STOP:
        if rest.strip():
            raise ValueError(f"'stop' takes no arguments. Received: '{line}'")
        return ProtocolMessage(command=CMD_STOP)

    if command == CMD_PB:
        parts = rest.split()
        try:
            bar = _check_bar(int(parts[0]))
            action = parts[1]
        except (IndexError, ValueError) as exc:
            raise ValueError(f"Malformed pb command: '{line}'") from exc
        if action == PB_STEP and len(parts) == 2:
            return ProtocolMessage(command=CMD_PB, bar=bar, action=PB_STEP)
        if action in (PB_MAX, PB_VALUE) and len(parts) == 3:
            try:
                amount = _check_amount(int(parts[2]))
            except ValueError as exc:
                raise ValueError(f"Malformed pb command: '{line}'") from exc
            return ProtocolMessage(command=CMD_PB, bar=bar, action=action, amount=amount)
        raise ValueError(f"Malformed pb command: '{line}'")

    raise ValueError(f"Unknown protocol command: '{line}'")
