"""Parsing and running keyboard scripts."""

from __future__ import annotations

import datetime as _dt
import re
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, TextIO, Union

from qmpctl import logger
from qmpctl.errors import QMPError

COMMAND_PAUSE = 0.1

_FLOAT = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class SleepAction:
    """Pause for a number of seconds."""

    seconds: float


@dataclass(frozen=True)
class TextAction:
    """Type a line of text followed by Enter."""

    text: str


@dataclass(frozen=True)
class InvalidAction:
    """A malformed special command; message says why."""

    message: str


Action = Union[SleepAction, TextAction, InvalidAction]


def _parse_seconds(text: str) -> float:
    match = _FLOAT.match(text)
    if match is None:
        raise ValueError(f"expected a number, got {text!r}")
    return float(match.group(0))


def parse_line(line: str) -> Action | None:
    """Turn one script line into an action, or None for blanks and comments."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("<") and line.endswith(">") and len(line) >= 2:
        parts = line[1:-1].split()
        if parts:
            if parts[0] != "sleep":
                return InvalidAction(f"Unknown special command: {parts[0]}")
            if len(parts) != 2:
                return InvalidAction("Invalid sleep command format. Use <sleep N>")
            try:
                return SleepAction(_parse_seconds(parts[1]))
            except ValueError as exc:
                return InvalidAction(f"Invalid sleep duration: {exc}")
    return TextAction(line)


def parse_script(lines: Iterable[str]) -> Iterator[tuple[int, Action]]:
    """Yield (line number, action) for every line that does something."""
    for number, line in enumerate(lines, start=1):
        action = parse_line(line)
        if action is not None:
            yield number, action


def run_script(
    client: Any,
    lines: Iterable[str],
    delay: float | _dt.timedelta,
    out: TextIO | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run a script against a connected client; return how many lines were typed."""
    out = sys.stdout if out is None else out
    typed = 0
    for number, action in parse_script(lines):
        if isinstance(action, InvalidAction):
            print(f"Line {number}: {action.message}", file=out)
            continue
        if isinstance(action, SleepAction):
            seconds = max(action.seconds, 0.0)
            logger.debug("Sleeping", duration=_dt.timedelta(seconds=seconds))
            sleep(seconds)
            continue
        logger.info("Executing line", line=action.text)
        try:
            client.send_string(action.text, delay)
        except (QMPError, OSError) as exc:
            print(f"Line {number}: Error sending text: {exc}", file=out)
            continue
        try:
            client.send_key("ret")
        except (QMPError, OSError) as exc:
            print(f"Line {number}: Error sending return key: {exc}", file=out)
            continue
        typed += 1
        sleep(COMMAND_PAUSE)
    return typed