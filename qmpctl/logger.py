"""Coloured, attribute-aware logging for the QMP controller."""

from __future__ import annotations

import datetime as _dt
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, TextIO

_RESET = "\x1b[0m"
_GREEN = "\x1b[32m"
_YELLOW = "\x1b[33m"
_RED = "\x1b[31m"
_CYAN = "\x1b[36m"
_MAGENTA = "\x1b[35m"

_LEVELS = {
    logging.DEBUG: ("DEBUG", _CYAN),
    logging.INFO: ("INFO", _GREEN),
    logging.WARNING: ("WARN", _YELLOW),
    logging.ERROR: ("ERROR", _RED),
}

_ATTRS_KEY = "qmp_attrs"

_logger = logging.getLogger("qmpctl")
_logger.propagate = False
_logger.setLevel(logging.INFO)


@dataclass(frozen=True)
class _Styled:
    """A value rendered in colour when the output supports it."""

    text: str
    color: str


def _supports_color(stream: TextIO) -> bool:
    if "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb":
        return False
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except (ValueError, OSError):
        return False


def _fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if frac == 0:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{str(frac).rjust(digits, '0').rstrip('0')}"


def _format_duration(delta: _dt.timedelta) -> str:
    ns = ((delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds) * 1000
    negative = ns < 0
    ns = abs(ns)
    if ns == 0:
        return "0s"
    if ns < 1_000_000_000:
        if ns < 1000:
            text = f"{ns}ns"
        elif ns < 1_000_000:
            text = _fraction(ns, 1000) + "µs"
        else:
            text = _fraction(ns, 1_000_000) + "ms"
    else:
        hours, rest = divmod(ns, 3600 * 1_000_000_000)
        minutes, rest = divmod(rest, 60 * 1_000_000_000)
        text = ""
        if hours:
            text += f"{hours}h"
        if hours or minutes:
            text += f"{minutes}m"
        text += _fraction(rest, 1_000_000_000) + "s"
    return ("-" if negative else "") + text


def format_attr_value(value: Any) -> str:
    """Render an attribute value as text for a log line."""
    if isinstance(value, _Styled):
        return value.text
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value:d}"
    if isinstance(value, float):
        return f"{value:f}"
    if isinstance(value, _dt.timedelta):
        return _format_duration(value)
    if isinstance(value, (_dt.datetime, _dt.time)):
        return value.strftime("%H:%M:%S")
    if value is None:
        return "<nil>"
    return str(value)


class ColorTextHandler(logging.Handler):
    """Writes one line per record: level, message and key=value attributes."""

    def __init__(self, stream: TextIO) -> None:
        super().__init__()
        self.stream = stream
        self._color = _supports_color(stream)

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self._color else text

    def _render(self, value: Any) -> str:
        if isinstance(value, _Styled):
            return self._paint(value.text, value.color)
        return format_attr_value(value)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _LEVELS.get(record.levelno)
            if level is None:
                level_text = record.levelname
            else:
                level_text = self._paint(*level)
            attrs = getattr(record, _ATTRS_KEY, {}) or {}
            parts = "".join(
                f" {key}={self._render(value)}"
                for key, value in attrs.items()
                if key != "source"
            )
            self.stream.write(f"{level_text} {record.getMessage()}{parts}\n")
            self.flush()
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()


def _install(handler: logging.Handler) -> None:
    for old in list(_logger.handlers):
        _logger.removeHandler(old)
    _logger.addHandler(handler)


def init(debug: bool) -> None:
    """Send log output to standard output, at debug level if asked."""
    _logger.setLevel(logging.DEBUG if debug else logging.INFO)
    _install(ColorTextHandler(sys.stdout))
    if debug:
        _log(logging.DEBUG, "Debug logging enabled", {})


def set_output(stream: TextIO) -> None:
    """Send log output to another stream, keeping the current level."""
    _install(ColorTextHandler(stream))


def _log(level: int, msg: str, attrs: dict[str, Any]) -> None:
    _logger.log(level, msg, extra={_ATTRS_KEY: attrs})


def debug(msg: str, **kwargs: Any) -> None:
    """Log a debug message with attributes."""
    _log(logging.DEBUG, msg, kwargs)


def info(msg: str, **kwargs: Any) -> None:
    """Log an info message with attributes."""
    _log(logging.INFO, msg, kwargs)


def warn(msg: str, **kwargs: Any) -> None:
    """Log a warning with attributes."""
    _log(logging.WARNING, msg, kwargs)


def error(msg: str, **kwargs: Any) -> None:
    """Log an error with attributes."""
    _log(logging.ERROR, msg, kwargs)


def log_command(command: str, args: Any) -> None:
    """Log an outgoing QMP command."""
    debug("Sending QMP command", command=_Styled(command, _MAGENTA), args=args)


def log_response(response: Any) -> None:
    """Log a received QMP response."""
    debug("Received QMP response", response=response)