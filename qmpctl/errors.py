"""Exceptions raised by the QMP client."""

from __future__ import annotations

import json


class QMPError(Exception):
    """Base class for QMP client errors."""


class NotConnectedError(QMPError):
    """A method needing a connection was called on a disconnected client."""

    def __init__(self, *args: object) -> None:
        super().__init__(*(args or ("not connected to QMP socket",)))


class CommandFailedError(QMPError):
    """A QMP command failed."""

    def __init__(self, command: str, cause: object) -> None:
        self.command = command
        self.cause = cause
        super().__init__(f"command {json.dumps(command)} failed: {cause}")


class InvalidResponseError(QMPError):
    """The server sent a response of an unexpected shape."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"invalid response: {detail}")


class QMPProtocolError(QMPError):
    """The server answered a command with an error object."""

    def __init__(self, error_class: str, desc: str) -> None:
        self.error_class = error_class
        self.desc = desc
        super().__init__(f"QMP error: {error_class}: {desc}")