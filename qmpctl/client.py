"""Client for the QEMU Machine Protocol over a Unix socket."""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import shutil
import socket
import subprocess
import tempfile
import time
from typing import Any, BinaryIO, Iterable, Union

from qmpctl import logger
from qmpctl.errors import (
    InvalidResponseError,
    NotConnectedError,
    QMPError,
    QMPProtocolError,
)

SOCKET_DIR = "/var/run/qemu-server"

_KEY_ALIASES = {
    "enter": "ret",
    "return": "ret",
    "backspace": "backspace",
    "tab": "tab",
    "space": "spc",
    "esc": "esc",
    "delete": "delete",
}

_CHAR_KEYS = {"\n": "ret", "\t": "tab", " ": "spc"}

Delay = Union[float, int, _dt.timedelta]


def default_socket_path(vmid: str) -> str:
    """Return the socket path QEMU uses for the given VM id."""
    return f"{SOCKET_DIR}/{vmid}.qmp"


def resolve_key(key: str) -> list[str]:
    """Return the qcodes to press, in order, for a key name or character."""
    alias = _KEY_ALIASES.get(key.lower())
    if alias is not None:
        return [alias]
    if len(key.encode("utf-8")) == 1 and key.isupper():
        return ["shift", key.lower()]
    return [key]


def _seconds(delay: Delay) -> float:
    if isinstance(delay, _dt.timedelta):
        return delay.total_seconds()
    return float(delay)


class Client:
    """A connection to one VM's QMP socket."""

    def __init__(self, vmid: str, socket_path: str | None = None) -> None:
        self.vmid = vmid
        self.socket_path = socket_path or None
        self._sock: socket.socket | None = None
        self._reader: BinaryIO | None = None

    @property
    def path(self) -> str:
        """The socket path this client connects to."""
        return self.socket_path or default_socket_path(self.vmid)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> "Client":
        """Connect, read the greeting and negotiate capabilities."""
        path = self.path
        logger.debug("Connecting to QMP socket", path=path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(path)
        except OSError as exc:
            sock.close()
            raise QMPError(f"failed to connect to QMP socket: {exc}") from exc
        self._sock = sock
        self._reader = sock.makefile("rb")

        try:
            try:
                greeting = self._read_message()
            except (OSError, QMPError) as exc:
                raise QMPError(f"failed to read greeting: {exc}") from exc
            logger.log_response(greeting)

            logger.log_command("qmp_capabilities", None)
            try:
                self._write({"execute": "qmp_capabilities"})
            except OSError as exc:
                raise QMPError(f"failed to send capabilities command: {exc}") from exc

            try:
                response = self._read_message()
            except (OSError, QMPError) as exc:
                raise QMPError(f"failed to read capabilities response: {exc}") from exc
            logger.log_response(response)
            self._check(response)
        except BaseException:
            self.close()
            raise

        logger.info("Connected to QMP socket", vmid=self.vmid)
        return self

    def close(self) -> None:
        """Close the connection if it is open."""
        if self._sock is None:
            return
        logger.debug("Closing QMP connection", vmid=self.vmid)
        if self._reader is not None:
            with contextlib.suppress(OSError):
                self._reader.close()
        self._sock.close()
        self._sock = None
        self._reader = None

    def __enter__(self) -> "Client":
        if not self.connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _write(self, message: dict[str, Any]) -> None:
        assert self._sock is not None
        self._sock.sendall(json.dumps(message).encode("utf-8"))

    def _read_message(self) -> dict[str, Any]:
        assert self._reader is not None
        line = self._reader.readline()
        if not line:
            raise QMPError("connection closed by server")
        text = line.rstrip(b"\r\n").decode("utf-8", errors="replace")
        logger.debug("Raw JSON received", json=text)
        try:
            message = json.loads(text)
        except ValueError as exc:
            raise InvalidResponseError(str(exc)) from exc
        if not isinstance(message, dict):
            raise InvalidResponseError("expected a JSON object")
        return message

    @staticmethod
    def _check(response: dict[str, Any]) -> None:
        error = response.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise InvalidResponseError("malformed error object")
            raise QMPProtocolError(str(error.get("class", "")), str(error.get("desc", "")))

    def execute(self, command: str, arguments: dict[str, Any] | None = None) -> Any:
        """Run a QMP command and return its "return" value."""
        if self._sock is None:
            raise NotConnectedError()
        message: dict[str, Any] = {"execute": command}
        if arguments is not None:
            message["arguments"] = arguments
        logger.log_command(command, arguments)
        self._write(message)
        response = self._read_message()
        logger.log_response(response)
        self._check(response)
        return response.get("return")

    def query_usb_devices(self) -> list[Any]:
        """Return the USB devices attached to the VM."""
        devices = self.execute("query-usb")
        if not isinstance(devices, list):
            raise InvalidResponseError("expected a list of USB devices")
        return devices

    def add_usb_keyboard(self, device_id: str) -> None:
        """Attach a USB keyboard with the given id."""
        self.execute("device_add", {"driver": "usb-kbd", "id": device_id})

    def add_usb_mouse(self, device_id: str) -> None:
        """Attach a USB mouse with the given id."""
        self.execute("device_add", {"driver": "usb-mouse", "id": device_id})

    def remove_device(self, device_id: str) -> None:
        """Detach the device with the given id."""
        self.execute("device_del", {"id": device_id})

    def query_status(self) -> dict[str, Any]:
        """Return the VM's run state."""
        status = self.execute("query-status")
        if not isinstance(status, dict):
            raise InvalidResponseError("expected a status object")
        return status

    def send_key(self, key: str) -> None:
        """Press one key, adding shift for upper-case letters."""
        for qcode in resolve_key(key):
            self.execute("send-key", {"keys": [{"type": "qcode", "data": qcode}]})

    def send_keys(self, keys: Iterable[str], delay: Delay) -> None:
        """Press several keys with a pause after each."""
        pause = _seconds(delay)
        for key in keys:
            self.send_key(key)
            time.sleep(pause)

    def send_string(self, text: str, delay: Delay) -> None:
        """Type a string, one key per character, with a pause after each."""
        pause = _seconds(delay)
        for char in text:
            self.send_key(_CHAR_KEYS.get(char, char))
            time.sleep(pause)

    def screen_dump(self, filename: str, remote_temp_path: str = "") -> None:
        """Save a PPM screenshot to filename, or leave it at remote_temp_path."""
        remote = bool(remote_temp_path)
        if remote:
            temp_path = remote_temp_path
            logger.debug("Using remote temporary path for screenshot", path=temp_path)
        else:
            try:
                fd, temp_path = tempfile.mkstemp(prefix="qmp-screenshot-", suffix=".ppm")
            except OSError as exc:
                raise QMPError(f"failed to create temporary file: {exc}") from exc
            os.close(fd)
            logger.debug("Created local temporary file for screenshot", path=temp_path)

        try:
            self.execute("screendump", {"filename": temp_path})
            if remote:
                logger.info("Screenshot saved on remote server", path=remote_temp_path)
                logger.info("You'll need to manually copy the file from the remote server")
                return
            try:
                shutil.copyfile(temp_path, filename)
            except OSError as exc:
                raise QMPError(f"failed to copy screenshot: {exc}") from exc
        finally:
            if not remote:
                with contextlib.suppress(OSError):
                    os.remove(temp_path)

    def screen_dump_and_convert(self, filename: str, remote_temp_path: str = "") -> None:
        """Save a screenshot converted to PNG with ImageMagick."""
        if remote_temp_path:
            logger.info("When using a remote temporary path, only PPM format is supported")
            logger.info("You'll need to manually convert the file on the remote server")
            self.screen_dump(filename, remote_temp_path)
            return

        try:
            fd, temp_path = tempfile.mkstemp(prefix="qmp-screenshot-", suffix=".ppm")
        except OSError as exc:
            raise QMPError(f"failed to create temporary file: {exc}") from exc
        os.close(fd)
        try:
            self.screen_dump(temp_path, "")
            try:
                subprocess.run(
                    ["convert", temp_path, filename],
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except (OSError, subprocess.CalledProcessError) as exc:
                raise QMPError(
                    f"failed to convert screenshot to PNG (is ImageMagick installed?): {exc}"
                ) from exc
        finally:
            with contextlib.suppress(OSError):
                os.remove(temp_path)