import json
import os
import shutil
import socket
import tempfile
import threading

import pytest

from qmpctl.cli import build_parser, main


class FakeQMP:
    """A one-connection QMP server answering from a table of responses."""

    def __init__(self, path, responses=None):
        self.path = path
        self.responses = dict(responses or {})
        self.received = []
        self._srv = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._srv.bind(path)
        self._srv.listen(1)
        self._srv.settimeout(10)
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            conn, _ = self._srv.accept()
        except OSError:
            return
        decoder = json.JSONDecoder()
        with conn:
            conn.sendall(b'{"QMP": {"version": {}, "capabilities": []}}\n')
            buf = ""
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                buf += chunk.decode()
                while True:
                    buf = buf.lstrip()
                    if not buf:
                        break
                    try:
                        msg, end = decoder.raw_decode(buf)
                    except ValueError:
                        break
                    buf = buf[end:]
                    self.received.append(msg)
                    reply = self.responses.get(msg.get("execute"), {"return": {}})
                    if callable(reply):
                        reply = reply(msg)
                    conn.sendall((json.dumps(reply) + "\n").encode())

    def close(self):
        self._srv.close()
        self._thread.join(timeout=5)

    def commands(self):
        return [m["execute"] for m in self.received]

    def keys(self):
        return [
            m["arguments"]["keys"][0]["data"]
            for m in self.received
            if m["execute"] == "send-key"
        ]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("QMP_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    return str(path)


@pytest.fixture
def sock_path():
    directory = tempfile.mkdtemp(prefix="qmp")
    yield os.path.join(directory, "s.qmp")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def serve(sock_path):
    servers = []

    def start(responses=None):
        server = FakeQMP(sock_path, responses)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


def run(config, sock, *args):
    return main(["--config", config, "-s", sock, *args])


def test_status_prints_running_and_state(config, sock_path, serve, capsys):
    serve({"query-status": {"return": {"running": True, "status": "running"}}})
    code = run(config, sock_path, "status", "106")
    out = capsys.readouterr().out
    assert code == 0
    assert "Status for VM 106:" in out
    assert "  Running: true" in out
    assert "  Status: running" in out
    assert "Debug - Full status response" not in out


def test_status_debug_prints_full_response(config, sock_path, serve, capsys):
    serve({"query-status": {"return": {"running": False, "status": "paused"}}})
    code = run(config, sock_path, "-d", "status", "106")
    out = capsys.readouterr().out
    assert code == 0
    assert "Debug - Full status response: map[running:false status:paused]" in out


def test_global_options_after_subcommand(config, sock_path, serve, capsys):
    server = serve({"query-status": {"return": {"running": True, "status": "running"}}})
    code = main(["status", "106", "-s", sock_path, "--config", config])
    assert code == 0
    assert server.commands() == ["qmp_capabilities", "query-status"]


def test_socket_from_environment(config, sock_path, serve, capsys, monkeypatch):
    monkeypatch.setenv("QMP_SOCKET", sock_path)
    server = serve({"query-status": {"return": {"running": True, "status": "running"}}})
    code = main(["--config", config, "status", "106"])
    assert code == 0
    assert "query-status" in server.commands()


def test_connect_failure_reports_error(config, sock_path, capsys):
    code = run(config, sock_path, "status", "106")
    out = capsys.readouterr().out
    assert code == 1
    assert "Error connecting to VM 106:" in out


def test_keyboard_send_uppercase_adds_shift(config, sock_path, serve, capsys):
    server = serve()
    code = run(config, sock_path, "keyboard", "send", "106", "A")
    out = capsys.readouterr().out
    assert code == 0
    assert server.keys() == ["shift", "a"]
    assert "Sent key 'A' to VM 106" in out


def test_keyboard_send_alias(config, sock_path, serve, capsys):
    server = serve()
    assert run(config, sock_path, "keyboard", "send", "106", "enter") == 0
    assert server.keys() == ["ret"]


def test_keyboard_type_joins_text(config, sock_path, serve, capsys):
    server = serve()
    code = run(config, sock_path, "keyboard", "type", "106", "hi", "yo", "-l", "1ms")
    out = capsys.readouterr().out
    assert code == 0
    assert server.keys() == ["h", "i", "spc", "y", "o"]
    assert "Typed 'hi yo' to VM 106 with delay 1ms" in out


def test_keyboard_type_delay_from_config(tmp_path, sock_path, serve, capsys):
    cfg = tmp_path / "conf.yaml"
    cfg.write_text("keyboard:\n  delay: 1\n")
    server = serve()
    code = run(str(cfg), sock_path, "keyboard", "type", "106", "x")
    out = capsys.readouterr().out
    assert code == 0
    assert server.keys() == ["x"]
    assert "with delay 1ms" in out


def test_keyboard_send_qmp_error(config, sock_path, serve, capsys):
    serve({"send-key": {"error": {"class": "GenericError", "desc": "bad key"}}})
    code = run(config, sock_path, "keyboard", "send", "106", "zz")
    out = capsys.readouterr().out
    assert code == 1
    assert "Error sending key 'zz' to VM 106: QMP error: GenericError: bad key" in out


def test_usb_list_empty(config, sock_path, serve, capsys):
    serve({"query-usb": {"return": []}})
    code = run(config, sock_path, "usb", "list", "106")
    out = capsys.readouterr().out
    assert code == 0
    assert "USB devices for VM 106:" in out
    assert "No USB devices connected" in out


def test_usb_list_devices(config, sock_path, serve, capsys):
    devices = [{"device": "usb-kbd", "port": "1"}, {"device": "usb-mouse", "port": "2"}]
    serve({"query-usb": {"return": devices}})
    code = run(config, sock_path, "usb", "list", "106")
    out = capsys.readouterr().out
    assert code == 0
    assert "Device 1: map[device:usb-kbd port:1]" in out
    assert "Device 2: map[device:usb-mouse port:2]" in out


def test_usb_add_keyboard(config, sock_path, serve, capsys):
    server = serve()
    code = run(config, sock_path, "usb", "add", "106", "keyboard", "kbd1")
    out = capsys.readouterr().out
    assert code == 0
    added = [m for m in server.received if m["execute"] == "device_add"]
    assert added[0]["arguments"] == {"driver": "usb-kbd", "id": "kbd1"}
    assert "Added USB keyboard with ID kbd1 to VM 106" in out


def test_usb_add_mouse(config, sock_path, serve, capsys):
    server = serve()
    assert run(config, sock_path, "usb", "add", "106", "mouse", "m1") == 0
    added = [m for m in server.received if m["execute"] == "device_add"]
    assert added[0]["arguments"] == {"driver": "usb-mouse", "id": "m1"}


def test_usb_add_unknown_type(config, sock_path, serve, capsys):
    server = serve()
    code = run(config, sock_path, "usb", "add", "106", "joystick", "j1")
    out = capsys.readouterr().out
    assert code == 1
    assert "Unknown device type: joystick. Supported types: keyboard, mouse" in out
    assert "device_add" not in server.commands()


def test_usb_remove(config, sock_path, serve, capsys):
    server = serve()
    code = run(config, sock_path, "usb", "remove", "106", "kbd1")
    out = capsys.readouterr().out
    assert code == 0
    removed = [m for m in server.received if m["execute"] == "device_del"]
    assert removed[0]["arguments"] == {"id": "kbd1"}
    assert "Removed device kbd1 from VM 106" in out


def test_usb_remove_error(config, sock_path, serve, capsys):
    serve({"device_del": {"error": {"class": "DeviceNotFound", "desc": "no such"}}})
    code = run(config, sock_path, "usb", "remove", "106", "kbd1")
    out = capsys.readouterr().out
    assert code == 1
    assert "Error removing device kbd1: QMP error: DeviceNotFound: no such" in out


def test_script_runs_lines(config, sock_path, serve, capsys, tmp_path):
    script = tmp_path / "script.txt"
    script.write_text("# comment\n\nls\n<sleep 0>\n<bogus>\n")
    server = serve()
    code = run(config, sock_path, "script", "106", str(script), "-l", "1ms")
    out = capsys.readouterr().out
    assert code == 0
    assert server.keys() == ["l", "s", "ret"]
    assert "Line 5: Unknown special command: bogus" in out
    assert "Script execution completed for VM 106" in out


def test_script_missing_file(config, sock_path, capsys, tmp_path):
    code = run(config, sock_path, "script", "106", str(tmp_path / "missing.txt"))
    out = capsys.readouterr().out
    assert code == 1
    assert "Error opening script file:" in out


def test_screenshot_ppm_copies_file(config, sock_path, serve, capsys, tmp_path):
    image = b"P6\n1 1\n255\n\x00\x00\x00"

    def dump(msg):
        with open(msg["arguments"]["filename"], "wb") as handle:
            handle.write(image)
        return {"return": {}}

    serve({"screendump": dump})
    target = tmp_path / "shots" / "nested" / "out.ppm"
    code = run(config, sock_path, "screenshot", "106", str(target))
    out = capsys.readouterr().out
    assert code == 0
    assert target.read_bytes() == image
    assert f"Screenshot saved to {target}" in out


def test_screenshot_remote_temp_path(config, sock_path, serve, capsys, tmp_path):
    server = serve()
    target = tmp_path / "out.png"
    code = run(
        config, sock_path, "screenshot", "106", str(target), "-r", "/remote/shot.ppm"
    )
    assert code == 0
    dumps = [m for m in server.received if m["execute"] == "screendump"]
    assert dumps[0]["arguments"] == {"filename": "/remote/shot.ppm"}
    assert not target.exists()


def test_screenshot_error(config, sock_path, serve, capsys, tmp_path):
    serve({"screendump": {"error": {"class": "GenericError", "desc": "no display"}}})
    code = run(config, sock_path, "screenshot", "106", str(tmp_path / "o.ppm"))
    out = capsys.readouterr().out
    assert code == 1
    assert "Error taking screenshot: QMP error: GenericError: no display" in out


def test_no_command_prints_help(config, capsys):
    code = main(["--config", config])
    out = capsys.readouterr().out
    assert code == 0
    assert "usage: qmp" in out


def test_parser_type_collects_text():
    args = build_parser().parse_args(["keyboard", "type", "106", "Hello", "World"])
    assert args.vmid == "106"
    assert args.text == ["Hello", "World"]
    assert args.delay is None


def test_parser_rejects_missing_arguments():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["keyboard", "send", "106"])


def test_parser_rejects_bad_delay():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["keyboard", "type", "106", "x", "-l", "fast"])