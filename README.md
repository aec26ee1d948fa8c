# qmpctl

A command-line tool for managing QEMU virtual machines through QMP, the
QEMU Machine Protocol. It connects to a VM's QMP UNIX socket (by default
`/var/run/qemu-server/<vmid>.qmp`) and can query the run state, press keys,
type text, run keystroke scripts, take screenshots and hot-plug USB input
devices.

## Installation

```
pip install .
```

This installs the `qmp` command.

## Usage

```
qmp status 106
qmp keyboard send 106 enter
qmp keyboard type 106 "Hello World" --delay 100ms
qmp script 106 ./script.txt
qmp screenshot 106 shot.png
qmp usb list 106
qmp usb add 106 keyboard kbd0
qmp usb remove 106 kbd0
```

Options accepted by every command:

- `--config FILE` – configuration file to read instead of searching for one
- `-d`, `--debug` – enable debug logging (including every QMP command and
  response)
- `-s`, `--socket PATH` – use a custom QMP socket path, e.g. one forwarded
  over SSH

Running `qmp`, `qmp keyboard` or `qmp usb` without a subcommand prints help.
When a command fails, its error message is printed and the exit status is 1.

### Status

`qmp status VMID` prints whether the VM is running and its status. With
`--debug` the full status response is printed as well.

### Keyboard

`keyboard send VMID KEY` presses a single key. The names `enter`, `return`,
`space`, `tab`, `esc`, `backspace` and `delete` (any case) are mapped to QEMU
key codes; a single uppercase letter is sent as shift followed by the
lowercase letter; anything else is passed through as a QEMU key code.

`keyboard type VMID TEXT...` joins its arguments with spaces and types every
character, sending newline, tab and space as `ret`, `tab` and `spc`.
`-l`/`--delay` sets the pause after each key as a duration such as `50ms`,
`1.5s` or `1m30s`; without it the configured `keyboard.delay` (in
milliseconds) is used, and otherwise 50ms.

### Scripts

`qmp script VMID FILE` types each line of FILE into the VM, followed by
Enter, with a 100ms pause after each line. Leading and trailing whitespace is
trimmed; empty lines and lines starting with `#` are skipped. A line of the
form `<sleep N>` pauses for N seconds (fractions allowed). Malformed or
unknown `<...>` commands, and lines that fail to send, are reported as
`Line N: ...` and skipped. `-l`/`--delay` works as for `keyboard type`.

```
# log in
root
<sleep 2>
uname -a
```

### Screenshots

`qmp screenshot VMID OUTPUT` saves a screenshot, creating the output
directory if needed. The format is taken from `-f`/`--format` (`ppm` or
`png`), then from the configured `screenshot.format`, then from the output
file's extension (`.png`); PPM is the default. PNG output is produced with
ImageMagick's `convert`, which must be installed.

When the socket is tunnelled from another machine, pass
`-r`/`--remote-temp PATH` (or configure `screenshot.remote_temp_path`) so
QEMU writes the PPM file at that path on the remote host. In that case the
file is left there and nothing is written to OUTPUT; only PPM is produced.

### USB devices

`usb list VMID` lists attached USB devices. `usb add VMID TYPE ID` adds a
`keyboard` (`usb-kbd`) or `mouse` (`usb-mouse`) with the given device id.
`usb remove VMID ID` removes a device by id.

## Configuration

Unless `--config` is given, the first of `.qmp.json`, `.qmp.yaml`,
`.qmp.yml` or `.qmp` found in the current directory, your home directory or
`/etc/qmp` is read as YAML. Environment variables prefixed with `QMP_`
(for example `QMP_DEBUG`, `QMP_SOCKET`) take precedence over the file;
command-line flags take precedence over both.

```yaml
debug: false
socket: /tmp/qmp-106.sock
keyboard:
  delay: 50          # milliseconds
screenshot:
  format: png
  remote_temp_path: /tmp/qmp-screenshot.ppm
```

## Using it from Python

```python
from qmpctl.client import Client

with Client("106") as vm:
    print(vm.query_status())
    vm.send_string("uname -a", 0.05)
    vm.send_key("enter")
```

`Client.execute(command, arguments)` runs any QMP command and returns its
`return` value; a QMP error reply raises `qmpctl.errors.QMPProtocolError`.

## Limitations

- Screenshots taken with a remote temporary path are not copied back; fetch
  (and, if wanted, convert) them on the remote host yourself.
- QMP events are not handled or displayed.

## Development

```
pip install -e ".[test]"
pytest
```