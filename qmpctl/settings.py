"""Configuration: config file, QMP_* environment variables and option precedence."""

from __future__ import annotations

import datetime as _dt
import os
import re
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Mapping

import yaml

ENV_PREFIX = "QMP"
CONFIG_NAME = ".qmp"
CONFIG_EXTENSIONS = (".json", ".yaml", ".yml", "")
SYSTEM_CONFIG_DIR = "/etc/qmp"
DEFAULTS: dict[str, Any] = {"debug": False, "socket": ""}
DEFAULT_KEY_DELAY = _dt.timedelta(milliseconds=50)

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*(?:\.\d*)?)(ns|us|µs|μs|ms|s|m|h)")
_TRUE = {"1", "t", "T", "true", "TRUE", "True"}


def parse_duration(text: str) -> _dt.timedelta:
    """Parse a duration such as "50ms", "1.5s" or "1m30s"."""
    invalid = ValueError(f'time: invalid duration "{text}"')
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return _dt.timedelta(0)
    if not rest:
        raise invalid
    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None or match.group(1) in ("", "."):
            raise invalid
        total += Fraction(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    micros = int(total) // 1000
    return _dt.timedelta(microseconds=-micros if negative else micros)


def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{str(key).lower()}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, name + "."))
        else:
            flat[name] = value
    return flat


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() in _TRUE
    if value is None:
        return False
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip(), 0)
        except ValueError:
            return 0
    return 0


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class Settings:
    """Merged settings: environment first, then config file, then defaults."""

    values: dict[str, Any] = field(default_factory=dict)
    environ: Mapping[str, str] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=lambda: dict(DEFAULTS))
    config_file_used: str | None = None
    config_error: str | None = None

    def _lookup(self, key: str) -> tuple[bool, Any]:
        key = key.lower()
        env_value = self.environ.get(f"{ENV_PREFIX}_{key.upper()}")
        if env_value:
            return True, env_value
        if key in self.values:
            return True, self.values[key]
        if key in self.defaults:
            return True, self.defaults[key]
        return False, None

    def get(self, key: str, default: Any = None) -> Any:
        """Return the raw value for a dotted key, or default."""
        found, value = self._lookup(key)
        return value if found else default

    def is_set(self, key: str) -> bool:
        """Whether the key has a value from any source."""
        return self._lookup(key)[0]

    def get_bool(self, key: str) -> bool:
        """Return the value as a boolean."""
        return _to_bool(self.get(key))

    def get_int(self, key: str) -> int:
        """Return the value as an integer, 0 if it is not one."""
        return _to_int(self.get(key))

    def get_string(self, key: str) -> str:
        """Return the value as text."""
        return _to_str(self.get(key))


def _read_config(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"config file {path} does not hold a mapping")
    return _flatten(data)


def _search_dirs() -> list[str]:
    dirs = ["."]
    try:
        dirs.append(str(Path.home()))
    except (RuntimeError, KeyError):
        pass
    dirs.append(SYSTEM_CONFIG_DIR)
    return dirs


def _find_config() -> str | None:
    for directory in _search_dirs():
        for ext in CONFIG_EXTENSIONS:
            candidate = os.path.join(directory, CONFIG_NAME + ext)
            if os.path.isfile(candidate):
                return candidate
    return None


def load_settings(
    config_file: str | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Load settings from a config file (given or searched for) and the environment."""
    settings = Settings(environ=dict(os.environ if environ is None else environ))
    path = config_file or _find_config()
    if path is None:
        return settings
    try:
        settings.values = _read_config(path)
        settings.config_file_used = path
    except (OSError, ValueError, yaml.YAMLError) as exc:
        settings.config_error = str(exc)
    return settings


def _delay(flag: _dt.timedelta | None, settings: Settings) -> _dt.timedelta:
    if flag is not None and flag > _dt.timedelta(0):
        return flag
    if settings.is_set("keyboard.delay"):
        return _dt.timedelta(milliseconds=settings.get_int("keyboard.delay"))
    return DEFAULT_KEY_DELAY


def key_delay(flag: _dt.timedelta | None, settings: Settings) -> _dt.timedelta:
    """Delay between key presses when typing text."""
    return _delay(flag, settings)


def script_delay(flag: _dt.timedelta | None, settings: Settings) -> _dt.timedelta:
    """Delay between key presses when running a script."""
    return _delay(flag, settings)


def _extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def screenshot_format(output_file: str, flag: str | None, settings: Settings) -> str:
    """Screenshot format from flag, config or file extension; "ppm" otherwise."""
    if flag:
        return flag.lower()
    if settings.is_set("screenshot.format"):
        return settings.get_string("screenshot.format").lower()
    if _extension(output_file).lower() == ".png":
        return "png"
    return "ppm"


def remote_temp_path(flag: str | None, settings: Settings) -> str:
    """Temporary screenshot path on a remote host, or "" for a local file."""
    if flag:
        return flag
    if settings.is_set("screenshot.remote_temp_path"):
        return settings.get_string("screenshot.remote_temp_path")
    return ""


def socket_path(flag: str | None, settings: Settings) -> str:
    """Socket path from the flag, else from environment or config."""
    if flag:
        return flag
    return settings.get_string("socket")