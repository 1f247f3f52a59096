"""xotel configuration management.

Handles:
- XOTEL_* environment variables with Go-style durations (``6m``, ``1m30s``)
- .env file loading with precedence: CLI > .env > env vars
- the OTLP collector endpoint from OTEL_EXPORTER_OTLP_ENDPOINT

Configuration is read once at startup and never reloaded.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from xotel.errors import ConfigError

DEFAULT_MAX_LOOK_BACK = timedelta(minutes=6)
DEFAULT_MIN_LOOK_BACK = timedelta(minutes=1)
DEFAULT_REPORT_INTERVAL = timedelta(seconds=10)
DEFAULT_EXPORT_TIMEOUT = timedelta(seconds=10)
DEFAULT_OTLP_ENDPOINT = "localhost:4317"

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class Config:
    """xotel runtime configuration."""

    debug: bool = False
    max_look_back: timedelta = DEFAULT_MAX_LOOK_BACK
    min_look_back: timedelta = DEFAULT_MIN_LOOK_BACK
    require_origin: bool = True
    report_interval: timedelta = DEFAULT_REPORT_INTERVAL
    export_timeout: timedelta = DEFAULT_EXPORT_TIMEOUT
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    aws_region: str | None = None
    env_file_path: Path | None = None

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises:
            ConfigError: If the look-back window is empty or negative.
        """
        if self.min_look_back <= timedelta(0):
            raise ConfigError("XOTEL_MIN_LOOK_BACK must be positive")
        if self.max_look_back <= self.min_look_back:
            raise ConfigError(
                f"XOTEL_MAX_LOOK_BACK ({self.max_look_back}) must be greater than "
                f"XOTEL_MIN_LOOK_BACK ({self.min_look_back})"
            )
        if self.report_interval <= timedelta(0):
            raise ConfigError("XOTEL_REPORT_INTERVAL must be positive")
        if self.export_timeout <= timedelta(0):
            raise ConfigError("XOTEL_EXPORT_TIMEOUT must be positive")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a printable dictionary."""
        result: dict[str, Any] = {
            "debug": self.debug,
            "max_look_back": str(self.max_look_back),
            "min_look_back": str(self.min_look_back),
            "require_origin": self.require_origin,
            "report_interval": str(self.report_interval),
            "export_timeout": str(self.export_timeout),
            "otlp_endpoint": self.otlp_endpoint,
        }
        if self.aws_region:
            result["aws_region"] = self.aws_region
        if self.env_file_path:
            result["env_file"] = str(self.env_file_path)
        return result


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as ``6m``, ``90s`` or ``1h30m``.

    Raises:
        ConfigError: If the string is not a sequence of number+unit parts.
    """
    text = value.strip()
    if not text:
        raise ConfigError("empty duration")

    total = timedelta(0)
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ConfigError(f"invalid duration {value!r} (expected e.g. 6m, 90s, 1h30m)")
    return total


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"invalid boolean {value!r}")


def parse_env_file(env_file: Path) -> dict[str, str]:
    """Parse a .env file into a dictionary.

    Supports:
    - KEY=value
    - KEY="quoted value"
    - KEY='single quoted'
    - export KEY=value (AWS SSO format)
    - # comments
    - Empty lines
    """
    result: dict[str, str] = {}

    if not env_file.exists():
        return result

    for line in env_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()

        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[7:]

        if "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()

        # Remove quotes
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]

        result[key] = value

    return result


def _find_env_file(start: Path | None = None) -> Path | None:
    """Find .env file by walking up directory tree.

    Stops at git root, home directory, or filesystem root.
    Returns None if not found.
    """
    current = (start or Path.cwd()).resolve()

    try:
        home = Path.home()
    except RuntimeError:
        home = None

    for _ in range(20):  # Max depth
        env_file = current / ".env"
        if env_file.exists():
            return env_file

        if home and current == home:
            break
        if current == current.parent:
            break
        if (current / ".git").exists():
            break

        current = current.parent

    return None


def _duration_var(env_vars: dict[str, str], name: str, default: timedelta) -> timedelta:
    raw = env_vars.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return parse_duration(raw)
    except ConfigError as e:
        raise ConfigError(f"{name}: {e}") from e


def _bool_var(env_vars: dict[str, str], name: str, default: bool) -> bool:
    raw = env_vars.get(name)
    if raw is None:
        return default
    try:
        return parse_bool(raw)
    except ConfigError as e:
        raise ConfigError(f"{name}: {e}") from e


def load_config(
    env_file: str | Path | None = None,
    cli_overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> Config:
    """Load configuration with precedence: CLI > .env > env vars.

    Args:
        env_file: Path to .env file to load; auto-discovered when omitted
        cli_overrides: Config field values set on the command line
        environ: Environment to read instead of ``os.environ``

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If a value cannot be parsed or the window is invalid
    """
    cli_overrides = cli_overrides or {}

    # Step 1: environment variables as base
    env_vars = dict(os.environ if environ is None else environ)

    # Step 2: .env file overrides env vars
    env_file_path: Path | None
    if env_file:
        env_file_path = Path(env_file)
        if not env_file_path.exists():
            raise ConfigError(f"env file not found: {env_file_path}")
    else:
        env_file_path = _find_env_file()
    if env_file_path is not None:
        env_vars.update(parse_env_file(env_file_path))

    # Step 3: parse values
    config = Config(
        debug=_bool_var(env_vars, "XOTEL_DEBUG", False),
        max_look_back=_duration_var(env_vars, "XOTEL_MAX_LOOK_BACK", DEFAULT_MAX_LOOK_BACK),
        min_look_back=_duration_var(env_vars, "XOTEL_MIN_LOOK_BACK", DEFAULT_MIN_LOOK_BACK),
        require_origin=_bool_var(env_vars, "XOTEL_REQUIRE_ORIGIN", True),
        report_interval=_duration_var(env_vars, "XOTEL_REPORT_INTERVAL", DEFAULT_REPORT_INTERVAL),
        export_timeout=_duration_var(env_vars, "XOTEL_EXPORT_TIMEOUT", DEFAULT_EXPORT_TIMEOUT),
        otlp_endpoint=env_vars.get("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_OTLP_ENDPOINT,
        aws_region=env_vars.get("XOTEL_AWS_REGION") or env_vars.get("AWS_REGION") or None,
        env_file_path=env_file_path,
    )

    # Step 4: CLI overrides
    for key, value in cli_overrides.items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ConfigError(f"unknown config field {key!r}")
        setattr(config, key, value)

    config.validate()
    return config
