"""
GTA - configuration

Defaults for the CLI come from, lowest priority first:
  1) ~/.gta.yaml (or the file passed with --config)
  2) GTA_<KEY> environment variables
  3) command-line flags (applied by gta.py)
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from gta_errors import ConfigError

logger = logging.getLogger("gta.config")

ENV_PREFIX = "GTA_"
KEYS = ("project", "user", "ttl", "verbosity", "format", "quiet")

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)"
_PART_RE = re.compile(_PART)
_DURATION_RE = re.compile(rf"(?:{_PART})+")


def default_config_path() -> Path:
    return Path.home() / ".gta.yaml"


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_duration(value: Any) -> timedelta:
    """Parse a Go-style duration such as '1h', '30m' or '1h30m'. Bare numbers are seconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)

    text = str(value).strip()
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration: {value!r}")
    seconds = sum(float(amount) * _UNITS[unit] for amount, unit in _PART_RE.findall(text))
    return timedelta(seconds=seconds)


def load_config(path: Optional[str | Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read the YAML config file (optional unless given explicitly) and apply env overrides."""
    explicit = path is not None
    config_path = Path(path).expanduser() if explicit else default_config_path()
    data: Dict[str, Any] = {}

    if config_path.is_file():
        try:
            with config_path.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid config file {config_path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"config file {config_path} must contain a mapping")
        data = {k: v for k, v in loaded.items() if k in KEYS}
        logger.debug("Using config file: %s", config_path)
    elif explicit:
        raise ConfigError(f"config file not found: {config_path}")

    env = os.environ if environ is None else environ
    for key in KEYS:
        value = env.get(ENV_PREFIX + key.upper())
        if value:
            data[key] = value

    if "quiet" in data:
        data["quiet"] = as_bool(data["quiet"])
    return data
