from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict

from omero_browser.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrowserOptions:
    """Configuration for one browser instance.

    Values usually come from a ``config.dat`` key/value file; command line
    flags override them.
    """

    server_uri: str = ""
    username: str = ""
    port: int = 4064
    verify_ssl: bool = False
    timeout: int = 10
    page_limit: int = 200
    thumbnail_workers: int = 4
    thumbnail_size: int = 256


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def read_config(config_file: str = "./config.dat") -> Dict[str, str]:
    """Read configuration from key/value pair file."""
    config: Dict[str, str] = {}
    config_path = Path(config_file)
    if not config_path.is_absolute():
        # Relative to the current working directory
        config_path = config_path.resolve()

    try:
        with open(config_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                value = value.strip().strip('"').strip("'")
                config[key.strip()] = value
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    return config


def _coerce(name: str, kind: type, raw: object) -> object:
    if kind is bool or kind == "bool":
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigError(f"{name}: expected a boolean, got {raw!r}")
    if kind is int or kind == "int":
        try:
            return int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name}: expected an integer, got {raw!r}") from e
    return str(raw)


def options_from_config(config: Dict[str, str], **overrides: object) -> BrowserOptions:
    """Build options from a config dict; ``overrides`` that are not None win."""
    values: Dict[str, object] = {}
    for f in fields(BrowserOptions):
        if f.name in config:
            values[f.name] = _coerce(f.name, f.type, config[f.name])
    unknown = set(config) - {f.name for f in fields(BrowserOptions)}
    if unknown:
        logger.debug("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    options = BrowserOptions(**values)  # type: ignore[arg-type]
    applied = {}
    for f in fields(BrowserOptions):
        if overrides.get(f.name) is not None:
            applied[f.name] = _coerce(f.name, f.type, overrides[f.name])
    if applied:
        options = replace(options, **applied)  # type: ignore[arg-type]
    for name in ("timeout", "page_limit", "thumbnail_workers", "thumbnail_size"):
        if getattr(options, name) <= 0:
            raise ConfigError(f"{name} must be positive")
    return options
