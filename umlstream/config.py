"""Configuration for the umlstream server, loaded from a TOML file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("UMLSTREAM_HOME", str(Path.home() / ".umlstream"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_DESCRIPTOR = "tsconfig.json"


@dataclass(frozen=True)
class Settings:
    root: Path = Path(".")
    descriptor: str = DEFAULT_DESCRIPTOR
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    watch: bool = True
    coalesce: bool = True
    log_level: str = "INFO"


# TOML table -> {key in table: Settings field}
_SECTIONS: Dict[str, Dict[str, str]] = {
    "project": {"root": "root", "descriptor": "descriptor"},
    "server": {"host": "host", "port": "port"},
    "watch": {"enabled": "watch", "coalesce": "coalesce"},
    "logging": {"level": "log_level"},
}


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the whole TOML config; a missing or broken file yields ``{}``."""
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", config_path, exc)
        return {}


def load_settings(path: Optional[Path] = None, **overrides: Any) -> Settings:
    """Build :class:`Settings` from defaults, the config file, then *overrides*.

    Overrides whose value is ``None`` are treated as "not given".
    """
    values: Dict[str, Any] = {}
    config = load_full_config(path)
    for section, keys in _SECTIONS.items():
        table = config.get(section, {})
        if not isinstance(table, dict):
            continue
        for key, field_name in keys.items():
            if key in table:
                values[field_name] = table[key]

    known = {f.name for f in fields(Settings)}
    for name, value in overrides.items():
        if name not in known:
            raise TypeError(f"Unknown setting: {name}")
        if value is not None:
            values[name] = value

    settings = replace(Settings(), **values)
    return replace(
        settings,
        root=Path(settings.root).expanduser(),
        descriptor=str(settings.descriptor),
        port=int(settings.port),
        watch=bool(settings.watch),
        coalesce=bool(settings.coalesce),
        log_level=str(settings.log_level).upper(),
    )
