"""Configuration manager for docdrift using TOML files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)


def _config_file() -> Path:
    base = Path(os.environ.get("DOCDRIFT_HOME", str(Path.home() / ".docdrift"))).expanduser()
    return base / "config.toml"


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    Returns an empty dict when the file is missing or unreadable.
    """
    config_path = path or _config_file()
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config_path, exc)
        return {}


def load_section(name: str, path: Optional[Path] = None) -> Dict[str, Any]:
    """Load one ``[section]`` of the config, or an empty dict."""
    section = load_full_config(path).get(name, {})
    return section if isinstance(section, dict) else {}


def save_section(name: str, values: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Write one section, preserving every other section in the file.

    Returns:
        True if saved successfully, False otherwise
    """
    config_path = path or _config_file()
    config = load_full_config(config_path)
    config[name] = values
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", config_path, exc)
        return False


def clear_section(name: str, path: Optional[Path] = None) -> bool:
    """Remove a section from the config, resetting it to defaults."""
    config_path = path or _config_file()
    config = load_full_config(config_path)
    if name not in config:
        return True
    config.pop(name)
    try:
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", config_path, exc)
        return False
