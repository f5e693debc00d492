"""Configuration paths and defaults for docdrift."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

BASE_DIR = Path(os.environ.get("DOCDRIFT_HOME", str(Path.home() / ".docdrift"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Project-local state lives next to the analysed sources.
STATE_DIR_NAME = ".docdrift"
GRAPH_DIR_NAME = "knowledge-graph"
SNAPSHOT_DIR_NAME = "snapshots"

from .config_manager import load_section  # noqa: E402

logger = logging.getLogger(__name__)

SYNC_MODES = ("detect", "preview", "apply", "auto")
INTEGRITY_POLICIES = ("reject", "admit")


def _setting(
    section: Dict[str, Any],
    name: str,
    key: str,
    default: Any,
    convert: Callable[[Any], Any],
    valid: Optional[Callable[[Any], bool]] = None,
) -> Any:
    """Read ``[name] key`` from config.toml, falling back to *default* when it is unusable."""
    if key not in section:
        return default
    raw = section[key]
    try:
        value = convert(raw)
    except (TypeError, ValueError):
        value = None
    if value is None or (valid is not None and not valid(value)):
        logger.warning("Ignoring invalid config value [%s] %s = %r; using %r", name, key, raw, default)
        return default
    return value


_scoring = load_section("scoring")
_storage = load_section("storage")
_sync = load_section("sync")

# Priority scoring -- weights must sum to 1.0
DEFAULT_WEIGHTS = {
    "code_complexity": 0.20,
    "usage_frequency": 0.25,
    "change_magnitude": 0.25,
    "documentation_coverage": 0.15,
    "staleness": 0.10,
    "user_feedback": 0.05,
}
WEIGHT_OVERRIDES = _setting(_scoring, "scoring", "weights", {}, dict)
STALENESS_CAP_DAYS = _setting(_scoring, "scoring", "staleness_cap_days", 90.0, float, lambda v: v > 0)
WEIGHT_SUM_EPSILON = 0.01

# Knowledge graph storage
BACKUP_KEEP_COUNT = _setting(_storage, "storage", "backup_keep_count", 10, int, lambda v: v >= 1)
INTEGRITY_POLICY = _setting(_storage, "storage", "integrity_policy", "reject", str, INTEGRITY_POLICIES.__contains__)
STALE_NODE_DAYS = _setting(_storage, "storage", "stale_node_days", 180, int, lambda v: v >= 0)
SNAPSHOT_KEEP_COUNT = _setting(_storage, "storage", "snapshot_keep_count", 20, int, lambda v: v >= 1)

# Sync defaults
SYNC_MODE = _setting(_sync, "sync", "mode", "detect", str, SYNC_MODES.__contains__)
AUTO_APPLY_THRESHOLD = _setting(_sync, "sync", "auto_apply_threshold", 0.8, float, lambda v: 0.0 <= v <= 1.0)


def state_dir(project_root: Path) -> Path:
    """Return the project-local state directory (``<root>/.docdrift``)."""
    return project_root / STATE_DIR_NAME
