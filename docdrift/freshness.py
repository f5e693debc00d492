"""Freshness metadata for documentation files.

Freshness lives in the YAML frontmatter of each Markdown file under a
``docdrift`` key::

    ---
    title: API
    docdrift:
      last_updated: '2026-01-01T00:00:00+00:00'
      last_validated: '2026-01-01T00:00:00+00:00'
      auto_updated: true
      validated_against_commit: 3f2c1a...
    ---
"""

from __future__ import annotations

import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

FRONTMATTER_KEY = "docdrift"

_FRONTMATTER_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str, int]:
    """Split Markdown into ``(frontmatter, body, body_start_line)``.

    Malformed or non-mapping frontmatter is treated as absent.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text, 0
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logger.warning("Ignoring malformed frontmatter: %s", exc)
        return {}, text, 0
    if not isinstance(data, dict):
        return {}, text, 0
    return data, text[match.end():], match.group(0).count("\n")


def render_frontmatter(data: Dict[str, Any], body: str) -> str:
    if not data:
        return body
    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---\n{body}"


def read_freshness(text: str) -> Dict[str, Any]:
    data, _, _ = split_frontmatter(text)
    block = data.get(FRONTMATTER_KEY)
    return block if isinstance(block, dict) else {}


def update_freshness(
    path: Path,
    revision: Optional[str],
    auto_updated: bool = True,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Stamp *path* as updated and validated now. Returns the new metadata block.

    Raises:
        OSError: the file cannot be read or written.
    """
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    text = path.read_text(encoding="utf-8")
    data, body, _ = split_frontmatter(text)

    block = data.get(FRONTMATTER_KEY)
    block = dict(block) if isinstance(block, dict) else {}
    block.update({
        "last_updated": stamp,
        "last_validated": stamp,
        "auto_updated": auto_updated,
    })
    if revision:
        block["validated_against_commit"] = revision
    data[FRONTMATTER_KEY] = block

    path.write_text(render_frontmatter(data, body), encoding="utf-8")
    logger.debug("Updated freshness metadata in %s", path)
    return block


class GitRevisionReader:
    """Reads the current commit id with ``git rev-parse HEAD``."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def current_revision(self, path: Path) -> Optional[str]:
        try:
            completed = subprocess.run(
                ["git", "rev-parse", "HEAD"],
                cwd=str(path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("git unavailable for %s: %s", path, exc)
            return None
        if completed.returncode != 0:
            logger.debug("git rev-parse failed in %s: %s", path, completed.stderr.strip())
            return None
        return completed.stdout.strip() or None
