"""JSON persistence for structural snapshots.

Snapshots are written to ``<project>/.docdrift/snapshots/snapshot-<timestamp>.json``.
The newest one is the baseline for the next sync run.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .errors import StorageError
from .models import (
    ClassInfo,
    CodeExample,
    CodeFile,
    DocumentationFile,
    DocumentationSection,
    FunctionSignature,
    ImportedName,
    ImportInfo,
    InterfaceInfo,
    ParameterInfo,
    PropertyInfo,
    Snapshot,
    TypeInfo,
)

logger = logging.getLogger(__name__)


def snapshot_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


# ===================================================================
# dict -> model
# ===================================================================

def _function(data: Dict[str, Any]) -> FunctionSignature:
    data = dict(data)
    data["parameters"] = [ParameterInfo(**p) for p in data.get("parameters", [])]
    return FunctionSignature(**data)


def code_file_from_dict(data: Dict[str, Any]) -> CodeFile:
    data = dict(data)
    data["functions"] = [_function(f) for f in data.get("functions", [])]
    data["classes"] = [
        ClassInfo(**{
            **c,
            "methods": [_function(m) for m in c.get("methods", [])],
            "properties": [PropertyInfo(**p) for p in c.get("properties", [])],
        })
        for c in data.get("classes", [])
    ]
    data["interfaces"] = [
        InterfaceInfo(**{
            **i,
            "methods": [_function(m) for m in i.get("methods", [])],
            "properties": [PropertyInfo(**p) for p in i.get("properties", [])],
        })
        for i in data.get("interfaces", [])
    ]
    data["types"] = [TypeInfo(**t) for t in data.get("types", [])]
    data["imports"] = [
        ImportInfo(**{**imp, "names": [ImportedName(**n) for n in imp.get("names", [])]})
        for imp in data.get("imports", [])
    ]
    return CodeFile(**data)


def doc_file_from_dict(data: Dict[str, Any]) -> DocumentationFile:
    data = dict(data)
    data["sections"] = [
        DocumentationSection(**{
            **s,
            "code_examples": [CodeExample(**e) for e in s.get("code_examples", [])],
        })
        for s in data.get("sections", [])
    ]
    return DocumentationFile(**data)


def snapshot_from_dict(data: Dict[str, Any]) -> Snapshot:
    return Snapshot(
        timestamp=data["timestamp"],
        project_path=data.get("project_path", ""),
        files={path: code_file_from_dict(f) for path, f in data.get("files", {}).items()},
        documentation={path: doc_file_from_dict(d) for path, d in data.get("documentation", {}).items()},
    )


# ===================================================================
# Store
# ===================================================================

class SnapshotStore:
    """Directory of snapshot files with retention."""

    def __init__(self, snapshot_dir: Path, keep_count: int = config.SNAPSHOT_KEEP_COUNT) -> None:
        self.snapshot_dir = Path(snapshot_dir)
        self.keep_count = keep_count

    @classmethod
    def for_project(cls, project_root: Path, **kwargs: Any) -> "SnapshotStore":
        return cls(config.state_dir(project_root) / config.SNAPSHOT_DIR_NAME, **kwargs)

    def _path_for(self, snapshot_id: str) -> Path:
        return self.snapshot_dir / f"snapshot-{snapshot_id}.json"

    def list_ids(self) -> List[str]:
        """Snapshot ids, oldest first."""
        if not self.snapshot_dir.exists():
            return []
        return sorted(
            p.stem[len("snapshot-"):] for p in self.snapshot_dir.glob("snapshot-*.json")
        )

    def save(self, snapshot: Snapshot) -> Path:
        path = self._path_for(snapshot.snapshot_id)
        tmp = path.with_name(path.name + ".tmp")
        try:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(dataclasses.asdict(snapshot), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageError(f"Failed to save snapshot {snapshot.snapshot_id}: {exc}") from exc
        self._prune()
        logger.info("Saved snapshot %s (%d files)", snapshot.snapshot_id, len(snapshot.files))
        return path

    def load(self, snapshot_id: str) -> Snapshot:
        path = self._path_for(snapshot_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to load snapshot {snapshot_id}: {exc}") from exc
        try:
            return snapshot_from_dict(data)
        except (KeyError, TypeError) as exc:
            raise StorageError(f"Snapshot {snapshot_id} is malformed: {exc}") from exc

    def load_latest(self) -> Optional[Snapshot]:
        """Newest readable snapshot, skipping unreadable ones, or None."""
        for snapshot_id in reversed(self.list_ids()):
            try:
                return self.load(snapshot_id)
            except StorageError as exc:
                logger.warning("Skipping snapshot: %s", exc)
        return None

    def _prune(self) -> None:
        ids = self.list_ids()
        for snapshot_id in ids[: max(0, len(ids) - self.keep_count)]:
            try:
                self._path_for(snapshot_id).unlink()
            except OSError as exc:
                logger.warning("Could not remove old snapshot %s: %s", snapshot_id, exc)
