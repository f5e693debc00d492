"""Persistence layer for the project knowledge graph.

Layout (under ``<project>/.docdrift/knowledge-graph/``):

- ``entities.jsonl``       -- one node per line
- ``relationships.jsonl``  -- one edge per line
- ``backups/``             -- ``<kind>-<timestamp>.jsonl`` copies taken before each write

Each stream starts with a versioned marker line. A file without the marker
is never read as a graph and never overwritten. Writes go to a temporary
file that is flushed, fsynced and then renamed over the live file, so a
crash leaves either the old or the new stream in place.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import config
from .errors import StorageError
from .models import GraphEdge, GraphNode
from .schemas import SCHEMA_VERSION

logger = logging.getLogger(__name__)

MARKER_PREFIX = "# DOCDRIFT_KNOWLEDGE_GRAPH"
ENTITY_MARKER = f"{MARKER_PREFIX}_ENTITIES v{SCHEMA_VERSION}"
RELATIONSHIP_MARKER = f"{MARKER_PREFIX}_RELATIONSHIPS v{SCHEMA_VERSION}"

KINDS = ("entities", "relationships")

_NODE_FIELDS = {f.name for f in dataclasses.fields(GraphNode)}
_EDGE_FIELDS = {f.name for f in dataclasses.fields(GraphEdge)}


def graph_dir(project_root: Path) -> Path:
    return config.state_dir(project_root) / config.GRAPH_DIR_NAME


def backup_timestamp() -> str:
    """Sortable UTC timestamp used in backup file names."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass
class BackupSet:
    """Backups of both streams that share one timestamp."""

    timestamp: str
    files: Dict[str, Path] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return all(kind in self.files for kind in KINDS)

    @property
    def size_bytes(self) -> int:
        return sum(path.stat().st_size for path in self.files.values() if path.exists())


class GraphStorage:
    """JSONL entity/relationship streams with atomic writes and rotating backups."""

    def __init__(
        self,
        storage_dir: Path,
        backup_keep_count: int = config.BACKUP_KEEP_COUNT,
        backup_on_write: bool = True,
    ) -> None:
        self.storage_dir = Path(storage_dir)
        self.entities_path = self.storage_dir / "entities.jsonl"
        self.relationships_path = self.storage_dir / "relationships.jsonl"
        self.backup_dir = self.storage_dir / "backups"
        self.backup_keep_count = backup_keep_count
        self.backup_on_write = backup_on_write

    @classmethod
    def for_project(cls, project_root: Path, **kwargs: Any) -> "GraphStorage":
        return cls(graph_dir(project_root), **kwargs)

    def _paths(self) -> Dict[str, Tuple[Path, str]]:
        return {
            "entities": (self.entities_path, ENTITY_MARKER),
            "relationships": (self.relationships_path, RELATIONSHIP_MARKER),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the directory layout and marker-only streams if missing."""
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to initialize graph storage in {self.storage_dir}: {exc}") from exc

        for path, marker in self._paths().values():
            if path.exists() and path.stat().st_size > 0:
                self._check_marker(path)
                continue
            self._atomic_write(path, marker, [])

    @staticmethod
    def _check_marker(path: Path) -> str:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                first = fh.readline().rstrip("\n")
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc
        if not first.startswith(MARKER_PREFIX):
            raise StorageError(
                f"File {path} is not a docdrift knowledge graph file. "
                "Refusing to overwrite to prevent data loss."
            )
        version = first.rsplit(" v", 1)[-1] if " v" in first else ""
        if version != SCHEMA_VERSION:
            logger.warning("%s has schema version %s, expected %s", path.name, version or "?", SCHEMA_VERSION)
        return first

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _discard(tmp: Path) -> None:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            logger.debug("Could not remove temp file %s", tmp)

    def _write_temp(self, path: Path, marker: str, records: Iterable[Dict[str, Any]]) -> Path:
        """Write and fsync ``<path>.tmp``; the live file is untouched."""
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(marker + "\n")
                for record in records:
                    fh.write(json.dumps(record, ensure_ascii=False) + "\n")
                fh.flush()
                os.fsync(fh.fileno())
        except (OSError, TypeError, ValueError) as exc:
            self._discard(tmp)
            raise StorageError(f"Failed to write {path.name}: {exc}") from exc
        return tmp

    def _atomic_write(self, path: Path, marker: str, records: Iterable[Dict[str, Any]]) -> None:
        tmp = self._write_temp(path, marker, records)
        try:
            os.replace(tmp, path)
        except OSError as exc:
            self._discard(tmp)
            raise StorageError(f"Failed to write {path.name}: {exc}") from exc

    def _backup(self, kind: str, timestamp: str) -> Optional[Path]:
        path, _ = self._paths()[kind]
        if not path.exists():
            return None
        target = self.backup_dir / f"{kind}-{timestamp}.jsonl"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
        except OSError as exc:
            raise StorageError(f"Failed to back up {path.name}: {exc}") from exc
        self._prune_backups(kind)
        return target

    def _prune_backups(self, kind: str) -> None:
        backups = sorted(self.backup_dir.glob(f"{kind}-*.jsonl"), key=lambda p: p.name, reverse=True)
        for stale in backups[self.backup_keep_count:]:
            try:
                stale.unlink()
            except OSError as exc:
                logger.warning("Could not remove old backup %s: %s", stale.name, exc)

    def _unique_timestamp(self) -> str:
        timestamp = backup_timestamp()
        candidate, n = timestamp, 0
        while any((self.backup_dir / f"{kind}-{candidate}.jsonl").exists() for kind in KINDS):
            n += 1
            candidate = f"{timestamp}-{n}"
        return candidate

    def save_graph(self, nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> Optional[str]:
        """Back up both streams, then atomically rewrite them.

        Both temp files are written before either live file is replaced. If
        the second rename fails, the first stream is put back, so a failed
        save leaves the pair exactly as it was.

        Returns the shared backup timestamp, or None when backups are disabled.
        """
        timestamp = None
        if self.backup_on_write:
            timestamp = self._unique_timestamp()
            for kind in KINDS:
                self._backup(kind, timestamp)

        records = {
            "entities": (dataclasses.asdict(n) for n in nodes),
            "relationships": (dataclasses.asdict(e) for e in edges),
        }
        staged: List[Tuple[str, Path, Path]] = []
        try:
            for kind, (path, marker) in self._paths().items():
                staged.append((kind, self._write_temp(path, marker, records[kind]), path))
        except StorageError:
            for _, tmp, _ in staged:
                self._discard(tmp)
            raise

        self._commit(staged, timestamp)
        logger.debug("Saved knowledge graph to %s", self.storage_dir)
        return timestamp

    def _commit(self, staged: List[Tuple[str, Path, Path]], timestamp: Optional[str]) -> None:
        previous: Dict[str, Optional[bytes]] = {}
        committed: List[str] = []
        for kind, tmp, path in staged:
            try:
                if timestamp is None:
                    previous[kind] = path.read_bytes() if path.exists() else None
                os.replace(tmp, path)
            except OSError as exc:
                for _, pending, _ in staged:
                    self._discard(pending)
                for done in committed:
                    self._roll_back(done, timestamp, previous.get(done))
                raise StorageError(f"Failed to write {path.name}: {exc}") from exc
            committed.append(kind)

    def _roll_back(self, kind: str, timestamp: Optional[str], previous: Optional[bytes]) -> None:
        """Put one live stream back to its state before the current save."""
        path, _ = self._paths()[kind]
        tmp = path.with_name(path.name + ".tmp")
        source = self.backup_dir / f"{kind}-{timestamp}.jsonl" if timestamp else None
        try:
            if source is not None and source.exists():
                shutil.copyfile(source, tmp)
            elif previous is not None:
                tmp.write_bytes(previous)
            else:
                path.unlink(missing_ok=True)
                return
            os.replace(tmp, path)
        except OSError as exc:
            self._discard(tmp)
            logger.error("Could not roll back %s after a failed save: %s", path.name, exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read_records(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        self._check_marker(path)
        records: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as fh:
                next(fh, None)
                for lineno, line in enumerate(fh, start=2):
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError as exc:
                        logger.error("Skipping corrupt line %d in %s: %s", lineno, path.name, exc)
                        continue
                    if isinstance(record, dict):
                        records.append(record)
        except OSError as exc:
            raise StorageError(f"Failed to read {path.name}: {exc}") from exc
        return records

    def load_entities(self) -> List[GraphNode]:
        nodes: List[GraphNode] = []
        for record in self._read_records(self.entities_path):
            if not record.get("id") or not record.get("type"):
                logger.error("Skipping entity without id/type: %s", record)
                continue
            record.setdefault("label", record["id"])
            nodes.append(GraphNode(**{k: v for k, v in record.items() if k in _NODE_FIELDS}))
        return nodes

    def load_relationships(self) -> List[GraphEdge]:
        edges: List[GraphEdge] = []
        for record in self._read_records(self.relationships_path):
            if not record.get("source") or not record.get("target") or not record.get("type"):
                logger.error("Skipping relationship missing source/target/type: %s", record)
                continue
            edges.append(GraphEdge(**{k: v for k, v in record.items() if k in _EDGE_FIELDS}))
        return edges

    def load_graph(self) -> Tuple[List[GraphNode], List[GraphEdge]]:
        return self.load_entities(), self.load_relationships()

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def list_backups(self) -> List[BackupSet]:
        """Backup sets, newest first."""
        sets: Dict[str, BackupSet] = {}
        if not self.backup_dir.exists():
            return []
        for path in self.backup_dir.glob("*.jsonl"):
            kind, _, timestamp = path.stem.partition("-")
            if kind not in KINDS or not timestamp:
                continue
            sets.setdefault(timestamp, BackupSet(timestamp)).files[kind] = path
        return [sets[ts] for ts in sorted(sets, reverse=True)]

    def restore(self, timestamp: Optional[str] = None) -> str:
        """Replace both live streams with the backup set taken at *timestamp*.

        The latest complete set is used when *timestamp* is None. Returns the
        timestamp that was restored.
        """
        backups = [b for b in self.list_backups() if b.complete]
        if not backups:
            raise StorageError("No backups found")
        if timestamp is None:
            chosen = backups[0]
        else:
            matches = [b for b in backups if b.timestamp == timestamp]
            if not matches:
                raise StorageError(f"Backup with timestamp {timestamp} not found")
            chosen = matches[0]

        for kind in KINDS:
            source = chosen.files[kind]
            self._check_marker(source)
            live, _ = self._paths()[kind]
            tmp = live.with_name(live.name + ".tmp")
            try:
                shutil.copyfile(source, tmp)
                with open(tmp, "rb+") as fh:
                    os.fsync(fh.fileno())
                os.replace(tmp, live)
            except OSError as exc:
                raise StorageError(f"Failed to restore {kind} from {source.name}: {exc}") from exc
        logger.info("Restored knowledge graph from backup %s", chosen.timestamp)
        return chosen.timestamp

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def file_sizes(self) -> Dict[str, int]:
        return {
            kind: (path.stat().st_size if path.exists() else 0)
            for kind, (path, _) in self._paths().items()
        }
