"""In-memory knowledge graph backed by :class:`GraphStorage`.

A :class:`KnowledgeGraph` is an explicitly owned object. Open it, pass it
to whoever needs it, and close it (or use it as a context manager) to
persist pending changes::

    with KnowledgeGraph.for_project(root) as graph:
        graph.add_node(GraphNode(id="project:demo", type="project", label="demo", properties={...}))
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from . import config
from .errors import DanglingReferenceError, StorageError, ValidationError
from .models import GraphEdge, GraphNode, GraphPath, IntegrityReport
from .schemas import SCHEMA_VERSION, validate_edge_properties, validate_node_properties
from .storage import BackupSet, GraphStorage

logger = logging.getLogger(__name__)


class IntegrityPolicy(str, Enum):
    """What :meth:`KnowledgeGraph.add_edge` does with a missing endpoint."""

    REJECT = "reject"
    ADMIT = "admit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(values: Dict[str, Any], criteria: Optional[Dict[str, Any]]) -> bool:
    if not criteria:
        return True
    for key, expected in criteria.items():
        if key not in values:
            return False
        actual = values[key]
        if callable(expected):
            if not expected(actual):
                return False
        elif actual != expected:
            return False
    return True


class KnowledgeGraph:
    """Typed nodes and directed edges with schema validation and path queries."""

    def __init__(
        self,
        storage: Optional[GraphStorage] = None,
        integrity_policy: Optional[IntegrityPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.integrity_policy = IntegrityPolicy(integrity_policy or config.INTEGRITY_POLICY)
        self.clock = clock
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._outgoing: Dict[str, List[str]] = {}
        self._dirty = False
        self._is_open = False

    @classmethod
    def for_project(cls, project_root: Path, **kwargs: Any) -> "KnowledgeGraph":
        return cls(GraphStorage.for_project(project_root), **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "KnowledgeGraph":
        if self.storage is not None:
            self.storage.initialize()
            self._load()
        self._is_open = True
        return self

    def close(self) -> None:
        if self._dirty:
            self.save()
        self._is_open = False

    def __enter__(self) -> "KnowledgeGraph":
        return self.open()

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _load(self) -> None:
        if self.storage is None:
            raise StorageError("Graph has no storage to load from")
        nodes, edges = self.storage.load_graph()
        self._nodes.clear()
        self._edges.clear()
        self._outgoing.clear()
        for node in nodes:
            self._nodes[node.id] = node
        for edge in edges:
            self._store_edge(edge)
        self._dirty = False
        logger.debug("Loaded %d nodes and %d edges", len(self._nodes), len(self._edges))

    def save(self) -> Optional[str]:
        """Persist the graph. Returns the backup timestamp taken before writing."""
        if self.storage is None:
            self._dirty = False
            return None
        timestamp = self.storage.save_graph(self._nodes.values(), self._edges.values())
        self._dirty = False
        return timestamp

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return self.clock().isoformat()

    def add_node(self, node: GraphNode) -> GraphNode:
        """Insert or update a node after validating its properties.

        Raises:
            ValidationError: properties do not match the schema for ``node.type``.
        """
        if not node.id:
            raise ValidationError("Node id is required", field="id")
        if not node.type:
            raise ValidationError("Node type is required", field="type")
        properties = validate_node_properties(node.type, node.properties)
        stored = dataclasses.replace(
            node,
            properties=properties,
            label=node.label or node.id,
            last_updated=self._now(),
        )
        self._nodes[stored.id] = stored
        self._dirty = True
        return stored

    def add_edge(self, edge: GraphEdge) -> GraphEdge:
        """Insert or update an edge.

        Raises:
            ValidationError: weight/confidence out of range or bad properties.
            DanglingReferenceError: an endpoint is missing under the reject policy.
        """
        for name in ("weight", "confidence"):
            value = getattr(edge, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"Edge {name} must be between 0 and 1 (got {value})", field=name)
        properties = validate_edge_properties(edge.type, edge.properties)

        missing = [endpoint for endpoint in (edge.source, edge.target) if endpoint not in self._nodes]
        if missing:
            if self.integrity_policy is IntegrityPolicy.REJECT:
                raise DanglingReferenceError(edge.id, missing[0])
            logger.warning("Admitting edge %s with missing endpoint(s): %s", edge.id, ", ".join(missing))
            properties["dangling"] = True

        stored = dataclasses.replace(edge, properties=properties, last_updated=self._now())
        self._store_edge(stored)
        self._dirty = True
        return stored

    def _store_edge(self, edge: GraphEdge) -> None:
        if edge.id not in self._edges:
            self._outgoing.setdefault(edge.source, []).append(edge.id)
        self._edges[edge.id] = edge

    def remove_node(self, node_id: str) -> bool:
        """Delete a node and every edge touching it. Used for explicit repair only."""
        if node_id not in self._nodes:
            return False
        del self._nodes[node_id]
        for edge_id in [e.id for e in self._edges.values() if node_id in (e.source, e.target)]:
            self._remove_edge(edge_id)
        self._outgoing.pop(node_id, None)
        self._dirty = True
        return True

    def _remove_edge(self, edge_id: str) -> None:
        edge = self._edges.pop(edge_id)
        outgoing = self._outgoing.get(edge.source, [])
        if edge_id in outgoing:
            outgoing.remove(edge_id)

    def repair(self) -> int:
        """Drop orphaned edges. Returns how many were removed."""
        orphaned = self._orphaned_edges()
        for edge_id in orphaned:
            self._remove_edge(edge_id)
        if orphaned:
            self._dirty = True
            logger.info("Removed %d orphaned edge(s)", len(orphaned))
        return len(orphaned)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        return self._edges.get(edge_id)

    def all_nodes(self) -> List[GraphNode]:
        return list(self._nodes.values())

    def all_edges(self) -> List[GraphEdge]:
        return list(self._edges.values())

    def find_nodes(
        self,
        type: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
    ) -> List[GraphNode]:
        """Nodes matching the type and every property predicate, in insertion order.

        A predicate is either a value compared for equality or a callable
        receiving the property value.
        """
        return [
            node for node in self._nodes.values()
            if (id is None or node.id == id)
            and (type is None or node.type == type)
            and _matches(node.properties, properties)
        ]

    def find_node(
        self,
        type: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
    ) -> Optional[GraphNode]:
        found = self.find_nodes(type=type, properties=properties, id=id)
        return found[0] if found else None

    def find_edges(
        self,
        source: Optional[str] = None,
        target: Optional[str] = None,
        type: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> List[GraphEdge]:
        return [
            edge for edge in self._edges.values()
            if (source is None or edge.source == source)
            and (target is None or edge.target == target)
            and (type is None or edge.type == type)
            and _matches(edge.properties, properties)
        ]

    def neighbors(self, node_id: str, edge_types: Optional[Iterable[str]] = None) -> List[GraphNode]:
        wanted = set(edge_types) if edge_types is not None else None
        result: List[GraphNode] = []
        for edge_id in self._outgoing.get(node_id, []):
            edge = self._edges[edge_id]
            if wanted is not None and edge.type not in wanted:
                continue
            target = self._nodes.get(edge.target)
            if target is not None and target not in result:
                result.append(target)
        return result

    def find_paths(
        self,
        start: str,
        end: str,
        max_depth: int = 3,
        edge_types: Optional[Iterable[str]] = None,
    ) -> List[GraphPath]:
        """All simple paths from *start* to *end* using at most *max_depth* edges.

        Breadth-first, so shorter paths come first. Empty when either endpoint
        is missing or nothing connects them within the bound.
        """
        if start not in self._nodes or end not in self._nodes or max_depth < 0:
            return []
        if start == end:
            return [GraphPath(nodes=[self._nodes[start]], edges=[], total_weight=0.0, confidence=1.0)]

        wanted = set(edge_types) if edge_types is not None else None
        paths: List[GraphPath] = []
        queue: Deque[Tuple[str, List[str], List[GraphEdge]]] = deque([(start, [start], [])])
        while queue:
            current, visited, edges = queue.popleft()
            if len(edges) >= max_depth:
                continue
            for edge_id in self._outgoing.get(current, []):
                edge = self._edges[edge_id]
                if wanted is not None and edge.type not in wanted:
                    continue
                nxt = edge.target
                if nxt in visited or nxt not in self._nodes:
                    continue
                next_edges = edges + [edge]
                if nxt == end:
                    paths.append(self._make_path(visited + [nxt], next_edges))
                else:
                    queue.append((nxt, visited + [nxt], next_edges))
        return paths

    def _make_path(self, node_ids: List[str], edges: List[GraphEdge]) -> GraphPath:
        confidence = 1.0
        for edge in edges:
            confidence *= edge.confidence
        return GraphPath(
            nodes=[self._nodes[node_id] for node_id in node_ids],
            edges=edges,
            total_weight=sum(edge.weight for edge in edges),
            confidence=confidence,
        )

    # ------------------------------------------------------------------
    # Statistics / integrity
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        degree: Counter = Counter()
        for edge in self._edges.values():
            degree[edge.source] += 1
            degree[edge.target] += 1
        node_count = len(self._nodes)
        most_connected = [
            {"id": node_id, "label": self._nodes[node_id].label, "degree": count}
            for node_id, count in degree.most_common()
            if node_id in self._nodes
        ][:5]
        storage_sizes = self.storage.file_sizes() if self.storage is not None else {}
        return {
            "node_count": node_count,
            "edge_count": len(self._edges),
            "nodes_by_type": dict(Counter(node.type for node in self._nodes.values())),
            "edges_by_type": dict(Counter(edge.type for edge in self._edges.values())),
            "average_connectivity": round(2 * len(self._edges) / node_count, 2) if node_count else 0.0,
            "most_connected_nodes": most_connected,
            "storage_bytes": storage_sizes,
            "schema_version": SCHEMA_VERSION,
        }

    def _orphaned_edges(self) -> List[str]:
        return [
            edge.id for edge in self._edges.values()
            if edge.source not in self._nodes or edge.target not in self._nodes
        ]

    def verify_integrity(self, stale_after_days: int = config.STALE_NODE_DAYS) -> IntegrityReport:
        """Report orphaned edges, duplicate persisted ids and stale nodes. Repairs nothing."""
        errors: List[str] = []
        warnings: List[str] = []

        orphaned = self._orphaned_edges()
        for edge_id in orphaned:
            edge = self._edges[edge_id]
            for endpoint, role in ((edge.source, "source"), (edge.target, "target")):
                if endpoint not in self._nodes:
                    warnings.append(f"Relationship {edge_id} references missing {role} entity: {endpoint}")

        duplicates: List[str] = []
        if self.storage is not None:
            try:
                persisted = Counter(node.id for node in self.storage.load_entities())
            except StorageError as exc:
                errors.append(f"Integrity check failed: {exc}")
                persisted = Counter()
            duplicates = sorted(node_id for node_id, count in persisted.items() if count > 1)
            errors.extend(f"Duplicate entity ID found: {node_id} ({persisted[node_id]} instances)" for node_id in duplicates)

        cutoff = self.clock() - timedelta(days=stale_after_days)
        stale: List[str] = []
        for node in self._nodes.values():
            try:
                updated = datetime.fromisoformat(node.last_updated)
            except (TypeError, ValueError):
                continue
            if updated.tzinfo is None:
                updated = updated.replace(tzinfo=timezone.utc)
            if updated < cutoff:
                stale.append(node.id)
        if stale:
            warnings.append(f"{len(stale)} node(s) not updated in {stale_after_days} days")

        return IntegrityReport(
            valid=not errors and not orphaned,
            orphaned_edges=orphaned,
            duplicate_ids=duplicates,
            stale_nodes=stale,
            errors=errors,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Backup / export
    # ------------------------------------------------------------------

    def list_backups(self) -> List[BackupSet]:
        return self.storage.list_backups() if self.storage is not None else []

    def restore(self, timestamp: Optional[str] = None) -> str:
        """Roll the store back to a backup set and reload it."""
        if self.storage is None:
            raise StorageError("Graph has no storage to restore from")
        restored = self.storage.restore(timestamp)
        self._load()
        return restored

    def export(self, path: Path) -> Path:
        """Write the full in-memory graph as JSON."""
        payload = {
            "metadata": {
                "version": SCHEMA_VERSION,
                "export_date": self._now(),
                "entity_count": len(self._nodes),
                "relationship_count": len(self._edges),
            },
            "entities": [dataclasses.asdict(n) for n in self._nodes.values()],
            "relationships": [dataclasses.asdict(e) for e in self._edges.values()],
        }
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to export graph to {path}: {exc}") from exc
        return path
