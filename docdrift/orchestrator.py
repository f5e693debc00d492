"""Sync orchestrator coordinating extraction, drift detection, scoring and persistence.

One :meth:`SyncOrchestrator.run` call walks this state machine::

    IDLE -> BASELINE -> DONE                          (no previous snapshot)
    IDLE -> DETECT | PREVIEW | APPLY | AUTO -> DONE   (otherwise)

The mode is chosen by the caller and fixed for the whole run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from . import config
from .diff_engine import DiffEngine
from .doc_extractor import MarkdownDocExtractor
from .drift_detector import DriftDetector, rebase_suggestion
from .errors import DocDriftError, SuggestionApplyError, SyncCancelled
from .freshness import GitRevisionReader, update_freshness
from .knowledge_graph import KnowledgeGraph
from .models import (
    AppliedChange,
    DocumentationFile,
    DriftDetectionResult,
    DriftSuggestion,
    GraphEdge,
    GraphNode,
    NextStep,
    PendingSuggestion,
    Recommendation,
    Snapshot,
    SyncResult,
    SyncStats,
)
from .parser import ExtractorRegistry, default_registry
from .snapshots import SnapshotStore, snapshot_timestamp

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    DETECT = "detect"
    PREVIEW = "preview"
    APPLY = "apply"
    AUTO = "auto"


class SyncState(str, Enum):
    IDLE = "idle"
    BASELINE = "baseline"
    DETECT = "detect"
    PREVIEW = "preview"
    APPLY = "apply"
    AUTO = "auto"
    DONE = "done"


_TRANSITIONS: Dict[SyncState, Set[SyncState]] = {
    SyncState.IDLE: {SyncState.BASELINE, SyncState.DETECT, SyncState.PREVIEW, SyncState.APPLY, SyncState.AUTO},
    SyncState.BASELINE: {SyncState.DONE},
    SyncState.DETECT: {SyncState.DONE},
    SyncState.PREVIEW: {SyncState.DONE},
    SyncState.APPLY: {SyncState.DONE},
    SyncState.AUTO: {SyncState.DONE},
    SyncState.DONE: {SyncState.IDLE},
}


@dataclass
class SyncOptions:
    mode: SyncMode = field(default_factory=lambda: SyncMode(config.SYNC_MODE))
    auto_apply_threshold: float = field(default_factory=lambda: config.AUTO_APPLY_THRESHOLD)
    create_snapshot: bool = True
    workers: int = 1

    def __post_init__(self) -> None:
        self.mode = SyncMode(self.mode)
        if not 0.0 <= self.auto_apply_threshold <= 1.0:
            raise ValueError(f"auto_apply_threshold must be between 0 and 1 (got {self.auto_apply_threshold})")

    @property
    def mutating(self) -> bool:
        return self.mode in (SyncMode.APPLY, SyncMode.AUTO)


class CancelToken:
    """Cooperative cancellation flag checked between files and suggestions."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("Sync run was cancelled")


class DocumentationExtractor(Protocol):
    def extract(self, docs_path: Path) -> Dict[str, DocumentationFile]:
        ...


class RevisionReader(Protocol):
    def current_revision(self, path: Path) -> Optional[str]:
        ...


def estimate_update_time(breaking_changes: int, pending: int) -> str:
    minutes = breaking_changes * 5 + pending * 2
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{int(minutes / 60 + 0.5)} hours"


class SyncOrchestrator:
    """Runs one code-to-docs synchronisation over a project.

    Collaborators are injected; the graph is owned by the caller, which is
    responsible for opening and closing it.
    """

    def __init__(
        self,
        graph: Optional[KnowledgeGraph] = None,
        doc_extractor: Optional[DocumentationExtractor] = None,
        revision_reader: Optional[RevisionReader] = None,
        registry: Optional[ExtractorRegistry] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        detector: Optional[DriftDetector] = None,
    ) -> None:
        self.graph = graph
        self.doc_extractor = doc_extractor
        self.revision_reader = revision_reader or GitRevisionReader()
        self.registry = registry
        self.snapshot_store = snapshot_store
        self.detector = detector or DriftDetector()
        self.state = SyncState.IDLE

    def _transition(self, target: SyncState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid sync transition {self.state.value} -> {target.value}")
        logger.debug("sync state %s -> %s", self.state.value, target.value)
        self.state = target

    # ------------------------------------------------------------------
    # Snapshot capture
    # ------------------------------------------------------------------

    def capture(
        self,
        project_path: Path,
        docs_path: Path,
        workers: int = 1,
        cancel: Optional[CancelToken] = None,
    ) -> Snapshot:
        """Extract the current code and documentation structure."""
        registry = self.registry or default_registry()
        files = registry.scan_project(
            project_path,
            workers=workers,
            before_each=cancel.raise_if_cancelled if cancel is not None else None,
        )
        return Snapshot(
            timestamp=snapshot_timestamp(),
            project_path=str(project_path),
            files=files,
            documentation=self._doc_extractor(project_path).extract(docs_path),
        )

    def _doc_extractor(self, project_path: Path) -> DocumentationExtractor:
        return self.doc_extractor or MarkdownDocExtractor(project_path)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        project_path: Path,
        docs_path: Path,
        options: Optional[SyncOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SyncResult:
        """Run one sync.

        Raises:
            SyncCancelled: *cancel* was triggered. Changes already written stay written.
        """
        options = options or SyncOptions()
        project_path = Path(project_path).resolve()
        docs_path = Path(docs_path)
        if not docs_path.is_absolute():
            docs_path = project_path / docs_path
        store = self.snapshot_store or SnapshotStore.for_project(project_path)

        self.state = SyncState.IDLE
        previous = store.load_latest()
        current = self.capture(project_path, docs_path, options.workers, cancel)

        if previous is None:
            result = self._baseline(current, options, store)
        else:
            result = self._sync(previous, current, project_path, docs_path, options, store, cancel)

        self._record(project_path, current, result)
        self._transition(SyncState.DONE)
        result.state = self.state.value
        logger.info(
            "Sync complete: %d applied, %d pending",
            result.stats.changes_applied, result.stats.changes_pending,
        )
        return result

    def _baseline(self, current: Snapshot, options: SyncOptions, store: SnapshotStore) -> SyncResult:
        self._transition(SyncState.BASELINE)
        store.save(current)
        logger.info("No previous snapshot found; captured baseline %s", current.snapshot_id)
        return SyncResult(
            mode=options.mode.value,
            state=self.state.value,
            snapshot_id=current.snapshot_id,
            stats=SyncStats(files_analyzed=len(current.files)),
            recommendations=[Recommendation(
                type="info",
                title="Baseline Created",
                description="Baseline snapshot created. Run sync again after code changes to detect drift.",
            )],
        )

    def _sync(
        self,
        previous: Snapshot,
        current: Snapshot,
        project_path: Path,
        docs_path: Path,
        options: SyncOptions,
        store: SnapshotStore,
        cancel: Optional[CancelToken],
    ) -> SyncResult:
        self._transition(SyncState(options.mode.value))
        detections = self.detector.analyze_prioritized(previous, current)
        engine = DiffEngine(project_path)

        applied: List[AppliedChange] = []
        pending: List[PendingSuggestion] = []
        modified_docs: List[str] = []
        # (doc_file, section) -> (text when analysed, text after the edits applied so far)
        section_edits: Dict[Tuple[str, str], Tuple[str, str]] = {}

        for detection in detections:
            for suggestion in detection.suggestions:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                key = (suggestion.doc_file, suggestion.section)
                edit = section_edits.get(key)
                if edit is not None and suggestion.current_content == edit[0]:
                    suggestion = rebase_suggestion(suggestion, edit[1])
                outcome = self._handle_suggestion(suggestion, engine, options)
                if isinstance(outcome, AppliedChange):
                    applied.append(outcome)
                    original = edit[0] if edit is not None else suggestion.current_content
                    section_edits[key] = (original, suggestion.suggested_content)
                    if suggestion.doc_file not in modified_docs:
                        modified_docs.append(suggestion.doc_file)
                else:
                    pending.append(outcome)

        if modified_docs:
            self._update_freshness(project_path, engine, modified_docs)
            current.documentation = self._doc_extractor(project_path).extract(docs_path)

        if options.create_snapshot or options.mutating:
            store.save(current)

        breaking = sum(d.impact_analysis.breaking_changes for d in detections)
        result = SyncResult(
            mode=options.mode.value,
            state=self.state.value,
            snapshot_id=current.snapshot_id,
            drift_detections=detections,
            applied_changes=applied,
            pending_changes=pending,
            stats=SyncStats(
                files_analyzed=len(current.files),
                drifts_detected=sum(1 for d in detections if d.has_drift),
                changes_applied=len(applied),
                changes_pending=len(pending),
                breaking_changes=breaking,
                estimated_update_time=estimate_update_time(breaking, len(pending)),
            ),
        )
        result.recommendations = recommendations_for(result)
        result.next_steps = next_steps_for(result)
        return result

    def _handle_suggestion(self, suggestion: DriftSuggestion, engine: DiffEngine, options: SyncOptions):
        if not options.mutating:
            return PendingSuggestion(
                doc_file=suggestion.doc_file,
                section=suggestion.section,
                reason="Detected drift",
                suggested_content=suggestion.suggested_content,
                confidence=suggestion.confidence,
                requires_review=not suggestion.auto_applicable,
                preview=engine.render_suggestion(suggestion) if options.mode is SyncMode.PREVIEW else None,
            )

        should_apply = options.mode is SyncMode.AUTO or (
            suggestion.auto_applicable and suggestion.confidence >= options.auto_apply_threshold
        )
        if not should_apply:
            return PendingSuggestion(
                doc_file=suggestion.doc_file,
                section=suggestion.section,
                reason="Requires manual review",
                suggested_content=suggestion.suggested_content,
                confidence=suggestion.confidence,
            )

        try:
            engine.apply_suggestion(suggestion)
        except SuggestionApplyError as exc:
            logger.warning("Could not apply suggestion to %s: %s", suggestion.doc_file, exc)
            return PendingSuggestion(
                doc_file=suggestion.doc_file,
                section=suggestion.section,
                reason=f"Auto-apply failed: {exc}",
                suggested_content=suggestion.suggested_content,
                confidence=suggestion.confidence,
            )
        return AppliedChange(
            doc_file=suggestion.doc_file,
            section=suggestion.section,
            change_type="updated",
            confidence=suggestion.confidence,
            details=suggestion.reasoning,
        )

    def _update_freshness(self, project_path: Path, engine: DiffEngine, doc_files: Iterable[str]) -> None:
        revision = self.revision_reader.current_revision(project_path)
        for doc_file in doc_files:
            try:
                update_freshness(engine.resolve(doc_file), revision)
            except OSError as exc:
                logger.warning("Failed to update freshness metadata for %s: %s", doc_file, exc)

    # ------------------------------------------------------------------
    # Graph recording
    # ------------------------------------------------------------------

    def _record(self, project_path: Path, snapshot: Snapshot, result: SyncResult) -> None:
        if self.graph is None:
            return
        try:
            record_sync(self.graph, project_path, snapshot, result)
            self.graph.save()
        except DocDriftError as exc:
            logger.warning("Failed to store sync results in knowledge graph: %s", exc)


# ===================================================================
# Graph recording helpers
# ===================================================================

_REFERENCE_TYPES = {
    "reference": "api-reference",
    "tutorial": "tutorial",
    "explanation": "explanation",
    "how-to": "example",
}


def project_node_id(project_path: Path) -> str:
    return f"project:{project_path.name or 'unknown'}"


def code_file_node_id(path: str) -> str:
    return f"code_file:{path}"


def section_node_id(doc_file: str, title: str) -> str:
    return f"documentation_section:{doc_file}#{title}"


def _change_type(detection: DriftDetectionResult) -> str:
    changes = detection.code_changes
    if changes and all(c.type == "removed" for c in changes):
        return "removed"
    if changes and all(c.type == "added" for c in changes):
        return "added"
    if any(c.category in ("class", "interface") for c in changes):
        return "class_structure"
    return "function_signature"


def record_sync(graph: KnowledgeGraph, project_path: Path, snapshot: Snapshot, result: SyncResult) -> None:
    """Write the project, files, doc sections, drift events and the sync event."""
    now = datetime.now(timezone.utc).isoformat()
    project_id = project_node_id(project_path)
    existing = graph.get_node(project_id)
    graph.add_node(GraphNode(
        id=project_id,
        type="project",
        label=project_path.name,
        properties={
            "name": project_path.name or "unknown",
            "path": str(project_path),
            "last_analyzed": now,
            "analysis_count": (existing.properties.get("analysis_count", 0) if existing else 0) + 1,
            "total_files": len(snapshot.files),
            "has_docs": bool(snapshot.documentation),
        },
    ))

    for path, code_file in snapshot.files.items():
        graph.add_node(GraphNode(
            id=code_file_node_id(path),
            type="code_file",
            label=path,
            properties={
                "path": path,
                "language": code_file.language,
                "content_hash": code_file.content_hash,
                "functions": [f.name for f in code_file.functions],
                "classes": [c.name for c in code_file.classes],
                "exports": list(code_file.exports),
                "imports": [imp.source for imp in code_file.imports],
                "last_modified": code_file.last_modified,
                "lines_of_code": code_file.lines_of_code,
                "complexity": code_file.complexity,
            },
        ))

    for doc in snapshot.documentation.values():
        for section in doc.sections:
            section_id = section_node_id(doc.file_path, section.section_title)
            graph.add_node(GraphNode(
                id=section_id,
                type="documentation_section",
                label=section.section_title,
                properties={
                    "file_path": doc.file_path,
                    "section_title": section.section_title,
                    "content_hash": section.content_hash,
                    "referenced_code_files": list(section.referenced_code_files),
                    "referenced_functions": list(section.referenced_functions),
                    "referenced_classes": list(section.referenced_classes),
                    "category": section.category,
                    "last_updated": section.last_updated,
                    "has_code_examples": section.has_code_examples,
                },
            ))
            for code_path in dict.fromkeys(section.referenced_code_files + doc.referenced_code):
                if code_path not in snapshot.files:
                    continue
                graph.add_edge(GraphEdge(
                    source=section_id,
                    target=code_file_node_id(code_path),
                    type="references",
                    properties={"reference_type": _REFERENCE_TYPES.get(section.category or "", "mention")},
                ))

    for detection in result.drift_detections:
        drift_id = f"drift_event:{detection.file_path}:{result.snapshot_id}"
        score = detection.priority_score
        graph.add_node(GraphNode(
            id=drift_id,
            type="drift_event",
            label=f"Drift in {detection.file_path}",
            properties={
                "file_path": detection.file_path,
                "severity": detection.severity,
                "detected_at": now,
                "breaking_changes": detection.impact_analysis.breaking_changes,
                "major_changes": detection.impact_analysis.major_changes,
                "minor_changes": detection.impact_analysis.minor_changes,
                "changes": [f"{c.type} {c.category} {c.name}" for c in detection.code_changes],
                "affected_docs": list(detection.impact_analysis.affected_doc_files),
                "priority": score.overall if score else None,
                "recommendation": score.recommendation if score else None,
            },
        ))
        code_id = code_file_node_id(detection.file_path)
        if graph.get_node(code_id) is not None:
            graph.add_edge(GraphEdge(source=code_id, target=drift_id, type="has_drift", properties={"detected_at": now}))

        if score is not None:
            score_id = f"priority_score:{detection.file_path}:{result.snapshot_id}"
            graph.add_node(GraphNode(
                id=score_id,
                type="priority_score",
                label=f"{score.recommendation} ({score.overall})",
                properties={
                    "overall": score.overall,
                    "recommendation": score.recommendation,
                    "suggested_action": score.suggested_action,
                    "factors": score.factors.as_dict(),
                },
            ))
            graph.add_edge(GraphEdge(source=drift_id, target=score_id, type="scored_as"))

        severity = detection.severity if detection.severity != "none" else "low"
        for suggestion in detection.suggestions:
            section_id = section_node_id(suggestion.doc_file, suggestion.section)
            if graph.get_node(section_id) is None:
                continue
            graph.add_edge(GraphEdge(
                source=section_id,
                target=drift_id,
                type="outdated_for",
                confidence=suggestion.confidence,
                properties={
                    "detected_at": now,
                    "change_type": _change_type(detection),
                    "severity": severity,
                    "auto_fixable": suggestion.auto_applicable,
                },
            ))

    sync_id = f"sync_event:{project_path.name or 'unknown'}:{result.snapshot_id}"
    graph.add_node(GraphNode(
        id=sync_id,
        type="sync_event",
        label="Code-Docs Sync",
        properties={
            "mode": "baseline" if result.state == SyncState.BASELINE.value else result.mode,
            "timestamp": now,
            "snapshot_id": result.snapshot_id,
            "files_analyzed": result.stats.files_analyzed,
            "drifts_detected": result.stats.drifts_detected,
            "changes_applied": result.stats.changes_applied,
            "changes_pending": result.stats.changes_pending,
            "breaking_changes": result.stats.breaking_changes,
        },
    ))
    graph.add_edge(GraphEdge(source=project_id, target=sync_id, type="has_sync_event"))


# ===================================================================
# Result text
# ===================================================================

def recommendations_for(result: SyncResult) -> List[Recommendation]:
    recs: List[Recommendation] = []
    review = sum(1 for p in result.pending_changes if p.requires_review)
    if result.stats.breaking_changes > 0:
        recs.append(Recommendation(
            type="critical",
            title="Breaking Changes Detected",
            description=(
                f"{result.stats.breaking_changes} breaking change(s) detected. "
                "Review and update documentation carefully."
            ),
        ))
    if review:
        recs.append(Recommendation(
            type="warning",
            title="Manual Review Required",
            description=f"{review} change(s) require manual review before applying.",
        ))
    if result.applied_changes:
        recs.append(Recommendation(
            type="info",
            title="Changes Applied Successfully",
            description=f"{len(result.applied_changes)} documentation update(s) applied automatically.",
        ))
    if result.stats.drifts_detected == 0:
        recs.append(Recommendation(
            type="info",
            title="No Drift Detected",
            description="Documentation is up to date with code changes.",
        ))
    return recs


def next_steps_for(result: SyncResult) -> List[NextStep]:
    steps: List[NextStep] = []
    if result.pending_changes and result.mode == SyncMode.DETECT.value:
        steps.append(NextStep(
            action="Apply safe documentation changes",
            description="Run sync with --mode apply to apply high-confidence changes automatically",
            priority="high",
        ))
    if result.stats.breaking_changes > 0:
        steps.append(NextStep(
            action="Review breaking changes",
            description="Manually review and update documentation for breaking API changes",
            priority="high",
        ))
    if result.applied_changes:
        steps.append(NextStep(
            action="Validate updated documentation",
            description="Re-read the updated sections to make sure they are accurate",
            priority="medium",
        ))
    if any(p.requires_review for p in result.pending_changes):
        steps.append(NextStep(
            action="Review pending suggestions",
            description="Examine pending suggestions and apply manually where appropriate",
            priority="medium",
        ))
    return steps
