"""Detect structural drift between two versions of a project.

:func:`detect_drift` compares two :class:`CodeFile` models of the same file.
:class:`DriftDetector` lifts that to whole snapshots: it links changed
entities to the documentation that mentions them, proposes edits and
attaches a priority score.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .models import (
    IMPACT_ORDER,
    ClassInfo,
    CodeDiff,
    CodeFile,
    DocumentationDrift,
    DocumentationFile,
    DocumentationSection,
    DriftDetectionResult,
    DriftSuggestion,
    FunctionSignature,
    ImpactAnalysis,
    InterfaceInfo,
    ScoreContext,
    Snapshot,
    TypeInfo,
    UsageMetadata,
)
from .priority import DEFAULT_WEIGHTS, PriorityWeights, score
from .usage import UsageMetadataCollector

logger = logging.getLogger(__name__)

CATEGORY_ORDER = ("function", "class", "interface", "type")

SEVERITY_BY_IMPACT: Dict[str, str] = {
    "breaking": "critical",
    "major": "high",
    "minor": "medium",
    "patch": "low",
}

_SEVERITY_RANK = ["none", "low", "medium", "high", "critical"]


# ===================================================================
# Signature comparison
# ===================================================================

@dataclass(frozen=True)
class _Delta:
    """What changed between two versions of one callable."""

    label: str
    was_exported: bool
    is_exported: bool
    old_params: int
    new_params: int
    old_return: Optional[str]
    new_return: Optional[str]
    old_async: bool
    new_async: bool

    @property
    def params_changed(self) -> bool:
        return self.old_params != self.new_params

    @property
    def return_changed(self) -> bool:
        return self.old_return != self.new_return

    @property
    def async_changed(self) -> bool:
        return self.old_async != self.new_async

    @property
    def export_changed(self) -> bool:
        return self.was_exported != self.is_exported

    @property
    def changed(self) -> bool:
        return self.params_changed or self.return_changed or self.async_changed or self.export_changed

    def impact(self) -> str:
        if self.was_exported and (self.params_changed or self.return_changed):
            return "breaking"
        if self.was_exported and not self.is_exported:
            return "breaking"
        if self.async_changed:
            return "major"
        if not self.was_exported and self.is_exported:
            return "minor"
        return "patch"

    def describe(self) -> List[str]:
        prefix = f"{self.label}: " if self.label else ""
        parts: List[str] = []
        if self.params_changed:
            parts.append(f"{prefix}parameter count changed from {self.old_params} to {self.new_params}")
        if self.return_changed:
            parts.append(
                f"{prefix}return type changed from {self.old_return or 'void'} to {self.new_return or 'void'}"
            )
        if self.async_changed:
            parts.append(f"{prefix}{'became async' if self.new_async else 'is no longer async'}")
        if self.export_changed:
            parts.append(f"{prefix}{'now exported' if self.is_exported else 'no longer exported'}")
        return parts


def _function_delta(
    old: FunctionSignature,
    new: FunctionSignature,
    label: str = "",
    old_exported: Optional[bool] = None,
    new_exported: Optional[bool] = None,
) -> _Delta:
    return _Delta(
        label=label,
        was_exported=old.is_exported if old_exported is None else old_exported,
        is_exported=new.is_exported if new_exported is None else new_exported,
        old_params=len(old.parameters),
        new_params=len(new.parameters),
        old_return=old.return_type,
        new_return=new.return_type,
        old_async=old.is_async,
        new_async=new.is_async,
    )


def _export_delta(old: Any, new: Any) -> _Delta:
    return _Delta(
        label="",
        was_exported=old.is_exported,
        is_exported=new.is_exported,
        old_params=0,
        new_params=0,
        old_return=None,
        new_return=None,
        old_async=False,
        new_async=False,
    )


def _member_deltas(old: Any, new: Any) -> List[_Delta]:
    """Container export delta plus one delta per method present in both versions."""
    deltas = [_export_delta(old, new)]
    new_methods = {m.name: m for m in new.methods}
    for method in sorted(old.methods, key=lambda m: m.name):
        counterpart = new_methods.get(method.name)
        if counterpart is None:
            continue
        deltas.append(_function_delta(
            method,
            counterpart,
            label=f"method {method.name}",
            old_exported=old.is_exported and method.is_public,
            new_exported=new.is_exported and counterpart.is_public,
        ))
    return deltas


def _highest_impact(impacts: Sequence[str]) -> str:
    return min(impacts, key=IMPACT_ORDER.index)


# ===================================================================
# Rendering
# ===================================================================

def render_class(cls: ClassInfo) -> str:
    text = f"class {cls.name}"
    if cls.extends:
        text += f" extends {cls.extends}"
    if cls.implements:
        text += f" implements {', '.join(cls.implements)}"
    return text


def render_interface(iface: InterfaceInfo) -> str:
    text = f"interface {iface.name}"
    if iface.extends:
        text += f" extends {', '.join(iface.extends)}"
    return text


def render_type(type_info: TypeInfo) -> str:
    return f"type {type_info.name} = {type_info.definition}"


_RENDERERS: Dict[str, Callable[[Any], str]] = {
    "function": lambda f: f.render(),
    "class": render_class,
    "interface": render_interface,
    "type": render_type,
}


def _entities(code_file: CodeFile, category: str) -> Dict[str, Any]:
    source = {
        "function": code_file.functions,
        "class": code_file.classes,
        "interface": code_file.interfaces,
        "type": code_file.types,
    }[category]
    return {entity.name: entity for entity in source}


# ===================================================================
# detect_drift
# ===================================================================

def detect_drift(old: CodeFile, new: CodeFile) -> List[CodeDiff]:
    """Compare two versions of a file and return the structural changes.

    Output is grouped by category (function, class, interface, type) and
    sorted by entity name inside each group; identical inputs always give
    identical output.
    """
    diffs: List[CodeDiff] = []
    for category in CATEGORY_ORDER:
        old_map = _entities(old, category)
        new_map = _entities(new, category)
        render = _RENDERERS[category]
        label = category.capitalize()

        for name in sorted(set(old_map) | set(new_map)):
            before = old_map.get(name)
            after = new_map.get(name)

            if after is None:
                diffs.append(CodeDiff(
                    type="removed",
                    category=category,
                    name=name,
                    details=f"{label} '{name}' was removed",
                    impact_level="breaking" if before.is_exported else "minor",
                    old_signature=render(before),
                ))
                continue

            if before is None:
                diffs.append(CodeDiff(
                    type="added",
                    category=category,
                    name=name,
                    details=f"{label} '{name}' was added",
                    impact_level="patch",
                    new_signature=render(after),
                ))
                continue

            if category == "function":
                deltas = [_function_delta(before, after)]
            elif category in ("class", "interface"):
                deltas = _member_deltas(before, after)
            else:
                deltas = [_export_delta(before, after)]

            changed = [delta for delta in deltas if delta.changed]
            if not changed:
                continue

            details: List[str] = []
            for delta in changed:
                details.extend(delta.describe())
            diffs.append(CodeDiff(
                type="modified",
                category=category,
                name=name,
                details="; ".join(details),
                impact_level=_highest_impact([delta.impact() for delta in changed]),
                old_signature=render(before),
                new_signature=render(after),
            ))
    return diffs


# ===================================================================
# Snapshot-level analysis
# ===================================================================

def _parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DriftDetector:
    """Analyse drift between two snapshots and propose documentation updates."""

    def __init__(
        self,
        weights: PriorityWeights = DEFAULT_WEIGHTS,
        staleness_cap_days: float = config.STALENESS_CAP_DAYS,
        usage_collector: Optional[UsageMetadataCollector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.weights = weights.validate()
        self.staleness_cap_days = staleness_cap_days
        self.usage_collector = usage_collector or UsageMetadataCollector()
        self.clock = clock

    def analyze(
        self,
        old: Snapshot,
        new: Snapshot,
        usage: Optional[UsageMetadata] = None,
    ) -> List[DriftDetectionResult]:
        """Return one result per file that exists in both snapshots and changed.

        Files only in *new* are not reported here.
        """
        if usage is None:
            usage = self.usage_collector.collect(new)
        complexity_ceiling = max(
            (code_file.max_entity_complexity() for code_file in new.files.values()),
            default=1,
        )

        results: List[DriftDetectionResult] = []
        for path in sorted(new.files):
            previous = old.files.get(path)
            if previous is None:
                continue
            current = new.files[path]
            diffs = detect_drift(previous, current)
            if not diffs:
                continue
            result = self.analyze_file(path, diffs, new.documentation)
            context = self.score_context(diffs, previous, current, new.documentation, complexity_ceiling)
            result.priority_score = score(diffs, usage, self.weights, context)
            if result.priority_score.recommendation not in ("low", "medium"):
                for suggestion in result.suggestions:
                    suggestion.auto_applicable = False
            results.append(result)
            logger.debug("%s: %d change(s), severity %s", path, len(diffs), result.severity)
        return results

    def analyze_prioritized(
        self,
        old: Snapshot,
        new: Snapshot,
        usage: Optional[UsageMetadata] = None,
    ) -> List[DriftDetectionResult]:
        """Same as :meth:`analyze`, ordered by priority score, highest first."""
        results = self.analyze(old, new, usage)
        return sorted(results, key=lambda r: -(r.priority_score.overall if r.priority_score else 0.0))

    # -- per file --------------------------------------------------------

    def analyze_file(
        self,
        path: str,
        diffs: List[CodeDiff],
        documentation: Dict[str, DocumentationFile],
    ) -> DriftDetectionResult:
        affected = find_affected_documentation(path, diffs, documentation)
        detected_at = self.clock().isoformat()

        drifts = [
            DocumentationDrift(
                type=drift_type(diff),
                affected_docs=list(affected),
                code_changes=[diff],
                description=f"{diff.category} '{diff.name}' was {diff.type}: {diff.details}",
                detected_at=detected_at,
                severity=SEVERITY_BY_IMPACT[diff.impact_level],
            )
            for diff in diffs
        ]

        suggestions: List[DriftSuggestion] = []
        for diff in diffs:
            for doc_path in affected:
                doc = documentation[doc_path]
                suggestions.extend(
                    create_suggestion(diff, doc, section)
                    for section in doc.sections
                    if section.references(diff.name, diff.category)
                )

        counts = {level: sum(1 for d in diffs if d.impact_level == level) for level in IMPACT_ORDER}
        impact = ImpactAnalysis(
            breaking_changes=counts["breaking"],
            major_changes=counts["major"],
            minor_changes=counts["minor"],
            affected_doc_files=list(affected),
            estimated_update_effort=estimate_update_effort(drifts),
            requires_manual_review=counts["breaking"] > 0 or counts["major"] > 3,
        )

        return DriftDetectionResult(
            file_path=path,
            has_drift=bool(drifts),
            severity=overall_severity(drifts),
            drifts=drifts,
            suggestions=suggestions,
            impact_analysis=impact,
        )

    def score_context(
        self,
        diffs: Sequence[CodeDiff],
        old_file: CodeFile,
        new_file: CodeFile,
        documentation: Dict[str, DocumentationFile],
        complexity_ceiling: int,
    ) -> ScoreContext:
        complexities = [
            value for value in (
                new_file.complexity_of(diff.name) if diff.type != "removed" else old_file.complexity_of(diff.name)
                for diff in diffs
            )
            if value is not None
        ]

        documented_sections: List[Tuple[DocumentationFile, DocumentationSection]] = [
            (doc, section)
            for doc in documentation.values()
            for section in doc.sections
            if any(section.references(diff.name, diff.category) for diff in diffs)
        ]
        referencing_docs = [doc for doc in documentation.values() if new_file.path in doc.referenced_code]

        ages = []
        now = self.clock()
        for stamp in [s.last_updated or d.last_updated for d, s in documented_sections] + [
            d.last_updated for d in referencing_docs
        ]:
            parsed = _parse_timestamp(stamp)
            if parsed is not None:
                ages.append(max(0.0, (now - parsed).total_seconds() / 86400.0))

        return ScoreContext(
            complexity=max(complexities) if complexities else None,
            complexity_ceiling=max(1, max([complexity_ceiling] + complexities)),
            documented=bool(documented_sections),
            days_since_doc_update=min(ages) if ages else None,
            staleness_cap_days=self.staleness_cap_days,
        )


# ===================================================================
# Helpers
# ===================================================================

def find_affected_documentation(
    path: str,
    diffs: Sequence[CodeDiff],
    documentation: Dict[str, DocumentationFile],
) -> List[str]:
    """Docs that reference *path* or mention any changed symbol, in sorted order."""
    affected: List[str] = []
    for doc_path in sorted(documentation):
        doc = documentation[doc_path]
        if path in doc.referenced_code or any(
            section.references(diff.name, diff.category)
            for diff in diffs
            for section in doc.sections
        ):
            affected.append(doc_path)
    return affected


def drift_type(diff: CodeDiff) -> str:
    if diff.impact_level == "breaking":
        return "breaking"
    if diff.type == "removed":
        return "incorrect"
    if diff.type == "modified":
        return "outdated"
    return "missing"


def estimate_update_effort(drifts: Sequence[DocumentationDrift]) -> str:
    critical = sum(1 for d in drifts if d.severity == "critical")
    high = sum(1 for d in drifts if d.severity == "high")
    if critical > 0 or high > 5:
        return "high"
    if high > 0 or len(drifts) > 10:
        return "medium"
    return "low"


def overall_severity(drifts: Sequence[DocumentationDrift]) -> str:
    if not drifts:
        return "none"
    return max((d.severity for d in drifts), key=_SEVERITY_RANK.index)


def create_suggestion(diff: CodeDiff, doc: DocumentationFile, section: DocumentationSection) -> DriftSuggestion:
    if diff.type == "removed":
        reasoning = (
            f"The {diff.category} '{diff.name}' has been removed from the codebase. "
            "This section should be updated or removed."
        )
        confidence, auto_applicable = 0.8, False
    elif diff.type == "added":
        reasoning = f"A new {diff.category} '{diff.name}' has been added. Consider documenting it."
        confidence, auto_applicable = 0.6, False
    else:
        reasoning = f"The {diff.category} '{diff.name}' has been modified: {diff.details}"
        auto_applicable = diff.impact_level == "patch"
        confidence = 0.9 if auto_applicable else 0.7

    return DriftSuggestion(
        doc_file=doc.file_path,
        section=section.section_title,
        current_content=section.content,
        suggested_content=suggested_content_for(diff, section.content),
        reasoning=reasoning,
        confidence=confidence,
        auto_applicable=auto_applicable,
        code_diff=diff,
    )


def suggested_content_for(diff: CodeDiff, content: str) -> str:
    if diff.type == "removed":
        return removal_suggestion(content, diff)
    if diff.type == "added":
        return addition_suggestion(content, diff)
    return modification_suggestion(content, diff)


def rebase_suggestion(suggestion: DriftSuggestion, content: str) -> DriftSuggestion:
    """Recompute *suggestion* on top of section text an earlier edit already changed."""
    if suggestion.code_diff is None:
        return suggestion
    return replace(
        suggestion,
        current_content=content,
        suggested_content=suggested_content_for(suggestion.code_diff, content),
    )


def removal_suggestion(content: str, diff: CodeDiff) -> str:
    struck = re.sub(rf"\b{re.escape(diff.name)}\b", f"~~{diff.name}~~ (removed)", content)
    notice = f"> **Note**: The `{diff.name}` {diff.category} has been removed in the latest version.\n\n"
    return notice + struck


def addition_suggestion(content: str, diff: CodeDiff) -> str:
    addition = f"\n\n## {diff.name}\n\nA new {diff.category} has been added.\n\n"
    if diff.new_signature:
        addition += f"```\n{diff.new_signature}\n```\n"
    else:
        addition += f"> **Documentation needed**: Please document the `{diff.name}` {diff.category}.\n"
    return content.rstrip("\n") + addition


def modification_suggestion(content: str, diff: CodeDiff) -> str:
    if diff.old_signature and diff.new_signature:
        content = content.replace(diff.old_signature, diff.new_signature)
    return f"> **Updated**: {diff.details}\n\n" + content
