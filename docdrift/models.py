"""Core data models shared by extraction, drift detection, scoring and sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

DiffType = Literal["added", "removed", "modified", "unchanged"]
DiffCategory = Literal["function", "class", "interface", "type", "import", "export"]
ImpactLevel = Literal["breaking", "major", "minor", "patch"]
Visibility = Literal["public", "protected", "private"]
Severity = Literal["none", "low", "medium", "high", "critical"]

# Highest impact first; used for precedence comparisons.
IMPACT_ORDER: List[str] = ["breaking", "major", "minor", "patch"]


# ===================================================================
# Code structure
# ===================================================================

@dataclass
class ParameterInfo:
    name: str
    type: Optional[str] = None
    optional: bool = False
    default: Optional[str] = None


@dataclass
class FunctionSignature:
    name: str
    parameters: List[ParameterInfo] = field(default_factory=list)
    return_type: Optional[str] = None
    is_async: bool = False
    is_exported: bool = False
    is_public: bool = True
    doc_comment: Optional[str] = None
    start_line: int = 0
    end_line: int = 0
    complexity: int = 1
    dependencies: List[str] = field(default_factory=list)

    def render(self) -> str:
        """Human-readable one-line signature, e.g. ``async f(a: int): str``."""
        params = ", ".join(f"{p.name}: {p.type or 'any'}" for p in self.parameters)
        prefix = "async " if self.is_async else ""
        return f"{prefix}{self.name}({params}): {self.return_type or 'void'}"


@dataclass
class PropertyInfo:
    name: str
    type: Optional[str] = None
    is_static: bool = False
    is_readonly: bool = False
    visibility: Visibility = "public"


@dataclass
class ClassInfo:
    name: str
    is_exported: bool = False
    extends: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    methods: List[FunctionSignature] = field(default_factory=list)
    properties: List[PropertyInfo] = field(default_factory=list)
    doc_comment: Optional[str] = None
    start_line: int = 0
    end_line: int = 0


@dataclass
class InterfaceInfo:
    name: str
    is_exported: bool = False
    extends: List[str] = field(default_factory=list)
    properties: List[PropertyInfo] = field(default_factory=list)
    methods: List[FunctionSignature] = field(default_factory=list)
    doc_comment: Optional[str] = None
    start_line: int = 0
    end_line: int = 0


@dataclass
class TypeInfo:
    name: str
    is_exported: bool = False
    definition: str = ""
    doc_comment: Optional[str] = None
    start_line: int = 0
    end_line: int = 0


@dataclass
class ImportedName:
    name: str
    alias: Optional[str] = None


@dataclass
class ImportInfo:
    source: str
    names: List[ImportedName] = field(default_factory=list)
    is_default: bool = False
    start_line: int = 0


@dataclass
class CodeFile:
    """Structural model of one source file."""

    path: str
    language: str
    functions: List[FunctionSignature] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    interfaces: List[InterfaceInfo] = field(default_factory=list)
    types: List[TypeInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    content_hash: str = ""
    last_modified: str = ""
    lines_of_code: int = 0
    complexity: int = 0

    def entity_names(self) -> List[str]:
        names = [f.name for f in self.functions]
        names += [c.name for c in self.classes]
        names += [i.name for i in self.interfaces]
        names += [t.name for t in self.types]
        return names

    def max_entity_complexity(self) -> int:
        values = [f.complexity for f in self.functions]
        for cls in self.classes:
            values.extend(m.complexity for m in cls.methods)
        return max(values, default=0)

    def complexity_of(self, name: str) -> Optional[int]:
        """Complexity of a function, or the summed method complexity of a class."""
        for func in self.functions:
            if func.name == name:
                return func.complexity
        for cls in self.classes:
            if cls.name == name:
                return sum(m.complexity for m in cls.methods) or 1
            for method in cls.methods:
                if f"{cls.name}.{method.name}" == name:
                    return method.complexity
        return None


@dataclass
class Unsupported:
    """Returned by extractors for files they cannot handle."""

    path: str
    reason: str

    def __bool__(self) -> bool:
        return False


# ===================================================================
# Diffs
# ===================================================================

@dataclass(frozen=True)
class CodeDiff:
    type: DiffType
    category: DiffCategory
    name: str
    details: str
    impact_level: ImpactLevel
    old_signature: Optional[str] = None
    new_signature: Optional[str] = None


# ===================================================================
# Documentation
# ===================================================================

@dataclass
class CodeExample:
    language: str
    code: str
    description: str = ""
    referenced_symbols: List[str] = field(default_factory=list)


@dataclass
class DocumentationSection:
    file_path: str
    section_title: str
    content: str = ""
    content_hash: str = ""
    referenced_code_files: List[str] = field(default_factory=list)
    referenced_functions: List[str] = field(default_factory=list)
    referenced_classes: List[str] = field(default_factory=list)
    referenced_types: List[str] = field(default_factory=list)
    category: Optional[str] = None
    last_updated: str = ""
    has_code_examples: bool = False
    code_examples: List[CodeExample] = field(default_factory=list)
    effectiveness_score: Optional[float] = None
    start_line: int = 0
    end_line: int = 0

    def references(self, symbol: str, category: str) -> bool:
        if category == "function":
            return symbol in self.referenced_functions
        if category == "class":
            return symbol in self.referenced_classes
        if category in ("interface", "type"):
            return symbol in self.referenced_types or symbol in self.referenced_classes
        return False


@dataclass
class DocumentationFile:
    file_path: str
    content_hash: str = ""
    referenced_code: List[str] = field(default_factory=list)
    last_updated: str = ""
    sections: List[DocumentationSection] = field(default_factory=list)


@dataclass
class Snapshot:
    """Complete structural picture of a project at one point in time."""

    timestamp: str
    project_path: str
    files: Dict[str, CodeFile] = field(default_factory=dict)
    documentation: Dict[str, DocumentationFile] = field(default_factory=dict)

    @property
    def snapshot_id(self) -> str:
        return self.timestamp


# ===================================================================
# Drift analysis
# ===================================================================

@dataclass
class DriftSuggestion:
    doc_file: str
    section: str
    current_content: str
    suggested_content: str
    reasoning: str
    confidence: float
    auto_applicable: bool
    code_diff: Optional[CodeDiff] = None


@dataclass
class DocumentationDrift:
    type: Literal["outdated", "incorrect", "missing", "breaking"]
    affected_docs: List[str]
    code_changes: List[CodeDiff]
    description: str
    detected_at: str
    severity: Literal["low", "medium", "high", "critical"]


@dataclass
class ImpactAnalysis:
    breaking_changes: int = 0
    major_changes: int = 0
    minor_changes: int = 0
    affected_doc_files: List[str] = field(default_factory=list)
    estimated_update_effort: Literal["low", "medium", "high"] = "low"
    requires_manual_review: bool = False


@dataclass
class DriftDetectionResult:
    file_path: str
    has_drift: bool
    severity: Severity
    drifts: List[DocumentationDrift] = field(default_factory=list)
    suggestions: List[DriftSuggestion] = field(default_factory=list)
    impact_analysis: ImpactAnalysis = field(default_factory=ImpactAnalysis)
    priority_score: Optional["PriorityScore"] = None

    @property
    def code_changes(self) -> List[CodeDiff]:
        changes: List[CodeDiff] = []
        for drift in self.drifts:
            changes.extend(drift.code_changes)
        return changes


# ===================================================================
# Scoring
# ===================================================================

@dataclass
class UsageMetadata:
    file_path: str = ""
    function_calls: Dict[str, int] = field(default_factory=dict)
    class_instantiations: Dict[str, int] = field(default_factory=dict)
    imports: Dict[str, int] = field(default_factory=dict)

    def total_for(self, name: str) -> int:
        return (
            self.function_calls.get(name, 0)
            + self.class_instantiations.get(name, 0)
            + self.imports.get(name, 0)
        )

    def max_usage(self) -> int:
        names = set(self.function_calls) | set(self.class_instantiations) | set(self.imports)
        return max((self.total_for(n) for n in names), default=0)

    def is_empty(self) -> bool:
        return not (self.function_calls or self.class_instantiations or self.imports)


@dataclass
class ScoreContext:
    """Inputs the scorer needs that a diff does not carry."""

    complexity: Optional[int] = None
    complexity_ceiling: int = 1
    documented: Optional[bool] = None
    days_since_doc_update: Optional[float] = None
    staleness_cap_days: float = 90.0
    feedback_score: float = 0.0


@dataclass
class PriorityFactors:
    code_complexity: float = 0.0
    usage_frequency: float = 0.0
    change_magnitude: float = 0.0
    documentation_coverage: float = 0.0
    staleness: float = 0.0
    user_feedback: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "code_complexity": self.code_complexity,
            "usage_frequency": self.usage_frequency,
            "change_magnitude": self.change_magnitude,
            "documentation_coverage": self.documentation_coverage,
            "staleness": self.staleness,
            "user_feedback": self.user_feedback,
        }


@dataclass
class PriorityScore:
    overall: float
    factors: PriorityFactors
    recommendation: Literal["critical", "high", "medium", "low"]
    suggested_action: str


# ===================================================================
# Graph
# ===================================================================

@dataclass
class GraphNode:
    id: str
    type: str
    label: str
    properties: Dict[str, Any] = field(default_factory=dict)
    weight: float = 1.0
    last_updated: str = ""


@dataclass
class GraphEdge:
    source: str
    target: str
    type: str
    weight: float = 1.0
    confidence: float = 1.0
    properties: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    last_updated: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"{self.source}-{self.type}-{self.target}"


@dataclass
class GraphPath:
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    total_weight: float = 0.0
    confidence: float = 1.0


@dataclass
class IntegrityReport:
    valid: bool
    orphaned_edges: List[str] = field(default_factory=list)
    duplicate_ids: List[str] = field(default_factory=list)
    stale_nodes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ===================================================================
# Sync
# ===================================================================

@dataclass
class AppliedChange:
    doc_file: str
    section: str
    change_type: Literal["updated", "added", "removed"]
    confidence: float
    details: str = ""


@dataclass
class PendingSuggestion:
    doc_file: str
    section: str
    reason: str
    suggested_content: str
    confidence: float
    requires_review: bool = True
    preview: Optional[str] = None


@dataclass
class SyncStats:
    files_analyzed: int = 0
    drifts_detected: int = 0
    changes_applied: int = 0
    changes_pending: int = 0
    breaking_changes: int = 0
    estimated_update_time: str = "0 minutes"


@dataclass
class Recommendation:
    type: Literal["critical", "warning", "info"]
    title: str
    description: str


@dataclass
class NextStep:
    action: str
    description: str
    priority: Literal["high", "medium", "low"]


@dataclass
class SyncResult:
    mode: str
    state: str
    snapshot_id: str
    drift_detections: List[DriftDetectionResult] = field(default_factory=list)
    applied_changes: List[AppliedChange] = field(default_factory=list)
    pending_changes: List[PendingSuggestion] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)
    recommendations: List[Recommendation] = field(default_factory=list)
    next_steps: List[NextStep] = field(default_factory=list)
