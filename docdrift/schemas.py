"""Pydantic schemas for knowledge-graph node and edge properties.

Every node type and edge type that docdrift writes has a schema here.
Types without a schema are stored unvalidated, so callers can keep their
own node kinds in the same graph.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

SCHEMA_VERSION = "1.0.0"


class _Properties(BaseModel):
    model_config = ConfigDict(extra="allow")


# ===================================================================
# Nodes
# ===================================================================

class ProjectProperties(_Properties):
    name: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    last_analyzed: Optional[str] = None
    analysis_count: int = Field(default=0, ge=0)
    total_files: int = Field(default=0, ge=0)
    has_docs: bool = False


class CodeFileProperties(_Properties):
    path: str = Field(..., min_length=1)
    language: str = Field(..., min_length=1)
    content_hash: str = Field(..., min_length=1)
    functions: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)
    exports: List[str] = Field(default_factory=list)
    imports: List[str] = Field(default_factory=list)
    last_modified: str = ""
    lines_of_code: int = Field(default=0, ge=0)
    complexity: int = Field(default=0, ge=0)


class DocumentationSectionProperties(_Properties):
    file_path: str = Field(..., min_length=1)
    section_title: str = Field(..., min_length=1)
    content_hash: str = Field(..., min_length=1)
    referenced_code_files: List[str] = Field(default_factory=list)
    referenced_functions: List[str] = Field(default_factory=list)
    referenced_classes: List[str] = Field(default_factory=list)
    category: Optional[Literal["tutorial", "how-to", "reference", "explanation"]] = None
    last_updated: str = ""
    has_code_examples: bool = False
    effectiveness_score: Optional[float] = Field(default=None, ge=0, le=1)


class DriftEventProperties(_Properties):
    file_path: str = Field(..., min_length=1)
    severity: Literal["none", "low", "medium", "high", "critical"]
    detected_at: str = ""
    breaking_changes: int = Field(default=0, ge=0)
    major_changes: int = Field(default=0, ge=0)
    minor_changes: int = Field(default=0, ge=0)
    changes: List[str] = Field(default_factory=list)
    affected_docs: List[str] = Field(default_factory=list)
    priority: Optional[float] = Field(default=None, ge=0, le=100)
    recommendation: Optional[Literal["critical", "high", "medium", "low"]] = None


class PriorityScoreProperties(_Properties):
    overall: float = Field(..., ge=0, le=100)
    recommendation: Literal["critical", "high", "medium", "low"]
    suggested_action: str = ""
    factors: Dict[str, float] = Field(default_factory=dict)


class SyncEventProperties(_Properties):
    mode: Literal["detect", "preview", "apply", "auto", "baseline"]
    timestamp: str = Field(..., min_length=1)
    snapshot_id: str = ""
    files_analyzed: int = Field(default=0, ge=0)
    drifts_detected: int = Field(default=0, ge=0)
    changes_applied: int = Field(default=0, ge=0)
    changes_pending: int = Field(default=0, ge=0)
    breaking_changes: int = Field(default=0, ge=0)


# ===================================================================
# Edges
# ===================================================================

class ReferencesProperties(_Properties):
    reference_type: Literal["example", "api-reference", "tutorial", "explanation", "mention"] = "mention"
    is_accurate: Optional[bool] = None
    last_verified: Optional[str] = None


class DocumentsProperties(_Properties):
    coverage: Literal["partial", "complete", "comprehensive"] = "partial"


class OutdatedForProperties(_Properties):
    detected_at: str = ""
    change_type: Literal[
        "function_signature", "class_structure", "dependency", "behavior", "removed", "added",
    ] = "function_signature"
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    auto_fixable: bool = False


class DependsOnProperties(_Properties):
    dependency_type: Literal["import", "inheritance", "composition", "usage"] = "import"


class HasDriftProperties(_Properties):
    detected_at: str = ""


class HasSyncEventProperties(_Properties):
    pass


class ScoredAsProperties(_Properties):
    pass


NODE_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "project": ProjectProperties,
    "code_file": CodeFileProperties,
    "documentation_section": DocumentationSectionProperties,
    "drift_event": DriftEventProperties,
    "priority_score": PriorityScoreProperties,
    "sync_event": SyncEventProperties,
}

EDGE_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "references": ReferencesProperties,
    "documents": DocumentsProperties,
    "outdated_for": OutdatedForProperties,
    "depends_on": DependsOnProperties,
    "has_drift": HasDriftProperties,
    "has_sync_event": HasSyncEventProperties,
    "scored_as": ScoredAsProperties,
}


def _validate(schemas: Dict[str, Type[BaseModel]], kind: str, type_name: str, properties: Dict[str, Any]) -> Dict[str, Any]:
    schema = schemas.get(type_name)
    if schema is None:
        return dict(properties)
    try:
        model = schema.model_validate(properties)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid properties for {kind} type '{type_name}': {first.get('msg', 'invalid value')}",
            field=field_name,
        ) from exc
    return model.model_dump(mode="json")


def validate_node_properties(node_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
    """Return *properties* with schema defaults applied, or raise ValidationError."""
    return _validate(NODE_SCHEMAS, "node", node_type, properties)


def validate_edge_properties(edge_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
    return _validate(EDGE_SCHEMAS, "edge", edge_type, properties)
