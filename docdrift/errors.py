"""Exception types raised by docdrift."""

from __future__ import annotations

from typing import Optional


class DocDriftError(Exception):
    """Base class for all docdrift errors."""


class ValidationError(DocDriftError):
    """A node or edge payload does not match the schema for its type."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        if field:
            message = f"{message} (field: {field})"
        super().__init__(message)


class DanglingReferenceError(DocDriftError):
    """An edge points at a node id that is not in the graph."""

    def __init__(self, edge_id: str, missing: str) -> None:
        self.edge_id = edge_id
        self.missing = missing
        super().__init__(f"Edge '{edge_id}' references missing node '{missing}'")


class StorageError(DocDriftError):
    """Reading or writing the knowledge graph files failed."""


class WeightConfigurationError(DocDriftError):
    """Priority weights are negative or do not sum to 1.0."""


class SyncCancelled(DocDriftError):
    """A sync run was cancelled between steps."""


class SuggestionApplyError(DocDriftError):
    """A documentation suggestion could not be written to its file."""
