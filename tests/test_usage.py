"""Tests for usage metadata collection."""

from docdrift.models import (
    ClassInfo,
    CodeFile,
    DocumentationFile,
    DocumentationSection,
    FunctionSignature,
    ImportedName,
    ImportInfo,
    Snapshot,
)
from docdrift.usage import UsageMetadataCollector


def _files():
    library = CodeFile(
        path="lib.py",
        language="python",
        functions=[FunctionSignature("parse", is_exported=True)],
        classes=[ClassInfo("Reader", is_exported=True)],
        exports=["parse", "Reader"],
    )
    app = CodeFile(
        path="app.py",
        language="python",
        functions=[FunctionSignature("main", dependencies=["parse", "lib.Reader", "print"])],
        imports=[ImportInfo("lib", [ImportedName("parse"), ImportedName("Reader", "R")])],
    )
    return {"lib.py": library, "app.py": app}


def test_counts_calls_instantiations_and_imports():
    usage = UsageMetadataCollector().collect_from(_files())

    assert usage.imports == {"parse": 1, "Reader": 1}
    assert usage.function_calls == {"parse": 2}
    assert usage.class_instantiations == {"Reader": 2}
    assert usage.total_for("parse") == 3
    assert usage.max_usage() == 3


def test_unknown_callees_are_ignored():
    usage = UsageMetadataCollector().collect_from(_files())
    assert "print" not in usage.function_calls


def test_documentation_references_count():
    doc = DocumentationFile(
        file_path="docs/api.md",
        sections=[DocumentationSection(
            file_path="docs/api.md",
            section_title="parse",
            referenced_functions=["parse"],
            referenced_classes=["Reader"],
        )],
    )
    snapshot = Snapshot("2026-01-01T00-00-00-000000Z", "/project", files=_files(),
                        documentation={"docs/api.md": doc})

    usage = UsageMetadataCollector().collect(snapshot)

    assert usage.file_path == "/project"
    assert usage.function_calls["parse"] == 3
    assert usage.class_instantiations["Reader"] == 3


def test_empty_project():
    assert UsageMetadataCollector().collect_from({}).is_empty()
