"""Tests for drift detection and suggestion generation."""

from datetime import datetime, timedelta, timezone

import pytest

from docdrift.drift_detector import (
    DriftDetector,
    create_suggestion,
    detect_drift,
    modification_suggestion,
    rebase_suggestion,
    removal_suggestion,
)
from docdrift.models import (
    ClassInfo,
    CodeDiff,
    CodeFile,
    DocumentationFile,
    DocumentationSection,
    FunctionSignature,
    InterfaceInfo,
    ParameterInfo,
    Snapshot,
    TypeInfo,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _fn(name, params=(), returns=None, exported=True, is_async=False, public=True):
    return FunctionSignature(
        name=name,
        parameters=[ParameterInfo(p) for p in params],
        return_type=returns,
        is_exported=exported,
        is_async=is_async,
        is_public=public,
    )


def _file(path="src/api.py", **kwargs) -> CodeFile:
    return CodeFile(path=path, language="python", **kwargs)


class TestDetectDrift:
    def test_added_and_removed_are_mirror_images(self):
        shared = dict(functions=[_fn("keep")], classes=[ClassInfo("Kept", is_exported=True)])
        old = _file(
            functions=shared["functions"] + [_fn("f", ["x"])],
            classes=shared["classes"] + [ClassInfo("Old", is_exported=True)],
            interfaces=[InterfaceInfo("OldShape", is_exported=True)],
            types=[TypeInfo("OldId", is_exported=True, definition="str")],
        )
        new = _file(
            functions=shared["functions"] + [_fn("g"), _fn("_h", exported=False)],
            classes=shared["classes"] + [ClassInfo("New")],
            interfaces=[InterfaceInfo("NewShape", is_exported=True)],
            types=[TypeInfo("NewId", definition="int")],
        )

        def names(diffs, kind):
            return {(d.category, d.name) for d in diffs if d.type == kind}

        for a, b in ((old, new), (new, old)):
            added = names(detect_drift(a, b), "added")
            assert added == names(detect_drift(b, a), "removed")
            assert {category for category, _ in added} == {"function", "class", "interface", "type"}

    def test_identical_files_have_no_diffs(self):
        code_file = _file(functions=[_fn("f", ["x"])])
        assert detect_drift(code_file, code_file) == []

    def test_removed_exported_function_is_breaking(self):
        diffs = detect_drift(_file(functions=[_fn("f", ["x"])]), _file())
        assert len(diffs) == 1
        assert diffs[0].type == "removed"
        assert diffs[0].impact_level == "breaking"
        assert diffs[0].old_signature == "f(x: any): void"
        assert diffs[0].new_signature is None

    def test_removed_private_function_is_minor(self):
        diffs = detect_drift(_file(functions=[_fn("_f", exported=False)]), _file())
        assert diffs[0].impact_level == "minor"

    def test_added_function_is_patch(self):
        diffs = detect_drift(_file(), _file(functions=[_fn("g")]))
        assert diffs[0].type == "added"
        assert diffs[0].impact_level == "patch"
        assert diffs[0].new_signature == "g(): void"

    def test_becoming_async_is_major(self):
        diffs = detect_drift(
            _file(functions=[_fn("f", exported=False)]),
            _file(functions=[_fn("f", exported=False, is_async=True)]),
        )
        assert diffs[0].impact_level == "major"
        assert "became async" in diffs[0].details

    def test_unexporting_is_breaking(self):
        diffs = detect_drift(_file(functions=[_fn("f")]), _file(functions=[_fn("f", exported=False)]))
        assert diffs[0].impact_level == "breaking"
        assert "no longer exported" in diffs[0].details

    def test_private_signature_change_is_patch(self):
        diffs = detect_drift(
            _file(functions=[_fn("_f", ["a"], exported=False)]),
            _file(functions=[_fn("_f", ["a", "b"], exported=False)]),
        )
        assert diffs[0].impact_level == "patch"
        assert diffs[0].details == "parameter count changed from 1 to 2"

    def test_highest_impact_wins_and_details_join(self):
        diffs = detect_drift(
            _file(functions=[_fn("f", ["a"], returns="int")]),
            _file(functions=[_fn("f", ["a", "b"], returns="str", is_async=True)]),
        )
        assert diffs[0].impact_level == "breaking"
        assert diffs[0].details.split("; ") == [
            "parameter count changed from 1 to 2",
            "return type changed from int to str",
            "became async",
        ]

    def test_class_method_change(self):
        old = _file(classes=[ClassInfo("Svc", is_exported=True, methods=[_fn("run", ["a"])])])
        new = _file(classes=[ClassInfo("Svc", is_exported=True, methods=[_fn("run", ["a", "b"])])])
        diffs = detect_drift(old, new)
        assert len(diffs) == 1
        assert diffs[0].category == "class"
        assert diffs[0].impact_level == "breaking"
        assert diffs[0].details.startswith("method run: ")
        assert diffs[0].old_signature == "class Svc"

    def test_type_export_change(self):
        diffs = detect_drift(
            _file(types=[TypeInfo("Id", definition="str")]),
            _file(types=[TypeInfo("Id", is_exported=True, definition="str")]),
        )
        assert diffs[0].category == "type"
        assert diffs[0].impact_level == "minor"

    def test_output_order_is_stable(self):
        old = _file(functions=[_fn("b"), _fn("a")], classes=[ClassInfo("Z", is_exported=True)])
        new = _file()
        diffs = detect_drift(old, new)
        assert [(d.category, d.name) for d in diffs] == [("function", "a"), ("function", "b"), ("class", "Z")]


class TestSuggestions:
    @pytest.fixture
    def section(self) -> DocumentationSection:
        return DocumentationSection(
            file_path="docs/api.md",
            section_title="f(x)",
            content="Call f(x: any): void to run.\n",
            referenced_functions=["f"],
        )

    @pytest.fixture
    def doc(self, section) -> DocumentationFile:
        return DocumentationFile(file_path="docs/api.md", sections=[section])

    def test_modified_patch_is_auto_applicable(self, doc, section):
        diff = CodeDiff("modified", "function", "f", "x", "patch", "f(x: any): void", "f(x: any, y: any): void")
        suggestion = create_suggestion(diff, doc, section)
        assert suggestion.auto_applicable is True
        assert suggestion.confidence == 0.9
        assert suggestion.suggested_content.startswith("> **Updated**: x\n\n")
        assert "f(x: any, y: any): void" in suggestion.suggested_content

    def test_modified_breaking_needs_review(self, doc, section):
        diff = CodeDiff("modified", "function", "f", "x", "breaking")
        suggestion = create_suggestion(diff, doc, section)
        assert suggestion.auto_applicable is False
        assert suggestion.confidence == 0.7

    def test_removed_strikes_name(self, doc, section):
        diff = CodeDiff("removed", "function", "f", "gone", "breaking")
        suggestion = create_suggestion(diff, doc, section)
        assert suggestion.confidence == 0.8
        assert "~~f~~ (removed)" in suggestion.suggested_content
        assert suggestion.suggested_content == removal_suggestion(section.content, diff)

    def test_added_appends_section(self, doc, section):
        diff = CodeDiff("added", "function", "g", "new", "patch", new_signature="g(): void")
        suggestion = create_suggestion(diff, doc, section)
        assert suggestion.confidence == 0.6
        assert suggestion.auto_applicable is False
        assert "## g" in suggestion.suggested_content
        assert "g(): void" in suggestion.suggested_content

    def test_rebase_builds_on_edited_text(self, doc, section):
        first = CodeDiff("modified", "function", "f", "x", "patch", "f(x: any): void", "f(x: any, y: any): void")
        second = CodeDiff("modified", "function", "g", "g changed", "patch", "g(): void", "g(z: any): void")
        section.content = "Call f(x: any): void then g(): void.\n"
        applied = create_suggestion(first, doc, section)
        stale = create_suggestion(second, doc, section)

        rebased = rebase_suggestion(stale, applied.suggested_content)

        assert rebased.current_content == applied.suggested_content
        assert "f(x: any, y: any): void" in rebased.suggested_content
        assert "g(z: any): void" in rebased.suggested_content
        assert rebased.reasoning == stale.reasoning

    def test_rebase_without_diff_is_unchanged(self, doc, section):
        diff = CodeDiff("modified", "function", "f", "x", "patch")
        suggestion = create_suggestion(diff, doc, section)
        suggestion.code_diff = None
        assert rebase_suggestion(suggestion, "other") is suggestion

    def test_modification_without_signatures_only_adds_note(self):
        diff = CodeDiff("modified", "type", "Id", "now exported", "minor")
        assert modification_suggestion("body", diff) == "> **Updated**: now exported\n\nbody"


class TestDriftDetector:
    def _snapshots(self, old_fn, new_fn, doc_updated):
        docs = {
            "docs/api.md": DocumentationFile(
                file_path="docs/api.md",
                referenced_code=["src/api.py"],
                last_updated=doc_updated,
                sections=[DocumentationSection(
                    file_path="docs/api.md",
                    section_title="process(data)",
                    content="Use process(data: any): void.\n",
                    referenced_functions=["process"],
                    last_updated=doc_updated,
                )],
            )
        }
        old = Snapshot("t1", "/p", files={"src/api.py": _file(functions=[old_fn])}, documentation=docs)
        new = Snapshot("t2", "/p", files={"src/api.py": _file(functions=[new_fn])}, documentation=docs)
        return old, new

    def test_analyze_links_docs_and_scores(self):
        old, new = self._snapshots(
            _fn("process", ["data"]),
            _fn("process", ["data", "strict"]),
            (NOW - timedelta(days=45)).isoformat(),
        )
        detector = DriftDetector(clock=lambda: NOW)
        results = detector.analyze(old, new)

        assert len(results) == 1
        result = results[0]
        assert result.has_drift is True
        assert result.severity == "critical"
        assert result.impact_analysis.breaking_changes == 1
        assert result.impact_analysis.requires_manual_review is True
        assert result.impact_analysis.affected_doc_files == ["docs/api.md"]
        assert result.drifts[0].type == "breaking"

        assert len(result.suggestions) == 1
        assert result.suggestions[0].section == "process(data)"
        assert result.suggestions[0].auto_applicable is False

        factors = result.priority_score.factors
        assert factors.change_magnitude == 100.0
        assert factors.documentation_coverage == 40.0
        assert factors.staleness == 50.0

    def test_files_only_in_new_snapshot_are_ignored(self):
        old = Snapshot("t1", "/p")
        new = Snapshot("t2", "/p", files={"src/new.py": _file("src/new.py", functions=[_fn("x")])})
        assert DriftDetector().analyze(old, new) == []

    def test_prioritized_order(self):
        old = Snapshot("t1", "/p", files={
            "a.py": _file("a.py", functions=[_fn("_a", ["x"], exported=False)]),
            "b.py": _file("b.py", functions=[_fn("b", ["x"])]),
        })
        new = Snapshot("t2", "/p", files={
            "a.py": _file("a.py", functions=[_fn("_a", ["x", "y"], exported=False)]),
            "b.py": _file("b.py", functions=[_fn("b", ["x", "y"])]),
        })
        results = DriftDetector(clock=lambda: NOW).analyze_prioritized(old, new)
        assert [r.file_path for r in results] == ["b.py", "a.py"]
        assert results[0].priority_score.overall >= results[1].priority_score.overall
