"""Tests for snapshot persistence and the diff engine."""

from pathlib import Path

import pytest

from docdrift.diff_engine import DiffEngine
from docdrift.errors import StorageError, SuggestionApplyError
from docdrift.models import (
    ClassInfo,
    CodeFile,
    DocumentationFile,
    DocumentationSection,
    DriftSuggestion,
    FunctionSignature,
    ImportedName,
    ImportInfo,
    ParameterInfo,
    Snapshot,
)
from docdrift.snapshots import SnapshotStore


def _snapshot(timestamp: str) -> Snapshot:
    code_file = CodeFile(
        path="src/api.py",
        language="python",
        functions=[FunctionSignature("f", [ParameterInfo("x", "int", True, "1")], "str")],
        classes=[ClassInfo("C", methods=[FunctionSignature("m")])],
        imports=[ImportInfo("os", [ImportedName("path", "p")])],
        exports=["f", "C"],
        content_hash="h",
    )
    doc = DocumentationFile(
        file_path="docs/api.md",
        sections=[DocumentationSection(file_path="docs/api.md", section_title="f", content="x")],
    )
    return Snapshot(timestamp, "/project", files={"src/api.py": code_file}, documentation={"docs/api.md": doc})


class TestSnapshotStore:
    def test_save_and_load(self, temp_dir: Path):
        store = SnapshotStore(temp_dir / "snaps")
        snapshot = _snapshot("2026-01-01T00-00-00-000000Z")
        store.save(snapshot)
        assert store.load(snapshot.snapshot_id) == snapshot

    def test_latest_and_retention(self, temp_dir: Path):
        store = SnapshotStore(temp_dir / "snaps", keep_count=2)
        for i in range(4):
            store.save(_snapshot(f"2026-01-0{i + 1}T00-00-00-000000Z"))
        assert store.list_ids() == ["2026-01-03T00-00-00-000000Z", "2026-01-04T00-00-00-000000Z"]
        assert store.load_latest().timestamp == "2026-01-04T00-00-00-000000Z"

    def test_latest_skips_corrupt(self, temp_dir: Path):
        store = SnapshotStore(temp_dir / "snaps")
        store.save(_snapshot("2026-01-01T00-00-00-000000Z"))
        (temp_dir / "snaps" / "snapshot-2026-02-01T00-00-00-000000Z.json").write_text("{broken")
        assert store.load_latest().timestamp == "2026-01-01T00-00-00-000000Z"

    def test_empty_store(self, temp_dir: Path):
        store = SnapshotStore(temp_dir / "snaps")
        assert store.load_latest() is None
        with pytest.raises(StorageError):
            store.load("missing")

    def test_for_project_location(self, temp_dir: Path):
        store = SnapshotStore.for_project(temp_dir)
        assert store.snapshot_dir == temp_dir / ".docdrift" / "snapshots"


class TestDiffEngine:
    @pytest.fixture
    def doc(self, temp_dir: Path) -> Path:
        path = temp_dir / "docs" / "api.md"
        path.parent.mkdir()
        path.write_text("# API\n\n## f(x)\nOld text.\n\n## Other\nKeep.\n", encoding="utf-8")
        return path

    def _suggestion(self, current: str = "Old text.\n", section: str = "f(x)") -> DriftSuggestion:
        return DriftSuggestion(
            doc_file="docs/api.md",
            section=section,
            current_content=current,
            suggested_content="New text.\n",
            reasoning="changed",
            confidence=0.9,
            auto_applicable=True,
        )

    def test_create_diff(self):
        diff = DiffEngine().create_diff("a\nb\n", "a\nc\n", "x.md")
        assert "--- a/x.md" in diff
        assert "-b" in diff
        assert "+c" in diff

    def test_apply_replaces_only_the_section(self, temp_dir: Path, doc: Path):
        DiffEngine(temp_dir).apply_suggestion(self._suggestion())
        assert doc.read_text(encoding="utf-8") == "# API\n\n## f(x)\nNew text.\n\n## Other\nKeep.\n"

    def test_dry_run_leaves_file(self, temp_dir: Path, doc: Path):
        before = doc.read_text(encoding="utf-8")
        DiffEngine(temp_dir).apply_suggestion(self._suggestion(), dry_run=True)
        assert doc.read_text(encoding="utf-8") == before

    def test_changed_section_is_refused(self, temp_dir: Path, doc: Path):
        with pytest.raises(SuggestionApplyError, match="changed since"):
            DiffEngine(temp_dir).apply_suggestion(self._suggestion(current="Something else.\n"))

    def test_missing_section(self, temp_dir: Path, doc: Path):
        with pytest.raises(SuggestionApplyError, match="not found"):
            DiffEngine(temp_dir).apply_suggestion(self._suggestion(section="Nope"))

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(SuggestionApplyError, match="Cannot read"):
            DiffEngine(temp_dir).apply_suggestion(self._suggestion())

    def test_preview_lists_every_suggestion(self):
        text = DiffEngine().preview([self._suggestion(), self._suggestion(section="Other")])
        assert "[docs/api.md] f(x) (confidence 90%)" in text
        assert "[docs/api.md] Other" in text
        assert "+New text." in text
