"""Tests for the JSONL graph storage layer."""

import os
from pathlib import Path

import pytest

from docdrift.errors import StorageError
from docdrift.models import GraphEdge, GraphNode
from docdrift.storage import ENTITY_MARKER, RELATIONSHIP_MARKER, GraphStorage


def _nodes(*ids: str):
    return [GraphNode(id=i, type="custom", label=i) for i in ids]


class TestInitialize:
    def test_creates_marker_only_files(self, temp_dir: Path):
        storage = GraphStorage(temp_dir / "kg")
        storage.initialize()

        assert storage.entities_path.read_text() == ENTITY_MARKER + "\n"
        assert storage.relationships_path.read_text() == RELATIONSHIP_MARKER + "\n"
        assert storage.backup_dir.is_dir()

    def test_empty_file_is_initialised(self, temp_dir: Path):
        storage = GraphStorage(temp_dir / "kg")
        storage.storage_dir.mkdir(parents=True)
        storage.entities_path.write_text("")
        storage.initialize()
        assert storage.entities_path.read_text().startswith(ENTITY_MARKER)

    def test_refuses_foreign_file(self, temp_dir: Path):
        storage = GraphStorage(temp_dir / "kg")
        storage.storage_dir.mkdir(parents=True)
        storage.entities_path.write_text('{"important": "user data"}\n')

        with pytest.raises(StorageError, match="Refusing to overwrite"):
            storage.initialize()
        assert storage.entities_path.read_text() == '{"important": "user data"}\n'

    def test_initialize_is_idempotent(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [])
        graph_storage.initialize()
        assert [n.id for n in graph_storage.load_entities()] == ["a"]


class TestSaveAndLoad:
    def test_round_trip(self, graph_storage: GraphStorage):
        edge = GraphEdge(source="a", target="b", type="link", weight=0.5, properties={"k": 1})
        graph_storage.save_graph(_nodes("a", "b"), [edge])

        nodes, edges = graph_storage.load_graph()
        assert [n.id for n in nodes] == ["a", "b"]
        assert edges == [edge]

    def test_corrupt_lines_are_skipped(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [])
        with open(graph_storage.entities_path, "a", encoding="utf-8") as fh:
            fh.write("{not json\n")
            fh.write('{"id": "", "type": "x"}\n')
        assert [n.id for n in graph_storage.load_entities()] == ["a"]

    def test_no_temp_files_left(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [])
        assert not list(graph_storage.storage_dir.glob("*.tmp"))


class TestBackups:
    def test_backup_taken_before_each_write(self, graph_storage: GraphStorage):
        first = graph_storage.save_graph(_nodes("a"), [])
        second = graph_storage.save_graph(_nodes("a", "b"), [])

        backups = graph_storage.list_backups()
        assert [b.timestamp for b in backups] == [second, first]
        assert all(b.complete for b in backups)

    def test_retention(self, graph_storage: GraphStorage):
        for i in range(6):
            graph_storage.save_graph(_nodes(f"n{i}"), [])
        assert len(graph_storage.list_backups()) == 3
        assert len(list(graph_storage.backup_dir.glob("entities-*.jsonl"))) == 3

    def test_restore_is_byte_identical(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [GraphEdge(source="a", target="a", type="self")])
        before_entities = graph_storage.entities_path.read_bytes()
        before_relationships = graph_storage.relationships_path.read_bytes()

        timestamp = graph_storage.save_graph(_nodes("a", "b", "c"), [])
        assert graph_storage.entities_path.read_bytes() != before_entities

        assert graph_storage.restore(timestamp) == timestamp
        assert graph_storage.entities_path.read_bytes() == before_entities
        assert graph_storage.relationships_path.read_bytes() == before_relationships

    def test_restore_latest_by_default(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [])
        latest = graph_storage.save_graph(_nodes("b"), [])
        assert graph_storage.restore() == latest
        assert [n.id for n in graph_storage.load_entities()] == ["a"]

    def test_restore_unknown_timestamp(self, graph_storage: GraphStorage):
        graph_storage.save_graph(_nodes("a"), [])
        with pytest.raises(StorageError, match="not found"):
            graph_storage.restore("19990101T000000000000Z")

    def test_restore_without_backups(self, temp_dir: Path):
        storage = GraphStorage(temp_dir / "kg")
        storage.initialize()
        with pytest.raises(StorageError, match="No backups"):
            storage.restore()

    def test_backups_can_be_disabled(self, temp_dir: Path):
        storage = GraphStorage(temp_dir / "kg", backup_on_write=False)
        storage.initialize()
        assert storage.save_graph(_nodes("a"), []) is None
        assert storage.list_backups() == []


class TestFailedWrites:
    """A save that fails part way must leave both live streams as they were."""

    @pytest.fixture(params=[True, False], ids=["with-backups", "without-backups"])
    def saved(self, request, temp_dir: Path) -> GraphStorage:
        storage = GraphStorage(temp_dir / "kg", backup_keep_count=3, backup_on_write=request.param)
        storage.initialize()
        storage.save_graph(_nodes("a", "b"), [GraphEdge(source="a", target="b", type="x")])
        return storage

    @staticmethod
    def _live(storage: GraphStorage):
        return storage.entities_path.read_bytes(), storage.relationships_path.read_bytes()

    def test_second_rename_failure_rolls_back_first_stream(self, saved: GraphStorage, monkeypatch):
        before = self._live(saved)
        real_replace = os.replace

        def failing_replace(src, dst):
            if Path(dst).name == "relationships.jsonl":
                raise OSError("disk full")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(StorageError, match="relationships.jsonl"):
            saved.save_graph(_nodes("a"), [])

        assert self._live(saved) == before
        assert not list(saved.storage_dir.glob("*.tmp"))
        monkeypatch.undo()
        assert [e.target for e in saved.load_relationships()] == ["b"]
        assert [n.id for n in saved.load_entities()] == ["a", "b"]

    def test_unserialisable_record_writes_nothing(self, saved: GraphStorage):
        before = self._live(saved)
        bad_edge = GraphEdge(source="a", target="b", type="x", properties={"payload": object()})

        with pytest.raises(StorageError, match="relationships.jsonl"):
            saved.save_graph(_nodes("a", "b", "c"), [bad_edge])

        assert self._live(saved) == before
        assert not list(saved.storage_dir.glob("*.tmp"))

    def test_io_error_on_initialise(self, temp_dir: Path, monkeypatch):
        storage = GraphStorage(temp_dir / "kg")

        def failing_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(StorageError, match="read-only"):
            storage.initialize()
        assert not storage.entities_path.exists()
        assert not list(storage.storage_dir.glob("*.tmp"))
