"""Integration tests for CLI commands."""

import importlib
import json
import logging
from pathlib import Path

import pytest
import toml
from typer.testing import CliRunner

from docdrift import __version__, config
from docdrift.cli import app
from docdrift.knowledge_graph import IntegrityPolicy, KnowledgeGraph
from docdrift.orchestrator import SyncMode, SyncOptions

runner = CliRunner()


def _change_format_name(project: Path) -> None:
    utils = project / "utils.py"
    utils.write_text(
        utils.read_text().replace("def format_name(first: str, last: str) -> str:",
                                  "def format_name(first: str, last: str, title: str = \"\") -> str:")
    )


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestSyncCommand:
    """Tests for 'docdrift sync'."""

    def test_first_sync_creates_baseline(self, project_copy: Path):
        result = runner.invoke(app, ["sync", str(project_copy)])

        assert result.exit_code == 0
        assert "Baseline Created" in result.stdout
        assert (project_copy / ".docdrift" / "snapshots").is_dir()
        assert (project_copy / ".docdrift" / "knowledge-graph" / "entities.jsonl").exists()

    def test_detects_drift_as_json(self, project_copy: Path):
        runner.invoke(app, ["sync", str(project_copy)])
        _change_format_name(project_copy)

        result = runner.invoke(app, ["sync", str(project_copy), "--mode", "detect", "--json"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["mode"] == "detect"
        assert payload["stats"]["drifts_detected"] == 1
        assert payload["stats"]["breaking_changes"] == 1
        detection = payload["drift_detections"][0]
        assert detection["file_path"] == "utils.py"
        assert detection["priority_score"]["recommendation"] in ("critical", "high", "medium", "low")
        assert [p["section"] for p in payload["pending_changes"]] == ["format_name(first, last)"]

    def test_summary_output(self, project_copy: Path):
        runner.invoke(app, ["sync", str(project_copy)])
        _change_format_name(project_copy)

        result = runner.invoke(app, ["sync", str(project_copy), "--mode", "preview"])

        assert result.exit_code == 0
        assert "Sync Summary" in result.stdout
        assert "utils.py" in result.stdout
        assert "Breaking Changes Detected" in result.stdout

    def test_invalid_mode(self, project_copy: Path):
        result = runner.invoke(app, ["sync", str(project_copy), "--mode", "explode"])
        assert result.exit_code != 0

    def test_nonexistent_project(self):
        result = runner.invoke(app, ["sync", "/nonexistent/path"])
        assert result.exit_code != 0


class TestExtractAndDiff:
    def test_extract_prints_model(self, sample_project_path: Path):
        result = runner.invoke(app, ["extract", str(sample_project_path / "utils.py")])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["language"] == "python"
        assert [f["name"] for f in payload["functions"]] == ["validate_email", "format_name", "calculate_total"]

    def test_extract_unsupported(self, sample_project_path: Path):
        result = runner.invoke(app, ["extract", str(sample_project_path / "docs" / "reference.md")])
        assert result.exit_code == 1
        assert "Unsupported" in result.stdout

    def test_diff(self, sample_project_path: Path, project_copy: Path):
        _change_format_name(project_copy)
        result = runner.invoke(app, ["diff", str(sample_project_path / "utils.py"), str(project_copy / "utils.py")])

        assert result.exit_code == 0
        assert "format_name" in result.stdout
        assert "breaking" in result.stdout

    def test_diff_identical(self, sample_project_path: Path):
        path = str(sample_project_path / "utils.py")
        result = runner.invoke(app, ["diff", path, path])
        assert result.exit_code == 0
        assert "No structural changes" in result.stdout


class TestGraphCommands:
    """Tests for 'docdrift graph ...'."""

    def test_stats_and_verify(self, project_copy: Path):
        runner.invoke(app, ["sync", str(project_copy)])

        stats = runner.invoke(app, ["graph", "stats", str(project_copy)])
        assert stats.exit_code == 0
        assert "Nodes:" in stats.stdout
        assert "code_file" in stats.stdout

        verify = runner.invoke(app, ["graph", "verify", str(project_copy)])
        assert verify.exit_code == 0
        assert "consistent" in verify.stdout

    def test_export(self, project_copy: Path, temp_dir: Path):
        runner.invoke(app, ["sync", str(project_copy)])
        output = temp_dir / "graph.json"

        result = runner.invoke(app, ["graph", "export", str(output), "--project", str(project_copy)])

        assert result.exit_code == 0
        payload = json.loads(output.read_text())
        assert payload["metadata"]["entity_count"] > 0

    def test_backups_and_restore(self, project_copy: Path):
        runner.invoke(app, ["sync", str(project_copy)])
        runner.invoke(app, ["sync", str(project_copy)])

        backups = runner.invoke(app, ["graph", "backups", str(project_copy)])
        assert backups.exit_code == 0
        assert "bytes" in backups.stdout

        restored = runner.invoke(app, ["graph", "restore", "--project", str(project_copy)])
        assert restored.exit_code == 0
        assert "Restored backup" in restored.stdout

    def test_restore_without_backups(self, project_copy: Path):
        result = runner.invoke(app, ["graph", "restore", "--project", str(project_copy)])
        assert result.exit_code == 1
        assert "No backups" in result.stdout

    def test_refuses_foreign_graph_file(self, project_copy: Path):
        graph_dir = project_copy / ".docdrift" / "knowledge-graph"
        graph_dir.mkdir(parents=True)
        (graph_dir / "entities.jsonl").write_text("precious\n")

        result = runner.invoke(app, ["graph", "stats", str(project_copy)])

        assert result.exit_code == 1
        assert (graph_dir / "entities.jsonl").read_text() == "precious\n"


class TestConfigCommands:
    """Tests for 'docdrift config ...'."""

    @pytest.fixture(autouse=True)
    def home(self, temp_dir: Path, monkeypatch) -> Path:
        monkeypatch.setenv("DOCDRIFT_HOME", str(temp_dir))
        return temp_dir

    def test_show_without_file(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "defaults in use" in result.stdout

    def test_set_nested_and_typed_values(self, home: Path):
        assert runner.invoke(app, ["config", "set", "scoring.weights.staleness", "0.2"]).exit_code == 0
        assert runner.invoke(app, ["config", "set", "sync.mode", "apply"]).exit_code == 0

        saved = toml.loads((home / "config.toml").read_text())
        assert saved["scoring"]["weights"]["staleness"] == 0.2
        assert saved["sync"]["mode"] == "apply"

        shown = runner.invoke(app, ["config", "show"])
        assert "staleness = 0.2" in shown.stdout

    def test_set_requires_section(self):
        result = runner.invoke(app, ["config", "set", "mode", "apply"])
        assert result.exit_code == 1

    def test_reset_section(self, home: Path):
        runner.invoke(app, ["config", "set", "sync.mode", "apply"])
        runner.invoke(app, ["config", "set", "storage.backup_keep_count", "3"])

        result = runner.invoke(app, ["config", "reset", "sync"])

        assert result.exit_code == 0
        saved = toml.loads((home / "config.toml").read_text())
        assert "sync" not in saved
        assert saved["storage"]["backup_keep_count"] == 3


class TestInvalidConfig:
    """A bad value in config.toml falls back to its default instead of breaking every command."""

    BAD_CONFIG = (
        "[storage]\n"
        'integrity_policy = "strict"\n'
        'backup_keep_count = "many"\n'
        "\n"
        "[sync]\n"
        'mode = "explode"\n'
        "auto_apply_threshold = 7\n"
    )

    @pytest.fixture
    def home(self, temp_dir: Path, monkeypatch):
        (temp_dir / "config.toml").write_text(self.BAD_CONFIG)
        monkeypatch.setenv("DOCDRIFT_HOME", str(temp_dir))
        yield temp_dir
        monkeypatch.undo()
        importlib.reload(config)

    def test_invalid_values_fall_back_with_warning(self, home: Path, caplog):
        with caplog.at_level(logging.WARNING, logger="docdrift.config"):
            importlib.reload(config)

        assert config.INTEGRITY_POLICY == "reject"
        assert config.BACKUP_KEEP_COUNT == 10
        assert config.SYNC_MODE == "detect"
        assert config.AUTO_APPLY_THRESHOLD == 0.8
        assert "integrity_policy" in caplog.text
        assert "'strict'" in caplog.text

        assert KnowledgeGraph().integrity_policy is IntegrityPolicy.REJECT
        assert SyncOptions().mode is SyncMode.DETECT

    def test_reset_repairs_bad_section(self, home: Path, project_copy: Path):
        importlib.reload(config)

        result = runner.invoke(app, ["config", "reset", "storage"])

        assert result.exit_code == 0
        assert "storage" not in toml.loads((home / "config.toml").read_text())
        assert runner.invoke(app, ["sync", str(project_copy)]).exit_code == 0
