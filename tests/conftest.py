"""Pytest configuration and fixtures for docdrift tests."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Keep a developer's ~/.docdrift/config.toml out of the suite; config is read on import.
os.environ["DOCDRIFT_HOME"] = tempfile.mkdtemp(prefix="docdrift-home-")

from docdrift.knowledge_graph import KnowledgeGraph  # noqa: E402
from docdrift.models import CodeDiff  # noqa: E402
from docdrift.parser import ExtractorRegistry, PythonExtractor  # noqa: E402
from docdrift.storage import GraphStorage  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def project_copy(temp_dir: Path, sample_project_path: Path) -> Path:
    """Writable copy of the sample project (code plus docs)."""
    target = temp_dir / "sample_project"
    shutil.copytree(sample_project_path, target)
    return target


@pytest.fixture
def python_registry() -> ExtractorRegistry:
    """Registry with only the Python extractor, independent of installed grammars."""
    return ExtractorRegistry([PythonExtractor()])


@pytest.fixture
def graph_storage(temp_dir: Path) -> GraphStorage:
    storage = GraphStorage(temp_dir / "graph", backup_keep_count=3)
    storage.initialize()
    return storage


@pytest.fixture
def graph(graph_storage: GraphStorage) -> Generator[KnowledgeGraph, None, None]:
    kg = KnowledgeGraph(graph_storage).open()
    yield kg
    if kg.is_open:
        kg.close()


@pytest.fixture
def breaking_diff() -> CodeDiff:
    return CodeDiff(
        type="modified",
        category="function",
        name="process",
        details="parameter count changed from 1 to 2",
        impact_level="breaking",
        old_signature="process(data: any): void",
        new_signature="process(data: any, strict: any): void",
    )


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing parser."""
    return '''"""Sample module for testing."""

import os
from .helpers import slugify as slug


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


async def fetch(url: str, *args, timeout: float = 1.0, **kwargs) -> bytes:
    if not url:
        raise ValueError("url")
    for _ in range(3):
        if timeout > 0:
            return b""
    return b""


def _internal():
    pass


class Calculator:
    """Simple calculator."""

    PRECISION = 2
    name: str

    def __init__(self, start: int = 0):
        self.total = start

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def _reset(self):
        self.total = 0
'''
