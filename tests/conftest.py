"""Pytest configuration and fixtures for umlstream tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Generator, List, Optional, Tuple

import pytest


FIXTURES = Path(__file__).parent / "fixtures"

SAMPLE_DIAGRAM = """@startuml
class UnnamedClass {
  register(shape: Shape): void
  lookup(name: any): any
}
class Shape {
  area(): number
  describe(prefix: string, precision: number): string
}
class Circle {
  area(): number
  scale(factor: number, rest: number[]): Circle
}
class Panel {
  render(): string
}
Circle --> Shape
@enduml"""


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    """Keep a developer's ~/.umlstream/config.toml out of the tests."""
    monkeypatch.setattr("umlstream.config.CONFIG_FILE", tmp_path / "no-config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def ts_project_path(temp_dir: Path) -> Path:
    """A writable copy of the sample TypeScript project."""
    target = temp_dir / "ts_project"
    shutil.copytree(FIXTURES / "ts_project", target)
    return target


@pytest.fixture
def sample_diagram() -> str:
    """The diagram the sample TypeScript project renders to."""
    return SAMPLE_DIAGRAM


@pytest.fixture
def py_project_path(temp_dir: Path) -> Path:
    """A small Python project with a pyproject.toml descriptor."""
    root = temp_dir / "py_project"
    (root / "pkg").mkdir(parents=True)
    (root / "pyproject.toml").write_text(
        '[project]\nname = "sample"\n\n[tool.umlstream]\ninclude = ["pkg/**/*.py"]\n'
    )
    (root / "pkg" / "__init__.py").write_text("")
    (root / "pkg" / "animals.py").write_text(
        "class Animal:\n"
        "    def speak(self, loud: bool = False) -> str:\n"
        "        return 'hi'\n"
        "\n"
        "\n"
        "class Dog(Animal):\n"
        "    def fetch(self, item: str) -> None:\n"
        "        pass\n"
    )
    return root


class FakeConnection:
    """Records every message sent to it."""

    def __init__(self, conn_id: str) -> None:
        self.id = conn_id
        self.sent: List[Tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        self.sent.append((event, data))

    def events(self) -> List[str]:
        return [event for event, _ in self.sent]

    def last(self, event: str) -> Optional[Any]:
        for name, data in reversed(self.sent):
            if name == event:
                return data
        return None


class BrokenConnection(FakeConnection):
    """A connection whose socket has gone away."""

    async def send(self, event: str, data: Any) -> None:
        raise ConnectionResetError("socket closed")


@pytest.fixture
def make_connection():
    """Factory for recording fake connections."""
    return FakeConnection


@pytest.fixture
def make_broken_connection():
    """Factory for connections that fail on every send."""
    return BrokenConnection
