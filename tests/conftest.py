"""Pytest configuration and fixtures for ReviewGraph tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Tuple

import pytest

from reviewgraph.indexer import CodebaseIndexer
from reviewgraph.models import CallRelationship, CodeSymbol
from reviewgraph.parser import ASTFallbackExtractor, SymbolExtractor
from reviewgraph.storage import ProjectManager


@pytest.fixture(autouse=True)
def _mock_local_llm(monkeypatch):
    """Automatically mock LocalLLM in all tests to avoid network connections.

    OllamaProvider.generate() tries to connect to localhost:11434 with a
    30-second timeout, which makes CI hang. This fixture replaces LocalLLM
    with a lightweight stand-in that returns a canned JSON reply.
    """

    class _MockLocalLLM:
        reply = (
            '[{"scenario": "Checkout flow breaks", "probability": "high", '
            '"impact": "Orders cannot be paid", "affectedFiles": ["OrderController.java"], '
            '"mitigation": "Update callers"}]'
        )

        def __init__(self, model=None, provider=None, api_key=None, endpoint=None):
            self.provider_name = provider or "mock"
            self.model = model or "mock-model"
            self.api_key = api_key
            self.endpoint = endpoint

        def generate(self, prompt: str):
            return self.reply

    monkeypatch.setattr("reviewgraph.llm.LocalLLM", _MockLocalLLM)
    monkeypatch.setattr("reviewgraph.cli.LocalLLM", _MockLocalLLM)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"

    # storage imports MEMORY_DIR at module load
    monkeypatch.setattr("reviewgraph.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("reviewgraph.storage.MEMORY_DIR", memory_dir)

    return ProjectManager()


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


def make_symbol(name: str, file: str, kind: str = "method", **kwargs) -> CodeSymbol:
    """Terse CodeSymbol builder used across the test modules."""
    kwargs.setdefault("start_line", 1)
    kwargs.setdefault("end_line", kwargs["start_line"] + 2)
    kwargs.setdefault("visibility", "public")
    return CodeSymbol(name=name, kind=kind, file=file, **kwargs)


class StaticExtractor(SymbolExtractor):
    """Extractor that serves canned results keyed by path."""

    def __init__(self, results: Dict[str, Tuple[List[CodeSymbol], List[CallRelationship]]]):
        self.results = results

    def supports(self, path: str) -> bool:
        return path in self.results

    def extract(self, path: str, content: str):
        return self.results[path]


@pytest.fixture
def java_indexer() -> CodebaseIndexer:
    """Index with a ``foo(int)`` method called from two other files."""
    foo = make_symbol(
        "foo", "Foo.java", start_line=5, signature="foo(int)",
        return_type="void", code="void foo(int a) {\n  run(a);\n}",
    )
    indexer = CodebaseIndexer(extractor=StaticExtractor({}))
    indexer.add_parsed("Foo.java", [foo], [])
    indexer.add_parsed(
        "Bar.java",
        [make_symbol("bar", "Bar.java", start_line=8, signature="bar()")],
        [CallRelationship(caller="bar", callee="foo", file="Bar.java", line=10)],
    )
    indexer.add_parsed(
        "Baz.java",
        [make_symbol("baz", "Baz.java", start_line=3, signature="baz()")],
        [CallRelationship(caller="baz", callee="foo", file="Baz.java", line=4)],
    )
    return indexer


@pytest.fixture
def python_indexer() -> CodebaseIndexer:
    """Empty index using the ``ast`` extractor so results are predictable."""
    return CodebaseIndexer(extractor=ASTFallbackExtractor())


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing parser."""
    return '''"""Sample module for testing."""

MAX_RETRIES = 3


def hello(name: str) -> str:
    """Say hello."""
    return format_greeting(name)


class Calculator:
    """Simple calculator."""

    def __init__(self, precision: int = 2):
        self.precision = precision

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def multiply(self, a: int, b: int) -> int:
        """Multiply two numbers."""
        result = self.add(a, 0)
        for _ in range(b - 1):
            result = self.add(result, a)
        return result

    @staticmethod
    def _round(value: float, digits) -> float:
        return round(value, digits)

    def __reset(self):
        pass
'''


@pytest.fixture
def sym():
    """The :func:`make_symbol` builder as a fixture."""
    return make_symbol


@pytest.fixture
def static_extractor():
    """The :class:`StaticExtractor` class as a fixture."""
    return StaticExtractor


BASE_FILES = {
    "billing/payment_service.py": (
        "def charge(amount: int) -> bool:\n"
        "    return gateway(amount)\n"
        "\n"
        "\n"
        "def refund(amount):\n"
        "    return gateway(-amount)\n"
    ),
    "orders/order_controller.py": (
        "from billing.payment_service import charge\n"
        "\n"
        "\n"
        "def checkout(total):\n"
        "    return charge(total)\n"
    ),
    "util.py": (
        "def slugify(text):\n"
        "    text = text.lower()\n"
        "    text = text.strip()\n"
        "    return text.replace(' ', '-')\n"
    ),
    "README.md": "docs\n",
}

HEAD_CHANGES = {
    "billing/payment_service.py": BASE_FILES["billing/payment_service.py"].replace(
        "charge(amount: int)", "charge(amount: int, currency: str)",
    ),
    "text_tools.py": (
        "def make_slug(text):\n"
        "    text = text.lower()\n"
        "    text = text.strip()\n"
        "    return text.replace(' ', '-')\n"
    ),
}


def _write_tree(root: Path, files: Dict[str, str]) -> None:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


@pytest.fixture
def checkouts(temp_dir: Path) -> Tuple[Path, Path]:
    """Base and head checkouts: a changed signature plus a near-copy of ``slugify``."""
    base = temp_dir / "base"
    head = temp_dir / "head"
    _write_tree(base, BASE_FILES)
    _write_tree(head, {**BASE_FILES, **HEAD_CHANGES})
    return base, head
