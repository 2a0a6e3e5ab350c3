"""Tests for symbol extraction."""

import pytest

from reviewgraph.parser import (
    ASTFallbackExtractor,
    PythonSymbolExtractor,
    TreeSitterExtractor,
    format_signature,
    language_for_path,
    visibility_for,
)
from reviewgraph.models import Parameter

TS_AVAILABLE = TreeSitterExtractor(languages=["python"]).supports_language("python")

EXTRACTORS = [
    pytest.param(ASTFallbackExtractor, id="ast"),
    pytest.param(
        lambda: TreeSitterExtractor(languages=["python"]),
        id="tree-sitter",
        marks=pytest.mark.skipif(not TS_AVAILABLE, reason="tree-sitter-python not installed"),
    ),
]


def _by_name(symbols):
    return {s.name: s for s in symbols}


class TestHelpers:
    """Test the shared naming helpers."""

    def test_language_for_path(self):
        assert language_for_path("src/app.py") == "python"
        assert language_for_path("Foo.JAVA") == "java"
        assert language_for_path("README.md") is None

    def test_visibility_from_underscores(self):
        assert visibility_for("run") == "public"
        assert visibility_for("_helper") == "protected"
        assert visibility_for("__secret") == "private"
        assert visibility_for("__init__") == "public"

    def test_format_signature(self):
        params = [Parameter("a", "int"), Parameter("b", "str", optional=True), Parameter("c")]
        assert format_signature("f", params, "bool") == "f(a: int, b: str = ..., c) -> bool"
        assert format_signature("g", [], None) == "g()"


@pytest.mark.parametrize("make_extractor", EXTRACTORS)
class TestExtraction:
    """Run the same expectations against every backend."""

    def test_extracts_every_symbol(self, make_extractor, sample_python_code: str):
        symbols, _ = make_extractor().extract("calc.py", sample_python_code)
        names = [s.name for s in symbols]
        for expected in ("MAX_RETRIES", "hello", "Calculator", "__init__", "add", "multiply", "_round", "__reset"):
            assert expected in names

    def test_kinds(self, make_extractor, sample_python_code: str):
        symbols = _by_name(make_extractor().extract("calc.py", sample_python_code)[0])
        assert symbols["hello"].kind == "function"
        assert symbols["Calculator"].kind == "class"
        assert symbols["__init__"].kind == "constructor"
        assert symbols["add"].kind == "method"
        assert symbols["MAX_RETRIES"].kind == "field"
        assert symbols["MAX_RETRIES"].is_constant

    def test_signatures_drop_receiver(self, make_extractor, sample_python_code: str):
        symbols = _by_name(make_extractor().extract("calc.py", sample_python_code)[0])
        assert symbols["hello"].signature == "hello(name: str) -> str"
        assert symbols["add"].signature == "add(a: int, b: int) -> int"
        assert symbols["__init__"].signature == "__init__(precision: int = ...)"
        assert symbols["_round"].signature == "_round(value: float, digits) -> float"
        assert symbols["add"].return_type == "int"

    def test_visibility_and_static(self, make_extractor, sample_python_code: str):
        symbols = _by_name(make_extractor().extract("calc.py", sample_python_code)[0])
        assert symbols["_round"].visibility == "protected"
        assert symbols["_round"].is_static
        assert symbols["__reset"].visibility == "private"
        assert not symbols["add"].is_static

    def test_line_spans(self, make_extractor, sample_python_code: str):
        symbols = _by_name(make_extractor().extract("calc.py", sample_python_code)[0])
        assert symbols["hello"].start_line == 6
        assert symbols["hello"].end_line == 8
        assert symbols["Calculator"].start_line == 11
        assert symbols["Calculator"].end_line == 33
        # Decorators belong to the definition
        assert symbols["_round"].start_line == 28
        assert "def add" in symbols["add"].code

    def test_call_edges(self, make_extractor, sample_python_code: str):
        _, calls = make_extractor().extract("calc.py", sample_python_code)
        edges = {(c.caller, c.callee, c.line) for c in calls}
        assert ("hello", "format_greeting", 8) in edges
        assert ("multiply", "add", 23) in edges
        assert ("multiply", "add", 25) in edges
        assert ("multiply", "range", 24) in edges
        assert all(c.file == "calc.py" for c in calls)

    def test_class_bases(self, make_extractor):
        code = (
            "from enum import Enum\n\n"
            "class Color(Enum):\n    RED = 1\n\n"
            "class Repo(Base, Mixin):\n    pass\n\n"
            "class Port(Protocol):\n    def send(self) -> None: ...\n"
        )
        symbols = _by_name(make_extractor().extract("kinds.py", code)[0])
        assert symbols["Color"].kind == "enum"
        assert symbols["Port"].kind == "interface"
        assert symbols["Repo"].extends == "Base"
        assert symbols["Repo"].implements == ["Mixin"]

    def test_only_module_level_constants(self, make_extractor):
        code = "LIMIT = 5\nlower = 1\n\ndef f():\n    INNER = 2\n    return INNER\n"
        symbols = make_extractor().extract("consts.py", code)[0]
        fields = [s.name for s in symbols if s.kind == "field"]
        assert fields == ["LIMIT"]

    def test_unsupported_file(self, make_extractor):
        assert make_extractor().extract("Main.java", "class Main {}") == ([], [])


class TestASTFallback:
    """Test behaviour specific to the ``ast`` backend."""

    def test_syntax_error_gives_empty_result(self):
        symbols, calls = ASTFallbackExtractor().extract("broken.py", "def broken(:\n    pass\n")
        assert symbols == []
        assert calls == []

    def test_supports_python_only(self):
        extractor = ASTFallbackExtractor()
        assert extractor.supports("a.py")
        assert not extractor.supports("a.ts")


@pytest.mark.skipif(not TS_AVAILABLE, reason="tree-sitter-python not installed")
class TestTreeSitter:
    """Test behaviour specific to the Tree-sitter backend."""

    def test_tolerates_syntax_errors(self):
        symbols, calls = TreeSitterExtractor().extract("broken.py", "def broken(:\n    pass\n")
        assert isinstance(symbols, list)
        assert isinstance(calls, list)

    def test_python_extractor_prefers_tree_sitter(self):
        assert PythonSymbolExtractor().backend == "TreeSitterExtractor"
