"""Symbol extraction using Tree-sitter, with an ``ast`` fallback.

Extractors turn one source file into the flat records the index consumes:
a list of :class:`CodeSymbol` and a list of :class:`CallRelationship`.
Python is the only grammar wired in. Other languages plug in behind
:class:`SymbolExtractor` without touching the index or the analyzers.
"""

from __future__ import annotations

import ast
import logging
import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Set, Tuple

from .models import CallRelationship, CodeSymbol, Parameter

logger = logging.getLogger(__name__)

ExtractResult = Tuple[List[CodeSymbol], List[CallRelationship]]

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "c_sharp",
}

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist", "target",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", ".reviewgraph", "lancedb",
}

_CONSTANT_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
_INTERFACE_BASES = {"Protocol", "ABC"}
_RECEIVERS = {"self", "cls"}


def language_for_path(path: str) -> Optional[str]:
    """Language name for *path* by extension, ``None`` when unknown."""
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower())


# ===================================================================
# Abstract Extractor Interface
# ===================================================================

class SymbolExtractor(ABC):
    """Turns one file's text into symbols and call edges."""

    @abstractmethod
    def extract(self, path: str, content: str) -> ExtractResult:
        ...

    @abstractmethod
    def supports(self, path: str) -> bool:
        ...


# ===================================================================
# Shared symbol helpers
# ===================================================================

def visibility_for(name: str) -> str:
    if name.startswith("__") and name.endswith("__"):
        return "public"
    if name.startswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


def _class_kind(bases: List[str]) -> str:
    tails = {b.split(".")[-1].split("[")[0] for b in bases}
    if tails & _ENUM_BASES:
        return "enum"
    if tails & _INTERFACE_BASES:
        return "interface"
    return "class"


def _function_kind(name: str, in_class: bool) -> str:
    if not in_class:
        return "function"
    return "constructor" if name == "__init__" else "method"


def format_signature(name: str, params: List[Parameter], return_type: Optional[str]) -> str:
    rendered = []
    for p in params:
        text = f"{p.name}: {p.type}" if p.type else p.name
        if p.optional:
            text += " = ..."
        rendered.append(text)
    sig = f"{name}({', '.join(rendered)})"
    if return_type:
        sig += f" -> {return_type}"
    return sig


def _strip_receiver(params: List[Parameter], in_class: bool, is_static: bool) -> List[Parameter]:
    if in_class and not is_static and params and params[0].name in _RECEIVERS:
        return params[1:]
    return params


def _snippet(lines: List[str], start: int, end: int) -> str:
    return "\n".join(lines[start - 1: end])


# ===================================================================
# Tree-sitter Extractor (Primary)
# ===================================================================

class TreeSitterExtractor(SymbolExtractor):
    """Error-tolerant extractor built on Tree-sitter grammars."""

    _GRAMMAR_MODULES: Dict[str, str] = {
        "python": "tree_sitter_python",
    }

    def __init__(self, languages: Optional[List[str]] = None) -> None:
        self._parsers: Dict[str, Any] = {}
        self._requested_languages = languages or ["python"]
        self._init_parsers()

    def _init_parsers(self) -> None:
        try:
            import tree_sitter  # type: ignore[import-untyped]  # noqa: F401
        except ImportError:
            logger.warning(
                "tree-sitter is not installed, Tree-sitter parsing unavailable. "
                "Install with: pip install tree-sitter tree-sitter-python"
            )
            return

        import importlib

        from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]

        for lang in self._requested_languages:
            mod_name = self._GRAMMAR_MODULES.get(lang)
            if mod_name is None:
                logger.warning("No grammar module mapped for language '%s'", lang)
                continue
            try:
                mod = importlib.import_module(mod_name)
                self._parsers[lang] = TSParser(Language(mod.language()))
                logger.debug("Loaded tree-sitter parser for %s", lang)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for language '%s'",
                    mod_name, lang,
                )
            except Exception as exc:
                logger.warning("Could not load tree-sitter grammar for %s: %s", lang, exc)

    def supports_language(self, language: str) -> bool:
        return language in self._parsers

    def supports(self, path: str) -> bool:
        lang = language_for_path(path)
        return lang is not None and lang in self._parsers

    def extract(self, path: str, content: str) -> ExtractResult:
        lang = language_for_path(path)
        if lang is None or lang not in self._parsers:
            return [], []

        tree = self._parsers[lang].parse(content.encode("utf-8"))
        lines = content.splitlines()
        symbols: List[CodeSymbol] = []
        calls: List[CallRelationship] = []
        self._walk(tree.root_node, path, lines, symbols, calls, in_class=False, top_level=True)
        return symbols, calls

    # ------------------------------------------------------------------
    # Python: recursive definition walker
    # ------------------------------------------------------------------

    def _walk(
        self,
        ts_node: Any,
        path: str,
        lines: List[str],
        symbols: List[CodeSymbol],
        calls: List[CallRelationship],
        in_class: bool,
        top_level: bool,
    ) -> None:
        for child in ts_node.children:
            outer = child
            actual = child
            decorators: List[str] = []

            if child.type == "decorated_definition":
                inner = child.child_by_field_name("definition")
                if inner is None:
                    continue
                actual = inner
                decorators = [
                    _text(d).lstrip("@").strip()
                    for d in child.children if d.type == "decorator"
                ]

            if actual.type == "function_definition":
                self._function(outer, actual, decorators, path, lines, symbols, calls, in_class)
            elif actual.type == "class_definition":
                self._class(outer, actual, path, lines, symbols, calls)
            elif top_level and actual.type == "expression_statement":
                self._constant(actual, path, lines, symbols)

    def _function(
        self,
        outer: Any,
        func: Any,
        decorators: List[str],
        path: str,
        lines: List[str],
        symbols: List[CodeSymbol],
        calls: List[CallRelationship],
        in_class: bool,
    ) -> None:
        name_node = func.child_by_field_name("name")
        if name_node is None:
            return
        name = _text(name_node)
        is_static = "staticmethod" in decorators

        params_node = func.child_by_field_name("parameters")
        params = self._parameters(params_node) if params_node is not None else []
        params = _strip_receiver(params, in_class, is_static)

        ret_node = func.child_by_field_name("return_type")
        return_type = _text(ret_node) if ret_node is not None else None

        start = outer.start_point[0] + 1
        end = outer.end_point[0] + 1
        symbols.append(CodeSymbol(
            name=name,
            kind=_function_kind(name, in_class),  # type: ignore[arg-type]
            file=path,
            start_line=start,
            end_line=end,
            signature=format_signature(name, params, return_type),
            parameters=params,
            return_type=return_type,
            visibility=visibility_for(name),  # type: ignore[arg-type]
            is_static=is_static,
            code=_snippet(lines, start, end),
        ))

        body = func.child_by_field_name("body")
        if body is None:
            return
        for callee, line in self._collect_calls(body):
            calls.append(CallRelationship(caller=name, callee=callee, file=path, line=line))
        # Nested definitions become symbols of their own
        self._walk(body, path, lines, symbols, calls, in_class=False, top_level=False)

    def _class(
        self,
        outer: Any,
        cls: Any,
        path: str,
        lines: List[str],
        symbols: List[CodeSymbol],
        calls: List[CallRelationship],
    ) -> None:
        name_node = cls.child_by_field_name("name")
        if name_node is None:
            return
        name = _text(name_node)

        bases: List[str] = []
        supers = cls.child_by_field_name("superclasses")
        if supers is not None:
            bases = [
                _text(arg) for arg in supers.named_children
                if arg.type not in ("keyword_argument", "comment")
            ]

        start = outer.start_point[0] + 1
        end = outer.end_point[0] + 1
        symbols.append(CodeSymbol(
            name=name,
            kind=_class_kind(bases),  # type: ignore[arg-type]
            file=path,
            start_line=start,
            end_line=end,
            visibility=visibility_for(name),  # type: ignore[arg-type]
            extends=bases[0] if bases else None,
            implements=bases[1:],
            code=_snippet(lines, start, end),
        ))

        body = cls.child_by_field_name("body")
        if body is not None:
            self._walk(body, path, lines, symbols, calls, in_class=True, top_level=False)

    @staticmethod
    def _constant(stmt: Any, path: str, lines: List[str], symbols: List[CodeSymbol]) -> None:
        for expr in stmt.named_children:
            if expr.type != "assignment":
                continue
            left = expr.child_by_field_name("left")
            if left is None or left.type != "identifier":
                continue
            name = _text(left)
            if not _CONSTANT_RE.match(name):
                continue
            type_node = expr.child_by_field_name("type")
            line = stmt.start_point[0] + 1
            end = stmt.end_point[0] + 1
            symbols.append(CodeSymbol(
                name=name,
                kind="field",
                file=path,
                start_line=line,
                end_line=end,
                return_type=_text(type_node) if type_node is not None else None,
                visibility=visibility_for(name),  # type: ignore[arg-type]
                is_static=True,
                is_constant=True,
                code=_snippet(lines, line, end),
            ))

    @staticmethod
    def _parameters(params_node: Any) -> List[Parameter]:
        params: List[Parameter] = []
        for p in params_node.named_children:
            kind = p.type
            if kind == "identifier":
                params.append(Parameter(name=_text(p)))
            elif kind in ("list_splat_pattern", "dictionary_splat_pattern"):
                params.append(Parameter(name=_text(p)))
            elif kind == "typed_parameter":
                type_node = p.child_by_field_name("type")
                head = p.named_children[0] if p.named_children else None
                params.append(Parameter(
                    name=_text(head) if head is not None else "",
                    type=_text(type_node) if type_node is not None else "",
                ))
            elif kind in ("default_parameter", "typed_default_parameter"):
                name_node = p.child_by_field_name("name")
                type_node = p.child_by_field_name("type")
                params.append(Parameter(
                    name=_text(name_node) if name_node is not None else "",
                    type=_text(type_node) if type_node is not None else "",
                    optional=True,
                ))
        return params

    @staticmethod
    def _collect_calls(body: Any) -> List[Tuple[str, int]]:
        """Every ``(callee, line)`` in *body*, not descending into nested defs."""
        found: List[Tuple[str, int]] = []

        def _find(node: Any) -> None:
            if node.type == "call":
                func = node.child_by_field_name("function")
                if func is not None:
                    name = _resolve_ts_call_name(func)
                    if name:
                        found.append((name.split(".")[-1], node.start_point[0] + 1))
            for ch in node.children:
                if ch.type in ("function_definition", "class_definition", "decorated_definition"):
                    continue
                _find(ch)

        _find(body)
        return found


def _text(node: Any) -> str:
    return node.text.decode("utf-8")


def _resolve_ts_call_name(func_node: Any) -> Optional[str]:
    """Resolve a Tree-sitter call-function node to a dotted name string."""
    if func_node.type == "identifier":
        return _text(func_node)
    if func_node.type == "attribute":
        parts: List[str] = []
        current = func_node
        while current is not None and current.type == "attribute":
            attr = current.child_by_field_name("attribute")
            if attr is not None:
                parts.append(_text(attr))
            current = current.child_by_field_name("object")
        if current is not None and current.type == "identifier":
            parts.append(_text(current))
        return ".".join(reversed(parts)) if parts else None
    if func_node.type == "call":
        inner = func_node.child_by_field_name("function")
        if inner is not None:
            return _resolve_ts_call_name(inner)
    return None


# ===================================================================
# AST Fallback Extractor (when tree-sitter is not installed)
# ===================================================================

class ASTFallbackExtractor(SymbolExtractor):
    """Pure-Python fallback using the built-in ``ast`` module. Python only."""

    def supports(self, path: str) -> bool:
        return language_for_path(path) == "python"

    def extract(self, path: str, content: str) -> ExtractResult:
        if not self.supports(path):
            return [], []
        try:
            tree = ast.parse(content)
        except SyntaxError as exc:
            logger.warning("SyntaxError in %s: %s", path, exc)
            return [], []

        visitor = _ASTVisitor(path, content.splitlines())
        visitor.visit(tree)
        return visitor.symbols, visitor.calls


class _ASTVisitor(ast.NodeVisitor):
    """Walks a Python AST and collects symbols and call edges."""

    def __init__(self, path: str, lines: List[str]) -> None:
        self.path = path
        self.lines = lines
        self.symbols: List[CodeSymbol] = []
        self.calls: List[CallRelationship] = []
        # Innermost enclosing scope: "class", "function" or "module"
        self._scopes: List[str] = ["module"]
        self._functions: List[str] = []

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        bases = [ast.unparse(b) for b in node.bases]
        start, end = _ast_span(node)
        self.symbols.append(CodeSymbol(
            name=node.name,
            kind=_class_kind(bases),  # type: ignore[arg-type]
            file=self.path,
            start_line=start,
            end_line=end,
            visibility=visibility_for(node.name),  # type: ignore[arg-type]
            extends=bases[0] if bases else None,
            implements=bases[1:],
            code=_snippet(self.lines, start, end),
        ))
        self._scopes.append("class")
        self.generic_visit(node)
        self._scopes.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_function(node)

    def _visit_function(self, node: ast.AST) -> None:
        assert isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
        in_class = self._scopes[-1] == "class"
        decorators = [ast.unparse(d) for d in node.decorator_list]
        is_static = "staticmethod" in decorators
        params = _strip_receiver(_ast_parameters(node.args), in_class, is_static)
        return_type = ast.unparse(node.returns) if node.returns is not None else None
        start, end = _ast_span(node)

        self.symbols.append(CodeSymbol(
            name=node.name,
            kind=_function_kind(node.name, in_class),  # type: ignore[arg-type]
            file=self.path,
            start_line=start,
            end_line=end,
            signature=format_signature(node.name, params, return_type),
            parameters=params,
            return_type=return_type,
            visibility=visibility_for(node.name),  # type: ignore[arg-type]
            is_static=is_static,
            code=_snippet(self.lines, start, end),
        ))

        self._scopes.append("function")
        self._functions.append(node.name)
        for stmt in node.body:
            self.visit(stmt)
        self._functions.pop()
        self._scopes.pop()

    def visit_Call(self, node: ast.Call) -> None:
        if self._functions:
            name = _ast_name_from_expr(node.func)
            if name:
                self.calls.append(CallRelationship(
                    caller=self._functions[-1],
                    callee=name.split(".")[-1],
                    file=self.path,
                    line=node.lineno,
                ))
        self.generic_visit(node)

    def visit_Module(self, node: ast.Module) -> None:
        for stmt in node.body:
            if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1:
                target = stmt.targets[0]
                if isinstance(target, ast.Name):
                    self._add_constant(target.id, stmt, None)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                self._add_constant(stmt.target.id, stmt, ast.unparse(stmt.annotation))
            self.visit(stmt)

    def _add_constant(self, name: str, node: ast.stmt, type_text: Optional[str]) -> None:
        if not _CONSTANT_RE.match(name):
            return
        start, end = _ast_span(node)
        self.symbols.append(CodeSymbol(
            name=name,
            kind="field",
            file=self.path,
            start_line=start,
            end_line=end,
            return_type=type_text,
            visibility=visibility_for(name),  # type: ignore[arg-type]
            is_static=True,
            is_constant=True,
            code=_snippet(self.lines, start, end),
        ))


def _ast_span(node: ast.AST) -> Tuple[int, int]:
    decorators = getattr(node, "decorator_list", None) or []
    start = min([node.lineno] + [d.lineno for d in decorators])  # type: ignore[attr-defined]
    return start, getattr(node, "end_lineno", None) or node.lineno  # type: ignore[attr-defined]


def _ast_parameters(args: ast.arguments) -> List[Parameter]:
    def _ann(a: ast.arg) -> str:
        return ast.unparse(a.annotation) if a.annotation is not None else ""

    params: List[Parameter] = []
    positional = list(args.posonlyargs) + list(args.args)
    first_default = len(positional) - len(args.defaults)
    for i, a in enumerate(positional):
        params.append(Parameter(name=a.arg, type=_ann(a), optional=i >= first_default))
    if args.vararg is not None:
        params.append(Parameter(name=f"*{args.vararg.arg}", type=_ann(args.vararg)))
    for a, default in zip(args.kwonlyargs, args.kw_defaults):
        params.append(Parameter(name=a.arg, type=_ann(a), optional=default is not None))
    if args.kwarg is not None:
        params.append(Parameter(name=f"**{args.kwarg.arg}", type=_ann(args.kwarg)))
    return params


def _ast_name_from_expr(expr: ast.AST) -> Optional[str]:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        parts: List[str] = []
        current: ast.AST = expr
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
        return ".".join(reversed(parts)) if parts else None
    if isinstance(expr, ast.Call):
        return _ast_name_from_expr(expr.func)
    return None


# ===================================================================
# Selecting extractor
# ===================================================================

class PythonSymbolExtractor(SymbolExtractor):
    """Uses :class:`TreeSitterExtractor` when the grammar loads, else ``ast``."""

    def __init__(self) -> None:
        ts = TreeSitterExtractor(languages=["python"])
        if ts.supports_language("python"):
            self._delegate: SymbolExtractor = ts
            logger.info("Using Tree-sitter extractor")
        else:
            self._delegate = ASTFallbackExtractor()
            logger.info("Using AST fallback extractor (Python only)")

    @property
    def backend(self) -> str:
        return type(self._delegate).__name__

    def supports(self, path: str) -> bool:
        return self._delegate.supports(path)

    def extract(self, path: str, content: str) -> ExtractResult:
        return self._delegate.extract(path, content)
