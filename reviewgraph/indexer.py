"""In-memory symbol index and call graph.

The index is built once per review run and then shared, read-only, by
every analyzer. Identity is the bare symbol name: ``symbol_map`` keeps
whichever symbol with a given name was ingested last, while ``symbols``
and ``file_map`` keep all of them.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .models import CallRelationship, CodeIndex, CodeSymbol
from .parser import PythonSymbolExtractor, SymbolExtractor

logger = logging.getLogger(__name__)


class CodebaseIndexer:
    """Builds and queries a :class:`CodeIndex`."""

    def __init__(self, extractor: Optional[SymbolExtractor] = None) -> None:
        self.extractor = extractor or PythonSymbolExtractor()
        self._index = CodeIndex()

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def index_file(self, path: str, content: str) -> int:
        """Extract *path* and merge the result. Returns symbols added."""
        symbols, calls = self.extractor.extract(path, content)
        self.add_parsed(path, symbols, calls)
        return len(symbols)

    def add_parsed(
        self,
        path: str,
        symbols: Iterable[CodeSymbol],
        calls: Iterable[CallRelationship],
    ) -> None:
        """Merge already-extracted records for one file into the index."""
        bucket = self._index.file_map.setdefault(path, [])
        for symbol in symbols:
            self._index.symbols.append(symbol)
            bucket.append(symbol)
            self._index.symbol_map[symbol.name] = symbol
        self._index.call_graph.extend(calls)

    def clear(self) -> None:
        self._index = CodeIndex()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_callers(self, name: str) -> List[CallRelationship]:
        return [edge for edge in self._index.call_graph if edge.callee == name]

    def find_callees(self, name: str) -> List[CallRelationship]:
        return [edge for edge in self._index.call_graph if edge.caller == name]

    def find_symbol(self, name: str) -> Optional[CodeSymbol]:
        return self._index.symbol_map.get(name)

    def get_file_symbols(self, path: str) -> List[CodeSymbol]:
        return list(self._index.file_map.get(path, []))

    def get_index(self) -> CodeIndex:
        """The live index. Callers share it and must not mutate it."""
        return self._index

    def stats(self) -> dict:
        return {
            "files": len(self._index.file_map),
            "symbols": len(self._index.symbols),
            "edges": len(self._index.call_graph),
        }
