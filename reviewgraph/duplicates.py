"""Near-duplicate detection within a PR and against the indexed codebase.

Similarity comes from an ordered list of strategies. Each one returns a
score or ``None`` when it cannot answer, and the first score wins. The
embedding strategy only takes part when both an embedder and a vector
store are configured. The structural comparator always answers.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Callable, Dict, List, Optional, Set, Tuple

from . import config
from .embeddings import EmbeddingGenerator, cosine_similarity
from .indexer import CodebaseIndexer
from .models import CodeSymbol, DuplicateMatch
from .parser import language_for_path
from .vector_store import VectorStore, symbol_id

logger = logging.getLogger(__name__)

SimilarityStrategy = Callable[[CodeSymbol, CodeSymbol], Optional[float]]

_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"//.*$", re.MULTILINE)
_HASH_COMMENT_RE = re.compile(r"#.*$", re.MULTILINE)
_WS_RE = re.compile(r"\s+")


# ===================================================================
# Structural comparison
# ===================================================================

def normalize_signature(signature: str) -> str:
    return _WS_RE.sub(" ", signature).strip().lower()


def normalize_code(code: str, language: Optional[str] = None) -> List[str]:
    """Comment-free, whitespace-collapsed, non-blank lines of *code*."""
    if language == "python":
        code = _HASH_COMMENT_RE.sub("", code)
    else:
        code = _BLOCK_COMMENT_RE.sub("", code)
        code = _LINE_COMMENT_RE.sub("", code)
    lines = (_WS_RE.sub(" ", line).strip() for line in code.splitlines())
    return [line for line in lines if line]


def structural_similarity(s1: CodeSymbol, s2: CodeSymbol) -> float:
    """Signature equality first, then the share of common body lines.

    The line score is the size of the multiset intersection over the
    longer body, so ``structural_similarity(a, b) == structural_similarity(b, a)``.
    """
    if s1.signature and s2.signature:
        if s1.signature == s2.signature:
            return 1.0
        if normalize_signature(s1.signature) == normalize_signature(s2.signature):
            return 0.9

    if s1.code and s2.code:
        lines1 = normalize_code(s1.code, language_for_path(s1.file))
        lines2 = normalize_code(s2.code, language_for_path(s2.file))
        if not lines1 or not lines2:
            return 0.0
        common = sum((Counter(lines1) & Counter(lines2)).values())
        return common / max(len(lines1), len(lines2))

    return 0.0


def _languages_differ(s1: CodeSymbol, s2: CodeSymbol) -> bool:
    lang1 = language_for_path(s1.file)
    lang2 = language_for_path(s2.file)
    return lang1 is not None and lang2 is not None and lang1 != lang2


# ===================================================================
# DuplicateDetector
# ===================================================================

class DuplicateDetector:
    """Finds near-duplicate symbols."""

    def __init__(
        self,
        indexer: CodebaseIndexer,
        embeddings: Optional[EmbeddingGenerator] = None,
        vector_store: Optional[VectorStore] = None,
        skip_cross_language: bool = True,
        within_pr_threshold: float = config.WITHIN_PR_THRESHOLD,
        cross_repo_threshold: float = config.CROSS_REPO_THRESHOLD,
        vector_threshold: float = config.VECTOR_THRESHOLD,
        exact_threshold: float = config.EXACT_THRESHOLD,
        vector_top_k: int = config.VECTOR_TOP_K,
    ) -> None:
        self.indexer = indexer
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.skip_cross_language = skip_cross_language
        self.within_pr_threshold = within_pr_threshold
        self.cross_repo_threshold = cross_repo_threshold
        self.vector_threshold = vector_threshold
        self.exact_threshold = exact_threshold
        self.vector_top_k = vector_top_k
        self._vectors: Dict[Tuple[str, Optional[str], Optional[str]], Optional[List[float]]] = {}

        self.strategies: List[SimilarityStrategy] = []
        if embeddings is not None and vector_store is not None:
            self.strategies.append(self._embedding_similarity)
        self.strategies.append(structural_similarity)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect_within_pr(self, symbols: List[CodeSymbol]) -> List[DuplicateMatch]:
        matches: List[DuplicateMatch] = []
        for i in range(len(symbols)):
            for j in range(i + 1, len(symbols)):
                s1, s2 = symbols[i], symbols[j]
                if not self._comparable(s1, s2):
                    continue
                if s1.file == s2.file and s1.name == s2.name and s1.signature == s2.signature:
                    continue
                score = self.similarity(s1, s2)
                if score > self.within_pr_threshold:
                    matches.append(self._match(s1, s2, score, self._within_pr_reason(s1, s2)))
        return matches

    def detect_cross_repo(self, symbols: List[CodeSymbol]) -> List[DuplicateMatch]:
        matches: List[DuplicateMatch] = []
        seen: Set[Tuple[str, str]] = set()
        use_vectors = self._vector_search_ready()

        for symbol in symbols:
            found: Optional[List[DuplicateMatch]] = None
            if use_vectors:
                found = self._cross_repo_vector(symbol)
            if found is None:
                found = self._cross_repo_brute_force(symbol)
            for match in found:
                key = (symbol_id(match.symbol1), symbol_id(match.symbol2))
                if key in seen:
                    continue
                seen.add(key)
                matches.append(match)
        return matches

    def similarity(self, s1: CodeSymbol, s2: CodeSymbol) -> float:
        for strategy in self.strategies:
            score = strategy(s1, s2)
            if score is not None:
                return score
        return 0.0

    # ------------------------------------------------------------------
    # Cross-repo paths
    # ------------------------------------------------------------------

    def _vector_search_ready(self) -> bool:
        if self.embeddings is None or self.vector_store is None:
            return False
        return self.vector_store.count() > 0

    def _cross_repo_vector(self, symbol: CodeSymbol) -> Optional[List[DuplicateMatch]]:
        """ANN lookup for one symbol, ``None`` when the path can't answer."""
        assert self.vector_store is not None
        vector = self._vector_for(symbol)
        if vector is None:
            return None
        try:
            neighbours = self.vector_store.find_similar_to_symbol(
                symbol,
                k=self.vector_top_k,
                min_score=self.vector_threshold,
                vector=vector,
            )
        except Exception as exc:
            logger.warning("Vector search failed for %s, using brute force: %s", symbol.name, exc)
            return None

        out: List[DuplicateMatch] = []
        for other, score in neighbours:
            if other.file == symbol.file or not self._comparable(symbol, other):
                continue
            if not self._indexed(other):
                logger.debug("Skipping vector hit %s, not in the index", symbol_id(other))
                continue
            if score > self.vector_threshold:
                out.append(self._match(symbol, other, score, self._cross_repo_reason(other)))
        return out

    def _cross_repo_brute_force(self, symbol: CodeSymbol) -> List[DuplicateMatch]:
        out: List[DuplicateMatch] = []
        for other in self.indexer.get_index().symbols:
            if other.file == symbol.file or not self._comparable(symbol, other):
                continue
            score = self.similarity(symbol, other)
            if score > self.cross_repo_threshold:
                out.append(self._match(symbol, other, score, self._cross_repo_reason(other)))
        return out

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _indexed(self, symbol: CodeSymbol) -> bool:
        wanted = symbol_id(symbol)
        return any(symbol_id(s) == wanted for s in self.indexer.get_file_symbols(symbol.file))

    def _comparable(self, s1: CodeSymbol, s2: CodeSymbol) -> bool:
        if s1.kind != s2.kind:
            return False
        if self.skip_cross_language and _languages_differ(s1, s2):
            return False
        return True

    def _vector_for(self, symbol: CodeSymbol) -> Optional[List[float]]:
        key = (symbol_id(symbol), symbol.signature, symbol.code)
        if key not in self._vectors:
            assert self.embeddings is not None
            self._vectors[key] = self.embeddings.embed_symbol(symbol)
        return self._vectors[key]

    def _embedding_similarity(self, s1: CodeSymbol, s2: CodeSymbol) -> Optional[float]:
        v1 = self._vector_for(s1)
        v2 = self._vector_for(s2)
        if v1 is None or v2 is None:
            return None
        return max(0.0, cosine_similarity(v1, v2))

    def _match(self, s1: CodeSymbol, s2: CodeSymbol, score: float, reason: str) -> DuplicateMatch:
        return DuplicateMatch(
            symbol1=s1,
            symbol2=s2,
            similarity=score,
            type="exact" if score > self.exact_threshold else "similar",
            reason=reason,
        )

    @staticmethod
    def _within_pr_reason(s1: CodeSymbol, s2: CodeSymbol) -> str:
        if s1.signature and s1.signature == s2.signature:
            return f"Exact duplicate: {s1.kind} with same signature"
        if s1.name == s2.name:
            return f"Duplicate {s1.kind} name: {s1.name}"
        return f"Similar {s1.kind} pattern"

    @staticmethod
    def _cross_repo_reason(other: CodeSymbol) -> str:
        return f"Similar to existing {other.kind} in {other.file}"
