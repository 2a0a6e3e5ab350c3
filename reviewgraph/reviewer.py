"""Review orchestrator wiring the index and the analyzers together."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .breaking import BreakingChangeDetector
from .comments import build_review_comments
from .diff_mapper import PatchLineMapper, create_unified_diff
from .duplicates import DuplicateDetector
from .embeddings import EmbeddingGenerator
from .full_indexer import LocalSourceProvider, is_code_file
from .impact import BreakageOracle, ImpactAnalyzer
from .indexer import CodebaseIndexer
from .models import CodeSymbol, PRFile, ReviewReport
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


def collect_pr_files(base_dir: Path, head_dir: Path) -> List[PRFile]:
    """Changed code files between two checkouts, with unified-diff patches."""
    base = LocalSourceProvider(base_dir)
    head = LocalSourceProvider(head_dir)
    base_files = set(base.list_files())
    head_files = head.list_files()

    out: List[PRFile] = []
    for path in head_files:
        if not is_code_file(path):
            continue
        new = head.read_file(path) or ""
        if path in base_files:
            old = base.read_file(path) or ""
            if old == new:
                continue
            status = "modified"
        else:
            old = ""
            status = "added"
        out.append(PRFile(
            filename=path,
            patch=create_unified_diff(old, new, path),
            content=new,
            status=status,
        ))

    for path in sorted(base_files - set(head_files)):
        if not is_code_file(path):
            continue
        old = base.read_file(path) or ""
        out.append(PRFile(
            filename=path,
            patch=create_unified_diff(old, "", path),
            content=None,
            status="removed",
        ))
    return out


class Reviewer:
    """Runs every analyzer over a PR against a pre-built base index."""

    def __init__(
        self,
        indexer: CodebaseIndexer,
        embeddings: Optional[EmbeddingGenerator] = None,
        vector_store: Optional[VectorStore] = None,
        oracle: Optional[BreakageOracle] = None,
        skip_cross_language: bool = True,
    ) -> None:
        self.indexer = indexer
        self.breaking = BreakingChangeDetector(indexer)
        self.duplicates = DuplicateDetector(
            indexer,
            embeddings=embeddings,
            vector_store=vector_store,
            skip_cross_language=skip_cross_language,
        )
        self.impact = ImpactAnalyzer(indexer, oracle=oracle)

    def extract_pr_symbols(self, pr_files: List[PRFile]) -> Dict[str, List[CodeSymbol]]:
        """Post-change symbols per changed file. Removed files map to ``[]``."""
        extractor = self.indexer.extractor
        per_file: Dict[str, List[CodeSymbol]] = {}
        for pr_file in pr_files:
            if pr_file.status == "removed":
                per_file[pr_file.filename] = []
                continue
            if pr_file.content is None or not extractor.supports(pr_file.filename):
                continue
            symbols, _ = extractor.extract(pr_file.filename, pr_file.content)
            per_file[pr_file.filename] = symbols
        return per_file

    def changed_symbols(self, per_file: Dict[str, List[CodeSymbol]]) -> List[CodeSymbol]:
        """Symbols that are new to their file or differ from the indexed version."""
        changed: List[CodeSymbol] = []
        for path, symbols in per_file.items():
            before = {(s.name, s.kind): s for s in self.indexer.get_file_symbols(path)}
            for symbol in symbols:
                old = before.get((symbol.name, symbol.kind))
                if old is None or old.signature != symbol.signature or old.code != symbol.code:
                    changed.append(symbol)
        return changed

    def review(self, pr_files: List[PRFile]) -> ReviewReport:
        per_file = self.extract_pr_symbols(pr_files)
        changed = self.changed_symbols(per_file)
        logger.info(
            "Reviewing %d file(s), %d changed symbol(s)", len(per_file), len(changed),
        )

        report = ReviewReport(
            breaking_changes=self.breaking.detect(changed, per_file),
            duplicates_within_pr=self.duplicates.detect_within_pr(changed),
            duplicates_cross_repo=self.duplicates.detect_cross_repo(changed),
            impact=self.impact.analyze_impact(changed, [f.filename for f in pr_files]),
        )
        report.comments, report.unanchored_findings = build_review_comments(
            report, PatchLineMapper(pr_files),
        )
        return report
