"""Turn review findings into line-anchored comments."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .diff_mapper import PatchLineMapper
from .models import BreakingChange, CodeSymbol, DuplicateMatch, ReviewComment, ReviewReport

logger = logging.getLogger(__name__)

MAX_LISTED_CALL_SITES = 5


def anchor_line(mapper: PatchLineMapper, symbol: CodeSymbol) -> Optional[int]:
    """First line of *symbol* that the diff can address, if any."""
    if not mapper.has_patch(symbol.file):
        return None
    for line in range(symbol.start_line, max(symbol.start_line, symbol.end_line) + 1):
        mapped = mapper.map(symbol.file, line)
        if mapped is not None:
            return mapped
    return None


def breaking_change_body(change: BreakingChange) -> str:
    lines = [f"**Breaking change ({change.change_type.replace('_', ' ')})**: {change.message}"]
    if change.call_sites:
        lines.append("")
        lines.append(
            f"{len(change.call_sites)} call site(s) in {len(change.impacted_files)} file(s) may be affected:"
        )
        for site in change.call_sites[:MAX_LISTED_CALL_SITES]:
            lines.append(f"- `{site.file}:{site.line}` in `{site.caller}()`")
        extra = len(change.call_sites) - MAX_LISTED_CALL_SITES
        if extra > 0:
            lines.append(f"- ... and {extra} more")
    else:
        lines.append("")
        lines.append("No indexed callers were found, but external consumers may still break.")
    return "\n".join(lines)


def duplicate_body(match: DuplicateMatch, other: CodeSymbol) -> str:
    return (
        f"**Possible duplicate** ({match.type}, {match.similarity:.0%} similar): {match.reason}. "
        f"Compare with `{other.name}` at `{other.file}:{other.start_line}`."
    )


def build_review_comments(report: ReviewReport, mapper: PatchLineMapper) -> Tuple[List[ReviewComment], int]:
    """Anchored comments plus the number of findings that could not be placed."""
    comments: List[ReviewComment] = []
    unanchored = 0

    for change in report.breaking_changes:
        # A removed symbol's old position says nothing about the new file
        line = None if change.change_type == "removed" else anchor_line(mapper, change.symbol)
        if line is None:
            unanchored += 1
            continue
        comments.append(ReviewComment(
            path=change.symbol.file,
            line=line,
            body=breaking_change_body(change),
            severity=change.severity,
            category="breaking_change",
        ))

    duplicates = [(m, m.symbol2, m.symbol1) for m in report.duplicates_within_pr]
    duplicates += [(m, m.symbol1, m.symbol2) for m in report.duplicates_cross_repo]
    for match, target, other in duplicates:
        line = anchor_line(mapper, target)
        if line is None:
            unanchored += 1
            continue
        comments.append(ReviewComment(
            path=target.file,
            line=line,
            body=duplicate_body(match, other),
            severity="medium" if match.type == "exact" else "low",
            category="duplicate",
        ))

    if unanchored:
        logger.info("%d finding(s) fall outside the diff and were not anchored", unanchored)
    return comments, unanchored
