"""Breaking-change detection against the indexed (pre-change) codebase."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .indexer import CodebaseIndexer
from .models import CALLABLE_KINDS, BreakingChange, CallRelationship, CodeSymbol

logger = logging.getLogger(__name__)

VISIBILITY_LEVELS: Dict[str, int] = {
    "public": 3,
    "protected": 2,
    "package": 1,
    "private": 0,
}


def is_visibility_reduced(old: str, new: str) -> bool:
    return VISIBILITY_LEVELS.get(new, 0) < VISIBILITY_LEVELS.get(old, 0)


def _unique_files(call_sites: Iterable[CallRelationship]) -> List[str]:
    seen: Dict[str, None] = {}
    for site in call_sites:
        seen.setdefault(site.file, None)
    return list(seen)


class BreakingChangeDetector:
    """Compares changed symbols with their indexed prior versions.

    Each of the signature, visibility and return-type checks runs on its
    own and emits its own record, so one symbol can yield up to three.
    """

    def __init__(self, indexer: CodebaseIndexer) -> None:
        self.indexer = indexer

    def detect(
        self,
        pr_symbols: List[CodeSymbol],
        pr_files_symbols: Optional[Dict[str, List[CodeSymbol]]] = None,
    ) -> List[BreakingChange]:
        changes = self.detect_breaking_changes(pr_symbols)
        if pr_files_symbols:
            changes.extend(self.detect_removals(pr_files_symbols))
        return changes

    def detect_breaking_changes(self, pr_symbols: List[CodeSymbol]) -> List[BreakingChange]:
        changes: List[BreakingChange] = []
        index = self.indexer.get_index()

        for new in pr_symbols:
            if new.kind not in CALLABLE_KINDS:
                continue
            old = index.symbol_map.get(new.name)
            if old is None:
                continue

            if new.signature and old.signature and new.signature != old.signature:
                changes.append(self._record(
                    new, "signature", old.signature, new.signature,
                    f"Signature changed: {old.signature} -> {new.signature}",
                ))

            if new.visibility and old.visibility and is_visibility_reduced(old.visibility, new.visibility):
                changes.append(self._record(
                    new, "visibility", old.signature, new.signature,
                    f"Visibility reduced: {old.visibility} -> {new.visibility}",
                ))

            if new.return_type and old.return_type and new.return_type != old.return_type:
                changes.append(self._record(
                    new, "return_type", old.signature, new.signature,
                    f"Return type changed: {old.return_type} -> {new.return_type}",
                ))

        return changes

    def detect_removals(self, pr_files_symbols: Dict[str, List[CodeSymbol]]) -> List[BreakingChange]:
        """Indexed callables that no changed file declares any more.

        A name that still exists in any changed file counts as moved,
        not removed.
        """
        surviving = {
            symbol.name
            for symbols in pr_files_symbols.values()
            for symbol in symbols
        }
        changes: List[BreakingChange] = []
        reported = set()
        for path in pr_files_symbols:
            for old in self.indexer.get_file_symbols(path):
                if old.kind not in CALLABLE_KINDS or old.name in surviving:
                    continue
                if old.name in reported:
                    continue
                reported.add(old.name)
                changes.append(self._record(
                    old, "removed", old.signature, None,
                    f"{old.kind.capitalize()} removed: {old.signature or old.name}",
                ))
        return changes

    def _record(
        self,
        symbol: CodeSymbol,
        change_type: str,
        old_signature: Optional[str],
        new_signature: Optional[str],
        message: str,
    ) -> BreakingChange:
        call_sites = self.indexer.find_callers(symbol.name)
        logger.debug("%s change on %s, %d call sites", change_type, symbol.name, len(call_sites))
        return BreakingChange(
            symbol=symbol,
            change_type=change_type,  # type: ignore[arg-type]
            old_signature=old_signature,
            new_signature=new_signature,
            impacted_files=_unique_files(call_sites),
            call_sites=call_sites,
            severity="high" if call_sites or change_type == "return_type" else "medium",
            message=message,
        )
