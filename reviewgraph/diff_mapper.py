"""Map post-change file lines onto a unified diff.

Line-based review APIs only accept comments on lines that appear in the
PR's diff. :func:`map_file_line_to_pr_line` answers whether a line of the
new file is addressable, and :class:`PatchLineMapper` does it per file.
"""

from __future__ import annotations

import difflib
import logging
import re
from typing import Dict, Iterable, Optional

from .models import PRFile

logger = logging.getLogger(__name__)

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")


def map_file_line_to_pr_line(patch: Optional[str], file_line: int) -> Optional[int]:
    """Line number in the new file if *file_line* is visible in *patch*.

    Walks the patch keeping a new-file counter. A hunk header resets it to
    the hunk's new start minus one, deletions leave it alone, additions and
    context lines advance it. Lines outside a valid hunk are ignored:
    ``---``/``+++`` headers, ``diff`` boundaries, and everything after an
    unparseable ``@@`` header up to the next valid one. Never raises.
    """
    if not patch or file_line < 1:
        return None

    counter: Optional[int] = None
    lines = patch.splitlines()
    for i, line in enumerate(lines):
        if line.startswith("@@"):
            match = _HUNK_RE.match(line)
            counter = int(match.group(2)) - 1 if match else None
            continue
        if line.startswith("diff "):
            counter = None
            continue
        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            # Next file header in a patch without diff lines
            counter = None
            continue
        if counter is None or line.startswith("\\") or line.startswith("-"):
            continue
        if line.startswith("+") or line.startswith(" ") or line == "":
            counter += 1
            if counter == file_line:
                return counter
    return None


class PatchLineMapper:
    """Per-file front end to :func:`map_file_line_to_pr_line`."""

    def __init__(self, pr_files: Iterable[PRFile]) -> None:
        self._patches: Dict[str, Optional[str]] = {f.filename: f.patch for f in pr_files}

    def map(self, path: str, file_line: int) -> Optional[int]:
        patch = self._patches.get(path)
        if patch is None:
            return None
        return map_file_line_to_pr_line(patch, file_line)

    def has_patch(self, path: str) -> bool:
        return bool(self._patches.get(path))


def create_unified_diff(original: str, modified: str, filename: str = "file") -> str:
    """Unified diff between two versions of *filename*."""
    diff = difflib.unified_diff(
        original.splitlines(),
        modified.splitlines(),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
        lineterm="",
    )
    return "\n".join(diff)
