"""Per-project memory directories under ``~/.reviewgraph/memory``.

Each named project gets one directory holding its LanceDB vector table
and a small ``project.json`` describing where it was indexed from.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .config import MEMORY_DIR, ensure_base_dirs

logger = logging.getLogger(__name__)


class ProjectManager:
    """Manage project memory directories."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_metadata(self, project_name: str) -> Dict[str, Any]:
        meta_path = self.project_dir(project_name) / "project.json"
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable metadata for project '%s'", project_name)
            return {}

    def set_metadata(self, project_name: str, payload: Dict[str, Any]) -> None:
        path = self.create_or_get_project(project_name)
        (path / "project.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def delete_project(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        return True


def project_name_from_path(project_path: Path) -> str:
    return project_path.resolve().name.replace(" ", "_")
