"""Project persistence: latest state and labelled snapshots."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

from appforge.state import ProjectConfig


class ProjectStore(Protocol):
    """Persistence collaborator used by the coordinator."""

    async def update_project(
        self, user_id: str, project_id: str, files: dict[str, str], config: ProjectConfig
    ) -> None:
        ...

    async def create_snapshot(self, project_id: str, files: dict[str, str], label: str) -> str:
        ...


class LocalProjectStore:
    """Stores projects as JSON documents on the local disk.

    Layout::

        <root>/projects/<project_id>/project.json
        <root>/projects/<project_id>/snapshots/<snapshot_id>.json
    """

    def __init__(self, root: Path):
        """Initialize the store.

        Args:
            root: Directory holding all projects
        """
        self.root = root

    async def update_project(
        self, user_id: str, project_id: str, files: dict[str, str], config: ProjectConfig
    ) -> None:
        document = {
            "user_id": user_id,
            "project_id": project_id,
            "updated_at": datetime.now().isoformat(),
            "files": files,
            "config": config.model_dump(by_alias=True),
        }
        await asyncio.to_thread(self._write_json, self._project_dir(project_id) / "project.json", document)

    async def create_snapshot(self, project_id: str, files: dict[str, str], label: str) -> str:
        """Save a labelled copy of the files.

        Returns:
            Snapshot ID
        """
        snapshot_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        document = {
            "id": snapshot_id,
            "label": label,
            "created_at": datetime.now().isoformat(),
            "files": files,
        }
        path = self._project_dir(project_id) / "snapshots" / f"{snapshot_id}.json"
        await asyncio.to_thread(self._write_json, path, document)
        return snapshot_id

    def load_project(self, project_id: str) -> Optional[dict[str, Any]]:
        """Load the latest project document, or None if it was never saved."""
        path = self._project_dir(project_id) / "project.json"
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def list_snapshots(self, project_id: str) -> list[dict[str, str]]:
        """List snapshots, newest first, as ``{"id", "label", "created_at"}``."""
        snapshots_dir = self._project_dir(project_id) / "snapshots"
        if not snapshots_dir.exists():
            return []

        entries = []
        for path in sorted(snapshots_dir.glob("*.json"), reverse=True):
            with open(path) as f:
                document = json.load(f)
            entries.append({
                "id": document["id"],
                "label": document.get("label", ""),
                "created_at": document.get("created_at", ""),
            })
        return entries

    def load_snapshot(self, project_id: str, snapshot_id: str) -> dict[str, Any]:
        """Load a snapshot document.

        Raises:
            FileNotFoundError: If the snapshot does not exist
        """
        path = self._project_dir(project_id) / "snapshots" / f"{snapshot_id}.json"
        if not path.exists():
            raise FileNotFoundError(f"Snapshot not found: {snapshot_id}")
        with open(path) as f:
            return json.load(f)

    def _project_dir(self, project_id: str) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in project_id)
        return self.root / "projects" / safe_id

    @staticmethod
    def _write_json(path: Path, document: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically (temp file + rename)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise
