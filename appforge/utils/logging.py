"""Session logging utilities."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class SessionLogger:
    """Handles diagnostic logging for an AppForge session."""

    def __init__(self, project_root: Path, run_id: Optional[str] = None):
        """Initialize session logger.

        Args:
            project_root: Project root directory
            run_id: Optional run ID (generated if not provided)
        """
        self.project_root = project_root
        self.run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")

        # Create logs directory
        self.log_dir = project_root / ".appforge" / "runs" / self.run_id
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Log files
        self.transcript_path = self.log_dir / "transcript.ndjson"
        self.events_path = self.log_dir / "events.ndjson"
        self.plan_path = self.log_dir / "plan.json"
        self.diffs_dir = self.log_dir / "diffs"

        self.diffs_dir.mkdir(exist_ok=True)

    def log_message(self, role: str, content: str, **extra: Any) -> None:
        """Log a conversation message.

        Args:
            role: Message role (user, assistant, system)
            content: Message content
            **extra: Additional fields (approval flag, plan, ...)
        """
        entry = {
            "ts": datetime.now().isoformat(),
            "role": role,
            "content": content,
        }
        entry.update({k: v for k, v in extra.items() if v is not None})

        self._append(self.transcript_path, entry)

    def log_event(self, kind: str, **data: Any) -> None:
        """Log a diagnostic event (integrity rejection, patch miss, failure...).

        Args:
            kind: Event kind
            **data: Event payload
        """
        entry = {"ts": datetime.now().isoformat(), "event": kind, **data}
        self._append(self.events_path, entry)

    def read_events(self, kind: Optional[str] = None) -> list[dict]:
        """Read logged events, optionally filtered by kind."""
        if not self.events_path.exists():
            return []

        events = []
        with open(self.events_path) as f:
            for line in f:
                if not line.strip():
                    continue
                event = json.loads(line)
                if kind is None or event.get("event") == kind:
                    events.append(event)
        return events

    def save_plan(self, plan: list[str], mission: str = "") -> None:
        """Save a plan to disk.

        Args:
            plan: Ordered step descriptions
            mission: Request that produced the plan
        """
        with open(self.plan_path, "w") as f:
            json.dump({"mission": mission, "steps": plan}, f, indent=2)

    def save_diff(self, filename: str, diff_content: str) -> None:
        """Save a diff to disk.

        Args:
            filename: Name for the diff file
            diff_content: Diff content
        """
        # Sanitize path for filename
        safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in filename)
        timestamp = datetime.now().strftime("%H%M%S_%f")
        diff_path = self.diffs_dir / f"{timestamp}_{safe_name}.diff"
        with open(diff_path, "w") as f:
            f.write(diff_content)

    def get_log_path(self) -> str:
        """Get the path to the log directory.

        Returns:
            Absolute path to log directory
        """
        return str(self.log_dir.absolute())

    def _append(self, path: Path, entry: dict) -> None:
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
