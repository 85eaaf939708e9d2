"""Authoritative project file store with an integrity guard for automatic updates."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from appforge.constants import (
    DEFAULT_MATERIAL_THRESHOLD,
    DEFAULT_MAX_FILE_MB,
    DEFAULT_TRUNCATION_THRESHOLD,
)
from appforge.state import EditBlock
from appforge.utils.diffs import create_patch, diff_stats, merge_edit_blocks, normalize_line_endings
from appforge.utils.ignore import IgnoreRules
from appforge.utils.logging import SessionLogger

Listener = Callable[[dict[str, str]], None]


@dataclass(frozen=True)
class IntegrityPolicy:
    """Heuristic that blocks likely-truncated whole-file overwrites.

    An automatic replacement is rejected when the existing content is longer
    than ``material_threshold`` characters and the incoming content is shorter
    than ``truncation_threshold`` characters.
    """

    material_threshold: int = DEFAULT_MATERIAL_THRESHOLD
    truncation_threshold: int = DEFAULT_TRUNCATION_THRESHOLD
    enabled: bool = True

    def violates(self, existing: Optional[str], incoming: str, automatic: bool) -> bool:
        if not self.enabled or not automatic or existing is None:
            return False
        return (
            len(existing) > self.material_threshold
            and len(incoming) < self.truncation_threshold
        )


@dataclass
class ApplyReport:
    """Outcome of applying one generation result to the store.

    Attributes:
        applied: Paths whose update was accepted
        rejected: Paths blocked by the integrity guard
        misses: Indices of edit blocks that did not match, per path
        stats: (added, removed) line counts per changed path
    """

    applied: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    misses: dict[str, list[int]] = field(default_factory=dict)
    stats: dict[str, tuple[int, int]] = field(default_factory=dict)

    @property
    def batch_rejected(self) -> bool:
        """True when updates were offered but every one of them was rejected."""
        return bool(self.rejected) and not self.applied

    @property
    def miss_count(self) -> int:
        return sum(len(indices) for indices in self.misses.values())


class FileStore:
    """Holds the single authoritative mapping of path to full file content.

    Reads through ``get()`` always see the latest applied batch: every batch
    is merged into a copy and swapped in with one assignment. Subscribers get
    a propagated copy afterwards, scheduled on the running event loop.
    """

    def __init__(
        self,
        files: Optional[dict[str, str]] = None,
        policy: Optional[IntegrityPolicy] = None,
        logger: Optional[SessionLogger] = None,
    ):
        """Initialize the store.

        Args:
            files: Initial project snapshot (empty for a new project)
            policy: Integrity policy for automatic updates
            logger: Optional session logger for diagnostics
        """
        self._files: dict[str, str] = dict(files or {})
        self.policy = policy or IntegrityPolicy()
        self.logger = logger
        self._listeners: list[Listener] = []

    def get(self) -> dict[str, str]:
        """Return a copy of the current mapping."""
        return dict(self._files)

    snapshot = get

    def paths(self) -> list[str]:
        return sorted(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __getitem__(self, path: str) -> str:
        return self._files[path]

    def __len__(self) -> int:
        return len(self._files)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a view that receives a copy of the files after each change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(
        self,
        files: Optional[dict[str, str]] = None,
        diffs: Optional[dict[str, list[EditBlock]]] = None,
        automatic: bool = False,
    ) -> ApplyReport:
        """Apply whole-file replacements and edit blocks as one batch.

        Replacements are applied first, then edit blocks on top of the
        resulting content. During automatic steps, replacements that look
        like a truncation of material content are rejected per path while
        the rest of the batch still applies.

        Args:
            files: Whole-file replacements by path
            diffs: Edit blocks by path
            automatic: Whether the update comes from an unattended step

        Returns:
            ApplyReport describing what was applied, rejected and missed
        """
        report = ApplyReport()
        next_files = dict(self._files)

        for path, content in (files or {}).items():
            existing = next_files.get(path)
            if self.policy.violates(existing, content, automatic):
                report.rejected.append(path)
                self._log(
                    "integrity_rejection",
                    path=path,
                    existing_length=len(existing),
                    incoming_length=len(content),
                )
                continue
            next_files[path] = content
            report.applied.append(path)

        for path, blocks in (diffs or {}).items():
            blocks = [EditBlock.model_validate(b) for b in blocks]
            if not blocks:
                continue

            if path not in next_files:
                report.misses[path] = list(range(len(blocks)))
                self._log("patch_miss", path=path, blocks=report.misses[path], reason="unknown path")
                continue

            merged = merge_edit_blocks(next_files[path], blocks)
            if merged.misses:
                report.misses[path] = merged.misses
                self._log("patch_miss", path=path, blocks=merged.misses)

            if len(merged.misses) < len(blocks):
                next_files[path] = merged.content
                if path not in report.applied:
                    report.applied.append(path)

        self._record_changes(next_files, report)
        self._files = next_files
        self._notify()

        return report

    def replace_all(self, files: dict[str, str]) -> None:
        """Replace the whole project (rollback or project load)."""
        self._files = dict(files)
        self._notify()

    def add_file(self, path: str, content: str = "") -> None:
        self._files = {**self._files, path: content}
        self._notify()

    def delete_file(self, path: str) -> None:
        """Remove a file.

        Raises:
            KeyError: If the path does not exist
        """
        if path not in self._files:
            raise KeyError(path)
        self._files = {p: c for p, c in self._files.items() if p != path}
        self._log("file_deleted", path=path)
        self._notify()

    def rename_file(self, old_path: str, new_path: str) -> None:
        """Move a file to a new path, replacing any file already there.

        Raises:
            KeyError: If old_path does not exist
        """
        if old_path not in self._files:
            raise KeyError(old_path)
        files = {p: c for p, c in self._files.items() if p != old_path}
        files[new_path] = self._files[old_path]
        self._files = files
        self._log("file_renamed", path=old_path, new_path=new_path)
        self._notify()

    @classmethod
    def from_directory(
        cls,
        root: Path,
        ignore_rules: Optional[IgnoreRules] = None,
        max_file_mb: int = DEFAULT_MAX_FILE_MB,
        policy: Optional[IntegrityPolicy] = None,
        logger: Optional[SessionLogger] = None,
    ) -> "FileStore":
        """Load a project snapshot from a directory of text files.

        Args:
            root: Directory to load
            ignore_rules: Ignore rules (built from root if not provided)
            max_file_mb: Files larger than this are skipped
            policy: Integrity policy for the new store
            logger: Optional session logger

        Returns:
            FileStore keyed by forward-slash relative paths
        """
        ignore_rules = ignore_rules or IgnoreRules(root)
        max_bytes = max_file_mb * 1024 * 1024
        files = {}

        for path in sorted(root.rglob("*")):
            if path.is_dir() or ignore_rules.should_ignore(path):
                continue

            try:
                if path.stat().st_size > max_bytes:
                    continue
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue  # Binary or unreadable files are not project text

            files[path.relative_to(root).as_posix()] = normalize_line_endings(content)

        return cls(files, policy=policy, logger=logger)

    def export_to(self, root: Path) -> tuple[list[str], list[str]]:
        """Write every file below a directory.

        Args:
            root: Destination directory

        Returns:
            Tuple of (written paths, skipped paths outside root)
        """
        written, skipped = [], []
        resolved_root = root.resolve()

        for path, content in sorted(self._files.items()):
            target = (resolved_root / path).resolve()
            if not target.is_relative_to(resolved_root):
                skipped.append(path)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)

            # Write atomically (temp file + rename)
            temp_path = target.with_suffix(target.suffix + ".tmp")
            temp_path.write_text(content, encoding="utf-8")
            temp_path.replace(target)
            written.append(path)

        return written, skipped

    def _record_changes(self, next_files: dict[str, str], report: ApplyReport) -> None:
        for path in report.applied:
            before = self._files.get(path, "")
            after = next_files[path]
            if before == after:
                continue

            patch = create_patch(before, after, path)
            report.stats[path] = diff_stats(patch)
            if self.logger:
                self.logger.save_diff(path, patch)

    def _notify(self) -> None:
        if not self._listeners:
            return

        view = dict(self._files)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for listener in list(self._listeners):
            if loop is not None:
                loop.call_soon(listener, view)
            else:
                listener(view)

    def _log(self, kind: str, **data) -> None:
        if self.logger:
            self.logger.log_event(kind, **data)
