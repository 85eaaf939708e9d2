"""File ignore rules handling using pathspec."""

from pathlib import Path

import pathspec

from appforge.constants import BUILTIN_IGNORES


class IgnoreRules:
    """Decides which files of a project directory are loaded into the store.

    Patterns come from the built-in list, ``.gitignore`` and
    ``.appforgeignore`` (read last, so it can re-include with ``!``).
    """

    def __init__(self, project_root: Path):
        self.project_root = project_root
        self.spec = self._build_spec()

    def _build_spec(self) -> pathspec.PathSpec:
        patterns = list(BUILTIN_IGNORES)

        for name in (".gitignore", ".appforgeignore"):
            ignore_path = self.project_root / name
            if not ignore_path.exists():
                continue
            try:
                patterns.extend(ignore_path.read_text().splitlines())
            except OSError:
                continue  # Unreadable ignore file behaves as absent

        # Filter out empty lines and comments
        patterns = [p.strip() for p in patterns if p.strip() and not p.strip().startswith("#")]

        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def should_ignore(self, path: Path) -> bool:
        """Check if a path should be ignored.

        Args:
            path: Path to check (can be absolute or relative)

        Returns:
            True if the path should be ignored
        """
        try:
            rel_path = path.relative_to(self.project_root) if path.is_absolute() else path
        except ValueError:
            # Path is outside project root
            return True

        return self.spec.match_file(rel_path.as_posix())
