"""Utilities for merging edit blocks and describing changes as diffs."""

import difflib
from dataclasses import dataclass, field
from typing import Iterable

from unidiff import PatchSet

from appforge.state import EditBlock


@dataclass
class MergeResult:
    """Result of merging edit blocks into a file.

    Attributes:
        content: The merged file content
        misses: Indices of blocks whose search text was not found
    """

    content: str
    misses: list[int] = field(default_factory=list)


def merge_edit_blocks(content: str, blocks: Iterable[EditBlock]) -> MergeResult:
    """Apply search/replace blocks to file content, in order.

    Each block replaces the first occurrence of its search text in the
    progressively updated content. A block whose search text is empty or
    absent leaves the content unchanged and is reported as a miss.

    Args:
        content: Current file content
        blocks: Edit blocks to apply

    Returns:
        MergeResult with the new content and the indices of missed blocks
    """
    misses = []

    for i, block in enumerate(blocks):
        if not block.search or block.search not in content:
            misses.append(i)
            continue
        content = content.replace(block.search, block.replace, 1)

    return MergeResult(content=content, misses=misses)


def create_patch(original: str, modified: str, filename: str = "file") -> str:
    """Create a unified diff patch.

    Args:
        original: Original file content
        modified: Modified file content
        filename: Filename to use in patch header

    Returns:
        Unified diff string
    """
    original_lines = _terminated_lines(original)
    modified_lines = _terminated_lines(modified)

    diff = difflib.unified_diff(
        original_lines,
        modified_lines,
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
    )

    return "".join(diff)


def diff_stats(patch_str: str) -> tuple[int, int]:
    """Count added and removed lines in a unified diff.

    Args:
        patch_str: Unified diff string

    Returns:
        Tuple of (added, removed)
    """
    if not patch_str.strip():
        return 0, 0

    patchset = PatchSet(patch_str)
    return patchset.added, patchset.removed


def normalize_line_endings(content: str) -> str:
    """Normalize line endings to LF.

    Args:
        content: Content with potentially mixed line endings

    Returns:
        Content with normalized line endings
    """
    return content.replace("\r\n", "\n").replace("\r", "\n")


def _terminated_lines(content: str) -> list[str]:
    # Every diff line must end with a newline or hunks run together
    content = normalize_line_endings(content)
    lines = [line + "\n" for line in content.split("\n")]
    if not content or content.endswith("\n"):
        lines.pop()
    return lines
