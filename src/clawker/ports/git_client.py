"""Git client port definition."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class GitClient(Protocol):
    """Abstract git operations used by workspace setup."""

    def is_git_repo(self, path: Path) -> bool:
        """Return True if the path is within a git repository."""

    def branch_exists(self, repo_root: Path, branch: str) -> bool:
        """Return True if a local branch exists."""

    def add_worktree(
        self, repo_root: Path, worktree_path: Path, branch: str, base: str | None
    ) -> None:
        """Create a worktree at worktree_path checked out on branch.

        The branch is created from base (or HEAD) when it does not exist.
        """

    def is_worktree(self, path: Path) -> bool:
        """Return True if path is a linked worktree."""
