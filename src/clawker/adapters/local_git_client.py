"""Local git adapter for GitClient port."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

from clawker.core.errors import WorktreeError
from clawker.ports.git_client import GitClient

GIT_TIMEOUT_SECONDS = 30


def _git(path: Path, *args: str, timeout: int = 5) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", "-C", str(path), *args],
        capture_output=True,
        text=True,
        timeout=timeout,
    )


class LocalGitClient(GitClient):
    """Git client adapter backed by local git CLI."""

    def check_available(self) -> None:
        if shutil.which("git") is None:
            raise WorktreeError(
                user_message="git is not installed or not in PATH",
                suggested_action="Install git to use --worktree",
            )

    def is_git_repo(self, path: Path) -> bool:
        try:
            return _git(path, "rev-parse", "--git-dir").returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def branch_exists(self, repo_root: Path, branch: str) -> bool:
        try:
            result = _git(repo_root, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False
        return result.returncode == 0

    def add_worktree(
        self, repo_root: Path, worktree_path: Path, branch: str, base: str | None
    ) -> None:
        self.check_available()
        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        if self.branch_exists(repo_root, branch):
            args = ["worktree", "add", str(worktree_path), branch]
        else:
            args = ["worktree", "add", "-b", branch, str(worktree_path)]
            if base:
                args.append(base)
        try:
            result = _git(repo_root, *args, timeout=GIT_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired as e:
            raise WorktreeError(user_message=f"git worktree add timed out for {branch}") from e
        if result.returncode != 0:
            raise WorktreeError(
                user_message=f"git worktree add failed: {result.stderr.strip() or result.returncode}",
                debug_context=" ".join(args),
            )

    def is_worktree(self, path: Path) -> bool:
        # A linked worktree has a .git file pointing at the main repository
        return (path / ".git").is_file()
