"""Minimal git helpers
The helpers below cover what the local working tree and local publisher need:
listing and searching tracked files, recreating branches, staging a change set,
and committing it in one step.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Set

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        process = subprocess.run(
            command,
            cwd=self.root,
            capture_output=True,
            text=False,
            check=False,
        )
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    def list_tracked_paths(self, *patterns: str) -> List[str]:
        """Return tracked POSIX paths matching the git pathspec ``patterns``."""

        args: List[str] = ["ls-files", "-z"]
        if patterns:
            args.extend(["--", *patterns])

        result = self._run_git(args, check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unable to list tracked paths"
            raise GitError(f"git ls-files failed: {message}")
        return [entry for entry in result.stdout.split("\0") if entry]

    def grep_files(self, keyword: str, *patterns: str) -> List[str]:
        """Return tracked files containing ``keyword`` (case-insensitive, fixed string)."""

        args: List[str] = ["grep", "-l", "-i", "-F", "-e", keyword]
        if patterns:
            args.extend(["--", *patterns])
        result = self._run_git(args, check=False)
        # git grep exits with 1 when nothing matched.
        if result.returncode == 1:
            return []
        if result.returncode != 0:
            message = result.stderr.strip() or "unable to search tracked files"
            raise GitError(f"git grep failed: {message}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def branch_exists(self, name: str) -> bool:
        result = self._run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        return result.returncode == 0

    def recreate_branch(self, name: str, base: str) -> None:
        """Check out ``name`` freshly created from ``base``, discarding any old branch."""

        if self.current_branch() == name:
            self._run_git(["checkout", base], check=True)
        if self.branch_exists(name):
            self._run_git(["branch", "-D", name], check=True)
        self._run_git(["checkout", "-b", name, base], check=True)

    def head(self) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------- repo status
    def _status_entries(self) -> List[tuple[str, str]]:
        result = self._run_git(["status", "--porcelain", "--untracked-files=all"], check=True)
        entries: List[tuple[str, str]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            entries.append((status.strip() or status, raw_path.strip().strip('"')))
        return entries

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[str]:
        """Return the sorted set of paths with pending modifications."""

        paths: Set[str] = set()
        for status, path in self._status_entries():
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths)

    # ----------------------------------------------------------------- commits
    def commit_paths(self, paths: Sequence[str], message: str) -> str:
        """Stage exactly ``paths`` (including deletions) and commit them together.

        The index is reset when staging or the commit fails so no half-staged
        change set survives a failed publish.
        """

        if not paths:
            raise GitError("Refusing to create an empty commit.")
        try:
            self._run_git(["add", "--all", "--", *paths], check=True)
            commit = self._run_git(["commit", "-m", message], check=False)
            if commit.returncode != 0:
                output = commit.stderr.strip() or commit.stdout.strip() or "unknown git error"
                raise GitError(f"git commit failed: {output}")
        except GitError:
            self._run_git(["reset", "--quiet", "--", *paths], check=False)
            raise
        rev = self._run_git(["rev-parse", "HEAD"], check=True)
        return rev.stdout.strip()

    def discard_paths(self, paths: Sequence[str]) -> None:
        """Return ``paths`` in the working tree to their committed state.

        Tracked paths are checked out from ``HEAD``; anything else is removed
        together with directories left empty by the removal.
        """

        if not paths:
            return
        tracked = set(self.list_tracked_paths(*paths))
        if tracked:
            self._run_git(["checkout", "HEAD", "--", *sorted(tracked)], check=True)
        for path in paths:
            if path in tracked:
                continue
            target = self.root / path
            if target.is_file():
                target.unlink()
            directory = target.parent
            while directory != self.root and directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
                directory = directory.parent

    # -------------------------------------------------------------- remotes
    def push(
        self,
        remote: str,
        branch: str,
        *,
        set_upstream: bool = False,
        force: bool = False,
    ) -> None:
        """Push ``branch`` to ``remote`` applying requested flags."""

        args: List[str] = ["push"]
        if set_upstream:
            args.append("-u")
        if force:
            args.append("--force-with-lease")
        args.extend([remote, branch])
        self._run_git(args, check=True)

    def delete_remote_branch(self, remote: str, branch: str) -> bool:
        """Delete ``branch`` on ``remote``; returns ``False`` when it was absent."""

        result = self._run_git(["push", remote, "--delete", branch], check=False)
        return result.returncode == 0


__all__ = ["GitError", "GitRepository"]
