"""Local checkout backend: disk-backed file store and git-based publishing."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from ..schema import PullRequestRef
from ..structured import FileOperation
from ..tools.vcs import GitError, GitRepository
from .base import FileContent, HostingError

LOGGER = logging.getLogger(__name__)

__all__ = ["LocalFileStore", "LocalGitBackend", "PullRequestOpener"]


class PullRequestOpener(Protocol):
    def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequestRef: ...


class LocalFileStore:
    """Reads files from a git checkout; ``ref`` reads go through ``git show``."""

    def __init__(self, repo: GitRepository, *, search_patterns: Sequence[str] = ()) -> None:
        self._repo = repo
        self._search_patterns = tuple(search_patterns)

    @property
    def root(self) -> Path:
        return self._repo.root

    def read_file(self, path: str, ref: Optional[str] = None) -> FileContent:
        if ref:
            result = self._repo.git("show", f"{ref}:{path}", check=False)
            if result.returncode != 0:
                return FileContent(path=path, content="", exists=False)
            return FileContent(path=path, content=result.stdout, exists=True)

        target = (self._repo.root / path).resolve()
        try:
            target.relative_to(self._repo.root)
        except ValueError:
            raise HostingError(f"Path escapes the repository: {path}") from None
        if not target.is_file():
            return FileContent(path=path, content="", exists=False)
        return FileContent(path=path, content=target.read_text(encoding="utf-8", errors="replace"), exists=True)

    def read_files(self, paths: Sequence[str], ref: Optional[str] = None) -> Dict[str, FileContent]:
        results: Dict[str, FileContent] = {}
        for path in paths:
            try:
                results[path] = self.read_file(path, ref)
            except (HostingError, OSError) as error:
                LOGGER.warning("Could not read %s: %s", path, error)
        return results

    def search_files(self, keyword: str) -> List[str]:
        try:
            return self._repo.grep_files(keyword, *self._search_patterns)
        except GitError as error:
            LOGGER.warning("Search for '%s' failed: %s", keyword, error)
            return []


class LocalGitBackend:
    """Publishes from a local checkout: branch, one commit, push, then a pull request.

    Pull requests are delegated to ``pull_requests`` (usually the GitHub
    client). Without one the branch is only committed (and pushed when a
    remote is configured) and a ``file://`` reference is returned.
    """

    def __init__(
        self,
        repo: GitRepository,
        *,
        remote: Optional[str] = None,
        pull_requests: Optional[PullRequestOpener] = None,
    ) -> None:
        self._repo = repo
        self._remote = remote
        self._pull_requests = pull_requests

    def create_branch(self, name: str, base: str) -> None:
        existed = self._repo.branch_exists(name)
        self._repo.recreate_branch(name, base)
        if existed and self._remote:
            if self._repo.delete_remote_branch(self._remote, name):
                LOGGER.info("Deleted stale remote branch %s/%s", self._remote, name)
        LOGGER.info("Created branch %s from %s", name, base)

    def commit_files(self, branch: str, operations: Sequence[FileOperation], message: str) -> str:
        """Write ``operations`` to disk and commit exactly those paths in one commit."""
        if self._repo.current_branch() != branch:
            self._repo.git("checkout", branch)
        for operation in operations:
            target = self._repo.root / operation.path
            if operation.is_delete:
                if target.is_file():
                    target.unlink()
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(operation.content or "")

        pending = set(self._repo.working_tree_changes())
        paths = [operation.path for operation in operations if operation.path in pending]
        if not paths:
            raise GitError("Change set does not differ from the branch; nothing to commit.")
        try:
            sha = self._repo.commit_paths(paths, message)
        except GitError:
            LOGGER.warning("Commit to %s failed; restoring %d path(s)", branch, len(operations))
            self._repo.discard_paths([operation.path for operation in operations])
            raise
        LOGGER.info("Committed %d file(s) to %s (%s)", len(paths), branch, sha)
        return sha

    def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequestRef:
        if self._remote:
            self._repo.push(self._remote, branch, set_upstream=True)
        head = self._repo.head()
        if self._pull_requests is None:
            return PullRequestRef(url=f"file://{self._repo.root.as_posix()}#{branch}", branch=branch, commit_sha=head)
        ref = self._pull_requests.open_pull_request(branch, base, title, body)
        return ref.model_copy(update={"commit_sha": head})
