"""Collaborator interfaces consumed by the pipeline core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..schema import Issue, PullRequestInfo, PullRequestRef
from ..structured import FileOperation


class HostingError(RuntimeError):
    """Raised when the tracker or source-hosting backend rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.details: dict[str, Any] = dict(details or {})


class NotFoundError(HostingError):
    """Raised when the requested remote object does not exist."""


class BranchConflictError(HostingError):
    """Raised when a branch already exists at a different commit."""


@dataclass(frozen=True, slots=True)
class FileContent:
    """Result of reading a single path from a file store."""

    path: str
    content: str
    exists: bool
    sha: str | None = None


@runtime_checkable
class IssueSource(Protocol):
    def fetch_issue(self, issue_id: str) -> Issue: ...


@runtime_checkable
class IssueCommenter(Protocol):
    """Optional tracker capability used to link published pull requests."""

    def add_comment(self, issue_id: str, body: str) -> None: ...


@runtime_checkable
class FileStore(Protocol):
    def read_file(self, path: str, ref: str | None = None) -> FileContent: ...

    def read_files(self, paths: Sequence[str], ref: str | None = None) -> dict[str, FileContent]: ...

    def search_files(self, keyword: str) -> list[str]: ...


@runtime_checkable
class HostingBackend(Protocol):
    def create_branch(self, name: str, base: str) -> None: ...

    def commit_files(self, branch: str, operations: Sequence[FileOperation], message: str) -> str: ...

    def open_pull_request(self, branch: str, base: str, title: str, body: str) -> PullRequestRef: ...


@runtime_checkable
class ReviewBackend(Protocol):
    """Pull-request surface used by the reviewer feedback loop."""

    def get_pull_request(self, number: int) -> PullRequestInfo: ...

    def comment_on_pull_request(self, number: int, body: str) -> None: ...


__all__ = [
    "BranchConflictError",
    "FileContent",
    "FileStore",
    "HostingBackend",
    "HostingError",
    "IssueCommenter",
    "IssueSource",
    "NotFoundError",
    "ReviewBackend",
]
