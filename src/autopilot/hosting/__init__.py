"""Issue-tracker and source-hosting backends."""

from .base import (
    BranchConflictError,
    FileContent,
    FileStore,
    HostingBackend,
    HostingError,
    IssueCommenter,
    IssueSource,
    NotFoundError,
    ReviewBackend,
)
from .github import GitHubClient
from .linear import LinearIssueSource
from .local import LocalFileStore, LocalGitBackend

__all__ = [
    "BranchConflictError",
    "FileContent",
    "FileStore",
    "GitHubClient",
    "HostingBackend",
    "HostingError",
    "IssueCommenter",
    "IssueSource",
    "LinearIssueSource",
    "LocalFileStore",
    "LocalGitBackend",
    "NotFoundError",
    "ReviewBackend",
]
