"""Tool integrations used by the pipeline."""

from .changeset import NO_OP_MARKER, ChangeSetParse, extract_section, parse_change_set
from .transcripts import TranscriptLog
from .validation import UNAVAILABLE_VALIDATION, ValidationAdapter, ValidationIssue, ValidationResult
from .vcs import GitError, GitRepository
from .workspace import InMemoryWorkingTree, LocalWorkingTree, WorkingTreeProvider

__all__ = [
    "NO_OP_MARKER",
    "UNAVAILABLE_VALIDATION",
    "ChangeSetParse",
    "GitError",
    "GitRepository",
    "InMemoryWorkingTree",
    "LocalWorkingTree",
    "TranscriptLog",
    "ValidationAdapter",
    "ValidationIssue",
    "ValidationResult",
    "WorkingTreeProvider",
    "extract_section",
    "parse_change_set",
]
