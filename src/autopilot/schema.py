"""Typed records exchanged with the issue tracker and hosting backends."""

from __future__ import annotations

from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordModel(BaseModel):
    """Base Pydantic model with strict, immutable field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Issue(RecordModel):
    """Tracked issue driving a single pipeline run."""

    id: str
    identifier: str
    title: str
    description: str = ""
    priority: Optional[str] = None
    labels: Tuple[str, ...] = ()
    url: str = ""
    branch_name: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Optional[str]:
        if value is None or value == "" or value == 0:
            return None
        return str(value)

    def label_text(self) -> Optional[str]:
        """Return the comma-separated label list or ``None`` when unlabelled."""
        if not self.labels:
            return None
        return ", ".join(self.labels)


class PullRequestRef(RecordModel):
    """Reference to a pull request opened or updated by the publisher."""

    url: str
    branch: str
    number: Optional[int] = None
    commit_sha: Optional[str] = None


class PullRequestInfo(RecordModel):
    """Pull request details required to address reviewer feedback."""

    number: int
    title: str
    body: str = ""
    head_ref: str
    base_ref: str = "main"
    url: str = ""
    files: Tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("body", mode="before")
    @classmethod
    def _coerce_body(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ReviewFeedback(RecordModel):
    """Reviewer comment that asks the automation for a follow-up change."""

    pr_number: int
    comment: str
    author: str
    comment_id: Optional[int] = None


__all__ = [
    "Issue",
    "PullRequestInfo",
    "PullRequestRef",
    "RecordModel",
    "ReviewFeedback",
]
