"""Turn an accepted pipeline result into a branch, one commit, and a pull request."""

from __future__ import annotations

import logging
from typing import Sequence

from .hosting.base import HostingBackend
from .orchestrator import PipelineResult
from .schema import Issue, PullRequestRef
from .structured import FileOperation

LOGGER = logging.getLogger(__name__)

UNVERIFIED_NOTE = "unverified (no build check ran)"


class PublishError(RuntimeError):
    """Raised when a result is not eligible for publication."""


def render_commit_message(issue: Issue, result: PipelineResult) -> str:
    summary = result.summary.strip() or "Automated implementation."
    return f"feat: {issue.title} ({issue.identifier})\n\n{summary}\n\nFixes {issue.identifier}"


def render_feedback_commit_message(result: PipelineResult, author: str) -> str:
    summary = result.summary.strip() or "Address review feedback."
    return f"refactor: Address PR feedback from {author}\n\n{summary}"


def render_pull_request_title(issue: Issue) -> str:
    return f"{issue.title} ({issue.identifier})"


def _validation_section(result: PipelineResult) -> str:
    validation = result.validation
    if result.verified and validation is not None and validation.success:
        lines = ["Build check passed."]
        if validation.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"- {issue.render()}" for issue in validation.warnings)
        return "\n".join(lines)
    if result.accepted:
        return f"Status: {UNVERIFIED_NOTE}."
    lines = [f"Failed after {len(result.attempts)} attempt(s). Remaining errors:"]
    lines.extend(f"- {issue.render()}" for issue in result.errors)
    return "\n".join(lines)


def render_pull_request_body(issue: Issue, result: PipelineResult) -> str:
    files = "\n".join(f"- `{operation.path}` ({operation.action})" for operation in result.final_change_set)
    sections = [
        "## Summary",
        "",
        f"Fixes **{issue.identifier}: {issue.title}**",
        "",
        result.summary.strip(),
        "",
        "## Files Changed",
        "",
        files or "(none)",
        "",
        "## Validation",
        "",
        _validation_section(result),
        "",
        "## Testing Notes",
        "",
        result.testing_notes.strip() or "(none provided)",
        "",
        "---",
        "",
        f"Automated implementation, {len(result.attempts)} attempt(s).",
    ]
    if issue.url:
        sections.append(f"Issue: {issue.url}")
    return "\n".join(sections) + "\n"


class Publisher:
    """Publishes change sets through a :class:`HostingBackend`.

    The backend commits every operation in one commit; nothing here writes
    files one at a time.
    """

    def __init__(self, backend: HostingBackend, *, base_branch: str = "main") -> None:
        self._backend = backend
        self._base_branch = base_branch

    def publish(
        self,
        branch: str,
        change_set: Sequence[FileOperation],
        commit_message: str,
        *,
        title: str,
        body: str,
        base: str | None = None,
        create_branch: bool = True,
    ) -> PullRequestRef:
        """Create ``branch`` (recreating it on conflict), commit, and open the pull request."""
        if not change_set:
            raise PublishError("Refusing to publish an empty change set.")
        target = base or self._base_branch
        if create_branch:
            self._backend.create_branch(branch, target)
        sha = self._backend.commit_files(branch, list(change_set), commit_message)
        ref = self._backend.open_pull_request(branch, target, title, body)
        LOGGER.info("Published %s as %s", branch, ref.url)
        if ref.commit_sha is None:
            ref = ref.model_copy(update={"commit_sha": sha})
        return ref

    def publish_result(
        self,
        issue: Issue,
        result: PipelineResult,
        branch: str,
        *,
        allow_exhausted: bool = False,
        create_branch: bool = True,
    ) -> PullRequestRef:
        """Publish ``result`` for ``issue`` with the standard title, body, and message."""
        if not result.accepted and not allow_exhausted:
            raise PublishError(f"{issue.identifier}: exhausted results are not published.")
        return self.publish(
            branch,
            result.final_change_set,
            render_commit_message(issue, result),
            title=render_pull_request_title(issue),
            body=render_pull_request_body(issue, result),
            create_branch=create_branch,
        )

    def update(self, branch: str, change_set: Sequence[FileOperation], commit_message: str) -> str:
        """Commit ``change_set`` on top of an existing pull request branch."""
        if not change_set:
            raise PublishError("Refusing to publish an empty change set.")
        sha = self._backend.commit_files(branch, list(change_set), commit_message)
        LOGGER.info("Updated %s with %d file(s)", branch, len(change_set))
        return sha


__all__ = [
    "PublishError",
    "Publisher",
    "UNVERIFIED_NOTE",
    "render_commit_message",
    "render_feedback_commit_message",
    "render_pull_request_body",
    "render_pull_request_title",
]
