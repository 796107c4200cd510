"""End-to-end entry points: issue to pull request, and reviewer feedback to follow-up commit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from .config import PipelineSettings
from .context_builder import ContextAssembler
from .hosting.base import (
    FileStore,
    HostingBackend,
    HostingError,
    IssueCommenter,
    IssueSource,
    ReviewBackend,
)
from .hosting.github import GitHubClient
from .hosting.linear import LinearIssueSource
from .hosting.local import LocalFileStore, LocalGitBackend
from .models.llm_client import LLMClient
from .orchestrator import PipelineResult, RetryOrchestrator
from .publisher import Publisher, render_feedback_commit_message
from .schema import Issue, PullRequestInfo, PullRequestRef, ReviewFeedback
from .structured import ContextBundle, FileOperation
from .tools.transcripts import TranscriptLog
from .tools.validation import UNAVAILABLE_VALIDATION, ValidationAdapter, Validator
from .tools.vcs import GitRepository
from .tools.workspace import InMemoryWorkingTree, LocalWorkingTree, WorkingTreeProvider
from .utils.slug import branch_name_for_issue

LOGGER = logging.getLogger(__name__)

TreeFactory = Callable[[Optional[str]], WorkingTreeProvider]

IN_PROGRESS_STATE = "in progress"
BOT_MARKER = "[bot]"
NO_CHANGES_REPLY = "No code changes needed based on your feedback."


@dataclass(frozen=True, slots=True)
class AutomationOutcome:
    issue: Issue
    branch: str
    result: PipelineResult
    pull_request: Optional[PullRequestRef] = None

    @property
    def published(self) -> bool:
        return self.pull_request is not None


@dataclass(frozen=True, slots=True)
class FeedbackOutcome:
    pull_request: PullRequestInfo
    result: PipelineResult
    commit_sha: Optional[str] = None
    reply: str = ""

    @property
    def updated(self) -> bool:
        return self.commit_sha is not None


# ---- trigger predicates ---------------------------------------------------


def should_process_issue_event(payload: Mapping[str, Any]) -> bool:
    """Return True for an issue update whose state is now "In Progress"."""
    if payload.get("type") != "Issue" or payload.get("action") != "update":
        return False
    data = payload.get("data")
    if not isinstance(data, Mapping):
        return False
    state = data.get("state")
    if not isinstance(state, Mapping):
        return False
    name = state.get("name")
    return isinstance(name, str) and name.strip().lower() == IN_PROGRESS_STATE


def should_process_comment(body: str, author: str, triggers: Sequence[str]) -> bool:
    """Return True when a human comment mentions or starts with a trigger token."""
    if BOT_MARKER in (author or ""):
        return False
    normalized = (body or "").strip().lower()
    for trigger in triggers:
        token = trigger.strip().lower()
        if not token:
            continue
        if token.startswith("/"):
            if normalized.startswith(token):
                return True
        elif token in normalized:
            return True
    return False


# ---- reply rendering ------------------------------------------------------


def render_feedback_reply(result: PipelineResult) -> str:
    if result.accepted and not result.final_change_set:
        reason = result.summary.strip()
        return f"{NO_CHANGES_REPLY}\n\n{reason}" if reason else NO_CHANGES_REPLY
    if not result.accepted:
        lines = ["I could not produce a change that passes the build check:", ""]
        lines.extend(f"- {issue.render()}" for issue in result.errors)
        return "\n".join(lines)
    files = "\n".join(f"- {operation.path}" for operation in result.final_change_set)
    return (
        "I've updated the code based on your feedback.\n\n"
        f"**Changes made:**\n{files}\n\n"
        f"**Summary:**\n{result.summary.strip() or '(none provided)'}\n\n"
        "The changes have been pushed to this PR."
    )


def render_error_reply(error: BaseException) -> str:
    return f"I encountered an error processing your feedback.\n\nError: {error}"


def issue_from_pull_request(pull_request: PullRequestInfo) -> Issue:
    return Issue(
        id=str(pull_request.number),
        identifier=f"PR-{pull_request.number}",
        title=pull_request.title,
        description=pull_request.body,
        url=pull_request.url,
        branch_name=pull_request.head_ref,
    )


# ---- automation -----------------------------------------------------------


class IssueAutomation:
    """Wires the tracker, model, working tree, and hosting backend together.

    With ``repo`` set the pipeline runs against a local checkout: the issue
    branch is created before generation so the working tree edits land on
    it, and publishing only commits and pushes. Without ``repo`` everything
    goes through the hosting API and the working tree is an overlay.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        *,
        issues: IssueSource,
        store: FileStore,
        backend: HostingBackend,
        client: LLMClient,
        tree_factory: TreeFactory,
        validator: Validator = UNAVAILABLE_VALIDATION,
        review: Optional[ReviewBackend] = None,
        repo: Optional[GitRepository] = None,
        transcripts: Optional[TranscriptLog] = None,
    ) -> None:
        self.settings = settings
        self._issues = issues
        self._store = store
        self._backend = backend
        self._client = client
        self._tree_factory = tree_factory
        self._validator = validator
        self._review = review
        self._repo = repo
        self._transcripts = transcripts
        self._publisher = Publisher(backend, base_branch=settings.base_branch)

    @property
    def local(self) -> bool:
        return self._repo is not None

    def _assembler(self, ref: Optional[str]) -> ContextAssembler:
        settings = self.settings
        return ContextAssembler(
            self._store,
            allowed_suffixes=settings.allowed_suffixes,
            max_keywords=settings.max_keywords,
            max_search_keywords=settings.max_search_keywords,
            max_results_per_keyword=settings.max_results_per_keyword,
            max_extra_files=settings.max_extra_files,
            ref=ref,
        )

    def _orchestrator(self, tree: WorkingTreeProvider, assembler: ContextAssembler) -> RetryOrchestrator:
        settings = self.settings
        return RetryOrchestrator(
            self._client,
            tree,
            self._validator,
            assembler=assembler,
            max_attempts=settings.max_attempts,
            max_tokens=settings.max_tokens,
            max_errors=settings.max_errors,
            reset_on_exhaustion=settings.reset_on_exhaustion,
            guidance=settings.guidance,
            transcripts=self._transcripts,
        )

    # ------------------------------------------------------------------ issues
    def process_issue(self, issue_id: str, *, publish: bool = True) -> AutomationOutcome:
        """Run the pipeline for ``issue_id`` and publish the result when eligible."""
        issue = self._issues.fetch_issue(issue_id)
        branch = branch_name_for_issue(issue.identifier, issue.title, issue.branch_name)
        base = self.settings.base_branch
        LOGGER.info("Processing %s (%s) on branch %s", issue.identifier, issue.title, branch)

        if self.local and publish:
            self._backend.create_branch(branch, base)
        ref = None if self.local else base
        tree = self._tree_factory(ref)
        assembler = self._assembler(ref)
        result = self._orchestrator(tree, assembler).run(issue, assembler.assemble_for_issue(issue))
        LOGGER.info("%s finished as %s after %d attempt(s)", issue.identifier, result.outcome, len(result.attempts))

        if not publish:
            tree.reset()
            return AutomationOutcome(issue=issue, branch=branch, result=result)

        eligible = result.accepted or self.settings.publish_exhausted
        if not result.final_change_set or not eligible:
            if result.no_op:
                LOGGER.info("%s: no changes required", issue.identifier)
            return AutomationOutcome(issue=issue, branch=branch, result=result)

        pull_request = self._publisher.publish_result(
            issue,
            result,
            branch,
            allow_exhausted=self.settings.publish_exhausted,
            create_branch=not self.local,
        )
        self._link_pull_request(issue, pull_request)
        return AutomationOutcome(issue=issue, branch=branch, result=result, pull_request=pull_request)

    def _link_pull_request(self, issue: Issue, pull_request: PullRequestRef) -> None:
        if not isinstance(self._issues, IssueCommenter):
            return
        try:
            self._issues.add_comment(issue.id, f"Pull request opened: {pull_request.url}")
        except HostingError as error:
            LOGGER.warning("Could not link %s to %s: %s", pull_request.url, issue.identifier, error)

    # ---------------------------------------------------------------- feedback
    def process_feedback(self, feedback: ReviewFeedback) -> FeedbackOutcome:
        """Address one reviewer comment with a single attempt and reply on the PR.

        Any failure is reported on the pull request and then re-raised.
        """
        review = self._review
        if review is None:
            raise HostingError("No review backend configured for pull request feedback.")
        LOGGER.info("Processing feedback from %s on PR #%d", feedback.author, feedback.pr_number)
        try:
            pull_request = review.get_pull_request(feedback.pr_number)
            if self._repo is not None:
                self._repo.git("checkout", pull_request.head_ref)
            ref = None if self.local else pull_request.head_ref
            prior = self._current_files(pull_request, ref)
            issue = issue_from_pull_request(pull_request)
            assembler = self._assembler(ref)
            related = assembler.assemble_for_issue(issue)
            bundle = ContextBundle((path, content) for path, content in related.items() if path not in pull_request.files)
            result = self._orchestrator(self._tree_factory(ref), assembler).run_feedback(
                issue,
                bundle,
                prior,
                feedback.comment,
                feedback.author,
                pull_request=pull_request,
            )
            sha = None
            if result.accepted and result.final_change_set:
                sha = self._publisher.update(
                    pull_request.head_ref,
                    result.final_change_set,
                    render_feedback_commit_message(result, feedback.author),
                )
                if self._repo is not None and self.settings.remote:
                    self._repo.push(self.settings.remote, pull_request.head_ref)
            reply = render_feedback_reply(result)
            review.comment_on_pull_request(pull_request.number, reply)
        except Exception as error:
            LOGGER.error("Feedback on PR #%d failed: %s", feedback.pr_number, error)
            self._reply_quietly(review, feedback.pr_number, render_error_reply(error))
            raise
        return FeedbackOutcome(pull_request=pull_request, result=result, commit_sha=sha, reply=reply)

    def _current_files(self, pull_request: PullRequestInfo, ref: Optional[str]) -> list[FileOperation]:
        contents = self._store.read_files(list(pull_request.files), ref)
        return [
            FileOperation(path=path, action="modify", content=content.content)
            for path, content in contents.items()
            if content.exists
        ]

    @staticmethod
    def _reply_quietly(review: ReviewBackend, number: int, body: str) -> None:
        try:
            review.comment_on_pull_request(number, body)
        except HostingError as error:
            LOGGER.warning("Could not reply on PR #%d: %s", number, error)


# ---- wiring ---------------------------------------------------------------


def build_automation(settings: PipelineSettings, *, client: LLMClient) -> IssueAutomation:
    """Construct the production collaborators described by ``settings``."""
    issues = LinearIssueSource(api_url=settings.linear_api_url)
    github = (
        GitHubClient(
            settings.github_owner,
            settings.github_repo,
            api_url=settings.github_api_url,
            search_extension=settings.github_search_extension,
            default_ref=settings.base_branch,
        )
        if settings.has_github
        else None
    )
    transcripts = TranscriptLog(settings.transcripts_root)

    if settings.mode == "remote":
        if github is None:
            raise HostingError("Remote mode requires github.owner and github.repo.")
        return IssueAutomation(
            settings,
            issues=issues,
            store=github,
            backend=github,
            client=client,
            tree_factory=lambda ref: InMemoryWorkingTree(github, ref=ref),
            review=github,
            transcripts=transcripts,
        )

    repo = GitRepository(settings.repo_root)
    patterns = tuple(f"*{suffix}" for suffix in settings.allowed_suffixes)
    validator: Validator = (
        ValidationAdapter(
            settings.validation_command,
            success_marker=settings.success_marker,
            timeout=settings.validation_timeout,
            max_errors=settings.max_errors,
            max_warnings=settings.max_warnings,
        )
        if settings.validation_command
        else UNAVAILABLE_VALIDATION
    )
    return IssueAutomation(
        settings,
        issues=issues,
        store=LocalFileStore(repo, search_patterns=patterns),
        backend=LocalGitBackend(repo, remote=settings.remote, pull_requests=github),
        client=client,
        tree_factory=lambda ref: LocalWorkingTree(repo.root),
        validator=validator,
        review=github,
        repo=repo,
        transcripts=transcripts,
    )


__all__ = [
    "AutomationOutcome",
    "FeedbackOutcome",
    "IssueAutomation",
    "NO_CHANGES_REPLY",
    "build_automation",
    "issue_from_pull_request",
    "render_error_reply",
    "render_feedback_reply",
    "should_process_comment",
    "should_process_issue_event",
]
