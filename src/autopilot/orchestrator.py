"""Generate, validate, and repair change sets within a fixed attempt budget.

One run walks a small state machine::

    GENERATING(n) -> VALIDATING(n) -> ACCEPTED
                                   -> REPAIRING(n) -> VALIDATING(n + 1) ...
                                   -> EXHAUSTED

An empty change set is absence of output, not a failed validation: it sends
the run back to ``GENERATING(n + 1)`` with no repair context. Every attempt is
applied to a tree freshly reset to the baseline so a broken attempt never
leaks into the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Literal, Optional, Sequence, Tuple

from . import prompts
from .context_builder import ContextAssembler
from .models.llm_client import LLMClient
from .schema import Issue, PullRequestInfo
from .structured import ContextBundle, FileOperation
from .tools.changeset import ChangeSetParse, parse_change_set
from .tools.transcripts import TranscriptLog
from .tools.validation import UNAVAILABLE_VALIDATION, ValidationIssue, ValidationResult, Validator
from .tools.workspace import WorkingTreeProvider

LOGGER = logging.getLogger(__name__)

AttemptMode = Literal["generate", "repair", "feedback"]
Outcome = Literal["accepted", "exhausted"]

NO_OUTPUT_ERROR = "Model reply contained no usable file changes."


class PipelineState(str, Enum):
    GENERATING = "generating"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One generate-or-repair, parse, apply, validate cycle."""

    attempt_number: int
    mode: AttemptMode
    change_set: Tuple[FileOperation, ...] = ()
    validation: Optional[ValidationResult] = None
    summary: str = ""
    testing_notes: str = ""
    skipped_blocks: int = 0
    no_op: bool = False

    @property
    def paths(self) -> List[str]:
        return [operation.path for operation in self.change_set]


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Terminal value of one orchestrator run."""

    outcome: Outcome
    attempts: Tuple[AttemptRecord, ...]
    final_change_set: Tuple[FileOperation, ...]
    summary: str
    testing_notes: str = ""
    verified: bool = False
    errors: Tuple[ValidationIssue, ...] = ()
    transitions: Tuple[Tuple[PipelineState, int], ...] = field(default_factory=tuple)

    @property
    def accepted(self) -> bool:
        return self.outcome == "accepted"

    @property
    def no_op(self) -> bool:
        return self.accepted and not self.final_change_set and bool(self.attempts) and self.attempts[-1].no_op

    @property
    def validation(self) -> Optional[ValidationResult]:
        """Validation of the last attempt that reached the validator."""
        for attempt in reversed(self.attempts):
            if attempt.validation is not None:
                return attempt.validation
        return None


class RetryOrchestrator:
    """Drives model attempts against a working tree until one is accepted."""

    def __init__(
        self,
        client: LLMClient,
        tree: WorkingTreeProvider,
        validator: Validator = UNAVAILABLE_VALIDATION,
        *,
        assembler: ContextAssembler | None = None,
        max_attempts: int = 3,
        max_tokens: int = 16_000,
        max_errors: int = 10,
        reset_on_exhaustion: bool = True,
        guidance: Sequence[str] = (),
        transcripts: TranscriptLog | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._tree = tree
        self._validator = validator
        self._assembler = assembler
        self._max_attempts = max_attempts
        self._max_tokens = max_tokens
        self._max_errors = max_errors
        self._reset_on_exhaustion = reset_on_exhaustion
        self._guidance = tuple(guidance)
        self._transcripts = transcripts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def tree(self) -> WorkingTreeProvider:
        return self._tree

    def run(self, issue: Issue, bundle: ContextBundle | None = None) -> PipelineResult:
        """Produce an accepted or exhausted result for ``issue``.

        Model transport errors propagate with the tree left at its baseline.
        """
        if bundle is None:
            bundle = self._assembler.assemble_for_issue(issue) if self._assembler is not None else ContextBundle()
        prompt = prompts.build_generation_prompt(issue, bundle, guidance=self._guidance)
        return self._drive(issue, bundle, first_mode="generate", first_prompt=prompt, budget=self._max_attempts)

    def run_feedback(
        self,
        issue: Issue,
        bundle: ContextBundle,
        prior_change_set: Sequence[FileOperation],
        comment: str,
        author: str,
        *,
        pull_request: PullRequestInfo | None = None,
    ) -> PipelineResult:
        """Address one reviewer comment with a single attempt."""
        prompt = prompts.build_feedback_prompt(
            issue,
            bundle,
            prior_change_set,
            comment,
            author,
            pull_request=pull_request,
            guidance=self._guidance,
        )
        return self._drive(issue, bundle, first_mode="feedback", first_prompt=prompt, budget=1)

    # ------------------------------------------------------------------ engine
    def _drive(
        self,
        issue: Issue,
        bundle: ContextBundle,
        *,
        first_mode: AttemptMode,
        first_prompt: str,
        budget: int,
    ) -> PipelineResult:
        attempts: List[AttemptRecord] = []
        transitions: List[Tuple[PipelineState, int]] = []
        number = 1
        mode: AttemptMode = first_mode
        prompt = first_prompt
        last_errors: Tuple[ValidationIssue, ...] = ()

        def enter(state: PipelineState, n: int) -> None:
            transitions.append((state, n))
            LOGGER.info("%s: %s(%d)", issue.identifier, state.name, n)

        def finish(outcome: Outcome, *, verified: bool = False, errors: Tuple[ValidationIssue, ...] = ()) -> PipelineResult:
            enter(PipelineState.ACCEPTED if outcome == "accepted" else PipelineState.EXHAUSTED, number)
            if outcome == "exhausted" and self._reset_on_exhaustion:
                self._tree.reset()
            return self._result(outcome, attempts, transitions, verified=verified, errors=errors)

        enter(PipelineState.GENERATING, number)

        while True:
            self._tree.reset()
            parsed = self._ask(prompt, issue, mode, number)

            if parsed.is_empty:
                attempts.append(self._record(number, mode, parsed, None))
                if parsed.no_op:
                    LOGGER.info("%s: model reported that no change is required", issue.identifier)
                    return finish("accepted")
                errors = last_errors or (ValidationIssue(message=NO_OUTPUT_ERROR),)
                if number >= budget:
                    return finish("exhausted", errors=errors)
                number += 1
                mode = "generate"
                prompt = prompts.build_generation_prompt(issue, bundle, guidance=self._guidance)
                enter(PipelineState.GENERATING, number)
                continue

            validation = self._apply_and_validate(parsed, enter, number)
            record = self._record(number, mode, parsed, validation)
            attempts.append(record)

            if validation.unavailable:
                LOGGER.warning("%s: accepting attempt %d without validation", issue.identifier, number)
                return finish("accepted", verified=False)
            if validation.success:
                return finish("accepted", verified=True)

            last_errors = validation.errors[: self._max_errors]
            if number >= budget:
                return finish("exhausted", errors=last_errors)

            enter(PipelineState.REPAIRING, number)
            prompt = prompts.build_repair_prompt(
                issue,
                bundle,
                record.change_set,
                validation,
                guidance=self._guidance,
                max_errors=self._max_errors,
            )
            mode = "repair"
            number += 1

    def _ask(self, prompt: str, issue: Issue, mode: AttemptMode, number: int) -> ChangeSetParse:
        logger = self._transcripts.attempt_logger(mode, issue.identifier, number) if self._transcripts else None
        reply = self._client.complete(
            prompt,
            self._max_tokens,
            system_prompt=prompts.SYSTEM_PREAMBLE,
            logger=logger,
        )
        return parse_change_set(reply, path_exists=self._tree.exists)

    def _apply_and_validate(
        self,
        parsed: ChangeSetParse,
        enter: Callable[[PipelineState, int], None],
        number: int,
    ) -> ValidationResult:
        try:
            self._tree.apply(parsed.operations)
        except (OSError, ValueError) as error:
            LOGGER.warning("Unable to apply attempt %d: %s", number, error)
            return ValidationResult(
                status="failed",
                errors=(ValidationIssue(message=f"Change set could not be applied: {error}"),),
                raw_output=str(error),
            )
        enter(PipelineState.VALIDATING, number)
        written = [operation.path for operation in parsed.operations if not operation.is_delete]
        return self._validator.validate(self._tree.root, paths=written)

    @staticmethod
    def _record(
        number: int,
        mode: AttemptMode,
        parsed: ChangeSetParse,
        validation: Optional[ValidationResult],
    ) -> AttemptRecord:
        return AttemptRecord(
            attempt_number=number,
            mode=mode,
            change_set=parsed.operations,
            validation=validation,
            summary=parsed.summary,
            testing_notes=parsed.testing_notes,
            skipped_blocks=parsed.skipped,
            no_op=parsed.no_op,
        )

    @staticmethod
    def _result(
        outcome: Outcome,
        attempts: List[AttemptRecord],
        transitions: List[Tuple[PipelineState, int]],
        *,
        verified: bool,
        errors: Tuple[ValidationIssue, ...],
    ) -> PipelineResult:
        last = attempts[-1]
        if outcome == "accepted":
            change_set = last.change_set
            summary = last.summary or (
                "No code changes were required." if not change_set else f"Updated {len(change_set)} file(s)."
            )
        else:
            # Surface the most recent attempt that produced files for manual inspection.
            with_files = next((attempt for attempt in reversed(attempts) if attempt.change_set), None)
            change_set = with_files.change_set if with_files is not None else ()
            detail = (with_files.summary if with_files is not None else "") or "No passing change set was produced."
            summary = f"Exhausted {len(attempts)} attempt(s) without passing validation. {detail}"
        testing_notes = last.testing_notes
        return PipelineResult(
            outcome=outcome,
            attempts=tuple(attempts),
            final_change_set=change_set,
            summary=summary,
            testing_notes=testing_notes,
            verified=verified,
            errors=errors,
            transitions=tuple(transitions),
        )


__all__ = [
    "AttemptMode",
    "AttemptRecord",
    "NO_OUTPUT_ERROR",
    "PipelineResult",
    "PipelineState",
    "RetryOrchestrator",
]
