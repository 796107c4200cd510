from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Sequence

import pytest

from autopilot import prompts
from autopilot.context_builder import ContextAssembler
from autopilot.models.llm_client import LLMTransportError
from autopilot.orchestrator import NO_OUTPUT_ERROR, PipelineState, RetryOrchestrator
from autopilot.schema import Issue
from autopilot.structured import ContextBundle, FileOperation
from autopilot.tools.changeset import NO_OP_MARKER
from autopilot.tools.transcripts import TranscriptLog
from autopilot.tools.validation import ValidationAdapter, ValidationIssue, ValidationResult
from autopilot.tools.vcs import GitRepository
from autopilot.tools.workspace import InMemoryWorkingTree, LocalWorkingTree
from conftest import FailingClient, MemoryStore, ScriptedClient, file_block, reply


class ScriptedValidator:
    """Returns queued results and records the tree state it was asked to check."""

    def __init__(self, results: Sequence[ValidationResult]) -> None:
        self._results = list(results)
        self.calls: List[List[str]] = []
        self.seen_files: List[List[str]] = []

    def validate(self, workdir: Path | None, *, paths: Sequence[str] = ()) -> ValidationResult:
        self.calls.append(list(paths))
        if workdir is not None:
            self.seen_files.append(sorted(p.relative_to(workdir).as_posix() for p in workdir.rglob("*.py")))
        return self._results.pop(0)


def _failed(*messages: str) -> ValidationResult:
    return ValidationResult(
        status="failed",
        errors=tuple(ValidationIssue(message=message, file="src/app/calculator.py", line=index) for index, message in enumerate(messages, 1)),
    )


PASSED = ValidationResult(status="passed")


@pytest.fixture()
def issue() -> Issue:
    return Issue(id="1", identifier="ENG-1", title="Add subtract", description="Add subtract to `src/app/calculator.py`.")


def test_single_create_block_is_accepted_unverified(issue: Issue) -> None:
    client = ScriptedClient([reply(file_block("src/app/subtract.py", "def subtract(a, b):\n    return a - b\n"))])
    tree = InMemoryWorkingTree(MemoryStore())

    result = RetryOrchestrator(client, tree).run(issue, ContextBundle())

    assert result.accepted
    assert not result.verified
    assert len(result.attempts) == 1
    assert result.final_change_set == (
        FileOperation(path="src/app/subtract.py", action="create", content="def subtract(a, b):\n    return a - b\n"),
    )
    assert result.transitions == (
        (PipelineState.GENERATING, 1),
        (PipelineState.VALIDATING, 1),
        (PipelineState.ACCEPTED, 1),
    )


def test_malformed_block_advances_without_repair_prompt(issue: Issue) -> None:
    malformed = "### FILE: src/app/calculator.py\n```python\nunfinished = True\n"
    good = reply(file_block("src/app/calculator.py", "fixed = True\n"))
    client = ScriptedClient([malformed, good])
    tree = InMemoryWorkingTree(MemoryStore(files={"src/app/calculator.py": "old = 1\n"}))

    result = RetryOrchestrator(client, tree).run(issue, ContextBundle())

    assert result.accepted
    assert [attempt.mode for attempt in result.attempts] == ["generate", "generate"]
    assert result.attempts[0].skipped_blocks == 1
    assert "failed validation" not in client.prompts[1]
    assert client.prompts[1].startswith("You will implement a complete solution")
    assert (PipelineState.REPAIRING, 1) not in result.transitions
    assert result.final_change_set[0].action == "modify"


def test_repair_after_failed_validation_uses_second_change_set(git_repo: Path, issue: Issue) -> None:
    first = reply(file_block("src/app/calculator.py", "def add(a, b)\n    return a + b\n"), summary="First try.")
    second = reply(file_block("src/app/calculator.py", "def add(a, b):\n    return a + b\n"), summary="Fixed syntax.")
    client = ScriptedClient([first, second])
    validator = ScriptedValidator([_failed("expected ':'", "invalid syntax"), PASSED])
    tree = LocalWorkingTree(git_repo)

    result = RetryOrchestrator(client, tree, validator).run(issue, ContextBundle())

    assert result.accepted
    assert result.verified
    assert len(result.attempts) == 2
    assert result.final_change_set[0].content == "def add(a, b):\n    return a + b\n"
    assert result.summary == "Fixed syntax."
    assert [attempt.mode for attempt in result.attempts] == ["generate", "repair"]
    repair_prompt = client.prompts[1]
    assert "1. src/app/calculator.py:1 - expected ':'" in repair_prompt
    assert "2. src/app/calculator.py:2 - invalid syntax" in repair_prompt
    assert "def add(a, b)\n    return a + b" in repair_prompt
    assert validator.calls == [["src/app/calculator.py"], ["src/app/calculator.py"]]


def test_all_attempts_failing_exhausts_with_last_errors(git_repo: Path, issue: Issue) -> None:
    original = (git_repo / "src/app/calculator.py").read_text(encoding="utf-8")
    replies = [reply(file_block("src/app/calculator.py", f"broken_{index}(\n")) for index in range(3)]
    client = ScriptedClient(replies)
    validator = ScriptedValidator([_failed("first"), _failed("second"), _failed("third a", "third b")])

    result = RetryOrchestrator(client, LocalWorkingTree(git_repo), validator, max_attempts=3).run(issue, ContextBundle())

    assert not result.accepted
    assert result.outcome == "exhausted"
    assert len(result.attempts) == 3
    assert [error.message for error in result.errors] == ["third a", "third b"]
    assert result.final_change_set[0].content == "broken_2(\n"
    assert result.summary.startswith("Exhausted 3 attempt(s)")
    assert (git_repo / "src/app/calculator.py").read_text(encoding="utf-8") == original
    assert len(client.prompts) == 3


def test_budget_bounds_model_calls_when_every_reply_is_empty(issue: Issue) -> None:
    client = ScriptedClient(["nothing useful"] * 5)

    result = RetryOrchestrator(client, InMemoryWorkingTree(MemoryStore()), max_attempts=4).run(issue, ContextBundle())

    assert result.outcome == "exhausted"
    assert len(client.prompts) == 4
    assert len(result.attempts) == 4
    assert result.errors[0].message == NO_OUTPUT_ERROR
    assert result.final_change_set == ()


def test_empty_repair_falls_back_to_generation(git_repo: Path, issue: Issue) -> None:
    client = ScriptedClient(
        [
            reply(file_block("src/app/calculator.py", "bad(\n")),
            "I am not sure what to change.",
            reply(file_block("src/app/calculator.py", "good = 1\n")),
        ]
    )
    validator = ScriptedValidator([_failed("syntax"), PASSED])

    result = RetryOrchestrator(client, LocalWorkingTree(git_repo), validator).run(issue, ContextBundle())

    assert result.accepted
    assert [attempt.mode for attempt in result.attempts] == ["generate", "repair", "generate"]
    assert result.transitions[-3:] == (
        (PipelineState.GENERATING, 3),
        (PipelineState.VALIDATING, 3),
        (PipelineState.ACCEPTED, 3),
    )


def test_each_attempt_starts_from_the_baseline(git_repo: Path, issue: Issue) -> None:
    client = ScriptedClient(
        [
            reply(file_block("src/app/stray.py", "stray = 1\n")),
            reply(file_block("src/app/other.py", "other = 1\n")),
        ]
    )
    validator = ScriptedValidator([_failed("nope"), PASSED])

    RetryOrchestrator(client, LocalWorkingTree(git_repo), validator).run(issue, ContextBundle())

    assert validator.seen_files[1] == ["src/app/calculator.py", "src/app/other.py"]


def test_no_op_reply_is_accepted_with_empty_change_set(issue: Issue) -> None:
    client = ScriptedClient([f"## Implementation Summary\nAlready implemented.\n\n## File Changes\n{NO_OP_MARKER}\n"])

    result = RetryOrchestrator(client, InMemoryWorkingTree(MemoryStore())).run(issue, ContextBundle())

    assert result.accepted
    assert result.no_op
    assert result.final_change_set == ()
    assert result.summary == "Already implemented."


def test_transport_errors_propagate_and_leave_tree_clean(git_repo: Path, issue: Issue) -> None:
    client = FailingClient()

    with pytest.raises(LLMTransportError):
        RetryOrchestrator(client, LocalWorkingTree(git_repo)).run(issue, ContextBundle())

    assert client.calls == 2
    assert GitRepository(git_repo).working_tree_changes() == []


def test_transport_error_during_repair_leaves_tree_clean(git_repo: Path, issue: Issue) -> None:
    client = ScriptedClient(
        [
            reply(file_block("src/app/calculator.py", "broken(\n"), file_block("src/app/extra.py", "extra = 1\n")),
            LLMTransportError("connection reset"),
        ]
    )
    validator = ScriptedValidator([_failed("syntax error")])

    with pytest.raises(LLMTransportError):
        RetryOrchestrator(client, LocalWorkingTree(git_repo), validator).run(issue, ContextBundle())

    assert len(client.prompts) == 2
    assert GitRepository(git_repo).working_tree_changes() == []


def test_delete_only_change_set_skips_per_file_validation(git_repo: Path, issue: Issue) -> None:
    client = ScriptedClient([reply("### FILE: README.md\n### ACTION: delete\n")])
    validator = ValidationAdapter([sys.executable, "-c", "import sys; sys.exit(1)", "{files}"])

    result = RetryOrchestrator(client, LocalWorkingTree(git_repo), validator).run(issue, ContextBundle())

    assert result.accepted
    assert not result.verified
    assert len(client.prompts) == 1
    assert result.final_change_set == (FileOperation(path="README.md", action="delete"),)


def test_system_preamble_is_sent_with_every_request(issue: Issue) -> None:
    client = ScriptedClient([reply(file_block("src/app/subtract.py", "x = 1\n"))])

    RetryOrchestrator(client, InMemoryWorkingTree(MemoryStore())).run(issue, ContextBundle())

    assert client.payloads[0]["system"] == prompts.SYSTEM_PREAMBLE


def test_feedback_run_has_a_budget_of_one(issue: Issue) -> None:
    client = ScriptedClient([reply(file_block("src/app/calculator.py", "bad(\n"))])
    validator = ScriptedValidator([_failed("still broken")])
    store = MemoryStore(files={"src/app/calculator.py": "ok = 1\n"})

    result = RetryOrchestrator(client, InMemoryWorkingTree(store), validator, max_attempts=3).run_feedback(
        issue,
        ContextBundle(),
        (FileOperation(path="src/app/calculator.py", action="modify", content="ok = 1\n"),),
        "Rename ok",
        "reviewer",
    )

    assert result.outcome == "exhausted"
    assert len(client.prompts) == 1
    assert result.attempts[0].mode == "feedback"


def test_assembler_is_used_when_no_bundle_is_given(issue: Issue) -> None:
    store = MemoryStore(files={"src/app/calculator.py": "def add(a, b):\n    return a + b\n"})
    client = ScriptedClient([reply(file_block("src/app/calculator.py", "x = 1\n"))])
    orchestrator = RetryOrchestrator(
        client,
        InMemoryWorkingTree(store),
        assembler=ContextAssembler(store, max_search_keywords=0),
    )

    orchestrator.run(issue)

    assert "### File: src/app/calculator.py\n```python\ndef add(a, b):" in client.prompts[0]


def test_transcripts_are_written_per_attempt(tmp_path: Path, issue: Issue) -> None:
    client = ScriptedClient([reply(file_block("a.py", "a = 1\n"))])
    log = TranscriptLog(tmp_path / "transcripts")

    RetryOrchestrator(client, InMemoryWorkingTree(MemoryStore()), transcripts=log).run(issue, ContextBundle())

    names = sorted(path.name for path in (tmp_path / "transcripts").iterdir())
    assert len(names) == 2
    assert names[0].startswith("input__ENG-1__generate__attempt-1__")
    assert names[1].startswith("output__ENG-1__generate__attempt-1__")
