from __future__ import annotations

from pathlib import Path

import pytest

from autopilot.structured import ChangeSetError, FileOperation
from autopilot.tools.changeset import NO_OP_MARKER, extract_section, parse_change_set
from autopilot.tools.workspace import LocalWorkingTree
from conftest import file_block, reply


def test_parses_explicit_actions_and_sections() -> None:
    text = reply(
        file_block("src/app/calculator.py", "def add(a, b):\n    return a + b\n", action="modify", lang="python"),
        file_block("src/app/subtract.py", "def subtract(a, b):\n    return a - b\n", action="create", lang="python"),
        "### FILE: src/app/legacy.py\n### ACTION: delete\n",
        summary="Added subtraction.",
        testing="pytest -q",
    )

    parsed = parse_change_set(text)

    assert [(op.path, op.action) for op in parsed.operations] == [
        ("src/app/calculator.py", "modify"),
        ("src/app/subtract.py", "create"),
        ("src/app/legacy.py", "delete"),
    ]
    assert parsed.operations[0].content == "def add(a, b):\n    return a + b\n"
    assert parsed.operations[2].content is None
    assert parsed.summary == "Added subtraction."
    assert parsed.testing_notes == "pytest -q"
    assert parsed.skipped == 0
    assert not parsed.no_op


def test_parse_is_deterministic() -> None:
    text = reply(file_block("a.py", "x = 1\n", action="create"))
    assert parse_change_set(text) == parse_change_set(text)


def test_implicit_action_uses_resolver() -> None:
    text = file_block("exists.py", "x = 1\n") + file_block("new.py", "y = 2\n")

    parsed = parse_change_set(text, path_exists=lambda path: path == "exists.py")

    assert [(op.path, op.action) for op in parsed.operations] == [("exists.py", "modify"), ("new.py", "create")]


def test_implicit_action_without_resolver_is_modify() -> None:
    parsed = parse_change_set(file_block("a.py", "x = 1\n"))
    assert parsed.operations[0].action == "modify"


def test_unclosed_fence_is_skipped_but_siblings_survive() -> None:
    text = file_block("good.py", "ok = True\n", action="create") + "### FILE: bad.py\n### ACTION: modify\n```python\nbroken = 1\n"

    parsed = parse_change_set(text)

    assert parsed.paths == ["good.py"]
    assert parsed.skipped == 1


def test_unknown_action_and_unsafe_paths_are_skipped() -> None:
    text = (
        file_block("a.py", "a = 1\n", action="rename")
        + file_block("../outside.py", "b = 2\n", action="create")
        + file_block("/etc/passwd", "c = 3\n", action="create")
        + file_block("ok.py", "d = 4\n", action="create")
    )

    parsed = parse_change_set(text)

    assert parsed.paths == ["ok.py"]
    assert parsed.skipped == 3


def test_tilde_fences_and_longer_backtick_fences() -> None:
    nested = "Example:\n```python\nprint('hi')\n```\n"
    text = (
        "### FILE: docs/usage.md\n### ACTION: create\n````markdown\n" + nested + "````\n"
        "### FILE: notes.txt\n### ACTION: create\n~~~\nplain\n~~~\n"
    )

    parsed = parse_change_set(text)

    assert parsed.operations[0].content == nested
    assert parsed.operations[1].content == "plain\n"


def test_last_block_for_a_path_wins() -> None:
    text = file_block("a.py", "first\n", action="create") + file_block("./a.py", "second\n", action="modify")

    parsed = parse_change_set(text)

    assert len(parsed.operations) == 1
    assert parsed.operations[0].content == "second\n"
    assert parsed.operations[0].action == "modify"


def test_stray_fences_outside_blocks_are_ignored() -> None:
    text = "Here is an example:\n```python\n### FILE: not-real.py\n```\n" + file_block("real.py", "x = 1\n", action="create")

    parsed = parse_change_set(text)

    assert parsed.paths == ["real.py"]


def test_no_op_marker_yields_empty_change_set() -> None:
    text = f"## Implementation Summary\nAlready done.\n\n## File Changes\n\n{NO_OP_MARKER}\n"

    parsed = parse_change_set(text)

    assert parsed.is_empty
    assert parsed.no_op
    assert parsed.summary == "Already done."


def test_prose_only_reply_is_empty_without_no_op() -> None:
    parsed = parse_change_set("I think you should change the calculator.")
    assert parsed.is_empty
    assert not parsed.no_op


def test_extract_section_returns_empty_when_missing() -> None:
    assert extract_section("## Other\nbody", "Testing Notes") == ""


def test_file_operation_invariants() -> None:
    with pytest.raises(ChangeSetError):
        FileOperation(path="a.py", action="delete", content="x")
    with pytest.raises(ChangeSetError):
        FileOperation(path="a.py", action="create")
    assert FileOperation(path="./pkg\\mod.py", action="modify", content="").path == "pkg/mod.py"


def test_sections_inside_file_bodies_are_not_reply_sections() -> None:
    readme = "# Calculator\n\n## Testing Notes\nRun make check.\n"
    text = reply(file_block("README.md", readme, action="modify", lang="markdown"), testing="pytest -q")

    parsed = parse_change_set(text)

    assert parsed.operations[0].content == readme
    assert parsed.testing_notes == "pytest -q"


def test_fenced_section_headers_are_ignored_when_reply_has_none() -> None:
    text = file_block("docs/notes.md", "## Implementation Summary\nfrom the file\n", action="create")

    parsed = parse_change_set(text)

    assert parsed.paths == ["docs/notes.md"]
    assert parsed.summary == ""


def test_resolver_refusing_a_symlinked_path_skips_only_that_block(tmp_path: Path) -> None:
    root = tmp_path / "repo"
    shared = tmp_path / "shared"
    root.mkdir()
    shared.mkdir()
    (shared / "lib.py").write_text("x = 1\n", encoding="utf-8")
    (root / "vendor").symlink_to(Path("..") / "shared")
    text = reply(file_block("vendor/lib.py", "x = 2\n"), file_block("app.py", "y = 1\n"))

    parsed = parse_change_set(text, path_exists=LocalWorkingTree(root).exists)

    assert [(op.path, op.action) for op in parsed.operations] == [("app.py", "create")]
    assert parsed.skipped == 1
