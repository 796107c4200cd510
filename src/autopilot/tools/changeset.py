"""Decode free-form model replies into whole-file operations.

The reply grammar is a sequence of file blocks::

    ### FILE: path/to/file.ext
    ### ACTION: create|modify|delete
    ```lang
    <complete file body>
    ```

The action line is optional (implicit create-or-modify) and ``delete`` blocks
may omit the fence. Blocks that do not fit the grammar are skipped and counted
rather than aborting the parse, so a reply with one malformed block still
yields its valid siblings.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ..structured import FILE_ACTIONS, FileOperation, dedupe_operations, normalise_repo_path

LOGGER = logging.getLogger(__name__)

NO_OP_MARKER = "### NO CHANGES REQUIRED"

_FILE_MARKER = re.compile(r"^\s*#{2,4}\s*FILE:\s*(?P<path>.+?)\s*$", re.IGNORECASE)
_ACTION_MARKER = re.compile(r"^\s*#{2,4}\s*ACTION:\s*(?P<action>\S+)\s*$", re.IGNORECASE)
_NO_OP = re.compile(r"^\s*#{2,4}\s*NO CHANGES REQUIRED\s*$", re.IGNORECASE)
_FENCE_OPEN = re.compile(r"^\s*(?P<fence>`{3,}|~{3,})(?P<info>[^`]*)$")

PathResolver = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class ChangeSetParse:
    """Outcome of decoding one model reply."""

    operations: Tuple[FileOperation, ...]
    skipped: int = 0
    no_op: bool = False
    summary: str = ""
    testing_notes: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def paths(self) -> List[str]:
        return [operation.path for operation in self.operations]


def extract_section(text: str, name: str) -> str:
    """Return the body of the ``## <name>`` section, or an empty string."""
    pattern = re.compile(
        rf"^##\s*{re.escape(name)}\s*\n(?P<body>.*?)(?=\n##|\Z)",
        re.IGNORECASE | re.DOTALL | re.MULTILINE,
    )
    match = pattern.search(text or "")
    if not match:
        return ""
    return match.group("body").strip()


def parse_change_set(text: str, *, path_exists: Optional[PathResolver] = None) -> ChangeSetParse:
    """Decode ``text`` into a :class:`ChangeSetParse`.

    ``path_exists`` resolves blocks without an action marker: absent paths
    become ``create``, present ones ``modify``. Without a resolver such blocks
    default to ``modify``. Content is the exact fenced body; only the fence
    lines themselves are removed.
    """
    lines = (text or "").splitlines(keepends=True)
    operations: List[FileOperation] = []
    # Prose outside file blocks and fences; sections are read from here only.
    outside: List[str] = []
    skipped = 0
    no_op = False
    index = 0

    while index < len(lines):
        line = lines[index]
        if _NO_OP.match(line):
            no_op = True
            index += 1
            continue

        fence = _FENCE_OPEN.match(line)
        if fence:
            # Stray fences outside file blocks are examples, not edits.
            close = _find_fence_close(lines, index + 1, fence.group("fence"))
            index = index + 1 if close is None else close + 1
            continue

        marker = _FILE_MARKER.match(line)
        if not marker:
            outside.append(line)
            index += 1
            continue

        operation, index = _parse_block(lines, index, marker.group("path"), path_exists)
        if operation is None:
            skipped += 1
        else:
            operations.append(operation)

    prose = "".join(outside)
    result = ChangeSetParse(
        operations=tuple(dedupe_operations(operations)),
        skipped=skipped,
        no_op=no_op,
        summary=extract_section(prose, "Implementation Summary"),
        testing_notes=extract_section(prose, "Testing Notes"),
    )
    if skipped:
        LOGGER.warning("Skipped %d malformed file block(s) in model reply.", skipped)
    return result


def _parse_block(
    lines: Sequence[str],
    start: int,
    raw_path: str,
    path_exists: Optional[PathResolver],
) -> tuple[Optional[FileOperation], int]:
    """Parse the block whose marker is at ``start``; return the operation and next index."""
    index = _skip_blank(lines, start + 1)
    action: Optional[str] = None

    if index < len(lines):
        action_match = _ACTION_MARKER.match(lines[index])
        if action_match:
            action = action_match.group("action").strip("`*").lower()
            index = _skip_blank(lines, index + 1)

    content: Optional[str] = None
    fenced = False
    if index < len(lines):
        fence = _FENCE_OPEN.match(lines[index])
        if fence:
            close = _find_fence_close(lines, index + 1, fence.group("fence"))
            if close is None:
                LOGGER.debug("Unclosed fence for %s", raw_path)
                return None, index + 1
            content = "".join(lines[index + 1 : close])
            fenced = True
            index = close + 1

    if action is not None and action not in FILE_ACTIONS:
        LOGGER.debug("Unknown action '%s' for %s", action, raw_path)
        return None, index
    if not fenced and action != "delete":
        return None, index

    path = _clean_path(raw_path)
    try:
        if action == "delete":
            return FileOperation(path=path, action="delete"), index
        if action is None:
            exists = path_exists(normalise_repo_path(path)) if path_exists is not None else True
            action = "modify" if exists else "create"
        return FileOperation(path=path, action=action, content=content), index  # type: ignore[arg-type]
    except ValueError as error:
        # Unsafe paths, including ones a resolver refuses as escaping the tree.
        LOGGER.debug("Rejected file block: %s", error)
        return None, index


def _find_fence_close(lines: Sequence[str], start: int, fence: str) -> Optional[int]:
    char = fence[0]
    closing = re.compile(rf"^\s*{re.escape(char)}{{{len(fence)},}}\s*$")
    for index in range(start, len(lines)):
        if closing.match(lines[index]):
            return index
    return None


def _skip_blank(lines: Sequence[str], index: int) -> int:
    while index < len(lines) and not lines[index].strip():
        index += 1
    return index


def _clean_path(raw: str) -> str:
    return raw.strip().strip("`*\"'").strip()


__all__ = ["NO_OP_MARKER", "ChangeSetParse", "PathResolver", "extract_section", "parse_change_set"]
