"""Typed payloads describing the file edits proposed by the model."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Literal

FileAction = Literal["create", "modify", "delete"]

FILE_ACTIONS: tuple[str, ...] = ("create", "modify", "delete")


class ChangeSetError(ValueError):
    """Raised when a file operation violates the change-set invariants."""


def normalise_repo_path(raw: str) -> str:
    """Return ``raw`` as a clean repository-relative POSIX path.

    Raises :class:`ChangeSetError` for empty, absolute, or escaping paths.
    """
    candidate = (raw or "").strip().replace("\\", "/")
    while candidate.startswith("./"):
        candidate = candidate[2:]
    if not candidate:
        raise ChangeSetError("File path must not be empty.")
    if candidate.startswith("/") or (len(candidate) > 1 and candidate[1] == ":"):
        raise ChangeSetError(f"Absolute paths are not allowed: {raw}")
    parts = PurePosixPath(candidate).parts
    if any(part == ".." for part in parts):
        raise ChangeSetError(f"Path escapes the repository root: {raw}")
    return PurePosixPath(*parts).as_posix()


@dataclass(frozen=True, slots=True)
class FileOperation:
    """Single whole-file operation emitted by one attempt."""

    path: str
    action: FileAction
    content: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", normalise_repo_path(self.path))
        if self.action not in FILE_ACTIONS:
            raise ChangeSetError(f"Unknown file action '{self.action}' for {self.path}")
        if self.action == "delete":
            if self.content is not None:
                raise ChangeSetError(f"Delete operation for {self.path} must not carry content.")
        elif self.content is None:
            raise ChangeSetError(f"{self.action.title()} operation for {self.path} requires full content.")

    @property
    def is_delete(self) -> bool:
        return self.action == "delete"


def dedupe_operations(operations: Iterable[FileOperation]) -> list[FileOperation]:
    """Collapse duplicate paths so the last operation for each path wins."""
    latest: dict[str, FileOperation] = {}
    for operation in operations:
        latest.pop(operation.path, None)
        latest[operation.path] = operation
    return list(latest.values())


class ContextBundle(Mapping[str, "str | None"]):
    """Ordered, read-only mapping of path to content (``None`` when absent)."""

    __slots__ = ("_files",)

    def __init__(self, files: Mapping[str, str | None] | Iterable[tuple[str, str | None]] = ()) -> None:
        ordered: dict[str, str | None] = dict(files)
        self._files = MappingProxyType(ordered)

    def __getitem__(self, path: str) -> str | None:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"ContextBundle({list(self._files)!r})"

    @property
    def existing(self) -> dict[str, str]:
        """Return only the entries whose file currently exists."""
        return {path: content for path, content in self._files.items() if content is not None}

    @property
    def absent(self) -> list[str]:
        return [path for path, content in self._files.items() if content is None]


__all__ = [
    "FILE_ACTIONS",
    "ChangeSetError",
    "ContextBundle",
    "FileAction",
    "FileOperation",
    "dedupe_operations",
    "normalise_repo_path",
]
