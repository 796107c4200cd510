"""Working tree providers that let each attempt start from the same baseline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from ..hosting.base import FileStore, HostingError
from ..structured import ContextBundle, FileOperation

LOGGER = logging.getLogger(__name__)

__all__ = ["InMemoryWorkingTree", "LocalWorkingTree", "WorkingTreeProvider"]


@runtime_checkable
class WorkingTreeProvider(Protocol):
    """Where attempts are applied and what the validator sees.

    ``root`` is ``None`` for trees that only exist remotely; those cannot be
    handed to an external validation process.
    """

    @property
    def root(self) -> Path | None: ...

    def exists(self, path: str) -> bool: ...

    def read(self, path: str) -> str | None: ...

    def apply(self, operations: Iterable[FileOperation]) -> None: ...

    def reset(self) -> None: ...

    def snapshot(self) -> ContextBundle: ...


class LocalWorkingTree:
    """Disk-backed tree that journals original contents so ``reset`` restores the baseline."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()
        self._originals: dict[str, bytes | None] = {}
        self._created_dirs: list[Path] = []

    @property
    def root(self) -> Path:
        return self._root

    def _target(self, path: str) -> Path:
        target = (self._root / path).resolve()
        try:
            target.relative_to(self._root)
        except ValueError as error:
            raise ValueError(f"Path escapes the working tree: {path}") from error
        return target

    def exists(self, path: str) -> bool:
        return self._target(path).is_file()

    def read(self, path: str) -> str | None:
        target = self._target(path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    def apply(self, operations: Iterable[FileOperation]) -> None:
        for operation in operations:
            target = self._target(operation.path)
            if operation.path not in self._originals:
                self._originals[operation.path] = target.read_bytes() if target.is_file() else None
            if operation.is_delete:
                if target.is_file():
                    target.unlink()
                continue
            self._ensure_parent(target.parent)
            with target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(operation.content or "")

    def reset(self) -> None:
        for path, original in self._originals.items():
            target = self._target(path)
            if original is None:
                target.unlink(missing_ok=True)
                continue
            self._ensure_parent(target.parent)
            target.write_bytes(original)
        # Deepest directories first so nested ones empty out before their parents.
        for directory in sorted(self._created_dirs, key=lambda item: len(item.parts), reverse=True):
            try:
                directory.rmdir()
            except OSError:
                continue
        self._originals.clear()
        self._created_dirs.clear()

    def snapshot(self) -> ContextBundle:
        return ContextBundle((path, self.read(path)) for path in self._originals)

    def _ensure_parent(self, directory: Path) -> None:
        missing: list[Path] = []
        cursor = directory
        while not cursor.exists() and cursor != self._root:
            missing.append(cursor)
            cursor = cursor.parent
        if missing:
            directory.mkdir(parents=True, exist_ok=True)
            self._created_dirs.extend(missing)


class InMemoryWorkingTree:
    """Overlay of pending edits on top of a remote file store."""

    def __init__(self, store: FileStore, *, ref: str | None = None) -> None:
        self._store = store
        self._ref = ref
        self._overlay: dict[str, str | None] = {}
        self._baseline: dict[str, str | None] = {}

    @property
    def root(self) -> None:
        return None

    def _baseline_content(self, path: str) -> str | None:
        if path not in self._baseline:
            try:
                result = self._store.read_file(path, self._ref)
            except HostingError as error:
                LOGGER.warning("Unable to read %s from the file store: %s", path, error)
                result = None
            self._baseline[path] = result.content if result is not None and result.exists else None
        return self._baseline[path]

    def exists(self, path: str) -> bool:
        if path in self._overlay:
            return self._overlay[path] is not None
        return self._baseline_content(path) is not None

    def read(self, path: str) -> str | None:
        if path in self._overlay:
            return self._overlay[path]
        return self._baseline_content(path)

    def apply(self, operations: Iterable[FileOperation]) -> None:
        for operation in operations:
            self._overlay[operation.path] = None if operation.is_delete else operation.content

    def reset(self) -> None:
        self._overlay.clear()

    def snapshot(self) -> ContextBundle:
        return ContextBundle(dict(self._overlay))
