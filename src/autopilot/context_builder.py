"""Collect the files a model needs to see before it edits a repository."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import PurePosixPath

from .hosting.base import FileContent, FileStore, HostingError
from .schema import Issue
from .structured import ChangeSetError, ContextBundle, normalise_repo_path

LOGGER = logging.getLogger(__name__)

DEFAULT_ALLOWED_SUFFIXES: tuple[str, ...] = (
    ".py",
    ".pyi",
    ".js",
    ".jsx",
    ".ts",
    ".tsx",
    ".go",
    ".rs",
    ".java",
    ".kt",
    ".swift",
    ".c",
    ".h",
    ".cc",
    ".cpp",
    ".hpp",
    ".cs",
    ".rb",
    ".php",
    ".graphql",
    ".sql",
    ".json",
    ".yaml",
    ".yml",
    ".toml",
    ".ini",
    ".cfg",
    ".md",
    ".txt",
    ".sh",
    ".html",
    ".css",
)

COMMON_WORDS = frozenset({"the", "and", "for", "with", "this", "that", "from", "have", "been"})

_BACKTICK_PATH = re.compile(r"`([^`\n]+)`")
_FILES_LABEL = re.compile(r"(?:\*\*Files?\*\*:?|\bFiles?:)\s*([^\n]+)", re.IGNORECASE)
_LINE_REFERENCE = re.compile(r"(?<![\w./-])([\w./-]+\.[A-Za-z0-9]+):\d+(?:-\d+)?\b")
_LINE_SUFFIX = re.compile(r":\d+(?:-\d+)?$")
_LEADING_JUNK = re.compile(r"^[^A-Za-z0-9./_-]+")
_TRAILING_JUNK = re.compile(r"[^A-Za-z0-9_/]+$")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def _clean_candidate(raw: str) -> str:
    candidate = raw.strip()
    candidate = re.sub(r"^\*\*|\*\*$", "", candidate)
    candidate = candidate.strip("`").strip()
    candidate = re.sub(r"^[*_-]\s*", "", candidate)
    candidate = _LINE_SUFFIX.sub("", candidate)
    candidate = _LEADING_JUNK.sub("", candidate)
    candidate = _TRAILING_JUNK.sub("", candidate)
    return _LINE_SUFFIX.sub("", candidate).strip()


def extract_file_paths(text: str, suffixes: Iterable[str] = DEFAULT_ALLOWED_SUFFIXES) -> list[str]:
    """Return explicit file mentions in ``text`` in first-seen order.

    Recognises back-ticked paths, ``Files:`` / ``**Files:**`` labelled lines
    (comma separated) and ``path.ext:12`` / ``path.ext:12-40`` references.
    """
    allowed = tuple(suffix.lower() for suffix in suffixes)
    raw_candidates: list[str] = []
    for match in _BACKTICK_PATH.finditer(text or ""):
        raw_candidates.append(match.group(1))
    for match in _FILES_LABEL.finditer(text or ""):
        raw_candidates.extend(re.split(r"[,\n]", match.group(1)))
    for match in _LINE_REFERENCE.finditer(text or ""):
        raw_candidates.append(match.group(1))

    paths: list[str] = []
    seen: set[str] = set()
    for raw in raw_candidates:
        candidate = _clean_candidate(raw)
        if not candidate or any(char.isspace() for char in candidate):
            continue
        if PurePosixPath(candidate).suffix.lower() not in allowed:
            continue
        try:
            normalised = normalise_repo_path(candidate)
        except ChangeSetError:
            continue
        if normalised not in seen:
            seen.add(normalised)
            paths.append(normalised)
    return paths


def extract_keywords(text: str, limit: int = 5) -> list[str]:
    """Derive search keywords: lower-cased words longer than three characters."""
    words = _NON_ALNUM.sub(" ", (text or "").lower()).split()
    keywords: list[str] = []
    for word in words:
        if len(word) <= 3 or word in COMMON_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


class ContextAssembler:
    """Builds a :class:`ContextBundle` from explicit mentions and keyword search."""

    def __init__(
        self,
        store: FileStore,
        *,
        allowed_suffixes: Sequence[str] | None = None,
        max_keywords: int = 5,
        max_search_keywords: int = 2,
        max_results_per_keyword: int = 2,
        max_extra_files: int = 3,
        ref: str | None = None,
    ) -> None:
        self._store = store
        self._suffixes = tuple(allowed_suffixes or DEFAULT_ALLOWED_SUFFIXES)
        self._max_keywords = max_keywords
        self._max_search_keywords = max_search_keywords
        self._max_results_per_keyword = max_results_per_keyword
        self._max_extra_files = max_extra_files
        self._ref = ref

    def assemble_for_issue(self, issue: Issue) -> ContextBundle:
        return self.assemble(issue.description, title=issue.title)

    def assemble(self, issue_text: str, *, title: str = "") -> ContextBundle:
        """Return the bundle for an issue; never raises on collaborator failures."""
        combined = f"{title}\n{issue_text}" if title else issue_text
        mentioned = extract_file_paths(combined, self._suffixes)
        LOGGER.info("Found %d file(s) mentioned in issue", len(mentioned))

        extra = self._search_candidates(combined, exclude=set(mentioned))
        files: dict[str, str | None] = {}

        for path, result in self._read(mentioned).items():
            files[path] = result.content if result is not None and result.exists else None
        for path, result in self._read(extra).items():
            if result is not None and result.exists:
                files[path] = result.content

        bundle = ContextBundle(files)
        LOGGER.info(
            "Assembled context with %d existing and %d absent file(s)",
            len(bundle.existing),
            len(bundle.absent),
        )
        return bundle

    def _search_candidates(self, text: str, *, exclude: set[str]) -> list[str]:
        keywords = extract_keywords(text, self._max_keywords)
        found: list[str] = []
        for keyword in keywords[: self._max_search_keywords]:
            if len(found) >= self._max_extra_files:
                break
            try:
                results = self._store.search_files(keyword)
            except (HostingError, OSError, RuntimeError) as error:
                LOGGER.warning("File search for '%s' failed: %s", keyword, error)
                continue
            for raw in list(results)[: self._max_results_per_keyword]:
                try:
                    path = normalise_repo_path(raw)
                except ChangeSetError:
                    continue
                if path in exclude or path in found:
                    continue
                if PurePosixPath(path).suffix.lower() not in self._suffixes:
                    continue
                found.append(path)
                if len(found) >= self._max_extra_files:
                    break
        return found

    def _read(self, paths: Sequence[str]) -> dict[str, FileContent | None]:
        if not paths:
            return {}
        try:
            results = self._store.read_files(list(paths), self._ref)
            return {path: results.get(path) for path in paths}
        except (HostingError, OSError, RuntimeError) as error:
            LOGGER.warning("Batch read failed (%s); reading files one by one", error)

        fallback: dict[str, FileContent | None] = {}
        for path in paths:
            try:
                fallback[path] = self._store.read_file(path, self._ref)
            except (HostingError, OSError, RuntimeError) as error:
                LOGGER.warning("Unable to read %s: %s", path, error)
                fallback[path] = None
        return fallback


__all__ = [
    "COMMON_WORDS",
    "DEFAULT_ALLOWED_SUFFIXES",
    "ContextAssembler",
    "extract_file_paths",
    "extract_keywords",
]
