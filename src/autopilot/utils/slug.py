"""Utilities for generating consistent, length-limited slugs."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_LOWERCASE_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9]+")
_MIXED_CASE_PATTERN: Pattern[str] = re.compile(r"[^A-Za-z0-9]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")

BRANCH_SLUG_LENGTH = 50


def slugify(
    value: str | None,
    *,
    fallback: str = "item",
    max_length: int = 80,
    lowercase: bool = True,
) -> str:
    """Normalize ``value`` into a branch- and filename-friendly slug."""
    source = (value or "").strip()
    if lowercase:
        source = source.lower()
    pattern = _LOWERCASE_PATTERN if lowercase else _MIXED_CASE_PATTERN
    slug = _normalize(source, pattern) or _normalize(fallback.lower() if lowercase else fallback, pattern) or "item"
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    return slug


def hashed_slug(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Like :func:`slugify` but keeps over-long values distinct via a short digest."""
    slug = slugify(value, fallback=fallback, max_length=10_000, lowercase=False)
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"


def branch_name_for_issue(identifier: str, title: str, suggested: str | None = None) -> str:
    """Return the tracker's suggested branch or ``<identifier>-<title slug>``."""
    if suggested and suggested.strip():
        return suggested.strip()
    prefix = slugify(identifier, fallback="issue")
    return f"{prefix}-{slugify(title, fallback='change', max_length=BRANCH_SLUG_LENGTH)}"


def _normalize(value: str, pattern: Pattern[str]) -> str:
    slug = pattern.sub("-", value)
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-")


__all__ = ["BRANCH_SLUG_LENGTH", "branch_name_for_issue", "hashed_slug", "slugify"]
