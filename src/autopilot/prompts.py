"""Prompt templates shared by the generation, repair, and feedback attempts."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Sequence

from .schema import Issue, PullRequestInfo
from .structured import ContextBundle, FileOperation
from .tools.changeset import NO_OP_MARKER
from .tools.validation import ValidationIssue, ValidationResult

SYSTEM_PREAMBLE = (
    "You are an expert software engineer implementing tracked issues in an existing repository. "
    "You always return complete files in the exact response format you are given."
)

_LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".sh": "bash",
    ".sql": "sql",
    ".graphql": "graphql",
    ".html": "html",
    ".css": "css",
}
_BACKTICK_RUN = re.compile(r"`{3,}")

OUTPUT_FORMAT = f"""# Output Format

Respond in this EXACT format:

## Implementation Summary
[2-3 sentences describing what you changed]

## File Changes

For each file to create, modify, or delete:

### FILE: path/to/file.ext
### ACTION: create|modify|delete
```lang
[COMPLETE file contents - the ENTIRE file, never a diff or snippet]
```

A delete block needs no code block. Use one block per file.

If the issue needs no code change at all, write the line

{NO_OP_MARKER}

under "## File Changes" instead of any file blocks and explain why in the summary.

## Testing Notes
[How to verify this change]

# Important Guidelines

- ALWAYS provide COMPLETE file contents, not diffs or partial code
- ALWAYS use the exact markers shown above (### FILE:, ### ACTION:, code fences)
- Use repository-relative paths exactly as shown in the context
- PRESERVE existing functionality and match the existing code style
- Never hardcode secrets"""


def render_project_guidance(guidance: Sequence[str]) -> str:
    """Format project guidance strings as a single bullet list block."""
    if not guidance:
        return ""
    body = "\n".join(f"- {line.strip()}" for line in guidance if line.strip())
    if not body:
        return ""
    return f"## Project Guidance\n{body}"


def language_for(path: str) -> str:
    return _LANGUAGE_BY_SUFFIX.get(PurePosixPath(path).suffix.lower(), "")


def fenced(path: str, content: str) -> str:
    """Wrap ``content`` in a fence longer than any backtick run it contains."""
    longest = max((len(run) for run in _BACKTICK_RUN.findall(content)), default=2)
    fence = "`" * max(3, longest + 1)
    body = content if content.endswith("\n") or not content else f"{content}\n"
    return f"{fence}{language_for(path)}\n{body}{fence}"


def render_issue(issue: Issue) -> str:
    return "\n".join(
        [
            "# Issue Details",
            "",
            f"**ID:** {issue.identifier}",
            f"**Title:** {issue.title}",
            f"**Priority:** {issue.priority or 'Normal'}",
            f"**Labels:** {issue.label_text() or 'None'}",
            "",
            "**Description:**",
            issue.description or "(no description provided)",
        ]
    )


def render_context(bundle: ContextBundle) -> str:
    """Render existing files verbatim and list absent ones as not yet created."""
    if not bundle:
        return "# Existing Code Context\n\nNo existing files provided - create whatever files the issue needs."
    sections = ["# Existing Code Context"]
    for path, content in bundle.items():
        if content is None:
            sections.append(f"### File: {path}\n(does not exist yet)")
        else:
            sections.append(f"### File: {path}\n{fenced(path, content)}")
    return "\n\n".join(sections)


def render_change_set(operations: Sequence[FileOperation]) -> str:
    """Render a prior attempt's files exactly as they were emitted."""
    if not operations:
        return "(the previous attempt emitted no files)"
    blocks: list[str] = []
    for operation in operations:
        lines = [f"### FILE: {operation.path}", f"### ACTION: {operation.action}"]
        if not operation.is_delete:
            lines.append(fenced(operation.path, operation.content or ""))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_errors_for_feedback(errors: Sequence[ValidationIssue], *, limit: int = 10) -> str:
    """Return a numbered list of at most ``limit`` errors."""
    if not errors:
        return "(no errors reported)"
    return "\n".join(f"{index}. {issue.render()}" for index, issue in enumerate(errors[:limit], start=1))


def build_generation_prompt(issue: Issue, bundle: ContextBundle, *, guidance: Sequence[str] = ()) -> str:
    """Prompt for a first attempt: issue, context, and the response contract."""
    parts = [
        "You will implement a complete solution for the following issue.",
        render_issue(issue),
        render_context(bundle),
    ]
    guidance_block = render_project_guidance(guidance)
    if guidance_block:
        parts.append(guidance_block)
    parts.append(
        "# Your Task\n\n"
        "Implement a complete, production-ready solution for this issue. Analyze the requirements, "
        "read the existing code, and make exactly the changes needed."
    )
    parts.append(OUTPUT_FORMAT)
    parts.append("Begin your implementation:")
    return "\n\n".join(parts)


def build_repair_prompt(
    issue: Issue,
    bundle: ContextBundle,
    prior_change_set: Sequence[FileOperation],
    validation: ValidationResult,
    *,
    guidance: Sequence[str] = (),
    max_errors: int = 10,
) -> str:
    """Prompt for a repair attempt after validation rejected ``prior_change_set``."""
    parts = [
        "Your previous implementation of the following issue failed validation.",
        render_issue(issue),
        render_context(bundle),
        "# Your Previous Attempt\n\n" + render_change_set(prior_change_set),
        "# Validation Errors\n\n" + format_errors_for_feedback(validation.errors, limit=max_errors),
    ]
    guidance_block = render_project_guidance(guidance)
    if guidance_block:
        parts.append(guidance_block)
    parts.append(
        "# Your Task\n\n"
        "Fix exactly these errors; preserve everything else. Your answer is applied to the original "
        "tree, so return every file from your previous attempt in full, including files without errors."
    )
    parts.append(OUTPUT_FORMAT)
    parts.append("Begin your corrected implementation:")
    return "\n\n".join(parts)


def build_feedback_prompt(
    issue: Issue,
    bundle: ContextBundle,
    prior_change_set: Sequence[FileOperation],
    comment: str,
    author: str,
    *,
    pull_request: PullRequestInfo | None = None,
    guidance: Sequence[str] = (),
) -> str:
    """Prompt for addressing a reviewer comment on an open pull request."""
    parts = ["You are addressing reviewer feedback on an open pull request.", render_issue(issue)]
    if pull_request is not None:
        parts.append(
            "# Pull Request Context\n\n"
            f"**PR Title:** {pull_request.title}\n"
            f"**PR Description:**\n{pull_request.body or '(empty)'}"
        )
    parts.append(render_context(bundle))
    if prior_change_set:
        parts.append("# Files Changed In This Pull Request\n\n" + render_change_set(prior_change_set))
    parts.append(f"# Reviewer Feedback\n\n**From:** {author}\n**Comment:**\n{comment}")
    guidance_block = render_project_guidance(guidance)
    if guidance_block:
        parts.append(guidance_block)
    parts.append(
        "# Your Task\n\n"
        "Address exactly what the reviewer asked for; preserve everything else. "
        f"If no code change is needed, use {NO_OP_MARKER} and explain why in the summary."
    )
    parts.append(OUTPUT_FORMAT)
    parts.append("Begin your response:")
    return "\n\n".join(parts)


__all__ = [
    "OUTPUT_FORMAT",
    "SYSTEM_PREAMBLE",
    "build_feedback_prompt",
    "build_generation_prompt",
    "build_repair_prompt",
    "fenced",
    "format_errors_for_feedback",
    "render_change_set",
    "render_context",
    "render_issue",
    "render_project_guidance",
]
