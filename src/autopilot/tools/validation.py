"""Run the configured build or syntax check and classify its output.

The adapter wraps one external command. Missing executables and unconfigured
commands are reported as ``unavailable`` rather than ``failed`` so callers can
tell "nothing checked this" apart from "the check rejected it".
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional, Protocol, Sequence, Tuple, runtime_checkable

LOGGER = logging.getLogger(__name__)

ValidationStatus = Literal["passed", "failed", "unavailable"]

FILES_PLACEHOLDER = "{files}"

_LOCATED_ERROR = re.compile(
    r"^(?P<file>[^:\n]+):(?P<line>\d+):(?:\d+:)?\s*error:\s*(?P<message>.+)$",
    re.IGNORECASE | re.MULTILINE,
)
_LOCATED_WARNING = re.compile(
    r"^(?P<file>[^:\n]+):(?P<line>\d+):(?:\d+:)?\s*warning:\s*(?P<message>.+)$",
    re.IGNORECASE | re.MULTILINE,
)
_FATAL = re.compile(
    r"\*\*\s*BUILD FAILED\s*\*\*|fatal error:\s*(?P<fatal>.+)|^error:\s*(?P<plain>.+)",
    re.IGNORECASE | re.MULTILINE,
)


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One error or warning extracted from validator output."""

    message: str
    file: Optional[str] = None
    line: Optional[int] = None

    def render(self) -> str:
        if self.file and self.line is not None:
            return f"{self.file}:{self.line} - {self.message}"
        if self.file:
            return f"{self.file} - {self.message}"
        return self.message


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Classified outcome of one validation run."""

    status: ValidationStatus
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationIssue, ...] = ()
    raw_output: str = ""
    command: Tuple[str, ...] = field(default_factory=tuple)
    exit_code: Optional[int] = None
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.status == "passed"

    @property
    def unavailable(self) -> bool:
        return self.status == "unavailable"

    def short_message(self) -> str:
        if self.status == "passed":
            return "validation passed"
        if self.status == "unavailable":
            return f"validation unavailable ({self.raw_output.strip() or 'no command configured'})"
        first = self.errors[0].render() if self.errors else "unknown failure"
        return f"validation failed with {len(self.errors)} error(s) ({first})"


@runtime_checkable
class Validator(Protocol):
    def validate(self, workdir: Path, *, paths: Sequence[str] = ()) -> ValidationResult: ...


def unavailable_result(reason: str, command: Sequence[str] = ()) -> ValidationResult:
    return ValidationResult(status="unavailable", raw_output=reason, command=tuple(command))


class _UnavailableValidator:
    """Validator used when no build check can run against the working tree."""

    def validate(self, workdir: Path | None, *, paths: Sequence[str] = ()) -> ValidationResult:
        return unavailable_result("No validation step is configured for this working tree.")

    def __repr__(self) -> str:
        return "UNAVAILABLE_VALIDATION"


UNAVAILABLE_VALIDATION = _UnavailableValidator()


class ValidationAdapter:
    """Executes one validation command and turns its output into a result."""

    def __init__(
        self,
        command: Sequence[str] | None,
        *,
        success_marker: str | None = None,
        timeout: float = 120.0,
        max_errors: int = 10,
        max_warnings: int = 5,
    ) -> None:
        self.command: Tuple[str, ...] = tuple(command or ())
        self.success_marker = success_marker or None
        self.timeout = timeout
        self.max_errors = max_errors
        self.max_warnings = max_warnings

    def expand_command(self, paths: Sequence[str] = ()) -> List[str]:
        """Return the argv with the ``{files}`` placeholder expanded."""
        argv: List[str] = []
        for part in self.command:
            if part == FILES_PLACEHOLDER:
                argv.extend(paths)
            elif FILES_PLACEHOLDER in part:
                argv.append(part.replace(FILES_PLACEHOLDER, " ".join(paths)))
            else:
                argv.append(part)
        return argv

    def validate(self, workdir: Path | None, *, paths: Sequence[str] = ()) -> ValidationResult:
        if not self.command:
            return unavailable_result("No validation command configured.")
        if workdir is None:
            return unavailable_result("Working tree is not on local disk.", self.command)
        if not paths and any(FILES_PLACEHOLDER in part for part in self.command):
            return unavailable_result("No written files to check.", self.command)

        argv = self.expand_command(paths)
        executable = argv[0]
        if shutil.which(executable) is None:
            LOGGER.info("Validation executable not available: %s", executable)
            return unavailable_result(f"Executable not available: {executable}", argv)

        LOGGER.info("Running validation: %s", " ".join(argv))
        try:
            process = subprocess.run(  # noqa: S603  # command is sourced from project config
                argv,
                cwd=workdir,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as error:
            output = _join_output(error.stdout, error.stderr)
            LOGGER.warning("Validation timed out after %ss", self.timeout)
            return ValidationResult(
                status="failed",
                errors=(ValidationIssue(message=f"Validation timed out after {self.timeout:g}s"),),
                raw_output=output,
                command=tuple(argv),
                timed_out=True,
            )
        except OSError as error:
            LOGGER.warning("Validation command could not be started: %s", error)
            return ValidationResult(
                status="failed",
                errors=(ValidationIssue(message=f"Validation command could not be started: {error}"),),
                raw_output=str(error),
                command=tuple(argv),
            )

        output = _join_output(process.stdout, process.stderr)
        return self.classify(output, exit_code=process.returncode, command=argv)

    def classify(self, output: str, *, exit_code: int | None, command: Sequence[str] = ()) -> ValidationResult:
        """Classify ``output`` into a passed or failed result."""
        errors = extract_errors(output)
        warnings = extract_warnings(output)[: self.max_warnings]

        if self.success_marker and self.success_marker in output:
            return ValidationResult(
                status="passed",
                warnings=tuple(warnings),
                raw_output=output,
                command=tuple(command),
                exit_code=exit_code,
            )
        if not errors and exit_code == 0:
            return ValidationResult(
                status="passed",
                warnings=tuple(warnings),
                raw_output=output,
                command=tuple(command),
                exit_code=exit_code,
            )
        if not errors:
            lines = [line.strip() for line in output.splitlines() if line.strip()]
            tail = lines[-1] if lines else "no output"
            errors = [ValidationIssue(message=f"Validation exited with code {exit_code}: {tail}")]
        return ValidationResult(
            status="failed",
            errors=tuple(errors[: self.max_errors]),
            warnings=tuple(warnings),
            raw_output=output,
            command=tuple(command),
            exit_code=exit_code,
        )


def extract_errors(output: str) -> List[ValidationIssue]:
    """Return located errors followed by general fatal errors, de-duplicated."""
    errors: List[ValidationIssue] = []
    for match in _LOCATED_ERROR.finditer(output):
        errors.append(
            ValidationIssue(
                message=match.group("message").strip(),
                file=match.group("file").strip(),
                line=int(match.group("line")),
            )
        )
    for match in _FATAL.finditer(output):
        message = (match.group("fatal") or match.group("plain") or match.group(0)).strip()
        if any(message in existing.message or message in existing.render() for existing in errors):
            continue
        errors.append(ValidationIssue(message=message))
    return errors


def extract_warnings(output: str) -> List[ValidationIssue]:
    return [
        ValidationIssue(
            message=match.group("message").strip(),
            file=match.group("file").strip(),
            line=int(match.group("line")),
        )
        for match in _LOCATED_WARNING.finditer(output)
    ]


def _join_output(stdout: str | bytes | None, stderr: str | bytes | None) -> str:
    parts: List[str] = []
    for part in (stdout, stderr):
        if not part:
            continue
        if isinstance(part, bytes):
            part = part.decode("utf-8", errors="replace")
        parts.append(part)
    return "\n".join(parts)


__all__ = [
    "FILES_PLACEHOLDER",
    "UNAVAILABLE_VALIDATION",
    "ValidationAdapter",
    "ValidationIssue",
    "ValidationResult",
    "ValidationStatus",
    "Validator",
    "extract_errors",
    "extract_warnings",
    "unavailable_result",
]
