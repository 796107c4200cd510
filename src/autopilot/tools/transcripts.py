"""Persist per-attempt model prompts and replies as plain-text transcripts."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..utils.slug import hashed_slug

LOGGER = logging.getLogger(__name__)

AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception], int], None]


class TranscriptLog:
    """Writes ``input__`` / ``output__`` files under ``root`` for every model call.

    Write failures are logged and swallowed; transcripts never abort a run.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def attempt_logger(self, mode: str, issue_identifier: str, pipeline_attempt: int) -> AttemptLogger:
        """Return a callback suitable for :meth:`LLMClient.complete`."""

        def _log(payload: Dict[str, Any], raw: Optional[str], error: Optional[Exception], transport_attempt: int) -> None:
            self.log_input(
                payload,
                mode=mode,
                issue_identifier=issue_identifier,
                attempt=pipeline_attempt,
                transport_attempt=transport_attempt,
            )
            self.log_output(
                raw,
                error,
                mode=mode,
                issue_identifier=issue_identifier,
                attempt=pipeline_attempt,
                transport_attempt=transport_attempt,
            )

        return _log

    def log_input(
        self,
        payload: Dict[str, Any] | None,
        *,
        mode: str,
        issue_identifier: str,
        attempt: int,
        transport_attempt: int = 1,
    ) -> Path | None:
        """Persist the raw prompt text for one model invocation."""
        if not isinstance(payload, dict):
            return None
        timestamp = datetime.now(timezone.utc)
        lines = self._header(timestamp, mode, issue_identifier, attempt, transport_attempt)
        model_name = payload.get("model")
        if isinstance(model_name, str) and model_name:
            lines.append(f"Model: {model_name}")
        max_tokens = payload.get("max_tokens")
        if max_tokens is not None:
            lines.append(f"Max tokens: {max_tokens}")

        system = payload.get("system")
        if isinstance(system, str) and system:
            lines.extend(["", "[system]", system])
        for message in payload.get("messages") or []:
            if not isinstance(message, dict):
                continue
            role = message.get("role") or "message"
            content = message.get("content")
            if isinstance(content, str):
                lines.extend(["", f"[{role}]", content])
        return self._write("input", timestamp, mode, issue_identifier, attempt, transport_attempt, lines)

    def log_output(
        self,
        raw: Optional[str],
        error: Optional[Exception],
        *,
        mode: str,
        issue_identifier: str,
        attempt: int,
        transport_attempt: int = 1,
    ) -> Path | None:
        """Persist the raw model reply (or the transport error) for one invocation."""
        if raw is None and error is None:
            return None
        timestamp = datetime.now(timezone.utc)
        lines = self._header(timestamp, mode, issue_identifier, attempt, transport_attempt)
        if error is not None:
            lines.append(f"Error: {error}")
        if raw is not None:
            lines.extend(["", "Raw Response:", raw])
        return self._write("output", timestamp, mode, issue_identifier, attempt, transport_attempt, lines)

    @staticmethod
    def _header(
        timestamp: datetime,
        mode: str,
        issue_identifier: str,
        attempt: int,
        transport_attempt: int,
    ) -> list[str]:
        lines = [
            f"Timestamp: {timestamp.isoformat()}",
            f"Mode: {mode}",
            f"Issue: {issue_identifier}",
            f"Attempt: {attempt}",
        ]
        if transport_attempt > 1:
            lines.append(f"Transport attempt: {transport_attempt}")
        return lines

    def _write(
        self,
        kind: str,
        timestamp: datetime,
        mode: str,
        issue_identifier: str,
        attempt: int,
        transport_attempt: int,
        lines: list[str],
    ) -> Path | None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            LOGGER.warning("Unable to create transcript directory %s: %s", self.root, error)
            return None

        file_parts = [
            kind,
            hashed_slug(issue_identifier, fallback="issue"),
            hashed_slug(mode, fallback="mode"),
            f"attempt-{attempt}",
        ]
        if transport_attempt > 1:
            file_parts.append(f"try-{transport_attempt}")
        file_parts.append(timestamp.strftime("%Y%m%dT%H%M%S%fZ"))
        file_parts.append(uuid.uuid4().hex[:8])
        log_path = self.root / ("__".join(file_parts) + ".txt")
        try:
            log_path.write_text("\n".join(lines), encoding="utf-8")
        except OSError as error:
            LOGGER.warning("Unable to write transcript %s: %s", log_path, error)
            return None
        return log_path


__all__ = ["AttemptLogger", "TranscriptLog"]
