"""Text-completion client base class shared by all language-model integrations."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMTransportError",
]


class LLMClientError(RuntimeError):
    """Base error raised for language-model client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model reply carries no usable text."""


@dataclass(slots=True)
class LLMRequest:
    """Prompt payload sent to a text-completion model."""

    prompt: str
    max_tokens: int
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = 0.0

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for a messages-style API."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": self.prompt}],
        }
        if self.system_prompt:
            payload["system"] = self.system_prompt
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        return payload


AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception], int], None]


class LLMClient:
    """High-level helper that retries transient transport failures."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(
        self,
        prompt: str,
        max_tokens: int,
        *,
        system_prompt: Optional[str] = None,
        logger: Optional[AttemptLogger] = None,
    ) -> str:
        """Send ``prompt`` and return the model's text reply."""
        request = LLMRequest(prompt=prompt, max_tokens=max_tokens, system_prompt=system_prompt)
        return self.invoke(request, logger=logger)

    def invoke(self, request: LLMRequest, *, logger: Optional[AttemptLogger] = None) -> str:
        """Invoke the model, retrying transport failures, and return its text.

        Format errors are not retried: the reply arrived, it just carried no
        text. The last transport error propagates once retries are exhausted.
        """
        payload = request.to_payload(self._model)
        last_error: Optional[LLMTransportError] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                text = self._raw_invoke(payload)
            except LLMTransportError as error:
                last_error = error
                if logger:
                    logger(payload, None, error, attempt)
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            if not text or not text.strip():
                error = LLMResponseFormatError("Model returned an empty response.")
                if logger:
                    logger(payload, text, error, attempt)
                raise error
            if logger:
                logger(payload, text, None, attempt)
            return text

        assert last_error is not None
        raise last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
