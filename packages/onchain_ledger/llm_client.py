"""Thin wrapper over the OpenAI Responses API.

``LlmClient.complete(system, user)`` returns the raw response text. Retries
cover HTTP 429/5xx, timeouts and connection errors; anything else is terminal.
Exhausted retries surface as :class:`UpstreamUnavailableError`.

No client is created at import time; ``_create_client`` is the seam tests
patch (``monkeypatch.setattr(llm_client, "OpenAI", Stub)``).
"""

from __future__ import annotations

import time
from typing import Any

from openai import APIConnectionError, APITimeoutError, OpenAI

from . import retrying
from .config import Settings
from .errors import ParseError, UpstreamUnavailableError
from .logging_setup import get_logger

_logger = get_logger("onchain_ledger.llm_client")


def _create_client(settings: Settings) -> OpenAI:
    kwargs: dict[str, Any] = {"timeout": settings.llm_timeout_sec}
    if settings.llm_api_key:
        kwargs["api_key"] = settings.llm_api_key
    if settings.llm_base_url:
        kwargs["base_url"] = settings.llm_base_url
    return OpenAI(**kwargs)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (APITimeoutError, APIConnectionError)):
        return True
    return retrying.is_retryable_status(getattr(exc, "status_code", None))


def extract_response_text(resp: Any) -> str:
    """Locate the text of a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text`` (or its ``.value``).
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


class LlmClient:
    def __init__(self, settings: Settings, *, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = _create_client(self._settings)
        return self._client

    @property
    def model(self) -> str:
        return self._settings.llm_model

    def complete(self, system: str, user: str, *, event: str = "llm_client:complete") -> str:
        """Send one prompt and return the response text.

        Raises
        ------
        UpstreamUnavailableError
            When the provider keeps failing (429/5xx/timeout) or rejects the call.
        ParseError
            When the response carries no text output.
        """

        client = self._get_client()
        t0 = time.perf_counter()

        def _call() -> Any:
            return client.responses.create(model=self.model, instructions=system, input=user)

        try:
            resp = retrying.call_with_retry(
                _call, is_retryable=_is_retryable, logger=_logger, event=event
            )
        except (APITimeoutError, APIConnectionError) as e:
            raise UpstreamUnavailableError(f"LLM unavailable: {e}", service="llm") from e
        except Exception as e:
            status = getattr(e, "status_code", None)
            if isinstance(status, int):
                raise UpstreamUnavailableError(
                    f"LLM request failed with status {status}", service="llm", status_code=status
                ) from e
            raise

        try:
            text = extract_response_text(resp)
        except ValueError as e:
            raise ParseError(str(e)) from e
        _logger.info(
            "%s:done model=%s chars=%d latency_ms=%.2f",
            event,
            self.model,
            len(text),
            (time.perf_counter() - t0) * 1000.0,
        )
        return text


__all__ = ["LlmClient", "extract_response_text"]
