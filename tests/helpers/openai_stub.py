"""Test helpers to stub the OpenAI Responses client used by ``llm_client.py``.

``OpenAIStub`` matches the ``client.responses.create(**kwargs)`` shape. Tests
provide ``respond``: a fixed string, a list of strings/exceptions consumed in
order, or a callable receiving the call kwargs. Exceptions are raised instead
of returned so retry and failure paths can be driven from the same stub.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from typing import Any, TypeAlias

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"

Reply: TypeAlias = str | BaseException


def transactions_in(user_content: str) -> list[dict[str, Any]]:
    """Return the transaction list embedded between the prompt markers."""

    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("prompt is missing the embedded transactions JSON block")
    return json.loads(user_content[b + len(BEGIN) : e])


class _Resp:
    def __init__(self, text: str) -> None:
        self.output_text = text


class OpenAIStub:
    """Minimal stub matching ``openai.OpenAI`` for ``llm_client.py``."""

    def __init__(self, respond: Reply | list[Reply] | Callable[[dict[str, Any]], Reply]) -> None:
        self._respond = respond
        self._queue = list(respond) if isinstance(respond, list) else None
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                return self._outer._create(kwargs)

        self.responses = _Responses(self)

    def _create(self, kwargs: dict[str, Any]) -> _Resp:
        with self._lock:
            self.calls.append(kwargs)
            if self._queue is not None:
                if not self._queue:
                    raise AssertionError("OpenAIStub: no scripted responses left")
                reply: Reply = self._queue.pop(0)
            elif callable(self._respond):
                reply = None  # type: ignore[assignment]
            else:
                reply = self._respond  # type: ignore[assignment]
        if reply is None:
            reply = self._respond(kwargs)  # type: ignore[operator]
        if isinstance(reply, BaseException):
            raise reply
        return _Resp(reply)


class StatusError(Exception):
    """Carries ``status_code`` like ``openai.APIStatusError``."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
