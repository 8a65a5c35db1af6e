"""Error taxonomy shared by every component.

Components raise the most specific subclass at their boundary; the CLI maps
any :class:`LedgerError` to a one-line message and exit code 1.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for all errors raised by ``onchain_ledger``."""


class NotFoundError(LedgerError):
    """Explorer returned 404 for a hash or address, or a stored row is missing."""


class UpstreamUnavailableError(LedgerError):
    """Explorer, LLM or oracle failed with 5xx/429 or timed out."""

    def __init__(self, message: str, *, service: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class DeadlineExceededError(UpstreamUnavailableError):
    """A wallet run ran past its wall-clock deadline before producing entries."""

    def __init__(self, message: str, *, phase: str) -> None:
        super().__init__(message, service="pipeline")
        self.phase = phase


class ParseError(LedgerError):
    """Model output could not be reduced to a valid entry list."""

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class EntryValidationError(LedgerError):
    """An entry references an account that can be neither resolved nor created."""

    def __init__(
        self,
        message: str,
        *,
        account_name: str | None = None,
        entry_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.account_name = account_name
        self.entry_index = entry_index


class ConflictError(LedgerError):
    """``(user_id, hash)`` is already persisted; carries the stored entries."""

    def __init__(
        self,
        message: str,
        *,
        txid: str,
        transaction_id: int | None = None,
        existing_entries: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        super().__init__(message)
        self.txid = txid
        self.transaction_id = transaction_id
        self.existing_entries = list(existing_entries)


class AmountOverflowError(LedgerError):
    """An entry amount does not fit the storage precision."""

    def __init__(self, amount: Decimal, *, limit: Decimal, entry_index: int | None = None) -> None:
        super().__init__(f"amount {amount} exceeds storage limit {limit} (entry {entry_index})")
        self.amount = amount
        self.limit = limit
        self.entry_index = entry_index


class InternalError(LedgerError):
    """Anything unexpected. ``correlation_id`` ties the message to the log line."""

    def __init__(self, message: str, *, correlation_id: str | None = None) -> None:
        self.correlation_id = correlation_id or uuid.uuid4().hex
        super().__init__(f"{message} (correlation_id={self.correlation_id})")


__all__ = [
    "AmountOverflowError",
    "ConflictError",
    "DeadlineExceededError",
    "EntryValidationError",
    "InternalError",
    "LedgerError",
    "NotFoundError",
    "ParseError",
    "UpstreamUnavailableError",
]
