# ruff: noqa: I001
"""Idempotent storage of journal entries.

Functions here write transaction headers and journal entries to the shared
database owned by ``libs/db`` (``db.models.ledger``). Callers pass an open
session; every function commits the work it performs so that a failure
half-way through a batch leaves already written entries visible for review.

Rules:
- exactly one ``transactions`` row per ``(user_id, txid)``; a second attempt
  raises :class:`ConflictError` carrying the stored entries
- a header left ``failed`` with no entries may be reused by a retry
- every amount is checked against ``AMOUNT_LIMIT`` before the first insert
- header status moves ``pending`` -> ``processed`` or ``pending`` -> ``failed``
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.ledger import JournalEntry, LedgerTransaction
from .errors import AmountOverflowError, ConflictError, InternalError, LedgerError, NotFoundError
from .logging_setup import get_logger
from .models import AMOUNT_LIMIT, EntrySource, ProposedEntry, TransactionRecord, format_amount

MAX_PAGE_LIMIT = 100

_CENT = Decimal("0.01")

_logger = get_logger("onchain_ledger.persistence")


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def check_amounts(entries: Sequence[ProposedEntry]) -> None:
    """Raise :class:`AmountOverflowError` for the first amount at or above the limit."""

    for idx, e in enumerate(entries):
        if abs(e.amount) >= AMOUNT_LIMIT:
            raise AmountOverflowError(e.amount, limit=AMOUNT_LIMIT, entry_index=idx)


def _confidence(v: float) -> Decimal:
    return Decimal(str(v)).quantize(_CENT, rounding=ROUND_HALF_UP)


def _entry_row(
    entry: ProposedEntry,
    *,
    user_id: str,
    source: EntrySource,
    transaction_id: int | None,
    timestamp: datetime | None,
) -> JournalEntry:
    tx_date = entry.transaction_date or timestamp
    anchor = timestamp or entry.transaction_date or datetime.now(UTC)
    meta = dict(entry.metadata)
    meta.setdefault("entry_type", entry.entry_type)
    if entry.transaction_hash:
        meta.setdefault("transaction_hash", entry.transaction_hash)
    if entry.category:
        meta.setdefault("category", entry.category)
    if entry.ifrs_reference:
        meta.setdefault("ifrs_reference", entry.ifrs_reference)
    return JournalEntry(
        user_id=user_id,
        transaction_id=transaction_id,
        account_debit=entry.account_debit,
        account_credit=entry.account_credit,
        amount=entry.amount,
        currency=entry.currency,
        entry_date=anchor.date(),
        transaction_date=tx_date,
        narrative=entry.narrative,
        ai_confidence=_confidence(entry.confidence),
        source=source,
        entry_type=entry.entry_type,
        entry_metadata=meta,
        usd_value=entry.usd_value,
        usd_rate=entry.usd_rate,
        usd_source=entry.usd_source,
        usd_timestamp=entry.usd_timestamp,
    )


def stored_entry_dict(row: JournalEntry) -> dict[str, Any]:
    """camelCase view of a persisted entry."""

    return {
        "id": row.id,
        "transactionId": row.transaction_id,
        "accountDebit": row.account_debit,
        "accountCredit": row.account_credit,
        "amount": format_amount(Decimal(row.amount)),
        "currency": row.currency,
        "entryDate": row.entry_date.isoformat() if row.entry_date else None,
        "transactionDate": row.transaction_date.isoformat() if row.transaction_date else None,
        "narrative": row.narrative,
        "confidence": float(row.ai_confidence) if row.ai_confidence is not None else None,
        "source": row.source,
        "entryType": row.entry_type,
        "metadata": row.entry_metadata or {},
        "isReviewed": row.is_reviewed,
        "usdValue": str(row.usd_value) if row.usd_value is not None else None,
        "usdRate": str(row.usd_rate) if row.usd_rate is not None else None,
        "usdSource": row.usd_source,
    }


def _transaction_dict(row: LedgerTransaction) -> dict[str, Any]:
    return {
        "id": row.id,
        "txid": row.txid,
        "description": row.description,
        "status": row.status,
        "blockchainData": row.blockchain_data,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def find_transaction(session: Session, user_id: str, txid: str) -> LedgerTransaction | None:
    stmt = select(LedgerTransaction).where(
        LedgerTransaction.user_id == user_id, func.lower(LedgerTransaction.txid) == txid.lower()
    )
    return session.scalars(stmt).first()


def entries_for_transaction(session: Session, transaction_id: int) -> list[JournalEntry]:
    stmt = (
        select(JournalEntry)
        .where(JournalEntry.transaction_id == transaction_id)
        .order_by(JournalEntry.id)
    )
    return list(session.scalars(stmt))


def _conflict(session: Session, header: LedgerTransaction) -> ConflictError:
    rows = entries_for_transaction(session, header.id)
    return ConflictError(
        f"transaction {header.txid} already recorded for this user",
        txid=header.txid,
        transaction_id=header.id,
        existing_entries=[stored_entry_dict(r) for r in rows],
    )


def ensure_not_recorded(session: Session, user_id: str, txid: str) -> LedgerTransaction | None:
    """Raise :class:`ConflictError` when ``(user_id, txid)`` is taken.

    Returns a reusable header (status ``failed``, no entries) or ``None``.
    """

    existing = find_transaction(session, user_id, txid)
    if existing is None:
        return None
    if existing.status == "failed" and not entries_for_transaction(session, existing.id):
        return existing
    raise _conflict(session, existing)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def begin_transaction(
    session: Session,
    *,
    user_id: str,
    record: TransactionRecord,
    description: str | None,
) -> LedgerTransaction:
    """Insert (or reclaim) the ``pending`` header for ``record`` and commit it."""

    header = ensure_not_recorded(session, user_id, record.hash)
    if header is not None:
        header.status = "pending"
        header.description = description
        header.blockchain_data = record.to_dict()
        session.commit()
        _logger.info("persistence:header_reused txid=%s id=%d", record.hash, header.id)
        return header

    header = LedgerTransaction(
        user_id=user_id,
        txid=record.hash,
        description=description,
        blockchain_data=record.to_dict(),
        status="pending",
    )
    session.add(header)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race on (user_id, txid).
        session.rollback()
        winner = find_transaction(session, user_id, record.hash)
        if winner is None:
            raise
        raise _conflict(session, winner) from None
    _logger.info("persistence:header_created txid=%s id=%d", record.hash, header.id)
    return header


def set_status(session: Session, header: LedgerTransaction, status: str) -> None:
    header.status = status
    session.commit()


def write_entries(
    session: Session,
    entries: Sequence[ProposedEntry],
    *,
    user_id: str,
    source: EntrySource,
    transaction_id: int | None = None,
    timestamp: datetime | None = None,
) -> list[JournalEntry]:
    """Insert ``entries`` in order, committing after each one.

    Raises
    ------
    AmountOverflowError
        Before anything is written.
    InternalError
        When the database rejects an entry; earlier entries stay committed.
    """

    check_amounts(entries)
    rows: list[JournalEntry] = []
    for idx, entry in enumerate(entries):
        row = _entry_row(
            entry,
            user_id=user_id,
            source=source,
            transaction_id=transaction_id,
            timestamp=timestamp,
        )
        session.add(row)
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            err = InternalError(f"failed to persist entry {idx}")
            _logger.exception(
                "persistence:entry_failed index=%d transaction_id=%s correlation_id=%s",
                idx,
                transaction_id,
                err.correlation_id,
            )
            raise err from e
        rows.append(row)
    return rows


@dataclass(slots=True)
class PersistOutcome:
    transaction_id: int
    entries: list[dict[str, Any]]


def persist_transaction_entries(
    session: Session,
    *,
    user_id: str,
    record: TransactionRecord,
    entries: Sequence[ProposedEntry],
    source: EntrySource,
    description: str | None = None,
    header: LedgerTransaction | None = None,
) -> PersistOutcome:
    """Write the header (unless given) and all entries for one transaction.

    On any entry failure the header is marked ``failed`` and the error is
    re-raised.
    """

    if header is None:
        check_amounts(entries)
        header = begin_transaction(session, user_id=user_id, record=record, description=description)
    try:
        rows = write_entries(
            session,
            entries,
            user_id=user_id,
            source=source,
            transaction_id=header.id,
            timestamp=record.timestamp,
        )
    except LedgerError:
        set_status(session, header, "failed")
        _logger.warning("persistence:transaction_failed txid=%s id=%d", record.hash, header.id)
        raise
    set_status(session, header, "processed")
    _logger.info(
        "persistence:transaction_processed txid=%s id=%d entries=%d",
        record.hash,
        header.id,
        len(rows),
    )
    return PersistOutcome(transaction_id=header.id, entries=[stored_entry_dict(r) for r in rows])


@dataclass(slots=True)
class BulkSaveResult:
    saved: list[dict[str, Any]] = field(default_factory=list)
    # {transaction_hash, transaction_id, existing_entries} per duplicate hash
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)


def _entry_hash(entry: ProposedEntry) -> str | None:
    return entry.metadata.get("original_transaction_hash") or entry.transaction_hash


def save_bulk_entries(
    session: Session,
    *,
    user_id: str,
    entries: Sequence[ProposedEntry],
    records_by_hash: dict[str, TransactionRecord],
    source: EntrySource = "ai_bulk",
) -> BulkSaveResult:
    """Persist a flattened bulk batch, one header per transaction hash.

    Entries whose hash is unknown are stored without a header. Conflicts and
    failures are reported per hash; the rest of the batch still lands.
    """

    out = BulkSaveResult()
    groups: dict[str, list[ProposedEntry]] = {}
    loose: list[ProposedEntry] = []
    lookup = {h.lower(): r for h, r in records_by_hash.items()}
    for e in entries:
        h = _entry_hash(e)
        if h and h.lower() in lookup:
            groups.setdefault(h.lower(), []).append(e)
        else:
            loose.append(e)

    for h, group in groups.items():
        record = lookup[h]
        try:
            outcome = persist_transaction_entries(
                session,
                user_id=user_id,
                record=record,
                entries=group,
                source=source,
                description=f"Bulk analysis ({record.category or 'unknown'})",
            )
        except ConflictError as e:
            out.conflicts.append(
                {
                    "transaction_hash": record.hash,
                    "transaction_id": e.transaction_id,
                    "existing_entries": e.existing_entries,
                }
            )
            continue
        except LedgerError as e:
            out.failed.append({"transaction_hash": record.hash, "reason": str(e)})
            continue
        out.saved.extend(outcome.entries)

    if loose:
        try:
            rows = write_entries(session, loose, user_id=user_id, source=source)
        except LedgerError as e:
            out.failed.append({"transaction_hash": None, "reason": str(e)})
        else:
            out.saved.extend(stored_entry_dict(r) for r in rows)

    _logger.info(
        "persistence:bulk_saved user_id=%s saved=%d conflicts=%d failed=%d",
        user_id,
        len(out.saved),
        len(out.conflicts),
        len(out.failed),
    )
    return out


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_transactions(
    session: Session,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
) -> dict[str, Any]:
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_LIMIT))
    base = select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)
    if status:
        base = base.where(LedgerTransaction.status == status)
    total = session.scalar(select(func.count()).select_from(base.subquery())) or 0
    rows = session.scalars(
        base.order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "transactions": [_transaction_dict(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def get_transaction_with_entries(
    session: Session, user_id: str, transaction_id: int
) -> dict[str, Any]:
    row = session.get(LedgerTransaction, transaction_id)
    if row is None or row.user_id != user_id:
        raise NotFoundError(f"transaction {transaction_id} not found")
    out = _transaction_dict(row)
    out["journalEntries"] = [stored_entry_dict(r) for r in entries_for_transaction(session, row.id)]
    return out


__all__ = [
    "BulkSaveResult",
    "PersistOutcome",
    "begin_transaction",
    "check_amounts",
    "ensure_not_recorded",
    "entries_for_transaction",
    "find_transaction",
    "get_transaction_with_entries",
    "list_transactions",
    "persist_transaction_entries",
    "save_bulk_entries",
    "set_status",
    "stored_entry_dict",
    "write_entries",
]
