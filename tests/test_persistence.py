from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select

from db.client import session_scope
from db.models.ledger import JournalEntry, LedgerTransaction
from onchain_ledger import persistence
from onchain_ledger.errors import AmountOverflowError, ConflictError, NotFoundError
from onchain_ledger.models import ProposedEntry
from onchain_ledger.normalization import normalise_transaction

from tests.helpers.db import bootstrap_sqlite_db
from tests.helpers.explorer_stub import tx_hash, tx_payload

USER = "user-1"


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.db")


def _record(tag: str = "a1"):
    return normalise_transaction(tx_payload(tx_hash(tag), value=2_650_000_000_000_000_000), network_currency="ETH")


def _entries(amount: Decimal = Decimal("2.65"), **meta) -> list[ProposedEntry]:
    return [
        ProposedEntry(
            account_debit="Consulting Expense",
            account_credit="Digital Assets - Ethereum",
            amount=amount,
            currency="ETH",
            narrative="Consulting payment",
            confidence=0.9,
            metadata=dict(meta),
        ),
        ProposedEntry(
            account_debit="Transaction Fees",
            account_credit="Digital Assets - Ethereum",
            amount=Decimal("0.00042"),
            currency="ETH",
            narrative="Gas fee",
            entry_type="fee",
        ),
    ]


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def test_persist_writes_header_and_entries(db_url: str) -> None:
    rec = _record()
    with session_scope(database_url=db_url) as s:
        out = persistence.persist_transaction_entries(
            s, user_id=USER, record=rec, entries=_entries(), source="ai_single", description="consulting"
        )
        header = s.get(LedgerTransaction, out.transaction_id)
        assert header is not None and header.status == "processed"
        assert header.blockchain_data["raw_value"] == "2650000000000000000"

    assert [e["amount"] for e in out.entries] == ["2.65", "0.00042"]
    assert out.entries[0]["confidence"] == pytest.approx(0.9)
    assert out.entries[1]["entryType"] == "fee"
    assert out.entries[0]["metadata"]["entry_type"] == "main"


def test_second_persist_conflicts_without_writing(db_url: str) -> None:
    rec = _record()
    with session_scope(database_url=db_url) as s:
        persistence.persist_transaction_entries(s, user_id=USER, record=rec, entries=_entries(), source="ai_single")

    with session_scope(database_url=db_url) as s:
        with pytest.raises(ConflictError) as exc:
            persistence.persist_transaction_entries(
                s, user_id=USER, record=rec, entries=_entries(), source="ai_single"
            )
        assert len(exc.value.existing_entries) == 2
        assert exc.value.txid == rec.hash
        assert _count(s, JournalEntry) == 2
        assert _count(s, LedgerTransaction) == 1

    # Another user may record the same hash.
    with session_scope(database_url=db_url) as s:
        persistence.persist_transaction_entries(s, user_id="user-2", record=rec, entries=_entries(), source="ai_single")
        assert _count(s, JournalEntry) == 4


def test_amount_overflow_is_rejected_before_any_insert(db_url: str) -> None:
    rec = _record()
    with session_scope(database_url=db_url) as s:
        with pytest.raises(AmountOverflowError) as exc:
            persistence.persist_transaction_entries(
                s, user_id=USER, record=rec, entries=_entries(Decimal(10) ** 12), source="ai_single"
            )
        assert exc.value.entry_index == 0
        assert persistence.find_transaction(s, USER, rec.hash) is None
        assert _count(s, JournalEntry) == 0

    with session_scope(database_url=db_url) as s:
        persistence.persist_transaction_entries(
            s, user_id=USER, record=rec, entries=_entries(Decimal("999999999999.99")), source="ai_single"
        )


def test_failed_header_without_entries_is_reused(db_url: str) -> None:
    rec = _record()
    with session_scope(database_url=db_url) as s:
        header = persistence.begin_transaction(s, user_id=USER, record=rec, description=None)
        persistence.set_status(s, header, "failed")
        first_id = header.id

    with session_scope(database_url=db_url) as s:
        out = persistence.persist_transaction_entries(s, user_id=USER, record=rec, entries=_entries(), source="ai_single")
        assert out.transaction_id == first_id
        assert _count(s, LedgerTransaction) == 1


def test_pending_header_is_a_conflict(db_url: str) -> None:
    rec = _record()
    with session_scope(database_url=db_url) as s:
        persistence.begin_transaction(s, user_id=USER, record=rec, description=None)
        with pytest.raises(ConflictError) as exc:
            persistence.ensure_not_recorded(s, USER, rec.hash.upper().replace("0X", "0x"))
        assert exc.value.existing_entries == []


def test_bulk_save_groups_by_original_hash(db_url: str) -> None:
    a, b = _record("aa"), _record("bb")
    main_a, fee = _entries(original_transaction_hash=a.hash)
    main_b = _entries(original_transaction_hash=b.hash)[0]
    stray = _entries(original_transaction_hash="0xunknown")[0]
    lookup = {a.hash: a, b.hash: b}
    with session_scope(database_url=db_url) as s:
        first = persistence.save_bulk_entries(
            s, user_id=USER, entries=[main_a, fee, main_b, stray], records_by_hash=lookup
        )
        assert len(first.saved) == 4
        assert first.conflicts == [] and first.failed == []
        # fee and stray carry no known hash and are stored without a header
        assert _count(s, LedgerTransaction) == 2
        assert sum(1 for e in first.saved if e["transactionId"] is None) == 2

        again = persistence.save_bulk_entries(s, user_id=USER, entries=[main_a, main_b], records_by_hash=lookup)
        conflicts = {c["transaction_hash"]: c for c in again.conflicts}
        assert sorted(conflicts) == sorted([a.hash, b.hash])
        assert conflicts[a.hash]["transaction_id"] is not None
        assert [e["amount"] for e in conflicts[a.hash]["existing_entries"]] == ["2.65"]
        assert again.saved == []


def test_list_transactions_paginates_and_caps_limit(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        for tag in ("a1", "b2", "c3"):
            persistence.persist_transaction_entries(
                s, user_id=USER, record=_record(tag), entries=_entries()[:1], source="ai_single"
            )
        persistence.persist_transaction_entries(
            s, user_id="someone-else", record=_record("d4"), entries=_entries()[:1], source="ai_single"
        )

        page = persistence.list_transactions(s, USER, page=1, limit=2)
        assert len(page["transactions"]) == 2
        assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

        capped = persistence.list_transactions(s, USER, limit=500)
        assert capped["pagination"]["limit"] == persistence.MAX_PAGE_LIMIT

        assert persistence.list_transactions(s, USER, status="failed")["pagination"]["total"] == 0


def test_get_transaction_with_entries_is_scoped_to_user(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        out = persistence.persist_transaction_entries(
            s, user_id=USER, record=_record(), entries=_entries(), source="ai_single"
        )
        detail = persistence.get_transaction_with_entries(s, USER, out.transaction_id)
        assert len(detail["journalEntries"]) == 2
        with pytest.raises(NotFoundError):
            persistence.get_transaction_with_entries(s, "intruder", out.transaction_id)
        with pytest.raises(NotFoundError):
            persistence.get_transaction_with_entries(s, USER, 9999)
