"""Gas-fee and failed-transaction handling on the single and wallet paths."""

from __future__ import annotations

import json
from decimal import Decimal

from onchain_ledger.journal_parsing import parse_entries
from onchain_ledger.models import WalletQuery
from onchain_ledger.normalization import normalise_transaction
from onchain_ledger.pipeline import apply_fee_rules

from tests.helpers.explorer_stub import A, B, C, D, tx_hash, tx_payload, wallet_routes
from tests.helpers.openai_stub import transactions_in
from tests.helpers.pipeline import make_pipeline

H1 = tx_hash("f1")
HA = tx_hash("aa")
HF = tx_hash("ff")
NATIVE = "Digital Assets - Ethereum"


def _entry(debit: str, credit: str, amount: str, **extra) -> dict:
    return {
        "accountDebit": debit,
        "accountCredit": credit,
        "amount": amount,
        "currency": "ETH",
        "narrative": f"{debit} / {credit}",
        **extra,
    }


def _record(status: str = "ok"):
    payload = tx_payload(H1, frm=A, to=B, value=2_650_000_000_000_000_000, status=status)
    return normalise_transaction(payload, network_currency="ETH")


# ---- apply_fee_rules ----------------------------------------------------------


def test_fee_named_expense_account_stays_main() -> None:
    text = json.dumps(
        [
            _entry("Professional Fees", NATIVE, "2.65"),
            _entry("Transaction Fees", NATIVE, "0.00042"),
        ]
    )
    parsed = parse_entries(text, transaction_hash=H1)

    out = apply_fee_rules(_record(), parsed.entries, user_address=A, native_asset=NATIVE)

    assert [(e.account_debit, e.amount, e.entry_type) for e in out] == [
        ("Professional Fees", Decimal("2.65"), "main"),
        ("Transaction Fees", Decimal("0.00042"), "fee"),
    ]


def test_failed_transaction_keeps_fee_only() -> None:
    parsed = parse_entries(json.dumps([_entry("Consulting Expense", NATIVE, "2.65")]), transaction_hash=H1)

    out = apply_fee_rules(_record(status="error"), parsed.entries, user_address=A, native_asset=NATIVE)

    assert len(out) == 1
    fee = out[0]
    assert (fee.entry_type, fee.account_debit, fee.account_credit) == ("fee", "Transaction Fees", NATIVE)
    assert fee.amount == Decimal("0.00042")


def test_fee_is_dropped_when_user_did_not_send() -> None:
    text = json.dumps(
        [
            _entry(NATIVE, "Trading Revenue", "2.65"),
            _entry("Transaction Fees", NATIVE, "0.00042"),
        ]
    )
    parsed = parse_entries(text, transaction_hash=H1)

    out = apply_fee_rules(_record(), parsed.entries, user_address=C, native_asset=NATIVE)

    assert [e.entry_type for e in out] == ["main"]

    failed = apply_fee_rules(_record(status="error"), parsed.entries, user_address=C, native_asset=NATIVE)
    assert failed == []


# ---- Single transaction -------------------------------------------------------


def test_analyse_failed_transaction_books_gas_only() -> None:
    payload = tx_payload(H1, frm=A, to=B, value=2_650_000_000_000_000_000, status="error")
    reply = json.dumps([_entry("Consulting Expense", NATIVE, "2.65", entryType="main")])
    h = make_pipeline(routes={f"/api/v2/transactions/{H1}": payload}, respond=reply)

    res = h.pipeline.analyse(H1, "Payment for consulting")

    assert res.transaction.status == "failed"
    assert [(e.entry_type, e.amount) for e in res.entries] == [("fee", Decimal("0.00042"))]


def test_analyse_professional_fees_keeps_both_amounts() -> None:
    payload = tx_payload(H1, frm=A, to=B, value=2_650_000_000_000_000_000)
    reply = json.dumps(
        [
            _entry("Professional Fees", NATIVE, "2.65"),
            _entry("Transaction Fees", NATIVE, "0.00042"),
        ]
    )
    h = make_pipeline(routes={f"/api/v2/transactions/{H1}": payload}, respond=reply)

    res = h.pipeline.analyse(H1)

    assert sorted(e.amount for e in res.entries) == [Decimal("0.00042"), Decimal("2.65")]


# ---- Wallet -------------------------------------------------------------------


def _main_and_fee_per_tx(kwargs: dict) -> str:
    out = []
    for tx in transactions_in(kwargs["input"]):
        out.append(
            {
                "transactionHash": tx["hash"],
                "category": tx["category"],
                "entries": [
                    _entry(NATIVE, "Trading Revenue", tx["amount"]),
                    _entry("Transaction Fees", NATIVE, "0.00042", entryType="fee"),
                ],
            }
        )
    return json.dumps(out)


def test_wallet_failed_transaction_keeps_fee_entries_only() -> None:
    regular = [
        tx_payload(HA, frm=C, to=A, value=2 * 10**18, timestamp="2024-03-02T00:00:00Z"),
        tx_payload(HF, frm=A, to=D, value=10**18, status="error", timestamp="2024-03-01T00:00:00Z"),
    ]
    h = make_pipeline(routes=wallet_routes(A, regular=regular), respond=_main_and_fee_per_tx)

    result = h.pipeline.analyse_wallet(A, WalletQuery(include_failed=True))

    types: dict[str, list[str]] = {}
    for e in result.entries:
        types.setdefault(e.transaction_hash or "", []).append(e.entry_type)
    assert sorted(types[HA]) == ["fee", "main"]
    assert types[HF] == ["fee"]
