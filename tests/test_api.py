from __future__ import annotations

import json
from pathlib import Path

import pytest

from onchain_ledger import api
from onchain_ledger.config import Settings
from onchain_ledger.errors import NotFoundError

from tests.helpers.explorer_stub import A, B, tx_hash, tx_payload
from tests.helpers.pipeline import make_pipeline

H1 = tx_hash("a1")
REPLY = json.dumps(
    [
        {
            "accountDebit": "Professional Services",
            "accountCredit": "Digital Assets - Ethereum",
            "amount": "2.65",
            "currency": "ETH",
            "narrative": "Consulting payment",
        }
    ]
)


def test_analyse_then_query_stored_transaction(tmp_path: Path) -> None:
    payload = tx_payload(H1, frm=A, to=B, value=2_650_000_000_000_000_000)
    h = make_pipeline(routes={f"/api/v2/transactions/{H1}": payload}, respond=REPLY, tmp_path=tmp_path)
    settings = Settings(storage_url=h.database_url)

    result = api.analyse_transaction(H1, "consulting", "user-1", pipeline=h.pipeline)
    assert result.saved and result.transaction_id is not None

    listing = api.list_transactions("user-1", settings=settings)
    assert listing["pagination"]["total"] == 1
    detail = api.get_transaction("user-1", result.transaction_id, settings=settings)
    assert [e["amount"] for e in detail["journalEntries"]] == ["2.65", "0.00042"]

    with pytest.raises(NotFoundError):
        api.get_transaction("user-2", result.transaction_id, settings=settings)


def test_get_prices_without_oracle_uses_fallback() -> None:
    out = api.get_prices(["eth", "NOPE"], settings=Settings())
    assert out["prices"]["ETH"].source == "fallback"
    assert out["unsupported"] == ["NOPE"]
