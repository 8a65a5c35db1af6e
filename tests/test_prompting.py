from __future__ import annotations

import json

from onchain_ledger import prompting
from onchain_ledger.categorizer import classify
from onchain_ledger.normalization import normalise_transaction

from tests.helpers.explorer_stub import A, USDT_CONTRACT, token_payload, tx_hash, tx_payload
from tests.helpers.openai_stub import transactions_in


def _usdt_record():
    raw = tx_payload(
        tx_hash("c3"),
        to=USDT_CONTRACT,
        raw_input="0xa9059cbb" + "0" * 128,
        token_transfers=[token_payload(symbol="USDT", raw=2_500_000, decimals=6, contract=USDT_CONTRACT)],
    )
    return classify(normalise_transaction(raw, network_currency="ETH"), A)


def test_record_view_uses_decimal_amounts_in_fixed_order() -> None:
    view = prompting.record_view(_usdt_record())
    assert tuple(view) == prompting.RECORD_FIELD_ORDER
    assert (view["amount"], view["currency"]) == ("2.5", "USDT")
    assert view["gas_fee_native"] == "0.00042"
    assert view["token_transfer"]["amount"] == "2.5"
    assert view["category"] == "token_transfer"


def test_single_prompt_embeds_record_description_and_guidance() -> None:
    rec = _usdt_record()
    system, user = prompting.build_single_prompt(rec, description=None, chart_text="CHART-TEXT")
    assert "JSON" in system
    assert "No description provided" in user
    assert "CHART-TEXT" in user
    assert prompting.guidance_for("token_transfer") in user
    assert transactions_in(user)[0]["hash"] == rec.hash
    assert "{{" not in user


def test_placeholders_in_user_text_stay_literal() -> None:
    rec = _usdt_record()
    _, user = prompting.build_single_prompt(
        rec, description="Paid per {{CHART_OF_ACCOUNTS}} memo", chart_text="CHART-TEXT"
    )
    assert "Paid per {{CHART_OF_ACCOUNTS}} memo" in user
    assert user.count("CHART-TEXT") == 1


def test_bulk_prompt_names_group_and_wallet() -> None:
    recs = [_usdt_record()]
    _, user = prompting.build_bulk_prompt("token_transfer", recs, user_address=A, chart_text="C")
    assert 'group of "token_transfer"' in user
    assert A in user
    assert [t["hash"] for t in transactions_in(user)] == [recs[0].hash]


def test_unknown_category_gets_generic_guidance() -> None:
    assert prompting.guidance_for("made_up") == prompting.CATEGORY_GUIDANCE["unknown"]
    assert prompting.guidance_for(None) == prompting.CATEGORY_GUIDANCE["unknown"]


def test_chat_and_verification_prompts() -> None:
    _, chat_user = prompting.build_chat_prompt(
        "How do I book rent?", chart_text="C", extracted={"amount": "10"}, context={"history": []}
    )
    assert "How do I book rent?" in chat_user
    assert json.dumps({"amount": "10"}) in chat_user

    rec = _usdt_record()
    _, verify_user = prompting.build_verification_prompt([], rec)
    assert rec.hash in verify_user
    assert "isValid" in verify_user
