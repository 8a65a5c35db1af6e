from __future__ import annotations

import json
from decimal import Decimal

import pytest

from onchain_ledger.errors import ParseError
from onchain_ledger.journal_parsing import (
    extract_json_array,
    flatten_llm_items,
    parse_entries,
    parse_verification,
    repair_json_text,
)


def _entry(**overrides) -> dict:
    base = {
        "accountDebit": "Consulting Expense",
        "accountCredit": "Digital Assets - Ethereum",
        "amount": "2.65",
        "currency": "ETH",
        "narrative": "Payment for consulting",
        "confidence": 0.9,
    }
    base.update(overrides)
    return base


# ---- Shapes -------------------------------------------------------------------


def test_flat_array() -> None:
    parsed = parse_entries(json.dumps([_entry()]), transaction_hash="0xabc", category="outgoing_transfer")

    assert len(parsed.entries) == 1
    e = parsed.entries[0]
    assert e.amount == Decimal("2.65")
    assert e.entry_type == "main"
    assert e.transaction_hash == "0xabc"
    assert e.category == "outgoing_transfer"
    assert parsed.warnings == [] and parsed.errors == []


def test_nested_items_are_flattened_in_order_with_origin_metadata() -> None:
    text = json.dumps(
        [
            {
                "transactionHash": "0xA",
                "category": "incoming_transfer",
                "entries": [_entry(narrative="first"), _entry(narrative="second", amount="0.1")],
            },
            {"transactionHash": "0xB", "category": "contract_interaction", "entries": [_entry(narrative="third")]},
        ]
    )

    parsed = parse_entries(text)

    assert [e.narrative for e in parsed.entries] == ["first", "second", "third"]
    assert [e.metadata["original_transaction_hash"] for e in parsed.entries] == ["0xA", "0xA", "0xB"]
    assert [e.metadata["original_category"] for e in parsed.entries] == [
        "incoming_transfer",
        "incoming_transfer",
        "contract_interaction",
    ]
    assert [e.transaction_hash for e in parsed.entries] == ["0xA", "0xA", "0xB"]


def test_mixed_shapes_keep_valid_entries_and_report_the_rest() -> None:
    text = json.dumps([_entry(), {"transactionHash": "0xC", "entries": [_entry(amount="1")]}, {"foo": 1}])

    parsed = parse_entries(text)

    assert len(parsed.entries) == 2
    assert any("unrecognised structure" in w for w in parsed.warnings)
    assert len(parsed.errors) == 1


def test_unknown_structure_only_is_a_parse_error() -> None:
    flat = flatten_llm_items([{"foo": 1}, 5])
    assert len(flat.warnings) == 2
    assert flat.entries[1] == {"_raw": 5}

    with pytest.raises(ParseError) as exc:
        parse_entries('[{"foo": 1}]')
    assert exc.value.raw_response == '[{"foo": 1}]'


def test_empty_array_is_not_an_error() -> None:
    parsed = parse_entries("No entries needed: []")
    assert parsed.entries == []


# ---- Text repair --------------------------------------------------------------


def test_code_fences_comments_and_trailing_commas() -> None:
    text = (
        "Here are the entries:\n"
        "```json\n"
        "[\n"
        "  // main entry\n"
        '  {"accountDebit": "Consulting Expense", "accountCredit": "Digital Assets - Ethereum",\n'
        '   "amount": 2.65, "currency": "eth", "narrative": "see https://etherscan.io",}, /* done */\n'
        "]\n"
        "```\n"
    )

    parsed = parse_entries(text)

    assert len(parsed.entries) == 1
    assert parsed.entries[0].currency == "ETH"
    assert parsed.entries[0].narrative == "see https://etherscan.io"


def test_repair_leaves_string_contents_alone() -> None:
    assert repair_json_text('["a,]", 1,]') == '["a,]", 1]'
    assert repair_json_text('{"u": "http://x"} // c') == '{"u": "http://x"} '


def test_brackets_inside_strings_do_not_end_the_array() -> None:
    text = 'Result: [{"accountDebit":"A","accountCredit":"B","amount":"1","currency":"ETH","narrative":"paid ] for [x"}] ok'
    items = extract_json_array(text)
    assert items[0]["narrative"] == "paid ] for [x"


def test_journal_entries_object_is_accepted() -> None:
    text = json.dumps({"journalEntries": [_entry()], "note": "x"})
    assert len(parse_entries(text).entries) == 1


@pytest.mark.parametrize("text", ["I cannot help with that.", "[1, 2", '{"entries": "none"}'])
def test_no_array_is_a_parse_error(text: str) -> None:
    with pytest.raises(ParseError):
        extract_json_array(text)


# ---- Coercion -----------------------------------------------------------------


def test_amount_and_confidence_coercion() -> None:
    parsed = parse_entries(json.dumps([_entry(amount="1,000.50", confidence=85)]))
    e = parsed.entries[0]
    assert e.amount == Decimal("1000.50")
    assert e.confidence == pytest.approx(0.85)


@pytest.mark.parametrize(("raw", "expected"), [("2.65 ETH", "2.65"), (" .5", "0.5"), ("1e-3 BTC", "0.001")])
def test_amount_takes_leading_number(raw: str, expected: str) -> None:
    parsed = parse_entries(json.dumps([_entry(amount=raw)]))
    assert parsed.entries[0].amount == Decimal(expected)


def test_amount_without_leading_number_is_rejected() -> None:
    parsed = parse_entries(json.dumps([_entry(), _entry(amount="ETH 2.65")]))
    assert len(parsed.entries) == 1
    assert len(parsed.errors) == 1


def test_missing_confidence_defaults() -> None:
    item = _entry()
    del item["confidence"]
    assert parse_entries(json.dumps([item])).entries[0].confidence == pytest.approx(0.8)


@pytest.mark.parametrize("amount", ["0", "-5", 0])
def test_non_positive_amounts_are_dropped_with_warning(amount) -> None:
    parsed = parse_entries(json.dumps([_entry(), _entry(amount=amount)]))
    assert len(parsed.entries) == 1
    assert any("non-positive" in w for w in parsed.warnings)


def test_fee_type_is_inferred_from_debit_account() -> None:
    parsed = parse_entries(
        json.dumps(
            [
                _entry(accountDebit="Transaction Fees", amount="0.00042"),
                _entry(accountDebit="Gas Fees", entryType="main"),
                _entry(accountDebit=" gas fee "),
                _entry(accountDebit="Professional Fees"),
                _entry(accountDebit="Gas Station Rental"),
            ]
        )
    )
    assert [e.entry_type for e in parsed.entries] == ["fee", "main", "fee", "main", "main"]


def test_transaction_date_is_parsed() -> None:
    parsed = parse_entries(json.dumps([_entry(transactionDate="2024-03-01T12:00:00Z")]))
    date = parsed.entries[0].transaction_date
    assert date is not None and (date.year, date.month, date.day) == (2024, 3, 1)


# ---- Verification -------------------------------------------------------------


def test_parse_verification() -> None:
    text = (
        "```json\n"
        '{"isValid": true, "confidence": 0.9, "issues": [], "suggestions": ["add IFRS ref"],'
        ' "reasoning": "balanced", "ifrsCompliance": "IAS 38"}\n'
        "```"
    )
    res = parse_verification(text)
    assert res.is_valid is True
    assert res.suggestions == ["add IFRS ref"]
    assert res.ifrs_compliance == "IAS 38"


def test_parse_verification_errors() -> None:
    with pytest.raises(ParseError):
        parse_verification('{"isValid": "maybe"}')
    with pytest.raises(ParseError):
        parse_verification("looks fine to me")
