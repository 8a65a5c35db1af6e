from __future__ import annotations

import dataclasses
import itertools
from decimal import Decimal, localcontext

import pytest

from onchain_ledger.normalization import (
    merge_by_hash,
    merge_records,
    normalise_internal_item,
    normalise_token_item,
    normalise_token_transfer,
    normalise_transaction,
    parse_int,
    parse_timestamp,
)

from tests.helpers.explorer_stub import A, B, C, D, USDT_CONTRACT, token_payload, tx_hash, tx_payload

H = tx_hash("ab")


# ---- Unit conversion ----------------------------------------------------------


@pytest.mark.parametrize(
    "raw",
    [0, 1, 10**18, 2_650_000_000_000_000_000, 123_456_789_012_345_678_901_234_567, 2**256 - 1],
)
def test_native_amount_is_raw_value_over_1e18(raw: int) -> None:
    rec = normalise_transaction(tx_payload(H, value=raw), network_currency="ETH")

    assert rec.raw_value == raw
    assert rec.to_dict()["raw_value"] == str(raw)
    with localcontext() as ctx:
        ctx.prec = 100
        assert rec.native_amount * Decimal(10) ** 18 == Decimal(raw)


def test_value_accepts_hex_and_nested_shapes() -> None:
    payload = tx_payload(H)
    payload["value"] = {"value": hex(2 * 10**18)}
    rec = normalise_transaction(payload, network_currency="ETH")
    assert rec.native_amount == Decimal(2)


@pytest.mark.parametrize(
    ("raw", "decimals", "expected"),
    [
        (1_000_000_000, 6, Decimal(1000)),
        (100 * 10**18, 18, Decimal(100)),
        (5, 0, Decimal(5)),
        (1, 8, Decimal("0.00000001")),
    ],
)
def test_token_amount_is_raw_over_ten_to_decimals(raw: int, decimals: int, expected: Decimal) -> None:
    tt = normalise_token_transfer(token_payload(symbol="TKN", raw=raw, decimals=decimals))
    assert tt is not None
    assert tt.raw_amount == raw
    assert tt.amount == expected


def test_token_decimals_prefer_total_and_default_to_18() -> None:
    payload = token_payload(symbol="usdt", raw=2_500_000, decimals=None, contract=USDT_CONTRACT.upper())
    payload["token"]["decimals"] = "18"
    payload["total"]["decimals"] = "6"
    tt = normalise_token_transfer(payload)
    assert tt is not None
    assert tt.amount == Decimal("2.5")
    assert tt.symbol == "USDT"
    assert tt.contract_address == USDT_CONTRACT

    bare = token_payload(symbol="XYD", raw=3 * 10**18, decimals=None)
    tt2 = normalise_token_transfer(bare)
    assert tt2 is not None and tt2.decimals == 18 and tt2.amount == Decimal(3)


def test_token_transfer_without_positive_amount_is_ignored() -> None:
    assert normalise_token_transfer(token_payload(symbol="X", raw=0)) is None
    rec = normalise_transaction(
        tx_payload(H, token_transfers=[token_payload(symbol="X", raw=0), token_payload(symbol="Y", raw=7, decimals=0)]),
        network_currency="ETH",
    )
    assert rec.token_transfer is not None and rec.token_transfer.symbol == "Y"


@pytest.mark.parametrize("status", ["ok", "error"])
def test_gas_fee_for_success_and_failure(status: str) -> None:
    rec = normalise_transaction(
        tx_payload(H, gas_used=21000, gas_price=20_000_000_000, status=status), network_currency="ETH"
    )
    assert rec.status == ("success" if status == "ok" else "failed")
    assert rec.gas_fee_native == Decimal("0.00042")


def test_missing_gas_fields_mean_zero_fee() -> None:
    rec = normalise_transaction(tx_payload(H, gas_used=None, gas_price=None), network_currency="ETH")
    assert rec.gas_fee_native == 0


def test_addresses_and_hash_are_lowercased() -> None:
    rec = normalise_transaction(tx_payload(H.upper().replace("0X", "0x"), frm=A.upper().replace("0X", "0x")), network_currency="ETH")
    assert rec.hash == H
    assert rec.from_address == A


def test_record_without_hash_is_rejected() -> None:
    with pytest.raises(ValueError):
        normalise_internal_item({"value": "1"}, network_currency="ETH")


# ---- Scalars --------------------------------------------------------------------


def test_parse_int_shapes() -> None:
    assert parse_int("0x10") == 16
    assert parse_int(" 42 ") == 42
    assert parse_int("1e+21") == 10**21
    assert parse_int("1.5") is None
    assert parse_int("") is None
    assert parse_int(True) is None


def test_parse_timestamp_shapes() -> None:
    iso = parse_timestamp("2024-03-01T12:00:00Z")
    unix = parse_timestamp("1709294400")
    assert iso is not None and unix is not None
    assert iso == unix
    assert iso.tzinfo is not None
    assert parse_timestamp("not a date") is None


# ---- Merge ----------------------------------------------------------------------


def _regular():
    return normalise_transaction(tx_payload(H, value=0, raw_input="0xa9059cbb" + "0" * 128), network_currency="ETH")


def _token():
    return normalise_token_item(
        token_payload(symbol="USDT", raw=1_000_000_000, decimals=6, contract=USDT_CONTRACT, name="Tether", hash_=H),
        network_currency="ETH",
    )


def test_token_onto_regular_keeps_native_fields() -> None:
    reg, tok = _regular(), _token()
    merged = merge_records(reg, tok)

    assert merged.kind == "regular"
    assert merged.gas_used == 21000
    assert merged.raw_value == 0
    assert merged.token_transfer == tok.token_transfer
    assert merged.source_set == ("regular", "token")


def test_merge_is_commutative() -> None:
    reg, tok = _regular(), _token()
    assert merge_records(reg, tok) == merge_records(tok, reg)

    a = dataclasses.replace(reg, timestamp=None, method="transfer")
    b = dataclasses.replace(reg, gas_used=None, input_data=None)
    assert merge_records(a, b) == merge_records(b, a)


def test_merge_is_idempotent() -> None:
    reg, tok = _regular(), _token()
    merged = merge_records(reg, tok)

    assert merge_records(merged, merged) == merged
    assert merge_records(merged, tok) == merged
    assert merge_records(merged, reg) == merged


def test_merge_fills_nulls_field_by_field() -> None:
    reg = _regular()
    a = dataclasses.replace(reg, timestamp=None)
    b = dataclasses.replace(reg, gas_used=None)
    merged = merge_records(a, b)
    assert merged.timestamp == reg.timestamp
    assert merged.gas_used == reg.gas_used


def test_two_token_records_keep_larger_amount() -> None:
    small = _token()
    big_payload = token_payload(symbol="USDT", raw=2_000_000_000, decimals=6, contract=USDT_CONTRACT, hash_=H)
    big = normalise_token_item(big_payload, network_currency="ETH")
    assert big is not None and small is not None

    assert merge_records(small, big).token_transfer == big.token_transfer
    assert merge_records(big, small).token_transfer == big.token_transfer


def _internal():
    return normalise_internal_item(
        {
            "transaction_hash": H,
            "from": {"hash": C},
            "to": {"hash": D},
            "value": str(5 * 10**17),
            "block_number": 19_000_000,
            "timestamp": "2024-03-01T12:00:00.000000Z",
        },
        network_currency="ETH",
    )


def test_three_feeds_merge_the_same_in_any_order() -> None:
    reg, tok, internal = _regular(), _token(), _internal()

    results = [merge_by_hash(p)[0] for p in itertools.permutations([reg, tok, internal])]

    merged = results[0]
    assert all(r == merged for r in results)
    assert (merged.from_address, merged.to_address) == (A.lower(), B.lower())
    assert merged.raw_value == 0
    assert merged.kind == "regular"
    assert merged.token_transfer == tok.token_transfer
    assert merged.source_set == ("internal", "regular", "token")


def test_internal_call_is_native_side_without_regular() -> None:
    tok, internal = _token(), _internal()
    merged = merge_records(tok, internal)
    assert merged.raw_value == 5 * 10**17
    assert merged.token_transfer == tok.token_transfer
    assert merge_records(internal, tok) == merged


def test_merge_rejects_different_hashes() -> None:
    other = dataclasses.replace(_regular(), hash=tx_hash("cd"))
    with pytest.raises(ValueError):
        merge_records(_regular(), other)


def test_merge_by_hash_keeps_first_seen_order() -> None:
    h2 = tx_hash("cd")
    first = normalise_transaction(tx_payload(h2, to=B), network_currency="ETH")
    out = merge_by_hash([first, _regular(), _token()])
    assert [r.hash for r in out] == [h2, H]
    assert out[1].is_token_transfer
