"""Normalisation of block-explorer payloads and the hash-keyed merge rule table.

Three feeds describe the same on-chain activity in different shapes:

- ``regular``: ``/api/v2/transactions/{hash}`` or an address' transaction list
- ``token``: ``/api/v2/addresses/{addr}/token-transfers`` items
- ``internal``: ``/api/v2/addresses/{addr}/internal-transactions`` items

Each payload becomes a :class:`~onchain_ledger.models.TransactionRecord`
tagged with its ``kind``. Records sharing a hash are then collapsed with
:func:`merge_records`, whose behaviour is the table in ``_MERGE_RULES``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import NATIVE_DECIMALS, TokenTransfer, TransactionRecord, TxStatus

_SUCCESS_STATUSES = {"ok", "success", "1", "true"}


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------


def parse_int(raw: Any) -> int | None:
    """Parse an integer from explorer JSON (int, decimal string or ``0x`` hex)."""

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    try:
        if s.lower().startswith("0x"):
            return int(s, 16)
        return int(s)
    except ValueError:
        pass
    # Some explorers render big integers as "1e+21"; accept only exact values.
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    if d != d.to_integral_value():
        return None
    return int(d)


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse ISO-8601 (``Z`` suffix allowed) or unix seconds into aware UTC."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdigit()):
        return datetime.fromtimestamp(int(raw), tz=UTC)
    s = str(raw).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def _address(raw: Any) -> str | None:
    """Explorer v2 nests addresses as ``{"hash": "0x.."}``; older shapes use strings."""

    if raw is None:
        return None
    if isinstance(raw, Mapping):
        raw = raw.get("hash") or raw.get("address") or raw.get("address_hash")
    if not raw:
        return None
    return str(raw).strip().lower()


def _status(raw: Mapping[str, Any]) -> TxStatus:
    if "status" in raw and raw.get("status") is not None:
        return "success" if str(raw.get("status")).strip().lower() in _SUCCESS_STATUSES else "failed"
    if "success" in raw and raw.get("success") is not None:
        return "success" if bool(raw.get("success")) else "failed"
    if raw.get("result") not in (None, "", "success"):
        return "failed"
    return "success"


def _value(raw: Mapping[str, Any]) -> int:
    v = raw.get("value")
    if isinstance(v, Mapping):
        v = v.get("value")
    return parse_int(v) or 0


def _hash(raw: Mapping[str, Any]) -> str:
    h = raw.get("hash") or raw.get("transaction_hash") or raw.get("tx_hash")
    if isinstance(h, Mapping):
        h = h.get("hash")
    if not h:
        raise ValueError("explorer record has no transaction hash")
    return str(h).strip().lower()


# ---------------------------------------------------------------------------
# Feed normalisers
# ---------------------------------------------------------------------------


def normalise_token_transfer(raw: Mapping[str, Any]) -> TokenTransfer | None:
    """Return a :class:`TokenTransfer` or ``None`` when no positive amount is present.

    ``total.decimals`` wins over ``token.decimals``; both default to 18.
    """

    token = raw.get("token") or {}
    total = raw.get("total") or {}
    if not isinstance(total, Mapping):
        total = {"value": total}
    raw_amount = parse_int(total.get("value"))
    if raw_amount is None:
        raw_amount = parse_int(raw.get("value"))
    if raw_amount is None or raw_amount <= 0:
        return None

    decimals = parse_int(total.get("decimals"))
    if decimals is None:
        decimals = parse_int(token.get("decimals"))
    if decimals is None:
        decimals = NATIVE_DECIMALS

    symbol = str(token.get("symbol") or raw.get("token_symbol") or "UNKNOWN").strip().upper()
    contract = token.get("address") or token.get("address_hash")
    return TokenTransfer(
        symbol=symbol,
        name=token.get("name") or None,
        contract_address=str(contract).lower() if contract else None,
        decimals=decimals,
        raw_amount=raw_amount,
        from_address=_address(raw.get("from")),
        to_address=_address(raw.get("to")),
    )


def normalise_transaction(raw: Mapping[str, Any], *, network_currency: str) -> TransactionRecord:
    """Normalise a v2 transaction payload (single fetch or address list item)."""

    token: TokenTransfer | None = None
    for tt in raw.get("token_transfers") or ():
        token = normalise_token_transfer(tt)
        if token is not None:
            break

    return TransactionRecord(
        hash=_hash(raw),
        from_address=_address(raw.get("from")),
        to_address=_address(raw.get("to")),
        raw_value=_value(raw),
        network_currency=network_currency,
        kind="regular",
        gas_used=parse_int(raw.get("gas_used")),
        gas_price=parse_int(raw.get("gas_price")),
        block_number=parse_int(raw.get("block_number") or raw.get("block")),
        timestamp=parse_timestamp(raw.get("timestamp")),
        status=_status(raw),
        input_data=raw.get("raw_input") or raw.get("input") or None,
        method=raw.get("method") or None,
        token_transfer=token,
        source_set=("regular",),
    )


def normalise_token_item(raw: Mapping[str, Any], *, network_currency: str) -> TransactionRecord | None:
    """Normalise one item of the address token-transfers feed."""

    token = normalise_token_transfer(raw)
    if token is None:
        return None
    return TransactionRecord(
        hash=_hash(raw),
        from_address=token.from_address,
        to_address=token.to_address,
        raw_value=0,
        network_currency=network_currency,
        kind="token",
        block_number=parse_int(raw.get("block_number") or raw.get("block")),
        timestamp=parse_timestamp(raw.get("timestamp")),
        method=raw.get("method") or None,
        token_transfer=token,
        source_set=("token",),
    )


def normalise_internal_item(raw: Mapping[str, Any], *, network_currency: str) -> TransactionRecord:
    """Normalise one item of the address internal-transactions feed."""

    return TransactionRecord(
        hash=_hash(raw),
        from_address=_address(raw.get("from")),
        to_address=_address(raw.get("to")),
        raw_value=_value(raw),
        network_currency=network_currency,
        kind="internal",
        block_number=parse_int(raw.get("block_number") or raw.get("block")),
        timestamp=parse_timestamp(raw.get("timestamp")),
        status=_status(raw),
        source_set=("internal",),
    )


# ---------------------------------------------------------------------------
# Merge rule table
# ---------------------------------------------------------------------------

# Fields patched field-by-field (non-null wins) in every rule.
_PATCHABLE = (
    "from_address",
    "to_address",
    "gas_used",
    "gas_price",
    "block_number",
    "timestamp",
    "input_data",
    "method",
)

# Conflicting non-null values are resolved towards the richer feed.
_KIND_RANK = {"regular": 0, "internal": 1, "token": 2}


def _feed_rank(r: TransactionRecord) -> int:
    # A record already merged with the regular feed ranks as regular.
    return min((_KIND_RANK[k] for k in r.source_set if k in _KIND_RANK), default=_KIND_RANK[r.kind])


def _rank(r: TransactionRecord) -> tuple[Any, ...]:
    # Total order: best feed kind first, then a stable rendering of the fields so
    # that equal-ranked records still pick the same primary in either order.
    return (
        _feed_rank(r),
        0 if r.status == "success" else 1,
        tuple(str(getattr(r, name)) for name in (*_PATCHABLE, "raw_value")),
    )


def _ordered(a: TransactionRecord, b: TransactionRecord) -> tuple[TransactionRecord, TransactionRecord]:
    return (a, b) if _rank(a) <= _rank(b) else (b, a)


def _patch(primary: TransactionRecord, secondary: TransactionRecord, **overrides: Any) -> TransactionRecord:
    values: dict[str, Any] = {}
    for name in _PATCHABLE:
        pv = getattr(primary, name)
        values[name] = pv if pv is not None else getattr(secondary, name)
    values["source_set"] = tuple(sorted(set(primary.source_set + secondary.source_set)))
    values.update(overrides)
    return dataclasses.replace(primary, **values)


def _token_onto_plain(plain: TransactionRecord, tokened: TransactionRecord) -> TransactionRecord:
    # The better-ranked side keeps raw_value/status/gas; the token amount rides on token_transfer.
    primary, secondary = _ordered(plain, tokened)
    return _patch(primary, secondary, token_transfer=tokened.token_transfer)


def _token_key(r: TransactionRecord) -> tuple[Any, ...]:
    tt = r.token_transfer
    assert tt is not None
    return (
        tt.amount,
        tt.metadata_score(),
        tt.contract_address or "",
        tt.symbol,
        tt.name or "",
        tt.decimals,
    )


def _both_tokens(a: TransactionRecord, b: TransactionRecord) -> TransactionRecord:
    ka, kb = _token_key(a), _token_key(b)
    if ka == kb:
        keep = _ordered(a, b)[0]
    else:
        keep = a if ka > kb else b
    base, extra = _ordered(a, b)
    return _patch(base, extra, token_transfer=keep.token_transfer)


def _field_by_field(a: TransactionRecord, b: TransactionRecord) -> TransactionRecord:
    primary, secondary = _ordered(a, b)
    return _patch(primary, secondary)


_MERGE_RULES: dict[tuple[bool, bool], Callable[[TransactionRecord, TransactionRecord], TransactionRecord]] = {
    # existing lacks token data, new has it
    (False, True): lambda existing, new: _token_onto_plain(existing, new),
    # existing has token data, new is plain
    (True, False): lambda existing, new: _token_onto_plain(new, existing),
    (True, True): _both_tokens,
    (False, False): _field_by_field,
}


def merge_records(existing: TransactionRecord, new: TransactionRecord) -> TransactionRecord:
    """Merge two records describing the same hash.

    The result does not depend on argument order: every rule picks its
    primary by the best feed kind in ``source_set`` (regular, then internal,
    then token) and only fills nulls from the other side.
    """

    if existing.hash != new.hash:
        raise ValueError(f"cannot merge different hashes: {existing.hash} != {new.hash}")
    rule = _MERGE_RULES[(existing.is_token_transfer, new.is_token_transfer)]
    merged = rule(existing, new)
    kind = "regular" if "regular" in merged.source_set else merged.kind
    return dataclasses.replace(merged, kind=kind)


def merge_by_hash(records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Collapse records to one per hash, keeping first-seen order."""

    by_hash: dict[str, TransactionRecord] = {}
    for rec in records:
        current = by_hash.get(rec.hash)
        by_hash[rec.hash] = rec if current is None else merge_records(current, rec)
    return list(by_hash.values())


__all__ = [
    "merge_by_hash",
    "merge_records",
    "normalise_internal_item",
    "normalise_token_item",
    "normalise_token_transfer",
    "normalise_transaction",
    "parse_int",
    "parse_timestamp",
]
