"""Reduce untrusted model text to validated journal entries.

Pipeline for one response:

1. locate the first balanced JSON array (``[...]``), skipping brackets inside
   strings; an object carrying ``journalEntries`` is accepted as well
2. ``json.loads``; on failure retry after stripping code fences, comments and
   trailing commas
3. flatten nested ``{transactionHash, category, entries[]}`` items
4. validate each element into a :class:`~onchain_ledger.models.ProposedEntry`

Nothing here evaluates model output as code.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ParseError
from .logging_setup import get_logger
from .models import ProposedEntry, VerificationResult
from .normalization import parse_timestamp

DEFAULT_CONFIDENCE = 0.8

FEE_ACCOUNT = "Transaction Fees"
# Debit accounts that mark an entry as the gas fee when the model omits entryType.
FEE_ACCOUNT_NAMES = frozenset({"transaction fees", "transaction fee", "gas fees", "gas fee", "network fees"})

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*")
# Leading number of a string such as "2.65 ETH".
_LEADING_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

_logger = get_logger("onchain_ledger.journal_parsing")


# ---------------------------------------------------------------------------
# Text repair
# ---------------------------------------------------------------------------


def _scan(text: str) -> Iterator[tuple[int, str, bool]]:
    """Yield ``(index, char, inside_string)`` honouring JSON escapes."""

    in_str = False
    escaped = False
    for i, ch in enumerate(text):
        if in_str:
            yield i, ch, True
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            yield i, ch, True
            continue
        yield i, ch, False


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text)


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside of strings."""

    out: list[str] = []
    i = 0
    n = len(text)
    in_str = False
    escaped = False
    while i < n:
        ch = text[i]
        if in_str:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            i += 1
            continue
        if ch == '"':
            in_str = True
            out.append(ch)
            i += 1
            continue
        if text.startswith("//", i):
            nl = text.find("\n", i)
            i = n if nl == -1 else nl
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Drop commas directly followed (modulo whitespace) by ``]`` or ``}``."""

    out: list[str] = []
    pending_comma: int | None = None
    for _i, ch, in_str in _scan(text):
        if not in_str and ch == ",":
            pending_comma = len(out)
            out.append(ch)
            continue
        if not in_str and ch in "]}" and pending_comma is not None:
            del out[pending_comma]
        if in_str or not ch.isspace():
            pending_comma = None
        out.append(ch)
    return "".join(out)


def repair_json_text(text: str) -> str:
    return strip_trailing_commas(strip_comments(strip_code_fences(text)))


def balanced_spans(text: str, opener: str, closer: str) -> Iterator[str]:
    """Yield every top-level balanced ``opener..closer`` substring in order."""

    depth = 0
    start = -1
    for i, ch, in_str in _scan(text):
        if in_str:
            continue
        if ch == opener:
            if depth == 0:
                start = i
            depth += 1
        elif ch == closer and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def _loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return json.loads(repair_json_text(candidate))


def extract_json_array(text: str) -> list[Any]:
    """Return the first JSON array found in ``text``.

    Raises
    ------
    ParseError
        When no array (or ``journalEntries`` object) can be decoded.
    """

    for source in (text, repair_json_text(text)):
        for span in balanced_spans(source, "[", "]"):
            try:
                decoded = _loads(span)
            except json.JSONDecodeError:
                continue
            if isinstance(decoded, list):
                return decoded
        for span in balanced_spans(source, "{", "}"):
            try:
                decoded = _loads(span)
            except json.JSONDecodeError:
                continue
            if isinstance(decoded, Mapping) and isinstance(decoded.get("journalEntries"), list):
                return list(decoded["journalEntries"])
    raise ParseError("model response contains no JSON entry array", raw_response=text)


def extract_json_object(text: str) -> Mapping[str, Any]:
    for source in (text, repair_json_text(text)):
        for span in balanced_spans(source, "{", "}"):
            try:
                decoded = _loads(span)
            except json.JSONDecodeError:
                continue
            if isinstance(decoded, Mapping):
                return decoded
    raise ParseError("model response contains no JSON object", raw_response=text)


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class FlattenResult:
    entries: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _item_hash(item: Mapping[str, Any]) -> Any:
    return item.get("transactionHash") or item.get("transaction_hash") or item.get("hash")


def _has_accounts(item: Mapping[str, Any]) -> bool:
    return any(k in item for k in ("accountDebit", "accountCredit", "account_debit", "account_credit"))


def flatten_llm_items(items: Sequence[Any]) -> FlattenResult:
    """Flatten grouped output into one entry list, preserving order.

    - ``item.entries`` non-empty: each element is emitted with
      ``metadata.original_transaction_hash`` / ``metadata.original_category``
      merged in
    - item with ``accountDebit``/``accountCredit``: emitted as-is
    - anything else: emitted verbatim with a structural warning
    """

    out = FlattenResult()
    for pos, item in enumerate(items):
        if not isinstance(item, Mapping):
            out.warnings.append(f"item {pos}: not an object ({type(item).__name__})")
            out.entries.append({"_raw": item})
            continue
        nested = item.get("entries")
        if isinstance(nested, list) and nested:
            tx_hash = _item_hash(item)
            category = item.get("category")
            for sub in nested:
                if not isinstance(sub, Mapping):
                    out.warnings.append(f"item {pos}: nested entry is not an object")
                    out.entries.append({"_raw": sub})
                    continue
                elem = dict(sub)
                meta = dict(elem.get("metadata") or {})
                meta.update({"original_transaction_hash": tx_hash, "original_category": category})
                elem["metadata"] = meta
                elem.setdefault("transactionHash", tx_hash)
                elem.setdefault("category", category)
                out.entries.append(elem)
        elif _has_accounts(item):
            out.entries.append(dict(item))
        else:
            out.warnings.append(f"item {pos}: unrecognised structure keys={sorted(item)}")
            out.entries.append(dict(item))
    return out


# ---------------------------------------------------------------------------
# Entry validation
# ---------------------------------------------------------------------------


def _to_decimal(v: Any) -> Decimal:
    if isinstance(v, bool):
        raise ValueError("amount must be numeric")
    if isinstance(v, (int, Decimal)):
        d = Decimal(v)
    elif isinstance(v, float):
        d = Decimal(repr(v))
    else:
        s = str(v).strip().replace(",", "")
        m = _LEADING_NUMBER_RE.match(s)
        if m is None:
            raise ValueError(f"amount is not numeric: {v!r}")
        try:
            d = Decimal(m.group(0))
        except InvalidOperation as e:
            raise ValueError(f"amount is not numeric: {v!r}") from e
    if not d.is_finite():
        raise ValueError("amount must be finite")
    return d


class _RawEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    account_debit: str = Field(validation_alias=AliasChoices("accountDebit", "account_debit", "debit"))
    account_credit: str = Field(
        validation_alias=AliasChoices("accountCredit", "account_credit", "credit")
    )
    amount: Decimal
    currency: str
    narrative: str = Field(validation_alias=AliasChoices("narrative", "description"))
    confidence: float | None = None
    entry_type: str | None = Field(default=None, validation_alias=AliasChoices("entryType", "entry_type"))
    transaction_date: Any = Field(
        default=None, validation_alias=AliasChoices("transactionDate", "transaction_date", "date")
    )
    transaction_hash: str | None = Field(
        default=None, validation_alias=AliasChoices("transactionHash", "transaction_hash")
    )
    category: str | None = None
    ifrs_reference: str | None = Field(
        default=None, validation_alias=AliasChoices("ifrsReference", "ifrs_reference")
    )
    metadata: dict[str, Any] | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v: Any) -> Decimal:
        return _to_decimal(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float | None:
        if v is None or v == "":
            return None
        f = float(v)
        # Some models answer in percent.
        if 1.0 < f <= 100.0:
            f = f / 100.0
        return min(max(f, 0.0), 1.0)


def _entry_type(raw: _RawEntry) -> str:
    if raw.entry_type in ("main", "fee"):
        return raw.entry_type
    return "fee" if raw.account_debit.strip().lower() in FEE_ACCOUNT_NAMES else "main"


@dataclass(slots=True)
class ParsedEntries:
    entries: list[ProposedEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def to_proposed_entries(
    raw_items: Sequence[Mapping[str, Any]],
    *,
    transaction_hash: str | None = None,
    category: str | None = None,
) -> ParsedEntries:
    """Validate flattened elements; invalid or non-positive ones are reported and dropped."""

    out = ParsedEntries()
    for idx, item in enumerate(raw_items):
        try:
            raw = _RawEntry.model_validate(item)
        except ValidationError as e:
            out.errors.append(f"entry {idx}: {e.errors()[0].get('msg', 'invalid')}")
            continue
        if raw.amount <= 0:
            out.warnings.append(f"entry {idx}: dropped non-positive amount {raw.amount}")
            continue
        try:
            entry = ProposedEntry(
                account_debit=raw.account_debit,
                account_credit=raw.account_credit,
                amount=raw.amount,
                currency=raw.currency,
                narrative=raw.narrative,
                confidence=DEFAULT_CONFIDENCE if raw.confidence is None else raw.confidence,
                entry_type=_entry_type(raw),
                transaction_date=parse_timestamp(raw.transaction_date),
                transaction_hash=(raw.transaction_hash or transaction_hash),
                category=raw.category or category,
                ifrs_reference=raw.ifrs_reference,
                metadata=dict(raw.metadata or {}),
            )
        except ValidationError as e:
            out.errors.append(f"entry {idx}: {e.errors()[0].get('msg', 'invalid')}")
            continue
        out.entries.append(entry)
    return out


def parse_entries(
    text: str,
    *,
    transaction_hash: str | None = None,
    category: str | None = None,
) -> ParsedEntries:
    """Full reduction of one model response to proposed entries.

    Raises
    ------
    ParseError
        When no array can be found, or when the array is non-empty but not a
        single element validates.
    """

    items = extract_json_array(text)
    flat = flatten_llm_items(items)
    parsed = to_proposed_entries(flat.entries, transaction_hash=transaction_hash, category=category)
    parsed.warnings[:0] = flat.warnings
    if flat.entries and not parsed.entries and parsed.errors:
        raise ParseError(
            f"no valid journal entries in model response ({len(parsed.errors)} invalid)",
            raw_response=text,
        )
    _logger.debug(
        "journal_parsing:parsed items=%d entries=%d warnings=%d errors=%d",
        len(items),
        len(parsed.entries),
        len(parsed.warnings),
        len(parsed.errors),
    )
    return parsed


def parse_verification(text: str) -> VerificationResult:
    obj = extract_json_object(text)
    data = {
        "is_valid": obj.get("isValid", obj.get("is_valid", False)),
        "confidence": obj.get("confidence", 0.0),
        "issues": obj.get("issues") or [],
        "suggestions": obj.get("suggestions") or [],
        "reasoning": obj.get("reasoning") or "",
        "ifrs_compliance": obj.get("ifrsCompliance", obj.get("ifrs_compliance")),
    }
    try:
        return VerificationResult.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"invalid verification response: {e.errors()[0].get('msg')}", raw_response=text) from e


__all__ = [
    "FlattenResult",
    "ParsedEntries",
    "extract_json_array",
    "extract_json_object",
    "flatten_llm_items",
    "parse_entries",
    "parse_verification",
    "repair_json_text",
    "to_proposed_entries",
]
