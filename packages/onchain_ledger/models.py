"""Data models shared across the pipeline.

Normalised chain data is carried in frozen, slotted dataclasses so merge and
categorisation produce new values instead of mutating shared records. Journal
entries are Pydantic models because they originate from untrusted model
output and are re-validated on every update.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Context, Decimal
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

NATIVE_DECIMALS = 18
# Storage is NUMERIC(20,8): anything at or above 10^12 cannot be represented.
AMOUNT_LIMIT = Decimal(10) ** 12

# uint256 needs 78 digits; keep every conversion exact.
_EXACT = Context(prec=100)

RecordKind: TypeAlias = Literal["regular", "token", "internal"]
TxStatus: TypeAlias = Literal["success", "failed"]
Direction: TypeAlias = Literal["incoming", "outgoing", "self", "internal"]
UsdSource: TypeAlias = Literal["oracle", "fallback", "none"]
EntrySource: TypeAlias = Literal["ai_chat", "ai_single", "ai_bulk", "manual"]


def scale_units(raw: int, decimals: int) -> Decimal:
    """Return ``raw * 10**-decimals`` without rounding."""

    return Decimal(int(raw)).scaleb(-int(decimals), context=_EXACT)


def format_amount(value: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros (``2.65``)."""

    if value == 0:
        return "0"
    s = format(value.normalize(context=_EXACT), "f")
    return s


# ---------------------------------------------------------------------------
# Chain records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    symbol: str
    name: str | None
    contract_address: str | None
    decimals: int
    raw_amount: int
    from_address: str | None = None
    to_address: str | None = None

    @property
    def amount(self) -> Decimal:
        return scale_units(self.raw_amount, self.decimals)

    def metadata_score(self) -> int:
        """Number of populated descriptive fields, used to break merge ties."""

        return sum(1 for v in (self.symbol, self.name, self.contract_address) if v)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "contract_address": self.contract_address,
            "decimals": self.decimals,
            "raw_amount": str(self.raw_amount),
            "amount": format_amount(self.amount),
            "from": self.from_address,
            "to": self.to_address,
        }


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """One normalised transaction, unique per ``hash`` after merging.

    ``raw_value`` is the native value in base units exactly as the explorer
    reported it; ``native_amount`` and ``gas_fee_native`` are derived from the
    integer fields so the conversions cannot drift.
    """

    hash: str
    from_address: str | None
    to_address: str | None
    raw_value: int
    network_currency: str
    kind: RecordKind = "regular"
    gas_used: int | None = None
    gas_price: int | None = None
    block_number: int | None = None
    timestamp: datetime | None = None
    status: TxStatus = "success"
    input_data: str | None = None
    method: str | None = None
    token_transfer: TokenTransfer | None = None
    category: str | None = None
    direction: Direction | None = None
    source_set: tuple[str, ...] = ()

    @property
    def native_amount(self) -> Decimal:
        return scale_units(self.raw_value, NATIVE_DECIMALS)

    @property
    def gas_fee_native(self) -> Decimal:
        return scale_units((self.gas_used or 0) * (self.gas_price or 0), NATIVE_DECIMALS)

    @property
    def is_token_transfer(self) -> bool:
        return self.token_transfer is not None

    @property
    def primary_currency(self) -> str:
        return self.token_transfer.symbol if self.token_transfer else self.network_currency

    @property
    def primary_amount(self) -> Decimal:
        return self.token_transfer.amount if self.token_transfer else self.native_amount

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe view used for storage and prompts (decimal strings only)."""

        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "raw_value": str(self.raw_value),
            "native_amount": format_amount(self.native_amount),
            "network_currency": self.network_currency,
            "gas_used": self.gas_used,
            "gas_price": str(self.gas_price) if self.gas_price is not None else None,
            "gas_fee_native": format_amount(self.gas_fee_native),
            "block_number": self.block_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "input_data": self.input_data,
            "method": self.method,
            "is_token_transfer": self.is_token_transfer,
            "token_transfer": self.token_transfer.to_dict() if self.token_transfer else None,
            "category": self.category,
            "direction": self.direction,
            "source_set": list(self.source_set),
        }


@dataclass(frozen=True, slots=True)
class Balance:
    wei: int
    native: Decimal


@dataclass(frozen=True, slots=True)
class WalletQuery:
    """Options honoured by a wallet fetch / bulk run."""

    limit: int = 50
    min_value: Decimal = Decimal(0)
    categories: tuple[str, ...] | None = None
    include_tokens: bool = True
    include_internal: bool = False
    include_failed: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ValueError("WalletQuery.limit must be a positive integer")
        if self.min_value < 0:
            raise ValueError("WalletQuery.min_value must be >= 0")


@dataclass(frozen=True, slots=True)
class WalletFetchResult:
    records: list[TransactionRecord]
    summary: dict[str, Any]
    feed_counts: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PriceData:
    symbol: str
    usd_price: Decimal
    decimals: int | None
    timestamp: datetime | None
    source: Literal["oracle", "fallback"]
    fetched_at: float


@dataclass(frozen=True, slots=True)
class JournalPriceQuote:
    currency: str
    amount: Decimal
    supported: bool
    usd_value: Decimal | None = None
    price_data: PriceData | None = None
    enhanced_narrative: str | None = None


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------


class ProposedEntry(BaseModel):
    """A journal entry proposed by the model, after parsing and coercion.

    ``amount`` is in transaction currency units (``2.65`` ETH, never wei).
    USD fields are filled by the price oracle step; ``metadata`` is opaque and
    stored verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    account_debit: str
    account_credit: str
    amount: Decimal
    currency: str
    narrative: str
    confidence: float = 0.8
    entry_type: Literal["main", "fee"] = "main"
    requires_account_creation: bool = False
    account_creation_suggestions: list[dict[str, Any]] = Field(default_factory=list)
    transaction_date: datetime | None = None
    transaction_hash: str | None = None
    category: str | None = None
    ifrs_reference: str | None = None
    usd_value: Decimal | None = None
    usd_rate: Decimal | None = None
    usd_source: UsdSource = "none"
    usd_timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("account_debit", "account_credit", "currency", "narrative")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        if 0.0 <= float(v) <= 1.0:
            return float(v)
        raise ValueError("confidence must be within [0,1]")

    def to_public_dict(self) -> dict[str, Any]:
        """camelCase view returned by chat and printed by the CLI."""

        return {
            "accountDebit": self.account_debit,
            "accountCredit": self.account_credit,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "narrative": self.narrative,
            "confidence": self.confidence,
            "entryType": self.entry_type,
            "requiresAccountCreation": self.requires_account_creation,
            "accountCreationSuggestions": self.account_creation_suggestions,
            "transactionDate": self.transaction_date.isoformat() if self.transaction_date else None,
            "transactionHash": self.transaction_hash,
            "category": self.category,
            "ifrsReference": self.ifrs_reference,
            "usdValue": str(self.usd_value) if self.usd_value is not None else None,
            "usdRate": str(self.usd_rate) if self.usd_rate is not None else None,
            "usdSource": self.usd_source,
            "metadata": self.metadata,
        }


class VerificationResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_valid: bool
    confidence: float = 0.0
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    reasoning: str = ""
    ifrs_compliance: str | None = None


# ---------------------------------------------------------------------------
# Orchestrator results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One progress record streamed by a wallet run.

    ``result`` is only set on the final ``phase == "complete"`` event.
    """

    phase: str
    message: str
    counts: Mapping[str, int] = field(default_factory=dict)
    result: WalletAnalysisResult | None = None


@dataclass(slots=True)
class AnalysisResult:
    transaction: TransactionRecord
    entries: list[ProposedEntry]
    saved: bool = False
    transaction_id: int | None = None
    conflict: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class WalletAnalysisResult:
    analysis: dict[str, Any]
    entries: list[ProposedEntry]
    processing_results: dict[str, Any]
    saved: bool = False


@dataclass(slots=True)
class ChatReply:
    response: str
    thinking: str | None = None
    suggestions: list[str] = field(default_factory=list)
    journal_entries: list[ProposedEntry] = field(default_factory=list)
    already_saved: bool = False
    route: Literal["transaction", "wallet", "general"] = "general"

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "thinking": self.thinking,
            "suggestions": list(self.suggestions),
            "journalEntries": [e.to_public_dict() for e in self.journal_entries],
            "alreadySaved": self.already_saved,
        }
