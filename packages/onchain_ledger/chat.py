"""Message parsing helpers for the chat entry point.

Pure functions only: routing decisions, free-form detail extraction, reply
section extraction and entry formatting. The orchestrator owns all I/O.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from .models import ProposedEntry, format_amount

TX_HASH_RE = re.compile(r"0x[a-fA-F0-9]{64}")
# Lookarounds keep a 40-hex prefix of a transaction hash from matching.
ADDRESS_RE = re.compile(r"(?<![0-9a-fA-Fx])0x[a-fA-F0-9]{40}(?![0-9a-fA-F])")
WALLET_VERBS: tuple[str, ...] = (
    "analyze",
    "analyse",
    "create",
    "journal",
    "process",
    "transaction history",
    "bulk",
)

_AMOUNT_RE = re.compile(
    r"(\d+(?:,\d{3})*(?:\.\d+)?)\s*(ETH|BTC|USD|USDT|USDC|DAI|EUR|GBP|FLR|C2FLR)\b", re.IGNORECASE
)
_DESCRIPTION_RE = re.compile(
    r"(?:for|payment|received|sent|bought|sold|staking|mining|trading)\s+(.+?)(?:\.|$|,)",
    re.IGNORECASE,
)
_TRIGGER = r"(?:invoice date|date|dated|on|for)\s+(?:is\s+)?"
_DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(_TRIGGER + r"([A-Za-z]+\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})", re.IGNORECASE),
    re.compile(_TRIGGER + r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[-/]\d{1,2}[-/]\d{4})", re.IGNORECASE),
    re.compile(_TRIGGER + r"(\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]+\s+\d{4})", re.IGNORECASE),
    re.compile(r"\b([A-Za-z]+\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})\b"),
    re.compile(r"\b(\d{4}-\d{1,2}-\d{1,2})\b"),
    re.compile(r"\b(\d{1,2}[-/]\d{1,2}[-/]\d{4})\b"),
)
_DATE_FORMATS: tuple[str, ...] = (
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d-%m-%Y",
)
_ORDINAL_RE = re.compile(r"(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)

_THINKING_RE = re.compile(r"\*\*Thinking\*\*:?\s*(.*?)(?=\*\*|$)", re.IGNORECASE | re.DOTALL)
_SUGGESTIONS_RE = re.compile(r"\*\*Suggestions\*\*:?\s*(.*?)(?=\*\*|$)", re.IGNORECASE | re.DOTALL)
_BULLET_RE = re.compile(r"^[-*•]\s*")

FALLBACK_CHART_TEXT = """Current Assets:
  • 1001 - Cash and Cash Equivalents (ASSET)
Digital Assets:
  • 1801 - Digital Assets - Bitcoin (ASSET)
  • 1802 - Digital Assets - Ethereum (ASSET)
  • 1803 - Digital Assets - USDT (ASSET)
  • 1804 - Digital Assets - USDC (ASSET)
Current Liabilities:
  • 2001 - Accounts Payable (LIABILITY)
Equity:
  • 3001 - Share Capital (EQUITY)
Revenue:
  • 4001 - Trading Revenue (REVENUE)
  • 4002 - Staking Revenue (REVENUE)
Operating Expenses:
  • 5004 - Professional Services (EXPENSE)
  • 5003 - Software and Technology (EXPENSE)
Financial Expenses:
  • 6001 - Transaction Fees (EXPENSE)"""


@dataclass(frozen=True, slots=True)
class TransactionDetails:
    transaction_hash: str | None
    amount: Decimal | None
    currency: str | None
    extracted_date: datetime | None
    description: str

    @property
    def has_transaction_hash(self) -> bool:
        return self.transaction_hash is not None

    def as_prompt_dict(self) -> dict[str, str | None]:
        return {
            "transactionHash": self.transaction_hash,
            "amount": format_amount(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "date": self.extracted_date.date().isoformat() if self.extracted_date else None,
            "description": self.description,
        }


def parse_free_date(raw: str) -> datetime | None:
    """Parse the handful of human date shapes users type into chat."""

    s = _ORDINAL_RE.sub(r"\1", raw.replace(",", " "))
    s = " ".join(s.split())
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def extract_date(message: str) -> datetime | None:
    for pattern in _DATE_PATTERNS:
        for m in pattern.finditer(message):
            parsed = parse_free_date(m.group(1))
            if parsed is not None:
                return parsed
    return None


def extract_transaction_details(message: str) -> TransactionDetails:
    hash_m = TX_HASH_RE.search(message)
    amount: Decimal | None = None
    currency: str | None = None
    amount_m = _AMOUNT_RE.search(message)
    if amount_m:
        try:
            amount = Decimal(amount_m.group(1).replace(",", ""))
            currency = amount_m.group(2).upper()
        except InvalidOperation:
            amount = None
    desc_m = _DESCRIPTION_RE.search(message)
    return TransactionDetails(
        transaction_hash=hash_m.group(0) if hash_m else None,
        amount=amount,
        currency=currency,
        extracted_date=extract_date(message),
        description=desc_m.group(1).strip() if desc_m else message.strip(),
    )


def detect_wallet_request(message: str) -> str | None:
    """Return the wallet address when the message asks for a bulk wallet run."""

    m = ADDRESS_RE.search(message)
    if m is None:
        return None
    lower = message.lower()
    return m.group(0) if any(v in lower for v in WALLET_VERBS) else None


def extract_thinking(response: str) -> str | None:
    m = _THINKING_RE.search(response)
    if not m:
        return None
    return m.group(1).strip() or None


def extract_suggestions(response: str) -> list[str]:
    m = _SUGGESTIONS_RE.search(response)
    if not m:
        return []
    out: list[str] = []
    for line in m.group(1).splitlines():
        cleaned = _BULLET_RE.sub("", line.strip()).strip()
        if cleaned:
            out.append(cleaned)
    return out


def format_entries_for_chat(entries: Sequence[ProposedEntry]) -> str:
    blocks: list[str] = []
    for i, e in enumerate(entries, start=1):
        amount = format_amount(e.amount)
        lines = [
            f"Entry {i}:",
            f"- Debit: {e.account_debit} - {e.currency} {amount}",
            f"- Credit: {e.account_credit} - {e.currency} {amount}",
            f"- Description: {e.narrative}",
            f"- Confidence: {e.confidence * 100:.1f}%",
        ]
        if e.usd_value is not None:
            lines.append(f"- USD value: ${e.usd_value:,.2f} ({e.usd_source})")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


__all__ = [
    "ADDRESS_RE",
    "FALLBACK_CHART_TEXT",
    "TX_HASH_RE",
    "TransactionDetails",
    "detect_wallet_request",
    "extract_date",
    "extract_suggestions",
    "extract_thinking",
    "extract_transaction_details",
    "format_entries_for_chat",
    "parse_free_date",
]
