"""Prompt construction for journal-entry generation.

This module builds:
- A deterministic JSON serialization of normalised transactions with a fixed
  field order. Amounts are always decimal strings in token/native units;
  base-unit integers never reach the model.
- The system and user prompts for the single-transaction, bulk-category,
  chat and verification tasks.

Templates use ``{{PLACEHOLDER}}`` markers filled in a single regex pass, so JSON
braces in the text need no escaping and substituted values are never re-expanded.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from .models import ProposedEntry, TransactionRecord, format_amount

BEGIN_MARKER = "BEGIN_TRANSACTIONS_JSON"
END_MARKER = "END_TRANSACTIONS_JSON"

RECORD_FIELD_ORDER: tuple[str, ...] = (
    "hash",
    "from",
    "to",
    "amount",
    "currency",
    "native_amount",
    "network_currency",
    "gas_fee_native",
    "timestamp",
    "status",
    "category",
    "direction",
    "method",
    "token_transfer",
)

CATEGORY_GUIDANCE: dict[str, str] = {
    "token_transfer": (
        "Outgoing token transfer. Credit the digital asset account of the token "
        "(IAS 38 intangible asset) and debit the account matching the economic purpose "
        "described by the user (expense, payable settlement, or another asset)."
    ),
    "token_received": (
        "Incoming tokens. Debit the digital asset account of the token (IAS 38). Credit "
        "revenue (IFRS 15) when received for goods or services, equity when it is a "
        "capital contribution, or a receivable when settling an earlier claim."
    ),
    "token_approval": (
        "An approval moves no value. Only the gas fee is recognised: debit Transaction "
        "Fees, credit the native currency asset account."
    ),
    "dex_trade": (
        "Exchange of one digital asset for another (IAS 38). Derecognise the asset given "
        "up, recognise the asset received, and book any difference as Trading Revenue or "
        "Realized Loss on Crypto."
    ),
    "liquidity_provision": (
        "Assets deposited into a liquidity pool. Debit Liquidity Pool Tokens or DeFi "
        "Protocol Assets and credit the digital asset accounts that were deposited."
    ),
    "liquidity_removal": (
        "Liquidity withdrawn. Debit the digital asset accounts received and credit "
        "Liquidity Pool Tokens; any surplus is DeFi Yield Revenue (IFRS 15)."
    ),
    "staking": (
        "Assets committed to staking remain controlled by the entity (IAS 38). Debit "
        "Staked Assets and credit the digital asset account; rewards are Staking Revenue "
        "(IFRS 15)."
    ),
    "lending": (
        "Lending-pool deposits are financial assets under IFRS 9. Debit DeFi Protocol "
        "Assets and credit the digital asset account; interest earned is DeFi Yield "
        "Revenue, interest paid is Interest Expense (IAS 23)."
    ),
    "nft": (
        "NFT purchases and sales are intangible assets under IAS 38. Debit NFT Assets on "
        "purchase; on sale derecognise and book the gain or loss."
    ),
    "outgoing_transfer": (
        "Native currency sent. Credit the native digital asset account and debit the "
        "account matching the purpose of the payment (IAS 1 presentation)."
    ),
    "incoming_transfer": (
        "Native currency received. Debit the native digital asset account and credit "
        "revenue (IFRS 15), equity, or a receivable depending on the description."
    ),
    "contract_interaction": (
        "Smart-contract call with little or no value moved. Usually only the gas fee is "
        "recognised: debit Transaction Fees, credit the native digital asset account."
    ),
    "unknown": (
        "Purpose unclear. Record the value movement against the relevant digital asset "
        "account and use conservative IAS 1 classification; lower the confidence."
    ),
}

SYSTEM_PROMPT = (
    "You are a chartered accountant specialising in IFRS treatment of crypto-assets. "
    "Produce double-entry journal entries for blockchain transactions using only accounts "
    "from the provided Chart of Accounts, or clearly named new accounts when none fits. "
    "Amounts are in token or native-currency units exactly as given; never convert to wei "
    "or base units. Output JSON only."
)

_ENTRY_SHAPE = """{
  "accountDebit": "<account name>",
  "accountCredit": "<account name>",
  "amount": "<decimal string>",
  "currency": "<symbol>",
  "narrative": "<one sentence>",
  "confidence": <0..1>,
  "entryType": "main" | "fee",
  "ifrsReference": "<standard>"
}"""

SINGLE_TEMPLATE = """Analyse the blockchain transaction below and propose IFRS journal entries.

User description: {{DESCRIPTION}}
Network currency: {{NETWORK_CURRENCY}}

Category guidance ({{CATEGORY}}):
{{CATEGORY_GUIDANCE}}

Chart of Accounts:
{{CHART_OF_ACCOUNTS}}

Rules:
- One "main" entry for the value movement (token amount for token transfers).
- If gas_fee_native is greater than zero and the user sent the transaction, add one
  "fee" entry: debit Transaction Fees, credit the {{NETWORK_CURRENCY}} digital asset account.
- Failed transactions get only the fee entry.

BEGIN_TRANSACTIONS_JSON
{{TRANSACTIONS_JSON}}
END_TRANSACTIONS_JSON

Return a JSON array of entries shaped like:
{{ENTRY_SHAPE}}
"""

BULK_TEMPLATE = """Analyse this group of "{{CATEGORY}}" transactions for wallet {{USER_ADDRESS}}.

Network currency: {{NETWORK_CURRENCY}}

Category guidance:
{{CATEGORY_GUIDANCE}}

Chart of Accounts:
{{CHART_OF_ACCOUNTS}}

For each transaction produce its main entry and, when the wallet paid gas, a fee entry.

BEGIN_TRANSACTIONS_JSON
{{TRANSACTIONS_JSON}}
END_TRANSACTIONS_JSON

Return a JSON array with one object per transaction:
[{"transactionHash": "<hash>", "category": "{{CATEGORY}}", "entries": [<entry>, ...]}]
where each entry is shaped like:
{{ENTRY_SHAPE}}
"""

CHAT_SYSTEM_PROMPT = (
    "You are an accounting assistant for a crypto-native business. Answer questions about "
    "IFRS treatment of digital assets and, when the user describes a transaction, propose "
    "journal entries as a JSON array using the Chart of Accounts. Structure the reply with a "
    "**Thinking** section, the answer, and a **Suggestions** section with short bullet points."
)

CHAT_TEMPLATE = """User message:
{{MESSAGE}}

Extracted details:
{{EXTRACTED}}

Conversation context:
{{CONTEXT}}

Chart of Accounts:
{{CHART_OF_ACCOUNTS}}

If journal entries apply, include them as a JSON array shaped like:
{{ENTRY_SHAPE}}
"""

VERIFY_TEMPLATE = """Review the journal entries below for the given transaction.

Check that debits equal credits, accounts suit the economic substance, amounts match the
transaction (token units, not base units), and the IFRS references are appropriate.

BEGIN_TRANSACTIONS_JSON
{{TRANSACTIONS_JSON}}
END_TRANSACTIONS_JSON

Journal entries:
{{ENTRIES_JSON}}

Return one JSON object:
{"isValid": true|false, "confidence": <0..1>, "issues": ["..."], "suggestions": ["..."],
 "reasoning": "...", "ifrsCompliance": "..."}
"""


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def record_view(record: TransactionRecord) -> dict[str, Any]:
    """Model-facing view of a record in :data:`RECORD_FIELD_ORDER`."""

    tt = record.token_transfer
    src: dict[str, Any] = {
        "hash": record.hash,
        "from": record.from_address,
        "to": record.to_address,
        "amount": format_amount(record.primary_amount),
        "currency": record.primary_currency,
        "native_amount": format_amount(record.native_amount),
        "network_currency": record.network_currency,
        "gas_fee_native": format_amount(record.gas_fee_native),
        "timestamp": record.timestamp.isoformat() if record.timestamp else None,
        "status": record.status,
        "category": record.category,
        "direction": record.direction,
        "method": record.method,
        "token_transfer": (
            {
                "symbol": tt.symbol,
                "name": tt.name,
                "amount": format_amount(tt.amount),
                "contract_address": tt.contract_address,
                "from": tt.from_address,
                "to": tt.to_address,
            }
            if tt is not None
            else None
        ),
    }
    return {k: src[k] for k in RECORD_FIELD_ORDER}


def serialize_records(records: Sequence[TransactionRecord]) -> str:
    return json.dumps([record_view(r) for r in records], ensure_ascii=False)


def guidance_for(category: str | None) -> str:
    return CATEGORY_GUIDANCE.get(category or "unknown", CATEGORY_GUIDANCE["unknown"])


_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")


def _fill(template: str, values: Mapping[str, str]) -> str:
    # One pass over the template so placeholders inside substituted text stay literal.
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_single_prompt(
    record: TransactionRecord,
    *,
    description: str | None,
    chart_text: str,
) -> tuple[str, str]:
    """Return ``(system, user)`` for one transaction."""

    user = _fill(
        SINGLE_TEMPLATE,
        {
            "DESCRIPTION": description or "No description provided",
            "NETWORK_CURRENCY": record.network_currency,
            "CATEGORY": record.category or "unknown",
            "CATEGORY_GUIDANCE": guidance_for(record.category),
            "CHART_OF_ACCOUNTS": chart_text,
            "TRANSACTIONS_JSON": serialize_records([record]),
            "ENTRY_SHAPE": _ENTRY_SHAPE,
        },
    )
    return SYSTEM_PROMPT, user


def build_bulk_prompt(
    category: str,
    records: Sequence[TransactionRecord],
    *,
    user_address: str,
    chart_text: str,
) -> tuple[str, str]:
    """Return ``(system, user)`` for one category group of a wallet run."""

    network = records[0].network_currency if records else "ETH"
    user = _fill(
        BULK_TEMPLATE,
        {
            "CATEGORY": category,
            "USER_ADDRESS": user_address,
            "NETWORK_CURRENCY": network,
            "CATEGORY_GUIDANCE": guidance_for(category),
            "CHART_OF_ACCOUNTS": chart_text,
            "TRANSACTIONS_JSON": serialize_records(records),
            "ENTRY_SHAPE": _ENTRY_SHAPE,
        },
    )
    return SYSTEM_PROMPT, user


def build_chat_prompt(
    message: str,
    *,
    chart_text: str,
    extracted: Mapping[str, Any] | None = None,
    context: Mapping[str, Any] | None = None,
) -> tuple[str, str]:
    user = _fill(
        CHAT_TEMPLATE,
        {
            "MESSAGE": message,
            "EXTRACTED": json.dumps(dict(extracted or {}), ensure_ascii=False, default=str),
            "CONTEXT": json.dumps(dict(context or {}), ensure_ascii=False, default=str),
            "CHART_OF_ACCOUNTS": chart_text,
            "ENTRY_SHAPE": _ENTRY_SHAPE,
        },
    )
    return CHAT_SYSTEM_PROMPT, user


def build_verification_prompt(
    entries: Sequence[ProposedEntry],
    record: TransactionRecord,
) -> tuple[str, str]:
    user = _fill(
        VERIFY_TEMPLATE,
        {
            "TRANSACTIONS_JSON": serialize_records([record]),
            "ENTRIES_JSON": json.dumps([e.to_public_dict() for e in entries], ensure_ascii=False),
        },
    )
    return SYSTEM_PROMPT, user


__all__ = [
    "BEGIN_MARKER",
    "CATEGORY_GUIDANCE",
    "END_MARKER",
    "RECORD_FIELD_ORDER",
    "build_bulk_prompt",
    "build_chat_prompt",
    "build_single_prompt",
    "build_verification_prompt",
    "guidance_for",
    "record_view",
    "serialize_records",
]
