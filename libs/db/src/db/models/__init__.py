"""Shared SQLAlchemy models registry for the ledger database.

Currently includes the chart-of-accounts and journal models used by
``onchain_ledger``.
"""

from .ledger import (
    Account,
    AccountAiMapping,
    AccountCategory,
    Base,
    CryptoAsset,
    JournalEntry,
    LedgerTransaction,
)

__all__ = [
    "Account",
    "AccountAiMapping",
    "AccountCategory",
    "Base",
    "CryptoAsset",
    "JournalEntry",
    "LedgerTransaction",
]
