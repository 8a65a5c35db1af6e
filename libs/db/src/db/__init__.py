"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic targeting
- ORM models in ``db.models.ledger`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
- Default chart of accounts in ``db.chart_seed``
"""

from __future__ import annotations

from .models.ledger import (
    Account,
    AccountAiMapping,
    AccountCategory,
    Base,
    CryptoAsset,
    JournalEntry,
    LedgerTransaction,
)

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Account",
    "AccountAiMapping",
    "AccountCategory",
    "Base",
    "CryptoAsset",
    "JournalEntry",
    "LedgerTransaction",
    "metadata",
]
