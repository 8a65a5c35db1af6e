# ruff: noqa: I001
"""Seed the default IFRS chart of accounts.

Revision ID: 0002_chart_seed
Revises: 0001_ledger_core
Create Date: 2025-10-02
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

from alembic import op
from sqlalchemy.orm import Session

from db.chart_seed import ACCOUNTS, AI_MAPPINGS, CATEGORIES, CRYPTO_ASSETS, seed_chart_of_accounts


# revision identifiers, used by Alembic.
revision: str = "0002_chart_seed"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    session = Session(bind=op.get_bind())
    seed_chart_of_accounts(session)
    session.flush()


def downgrade() -> None:
    codes = ", ".join(f"'{a[0]}'" for a in ACCOUNTS)
    mapped = ", ".join(f"'{m[0]}'" for m in AI_MAPPINGS)
    symbols = ", ".join(f"'{c[0]}'" for c in CRYPTO_ASSETS)
    op.execute(f"DELETE FROM account_ai_mappings WHERE account_code IN ({mapped})")
    op.execute(f"DELETE FROM crypto_assets WHERE symbol IN ({symbols})")
    op.execute(f"DELETE FROM accounts WHERE code IN ({codes})")
    cats = ", ".join(f"'{c[0]}'" for c in CATEGORIES)
    op.execute(f"DELETE FROM account_categories WHERE code IN ({cats})")
