# ruff: noqa: I001
"""Ledger core tables: chart of accounts, transactions, journal entries.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2025-10-02
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TYPES = "('ASSET','LIABILITY','EQUITY','REVENUE','EXPENSE')"


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "account_categories",
        sa.Column("code", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint(f"type in {_TYPES}", name="ck_acct_cat_type"),
    )

    op.create_table(
        "accounts",
        sa.Column("code", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "category_code",
            sa.String(10),
            sa.ForeignKey("account_categories.code"),
            nullable=True,
        ),
        sa.Column("account_type", sa.String(20), nullable=False),
        sa.Column("sub_type", sa.String(50), nullable=True),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "is_system_account", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("ifrs_reference", sa.String(50), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.CheckConstraint(f"account_type in {_TYPES}", name="ck_accounts_type"),
    )
    op.create_index("ix_accounts_category_code", "accounts", ["category_code"])
    op.create_index("ix_accounts_account_type", "accounts", ["account_type"])
    # Name lookups are case-insensitive.
    op.create_index("ix_accounts_name_lower", "accounts", [sa.text("lower(name)")])

    op.create_table(
        "crypto_assets",
        sa.Column("symbol", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("account_code", sa.String(20), sa.ForeignKey("accounts.code"), nullable=True),
        sa.Column("contract_address", sa.String(100), nullable=True),
        sa.Column("blockchain", sa.String(50), nullable=True),
        sa.Column("decimals", sa.Integer(), nullable=False, server_default="18"),
        sa.Column("is_stable_coin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_crypto_assets_account_code", "crypto_assets", ["account_code"])

    op.create_table(
        "account_ai_mappings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("account_code", sa.String(20), sa.ForeignKey("accounts.code"), nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("transaction_types", sa.JSON(), nullable=False),
        sa.Column("context_patterns", sa.JSON(), nullable=False),
        sa.Column("confidence_weight", sa.Numeric(3, 2), nullable=False, server_default="1.00"),
    )
    op.create_index("ix_account_ai_mappings_account_code", "account_ai_mappings", ["account_code"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("txid", sa.String(80), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("blockchain_data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _created_at(),
        sa.UniqueConstraint("user_id", "txid", name="uq_transactions_user_txid"),
        sa.CheckConstraint(
            "status in ('pending','processed','failed')", name="ck_transactions_status"
        ),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("account_debit", sa.String(200), nullable=False),
        sa.Column("account_credit", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("currency", sa.String(20), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("narrative", sa.Text(), nullable=True),
        sa.Column("ai_confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("entry_type", sa.String(10), nullable=False, server_default="main"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_reviewed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("usd_value", sa.Numeric(20, 2), nullable=True),
        sa.Column("usd_rate", sa.Numeric(20, 8), nullable=True),
        sa.Column("usd_source", sa.String(10), nullable=False, server_default="none"),
        sa.Column("usd_timestamp", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "source in ('ai_chat','ai_single','ai_bulk','manual')", name="ck_journal_source"
        ),
        sa.CheckConstraint("entry_type in ('main','fee')", name="ck_journal_entry_type"),
        sa.CheckConstraint(
            "usd_source in ('oracle','fallback','none')", name="ck_journal_usd_source"
        ),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_journal_ai_confidence",
        ),
    )
    op.create_index("ix_journal_entries_user_id", "journal_entries", ["user_id"])
    op.create_index("ix_journal_entries_transaction_id", "journal_entries", ["transaction_id"])
    op.create_index(
        "ix_journal_entries_user_entry_date", "journal_entries", ["user_id", "entry_date"]
    )


def downgrade() -> None:
    op.drop_index("ix_journal_entries_user_entry_date", table_name="journal_entries")
    op.drop_index("ix_journal_entries_transaction_id", table_name="journal_entries")
    op.drop_index("ix_journal_entries_user_id", table_name="journal_entries")
    op.drop_table("journal_entries")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_account_ai_mappings_account_code", table_name="account_ai_mappings")
    op.drop_table("account_ai_mappings")
    op.drop_index("ix_crypto_assets_account_code", table_name="crypto_assets")
    op.drop_table("crypto_assets")
    op.drop_index("ix_accounts_name_lower", table_name="accounts")
    op.drop_index("ix_accounts_account_type", table_name="accounts")
    op.drop_index("ix_accounts_category_code", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("account_categories")
