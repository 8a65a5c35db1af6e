from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only autoincrements INTEGER PRIMARY KEY.
_ID = BigInteger().with_variant(Integer, "sqlite")

ACCOUNT_TYPES = ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE")
_TYPE_CHECK = "{col} in ('ASSET','LIABILITY','EQUITY','REVENUE','EXPENSE')"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Chart of accounts
# ---------------------------


class AccountCategory(Base):
    __tablename__ = "account_categories"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_expr.true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (CheckConstraint(_TYPE_CHECK.format(col="type"), name="ck_acct_cat_type"),)


class Account(Base):
    __tablename__ = "accounts"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category_code: Mapped[str | None] = mapped_column(
        String(10), ForeignKey("account_categories.code"), nullable=True, index=True
    )
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # e.g. CURRENT_ASSET, DIGITAL_ASSET, OPERATING_EXPENSE
    sub_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # NULL for multi-currency accounts
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_expr.true()
    )
    is_system_account: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa_expr.false()
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ifrs_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(_TYPE_CHECK.format(col="account_type"), name="ck_accounts_type"),
    )


class CryptoAsset(Base):
    __tablename__ = "crypto_assets"

    symbol: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_code: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("accounts.code"), nullable=True, index=True
    )
    contract_address: Mapped[str | None] = mapped_column(String(100), nullable=True)
    blockchain: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=18, server_default="18")
    is_stable_coin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa_expr.false()
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_expr.true()
    )


class AccountAiMapping(Base):
    __tablename__ = "account_ai_mappings"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    account_code: Mapped[str] = mapped_column(
        String(20), ForeignKey("accounts.code"), nullable=False, index=True
    )
    # Lists of lowercase phrases; JSON keeps the column portable across backends.
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    transaction_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    context_patterns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    confidence_weight: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, default=Decimal("1.00"), server_default="1.00"
    )


# ---------------------------
# Ledger
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    txid: Mapped[str] = mapped_column(String(80), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    blockchain_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "txid", name="uq_transactions_user_txid"),
        CheckConstraint(
            "status in ('pending','processed','failed')", name="ck_transactions_status"
        ),
    )


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    transaction_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True, index=True
    )
    account_debit: Mapped[str] = mapped_column(String(200), nullable=False)
    account_credit: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default="main", server_default="main"
    )
    # ``metadata`` is reserved on declarative classes.
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    is_reviewed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa_expr.false()
    )
    usd_value: Mapped[Decimal | None] = mapped_column(Numeric(20, 2), nullable=True)
    usd_rate: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    usd_source: Mapped[str] = mapped_column(
        String(10), nullable=False, default="none", server_default="none"
    )
    usd_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "source in ('ai_chat','ai_single','ai_bulk','manual')", name="ck_journal_source"
        ),
        CheckConstraint("entry_type in ('main','fee')", name="ck_journal_entry_type"),
        CheckConstraint(
            "usd_source in ('oracle','fallback','none')", name="ck_journal_usd_source"
        ),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_journal_ai_confidence",
        ),
    )


__all__ = [
    "ACCOUNT_TYPES",
    "Account",
    "AccountAiMapping",
    "AccountCategory",
    "Base",
    "CryptoAsset",
    "JournalEntry",
    "LedgerTransaction",
]
