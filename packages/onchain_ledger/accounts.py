"""Chart-of-accounts lookups and on-demand account creation.

The registry wraps one SQLAlchemy session; callers own the transaction scope.
Model output names accounts loosely ("Digital Assets - XYD", "Consulting
Expense"), so resolution goes through three steps:

1. exact, case-insensitive match on name or code
2. a ``Digital Assets - <SYMBOL>`` name routes to the crypto-asset account for
   that symbol, creating one under the Digital Assets category when missing
3. anything else gets a type/category proposal from name heuristics and is
   created under that category's next free code

Exports
-------
- ``AccountRegistry``: the lookup/creation service
- ``ChartAccount``: immutable view of one ``accounts`` row
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypedDict

from db.models.ledger import Account, AccountAiMapping, AccountCategory, CryptoAsset
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import EntryValidationError
from .logging_setup import get_logger

DIGITAL_ASSETS_CATEGORY = "1800"
DIGITAL_ASSET_PREFIX = "Digital Assets - "

_DIGITAL_NAME_RE = re.compile(r"^digital\s+assets?\s*-\s*(?P<suffix>.+)$", re.IGNORECASE)
_SYMBOL_RE = re.compile(r"^[A-Za-z0-9]{2,11}$")
_ALLOWED_NAME_RE = re.compile(r"^[A-Za-z0-9 &\-/(),.']+$")
_MAX_NAME_LEN = 200

_SUB_TYPES: dict[tuple[str, str], str] = {
    ("ASSET", "1000"): "CURRENT_ASSET",
    ("ASSET", "1500"): "NON_CURRENT_ASSET",
    ("ASSET", "1800"): "DIGITAL_ASSET",
    ("LIABILITY", "2000"): "CURRENT_LIABILITY",
    ("LIABILITY", "2500"): "NON_CURRENT_LIABILITY",
    ("EXPENSE", "5000"): "OPERATING_EXPENSE",
    ("EXPENSE", "6000"): "FINANCIAL_EXPENSE",
}

_logger = get_logger("onchain_ledger.accounts")


# ---------------------------
# Views
# ---------------------------


@dataclass(frozen=True, slots=True)
class ChartAccount:
    code: str
    name: str
    account_type: str
    sub_type: str | None
    category_code: str | None
    category_name: str | None
    ifrs_reference: str | None
    is_active: bool = True
    is_system_account: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.account_type,
            "sub_type": self.sub_type,
            "category_code": self.category_code,
            "category_name": self.category_name,
            "ifrs_reference": self.ifrs_reference,
            "is_active": self.is_active,
            "is_system_account": self.is_system_account,
        }


@dataclass(slots=True)
class AccountValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    debit: ChartAccount | None = None
    credit: ChartAccount | None = None


@dataclass(frozen=True, slots=True)
class AiSuggestion:
    account: ChartAccount
    score: float
    confidence: float


@dataclass(frozen=True, slots=True)
class ResolvedAccount:
    account: ChartAccount
    created: bool


class AccountSuggestion(TypedDict):
    name: str
    type: str
    category_code: str
    sub_type: str
    ifrs_reference: str
    description: str
    confidence: float


# ---------------------------
# Name helpers
# ---------------------------


def normalize_name(name: str) -> str:
    """Trim and collapse internal whitespace; case is preserved."""

    return " ".join((name or "").strip().split())


def crypto_symbol_from_name(name: str) -> str | None:
    """Return ``XYD`` for ``Digital Assets - XYD``; ``None`` for other names."""

    m = _DIGITAL_NAME_RE.match(normalize_name(name))
    if not m:
        return None
    suffix = m.group("suffix").strip()
    return suffix.upper() if _SYMBOL_RE.match(suffix) else None


def sub_type_for(account_type: str, category_code: str) -> str:
    return _SUB_TYPES.get((account_type, category_code), account_type)


def suggest_account_creation(name: str, tx_type: str = "unknown") -> AccountSuggestion:
    """Propose ``{type, category_code, ifrs_reference}`` from name keywords."""

    n = normalize_name(name)
    low = n.lower()
    tx = (tx_type or "unknown").lower()

    def _has(*words: str) -> bool:
        return any(w in low for w in words)

    if _has("expense", "cost", "fee") or tx == "expense":
        acct_type = "EXPENSE"
        if _has("gas", "transaction", "exchange", "interest"):
            cat, ifrs = "6000", "IFRS 9"
        else:
            cat, ifrs = "5000", "IAS 1"
    elif _has("revenue", "income", "earning") or tx == "revenue":
        acct_type, cat, ifrs = "REVENUE", "4000", "IFRS 15"
    elif _has("payable", "owed", "liability", "loan"):
        acct_type, cat, ifrs = "LIABILITY", "2000", "IAS 1"
    elif _has("receivable", "asset", "cash", "bank"):
        acct_type, cat, ifrs = "ASSET", "1000", "IFRS 9"
    elif _has("equity", "capital", "retained"):
        acct_type, cat, ifrs = "EQUITY", "3000", "IAS 1"
    elif tx == "liability":
        acct_type, cat, ifrs = "LIABILITY", "2000", "IAS 1"
    else:
        acct_type, cat, ifrs = "ASSET", "1000", "IAS 1"

    return {
        "name": n,
        "type": acct_type,
        "category_code": cat,
        "sub_type": sub_type_for(acct_type, cat),
        "ifrs_reference": ifrs,
        "description": f"{n} account",
        "confidence": 0.7,
    }


def _similarity(search: str, candidate: str) -> int:
    score = 0
    for sw in search.lower().split():
        for cw in candidate.lower().split():
            if sw in cw or cw in sw:
                score += 1
    return score


# ---------------------------
# Registry
# ---------------------------


class AccountRegistry:
    """Chart-of-accounts service bound to one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ---- Reads ----------------------------------------------------------------

    def _view(self, row: Account) -> ChartAccount:
        cat_name = None
        if row.category_code:
            cat_name = self.session.scalar(
                select(AccountCategory.name).where(AccountCategory.code == row.category_code)
            )
        return ChartAccount(
            code=row.code,
            name=row.name,
            account_type=row.account_type,
            sub_type=row.sub_type,
            category_code=row.category_code,
            category_name=cat_name,
            ifrs_reference=row.ifrs_reference,
            is_active=bool(row.is_active),
            is_system_account=bool(row.is_system_account),
        )

    def _active_rows(self) -> Sequence[Account]:
        return self.session.scalars(
            select(Account).where(Account.is_active.is_(True)).order_by(Account.sort_order, Account.code)
        ).all()

    def chart(self) -> list[ChartAccount]:
        """All active accounts ordered by ``sort_order``."""

        cats = dict(self.session.execute(select(AccountCategory.code, AccountCategory.name)).tuples().all())
        return [
            ChartAccount(
                code=r.code,
                name=r.name,
                account_type=r.account_type,
                sub_type=r.sub_type,
                category_code=r.category_code,
                category_name=cats.get(r.category_code or ""),
                ifrs_reference=r.ifrs_reference,
                is_active=bool(r.is_active),
                is_system_account=bool(r.is_system_account),
            )
            for r in self._active_rows()
        ]

    def get_categories(self) -> list[dict[str, Any]]:
        rows = self.session.scalars(
            select(AccountCategory)
            .where(AccountCategory.is_active.is_(True))
            .order_by(AccountCategory.sort_order, AccountCategory.code)
        ).all()
        return [
            {"code": r.code, "name": r.name, "type": r.type, "description": r.description}
            for r in rows
        ]

    def by_code(self, code: str) -> ChartAccount | None:
        row = self.session.scalar(
            select(Account).where(Account.code == str(code).strip(), Account.is_active.is_(True))
        )
        return self._view(row) if row is not None else None

    def by_name(self, name: str, *, fuzzy: bool = True, limit: int = 5) -> list[ChartAccount]:
        """Case-insensitive name lookup; ``fuzzy`` matches substrings."""

        n = normalize_name(name).lower()
        if not n:
            return []
        if fuzzy:
            escaped = n.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            cond = Account.name.ilike(f"%{escaped}%", escape="\\")
        else:
            cond = func.lower(Account.name) == n
        rows = self.session.scalars(
            select(Account)
            .where(cond, Account.is_active.is_(True))
            .order_by(Account.sort_order, Account.code)
            .limit(limit)
        ).all()
        return [self._view(r) for r in rows]

    def find(self, identifier: str) -> ChartAccount | None:
        """Exact match on name (case-insensitive) or code."""

        ident = normalize_name(identifier)
        if not ident:
            return None
        exact = self.by_name(ident, fuzzy=False, limit=1)
        if exact:
            return exact[0]
        return self.by_code(ident)

    def account_for_crypto(self, symbol: str) -> ChartAccount | None:
        row = self.session.scalar(
            select(Account)
            .join(CryptoAsset, CryptoAsset.account_code == Account.code)
            .where(
                CryptoAsset.symbol == (symbol or "").strip().upper(),
                CryptoAsset.is_active.is_(True),
                Account.is_active.is_(True),
            )
        )
        return self._view(row) if row is not None else None

    def find_similar_accounts(self, name: str, limit: int = 3) -> list[ChartAccount]:
        """Top ``limit`` accounts sharing words with ``name`` (substring either way)."""

        scored = [(a, _similarity(name, a.name)) for a in self.chart()]
        scored = [s for s in scored if s[1] > 0]
        scored.sort(key=lambda s: -s[1])
        return [a for a, _ in scored[:limit]]

    def formatted_chart_for_llm(self) -> str:
        """Accounts grouped by category as bullet lines for prompts."""

        groups: dict[str, list[str]] = {}
        for a in self.chart():
            groups.setdefault(a.category_name or "Other", []).append(
                f"  • {a.code} - {a.name} ({a.account_type})"
            )
        return "\n\n".join(f"{cat}:\n" + "\n".join(lines) for cat, lines in groups.items())

    # ---- Validation / AI ---------------------------------------------------------

    def validate(self, debit_name: str, credit_name: str) -> AccountValidation:
        out = AccountValidation(valid=True)
        out.debit = self.find(debit_name)
        out.credit = self.find(credit_name)
        for side, name, acct in (("Debit", debit_name, out.debit), ("Credit", credit_name, out.credit)):
            if acct is not None:
                continue
            out.valid = False
            out.errors.append(f"{side} account '{name}' not found")
            similar = self.find_similar_accounts(name)
            if similar:
                out.suggestions.append("Did you mean: " + ", ".join(a.name for a in similar) + "?")
        if (
            out.debit is not None
            and out.credit is not None
            and out.debit.account_type == "ASSET"
            and out.credit.account_type == "ASSET"
        ):
            out.suggestions.append(
                "Both accounts are assets - ensure this is correct for an asset transfer"
            )
        return out

    def suggest_for_ai(
        self,
        keywords: Iterable[str],
        tx_type: str | None,
        description: str | None,
    ) -> AiSuggestion | None:
        """Best account by keyword/type/context-pattern scoring, or ``None``."""

        kws = [k.lower() for k in keywords if k]
        desc = (description or "").lower()
        tx = (tx_type or "").lower()

        best: tuple[AccountAiMapping, float] | None = None
        for m in self.session.scalars(select(AccountAiMapping).order_by(AccountAiMapping.id)):
            hits = sum(
                1 for mk in (m.keywords or []) if any(k in mk.lower() or mk.lower() in k for k in kws)
            )
            score = hits * 3.0
            if tx and tx in [t.lower() for t in (m.transaction_types or [])]:
                score += 2.0
            score += 1.5 * sum(1 for p in (m.context_patterns or []) if p.lower() in desc)
            score *= float(m.confidence_weight or 1)
            if score > 0 and (best is None or score > best[1]):
                best = (m, score)

        if best is None:
            return None
        account = self.by_code(best[0].account_code)
        if account is None:
            return None
        return AiSuggestion(account=account, score=best[1], confidence=min(best[1] / 10.0, 1.0))

    # ---- Creation ------------------------------------------------------------------

    def next_unused_code(self, category_code: str) -> str:
        """Smallest free code in ``base+1 .. base+99`` for the category."""

        base = int(category_code)
        taken = set(self.session.scalars(select(Account.code)))
        for code in range(base + 1, base + 100):
            if str(code) not in taken:
                return str(code)
        raise ValueError(f"no free account codes left in category {category_code}")

    def create_account(
        self,
        *,
        name: str,
        account_type: str,
        category_code: str,
        description: str | None = None,
        ifrs_reference: str = "IAS 1",
        sub_type: str | None = None,
        is_system_account: bool = False,
    ) -> ResolvedAccount:
        """Create an account under ``category_code`` unless the name already exists.

        Raises
        ------
        ValueError
            When the name is invalid or the category is missing or of a
            different type.
        """

        n = normalize_name(name)
        if not n or len(n) > _MAX_NAME_LEN or not _ALLOWED_NAME_RE.match(n):
            raise ValueError(f"Invalid account name: {name!r}")

        existing = self.find(n)
        if existing is not None:
            return ResolvedAccount(existing, created=False)

        category = self.session.get(AccountCategory, category_code)
        if category is None or category.type != account_type:
            raise ValueError(f"Category {category_code} with type {account_type} not found")

        code = self.next_unused_code(category_code)
        row = Account(
            code=code,
            name=n,
            category_code=category_code,
            account_type=account_type,
            sub_type=sub_type or sub_type_for(account_type, category_code),
            description=description or f"{n} account",
            ifrs_reference=ifrs_reference,
            is_system_account=is_system_account,
            sort_order=int(code),
        )
        try:
            # Savepoint: a lost race must not discard accounts flushed earlier in this session.
            with self.session.begin_nested():
                self.session.add(row)
                self.session.flush()
        except IntegrityError:
            again = self.find(n)
            if again is None:
                raise
            return ResolvedAccount(again, created=False)

        _logger.info(
            "accounts:created code=%s name=%r type=%s category=%s",
            code,
            n,
            account_type,
            category_code,
        )
        return ResolvedAccount(self._view(row), created=True)

    def create_crypto_account(
        self,
        symbol: str,
        name: str | None = None,
        blockchain: str = "ethereum",
        decimals: int = 18,
    ) -> ResolvedAccount:
        """Return the asset account for ``symbol``, creating it and its crypto row."""

        sym = (symbol or "").strip().upper()
        if not _SYMBOL_RE.match(sym):
            raise ValueError(f"Invalid crypto symbol: {symbol!r}")
        existing = self.account_for_crypto(sym)
        if existing is not None:
            return ResolvedAccount(existing, created=False)

        account_name = f"{DIGITAL_ASSET_PREFIX}{normalize_name(name) if name else sym}"
        resolved = self.create_account(
            name=account_name,
            account_type="ASSET",
            category_code=DIGITAL_ASSETS_CATEGORY,
            description=f"{name or sym} cryptocurrency holdings",
            ifrs_reference="IAS 38",
            sub_type="DIGITAL_ASSET",
            is_system_account=True,
        )
        if self.session.get(CryptoAsset, sym) is None:
            self.session.add(
                CryptoAsset(
                    symbol=sym,
                    name=name or sym,
                    account_code=resolved.account.code,
                    blockchain=blockchain,
                    decimals=decimals,
                    is_stable_coin="USD" in sym,
                )
            )
            self.session.flush()
        return resolved

    def resolve_or_create(self, name: str, *, tx_type: str = "unknown") -> ResolvedAccount:
        """Resolve a model-supplied account name, creating the account if needed.

        Raises
        ------
        EntryValidationError
            When the name can be neither resolved nor created.
        """

        found = self.find(name)
        if found is not None:
            return ResolvedAccount(found, created=False)

        symbol = crypto_symbol_from_name(name)
        try:
            if symbol is not None:
                return self.create_crypto_account(symbol)
            s = suggest_account_creation(name, tx_type)
            return self.create_account(
                name=s["name"],
                account_type=s["type"],
                category_code=s["category_code"],
                description=s["description"],
                ifrs_reference=s["ifrs_reference"],
                sub_type=s["sub_type"],
            )
        except ValueError as e:
            raise EntryValidationError(str(e), account_name=name) from e


__all__ = [
    "AccountRegistry",
    "AccountSuggestion",
    "AccountValidation",
    "AiSuggestion",
    "ChartAccount",
    "ResolvedAccount",
    "crypto_symbol_from_name",
    "normalize_name",
    "suggest_account_creation",
]
