"""Default IFRS chart of accounts for crypto bookkeeping.

The same rows back the ``0002_chart_seed`` migration, test fixtures and the
``seed-chart`` CLI command. Seeding is idempotent: rows whose natural key
already exists are left untouched.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models.ledger import Account, AccountAiMapping, AccountCategory, CryptoAsset

# (code, name, type, description, sort_order)
CATEGORIES: tuple[tuple[str, str, str, str, int], ...] = (
    ("1000", "Current Assets", "ASSET", "Assets expected to be converted to cash within one year", 100),
    ("1500", "Non-Current Assets", "ASSET", "Long-term assets held for more than one year", 200),
    ("1800", "Digital Assets", "ASSET", "Cryptocurrency and digital token holdings", 300),
    ("2000", "Current Liabilities", "LIABILITY", "Obligations due within one year", 400),
    ("2500", "Non-Current Liabilities", "LIABILITY", "Long-term obligations due after one year", 500),
    ("3000", "Equity", "EQUITY", "Owner equity and retained earnings", 600),
    ("4000", "Revenue", "REVENUE", "Income from business operations", 700),
    ("5000", "Operating Expenses", "EXPENSE", "Costs of normal business operations", 800),
    ("6000", "Financial Expenses", "EXPENSE", "Finance-related costs and fees", 900),
)

# (code, name, category_code, type, sub_type, description, ifrs_reference, sort_order)
ACCOUNTS: tuple[tuple[str, str, str, str, str, str, str, int], ...] = (
    ("1001", "Cash and Cash Equivalents", "1000", "ASSET", "CURRENT_ASSET", "Cash, bank deposits, and short-term investments", "IAS 7", 1010),
    ("1002", "Bank Account - Operating", "1000", "ASSET", "CURRENT_ASSET", "Primary business bank account", "IAS 7", 1020),
    ("1003", "Bank Account - Crypto Exchange", "1000", "ASSET", "CURRENT_ASSET", "Fiat currency held on crypto exchanges", "IAS 7", 1030),
    ("1801", "Digital Assets - Bitcoin", "1800", "ASSET", "DIGITAL_ASSET", "Bitcoin holdings", "IAS 38", 1801),
    ("1802", "Digital Assets - Ethereum", "1800", "ASSET", "DIGITAL_ASSET", "Ethereum holdings", "IAS 38", 1802),
    ("1803", "Digital Assets - USDT", "1800", "ASSET", "DIGITAL_ASSET", "Tether USD stablecoin holdings", "IAS 38", 1803),
    ("1804", "Digital Assets - USDC", "1800", "ASSET", "DIGITAL_ASSET", "USD Coin stablecoin holdings", "IAS 38", 1804),
    ("1805", "Digital Assets - DAI", "1800", "ASSET", "DIGITAL_ASSET", "DAI stablecoin holdings", "IAS 38", 1805),
    ("1806", "Digital Assets - BNB", "1800", "ASSET", "DIGITAL_ASSET", "Binance Coin holdings", "IAS 38", 1806),
    ("1807", "Digital Assets - MATIC", "1800", "ASSET", "DIGITAL_ASSET", "Polygon MATIC token holdings", "IAS 38", 1807),
    ("1808", "Digital Assets - Other", "1800", "ASSET", "DIGITAL_ASSET", "Other cryptocurrency holdings", "IAS 38", 1808),
    ("1820", "DeFi Protocol Assets", "1800", "ASSET", "DIGITAL_ASSET", "Assets locked in DeFi protocols", "IAS 38", 1820),
    ("1821", "Liquidity Pool Tokens", "1800", "ASSET", "DIGITAL_ASSET", "LP tokens from providing liquidity", "IAS 38", 1821),
    ("1822", "Staked Assets", "1800", "ASSET", "DIGITAL_ASSET", "Assets staked for rewards", "IAS 38", 1822),
    ("1823", "NFT Assets", "1800", "ASSET", "DIGITAL_ASSET", "Non-fungible token holdings", "IAS 38", 1823),
    ("2001", "Accounts Payable", "2000", "LIABILITY", "CURRENT_LIABILITY", "Amounts owed to suppliers", "IAS 1", 2001),
    ("2002", "Crypto Exchange Payables", "2000", "LIABILITY", "CURRENT_LIABILITY", "Amounts owed to crypto exchanges", "IAS 1", 2002),
    ("2003", "Tax Payable", "2000", "LIABILITY", "CURRENT_LIABILITY", "Tax obligations", "IAS 12", 2003),
    ("3001", "Share Capital", "3000", "EQUITY", "EQUITY", "Issued share capital", "IAS 1", 3001),
    ("3002", "Retained Earnings", "3000", "EQUITY", "EQUITY", "Accumulated profits/losses", "IAS 1", 3002),
    ("3003", "Crypto Revaluation Reserve", "3000", "EQUITY", "EQUITY", "Unrealized gains/losses on crypto assets", "IAS 38", 3003),
    ("4001", "Trading Revenue", "4000", "REVENUE", "REVENUE", "Revenue from cryptocurrency trading", "IFRS 15", 4001),
    ("4002", "Staking Revenue", "4000", "REVENUE", "REVENUE", "Revenue from staking rewards", "IFRS 15", 4002),
    ("4003", "Mining Revenue", "4000", "REVENUE", "REVENUE", "Revenue from cryptocurrency mining", "IFRS 15", 4003),
    ("4004", "DeFi Yield Revenue", "4000", "REVENUE", "REVENUE", "Revenue from DeFi protocols", "IFRS 15", 4004),
    ("4005", "Airdrops Revenue", "4000", "REVENUE", "REVENUE", "Revenue from token airdrops", "IFRS 15", 4005),
    ("5001", "Salaries and Wages", "5000", "EXPENSE", "OPERATING_EXPENSE", "Employee compensation", "IAS 19", 5001),
    ("5002", "Office Expenses", "5000", "EXPENSE", "OPERATING_EXPENSE", "General office and administrative costs", "IAS 1", 5002),
    ("5003", "Software and Technology", "5000", "EXPENSE", "OPERATING_EXPENSE", "Technology and software expenses", "IAS 38", 5003),
    ("5004", "Professional Services", "5000", "EXPENSE", "OPERATING_EXPENSE", "Legal, accounting, consulting fees", "IAS 1", 5004),
    ("5005", "Marketing and Advertising", "5000", "EXPENSE", "OPERATING_EXPENSE", "Marketing and promotional costs", "IAS 1", 5005),
    ("6001", "Transaction Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Blockchain transaction fees (gas fees)", "IAS 1", 6001),
    ("6002", "Exchange Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Cryptocurrency exchange trading fees", "IAS 1", 6002),
    ("6003", "Conversion Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Currency conversion fees", "IAS 1", 6003),
    ("6004", "Interest Expense", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Interest on loans and credit", "IAS 23", 6004),
    ("6005", "Bank Fees", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Banking and wire transfer fees", "IAS 1", 6005),
    ("6006", "Realized Loss on Crypto", "6000", "EXPENSE", "FINANCIAL_EXPENSE", "Realized losses from crypto sales", "IAS 38", 6006),
)

# (symbol, name, account_code, blockchain, decimals, is_stable_coin)
CRYPTO_ASSETS: tuple[tuple[str, str, str, str, int, bool], ...] = (
    ("BTC", "Bitcoin", "1801", "bitcoin", 8, False),
    ("ETH", "Ethereum", "1802", "ethereum", 18, False),
    ("USDT", "Tether USD", "1803", "ethereum", 6, True),
    ("USDC", "USD Coin", "1804", "ethereum", 6, True),
    ("DAI", "Dai Stablecoin", "1805", "ethereum", 18, True),
    ("BNB", "Binance Coin", "1806", "binance-smart-chain", 18, False),
    ("MATIC", "Polygon", "1807", "polygon", 18, False),
)

# (account_code, keywords, transaction_types, context_patterns)
AI_MAPPINGS: tuple[tuple[str, tuple[str, ...], tuple[str, ...], tuple[str, ...]], ...] = (
    ("1801", ("bitcoin", "btc"), ("purchase", "sale", "transfer", "receive"), ("bought bitcoin", "received btc", "bitcoin payment")),
    ("1802", ("ethereum", "eth"), ("purchase", "sale", "transfer", "receive"), ("bought ethereum", "received eth", "ethereum payment")),
    ("1803", ("usdt", "tether"), ("purchase", "sale", "transfer", "receive"), ("bought usdt", "received tether", "usdt payment")),
    ("1804", ("usdc", "usd coin"), ("purchase", "sale", "transfer", "receive"), ("bought usdc", "received usdc", "usdc payment")),
    ("6001", ("gas", "transaction fee", "network fee"), ("transfer", "contract_interaction"), ("gas fee", "transaction cost", "network fee")),
    ("6002", ("trading fee", "exchange fee"), ("purchase", "sale"), ("exchange fee", "trading cost")),
    ("5001", ("salary", "wages", "payroll"), ("payment",), ("employee payment", "salary payment", "payroll")),
    ("5003", ("software", "saas", "subscription"), ("payment",), ("software subscription", "saas payment", "license fee")),
    ("4001", ("trading profit", "realized gain"), ("sale",), ("crypto sale profit", "trading gain")),
    ("4002", ("staking reward", "staking income"), ("staking",), ("staking reward", "validator reward")),
    ("4004", ("defi yield", "liquidity mining", "yield farming"), ("defi",), ("defi reward", "yield farming", "liquidity reward")),
)


def seed_chart_of_accounts(session: Session) -> dict[str, int]:
    """Insert missing default rows and return per-table insert counts.

    Flushes but does not commit; callers own the transaction.
    """

    inserted = {"categories": 0, "accounts": 0, "crypto_assets": 0, "ai_mappings": 0}

    existing_cats = set(session.scalars(select(AccountCategory.code)))
    for code, name, typ, desc, order in CATEGORIES:
        if code in existing_cats:
            continue
        session.add(AccountCategory(code=code, name=name, type=typ, description=desc, sort_order=order))
        inserted["categories"] += 1
    session.flush()

    existing_accts = set(session.scalars(select(Account.code)))
    for code, name, cat, typ, sub, desc, ifrs, order in ACCOUNTS:
        if code in existing_accts:
            continue
        session.add(
            Account(
                code=code,
                name=name,
                category_code=cat,
                account_type=typ,
                sub_type=sub,
                description=desc,
                ifrs_reference=ifrs,
                sort_order=order,
            )
        )
        inserted["accounts"] += 1
    session.flush()

    existing_assets = set(session.scalars(select(CryptoAsset.symbol)))
    for symbol, name, acct, chain, decimals, stable in CRYPTO_ASSETS:
        if symbol in existing_assets:
            continue
        session.add(
            CryptoAsset(
                symbol=symbol,
                name=name,
                account_code=acct,
                blockchain=chain,
                decimals=decimals,
                is_stable_coin=stable,
            )
        )
        inserted["crypto_assets"] += 1

    mapped = set(session.scalars(select(AccountAiMapping.account_code)))
    for acct, keywords, types, patterns in AI_MAPPINGS:
        if acct in mapped:
            continue
        session.add(
            AccountAiMapping(
                account_code=acct,
                keywords=list(keywords),
                transaction_types=list(types),
                context_patterns=list(patterns),
                confidence_weight=Decimal("1.00"),
            )
        )
        inserted["ai_mappings"] += 1
    session.flush()
    return inserted


__all__ = [
    "ACCOUNTS",
    "AI_MAPPINGS",
    "CATEGORIES",
    "CRYPTO_ASSETS",
    "seed_chart_of_accounts",
]
