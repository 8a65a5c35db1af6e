"""Rule-cascade categorisation of normalised transactions.

The first rule that fires decides:

1. explicit token transfer (``token_transfer`` / ``token_received``)
2. method selector (first four bytes of the calldata)
3. known contract (``to`` address in a curated table)
4. native value above the network threshold (``outgoing_transfer`` /
   ``incoming_transfer``)
5. calldata with trivial value (``contract_interaction``)
6. ``unknown``
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from decimal import Decimal

from .models import Direction, TransactionRecord

CATEGORIES: tuple[str, ...] = (
    "token_transfer",
    "token_received",
    "token_approval",
    "dex_trade",
    "liquidity_provision",
    "liquidity_removal",
    "staking",
    "lending",
    "nft",
    "outgoing_transfer",
    "incoming_transfer",
    "contract_interaction",
    "unknown",
)

METHOD_SELECTORS: dict[str, str] = {
    "0xa9059cbb": "token_transfer",  # transfer(address,uint256)
    "0x23b872dd": "token_transfer",  # transferFrom(address,address,uint256)
    "0x095ea7b3": "token_approval",  # approve(address,uint256)
    "0x7ff36ab5": "dex_trade",  # swapExactETHForTokens
    "0x18cbafe5": "dex_trade",  # swapExactTokensForETH
    "0x8803dbee": "dex_trade",  # swapTokensForExactTokens
    "0xf305d719": "liquidity_provision",  # addLiquidityETH
    "0xe8e33700": "liquidity_provision",  # addLiquidity
    "0x02751cec": "liquidity_removal",  # removeLiquidityETH
    "0xaf2979eb": "liquidity_removal",  # removeLiquidityETHSupportingFeeOnTransferTokens
}

KNOWN_CONTRACTS: dict[str, str] = {
    # staking
    "0x00000000219ab540356cbb839cbe05303d7705fa": "staking",  # ETH2 deposit contract
    "0x7f39c581f595b53c5cb19bd0b3f8da6c935e2ca0": "staking",  # wstETH
    "0xae7ab96520de3a18e5e111b5eaab095312d7fe84": "staking",  # Lido stETH
    # DEX routers
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": "dex_trade",  # Uniswap V2
    "0xe592427a0aece92de3edee1f18e0157c05861564": "dex_trade",  # Uniswap V3
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": "dex_trade",  # SushiSwap
    # lending pools
    "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9": "lending",  # Aave V2
    "0x3d9819210a31b4961b30ef54be2aed79b9c9cd3b": "lending",  # Compound comptroller
    "0x5d3a536e4d6dbd6114cc1ead35777bab948e3643": "lending",  # cDAI
    # NFT exchanges
    "0x7be8076f4ea4a4ad08075c2508e481d6c946d12b": "nft",  # OpenSea (Wyvern)
    "0x7f268357a8c2552623316e2562d90e642bb538e5": "nft",  # OpenSea (Wyvern v2)
}

VALUE_THRESHOLDS: dict[str, Decimal] = {
    "C2FLR": Decimal("0.1"),
    "ETH": Decimal("0.01"),
}
_DEFAULT_THRESHOLD = Decimal("0.01")

# "0x" + 4 selector bytes
_SELECTOR_LEN = 10


def value_threshold(network_currency: str) -> Decimal:
    return VALUE_THRESHOLDS.get(network_currency.upper(), _DEFAULT_THRESHOLD)


def _norm(addr: str | None) -> str | None:
    return addr.lower() if addr else None


def direction_of(record: TransactionRecord, user_address: str | None) -> Direction:
    """Classify the flow relative to ``user_address``."""

    user = _norm(user_address)
    frm = _norm(record.from_address)
    to = _norm(record.to_address)
    if user is None:
        return "internal"
    if frm == user and to == user:
        return "self"
    if frm == user:
        return "outgoing"
    if to == user:
        return "incoming"
    return "internal"


def categorize(record: TransactionRecord, user_address: str | None) -> str:
    """Return the category of ``record`` as seen by ``user_address``."""

    user = _norm(user_address)

    tt = record.token_transfer
    if tt is not None:
        sender = _norm(tt.from_address) or _norm(record.from_address)
        receiver = _norm(tt.to_address)
        if user is not None and receiver == user and sender != user:
            return "token_received"
        return "token_transfer"

    data = (record.input_data or "").lower()
    if len(data) >= _SELECTOR_LEN:
        by_selector = METHOD_SELECTORS.get(data[:_SELECTOR_LEN])
        if by_selector is not None:
            return by_selector

    by_contract = KNOWN_CONTRACTS.get(_norm(record.to_address) or "")
    if by_contract is not None:
        return by_contract

    threshold = value_threshold(record.network_currency)
    amount = record.native_amount
    if amount > threshold and user is not None:
        if _norm(record.from_address) == user:
            return "outgoing_transfer"
        if _norm(record.to_address) == user:
            return "incoming_transfer"

    if len(data) > _SELECTOR_LEN and amount <= threshold:
        return "contract_interaction"

    return "unknown"


def classify(record: TransactionRecord, user_address: str | None) -> TransactionRecord:
    """Return a copy of ``record`` with ``category`` and ``direction`` set."""

    return dataclasses.replace(
        record,
        category=categorize(record, user_address),
        direction=direction_of(record, user_address),
    )


def classify_all(
    records: Iterable[TransactionRecord], user_address: str | None
) -> list[TransactionRecord]:
    return [classify(r, user_address) for r in records]


__all__ = [
    "CATEGORIES",
    "KNOWN_CONTRACTS",
    "METHOD_SELECTORS",
    "categorize",
    "classify",
    "classify_all",
    "direction_of",
    "value_threshold",
]
