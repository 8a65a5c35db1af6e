"""Spot USD prices from an on-chain price-feed contract with a static fallback.

Lookup order for a symbol:

1. in-process cache (TTL ``PRICE_TTL_MS``, keyed by the normalised symbol)
2. oracle contract ``getPrice(symbol) -> (price, decimals, timestamp)``
3. the fallback table

A contract error never propagates out of the journal-entry helpers; the entry
is valued from the fallback table or left without a USD value.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from web3 import Web3

from .config import Settings
from .errors import NotFoundError
from .logging_setup import get_logger
from .models import JournalPriceQuote, PriceData, format_amount

FALLBACK_PRICES: dict[str, Decimal] = {
    "XYD": Decimal("0.05"),
    "FLR": Decimal("0.015"),
    "BTC": Decimal("104500.00"),
    "ETH": Decimal("2540.00"),
    "USDC": Decimal("1.00"),
    "USDT": Decimal("1.00"),
    "AVAX": Decimal("45.50"),
    "MATIC": Decimal("0.85"),
    "ADA": Decimal("0.62"),
    "DOT": Decimal("8.75"),
    "LTC": Decimal("140.25"),
}

# Wrapped and long-form names priced as their underlying asset.
SYMBOL_MAP: dict[str, str] = {
    "FLARE": "FLR",
    "WETH": "ETH",
    "WBTC": "BTC",
}

# Testnet symbols are queried on the oracle under their mainnet name.
TESTNET_ALIASES: dict[str, str] = {
    "C2FLR": "FLR",
}

PRICE_FEED_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"name": "symbol", "type": "string"}],
        "name": "getPrice",
        "outputs": [
            {"name": "price", "type": "uint256"},
            {"name": "decimals", "type": "int8"},
            {"name": "timestamp", "type": "uint64"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "symbol", "type": "string"}],
        "name": "isSymbolSupported",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getSupportedSymbols",
        "outputs": [{"name": "", "type": "string[]"}],
        "stateMutability": "view",
        "type": "function",
    },
]

_CENTS = Decimal("0.01")

_logger = get_logger("onchain_ledger.price_oracle")


def normalise_symbol(symbol: str) -> str:
    """Cache and lookup key: upper-cased, testnet alias and wrapped names resolved."""

    s = (symbol or "").strip().upper()
    s = TESTNET_ALIASES.get(s, s)
    return SYMBOL_MAP.get(s, s)


class PriceOracle:
    """Price lookups with a lock-guarded TTL cache.

    Parameters
    ----------
    rpc_url, address:
        JSON-RPC endpoint and price-feed contract address. The contract is
        only built when both are set and ``enabled`` is true.
    ttl_ms:
        Cache lifetime in milliseconds.
    fallback_prices:
        Static table consulted when the contract is unavailable. Defaults to
        :data:`FALLBACK_PRICES`.
    contract:
        Pre-built contract object (tests pass a stub exposing
        ``.functions.<name>(*args).call()``).
    clock:
        Monotonic seconds source used for cache ageing.
    """

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        address: str | None = None,
        enabled: bool = False,
        ttl_ms: int = 60_000,
        fallback_prices: Mapping[str, Decimal | float | str] | None = None,
        contract: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rpc_url = rpc_url
        self.address = address
        self.enabled = enabled or contract is not None
        self.ttl_ms = int(ttl_ms)
        table = FALLBACK_PRICES if fallback_prices is None else fallback_prices
        self.fallback_prices: dict[str, Decimal] = {
            normalise_symbol(k): Decimal(str(v)) for k, v in table.items()
        }
        self._contract = contract
        self._clock = clock
        self._cache: dict[str, PriceData] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> PriceOracle:
        return cls(
            rpc_url=settings.oracle_rpc_url,
            address=settings.oracle_address,
            enabled=settings.oracle_enabled and settings.oracle_configured,
            ttl_ms=settings.price_ttl_ms,
        )

    # ---- Contract -----------------------------------------------------------

    def _create_contract(self) -> Any:
        w3 = Web3(Web3.HTTPProvider(self.rpc_url))
        return w3.eth.contract(address=Web3.to_checksum_address(self.address), abi=PRICE_FEED_ABI)

    def _get_contract(self) -> Any | None:
        if not self.enabled:
            return None
        if self._contract is None:
            if not (self.rpc_url and self.address):
                return None
            self._contract = self._create_contract()
        return self._contract

    def _read_oracle(self, symbol: str) -> PriceData | None:
        contract = self._get_contract()
        if contract is None:
            return None
        try:
            price, decimals, ts = contract.functions.getPrice(symbol).call()
        except Exception as e:  # noqa: BLE001
            _logger.warning("price_oracle:contract_failed symbol=%s error=%s", symbol, e)
            return None
        if int(price) <= 0:
            _logger.warning("price_oracle:zero_price symbol=%s", symbol)
            return None
        return PriceData(
            symbol=symbol,
            usd_price=Decimal(int(price)).scaleb(int(decimals)),
            decimals=int(decimals),
            timestamp=datetime.fromtimestamp(int(ts), tz=UTC) if ts else None,
            source="oracle",
            fetched_at=self._clock(),
        )

    def _read_fallback(self, symbol: str) -> PriceData | None:
        price = self.fallback_prices.get(symbol)
        if price is None:
            return None
        return PriceData(
            symbol=symbol,
            usd_price=price,
            decimals=None,
            timestamp=datetime.now(UTC),
            source="fallback",
            fetched_at=self._clock(),
        )

    # ---- Public operations ------------------------------------------------------

    def get_price(self, symbol: str) -> PriceData:
        """Return the spot price for ``symbol``; raise NotFoundError when unpriced."""

        key = normalise_symbol(symbol)
        now = self._clock()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None and (now - cached.fetched_at) * 1000.0 < self.ttl_ms:
            return cached

        data = self._read_oracle(key) or self._read_fallback(key)
        if data is None:
            raise NotFoundError(f"no price available for {key}")
        with self._lock:
            self._cache[key] = data
        _logger.debug(
            "price_oracle:price symbol=%s usd=%s source=%s", key, data.usd_price, data.source
        )
        return data

    def get_prices(self, symbols: Iterable[str]) -> dict[str, Any]:
        """Batch lookup; unpriced symbols are listed under ``unsupported``."""

        prices: dict[str, PriceData] = {}
        unsupported: list[str] = []
        for s in symbols:
            try:
                prices[normalise_symbol(s)] = self.get_price(s)
            except NotFoundError:
                unsupported.append(normalise_symbol(s))
        return {"prices": prices, "unsupported": unsupported}

    def calculate_usd_value(self, symbol: str, amount: Decimal | int | str) -> Decimal:
        data = self.get_price(symbol)
        return (Decimal(str(amount)) * data.usd_price).quantize(_CENTS, rounding=ROUND_HALF_UP)

    def get_price_for_journal_entry(self, symbol: str, amount: Decimal | int | str) -> JournalPriceQuote:
        currency = (symbol or "").strip().upper()
        qty = Decimal(str(amount))
        try:
            data = self.get_price(currency)
        except NotFoundError:
            return JournalPriceQuote(currency=currency, amount=qty, supported=False)
        usd = (qty * data.usd_price).quantize(_CENTS, rounding=ROUND_HALF_UP)
        narrative = (
            f"{format_amount(qty)} {currency} "
            f"({usd:.2f} USD at ${data.usd_price:.4f}/{data.symbol} via {data.source})"
        )
        return JournalPriceQuote(
            currency=currency,
            amount=qty,
            supported=True,
            usd_value=usd,
            price_data=data,
            enhanced_narrative=narrative,
        )

    def is_supported(self, symbol: str) -> bool:
        key = normalise_symbol(symbol)
        if key in self.fallback_prices:
            return True
        contract = self._get_contract()
        if contract is None:
            return False
        try:
            return bool(contract.functions.isSymbolSupported(key).call())
        except Exception as e:  # noqa: BLE001
            _logger.warning("price_oracle:supported_check_failed symbol=%s error=%s", key, e)
            return False

    def get_supported_symbols(self) -> list[str]:
        symbols = set(self.fallback_prices)
        contract = self._get_contract()
        if contract is not None:
            try:
                symbols.update(normalise_symbol(s) for s in contract.functions.getSupportedSymbols().call())
            except Exception as e:  # noqa: BLE001
                _logger.warning("price_oracle:symbols_failed error=%s", e)
        return sorted(symbols)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        _logger.info("price_oracle:cache_cleared")

    def cache_stats(self) -> dict[str, Any]:
        with self._lock:
            keys = sorted(self._cache)
        return {"size": len(keys), "ttl_ms": self.ttl_ms, "entries": keys}


__all__ = [
    "FALLBACK_PRICES",
    "PRICE_FEED_ABI",
    "SYMBOL_MAP",
    "PriceOracle",
    "normalise_symbol",
]
