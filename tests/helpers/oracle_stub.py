"""Stub of a web3 contract exposing the price-feed functions.

Mirrors ``contract.functions.<name>(*args).call()``. Prices are given as the
raw ``(price, decimals, timestamp)`` tuple the contract returns.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class _Call:
    def __init__(self, fn) -> None:
        self._fn = fn

    def call(self) -> Any:
        return self._fn()


class OracleContractStub:
    def __init__(
        self,
        prices: Mapping[str, tuple[int, int, int]] | None = None,
        *,
        fail: bool = False,
    ) -> None:
        self.prices = dict(prices or {})
        self.fail = fail
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        outer = self

        class _Functions:
            def getPrice(self, symbol: str) -> _Call:  # noqa: N802
                outer.calls.append(("getPrice", (symbol,)))
                return _Call(lambda: outer._price(symbol))

            def isSymbolSupported(self, symbol: str) -> _Call:  # noqa: N802
                outer.calls.append(("isSymbolSupported", (symbol,)))
                return _Call(lambda: outer._supported(symbol))

            def getSupportedSymbols(self) -> _Call:  # noqa: N802
                outer.calls.append(("getSupportedSymbols", ()))
                return _Call(lambda: outer._symbols())

        self.functions = _Functions()

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("rpc unreachable")

    def _price(self, symbol: str) -> tuple[int, int, int]:
        self._check()
        if symbol not in self.prices:
            raise ValueError(f"execution reverted: unsupported symbol {symbol}")
        return self.prices[symbol]

    def _supported(self, symbol: str) -> bool:
        self._check()
        return symbol in self.prices

    def _symbols(self) -> list[str]:
        self._check()
        return sorted(self.prices)

    def price_calls(self) -> int:
        return sum(1 for name, _ in self.calls if name == "getPrice")
