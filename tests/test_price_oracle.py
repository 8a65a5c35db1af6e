from __future__ import annotations

from decimal import Decimal

import pytest

from onchain_ledger.config import Settings
from onchain_ledger.errors import NotFoundError
from onchain_ledger.price_oracle import FALLBACK_PRICES, PriceOracle

from tests.helpers.oracle_stub import OracleContractStub

ETH_ORACLE = (345_012_000_000, -8, 1_709_294_400)


class _Clock:
    def __init__(self) -> None:
        self.t = 100.0

    def __call__(self) -> float:
        return self.t


def test_disabled_oracle_uses_fallback_table() -> None:
    oracle = PriceOracle()
    data = oracle.get_price("eth")
    assert data.usd_price == Decimal("2540.00")
    assert data.source == "fallback"
    assert data.symbol == "ETH"


def test_from_settings_without_oracle_config_is_disabled() -> None:
    oracle = PriceOracle.from_settings(Settings(oracle_enabled=True, oracle_address="0xabc"))
    assert oracle.enabled is False
    assert oracle.get_price("BTC").source == "fallback"


def test_oracle_price_is_scaled_by_decimals() -> None:
    stub = OracleContractStub({"ETH": ETH_ORACLE})
    data = PriceOracle(contract=stub).get_price("ETH")
    assert data.usd_price == Decimal("3450.12")
    assert data.source == "oracle"
    assert data.decimals == -8
    assert data.timestamp is not None and data.timestamp.year == 2024


def test_cache_honours_ttl_and_clear() -> None:
    stub = OracleContractStub({"ETH": ETH_ORACLE})
    clock = _Clock()
    oracle = PriceOracle(contract=stub, ttl_ms=1000, clock=clock)

    oracle.get_price("ETH")
    clock.t += 0.5
    oracle.get_price("eth")
    assert stub.price_calls() == 1

    clock.t += 0.6
    oracle.get_price("ETH")
    assert stub.price_calls() == 2

    assert oracle.cache_stats() == {"size": 1, "ttl_ms": 1000, "entries": ["ETH"]}
    oracle.clear_cache()
    assert oracle.cache_stats()["size"] == 0
    oracle.get_price("ETH")
    assert stub.price_calls() == 3


def test_failing_contract_falls_back() -> None:
    oracle = PriceOracle(fallback_prices={"ETH": "3402.25"}, contract=OracleContractStub(fail=True))
    quote = oracle.get_price_for_journal_entry("ETH", Decimal("2"))
    assert quote.supported is True
    assert quote.price_data is not None and quote.price_data.usd_price == Decimal("3402.25")
    assert quote.price_data.source == "fallback"
    assert quote.usd_value == Decimal("6804.50")
    assert quote.enhanced_narrative is not None and "via fallback" in quote.enhanced_narrative


def test_zero_price_falls_back() -> None:
    oracle = PriceOracle(contract=OracleContractStub({"ETH": (0, -8, 0)}))
    data = oracle.get_price("ETH")
    assert data.source == "fallback"
    assert data.usd_price == FALLBACK_PRICES["ETH"]


def test_unpriced_symbol() -> None:
    oracle = PriceOracle(fallback_prices={}, contract=OracleContractStub({}))
    with pytest.raises(NotFoundError):
        oracle.get_price("NOPE")

    quote = oracle.get_price_for_journal_entry("nope", "1")
    assert quote.supported is False
    assert quote.currency == "NOPE"
    assert quote.usd_value is None


def test_testnet_and_wrapped_aliases() -> None:
    stub = OracleContractStub({"FLR": (15_000_000, -9, 0), "ETH": ETH_ORACLE})
    oracle = PriceOracle(contract=stub)

    flr = oracle.get_price("c2flr")
    assert flr.usd_price == Decimal("0.015")
    assert flr.symbol == "FLR"
    assert flr.timestamp is None
    assert ("getPrice", ("FLR",)) in stub.calls
    # the testnet name shares the mainnet cache slot
    assert oracle.get_price("FLR") is flr
    assert stub.calls.count(("getPrice", ("FLR",))) == 1
    assert oracle.cache_stats()["entries"] == ["FLR"]

    assert oracle.get_price("WETH").symbol == "ETH"


def test_usd_value_is_quantised_to_cents() -> None:
    oracle = PriceOracle()
    assert oracle.calculate_usd_value("ETH", "0.00042") == Decimal("1.07")
    assert oracle.calculate_usd_value("USDT", 1000) == Decimal("1000.00")


def test_get_prices_splits_unsupported() -> None:
    res = PriceOracle().get_prices(["eth", "nope", "weth"])
    assert set(res["prices"]) == {"ETH"}
    assert res["unsupported"] == ["NOPE"]


def test_supported_symbols() -> None:
    oracle = PriceOracle(contract=OracleContractStub({"SGB": (1, -2, 0)}))
    assert oracle.is_supported("usdt")
    assert oracle.is_supported("sgb")
    assert not oracle.is_supported("nope")
    assert "SGB" in oracle.get_supported_symbols()

    broken = PriceOracle(contract=OracleContractStub(fail=True))
    assert not broken.is_supported("SGB")
    assert broken.get_supported_symbols() == sorted(FALLBACK_PRICES)
