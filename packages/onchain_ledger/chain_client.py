"""Block-explorer client (Blockscout-compatible ``/api/v2``).

Public surface:
    - :class:`ChainClient` with ``get_transaction``, ``get_wallet_transactions``,
      ``get_token_transfers`` and ``get_balance``
    - :func:`build_summary` for wallet overviews

HTTP goes through a ``requests.Session`` (injectable for tests). 404 becomes
:class:`~onchain_ledger.errors.NotFoundError`; 429/5xx and transport errors
are retried and then surface as
:class:`~onchain_ledger.errors.UpstreamUnavailableError`.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from decimal import Decimal
from typing import Any

import requests

from . import categorizer
from .config import Settings, network_currency_for
from .errors import NotFoundError, UpstreamUnavailableError
from .logging_setup import get_logger
from .models import (
    NATIVE_DECIMALS,
    Balance,
    TokenTransfer,
    TransactionRecord,
    WalletFetchResult,
    WalletQuery,
    format_amount,
    scale_units,
)
from .normalization import (
    merge_by_hash,
    normalise_internal_item,
    normalise_token_item,
    normalise_token_transfer,
    normalise_transaction,
    parse_int,
)
from .pmap import p_map
from .retrying import call_with_retry, is_retryable_status

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

_TOKEN_TYPES = "ERC-20,ERC-721,ERC-1155"
_MAX_PAGES = 10

_logger = get_logger("onchain_ledger.chain_client")


class _RetryableHttp(Exception):
    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, _RetryableHttp):
        return is_retryable_status(exc.status_code)
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


class ChainClient:
    """Fetch and normalise transactions from a block explorer."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_sec: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self.network_currency = network_currency_for(self.base_url)
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, *, session: requests.Session | None = None) -> ChainClient:
        return cls(
            settings.explorer_base_url,
            api_key=settings.explorer_api_key,
            timeout_sec=settings.explorer_timeout_sec,
            session=session,
        )

    # ---- HTTP ---------------------------------------------------------------

    def _get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        query: dict[str, Any] = dict(params or {})
        if self.api_key:
            query["apikey"] = self.api_key

        def _once() -> Any:
            resp = self._session.get(url, params=query, timeout=self.timeout_sec)
            if resp.status_code == 404:
                raise NotFoundError(f"not found: {path}")
            if is_retryable_status(resp.status_code):
                raise _RetryableHttp(resp.status_code, url)
            if resp.status_code >= 400:
                raise UpstreamUnavailableError(
                    f"explorer fetch failed: HTTP {resp.status_code} for {path}",
                    service="explorer",
                    status_code=resp.status_code,
                )
            try:
                return resp.json()
            except ValueError as e:
                raise UpstreamUnavailableError(
                    f"explorer returned invalid JSON for {path}", service="explorer"
                ) from e

        try:
            return call_with_retry(
                _once, is_retryable=_is_retryable, logger=_logger, event="chain_client:http"
            )
        except _RetryableHttp as e:
            raise UpstreamUnavailableError(
                f"explorer fetch failed: {e}", service="explorer", status_code=e.status_code
            ) from e
        except requests.RequestException as e:
            raise UpstreamUnavailableError(
                f"explorer fetch failed: {e.__class__.__name__} for {path}", service="explorer"
            ) from e

    def _paged_items(self, path: str, params: Mapping[str, Any], limit: int) -> list[Mapping[str, Any]]:
        """Follow ``next_page_params`` until ``limit`` items or the page cap."""

        items: list[Mapping[str, Any]] = []
        query = dict(params)
        for _ in range(_MAX_PAGES):
            body = self._get_json(path, query)
            page = body.get("items") if isinstance(body, Mapping) else None
            if not isinstance(page, list):
                raise UpstreamUnavailableError(
                    f"explorer response for {path} has no items list", service="explorer"
                )
            items.extend(p for p in page if isinstance(p, Mapping))
            nxt = body.get("next_page_params")
            if len(items) >= limit or not isinstance(nxt, Mapping) or not nxt:
                break
            query = {**dict(params), **nxt}
        return items[:limit]

    # ---- Public operations ----------------------------------------------------

    def get_transaction(self, tx_hash: str) -> TransactionRecord:
        """Fetch and normalise one transaction by hash."""

        if not TX_HASH_RE.match(tx_hash or ""):
            raise ValueError(f"not a transaction hash: {tx_hash!r}")
        try:
            raw = self._get_json(f"/api/v2/transactions/{tx_hash}")
        except NotFoundError as e:
            raise NotFoundError(f"transaction not found: {tx_hash}") from e
        record = normalise_transaction(raw, network_currency=self.network_currency)
        _logger.info(
            "chain_client:tx_fetched hash=%s status=%s token=%s",
            record.hash,
            record.status,
            record.token_transfer.symbol if record.token_transfer else "-",
        )
        return record

    def get_token_transfers(self, address_or_hash: str, *, limit: int = 50) -> list[TokenTransfer]:
        """Token transfers for an address, or for a single transaction hash."""

        if TX_HASH_RE.match(address_or_hash or ""):
            body = self._get_json(f"/api/v2/transactions/{address_or_hash}/token-transfers")
            raw_items = body.get("items", []) if isinstance(body, Mapping) else []
        elif ADDRESS_RE.match(address_or_hash or ""):
            raw_items = self._paged_items(
                f"/api/v2/addresses/{address_or_hash}/token-transfers",
                {"type": _TOKEN_TYPES},
                limit,
            )
        else:
            raise ValueError(f"not an address or transaction hash: {address_or_hash!r}")
        out: list[TokenTransfer] = []
        for item in raw_items:
            tt = normalise_token_transfer(item)
            if tt is not None:
                out.append(tt)
        return out

    def get_balance(self, address: str) -> Balance:
        if not ADDRESS_RE.match(address or ""):
            raise ValueError(f"not an address: {address!r}")
        body = self._get_json(f"/api/v2/addresses/{address}")
        wei = parse_int(body.get("coin_balance") if isinstance(body, Mapping) else None) or 0
        return Balance(wei=wei, native=scale_units(wei, NATIVE_DECIMALS))

    def get_wallet_transactions(
        self,
        address: str,
        query: WalletQuery | None = None,
        *,
        classify: bool = True,
    ) -> WalletFetchResult:
        """Fetch the three feeds concurrently, merge by hash and categorise.

        The regular feed is required; token and internal feeds degrade to
        empty lists on failure.
        """

        if not ADDRESS_RE.match(address or ""):
            raise ValueError(f"not an address: {address!r}")
        q = query or WalletQuery()
        addr = address.lower()

        feeds: list[tuple[str, Callable[[], list[TransactionRecord]]]] = [
            ("regular", lambda: self._regular_feed(addr, q.limit)),
        ]
        if q.include_tokens:
            feeds.append(("token", lambda: self._soft_feed("token", lambda: self._token_feed(addr, q.limit))))
        if q.include_internal:
            feeds.append(
                ("internal", lambda: self._soft_feed("internal", lambda: self._internal_feed(addr, q.limit)))
            )

        results = p_map(feeds, lambda feed: feed[1](), concurrency=3, thread_name_prefix="ol-feed")
        counts = {name: len(recs) for (name, _), recs in zip(feeds, results, strict=True)}

        merged = merge_by_hash(rec for recs in results for rec in recs)
        if not q.include_failed:
            merged = [r for r in merged if r.status == "success"]
        if classify:
            merged = categorizer.classify_all(merged, addr)
        merged.sort(key=lambda r: (r.timestamp is not None, r.timestamp), reverse=True)
        merged = merged[: q.limit]
        counts["merged"] = len(merged)

        _logger.info(
            "chain_client:wallet_fetched address=%s regular=%d token=%d internal=%d merged=%d",
            addr,
            counts.get("regular", 0),
            counts.get("token", 0),
            counts.get("internal", 0),
            counts["merged"],
        )
        return WalletFetchResult(records=merged, summary=build_summary(merged), feed_counts=counts)

    # ---- Feeds ------------------------------------------------------------------

    def _regular_feed(self, address: str, limit: int) -> list[TransactionRecord]:
        items = self._paged_items(
            f"/api/v2/addresses/{address}/transactions",
            {"filter": "to|from", "type": "transaction", "page": 1, "limit": limit},
            limit,
        )
        return [normalise_transaction(i, network_currency=self.network_currency) for i in items]

    def _token_feed(self, address: str, limit: int) -> list[TransactionRecord]:
        items = self._paged_items(
            f"/api/v2/addresses/{address}/token-transfers", {"type": _TOKEN_TYPES}, limit
        )
        out: list[TransactionRecord] = []
        for i in items:
            rec = normalise_token_item(i, network_currency=self.network_currency)
            if rec is not None:
                out.append(rec)
        return out

    def _internal_feed(self, address: str, limit: int) -> list[TransactionRecord]:
        items = self._paged_items(f"/api/v2/addresses/{address}/internal-transactions", {}, limit)
        return [normalise_internal_item(i, network_currency=self.network_currency) for i in items]

    def _soft_feed(
        self, name: str, fetch: Callable[[], list[TransactionRecord]]
    ) -> list[TransactionRecord]:
        t0 = time.perf_counter()
        try:
            return fetch()
        except (UpstreamUnavailableError, NotFoundError) as e:
            _logger.warning(
                "chain_client:feed_failed feed=%s latency_ms=%.2f error=%s",
                name,
                (time.perf_counter() - t0) * 1000.0,
                e,
            )
            return []


# ---------------------------------------------------------------------------
# Wallet summary
# ---------------------------------------------------------------------------


def build_summary(records: Sequence[TransactionRecord]) -> dict[str, Any]:
    """Counts by category/direction/token, volumes and time range.

    Volumes are decimal strings so the summary stays JSON-serialisable.
    """

    categories: dict[str, int] = {}
    directions: dict[str, int] = {}
    tokens: dict[str, int] = {}
    native_in = Decimal(0)
    native_out = Decimal(0)
    token_volume: dict[str, dict[str, Decimal]] = {}

    for r in records:
        cat = r.category or "unknown"
        categories[cat] = categories.get(cat, 0) + 1
        if r.direction:
            directions[r.direction] = directions.get(r.direction, 0) + 1
        if r.direction == "incoming":
            native_in += r.native_amount
        elif r.direction == "outgoing":
            native_out += r.native_amount
        tt = r.token_transfer
        if tt is not None:
            tokens[tt.symbol] = tokens.get(tt.symbol, 0) + 1
            vol = token_volume.setdefault(tt.symbol, {"incoming": Decimal(0), "outgoing": Decimal(0)})
            if cat == "token_received" or r.direction == "incoming":
                vol["incoming"] += tt.amount
            else:
                vol["outgoing"] += tt.amount

    stamps = [r.timestamp for r in records if r.timestamp is not None]
    return {
        "total_transactions": len(records),
        "categories": categories,
        "directions": directions,
        "tokens": tokens,
        "volume": {
            "native": {"incoming": format_amount(native_in), "outgoing": format_amount(native_out)},
            "tokens": {
                sym: {k: format_amount(v) for k, v in vol.items()} for sym, vol in token_volume.items()
            },
        },
        "time_range": {
            "earliest": min(stamps).isoformat() if stamps else None,
            "latest": max(stamps).isoformat() if stamps else None,
        },
    }


def records_by_hash(records: Iterable[TransactionRecord]) -> dict[str, TransactionRecord]:
    return {r.hash: r for r in records}


__all__ = ["ADDRESS_RE", "TX_HASH_RE", "ChainClient", "build_summary", "records_by_hash"]
