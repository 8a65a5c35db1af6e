"""Public API for the ``onchain_ledger`` package.

A stable import surface over :class:`~onchain_ledger.pipeline.Pipeline` and
the storage queries. Each function builds its collaborators from
:func:`~onchain_ledger.config.load_settings` unless ``settings`` (or a ready
``pipeline``) is passed in.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from db.client import session_scope

from . import persistence
from .config import Settings, load_settings
from .models import AnalysisResult, ChatReply, WalletAnalysisResult, WalletQuery
from .pipeline import Pipeline
from .price_oracle import PriceOracle


def _pipeline(settings: Settings | None, pipeline: Pipeline | None) -> Pipeline:
    return pipeline or Pipeline.from_settings(settings)


def analyse_transaction(
    tx_hash: str,
    description: str | None = None,
    user_id: str | None = None,
    *,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
) -> AnalysisResult:
    """Produce journal entries for one transaction, persisting them when ``user_id`` is set."""

    return _pipeline(settings, pipeline).analyse(tx_hash, description, user_id)


def analyse_wallet(
    address: str,
    query: WalletQuery | None = None,
    user_id: str | None = None,
    *,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
) -> WalletAnalysisResult:
    return _pipeline(settings, pipeline).analyse_wallet(address, query, user_id)


def preview_wallet(
    address: str,
    query: WalletQuery | None = None,
    *,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
) -> dict[str, Any]:
    return _pipeline(settings, pipeline).preview_wallet(address, query)


def chat(
    message: str,
    context: Mapping[str, Any] | None = None,
    user_id: str | None = None,
    *,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
) -> ChatReply:
    return _pipeline(settings, pipeline).chat(message, context, user_id)


def get_prices(symbols: list[str], *, settings: Settings | None = None) -> dict[str, Any]:
    return PriceOracle.from_settings(settings or load_settings()).get_prices(symbols)


def list_transactions(
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    s = settings or load_settings()
    with session_scope(database_url=s.database_url()) as session:
        return persistence.list_transactions(session, user_id, page=page, limit=limit, status=status)


def get_transaction(
    user_id: str, transaction_id: int, *, settings: Settings | None = None
) -> dict[str, Any]:
    s = settings or load_settings()
    with session_scope(database_url=s.database_url()) as session:
        return persistence.get_transaction_with_entries(session, user_id, transaction_id)


__all__ = [
    "analyse_transaction",
    "analyse_wallet",
    "chat",
    "get_prices",
    "get_transaction",
    "list_transactions",
    "preview_wallet",
]
