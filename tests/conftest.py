"""Pytest configuration for test isolation.

Settings are read from the process environment, so a developer shell that
exports ``STORAGE_URL`` or ``LLM_API_KEY`` would otherwise leak into tests.
Each test starts with those variables removed and retry backoff disabled.
Afterwards the engine cache is emptied (tests point different runs at
different SQLite files) and the package logger gets its handlers back, since
the CLI callback configures logging.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# `packages/` holds onchain_ledger, `libs/db/src` holds the shared db package.
sys.path[:0] = [
    p for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)] if p not in sys.path
]

from db.client import dispose_engines  # noqa: E402
from onchain_ledger import logging_setup, retrying  # noqa: E402

_SETTINGS_ENV = (
    "EXPLORER_BASE_URL",
    "EXPLORER_API_KEY",
    "EXPLORER_TIMEOUT_SEC",
    "LLM_API_KEY",
    "OPENAI_API_KEY",
    "LLM_MODEL",
    "LLM_BASE_URL",
    "LLM_TIMEOUT_SEC",
    "ORACLE_ADDRESS",
    "ORACLE_RPC_URL",
    "ORACLE_ENABLED",
    "PRICE_TTL_MS",
    "STORAGE_URL",
    "DATABASE_URL",
    "STORAGE_SERVICE_KEY",
    "WALLET_DEADLINE_SEC",
    "BULK_CONCURRENCY",
    "ONCHAIN_LEDGER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(retrying, "backoff_delay", lambda attempt_no: 0.0)


@pytest.fixture(autouse=True)
def _dispose_engines() -> Iterator[None]:
    yield
    dispose_engines()


@pytest.fixture(autouse=True)
def _restore_package_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    logger = logging.getLogger("onchain_ledger")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    yield
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]
