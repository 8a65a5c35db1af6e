from __future__ import annotations

import json
from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from onchain_ledger import cli

from tests.helpers.db import bootstrap_sqlite_db
from tests.helpers.explorer_stub import A, B, tx_hash, tx_payload
from tests.helpers.pipeline import make_pipeline

runner = CliRunner()
H1 = tx_hash("a1")


@pytest.fixture(autouse=True)
def _wide_consoles(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(cli, "console", Console(width=200))
    monkeypatch.setattr(cli, "err_console", Console(stderr=True, width=200))
    monkeypatch.chdir(tmp_path)


def test_price_uses_fallback_table() -> None:
    result = runner.invoke(cli.app, ["price", "ETH", "--amount", "2"])
    assert result.exit_code == 0, result.output
    assert "2,540.0000" in result.output
    assert "5,080.00" in result.output
    assert "fallback" in result.output


def test_price_unknown_symbol_fails() -> None:
    result = runner.invoke(cli.app, ["price", "NOPE"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_analyse_tx_prints_entries(monkeypatch: pytest.MonkeyPatch) -> None:
    reply = json.dumps(
        [
            {
                "accountDebit": "Professional Services",
                "accountCredit": "Digital Assets - Ethereum",
                "amount": "2.65",
                "currency": "ETH",
                "narrative": "Consulting payment",
            }
        ]
    )
    payload = tx_payload(H1, frm=A, to=B, value=2_650_000_000_000_000_000)
    h = make_pipeline(routes={f"/api/v2/transactions/{H1}": payload}, respond=reply)
    monkeypatch.setattr(cli, "_build_pipeline", lambda database_url=None: h.pipeline)

    result = runner.invoke(cli.app, ["analyse-tx", H1, "--description", "consulting"])

    assert result.exit_code == 0, result.output
    assert "category=outgoing_transfer" in result.output
    assert "Transaction Fees" in result.output


def test_analyse_tx_reports_missing_transaction(monkeypatch: pytest.MonkeyPatch) -> None:
    h = make_pipeline(routes={}, respond="[]")
    monkeypatch.setattr(cli, "_build_pipeline", lambda database_url=None: h.pipeline)
    result = runner.invoke(cli.app, ["analyse-tx", H1])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_seed_chart_reports_counts(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "ledger.db", seed=False)
    result = runner.invoke(cli.app, ["seed-chart", "--database-url", url])
    assert result.exit_code == 0, result.output
    assert "9 categories" in result.output

    again = runner.invoke(cli.app, ["seed-chart", "--database-url", url])
    assert "0 categories" in again.output


def test_transactions_without_database_fails() -> None:
    result = runner.invoke(cli.app, ["transactions", "--user-id", "u"])
    assert result.exit_code == 1
    assert "Error:" in result.output
