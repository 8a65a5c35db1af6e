# ruff: noqa: I001
"""CLI for the ``onchain_ledger`` package.

A Typer console interface over :mod:`onchain_ledger.pipeline`. The root
callback loads a local ``.env`` with ``python-dotenv`` (without overriding
variables that are already set) and configures logging before any command
runs. Errors from the ledger taxonomy print ``Error: ...`` to stderr and exit
with status 1.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .config import Settings, load_settings
from .errors import ConflictError, LedgerError
from .logging_setup import configure_logging
from .models import ProposedEntry, WalletQuery, format_amount
from .pipeline import Pipeline

app = typer.Typer(
    name="onchain-ledger",
    no_args_is_help=True,
    add_completion=False,
    help="Turn on-chain transactions into IFRS journal entries.",
)
console = Console()
err_console = Console(stderr=True)


# ---- Helpers -------------------------------------------------------------------


def _settings(database_url: str | None = None) -> Settings:
    s = load_settings()
    if database_url:
        s = dataclasses.replace(s, storage_url=database_url)
    return s


def _build_pipeline(database_url: str | None = None) -> Pipeline:
    return Pipeline.from_settings(_settings(database_url))


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}", highlight=False)
    return typer.Exit(1)


def _entries_table(entries: Sequence[ProposedEntry], *, title: str = "Journal entries") -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Debit")
    table.add_column("Credit")
    table.add_column("Amount", justify="right")
    table.add_column("Currency")
    table.add_column("USD", justify="right")
    table.add_column("Price source")
    for i, e in enumerate(entries, start=1):
        table.add_row(
            str(i),
            e.entry_type,
            e.account_debit,
            e.account_credit,
            format_amount(e.amount),
            e.currency,
            f"{e.usd_value:,.2f}" if e.usd_value is not None else "-",
            e.usd_source,
        )
    return table


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


# ---- Commands --------------------------------------------------------------------


@app.command("analyse-tx")
def analyse_tx_cmd(
    tx_hash: Annotated[str, typer.Argument(help="Transaction hash (0x + 64 hex)")],
    description: Annotated[str | None, typer.Option(help="What the transaction was for")] = None,
    user_id: Annotated[str | None, typer.Option(help="Persist entries for this user")] = None,
    database_url: Annotated[str | None, typer.Option(help="Override STORAGE_URL")] = None,
) -> None:
    """Analyse one transaction and print the proposed entries."""

    pipeline = _build_pipeline(database_url)
    try:
        result = pipeline.analyse(tx_hash, description, user_id)
    except ConflictError as e:
        console.print(
            f"[yellow]Already recorded[/yellow] (transaction id {e.transaction_id}); stored entries:"
        )
        _print_json(e.existing_entries)
        raise typer.Exit(1) from e
    except (LedgerError, ValueError) as e:
        raise _fail(str(e)) from e

    rec = result.transaction
    console.print(
        f"[cyan]{rec.hash}[/cyan] category=[bold]{rec.category}[/bold] status={rec.status} "
        f"amount={format_amount(rec.primary_amount)} {rec.primary_currency}"
    )
    console.print(_entries_table(result.entries))
    for err in result.errors:
        err_console.print(f"[yellow]Warning:[/yellow] {err}")
    if result.saved:
        console.print(f"[green]Saved[/green] as transaction {result.transaction_id}")


@app.command("analyse-wallet")
def analyse_wallet_cmd(
    address: Annotated[str, typer.Argument(help="Wallet address (0x + 40 hex)")],
    limit: Annotated[int, typer.Option(min=1, max=1000, help="Max transactions to fetch")] = 50,
    min_value: Annotated[str, typer.Option(help="Skip transactions below this amount")] = "0",
    category: Annotated[
        list[str] | None, typer.Option("--category", help="Only analyse these categories")
    ] = None,
    include_tokens: Annotated[bool, typer.Option(help="Fetch token transfers")] = True,
    include_internal: Annotated[bool, typer.Option(help="Fetch internal transactions")] = False,
    include_failed: Annotated[bool, typer.Option(help="Keep failed transactions")] = False,
    user_id: Annotated[str | None, typer.Option(help="Persist entries for this user")] = None,
    database_url: Annotated[str | None, typer.Option(help="Override STORAGE_URL")] = None,
) -> None:
    """Analyse a wallet category by category, streaming progress."""

    try:
        min_dec = Decimal(min_value)
    except InvalidOperation as e:
        raise _fail(f"--min-value must be a number, got {min_value!r}") from e
    query = WalletQuery(
        limit=limit,
        min_value=min_dec,
        categories=tuple(category) if category else None,
        include_tokens=include_tokens,
        include_internal=include_internal,
        include_failed=include_failed,
    )
    pipeline = _build_pipeline(database_url)
    result = None
    try:
        for event in pipeline.iter_wallet_analysis(address, query, user_id):
            counts = " ".join(f"{k}={v}" for k, v in event.counts.items())
            console.print(f"[dim]{event.phase:>10}[/dim] {event.message} [dim]{counts}[/dim]")
            if event.result is not None:
                result = event.result
    except (LedgerError, ValueError) as e:
        raise _fail(str(e)) from e
    if result is None:
        raise _fail("wallet analysis produced no result")

    console.print(_entries_table(result.entries))
    for failed in result.processing_results["failed"]:
        err_console.print(
            f"[yellow]Group failed:[/yellow] {failed['category']} "
            f"({len(failed['transaction_hashes'])} transactions): {failed['reason']}"
        )
    if result.saved:
        console.print("[green]Entries saved[/green]")


@app.command("preview-wallet")
def preview_wallet_cmd(
    address: Annotated[str, typer.Argument(help="Wallet address (0x + 40 hex)")],
    limit: Annotated[int, typer.Option(min=1, max=1000)] = 50,
) -> None:
    """Summarise a wallet without calling the model."""

    pipeline = _build_pipeline()
    try:
        preview = pipeline.preview_wallet(address, WalletQuery(limit=limit))
    except (LedgerError, ValueError) as e:
        raise _fail(str(e)) from e
    _print_json(preview["summary"])
    console.print(
        Panel("\n".join(f"• {r}" for r in preview["recommendations"]), title="Recommendations")
    )


@app.command("chat")
def chat_cmd(
    message: Annotated[str | None, typer.Argument(help="Message; omit for an interactive session")] = None,
    user_id: Annotated[str | None, typer.Option(help="Persist entries for this user")] = None,
    database_url: Annotated[str | None, typer.Option(help="Override STORAGE_URL")] = None,
) -> None:
    """Chat with the accounting assistant."""

    pipeline = _build_pipeline(database_url)
    context: dict[str, Any] = {"history": []}

    def _handle(text: str) -> None:
        try:
            reply = pipeline.chat(text, context, user_id)
        except (LedgerError, ValueError) as e:
            err_console.print(f"[red]Error:[/red] {e}", highlight=False)
            return
        console.print(Panel(Markdown(reply.response), title=f"assistant ({reply.route})", border_style="green"))
        if reply.journal_entries:
            console.print(_entries_table(reply.journal_entries))
        if reply.already_saved:
            console.print("[green]Entries saved[/green]")
        context["history"].append({"user": text, "assistant": reply.response[:500]})

    if message is not None:
        try:
            reply = pipeline.chat(message, context, user_id)
        except (LedgerError, ValueError) as e:
            raise _fail(str(e)) from e
        console.print(Panel(Markdown(reply.response), title=f"assistant ({reply.route})", border_style="green"))
        if reply.journal_entries:
            console.print(_entries_table(reply.journal_entries))
        return

    from .term_ui import chat_loop

    chat_loop(_handle, show_help=lambda t: console.print(f"[dim]{t}[/dim]"))


@app.command("price")
def price_cmd(
    symbols: Annotated[list[str], typer.Argument(help="Symbols, e.g. ETH FLR USDC")],
    amount: Annotated[str | None, typer.Option(help="Also value this quantity")] = None,
) -> None:
    """Show USD prices from the oracle (or the fallback table)."""

    from .price_oracle import PriceOracle

    oracle = PriceOracle.from_settings(load_settings())
    result = oracle.get_prices(symbols)
    table = Table(title="Prices")
    table.add_column("Symbol")
    table.add_column("USD", justify="right")
    table.add_column("Source")
    if amount is not None:
        table.add_column(f"Value of {amount}", justify="right")
    for sym, data in result["prices"].items():
        row = [sym, f"{data.usd_price:,.4f}", data.source]
        if amount is not None:
            try:
                row.append(f"{oracle.calculate_usd_value(sym, amount):,.2f}")
            except (LedgerError, InvalidOperation) as e:
                raise _fail(str(e)) from e
        table.add_row(*row)
    console.print(table)
    if result["unsupported"]:
        raise _fail("no price for " + ", ".join(result["unsupported"]))


@app.command("transactions")
def transactions_cmd(
    user_id: Annotated[str, typer.Option(help="Owner of the transactions")],
    page: Annotated[int, typer.Option(min=1)] = 1,
    limit: Annotated[int, typer.Option(min=1)] = 20,
    status: Annotated[str | None, typer.Option(help="pending, processed or failed")] = None,
    database_url: Annotated[str | None, typer.Option(help="Override STORAGE_URL")] = None,
) -> None:
    """List recorded transactions for a user."""

    from db.client import session_scope

    from . import persistence

    try:
        with session_scope(database_url=_settings(database_url).database_url()) as session:
            data = persistence.list_transactions(session, user_id, page=page, limit=limit, status=status)
    except (LedgerError, RuntimeError) as e:
        raise _fail(str(e)) from e
    _print_json(data)


@app.command("seed-chart")
def seed_chart_cmd(
    database_url: Annotated[str | None, typer.Option(help="Override STORAGE_URL")] = None,
) -> None:
    """Insert the default IFRS chart of accounts (existing rows are kept)."""

    from db.chart_seed import seed_chart_of_accounts
    from db.client import session_scope

    try:
        with session_scope(database_url=_settings(database_url).database_url()) as session:
            counts = seed_chart_of_accounts(session)
    except RuntimeError as e:
        raise _fail(str(e)) from e
    console.print(
        "Seeded "
        + ", ".join(f"{n} {table.replace('_', ' ')}" for table, n in counts.items())
    )


@app.callback()
def _root(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log at DEBUG level")] = False,
) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging("DEBUG" if verbose else None, force=verbose)


if __name__ == "__main__":  # pragma: no cover
    app()
