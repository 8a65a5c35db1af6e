# ruff: noqa: I001
"""Transaction-to-journal orchestration.

Three entry points share one set of stages:

- :meth:`Pipeline.analyse` for a single transaction hash
- :meth:`Pipeline.iter_wallet_analysis` / :meth:`Pipeline.analyse_wallet` for
  a wallet, one model call per category group
- :meth:`Pipeline.chat` which routes a free-text message to one of the above
  or to a general accounting prompt

Stage order per transaction is fixed: fetch -> categorise -> prompt -> parse
-> fee rules -> account resolution -> USD enhancement -> persist. Database
work happens on the calling thread; only model calls for category groups fan
out through :func:`pmap.p_map`.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, TypeAlias

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import get_session
from . import categorizer, chat, journal_parsing, persistence, prompting
from .accounts import DIGITAL_ASSET_PREFIX, AccountRegistry
from .chain_client import ChainClient, build_summary, records_by_hash
from .config import Settings, load_settings
from .errors import (
    ConflictError,
    DeadlineExceededError,
    EntryValidationError,
    InternalError,
    LedgerError,
    NotFoundError,
    ParseError,
    UpstreamUnavailableError,
)
from .llm_client import LlmClient
from .logging_setup import get_logger
from .models import (
    AnalysisResult,
    ChatReply,
    EntrySource,
    ProgressEvent,
    ProposedEntry,
    TransactionRecord,
    VerificationResult,
    WalletAnalysisResult,
    WalletQuery,
)
from .pmap import p_map
from .price_oracle import PriceOracle

FEE_ACCOUNT = journal_parsing.FEE_ACCOUNT
NATIVE_ASSET_NAMES: dict[str, str] = {"ETH": "Ethereum", "BTC": "Bitcoin"}
DEADLINE_REASON = "deadline exceeded"

_logger = get_logger("onchain_ledger.pipeline")

SessionFactory: TypeAlias = Callable[[], Session]


@dataclass(slots=True)
class _GroupOutcome:
    category: str
    hashes: list[str]
    entries: list[ProposedEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    expired: bool = False


class WalletRunCancelled(LedgerError):
    """``should_cancel`` returned true between two stages."""


# ---------------------------------------------------------------------------
# Entry rules (pure)
# ---------------------------------------------------------------------------


def fee_entry(record: TransactionRecord, *, native_asset: str) -> ProposedEntry:
    return ProposedEntry(
        account_debit=FEE_ACCOUNT,
        account_credit=native_asset,
        amount=record.gas_fee_native,
        currency=record.network_currency,
        narrative=f"Gas fee for transaction {record.hash}",
        confidence=0.95,
        entry_type="fee",
        transaction_date=record.timestamp,
        transaction_hash=record.hash,
        category=record.category,
        ifrs_reference="IAS 1",
    )


def apply_fee_rules(
    record: TransactionRecord,
    entries: Sequence[ProposedEntry],
    *,
    user_address: str | None,
    native_asset: str,
) -> list[ProposedEntry]:
    """Enforce the fee and failed-transaction rules for one transaction.

    - failed transactions keep fee entries only
    - when the user sent the transaction and gas was paid, exactly one fee
      entry carries ``gas_fee_native`` in the network currency; a missing one
      is synthesised
    - otherwise fee entries are dropped
    """

    fee = record.gas_fee_native
    paid = user_address is None or (record.from_address or "").lower() == user_address.lower()
    kept = [e for e in entries if record.status != "failed" or e.entry_type == "fee"]
    if fee <= 0 or not paid:
        return [e for e in kept if e.entry_type != "fee"]

    out: list[ProposedEntry] = []
    seen_fee = False
    for e in kept:
        if e.entry_type == "fee":
            if seen_fee:
                continue
            seen_fee = True
            e = e.model_copy(update={"amount": fee, "currency": record.network_currency})
        out.append(e)
    if not seen_fee:
        out.append(fee_entry(record, native_asset=native_asset))
    return out


def stamp_entries(
    entries: Sequence[ProposedEntry],
    record: TransactionRecord,
    *,
    extracted_date: datetime | None = None,
) -> list[ProposedEntry]:
    when = extracted_date or record.timestamp
    return [
        e.model_copy(
            update={
                "transaction_date": when or e.transaction_date,
                "transaction_hash": e.transaction_hash or record.hash,
                "category": e.category or record.category,
            }
        )
        for e in entries
    ]


def stored_to_entry(d: Mapping[str, Any]) -> ProposedEntry:
    """Rebuild a :class:`ProposedEntry` from :func:`persistence.stored_entry_dict` output."""

    meta = dict(d.get("metadata") or {})
    return ProposedEntry(
        account_debit=d["accountDebit"],
        account_credit=d["accountCredit"],
        amount=Decimal(d["amount"]),
        currency=d["currency"],
        narrative=d.get("narrative") or "Recorded entry",
        confidence=d.get("confidence") if d.get("confidence") is not None else 0.8,
        entry_type=d.get("entryType") or "main",
        transaction_date=datetime.fromisoformat(d["transactionDate"]) if d.get("transactionDate") else None,
        transaction_hash=meta.get("transaction_hash"),
        category=meta.get("category"),
        usd_value=Decimal(d["usdValue"]) if d.get("usdValue") else None,
        usd_rate=Decimal(d["usdRate"]) if d.get("usdRate") else None,
        usd_source=d.get("usdSource") or "none",
        metadata=meta,
    )


def wallet_recommendations(summary: Mapping[str, Any]) -> list[str]:
    recs: list[str] = []
    for cat, n in sorted(summary.get("categories", {}).items(), key=lambda kv: -kv[1]):
        if n >= 5 and cat != "unknown":
            recs.append(f"High volume of {cat} transactions ({n}); review them as one batch")
    tokens = summary.get("tokens", {})
    if len(tokens) > 3:
        recs.append(
            f"Wallet moves {len(tokens)} different tokens; make sure each has a digital asset account"
        )
    unknown = summary.get("categories", {}).get("unknown", 0)
    if unknown:
        recs.append(f"{unknown} transactions could not be categorised; review them manually")
    native = summary.get("volume", {}).get("native", {})
    if Decimal(native.get("outgoing", "0")) > Decimal(native.get("incoming", "0")):
        recs.append("Outgoing native volume exceeds incoming; check expense classification")
    if not recs:
        recs.append("No special handling needed; run a full analysis to generate entries")
    return recs


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Pipeline:
    """Wires the chain client, oracle, model and storage together."""

    def __init__(
        self,
        settings: Settings,
        *,
        chain: ChainClient | None = None,
        oracle: PriceOracle | None = None,
        llm: LlmClient | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.settings = settings
        self.chain = chain or ChainClient.from_settings(settings)
        self.oracle = oracle or PriceOracle.from_settings(settings)
        self.llm = llm or LlmClient(settings)
        if session_factory is None:
            url = settings.database_url()
            if url:
                session_factory = functools.partial(get_session, database_url=url)
        self._session_factory = session_factory

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Pipeline:
        return cls(settings or load_settings())

    @property
    def storage_enabled(self) -> bool:
        return self._session_factory is not None

    @contextmanager
    def _session(self) -> Iterator[Session | None]:
        if self._session_factory is None:
            yield None
            return
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ---- Shared stages --------------------------------------------------------

    def _chart_text(self, registry: AccountRegistry | None) -> str:
        if registry is None:
            return chat.FALLBACK_CHART_TEXT
        try:
            text = registry.formatted_chart_for_llm()
        except SQLAlchemyError as e:
            registry.session.rollback()
            _logger.warning("pipeline:chart_unavailable error=%s", e.__class__.__name__)
            return chat.FALLBACK_CHART_TEXT
        return text or chat.FALLBACK_CHART_TEXT

    def _native_asset_name(self, registry: AccountRegistry | None, currency: str) -> str:
        if registry is not None:
            acct = registry.account_for_crypto(currency)
            if acct is not None:
                return acct.name
        return f"{DIGITAL_ASSET_PREFIX}{NATIVE_ASSET_NAMES.get(currency, currency)}"

    def _resolve(
        self, registry: AccountRegistry | None, entries: Sequence[ProposedEntry]
    ) -> tuple[list[ProposedEntry], list[str]]:
        """Map model account names onto the chart, creating missing accounts.

        Entries whose accounts cannot be resolved are dropped and reported.
        """

        if registry is None:
            return list(entries), []
        out: list[ProposedEntry] = []
        errors: list[str] = []
        for idx, e in enumerate(entries):
            tx_type = e.category or "unknown"
            try:
                debit = registry.resolve_or_create(e.account_debit, tx_type=tx_type)
                credit = registry.resolve_or_create(e.account_credit, tx_type=tx_type)
            except EntryValidationError as err:
                err.entry_index = idx
                errors.append(f"entry {idx}: {err}")
                _logger.warning(
                    "pipeline:entry_invalid index=%d account=%r error=%s", idx, err.account_name, err
                )
                continue
            created = [r.account.to_dict() for r in (debit, credit) if r.created]
            out.append(
                e.model_copy(
                    update={
                        "account_debit": debit.account.name,
                        "account_credit": credit.account.name,
                        "account_creation_suggestions": [*e.account_creation_suggestions, *created],
                    }
                )
            )
        registry.session.commit()
        return out, errors

    def _enhance(self, entries: Sequence[ProposedEntry]) -> list[ProposedEntry]:
        """Attach USD valuation from the oracle (or fallback table) to each entry."""

        out: list[ProposedEntry] = []
        for e in entries:
            quote = self.oracle.get_price_for_journal_entry(e.currency, e.amount)
            if not quote.supported or quote.price_data is None:
                out.append(e.model_copy(update={"usd_source": "none", "usd_value": None, "usd_rate": None}))
                continue
            pd = quote.price_data
            out.append(
                e.model_copy(
                    update={
                        "usd_value": quote.usd_value,
                        "usd_rate": pd.usd_price,
                        "usd_source": pd.source,
                        "usd_timestamp": pd.timestamp or datetime.now(UTC),
                        "narrative": f"{e.narrative} - {quote.enhanced_narrative}",
                    }
                )
            )
        return out

    # ---- (a) Single transaction -------------------------------------------------

    def analyse(
        self,
        tx_hash: str,
        description: str | None = None,
        user_id: str | None = None,
        *,
        user_address: str | None = None,
        extracted_date: datetime | None = None,
        source: EntrySource = "ai_single",
    ) -> AnalysisResult:
        """Produce (and, with ``user_id``, persist) entries for one transaction.

        Raises
        ------
        ConflictError
            ``(user_id, hash)`` is already recorded; carries the stored entries.
        NotFoundError, UpstreamUnavailableError, ParseError
            Propagated from the explorer and model stages. A header created
            for this run is marked ``failed`` first.
        """

        record = self.chain.get_transaction(tx_hash)
        user = user_address or record.from_address
        record = categorizer.classify(record, user)
        _logger.info(
            "pipeline:analyse hash=%s category=%s status=%s",
            record.hash,
            record.category,
            record.status,
        )

        with self._session() as session:
            registry = AccountRegistry(session) if session is not None else None
            header = None
            if user_id and session is not None:
                header = persistence.begin_transaction(
                    session, user_id=user_id, record=record, description=description
                )
            try:
                system, prompt = prompting.build_single_prompt(
                    record, description=description, chart_text=self._chart_text(registry)
                )
                text = self.llm.complete(system, prompt, event="pipeline:single_llm")
                parsed = journal_parsing.parse_entries(
                    text, transaction_hash=record.hash, category=record.category
                )
                entries = stamp_entries(parsed.entries, record, extracted_date=extracted_date)
                entries = apply_fee_rules(
                    record,
                    entries,
                    user_address=user,
                    native_asset=self._native_asset_name(registry, record.network_currency),
                )
                entries, resolve_errors = self._resolve(registry, entries)
                entries = self._enhance(entries)
                errors = [*parsed.errors, *resolve_errors]

                if header is None or session is None:
                    return AnalysisResult(transaction=record, entries=entries, errors=errors)

                outcome = persistence.persist_transaction_entries(
                    session,
                    user_id=user_id,
                    record=record,
                    entries=entries,
                    source=source,
                    header=header,
                )
            except Exception:
                if header is not None and session is not None:
                    session.rollback()
                    if header.status == "pending":
                        persistence.set_status(session, header, "failed")
                    _logger.warning("pipeline:analyse_failed hash=%s", record.hash)
                raise

        return AnalysisResult(
            transaction=record,
            entries=entries,
            saved=True,
            transaction_id=outcome.transaction_id,
            errors=errors,
        )

    # ---- (b) Wallet ---------------------------------------------------------------

    def preview_wallet(self, address: str, query: WalletQuery | None = None) -> dict[str, Any]:
        """Fetch and summarise a wallet without calling the model."""

        fetched = self.chain.get_wallet_transactions(address, query)
        return {
            "address": address.lower(),
            "summary": fetched.summary,
            "feed_counts": fetched.feed_counts,
            "recommendations": wallet_recommendations(fetched.summary),
        }

    @staticmethod
    def _select(records: Sequence[TransactionRecord], q: WalletQuery) -> list[TransactionRecord]:
        allowed = set(q.categories) if q.categories else None
        return [
            r
            for r in records
            if (allowed is None or (r.category or "unknown") in allowed)
            and r.primary_amount >= q.min_value
        ]

    def _run_group(
        self,
        category: str,
        records: Sequence[TransactionRecord],
        *,
        user_address: str,
        chart_text: str,
    ) -> _GroupOutcome:
        hashes = [r.hash for r in records]
        _logger.info("pipeline:group_llm category=%s transactions=%d", category, len(records))
        system, prompt = prompting.build_bulk_prompt(
            category, records, user_address=user_address, chart_text=chart_text
        )
        try:
            text = self.llm.complete(system, prompt, event="pipeline:group_llm")
            parsed = journal_parsing.parse_entries(
                text,
                transaction_hash=hashes[0] if len(hashes) == 1 else None,
                category=category,
            )
        except LedgerError as e:
            _logger.warning("pipeline:group_failed category=%s error=%s", category, e)
            return _GroupOutcome(category, hashes, error=str(e))
        return _GroupOutcome(
            category, hashes, entries=parsed.entries, warnings=[*parsed.warnings, *parsed.errors]
        )

    @staticmethod
    def _drop_failed_mains(
        entries: Sequence[ProposedEntry], by_hash: Mapping[str, TransactionRecord]
    ) -> list[ProposedEntry]:
        out: list[ProposedEntry] = []
        for e in entries:
            h = (e.metadata.get("original_transaction_hash") or e.transaction_hash or "").lower()
            rec = by_hash.get(h)
            if rec is not None and rec.status == "failed" and e.entry_type != "fee":
                continue
            out.append(e)
        return out

    def iter_wallet_analysis(
        self,
        address: str,
        query: WalletQuery | None = None,
        user_id: str | None = None,
        *,
        should_cancel: Callable[[], bool] | None = None,
    ) -> Iterator[ProgressEvent]:
        """Run the wallet pipeline, yielding progress between stages.

        The last event has ``phase == "complete"`` and carries the result.
        Groups not started before the wall-clock deadline are reported as
        failed; entries produced by the others are still persisted.

        Raises
        ------
        DeadlineExceededError
            The deadline passed before any entry was produced.
        WalletRunCancelled
            ``should_cancel()`` returned true between stages.
        """

        q = query or WalletQuery()
        addr = address.lower()
        deadline = time.monotonic() + self.settings.wallet_deadline_sec

        def _checkpoint(phase: str) -> None:
            if should_cancel is not None and should_cancel():
                _logger.info("pipeline:wallet_cancelled address=%s phase=%s", addr, phase)
                raise WalletRunCancelled(f"wallet analysis cancelled during {phase}")

        yield ProgressEvent("fetch", f"Fetching transactions for {addr}")
        fetched = self.chain.get_wallet_transactions(addr, q)
        yield ProgressEvent("fetched", f"Fetched {len(fetched.records)} transactions", fetched.feed_counts)
        _checkpoint("fetch")
        if time.monotonic() >= deadline:
            raise DeadlineExceededError("wallet analysis deadline passed while fetching", phase="fetch")

        selected = self._select(fetched.records, q)
        groups: dict[str, list[TransactionRecord]] = {}
        for r in selected:
            groups.setdefault(r.category or "unknown", []).append(r)
        group_counts = {cat: len(recs) for cat, recs in groups.items()}
        yield ProgressEvent(
            "grouped", f"{len(selected)} transactions in {len(groups)} categories", group_counts
        )
        _checkpoint("group")

        outcomes: list[_GroupOutcome] = []
        by_hash = {h.lower(): r for h, r in records_by_hash(selected).items()}
        with self._session() as session:
            registry = AccountRegistry(session) if session is not None else None
            if groups:
                chart_text = self._chart_text(registry)
                yield ProgressEvent("analysing", f"Analysing {len(groups)} category groups", group_counts)
                try:
                    outcomes = p_map(
                        list(groups.items()),
                        lambda g: self._run_group(g[0], g[1], user_address=addr, chart_text=chart_text),
                        concurrency=max(1, int(self.settings.bulk_concurrency)),
                        stop_on_error=False,
                        deadline=deadline,
                        on_expired=lambda g: _GroupOutcome(
                            g[0], [r.hash for r in g[1]], error=DEADLINE_REASON, expired=True
                        ),
                        thread_name_prefix="ol-group",
                    )
                except ExceptionGroup as eg:
                    err = InternalError("wallet group analysis failed")
                    _logger.error(
                        "pipeline:group_crashed address=%s errors=%d correlation_id=%s",
                        addr,
                        len(eg.exceptions),
                        err.correlation_id,
                    )
                    raise err from eg

            timed_out = any(o.expired for o in outcomes)
            entries = [e for o in outcomes for e in o.entries]
            if timed_out and not entries:
                raise DeadlineExceededError(
                    "wallet analysis deadline passed before any entries were produced", phase="analyse"
                )
            for o in outcomes:
                yield ProgressEvent(
                    "group_done" if o.error is None else "group_failed",
                    f"{o.category}: {len(o.entries)} entries" if o.error is None else f"{o.category}: {o.error}",
                    {"transactions": len(o.hashes), "entries": len(o.entries)},
                )
            _checkpoint("analyse")

            entries = self._drop_failed_mains(entries, by_hash)
            entries, validation_errors = self._resolve(registry, entries)
            entries = self._enhance(entries)
            yield ProgressEvent("enhanced", f"{len(entries)} entries valued", {"entries": len(entries)})

            saved = False
            persist_report: dict[str, Any] = {"conflicts": [], "failed": []}
            if user_id and session is not None and entries:
                _checkpoint("persist")
                bulk = persistence.save_bulk_entries(
                    session, user_id=user_id, entries=entries, records_by_hash=records_by_hash(selected)
                )
                saved = bool(bulk.saved)
                persist_report = {"conflicts": bulk.conflicts, "failed": bulk.failed}
                yield ProgressEvent(
                    "persisted",
                    f"Saved {len(bulk.saved)} entries",
                    {"saved": len(bulk.saved), "conflicts": len(bulk.conflicts), "failed": len(bulk.failed)},
                )

        processing_results = {
            "successful": [
                {"category": o.category, "transaction_hashes": o.hashes, "entries": len(o.entries)}
                for o in outcomes
                if o.error is None
            ],
            "failed": [
                {"category": o.category, "transaction_hashes": o.hashes, "reason": o.error}
                for o in outcomes
                if o.error is not None
            ],
            "timed_out": timed_out,
            "warnings": [w for o in outcomes for w in o.warnings],
            "validation_errors": validation_errors,
            "persistence": persist_report,
        }
        analysis = {
            "address": addr,
            "summary": fetched.summary,
            "selected_summary": build_summary(selected),
            "feed_counts": fetched.feed_counts,
            "groups": group_counts,
        }
        result = WalletAnalysisResult(
            analysis=analysis, entries=entries, processing_results=processing_results, saved=saved
        )
        _logger.info(
            "pipeline:wallet_done address=%s groups=%d entries=%d failed=%d saved=%s",
            addr,
            len(groups),
            len(entries),
            len(processing_results["failed"]),
            saved,
        )
        yield ProgressEvent("complete", f"Produced {len(entries)} journal entries", {"entries": len(entries)}, result)

    def analyse_wallet(
        self,
        address: str,
        query: WalletQuery | None = None,
        user_id: str | None = None,
        *,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> WalletAnalysisResult:
        result: WalletAnalysisResult | None = None
        for event in self.iter_wallet_analysis(address, query, user_id):
            if on_progress is not None:
                on_progress(event)
            if event.result is not None:
                result = event.result
        if result is None:
            raise InternalError("wallet analysis finished without a result")
        return result

    # ---- (c) Chat -------------------------------------------------------------------

    def chat(
        self,
        message: str,
        context: Mapping[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ChatReply:
        """Route a chat message: wallet run, then transaction hash, then general prompt."""

        wallet = chat.detect_wallet_request(message)
        if wallet is not None:
            return self._chat_wallet(wallet, user_id)
        details = chat.extract_transaction_details(message)
        if details.transaction_hash is not None:
            return self._chat_transaction(details, user_id)
        return self._chat_general(message, details, context)

    def _chat_wallet(self, address: str, user_id: str | None) -> ChatReply:
        result = self.analyse_wallet(address, WalletQuery(), user_id)
        summary = result.analysis["summary"]
        shown = result.entries[:10]
        lines = [
            f"I analysed {summary.get('total_transactions', 0)} transactions for {address} "
            f"across {len(result.analysis['groups'])} categories and produced "
            f"{len(result.entries)} journal entries.",
        ]
        if shown:
            lines.append(chat.format_entries_for_chat(shown))
        failed = result.processing_results["failed"]
        if failed:
            lines.append(f"{len(failed)} category groups could not be processed.")
        suggestions = ["Review the generated entries before closing the period"]
        if result.saved:
            suggestions.append("View saved entries in your journal")
        return ChatReply(
            response="\n\n".join(lines),
            thinking=f"Detected a wallet analysis request for {address}.",
            suggestions=suggestions,
            journal_entries=list(result.entries),
            already_saved=result.saved,
            route="wallet",
        )

    def _chat_transaction(self, details: chat.TransactionDetails, user_id: str | None) -> ChatReply:
        tx_hash = details.transaction_hash or ""
        try:
            result = self.analyse(
                tx_hash,
                details.description,
                user_id,
                extracted_date=details.extracted_date,
                source="ai_chat",
            )
        except ConflictError as e:
            existing = [stored_to_entry(d) for d in e.existing_entries]
            return ChatReply(
                response=(
                    f"Transaction {tx_hash} is already recorded in your journal:\n\n"
                    + chat.format_entries_for_chat(existing)
                ),
                thinking="The transaction was processed before; returning the stored entries.",
                suggestions=["View saved entries in your journal"],
                journal_entries=existing,
                already_saved=True,
                route="transaction",
            )
        except (NotFoundError, UpstreamUnavailableError) as e:
            _logger.warning("pipeline:chat_fetch_failed hash=%s error=%s", tx_hash, e)
            return ChatReply(
                response=(
                    f"I couldn't fetch the transaction data for {tx_hash}. The hash may be invalid, "
                    "on a different network, or the service may be temporarily unavailable."
                ),
                thinking=f"Fetching {tx_hash} failed: {e}",
                suggestions=[
                    "Double-check the transaction hash",
                    "Verify you're on the correct blockchain network",
                    "Provide the transaction details manually",
                ],
                route="transaction",
            )

        record = result.transaction
        save_note = (
            "These entries have been saved to your journal."
            if result.saved
            else "Log in to save these entries automatically."
        )
        return ChatReply(
            response=(
                "I've analysed the blockchain transaction and created the following journal entries:\n\n"
                f"{chat.format_entries_for_chat(result.entries)}\n\n{save_note}"
            ),
            thinking=(
                f"Fetched {record.hash}: from {record.from_address} to {record.to_address}, "
                f"{record.primary_amount} {record.primary_currency}, status {record.status}, "
                f"category {record.category}."
            ),
            suggestions=[
                "Review the journal entries for accuracy",
                "Verify the account classifications match your chart of accounts",
            ],
            journal_entries=result.entries,
            already_saved=result.saved,
            route="transaction",
        )

    def _chat_general(
        self,
        message: str,
        details: chat.TransactionDetails,
        context: Mapping[str, Any] | None,
    ) -> ChatReply:
        with self._session() as session:
            registry = AccountRegistry(session) if session is not None else None
            chart_text = self._chart_text(registry)
        system, prompt = prompting.build_chat_prompt(
            message, chart_text=chart_text, extracted=details.as_prompt_dict(), context=context
        )
        text = self.llm.complete(system, prompt, event="pipeline:chat_llm")
        try:
            parsed = journal_parsing.parse_entries(text)
            entries = parsed.entries
        except ParseError:
            entries = []
        if details.extracted_date is not None:
            entries = [e.model_copy(update={"transaction_date": details.extracted_date}) for e in entries]
        entries = self._enhance(entries)
        return ChatReply(
            response=text,
            thinking=chat.extract_thinking(text),
            suggestions=chat.extract_suggestions(text),
            journal_entries=entries,
            already_saved=False,
            route="general",
        )

    # ---- Verification ------------------------------------------------------------------

    def verify_entries(
        self, entries: Sequence[ProposedEntry], record: TransactionRecord
    ) -> VerificationResult:
        system, prompt = prompting.build_verification_prompt(entries, record)
        try:
            text = self.llm.complete(system, prompt, event="pipeline:verify_llm")
            return journal_parsing.parse_verification(text)
        except (ParseError, UpstreamUnavailableError) as e:
            _logger.warning("pipeline:verify_failed hash=%s error=%s", record.hash, e)
            return VerificationResult(
                is_valid=False, confidence=0.0, issues=[str(e)], reasoning="verification unavailable"
            )


__all__ = [
    "FEE_ACCOUNT",
    "Pipeline",
    "WalletRunCancelled",
    "apply_fee_rules",
    "fee_entry",
    "stamp_entries",
    "stored_to_entry",
    "wallet_recommendations",
]
