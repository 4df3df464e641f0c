"""Scheduled and manual trigger jobs.

Each job is one pass of fetch -> normalize -> dedup -> persist, shaped so that
a run killed midway leaves only fewer rows, never inconsistent ones. Jobs keep
no in-process state between invocations; everything durable lives in the store
and batch selection is derived from the wall clock.

Triggers:
- fetch_news_job: the active news partition
- refresh_market_job: cold start + quotes for the active symbol partition
- cold_start_job: manual history backfill
- translate_job: untranslated news from the last 24 hours
- briefing_job: one report per (date, session)
- snapshot_job: daily prediction-market snapshot
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from .backfill import BackfillResult, HistoryFetcher, plan_backfill, run_backfill
from .config import Settings, get_settings
from .context import EventsFetcher, assemble_context
from .feeds import fetch_feeds
from .llm import ChatClient, FallbackError, LLMError
from .market import fetch_quotes
from .models import (
    MarketDataPoint,
    NewsRecord,
    PredictionEvent,
    Session,
    TranslationRecord,
)
from .polymarket import fetch_macro_events
from .prompts import briefing_heading
from .reconcile import flatten_for_storage, reconcile
from .registry import DEFAULT_REGISTRY, NewsSource, SourceRegistry, TrackedSymbol
from .scheduler import select_batch, total_batches
from .store import NewsStore
from .timeutil import previous_reporting_date, reporting_date, utc_now

logger = logging.getLogger(__name__)

FeedFetcher = Callable[[Sequence[NewsSource]], Dict[str, List[NewsRecord]]]
QuoteFetcher = Callable[[Sequence[TrackedSymbol]], List[MarketDataPoint]]


# --- Outcomes ---------------------------------------------------------------

@dataclass
class FetchOutcome:
    batch_index: int
    total_batches: int
    sources: List[str]
    fetched: int = 0
    saved: int = 0
    empty_sources: List[str] = field(default_factory=list)


@dataclass
class MarketOutcome:
    batch_index: int
    total_batches: int
    symbols: List[str]
    backfilled: List[str] = field(default_factory=list)
    quoted: int = 0
    saved: int = 0
    failed: List[str] = field(default_factory=list)


@dataclass
class TranslationOutcome:
    status: str
    language: str
    candidates: int = 0
    translated: int = 0
    duplicates: int = 0
    failed: int = 0
    reason: str | None = None


@dataclass
class BriefingOutcome:
    status: str
    date: str
    session: str
    news_count: int = 0
    reason: str | None = None


@dataclass
class SnapshotOutcome:
    date: str
    events: int = 0
    saved: int = 0


@dataclass
class ScheduledRun:
    cron: str
    job: str
    outcomes: Dict[str, Any] = field(default_factory=dict)


# --- Helpers ----------------------------------------------------------------

def _macro_events_fetcher(
    registry: SourceRegistry, settings: Settings, client: Optional[httpx.Client] = None
) -> EventsFetcher:
    def _fetch() -> List[PredictionEvent]:
        return fetch_macro_events(
            registry.prediction_tags, client, limit=settings.prediction_tag_limit
        )

    return _fetch


def _dedupe_new(records: Sequence[NewsRecord], store: NewsStore) -> List[NewsRecord]:
    """Drop records whose URL is already stored or repeated within the batch."""
    seen: set[str] = set()
    fresh: List[NewsRecord] = []
    for record in records:
        if record.url in seen or store.url_exists(record.url):
            continue
        seen.add(record.url)
        fresh.append(record)
    return fresh


# --- Jobs -------------------------------------------------------------------

def fetch_news_job(
    store: NewsStore,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
    fetcher: Optional[FeedFetcher] = None,
) -> FetchOutcome:
    settings = settings or get_settings()
    current = now or utc_now()
    part = select_batch(
        registry.news_sources, settings.news_batch_size, current, settings.schedule_period_minutes
    )
    outcome = FetchOutcome(
        batch_index=part.index,
        total_batches=total_batches(len(registry.news_sources), settings.news_batch_size),
        sources=[s.name for s in part.members],
    )
    logger.info(
        "News batch %d/%d: %s", part.index + 1, outcome.total_batches, ", ".join(outcome.sources)
    )
    if not part.members:
        return outcome

    fetch = fetcher or (lambda sources: fetch_feeds(sources, client, now=current))
    results = fetch(part.members)

    records: List[NewsRecord] = []
    for source in part.members:
        items = results.get(source.name) or []
        if not items:
            outcome.empty_sources.append(source.name)
        records.extend(items)
    outcome.fetched = len(records)
    outcome.saved = store.save_news_batch(_dedupe_new(records, store), now=current)
    logger.info("Saved %d/%d fetched news items", outcome.saved, outcome.fetched)
    return outcome


def refresh_market_job(
    store: NewsStore,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
    quote_fetcher: Optional[QuoteFetcher] = None,
    history_fetcher: Optional[HistoryFetcher] = None,
) -> MarketOutcome:
    """Backfill partition members without history, then quote the rest."""
    settings = settings or get_settings()
    current = now or utc_now()
    part = select_batch(
        registry.symbols, settings.market_batch_size, current, settings.schedule_period_minutes
    )
    outcome = MarketOutcome(
        batch_index=part.index,
        total_batches=total_batches(len(registry.symbols), settings.market_batch_size),
        symbols=[s.symbol for s in part.members],
    )
    if not part.members:
        return outcome

    backfill = run_backfill(
        plan_backfill(part.members, store),
        store,
        fetcher=history_fetcher,
        client=client,
        chart_range=settings.history_range,
        now=current,
    )
    outcome.backfilled = backfill.backfilled
    outcome.saved += backfill.saved

    backfilled = set(backfill.backfilled)
    remaining = [s for s in part.members if s.symbol not in backfilled]
    fetch = quote_fetcher or (
        lambda symbols: fetch_quotes(symbols, client, chart_range=settings.quote_range)
    )
    quotes = fetch(remaining) if remaining else []
    outcome.quoted = len(quotes)
    outcome.saved += store.save_market_data_batch(quotes, now=current)

    quoted = {q.symbol for q in quotes}
    outcome.failed = [s.symbol for s in remaining if s.symbol not in quoted]
    return outcome


def cold_start_job(
    store: NewsStore,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    symbols: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
    history_fetcher: Optional[HistoryFetcher] = None,
) -> BackfillResult:
    """Backfill every tracked symbol lacking history (or only *symbols*)."""
    settings = settings or get_settings()
    for symbol in symbols or ():
        if registry.get_symbol(symbol) is None:
            logger.warning("Ignoring untracked symbol %s", symbol)
    targets = plan_backfill(registry.symbols, store, restrict_to=symbols)
    return run_backfill(
        targets,
        store,
        fetcher=history_fetcher,
        client=client,
        chart_range=settings.history_range,
        now=now,
    )


def translate_job(
    store: NewsStore,
    chat: ChatClient,
    *,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> TranslationOutcome:
    """Translate recent untranslated items; a fallback failure propagates."""
    settings = settings or get_settings()
    language = settings.translation_language
    if not chat.available:
        return TranslationOutcome(status="skipped", language=language, reason="missing API key")

    items = store.news_without_translation(language, settings.translation_limit, now=now)
    outcome = TranslationOutcome(status="completed", language=language, candidates=len(items))
    for news in items:
        if not news.id:
            continue
        try:
            result = chat.translate_news(news.title, news.description or news.title, news.source)
        except FallbackError:
            raise
        except (LLMError, ValueError) as exc:
            logger.warning("Translation failed for news %s: %s", news.id, exc)
            outcome.failed += 1
            continue
        stored = store.insert_translation_or_ignore(
            TranslationRecord(
                news_id=news.id,
                language=language,
                title=result["title"],
                content=result["content"],
            ),
            now=now,
        )
        if stored:
            outcome.translated += 1
        else:
            outcome.duplicates += 1
    logger.info(
        "Translation complete: %d translated, %d duplicates, %d failed",
        outcome.translated, outcome.duplicates, outcome.failed,
    )
    return outcome


def briefing_job(
    store: NewsStore,
    chat: ChatClient,
    session: Session,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    report_date: Optional[date] = None,
    events_fetcher: Optional[EventsFetcher] = None,
    client: Optional[httpx.Client] = None,
    force: bool = False,
) -> BriefingOutcome:
    """Generate the (date, session) briefing at most once."""
    settings = settings or get_settings()
    session = Session(session)
    current = now or utc_now()
    day = report_date or reporting_date(current, settings.reporting_utc_offset_hours)
    outcome = BriefingOutcome(status="skipped", date=day.isoformat(), session=session.value)

    if not force and store.summary_exists(outcome.date, session):
        logger.info("Daily briefing for %s %s already exists. Skipping.", outcome.date, session.value)
        outcome.status = "exists"
        return outcome
    if not chat.available:
        outcome.reason = "missing API key"
        return outcome

    context = assemble_context(
        store,
        day,
        session,
        registry=registry,
        events_fetcher=events_fetcher or _macro_events_fetcher(registry, settings, client),
        now=current,
        macro_days=settings.macro_news_days,
        macro_limit=settings.macro_news_limit,
        language=settings.translation_language,
    )
    outcome.news_count = len(context.spot_news)
    if context.skip:
        outcome.reason = f"no news for {context.news_date.isoformat()}"
        logger.info("No news found for %s. Skipping report.", context.news_date.isoformat())
        return outcome

    try:
        report = chat.generate_report(context)
    except FallbackError:
        raise
    except LLMError as exc:
        logger.error("Briefing generation failed: %s", exc)
        outcome.status = "failed"
        outcome.reason = str(exc)
        return outcome
    if not report.strip():
        outcome.status = "failed"
        outcome.reason = "empty report"
        return outcome

    content = f"{briefing_heading(context)}\n\n{report.strip()}"
    written = store.save_daily_summary(outcome.date, session, content, replace=force, now=current)
    outcome.status = "generated" if written else "exists"
    logger.info("Daily briefing %s for %s %s", outcome.status, outcome.date, session.value)
    return outcome


def snapshot_job(
    store: NewsStore,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    events_fetcher: Optional[EventsFetcher] = None,
    client: Optional[httpx.Client] = None,
) -> SnapshotOutcome:
    """Persist today's (reporting date) odds for future delta computation."""
    settings = settings or get_settings()
    day = reporting_date(now or utc_now(), settings.reporting_utc_offset_hours).isoformat()
    events = list((events_fetcher or _macro_events_fetcher(registry, settings, client))())
    saved = store.save_snapshot_items(flatten_for_storage(events, day))
    logger.info("Saved %d prediction snapshot rows for %s", saved, day)
    return SnapshotOutcome(date=day, events=len(events), saved=saved)


def current_predictions(
    store: NewsStore,
    events: Sequence[PredictionEvent],
    *,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> List[PredictionEvent]:
    """Reconcile *events* against the snapshot taken 24 hours earlier."""
    settings = settings or get_settings()
    reference = previous_reporting_date(now or utc_now(), settings.reporting_utc_offset_hours)
    return reconcile(events, store.get_snapshot(reference.isoformat()))


# --- Cron dispatch ----------------------------------------------------------

INGEST = "ingest"
MORNING_BRIEFING = "morning-briefing"
EVENING_BRIEFING = "evening-briefing"
SNAPSHOT = "snapshot"

# UTC cron expressions; briefings land at 07:30 and 18:30 UTC+8, the
# snapshot at 00:00 UTC+8.
SCHEDULES: Dict[str, str] = {
    "*/15 * * * *": INGEST,
    "30 23 * * *": MORNING_BRIEFING,
    "30 10 * * *": EVENING_BRIEFING,
    "0 16 * * *": SNAPSHOT,
}


def run_scheduled(
    cron: str,
    store: NewsStore,
    chat: ChatClient,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
) -> ScheduledRun:
    """Run the job bound to *cron*; unknown expressions fall back to ingest."""
    settings = settings or get_settings()
    current = now or utc_now()
    job = SCHEDULES.get(cron.strip())
    if job is None:
        logger.warning("Unknown cron trigger %r, running default ingest", cron)
        job = INGEST
    logger.info("Cron triggered: %s -> %s", cron, job)
    run = ScheduledRun(cron=cron, job=job)

    if job == INGEST:
        run.outcomes["news"] = fetch_news_job(
            store, registry=registry, settings=settings, now=current, client=client
        )
        run.outcomes["market"] = refresh_market_job(
            store, registry=registry, settings=settings, now=current, client=client
        )
        run.outcomes["translation"] = translate_job(store, chat, settings=settings, now=current)
    elif job in (MORNING_BRIEFING, EVENING_BRIEFING):
        session = Session.MORNING if job == MORNING_BRIEFING else Session.EVENING
        run.outcomes["briefing"] = briefing_job(
            store, chat, session, registry=registry, settings=settings, now=current, client=client
        )
    elif job == SNAPSHOT:
        run.outcomes["snapshot"] = snapshot_job(
            store, registry=registry, settings=settings, now=current, client=client
        )
    return run
