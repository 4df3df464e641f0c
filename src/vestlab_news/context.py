"""Assemble the multi-source context consumed by briefing generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Sequence

from .models import MarketDataPoint, NewsRecord, PredictionEvent, Session
from .reconcile import reconcile
from .registry import DEFAULT_REGISTRY, SourceRegistry
from .store import NewsStore
from .timeutil import utc_now

logger = logging.getLogger(__name__)

EventsFetcher = Callable[[], Sequence[PredictionEvent]]


@dataclass
class BriefingContext:
    report_date: date
    session: Session
    news_date: date
    spot_news: List[NewsRecord] = field(default_factory=list)
    macro_news: List[NewsRecord] = field(default_factory=list)
    market_date: Optional[str] = None
    market_data: List[MarketDataPoint] = field(default_factory=list)
    reference_date: Optional[date] = None
    predictions: List[PredictionEvent] = field(default_factory=list)

    @property
    def skip(self) -> bool:
        """No spot news for the window means no briefing, not an empty one."""
        return not self.spot_news


def news_window_date(report_date: date, session: Session) -> date:
    """Morning covers the prior calendar day (overnight); evening covers the same day."""
    if Session(session) is Session.MORNING:
        return report_date - timedelta(days=1)
    return report_date


def assemble_context(
    store: NewsStore,
    report_date: date,
    session: Session,
    *,
    registry: SourceRegistry = DEFAULT_REGISTRY,
    events_fetcher: Optional[EventsFetcher] = None,
    now: Optional[datetime] = None,
    macro_days: int = 7,
    macro_limit: int = 10,
    language: str = "zh",
) -> BriefingContext:
    session = Session(session)
    current = now or utc_now()
    window = news_window_date(report_date, session)
    context = BriefingContext(
        report_date=report_date,
        session=session,
        news_date=window,
        spot_news=store.news_by_date(window.isoformat(), language=language),
    )
    logger.info(
        "Found %d spot news items for %s (%s window)",
        len(context.spot_news), window.isoformat(), session.value,
    )
    if context.skip:
        return context

    context.macro_news = store.macro_news(
        registry.macro_source_names,
        since=current - timedelta(days=macro_days),
        limit=macro_limit,
        language=language,
    )
    context.market_date, context.market_data = store.latest_market_data()

    if events_fetcher is not None:
        context.reference_date = report_date - timedelta(days=1)
        history = store.get_snapshot(context.reference_date.isoformat())
        context.predictions = reconcile(list(events_fetcher()), history)
    return context
