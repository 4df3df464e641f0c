"""Cold-start controller: backfill daily history for symbols with none stored.

A symbol needs history exactly when it has no row in ``market_data``. Once it
has any row it is never backfilled again, even if the series has gaps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

import httpx

from .market import fetch_history
from .models import MarketDataPoint
from .registry import TrackedSymbol
from .store import NewsStore

logger = logging.getLogger(__name__)

HistoryFetcher = Callable[[TrackedSymbol], List[MarketDataPoint]]


@dataclass
class BackfillResult:
    requested: List[str] = field(default_factory=list)
    backfilled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    saved: int = 0


def symbols_needing_history(
    tracked: Iterable[str], with_history: Iterable[str]
) -> List[str]:
    """Tracked symbols minus symbols with history, preserving tracked order."""
    known = set(with_history)
    return [symbol for symbol in tracked if symbol not in known]


def plan_backfill(
    symbols: Sequence[TrackedSymbol],
    store: NewsStore,
    *,
    restrict_to: Optional[Iterable[str]] = None,
) -> List[TrackedSymbol]:
    """Symbols to backfill, optionally limited to the current partition."""
    missing = set(symbols_needing_history([s.symbol for s in symbols], store.symbols_with_history()))
    allowed = set(restrict_to) if restrict_to is not None else None
    return [
        s for s in symbols
        if s.symbol in missing and (allowed is None or s.symbol in allowed)
    ]


def run_backfill(
    targets: Sequence[TrackedSymbol],
    store: NewsStore,
    *,
    fetcher: Optional[HistoryFetcher] = None,
    client: Optional[httpx.Client] = None,
    chart_range: str = "3mo",
    now: Optional[datetime] = None,
) -> BackfillResult:
    """Fetch and persist history per symbol; one failure never blocks the rest."""
    result = BackfillResult(requested=[s.symbol for s in targets])
    if not targets:
        logger.info("All symbols have history. Skipping cold start.")
        return result

    fetch = fetcher or (lambda symbol: fetch_history(symbol, client, chart_range=chart_range))
    logger.info("Cold start for %d symbols", len(targets))
    for symbol in targets:
        try:
            points = fetch(symbol)
        except Exception as exc:  # isolate-and-continue per symbol
            logger.warning("Cold start failed for %s: %s", symbol.symbol, exc)
            points = []
        if not points:
            result.failed.append(symbol.symbol)
            continue
        result.saved += store.save_market_data_batch(points, now=now)
        result.backfilled.append(symbol.symbol)
    logger.info(
        "Cold start complete: %d backfilled, %d failed, %d rows",
        len(result.backfilled), len(result.failed), result.saved,
    )
    return result
