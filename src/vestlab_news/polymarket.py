"""Prediction-market adapter for the Polymarket Gamma events API.

Markets carry their outcome labels and prices as JSON-encoded strings inside
the JSON payload; a market whose inner arrays cannot be decoded is skipped
without dropping the rest of its event.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import cmp_to_key
from typing import Any, Callable, List, Optional, Sequence

import httpx

from ._http import build_client, get_with_retry, log_fetch_failure
from .models import PredictionEvent, PredictionMarket, PredictionOutcome

logger = logging.getLogger(__name__)

GAMMA_EVENTS_URL = "https://gamma-api.polymarket.com/events"

AFFIRMATIVE_LABELS: frozenset[str] = frozenset({"Yes", "Long", "Higher"})
NEGATIVE_LABELS: frozenset[str] = frozenset({"No", "Short", "Lower"})


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _decode_array(raw: Any) -> Optional[list]:
    """Decode a JSON-encoded list; None when it is not one."""
    if isinstance(raw, list):
        return raw
    try:
        decoded = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return None
    return decoded if isinstance(decoded, list) else None


def decode_market(raw: dict) -> Optional[PredictionMarket]:
    """Pair outcome labels positionally with prices; None for a malformed market."""
    labels = _decode_array(raw.get("outcomes"))
    prices = _decode_array(raw.get("outcomePrices"))
    if labels is None or prices is None or raw.get("id") is None:
        return None
    outcomes: List[PredictionOutcome] = []
    for idx, label in enumerate(labels):
        price = prices[idx] if idx < len(prices) else None
        try:
            probability = float(price) if price not in (None, "") else 0.0
        except (TypeError, ValueError):
            return None
        outcomes.append(PredictionOutcome(label=str(label), probability=probability))
    return PredictionMarket(
        id=str(raw["id"]),
        question=str(raw.get("question") or ""),
        group_item_title=raw.get("groupItemTitle") or None,
        outcomes=outcomes,
        volume=_as_float(raw.get("volume")),
    )


def affirmative_outcome(market: PredictionMarket) -> Optional[PredictionOutcome]:
    return next((o for o in market.outcomes if o.label in AFFIRMATIVE_LABELS), None)


def _affirmative_score(market: PredictionMarket) -> float:
    outcome = affirmative_outcome(market)
    return outcome.probability if outcome is not None else -1.0


def _compare_markets(a: PredictionMarket, b: PredictionMarket) -> int:
    """Affirmative probability descending when both have one, else volume descending."""
    score_a = _affirmative_score(a)
    score_b = _affirmative_score(b)
    if score_a != -1 and score_b != -1:
        diff = score_b - score_a
    else:
        diff = b.volume - a.volume
    return (diff > 0) - (diff < 0)


def rank_markets(markets: Sequence[PredictionMarket]) -> List[PredictionMarket]:
    """Deterministic within-event ordering of markets (stable for ties)."""
    return sorted(markets, key=cmp_to_key(_compare_markets))


def pick_representative_market(
    markets: Sequence[PredictionMarket],
) -> Optional[PredictionMarket]:
    ranked = rank_markets(markets)
    return ranked[0] if ranked else None


def representative_outcome(market: PredictionMarket) -> Optional[PredictionOutcome]:
    """Canonical affirmative outcome, else the most probable outcome."""
    outcome = affirmative_outcome(market)
    if outcome is not None:
        return outcome
    if not market.outcomes:
        return None
    return max(market.outcomes, key=lambda o: o.probability)


def display_outcomes(market: PredictionMarket, limit: int = 2) -> List[PredictionOutcome]:
    """Binary markets show only the affirmative side; others the top *limit*."""
    yes = affirmative_outcome(market)
    no = next((o for o in market.outcomes if o.label in NEGATIVE_LABELS), None)
    if yes is not None and no is not None and len(market.outcomes) == 2:
        return [yes]
    return sorted(market.outcomes, key=lambda o: o.probability, reverse=True)[:limit]


def process_event(raw: Any) -> Optional[PredictionEvent]:
    """Normalize one Gamma event; None when it has no decodable market."""
    if not isinstance(raw, dict) or raw.get("id") is None:
        return None
    markets: List[PredictionMarket] = []
    for raw_market in raw.get("markets") or []:
        if not isinstance(raw_market, dict):
            continue
        market = decode_market(raw_market)
        if market is None:
            logger.debug("Skipping malformed market %s in event %s", raw_market.get("id"), raw["id"])
            continue
        markets.append(market)
    if not markets:
        return None
    return PredictionEvent(
        id=str(raw["id"]),
        title=str(raw.get("title") or ""),
        description=raw.get("description"),
        slug=raw.get("slug"),
        volume=_as_float(raw.get("volume")),
        markets=rank_markets(markets),
    )


def fetch_tag(
    tag: str,
    client: Optional[httpx.Client] = None,
    *,
    limit: int = 5,
) -> List[dict]:
    """Raw active events for one tag, by 24h volume. Never raises; failures yield []."""
    owns_client = client is None
    active = client or build_client()
    try:
        response = get_with_retry(
            active,
            GAMMA_EVENTS_URL,
            {
                "limit": limit,
                "closed": "false",
                "tag_slug": tag,
                "order": "volume24hr",
                "ascending": "false",
            },
        )
        data = response.json()
        if not isinstance(data, list):
            raise ValueError(f"expected a list of events, got {type(data).__name__}")
        return [event for event in data if isinstance(event, dict)]
    except Exception as exc:  # isolate-and-continue per tag
        log_fetch_failure(f"polymarket tag {tag}", exc)
        return []
    finally:
        if owns_client:
            active.close()


def fetch_macro_events(
    tags: Sequence[str],
    client: Optional[httpx.Client] = None,
    *,
    limit: int = 5,
    max_workers: int = 4,
) -> List[PredictionEvent]:
    """Fan out over tags, de-duplicate events by id, order by volume descending."""
    if not tags:
        return []
    owns_client = client is None
    active = client or build_client()
    seen: set[str] = set()
    events: List[PredictionEvent] = []
    try:
        with ThreadPoolExecutor(max_workers=min(max(1, max_workers), len(tags))) as executor:
            futures = [executor.submit(fetch_tag, tag, active, limit=limit) for tag in tags]
            for future in as_completed(futures):
                for raw in future.result():
                    event_id = str(raw.get("id"))
                    if event_id in seen:
                        continue
                    seen.add(event_id)
                    event = process_event(raw)
                    if event is not None:
                        events.append(event)
    finally:
        if owns_client:
            active.close()
    events.sort(key=lambda e: (-e.volume, e.id))
    logger.info("Fetched %d prediction events across %d tags", len(events), len(tags))
    return events


class MacroMarketCache:
    """Short-lived in-process cache for the read API; empty results are not cached."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._data: List[PredictionEvent] = []
        self._stamp: float | None = None

    def get(self, fetcher: Callable[[], List[PredictionEvent]]) -> List[PredictionEvent]:
        with self._lock:
            now = self._clock()
            if self._data and self._stamp is not None and now - self._stamp < self.ttl_seconds:
                return list(self._data)
        fresh = fetcher()
        if fresh:
            with self._lock:
                self._data = list(fresh)
                self._stamp = self._clock()
        return fresh

    def clear(self) -> None:
        with self._lock:
            self._data = []
            self._stamp = None
