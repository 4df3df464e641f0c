"""Compare current prediction-market odds against a stored snapshot.

Read side: annotate each current outcome with a signed delta against the
reference day, or flag it as new. Write side: flatten events into per-outcome
rows keyed by (market id, outcome label, date).
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple
from urllib.parse import quote

from .models import PredictionEvent, PredictionSnapshotItem

# Changes smaller than this are floating-point noise and reported as zero.
DELTA_EPSILON = 0.001


def snapshot_id(market_id: str, outcome_label: str, day: str) -> str:
    """Readable row id; parts are percent-encoded so "/" only ever separates them."""
    return "/".join(quote(part, safe="") for part in (market_id, outcome_label, day))


def build_reference(
    history: Iterable[PredictionSnapshotItem],
) -> Dict[Tuple[str, str], float]:
    return {(item.market_id, item.outcome_label): item.probability for item in history}


def normalize_delta(current: float, previous: float, epsilon: float = DELTA_EPSILON) -> float:
    diff = current - previous
    return diff if abs(diff) > epsilon else 0.0


def reconcile(
    current: Sequence[PredictionEvent],
    history: Iterable[PredictionSnapshotItem],
    *,
    epsilon: float = DELTA_EPSILON,
) -> List[PredictionEvent]:
    """Return copies of *current* with each outcome carrying `delta` or `is_new`.

    With an empty reference the events are returned unannotated, since every
    outcome would otherwise read as new.
    """
    events = [event.model_copy(deep=True) for event in current]
    reference = build_reference(history)
    if not reference:
        return events

    for event in events:
        for market in event.markets:
            for outcome in market.outcomes:
                previous = reference.get((market.id, outcome.label))
                if previous is None:
                    outcome.is_new = True
                    outcome.delta = None
                else:
                    outcome.delta = normalize_delta(outcome.probability, previous, epsilon)
                    outcome.is_new = False
    return events


def flatten_for_storage(
    events: Sequence[PredictionEvent], day: str
) -> List[PredictionSnapshotItem]:
    """One row per outcome; the synthetic id makes same-day rewrites overwrite."""
    items: List[PredictionSnapshotItem] = []
    for event in events:
        for market in event.markets:
            title = event.title + (f" - {market.group_item_title}" if market.group_item_title else "")
            for outcome in market.outcomes:
                items.append(
                    PredictionSnapshotItem(
                        id=snapshot_id(market.id, outcome.label, day),
                        event_id=event.id,
                        market_id=market.id,
                        title=title,
                        outcome_label=outcome.label,
                        probability=outcome.probability,
                        volume=market.volume,
                        date=day,
                    )
                )
    return items
