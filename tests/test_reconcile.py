import pytest

from vestlab_news.models import PredictionEvent, PredictionMarket, PredictionOutcome, PredictionSnapshotItem
from vestlab_news.reconcile import flatten_for_storage, normalize_delta, reconcile, snapshot_id


def event(outcomes, market_id="m1", group_item_title=None):
    return PredictionEvent(
        id="e1",
        title="Fed cut in June?",
        volume=1000.0,
        markets=[
            PredictionMarket(
                id=market_id,
                question="Will the Fed cut?",
                group_item_title=group_item_title,
                outcomes=[PredictionOutcome(label=label, probability=p) for label, p in outcomes],
                volume=250.0,
            )
        ],
    )


def snap(label, probability, market_id="m1", day="2026-04-07"):
    return PredictionSnapshotItem(
        id=snapshot_id(market_id, label, day),
        event_id="e1",
        market_id=market_id,
        title="Fed cut in June?",
        outcome_label=label,
        probability=probability,
        date=day,
    )


def test_delta_against_reference():
    current = [event([("Yes", 0.47), ("No", 0.53)])]
    result = reconcile(current, [snap("Yes", 0.42), snap("No", 0.58)])

    yes, no = result[0].markets[0].outcomes
    assert yes.delta == pytest.approx(0.05)
    assert no.delta == pytest.approx(-0.05)
    assert yes.is_new is False


def test_small_changes_collapse_to_zero():
    assert normalize_delta(0.5003, 0.5) == 0.0
    result = reconcile([event([("Yes", 0.5003)])], [snap("Yes", 0.5)])
    assert result[0].markets[0].outcomes[0].delta == 0.0


def test_outcome_missing_from_reference_is_new():
    current = [event([("Yes", 0.3)], market_id="fresh")]
    result = reconcile(current, [snap("Yes", 0.5, market_id="other")])

    outcome = result[0].markets[0].outcomes[0]
    assert outcome.is_new is True
    assert outcome.delta is None


def test_empty_reference_leaves_events_unannotated():
    current = [event([("Yes", 0.3)])]
    result = reconcile(current, [])

    outcome = result[0].markets[0].outcomes[0]
    assert outcome.is_new is False
    assert outcome.delta is None


def test_reconcile_does_not_mutate_input():
    current = [event([("Yes", 0.47)])]
    reconcile(current, [snap("Yes", 0.42)])
    assert current[0].markets[0].outcomes[0].delta is None


def test_flatten_builds_one_row_per_outcome():
    rows = flatten_for_storage([event([("Yes", 0.4), ("No", 0.6)], group_item_title="June")], "2026-04-08")

    assert [r.id for r in rows] == ["m1/Yes/2026-04-08", "m1/No/2026-04-08"]
    assert rows[0].title == "Fed cut in June? - June"
    assert rows[0].volume == 250.0
    assert {r.date for r in rows} == {"2026-04-08"}


def test_snapshot_id_keeps_parts_unambiguous():
    assert snapshot_id("1", "a-b", "2026-04-08") != snapshot_id("1-a", "b", "2026-04-08")
    assert snapshot_id("m1", "Yes/No", "2026-04-08") == "m1/Yes%2FNo/2026-04-08"
