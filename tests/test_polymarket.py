import json

import httpx

from vestlab_news.models import PredictionMarket, PredictionOutcome
from vestlab_news.polymarket import (
    MacroMarketCache,
    decode_market,
    display_outcomes,
    fetch_macro_events,
    pick_representative_market,
    process_event,
    rank_markets,
    representative_outcome,
)


def market(market_id, outcomes, volume=0.0, question="Q?"):
    return PredictionMarket(
        id=market_id,
        question=question,
        outcomes=[PredictionOutcome(label=label, probability=p) for label, p in outcomes],
        volume=volume,
    )


def raw_market(market_id, labels, prices, volume="0", **extra):
    data = {
        "id": market_id,
        "question": f"Market {market_id}?",
        "outcomes": json.dumps(labels),
        "outcomePrices": json.dumps(prices),
        "volume": volume,
    }
    data.update(extra)
    return data


def test_decode_pairs_labels_with_prices():
    decoded = decode_market(raw_market("m1", ["Yes", "No"], ["0.42", "0.58"], volume="1200.5"))

    assert [(o.label, o.probability) for o in decoded.outcomes] == [("Yes", 0.42), ("No", 0.58)]
    assert decoded.volume == 1200.5


def test_decode_skips_malformed_outcome_arrays():
    assert decode_market({"id": "m1", "outcomes": "not json", "outcomePrices": "[]"}) is None
    assert decode_market({"id": "m2", "outcomes": '["Yes"]', "outcomePrices": '{"a": 1}'}) is None


def test_affirmative_label_wins_even_when_listed_second():
    m = market("m1", [("No", 0.7), ("Yes", 0.3)])
    assert representative_outcome(m).label == "Yes"


def test_markets_ranked_by_affirmative_probability():
    low = market("low", [("Yes", 0.2), ("No", 0.8)], volume=1000)
    high = market("high", [("No", 0.4), ("Yes", 0.6)], volume=10)

    assert [m.id for m in rank_markets([low, high])] == ["high", "low"]


def test_volume_breaks_ties_without_affirmative_label():
    team_a = market("a", [("TeamA", 0.4)], volume=100)
    team_b = market("b", [("TeamB", 0.6)], volume=50)

    assert pick_representative_market([team_b, team_a]).id == "a"
    assert representative_outcome(team_b).label == "TeamB"


def test_mixed_markets_fall_back_to_volume():
    binary = market("binary", [("Yes", 0.9), ("No", 0.1)], volume=5)
    multi = market("multi", [("Alice", 0.5), ("Bob", 0.5)], volume=50)

    assert [m.id for m in rank_markets([binary, multi])] == ["multi", "binary"]


def test_display_outcomes_for_binary_and_multi():
    binary = market("b", [("No", 0.3), ("Yes", 0.7)])
    multi = market("m", [("A", 0.1), ("B", 0.6), ("C", 0.3)])

    assert [o.label for o in display_outcomes(binary)] == ["Yes"]
    assert [o.label for o in display_outcomes(multi)] == ["B", "C"]


def test_process_event_drops_only_malformed_markets():
    raw = {
        "id": 77,
        "title": "Fed decision in March?",
        "volume": "5000",
        "markets": [
            raw_market("good", ["Yes", "No"], ["0.25", "0.75"]),
            {"id": "bad", "outcomes": "[oops", "outcomePrices": "[]"},
        ],
    }
    event = process_event(raw)

    assert event.id == "77"
    assert [m.id for m in event.markets] == ["good"]
    assert event.market_count == 1


def test_process_event_without_valid_markets_is_none():
    raw = {"id": 1, "title": "Empty", "markets": [{"id": "x", "outcomes": "?", "outcomePrices": "?"}]}
    assert process_event(raw) is None


def test_fetch_macro_events_dedupes_across_tags():
    shared = {"id": 1, "title": "Shared", "volume": 10, "markets": [raw_market("s", ["Yes", "No"], ["0.5", "0.5"])]}
    big = {"id": 2, "title": "Big", "volume": 99, "markets": [raw_market("b", ["Yes", "No"], ["0.1", "0.9"])]}
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        tag = request.url.params["tag_slug"]
        requested.append(tag)
        if tag == "fed":
            return httpx.Response(200, json=[shared, big])
        if tag == "broken":
            return httpx.Response(404, json={"error": "nope"})
        return httpx.Response(200, json=[shared])

    client = httpx.Client(transport=httpx.MockTransport(handler))
    events = fetch_macro_events(["fed", "economy", "broken"], client, limit=5, max_workers=1)

    assert sorted(requested) == ["broken", "economy", "fed"]
    assert [e.id for e in events] == ["2", "1"]


def test_cache_serves_until_ttl_and_skips_empty_results():
    clock = [0.0]
    calls = []

    def fetcher():
        calls.append(clock[0])
        return [process_event({"id": 1, "title": "T", "markets": [raw_market("m", ["Yes", "No"], ["0.5", "0.5"])]})]

    cache = MacroMarketCache(ttl_seconds=300, clock=lambda: clock[0])
    cache.get(fetcher)
    clock[0] = 100.0
    cache.get(fetcher)
    assert len(calls) == 1

    clock[0] = 400.0
    cache.get(fetcher)
    assert len(calls) == 2

    cache.clear()
    assert cache.get(lambda: []) == []
    assert cache.get(lambda: []) == []
