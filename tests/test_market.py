import httpx
import pytest

from vestlab_news.market import compute_change, fetch_history, fetch_quote, fetch_quotes, parse_history, parse_quote
from vestlab_news.models import AssetType
from vestlab_news.registry import TrackedSymbol

SPX = TrackedSymbol("^GSPC", "S&P 500", AssetType.INDEX)
GOLD = TrackedSymbol("GC=F", "Gold", AssetType.COMMODITY)

# 2026-03-02, 2026-03-03, 2026-03-04 at 14:30 UTC
DAYS = [1772461800, 1772548200, 1772634600]


def chart(closes, timestamps=None, meta=None, highs=None, lows=None):
    return {
        "chart": {
            "result": [
                {
                    "meta": meta or {},
                    "timestamp": timestamps or DAYS[: len(closes)],
                    "indicators": {
                        "quote": [
                            {
                                "close": closes,
                                "high": highs or [None] * len(closes),
                                "low": lows or [None] * len(closes),
                            }
                        ]
                    },
                }
            ],
            "error": None,
        }
    }


def test_compute_change_rounds_to_two_decimals():
    assert compute_change(101.0, 102.0) == (-1.0, -0.98)
    assert compute_change(100.0, None) == (None, None)
    assert compute_change(5.0, 0.0) == (5.0, None)


def test_history_changes_against_previous_close():
    points = parse_history(SPX, chart([100.0, 102.0, 101.0]))

    assert [p.price for p in points] == [100.0, 102.0, 101.0]
    assert points[0].change_amount is None
    assert points[1].change_amount == 2.0
    assert points[1].change_percent == 2.0
    assert points[2].change_amount == -1.0
    assert points[2].previous_close == 102.0
    assert [p.date for p in points] == ["2026-03-02", "2026-03-03", "2026-03-04"]


def test_history_skips_null_closes_without_breaking_chain():
    points = parse_history(SPX, chart([100.0, None, 101.0]))

    assert len(points) == 2
    assert points[1].change_amount == 1.0
    assert points[1].previous_close == 100.0


def test_history_sorted_by_timestamp():
    payload = chart([101.0, 100.0], timestamps=[DAYS[1], DAYS[0]])
    points = parse_history(SPX, payload)
    assert [p.date for p in points] == ["2026-03-02", "2026-03-03"]
    assert points[1].change_amount == 1.0


def test_quote_uses_last_non_null_close_and_meta_previous_close():
    payload = chart(
        [100.0, 102.0, None],
        meta={"previousClose": 100.0, "chartPreviousClose": 90.0},
        highs=[101.0, 103.5, None],
        lows=[99.0, 100.5, None],
    )
    point = parse_quote(GOLD, payload)

    assert point is not None
    assert point.symbol == "GC=F"
    assert point.type is AssetType.COMMODITY
    assert point.price == 102.0
    assert point.previous_close == 100.0
    assert point.change_amount == 2.0
    assert point.day_high == 103.5
    assert point.date == "2026-03-03"


def test_quote_falls_back_to_prior_close_in_range():
    point = parse_quote(SPX, chart([100.0, 102.0, 101.0], meta={"chartPreviousClose": 50.0}))
    assert point.previous_close == 102.0
    assert point.change_amount == -1.0


def test_quote_with_only_null_closes_is_none():
    assert parse_quote(SPX, chart([None, None])) is None


def test_parse_rejects_empty_result():
    with pytest.raises(ValueError):
        parse_history(SPX, {"chart": {"result": None, "error": {"code": "Not Found"}}})


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_fetch_quote_requests_encoded_symbol():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json=chart([100.0, 102.0]))

    point = fetch_quote(SPX, _client(handler), chart_range="5d")

    assert point.price == 102.0
    assert seen[0].path == "/v8/finance/chart/^GSPC"
    assert seen[0].params["range"] == "5d"
    assert seen[0].params["interval"] == "1d"


def test_fetch_failures_are_isolated_per_symbol():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("GC=F"):
            return httpx.Response(404, json={"chart": {"result": None}})
        return httpx.Response(200, json=chart([100.0, 101.0]))

    client = _client(handler)
    points = fetch_quotes([SPX, GOLD], client, max_workers=2)

    assert [p.symbol for p in points] == ["^GSPC"]
    assert fetch_history(GOLD, client) == []
