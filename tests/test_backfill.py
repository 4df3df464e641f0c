from datetime import datetime, timezone

from vestlab_news.backfill import plan_backfill, run_backfill, symbols_needing_history
from vestlab_news.models import AssetType, MarketDataPoint
from vestlab_news.registry import TrackedSymbol
from vestlab_news.store import NewsStore

NOW = datetime(2026, 4, 8, 3, 0, tzinfo=timezone.utc)
A = TrackedSymbol("A", "Alpha", AssetType.STOCK)
B = TrackedSymbol("B", "Beta", AssetType.STOCK)
C = TrackedSymbol("C", "Gamma", AssetType.STOCK)


def history(symbol: TrackedSymbol, days=("2026-04-06", "2026-04-07")):
    return [
        MarketDataPoint(
            symbol=symbol.symbol,
            name=symbol.name,
            type=symbol.asset_type,
            price=10.0 + idx,
            market_time=f"{day}T20:00:00.000Z",
            date=day,
        )
        for idx, day in enumerate(days)
    ]


def test_missing_symbols_is_set_difference_in_tracked_order():
    assert symbols_needing_history(["A", "B", "C"], {"A"}) == ["B", "C"]
    assert symbols_needing_history(["A"], ["A", "Z"]) == []


def test_plan_respects_existing_history_and_partition(tmp_path):
    with NewsStore(tmp_path / "db.sqlite") as store:
        store.save_market_data_batch(history(A)[:1], now=NOW)

        assert plan_backfill([A, B, C], store) == [B, C]
        assert plan_backfill([A, B, C], store, restrict_to=["A", "C"]) == [C]


def test_one_failing_symbol_does_not_block_others(tmp_path):
    def fetcher(symbol):
        if symbol.symbol == "B":
            raise RuntimeError("upstream exploded")
        if symbol.symbol == "C":
            return []
        return history(symbol)

    with NewsStore(tmp_path / "db.sqlite") as store:
        result = run_backfill([A, B, C], store, fetcher=fetcher, now=NOW)

        assert result.requested == ["A", "B", "C"]
        assert result.backfilled == ["A"]
        assert result.failed == ["B", "C"]
        assert result.saved == 2
        assert store.symbols_with_history() == {"A"}


def test_symbol_with_any_row_is_never_backfilled_again(tmp_path):
    calls = []

    def fetcher(symbol):
        calls.append(symbol.symbol)
        return history(symbol, days=("2026-04-07",))

    with NewsStore(tmp_path / "db.sqlite") as store:
        run_backfill(plan_backfill([A], store), store, fetcher=fetcher, now=NOW)
        second = run_backfill(plan_backfill([A], store), store, fetcher=fetcher, now=NOW)

    assert calls == ["A"]
    assert second.requested == []
