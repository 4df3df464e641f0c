from datetime import datetime, timezone

import pytest

from vestlab_news import jobs
from vestlab_news.config import Settings
from vestlab_news.llm import FallbackError, LLMError
from vestlab_news.models import (
    AssetType,
    MarketDataPoint,
    NewsRecord,
    PredictionEvent,
    PredictionMarket,
    PredictionOutcome,
    Session,
)
from vestlab_news.registry import NewsSource, SourceRegistry, TrackedSymbol
from vestlab_news.store import NewsStore

# Run index 0 for any 15-minute period: epoch minute 0 falls in batch 0.
EPOCH = datetime(1970, 1, 1, 0, 0, tzinfo=timezone.utc)
NOW = datetime(2026, 4, 8, 3, 0, tzinfo=timezone.utc)

SOURCES = tuple(NewsSource(f"Feed {i}", f"https://feeds.example.com/{i}.xml") for i in range(3))
SYMBOLS = tuple(TrackedSymbol(s, s, AssetType.INDEX) for s in ("AAA", "BBB", "CCC"))
REGISTRY = SourceRegistry(news_sources=SOURCES, symbols=SYMBOLS, prediction_tags=("fed-rates",))


def settings(**overrides):
    base = {"news_batch_size": 2, "market_batch_size": 2, "ALIYUN_API_KEY": None, "GOOGLE_AI_KEY": None}
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def store(tmp_path):
    db = NewsStore(tmp_path / "vestlab.db")
    yield db
    db.close()


class FakeChat:
    def __init__(self, *, available=True, translations=None, report="## 📊 市场脉搏\n内容"):
        self.available = available
        self.translations = list(translations or [])
        self.report = report
        self.contexts = []

    def translate_news(self, title, content, source=""):
        reply = self.translations.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def generate_report(self, context):
        self.contexts.append(context)
        if isinstance(self.report, Exception):
            raise self.report
        return self.report


def record(url, source="Feed 0", published_at="2026-04-08T01:00:00.000Z"):
    return NewsRecord(source=source, title=f"Title {url}", url=url, published_at=published_at)


def quote(symbol, day="2026-04-07", price=100.0):
    return MarketDataPoint(
        symbol=symbol, name=symbol, type=AssetType.INDEX, price=price, market_time=f"{day}T20:00:00.000Z", date=day
    )


def prediction_events():
    return [
        PredictionEvent(
            id="e1",
            title="Fed cut?",
            volume=5.0,
            markets=[
                PredictionMarket(
                    id="m1",
                    question="Cut in June?",
                    outcomes=[PredictionOutcome(label="Yes", probability=0.4), PredictionOutcome(label="No", probability=0.6)],
                )
            ],
        )
    ]


def test_fetch_news_job_fetches_active_partition_and_dedupes(store):
    store.save_news(record("https://example.com/known"), now=NOW)
    requested = []

    def fetcher(sources):
        requested.extend(s.name for s in sources)
        return {
            "Feed 0": [record("https://example.com/known"), record("https://example.com/new")],
            "Feed 1": [record("https://example.com/new", source="Feed 1")],
        }

    outcome = jobs.fetch_news_job(store, registry=REGISTRY, settings=settings(), now=EPOCH, fetcher=fetcher)

    assert requested == ["Feed 0", "Feed 1"]
    assert outcome.batch_index == 0
    assert outcome.total_batches == 2
    assert outcome.fetched == 3
    assert outcome.saved == 1
    assert store.stats()["news"] == 2


def test_fetch_news_job_rotates_with_time(store):
    requested = []

    def fetcher(sources):
        requested.extend(s.name for s in sources)
        return {}

    later = datetime(1970, 1, 1, 0, 15, tzinfo=timezone.utc)
    outcome = jobs.fetch_news_job(store, registry=REGISTRY, settings=settings(), now=later, fetcher=fetcher)

    assert requested == ["Feed 2"]
    assert outcome.empty_sources == ["Feed 2"]


def test_refresh_market_backfills_before_quoting(store):
    store.save_market_data_batch([quote("AAA", day="2026-04-06")], now=NOW)
    histories, quoted = [], []

    def history_fetcher(symbol):
        histories.append(symbol.symbol)
        return [quote(symbol.symbol, day="2026-04-06"), quote(symbol.symbol, day="2026-04-07")]

    def quote_fetcher(symbols):
        quoted.extend(s.symbol for s in symbols)
        return [quote(s.symbol, price=101.0) for s in symbols]

    outcome = jobs.refresh_market_job(
        store,
        registry=REGISTRY,
        settings=settings(),
        now=EPOCH,
        quote_fetcher=quote_fetcher,
        history_fetcher=history_fetcher,
    )

    assert outcome.symbols == ["AAA", "BBB"]
    assert histories == ["BBB"]
    assert quoted == ["AAA"]
    assert outcome.backfilled == ["BBB"]
    assert outcome.saved == 3
    assert outcome.failed == []
    assert store.symbols_with_history() == {"AAA", "BBB"}


def test_refresh_market_reports_symbols_without_data(store):
    store.save_market_data_batch([quote("AAA"), quote("BBB")], now=NOW)

    outcome = jobs.refresh_market_job(
        store, registry=REGISTRY, settings=settings(), now=EPOCH, quote_fetcher=lambda symbols: []
    )

    assert outcome.failed == ["AAA", "BBB"]


def test_cold_start_job_limits_to_requested_symbols(store):
    outcome = jobs.cold_start_job(
        store,
        registry=REGISTRY,
        settings=settings(),
        symbols=["CCC"],
        now=NOW,
        history_fetcher=lambda symbol: [quote(symbol.symbol)],
    )

    assert outcome.backfilled == ["CCC"]
    assert store.symbols_with_history() == {"CCC"}


def test_translate_job_skips_without_key(store):
    outcome = jobs.translate_job(store, FakeChat(available=False), settings=settings(), now=NOW)
    assert outcome.status == "skipped"
    assert outcome.reason == "missing API key"


def test_translate_job_counts_failures_and_continues(store):
    store.save_news(record("https://example.com/a", published_at="2026-04-08T00:00:00.000Z"), now=NOW)
    store.save_news(record("https://example.com/b", published_at="2026-04-08T01:00:00.000Z"), now=NOW)
    chat = FakeChat(translations=[LLMError("boom"), {"title": "标题", "content": "内容"}])

    outcome = jobs.translate_job(store, chat, settings=settings(), now=NOW)

    assert outcome.candidates == 2
    assert outcome.failed == 1
    assert outcome.translated == 1
    pending = store.news_without_translation("zh", 10, now=NOW)
    assert [n.url for n in pending] == ["https://example.com/a"]


def test_translate_job_propagates_fallback_failure(store):
    store.save_news(record("https://example.com/a"), now=NOW)
    chat = FakeChat(translations=[FallbackError("both providers failed")])

    with pytest.raises(FallbackError):
        jobs.translate_job(store, chat, settings=settings(), now=NOW)


def test_briefing_job_generates_once_per_session(store):
    # 23:30 UTC on 04-08 is 07:30 on 04-09 in UTC+8; the morning window is 04-08.
    now = datetime(2026, 4, 8, 23, 30, tzinfo=timezone.utc)
    store.save_news(record("https://example.com/a", published_at="2026-04-08T12:00:00.000Z"), now=now)
    chat = FakeChat()

    first = jobs.briefing_job(
        store, chat, Session.MORNING, registry=REGISTRY, settings=settings(), now=now,
        events_fetcher=prediction_events,
    )
    second = jobs.briefing_job(
        store, chat, Session.MORNING, registry=REGISTRY, settings=settings(), now=now,
        events_fetcher=prediction_events,
    )

    assert first.status == "generated"
    assert first.date == "2026-04-09"
    assert second.status == "exists"
    assert len(chat.contexts) == 1
    content = store.get_daily_summary("2026-04-09", Session.MORNING).content
    assert content.startswith("# VestLab 财经新闻综述（2026年04月09日·早报）")


def test_briefing_job_skips_empty_window(store):
    chat = FakeChat()
    outcome = jobs.briefing_job(
        store, chat, Session.EVENING, registry=REGISTRY, settings=settings(), now=NOW,
        events_fetcher=prediction_events,
    )

    assert outcome.status == "skipped"
    assert outcome.reason.startswith("no news")
    assert chat.contexts == []
    assert not store.summary_exists(outcome.date, Session.EVENING)


def test_briefing_job_reports_generation_failure(store):
    store.save_news(record("https://example.com/a", published_at="2026-04-08T02:00:00.000Z"), now=NOW)
    chat = FakeChat(report=LLMError("provider down"))

    outcome = jobs.briefing_job(
        store, chat, Session.EVENING, registry=REGISTRY, settings=settings(), now=NOW,
        events_fetcher=prediction_events,
    )

    assert outcome.status == "failed"
    assert not store.summary_exists("2026-04-08", Session.EVENING)


def test_snapshot_job_stores_rows_for_reporting_date(store):
    # 16:00 UTC is midnight in UTC+8, so the snapshot belongs to the next day.
    now = datetime(2026, 4, 8, 16, 0, tzinfo=timezone.utc)
    outcome = jobs.snapshot_job(
        store, registry=REGISTRY, settings=settings(), now=now, events_fetcher=prediction_events
    )

    assert outcome.date == "2026-04-09"
    assert outcome.saved == 2
    assert {r.outcome_label for r in store.get_snapshot("2026-04-09")} == {"Yes", "No"}

    later = jobs.current_predictions(
        store, prediction_events(), settings=settings(), now=datetime(2026, 4, 9, 16, 0, tzinfo=timezone.utc)
    )
    assert later[0].markets[0].outcomes[0].delta == 0.0


def test_run_scheduled_dispatches_by_cron(store, monkeypatch):
    called = []
    monkeypatch.setattr(jobs, "fetch_news_job", lambda *a, **k: called.append("news") or "news")
    monkeypatch.setattr(jobs, "refresh_market_job", lambda *a, **k: called.append("market") or "market")
    monkeypatch.setattr(jobs, "translate_job", lambda *a, **k: called.append("translate") or "translate")
    monkeypatch.setattr(jobs, "snapshot_job", lambda *a, **k: called.append("snapshot") or "snapshot")
    monkeypatch.setattr(
        jobs, "briefing_job", lambda store, chat, session, **k: called.append(session.value) or session.value
    )

    assert jobs.run_scheduled("*/15 * * * *", store, FakeChat(), settings=settings(), now=NOW).job == jobs.INGEST
    assert called == ["news", "market", "translate"]

    called.clear()
    run = jobs.run_scheduled("30 23 * * *", store, FakeChat(), settings=settings(), now=NOW)
    assert run.outcomes == {"briefing": "morning"}
    jobs.run_scheduled("30 10 * * *", store, FakeChat(), settings=settings(), now=NOW)
    jobs.run_scheduled("0 16 * * *", store, FakeChat(), settings=settings(), now=NOW)
    assert called == ["morning", "evening", "snapshot"]

    called.clear()
    assert jobs.run_scheduled("5 4 * * *", store, FakeChat(), settings=settings(), now=NOW).job == jobs.INGEST
    assert called == ["news", "market", "translate"]
