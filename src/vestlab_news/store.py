"""SQLite-backed persistence with idempotent writes keyed by natural identity.

Every write is a single statement whose conflict behaviour encodes the
entity's invariant: news and translations are insert-if-absent, market data
and prediction snapshots are replace-by-key, daily summaries are
insert-if-absent unless explicitly replaced. There are no multi-statement
transactions; WAL + busy_timeout cover loosely overlapping runs.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    DailySummary,
    MarketDataPoint,
    NewsRecord,
    PredictionSnapshotItem,
    Session,
    TranslationRecord,
)
from .timeutil import to_utc_iso, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS news (
  id TEXT PRIMARY KEY,
  source TEXT NOT NULL,
  title TEXT NOT NULL,
  url TEXT NOT NULL UNIQUE,
  published_at TEXT NOT NULL,
  crawled_at TEXT NOT NULL,
  author TEXT,
  image_url TEXT,
  tags TEXT,
  description TEXT,
  raw_content TEXT
);
CREATE INDEX IF NOT EXISTS idx_news_published_at ON news(published_at);
CREATE INDEX IF NOT EXISTS idx_news_crawled_at ON news(crawled_at);
CREATE INDEX IF NOT EXISTS idx_news_source ON news(source);

CREATE TABLE IF NOT EXISTS translations (
  id TEXT PRIMARY KEY,
  news_id TEXT NOT NULL REFERENCES news(id),
  language TEXT NOT NULL,
  title TEXT NOT NULL,
  content TEXT NOT NULL,
  created_at TEXT NOT NULL,
  UNIQUE(news_id, language)
);

CREATE TABLE IF NOT EXISTS market_data (
  symbol TEXT NOT NULL,
  name TEXT NOT NULL,
  type TEXT NOT NULL,
  price REAL NOT NULL,
  change_amount REAL,
  change_percent REAL,
  day_high REAL,
  day_low REAL,
  previous_close REAL,
  market_time TEXT NOT NULL,
  date TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY(symbol, date)
);
CREATE INDEX IF NOT EXISTS idx_market_data_date ON market_data(date);

CREATE TABLE IF NOT EXISTS daily_summaries (
  date TEXT NOT NULL,
  session TEXT NOT NULL,
  content TEXT NOT NULL,
  created_at TEXT NOT NULL,
  PRIMARY KEY(date, session)
);

CREATE TABLE IF NOT EXISTS prediction_snapshots (
  id TEXT PRIMARY KEY,
  event_id TEXT NOT NULL,
  market_id TEXT NOT NULL,
  title TEXT NOT NULL,
  outcome_label TEXT NOT NULL,
  probability REAL NOT NULL,
  volume REAL NOT NULL DEFAULT 0,
  date TEXT NOT NULL,
  UNIQUE(market_id, outcome_label, date)
);
CREATE INDEX IF NOT EXISTS idx_prediction_snapshots_date ON prediction_snapshots(date);
"""

_NEWS_COLUMNS = (
    "n.id, n.source, n.title, n.url, n.published_at, n.crawled_at, n.author, "
    "n.image_url, n.tags, n.description, n.raw_content"
)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _new_id() -> str:
    return os.urandom(16).hex()


class NewsStore:
    """News, translation, quote, summary and snapshot storage."""

    def __init__(self, path: str | Path) -> None:
        target = str(path)
        if target != ":memory:":
            Path(target).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # SQLite LOWER() only folds ASCII.
        self.conn.create_function("casefold", 1, _casefold, deterministic=True)
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self.conn.execute("PRAGMA busy_timeout=5000;")
        self.conn.executescript(SCHEMA)

    def __enter__(self) -> "NewsStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── News ────────────────────────────────────────────────────

    def url_exists(self, url: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM news WHERE url=? LIMIT 1", (url,)).fetchone()
        return row is not None

    def save_news(self, record: NewsRecord, *, now: Optional[datetime] = None) -> Optional[str]:
        """Insert if the URL is new; return the new id, or None for a duplicate."""
        news_id = record.id or _new_id()
        crawled_at = record.crawled_at or to_utc_iso(now or utc_now())
        cur = self.conn.execute(
            "INSERT INTO news(id, source, title, url, published_at, crawled_at, author, "
            "image_url, tags, description, raw_content) VALUES(?,?,?,?,?,?,?,?,?,?,?) "
            "ON CONFLICT(url) DO NOTHING",
            (
                news_id,
                record.source,
                record.title,
                record.url,
                record.published_at,
                crawled_at,
                record.author,
                record.image_url,
                record.tags,
                record.description,
                record.raw_content,
            ),
        )
        return news_id if cur.rowcount == 1 else None

    def save_news_batch(
        self, records: Iterable[NewsRecord], *, now: Optional[datetime] = None
    ) -> int:
        """Persist each record independently; returns how many were newly stored."""
        saved = 0
        for record in records:
            try:
                if self.save_news(record, now=now):
                    saved += 1
            except sqlite3.Error as exc:
                logger.warning("Failed to save news %s: %s", record.url, exc)
        return saved

    def _read_news(self, where: str, params: Sequence, *, language: str, order: str, limit: Optional[int]) -> List[NewsRecord]:
        sql = (
            f"SELECT {_NEWS_COLUMNS}, t.title AS translated_title, t.content AS translated_content "
            "FROM news n LEFT JOIN translations t ON n.id = t.news_id AND t.language = ? "
            f"WHERE {where} ORDER BY {order}"
        )
        args: list = [language, *params]
        if limit is not None:
            sql += " LIMIT ?"
            args.append(limit)
        rows = self.conn.execute(sql, args).fetchall()
        return [NewsRecord(**dict(row)) for row in rows]

    def latest_news(self, limit: int = 50, *, language: str = "zh") -> List[NewsRecord]:
        return self._read_news("1=1", (), language=language, order="n.published_at DESC", limit=limit)

    def search_news(self, query: str, limit: int = 50, *, language: str = "zh") -> List[NewsRecord]:
        """Case-insensitive substring match on original and translated text."""
        pattern = f"%{_escape_like(query.casefold())}%"
        where = " OR ".join(
            f"casefold(COALESCE({col}, '')) LIKE ? ESCAPE '\\'"
            for col in ("n.title", "n.description", "t.title", "t.content")
        )
        return self._read_news(
            f"({where})", (pattern,) * 4, language=language, order="n.published_at DESC", limit=limit
        )

    def news_by_date(self, day: str, *, language: str = "zh") -> List[NewsRecord]:
        """Items whose publish date OR crawl date (UTC) equals *day*."""
        return self._read_news(
            "DATE(n.published_at) = ? OR DATE(n.crawled_at) = ?",
            (day, day),
            language=language,
            order="n.published_at DESC",
            limit=None,
        )

    def news_without_translation(
        self, language: str = "zh", limit: int = 20, *, now: Optional[datetime] = None
    ) -> List[NewsRecord]:
        """Untranslated items crawled in the last 24 hours, oldest first."""
        since = to_utc_iso((now or utc_now()) - timedelta(hours=24))
        return self._read_news(
            "t.id IS NULL AND n.crawled_at > ?",
            (since,),
            language=language,
            order="n.published_at ASC",
            limit=limit,
        )

    def macro_news(
        self,
        sources: Iterable[str],
        *,
        since: datetime,
        limit: int = 10,
        language: str = "zh",
    ) -> List[NewsRecord]:
        names = sorted(set(sources))
        if not names:
            return []
        placeholders = ",".join("?" for _ in names)
        return self._read_news(
            f"n.source IN ({placeholders}) AND n.published_at >= ?",
            (*names, to_utc_iso(since)),
            language=language,
            order="n.published_at DESC",
            limit=limit,
        )

    # ── Translations ────────────────────────────────────────────

    def insert_translation_or_ignore(
        self, translation: TranslationRecord, *, now: Optional[datetime] = None
    ) -> bool:
        """Return True if stored; False when (news_id, language) already exists."""
        cur = self.conn.execute(
            "INSERT INTO translations(id, news_id, language, title, content, created_at) "
            "VALUES(?,?,?,?,?,?) ON CONFLICT(news_id, language) DO NOTHING",
            (
                translation.id or _new_id(),
                translation.news_id,
                translation.language,
                translation.title,
                translation.content,
                translation.created_at or to_utc_iso(now or utc_now()),
            ),
        )
        return cur.rowcount == 1

    def get_translation(self, news_id: str, language: str = "zh") -> Optional[TranslationRecord]:
        row = self.conn.execute(
            "SELECT * FROM translations WHERE news_id=? AND language=?", (news_id, language)
        ).fetchone()
        return TranslationRecord(**dict(row)) if row else None

    # ── Market data ─────────────────────────────────────────────

    def upsert_market_data(self, point: MarketDataPoint, *, now: Optional[datetime] = None) -> None:
        """Insert or replace the row for (symbol, date)."""
        self.conn.execute(
            "INSERT INTO market_data(symbol, name, type, price, change_amount, change_percent, "
            "day_high, day_low, previous_close, market_time, date, updated_at) "
            "VALUES(?,?,?,?,?,?,?,?,?,?,?,?) "
            "ON CONFLICT(symbol, date) DO UPDATE SET name=excluded.name, type=excluded.type, "
            "price=excluded.price, change_amount=excluded.change_amount, "
            "change_percent=excluded.change_percent, day_high=excluded.day_high, "
            "day_low=excluded.day_low, previous_close=excluded.previous_close, "
            "market_time=excluded.market_time, updated_at=excluded.updated_at",
            (
                point.symbol,
                point.name,
                point.type.value,
                point.price,
                point.change_amount,
                point.change_percent,
                point.day_high,
                point.day_low,
                point.previous_close,
                point.market_time,
                point.date,
                to_utc_iso(now or utc_now()),
            ),
        )

    def save_market_data_batch(
        self, points: Iterable[MarketDataPoint], *, now: Optional[datetime] = None
    ) -> int:
        saved = 0
        for point in points:
            try:
                self.upsert_market_data(point, now=now)
                saved += 1
            except sqlite3.Error as exc:
                logger.warning("Failed to save %s on %s: %s", point.symbol, point.date, exc)
        return saved

    def symbols_with_history(self) -> Set[str]:
        rows = self.conn.execute("SELECT DISTINCT symbol FROM market_data").fetchall()
        return {row["symbol"] for row in rows}

    def latest_market_date(self) -> Optional[str]:
        row = self.conn.execute("SELECT MAX(date) AS d FROM market_data").fetchone()
        return row["d"] if row and row["d"] else None

    def market_data_for_date(self, day: str) -> List[MarketDataPoint]:
        rows = self.conn.execute(
            "SELECT symbol, name, type, price, change_amount, change_percent, day_high, "
            "day_low, previous_close, market_time, date FROM market_data WHERE date=? "
            "ORDER BY symbol",
            (day,),
        ).fetchall()
        return [MarketDataPoint(**dict(row)) for row in rows]

    def latest_market_data(self) -> Tuple[Optional[str], List[MarketDataPoint]]:
        """Rows for the most recent stored date, whatever that date is."""
        day = self.latest_market_date()
        if day is None:
            return None, []
        return day, self.market_data_for_date(day)

    # ── Daily summaries ─────────────────────────────────────────

    def summary_exists(self, day: str, session: Session) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM daily_summaries WHERE date=? AND session=? LIMIT 1",
            (day, Session(session).value),
        ).fetchone()
        return row is not None

    def save_daily_summary(
        self,
        day: str,
        session: Session,
        content: str,
        *,
        replace: bool = False,
        now: Optional[datetime] = None,
    ) -> bool:
        """Store a summary; without *replace* an existing row wins. Returns True if written."""
        conflict = (
            "DO UPDATE SET content=excluded.content, created_at=excluded.created_at"
            if replace
            else "DO NOTHING"
        )
        cur = self.conn.execute(
            "INSERT INTO daily_summaries(date, session, content, created_at) VALUES(?,?,?,?) "
            f"ON CONFLICT(date, session) {conflict}",
            (day, Session(session).value, content, to_utc_iso(now or utc_now())),
        )
        return cur.rowcount == 1

    def get_daily_summary(self, day: str, session: Session) -> Optional[DailySummary]:
        row = self.conn.execute(
            "SELECT * FROM daily_summaries WHERE date=? AND session=?",
            (day, Session(session).value),
        ).fetchone()
        return DailySummary(**dict(row)) if row else None

    def get_daily_summaries(self, day: str) -> List[DailySummary]:
        rows = self.conn.execute(
            "SELECT * FROM daily_summaries WHERE date=? ORDER BY session DESC", (day,)
        ).fetchall()
        return [DailySummary(**dict(row)) for row in rows]

    # ── Prediction snapshots ────────────────────────────────────

    def save_snapshot_items(self, items: Iterable[PredictionSnapshotItem]) -> int:
        """Upsert by (market, outcome, date); repeat writes on the same day overwrite."""
        saved = 0
        for item in items:
            try:
                self.conn.execute(
                    "INSERT INTO prediction_snapshots(id, event_id, market_id, title, "
                    "outcome_label, probability, volume, date) VALUES(?,?,?,?,?,?,?,?) "
                    "ON CONFLICT(market_id, outcome_label, date) DO UPDATE SET "
                    "event_id=excluded.event_id, title=excluded.title, probability=excluded.probability, "
                    "volume=excluded.volume",
                    (
                        item.id,
                        item.event_id,
                        item.market_id,
                        item.title,
                        item.outcome_label,
                        item.probability,
                        item.volume,
                        item.date,
                    ),
                )
                saved += 1
            except sqlite3.Error as exc:
                logger.warning("Failed to save snapshot row %s: %s", item.id, exc)
        return saved

    def get_snapshot(self, day: str) -> List[PredictionSnapshotItem]:
        rows = self.conn.execute(
            "SELECT * FROM prediction_snapshots WHERE date=? ORDER BY market_id, outcome_label",
            (day,),
        ).fetchall()
        return [PredictionSnapshotItem(**dict(row)) for row in rows]

    # ── Maintenance ─────────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        counts = {}
        for table in ("news", "translations", "market_data", "daily_summaries", "prediction_snapshots"):
            counts[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return counts

    def close(self) -> None:
        self.conn.close()
