"""Data models for the finance news aggregator."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AssetType(str, Enum):
    INDEX = "index"
    STOCK = "stock"
    COMMODITY = "commodity"
    BOND = "bond"
    CURRENCY = "currency"


class Session(str, Enum):
    """Daily reporting windows; each maps to a different news date."""

    MORNING = "morning"
    EVENING = "evening"


class NewsRecord(BaseModel):
    """Normalized news item; `url` is the natural key."""

    id: Optional[str] = None
    source: str
    title: str
    url: str
    published_at: str = Field(..., description="UTC ISO-8601 timestamp from the feed.")
    crawled_at: Optional[str] = Field(
        None, description="UTC ISO-8601 timestamp assigned at ingestion."
    )
    author: Optional[str] = None
    image_url: Optional[str] = None
    tags: Optional[str] = None
    description: Optional[str] = None
    raw_content: Optional[str] = None
    translated_title: Optional[str] = Field(
        None, description="Joined translation title when read with a language."
    )
    translated_content: Optional[str] = None


class TranslationRecord(BaseModel):
    id: Optional[str] = None
    news_id: str
    language: str
    title: str
    content: str
    created_at: Optional[str] = None


class MarketDataPoint(BaseModel):
    """One trading day for one symbol; unique per (symbol, date)."""

    symbol: str
    name: str
    type: AssetType
    price: float
    change_amount: Optional[float] = None
    change_percent: Optional[float] = None
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    previous_close: Optional[float] = None
    market_time: str
    date: str = Field(..., description="Trading-day key (YYYY-MM-DD, UTC).")


class DailySummary(BaseModel):
    date: str
    session: Session
    content: str
    created_at: Optional[str] = None


class PredictionOutcome(BaseModel):
    label: str
    probability: float
    delta: Optional[float] = Field(
        None, description="Signed change against the reference snapshot."
    )
    is_new: bool = Field(False, description="True when no reference value existed.")


class PredictionMarket(BaseModel):
    id: str
    question: str
    group_item_title: Optional[str] = None
    outcomes: List[PredictionOutcome]
    volume: float = 0.0


class PredictionEvent(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    slug: Optional[str] = None
    volume: float = 0.0
    markets: List[PredictionMarket]

    @property
    def market_count(self) -> int:
        return len(self.markets)


class PredictionSnapshotItem(BaseModel):
    """Flattened outcome row; unique per (market_id, outcome_label, date)."""

    id: str
    event_id: str
    market_id: str
    title: str
    outcome_label: str
    probability: float
    volume: float = 0.0
    date: str
