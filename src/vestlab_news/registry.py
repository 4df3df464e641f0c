"""Static catalog of ingestion sources.

Partition indices are derived from list position, so the order here must stay
stable between invocations. Adding or removing an entry shifts the batch
boundaries of every later index; the rotation simply realigns on the next
cycle. Treat edits as a deploy-time configuration change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from .models import AssetType


@dataclass(frozen=True)
class NewsSource:
    name: str
    url: str
    macro: bool = False


@dataclass(frozen=True)
class TrackedSymbol:
    symbol: str
    name: str
    asset_type: AssetType


@dataclass(frozen=True)
class SourceRegistry:
    """Ordered, immutable catalog injected into schedulers and jobs."""

    news_sources: Tuple[NewsSource, ...]
    symbols: Tuple[TrackedSymbol, ...]
    prediction_tags: Tuple[str, ...] = ()

    @property
    def macro_source_names(self) -> FrozenSet[str]:
        return frozenset(s.name for s in self.news_sources if s.macro)

    def symbol_names(self) -> list[str]:
        return [s.symbol for s in self.symbols]

    def get_symbol(self, symbol: str) -> Optional[TrackedSymbol]:
        return self._symbol_index().get(symbol)

    def _symbol_index(self) -> Dict[str, TrackedSymbol]:
        return {s.symbol: s for s in self.symbols}


NEWS_SOURCES: Tuple[NewsSource, ...] = (
    NewsSource("WSJ Markets", "https://feeds.content.dowjones.io/public/rss/RSSMarketsMain"),
    NewsSource("WSJ Economy", "https://feeds.content.dowjones.io/public/rss/socialeconomyfeed"),
    NewsSource("WSJ World", "https://feeds.content.dowjones.io/public/rss/RSSWorldNews"),
    NewsSource("Bloomberg", "https://feeds.bloomberg.com/markets/news.rss"),
    NewsSource("CNBC Top News", "https://www.cnbc.com/id/100003114/device/rss/rss.html"),
    NewsSource(
        "Federal Reserve", "https://www.federalreserve.gov/feeds/press_all.xml", macro=True
    ),
    NewsSource("ECB Press", "https://www.ecb.europa.eu/rss/press.html", macro=True),
    NewsSource("IMF Blog", "https://www.imf.org/en/Blogs/rss", macro=True),
    NewsSource("BIS Speeches", "https://www.bis.org/doclist/cbspeeches.rss", macro=True),
)

TRACKED_SYMBOLS: Tuple[TrackedSymbol, ...] = (
    # US
    TrackedSymbol("^GSPC", "标普500", AssetType.INDEX),
    TrackedSymbol("^IXIC", "纳斯达克综合", AssetType.INDEX),
    TrackedSymbol("^DJI", "道琼斯工业", AssetType.INDEX),
    # Greater China
    TrackedSymbol("000001.SS", "上证综指", AssetType.INDEX),
    TrackedSymbol("399001.SZ", "深证成指", AssetType.INDEX),
    TrackedSymbol("^HSI", "恒生指数", AssetType.INDEX),
    # Rest of world
    TrackedSymbol("^N225", "日经225", AssetType.INDEX),
    TrackedSymbol("^FTSE", "富时100", AssetType.INDEX),
    TrackedSymbol("^GDAXI", "德国DAX", AssetType.INDEX),
    TrackedSymbol("^FCHI", "法国CAC40", AssetType.INDEX),
    TrackedSymbol("^AXJO", "澳大利亚ASX200", AssetType.INDEX),
    TrackedSymbol("^KS11", "韩国KOSPI", AssetType.INDEX),
    # Cross-asset
    TrackedSymbol("GC=F", "黄金期货", AssetType.COMMODITY),
    TrackedSymbol("CL=F", "WTI原油", AssetType.COMMODITY),
    TrackedSymbol("^TNX", "美国10年期国债收益率", AssetType.BOND),
    TrackedSymbol("DX-Y.NYB", "美元指数", AssetType.CURRENCY),
)

PREDICTION_TAGS: Tuple[str, ...] = (
    "fed-rates",
    "inflation",
    "recession",
    "economy",
    "geopolitics",
    "finance",
    "commodities",
)

DEFAULT_REGISTRY = SourceRegistry(
    news_sources=NEWS_SOURCES,
    symbols=TRACKED_SYMBOLS,
    prediction_tags=PREDICTION_TAGS,
)
