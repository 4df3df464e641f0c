"""Market quote adapter for the chart API (live quotes and daily history)."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from ._http import build_client, get_with_retry, log_fetch_failure
from .models import MarketDataPoint
from .registry import TrackedSymbol
from .timeutil import to_utc_iso

logger = logging.getLogger(__name__)

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"


def _round2(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


def compute_change(
    close: float, previous_close: Optional[float]
) -> tuple[Optional[float], Optional[float]]:
    """Return (change_amount, change_percent), both rounded to 2 decimals."""
    if previous_close is None:
        return None, None
    amount = close - previous_close
    percent = (amount / previous_close) * 100 if previous_close != 0 else None
    return _round2(amount), _round2(percent)


def _timestamp_parts(ts: int) -> tuple[str, str]:
    moment = datetime.fromtimestamp(ts, tz=timezone.utc)
    return to_utc_iso(moment), moment.date().isoformat()


def _chart_result(payload: Any) -> Dict[str, Any]:
    result = ((payload or {}).get("chart") or {}).get("result") or []
    if not result or not isinstance(result[0], dict):
        raise ValueError("chart payload has no result")
    return result[0]


def _series(result: Dict[str, Any]) -> tuple[list, list, list, list]:
    timestamps = result.get("timestamp") or []
    quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0] or {}
    closes = quotes.get("close") or []
    highs = quotes.get("high") or []
    lows = quotes.get("low") or []
    return timestamps, closes, highs, lows


def _at(values: list, idx: int) -> Optional[float]:
    return values[idx] if idx < len(values) else None


def parse_quote(symbol: TrackedSymbol, payload: Any) -> Optional[MarketDataPoint]:
    """Take the last non-null close in the range as the current quote."""
    result = _chart_result(payload)
    meta = result.get("meta") or {}
    timestamps, closes, highs, lows = _series(result)

    last_idx = min(len(timestamps), len(closes)) - 1
    while last_idx >= 0 and closes[last_idx] is None:
        last_idx -= 1
    if last_idx < 0:
        return None

    close = float(closes[last_idx])
    previous = meta.get("previousClose")
    if previous is None:
        previous = meta.get("regularMarketPreviousClose")
    if previous is None:
        prior = [c for c in closes[:last_idx] if c is not None]
        previous = prior[-1] if prior else meta.get("chartPreviousClose")
    previous = float(previous) if previous is not None else None

    change_amount, change_percent = compute_change(close, previous)
    market_time, trading_day = _timestamp_parts(int(timestamps[last_idx]))
    return MarketDataPoint(
        symbol=symbol.symbol,
        name=symbol.name,
        type=symbol.asset_type,
        price=round(close, 2),
        change_amount=change_amount,
        change_percent=change_percent,
        day_high=_at(highs, last_idx),
        day_low=_at(lows, last_idx),
        previous_close=_round2(previous),
        market_time=market_time,
        date=trading_day,
    )


def parse_history(symbol: TrackedSymbol, payload: Any) -> List[MarketDataPoint]:
    """Daily series with day-over-day change against the previous kept row.

    Rows are processed in timestamp order; days with a null close (holidays)
    are skipped and do not break the chain.
    """
    result = _chart_result(payload)
    timestamps, closes, highs, lows = _series(result)
    order = sorted(range(min(len(timestamps), len(closes))), key=lambda i: timestamps[i])

    points: List[MarketDataPoint] = []
    previous: Optional[float] = None
    for idx in order:
        raw_close = closes[idx]
        if raw_close is None:
            continue
        close = float(raw_close)
        change_amount, change_percent = compute_change(close, previous)
        market_time, trading_day = _timestamp_parts(int(timestamps[idx]))
        points.append(
            MarketDataPoint(
                symbol=symbol.symbol,
                name=symbol.name,
                type=symbol.asset_type,
                price=close,
                change_amount=change_amount,
                change_percent=change_percent,
                day_high=_at(highs, idx),
                day_low=_at(lows, idx),
                previous_close=previous,
                market_time=market_time,
                date=trading_day,
            )
        )
        previous = close
    return points


def _fetch_chart(
    client: httpx.Client, symbol: str, chart_range: str, interval: str = "1d"
) -> Any:
    url = f"{CHART_URL}/{quote(symbol, safe='')}"
    response = get_with_retry(client, url, {"range": chart_range, "interval": interval})
    return response.json()


def fetch_quote(
    symbol: TrackedSymbol,
    client: Optional[httpx.Client] = None,
    *,
    chart_range: str = "5d",
) -> Optional[MarketDataPoint]:
    """Latest quote for one symbol. Never raises; failures yield None."""
    owns_client = client is None
    active = client or build_client()
    try:
        return parse_quote(symbol, _fetch_chart(active, symbol.symbol, chart_range))
    except Exception as exc:  # isolate-and-continue per symbol
        log_fetch_failure(symbol.symbol, exc)
        return None
    finally:
        if owns_client:
            active.close()


def fetch_history(
    symbol: TrackedSymbol,
    client: Optional[httpx.Client] = None,
    *,
    chart_range: str = "3mo",
) -> List[MarketDataPoint]:
    """Daily history for one symbol. Never raises; failures yield []."""
    owns_client = client is None
    active = client or build_client()
    try:
        logger.info("Fetching %s history for %s", chart_range, symbol.symbol)
        points = parse_history(symbol, _fetch_chart(active, symbol.symbol, chart_range))
        logger.info("Parsed %d historical records for %s", len(points), symbol.symbol)
        return points
    except Exception as exc:  # isolate-and-continue per symbol
        log_fetch_failure(f"{symbol.symbol} history", exc)
        return []
    finally:
        if owns_client:
            active.close()


def fetch_quotes(
    symbols: Sequence[TrackedSymbol],
    client: Optional[httpx.Client] = None,
    *,
    chart_range: str = "5d",
    max_workers: int = 4,
) -> List[MarketDataPoint]:
    """Fetch quotes for several symbols concurrently; failed symbols are omitted."""
    if max_workers < 1:
        raise ValueError("max_workers must be >= 1.")
    if not symbols:
        return []
    owns_client = client is None
    active = client or build_client()
    points: List[MarketDataPoint] = []
    try:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(symbols))) as executor:
            futures = [
                executor.submit(fetch_quote, symbol, active, chart_range=chart_range)
                for symbol in symbols
            ]
            for future in as_completed(futures):
                point = future.result()
                if point is not None:
                    points.append(point)
    finally:
        if owns_client:
            active.close()
    logger.info("Fetched %d/%d quotes", len(points), len(symbols))
    return points
