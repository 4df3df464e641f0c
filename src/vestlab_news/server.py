"""FastAPI read API and manual triggers over the news store."""

from __future__ import annotations

import dataclasses
import logging
import os
import sqlite3
from datetime import timedelta
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .jobs import (
    briefing_job,
    cold_start_job,
    current_predictions,
    fetch_news_job,
    refresh_market_job,
    snapshot_job,
    translate_job,
)
from .llm import ChatClient, FallbackError
from .models import PredictionEvent, Session
from .polymarket import MacroMarketCache, fetch_macro_events
from .registry import DEFAULT_REGISTRY, SourceRegistry
from .store import NewsStore
from .timeutil import parse_date, reporting_date, utc_now

logger = logging.getLogger(__name__)

app = FastAPI(title="VestLab Finance News")

_macro_cache = MacroMarketCache(ttl_seconds=get_settings().prediction_cache_seconds)


def _add_cors(app: FastAPI, settings: Settings) -> None:
    """Let the dashboard read news and fire triggers from its own origin."""
    origins = [o.strip() for o in settings.dashboard_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        # Credentials only with explicit origins.
        allow_credentials=bool(origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


_add_cors(app, get_settings())


@app.exception_handler(RequestValidationError)
async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "error", "detail": [err.get("msg") for err in exc.errors()]},
    )


# --- Dependencies -----------------------------------------------------------

def get_store() -> Iterator[NewsStore]:
    """Open the store for one request (path from VESTLAB_DB_PATH)."""
    try:
        store = NewsStore(get_settings().database_path)
    except (sqlite3.Error, OSError) as exc:
        logger.error("Database unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="database unavailable"
        ) from exc
    try:
        yield store
    finally:
        store.close()


def get_registry() -> SourceRegistry:
    return DEFAULT_REGISTRY


def get_chat() -> ChatClient:
    return ChatClient()


def get_events_fetcher(registry: SourceRegistry = Depends(get_registry)):
    settings = get_settings()

    def _fetch() -> List[PredictionEvent]:
        return fetch_macro_events(registry.prediction_tags, limit=settings.prediction_tag_limit)

    return _fetch


def _plain(outcome: Any) -> Dict[str, Any]:
    return dataclasses.asdict(outcome)


def _db_guard(exc: sqlite3.Error) -> HTTPException:
    logger.error("Database error: %s", exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# --- Read API ---------------------------------------------------------------

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/news")
def list_news(
    limit: int = Query(50, ge=1, le=500),
    q: Optional[str] = Query(None),
    store: NewsStore = Depends(get_store),
) -> Dict[str, Any]:
    language = get_settings().translation_language
    try:
        if q and q.strip():
            items = store.search_news(q.strip(), limit, language=language)
        else:
            items = store.latest_news(limit, language=language)
    except sqlite3.Error as exc:
        raise _db_guard(exc) from exc
    return {"count": len(items), "items": [item.model_dump(mode="json") for item in items]}


@app.get("/daily-summary")
def daily_summary(
    date: Optional[str] = Query(None),
    session: Optional[Session] = Query(None),
    store: NewsStore = Depends(get_store),
) -> Dict[str, Any]:
    settings = get_settings()
    try:
        day = parse_date(date) if date else reporting_date(utc_now(), settings.reporting_utc_offset_hours)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        if session is None:
            summaries = store.get_daily_summaries(day.isoformat())
            return {"date": day.isoformat(), "items": [s.model_dump(mode="json") for s in summaries]}
        summary = store.get_daily_summary(day.isoformat(), session)
    except sqlite3.Error as exc:
        raise _db_guard(exc) from exc
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"no {session.value} summary for {day.isoformat()}",
        )
    return summary.model_dump(mode="json")


@app.get("/market-data")
def market_data(
    date: Optional[str] = Query(None),
    store: NewsStore = Depends(get_store),
) -> Dict[str, Any]:
    try:
        if date:
            day: Optional[str] = parse_date(date).isoformat()
            points = store.market_data_for_date(day)
        else:
            day, points = store.latest_market_data()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except sqlite3.Error as exc:
        raise _db_guard(exc) from exc
    return {"date": day, "items": [p.model_dump(mode="json") for p in points]}


@app.get("/macro-news")
def macro_news(
    limit: Optional[int] = Query(None, ge=1, le=100),
    store: NewsStore = Depends(get_store),
    registry: SourceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    settings = get_settings()
    try:
        items = store.macro_news(
            registry.macro_source_names,
            since=utc_now() - timedelta(days=settings.macro_news_days),
            limit=limit or settings.macro_news_limit,
            language=settings.translation_language,
        )
    except sqlite3.Error as exc:
        raise _db_guard(exc) from exc
    return {"count": len(items), "items": [item.model_dump(mode="json") for item in items]}


@app.get("/polymarket/macro")
def polymarket_macro(
    store: NewsStore = Depends(get_store),
    fetcher=Depends(get_events_fetcher),
) -> Dict[str, Any]:
    events = _macro_cache.get(fetcher)
    try:
        reconciled = current_predictions(store, events)
    except sqlite3.Error as exc:
        raise _db_guard(exc) from exc
    return {"count": len(reconciled), "events": [e.model_dump(mode="json") for e in reconciled]}


# --- Manual triggers --------------------------------------------------------

@app.post("/trigger/fetch")
def trigger_fetch(
    store: NewsStore = Depends(get_store),
    registry: SourceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return {"status": "ok", "result": _plain(fetch_news_job(store, registry=registry))}


@app.post("/trigger/market")
def trigger_market(
    store: NewsStore = Depends(get_store),
    registry: SourceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return {"status": "ok", "result": _plain(refresh_market_job(store, registry=registry))}


@app.post("/trigger/cold-start")
def trigger_cold_start(
    symbols: Optional[str] = Query(None, description="Comma-separated symbol subset."),
    store: NewsStore = Depends(get_store),
    registry: SourceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    subset = [s.strip() for s in symbols.split(",") if s.strip()] if symbols else None
    result = cold_start_job(store, registry=registry, symbols=subset)
    return {"status": "ok", "result": _plain(result)}


@app.post("/trigger/translate")
def trigger_translate(
    store: NewsStore = Depends(get_store),
    chat: ChatClient = Depends(get_chat),
) -> Dict[str, Any]:
    try:
        outcome = translate_job(store, chat)
    except FallbackError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {"status": outcome.status, "result": _plain(outcome)}


@app.post("/trigger/summary")
def trigger_summary(
    session: Session = Query(Session.MORNING),
    date: Optional[str] = Query(None),
    force: bool = Query(False),
    store: NewsStore = Depends(get_store),
    chat: ChatClient = Depends(get_chat),
    registry: SourceRegistry = Depends(get_registry),
    fetcher=Depends(get_events_fetcher),
) -> Dict[str, Any]:
    try:
        report_date = parse_date(date) if date else None
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        outcome = briefing_job(
            store,
            chat,
            session,
            registry=registry,
            report_date=report_date,
            events_fetcher=fetcher,
            force=force,
        )
    except FallbackError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {"status": outcome.status, "result": _plain(outcome)}


@app.post("/trigger/snapshot")
def trigger_snapshot(
    store: NewsStore = Depends(get_store),
    registry: SourceRegistry = Depends(get_registry),
    fetcher=Depends(get_events_fetcher),
) -> Dict[str, Any]:
    outcome = snapshot_job(store, registry=registry, events_fetcher=fetcher)
    return {"status": "ok", "result": _plain(outcome)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vestlab_news.server:app",
        host=os.getenv("VESTLAB_HOST", "0.0.0.0"),
        port=int(os.getenv("VESTLAB_PORT", "8000")),
        reload=os.getenv("VESTLAB_RELOAD", "false").lower() == "true",
    )
