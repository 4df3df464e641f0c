"""Command-line entry points for the VestLab news pipeline."""

import dataclasses
import json
import logging
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import typer
from pydantic import BaseModel
from rich import print as rprint

from .config import get_settings
from .jobs import (
    SCHEDULES,
    briefing_job,
    cold_start_job,
    fetch_news_job,
    refresh_market_job,
    run_scheduled,
    snapshot_job,
    translate_job,
)
from .llm import ChatClient, FallbackError
from .models import Session
from .registry import DEFAULT_REGISTRY
from .scheduler import partition, run_index, select_batch
from .store import NewsStore
from .timeutil import parse_date, parse_timestamp, utc_now

app = typer.Typer(help="Fetch, translate and summarize finance news into a local store.")


def _to_plain(value: Any) -> Any:
    """JSON-ready form of a job outcome; outcomes may nest other outcomes and models."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    return value


def _write_output(out_path: Path, payload: Any) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(
        json.dumps(_to_plain(payload), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def _open_store(db: Optional[Path]) -> NewsStore:
    return NewsStore(db or get_settings().database_path)


def _parse_now(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise typer.BadParameter("now must be an ISO-8601 or RFC 2822 timestamp.")
    return parsed


def _report(label: str, outcome: Any, out: Optional[Path]) -> None:
    rprint(f"[green]{label}[/green]")
    typer.echo(json.dumps(_to_plain(outcome), ensure_ascii=False, indent=2))
    if out:
        _write_output(out, outcome)
        rprint(f"[cyan]Wrote output to {out}[/cyan]")


DbOption = typer.Option(None, "--db", help="SQLite path (defaults to VESTLAB_DB_PATH).")
OutOption = typer.Option(None, "--out", "-o", help="Optional path to write the outcome as JSON.")
NowOption = typer.Option(None, "--now", help="Override the clock (UTC timestamp).")


@app.callback()
def main_callback(
    log_level: str = typer.Option("INFO", "--log-level", help="Python logging level."),
):
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("fetch-news")
def fetch_news_command(
    db: Optional[Path] = DbOption,
    now: Optional[str] = NowOption,
    out: Optional[Path] = OutOption,
):
    """Fetch the news partition active for the current tick."""
    with _open_store(db) as store:
        outcome = fetch_news_job(store, now=_parse_now(now))
    _report(f"Saved {outcome.saved} new items from {', '.join(outcome.sources) or 'no sources'}", outcome, out)


@app.command("refresh-market")
def refresh_market_command(
    db: Optional[Path] = DbOption,
    now: Optional[str] = NowOption,
    out: Optional[Path] = OutOption,
):
    """Backfill or quote the symbol partition active for the current tick."""
    with _open_store(db) as store:
        outcome = refresh_market_job(store, now=_parse_now(now))
    _report(f"Market batch {outcome.batch_index + 1}/{outcome.total_batches} refreshed", outcome, out)
    if outcome.failed:
        rprint(f"[yellow]No data for: {', '.join(outcome.failed)}[/yellow]")


@app.command("cold-start")
def cold_start_command(
    symbols: Optional[List[str]] = typer.Argument(None, help="Optional subset of symbols."),
    db: Optional[Path] = DbOption,
    out: Optional[Path] = OutOption,
):
    """Backfill history for tracked symbols that have none."""
    with _open_store(db) as store:
        result = cold_start_job(store, symbols=symbols or None)
    _report(f"Backfilled {len(result.backfilled)} symbols ({result.saved} rows)", result, out)
    if result.failed:
        rprint(f"[yellow]Failed: {', '.join(result.failed)}[/yellow]")


@app.command("translate")
def translate_command(
    db: Optional[Path] = DbOption,
    out: Optional[Path] = OutOption,
):
    """Translate recent untranslated news."""
    with _open_store(db) as store:
        try:
            outcome = translate_job(store, ChatClient())
        except FallbackError as exc:
            rprint(f"[red]Fallback provider failed: {exc}[/red]")
            raise typer.Exit(code=1)
    _report(f"Translation {outcome.status}", outcome, out)


@app.command("briefing")
def briefing_command(
    session: Session = typer.Option(Session.MORNING, "--session", "-s", case_sensitive=False),
    report_date: Optional[str] = typer.Option(None, "--date", help="Report date (YYYY-MM-DD)."),
    force: bool = typer.Option(False, "--force", help="Regenerate even if a summary exists."),
    db: Optional[Path] = DbOption,
    out: Optional[Path] = OutOption,
):
    """Generate the morning or evening briefing."""
    try:
        day = parse_date(report_date) if report_date else None
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    with _open_store(db) as store:
        try:
            outcome = briefing_job(store, ChatClient(), session, report_date=day, force=force)
        except FallbackError as exc:
            rprint(f"[red]Fallback provider failed: {exc}[/red]")
            raise typer.Exit(code=1)
        if outcome.status == "generated":
            summary = store.get_daily_summary(outcome.date, session)
            if summary:
                typer.echo(summary.content)
    _report(f"Briefing {outcome.status} for {outcome.date} ({outcome.session})", outcome, out)
    if outcome.status == "failed":
        raise typer.Exit(code=1)


@app.command("snapshot")
def snapshot_command(
    db: Optional[Path] = DbOption,
    now: Optional[str] = NowOption,
    out: Optional[Path] = OutOption,
):
    """Store today's prediction-market odds."""
    with _open_store(db) as store:
        outcome = snapshot_job(store, now=_parse_now(now))
    _report(f"Saved {outcome.saved} snapshot rows for {outcome.date}", outcome, out)


@app.command("tick")
def tick_command(
    cron: str = typer.Option("*/15 * * * *", "--cron", help="Cron expression of the trigger."),
    db: Optional[Path] = DbOption,
    now: Optional[str] = NowOption,
    out: Optional[Path] = OutOption,
):
    """Run whatever job the scheduler would run for CRON."""
    with _open_store(db) as store:
        try:
            run = run_scheduled(cron, store, ChatClient(), now=_parse_now(now))
        except FallbackError as exc:
            rprint(f"[red]Fallback provider failed: {exc}[/red]")
            raise typer.Exit(code=1)
    _report(f"Ran {run.job} for '{cron}'", run, out)


@app.command("schedule")
def schedule_command(
    now: Optional[str] = NowOption,
):
    """Print the batch rotation and which batch is active now."""
    settings = get_settings()
    current = _parse_now(now) or utc_now()
    idx = run_index(current, settings.schedule_period_minutes)
    rprint(f"[cyan]Run index {idx} (period {settings.schedule_period_minutes} min)[/cyan]")

    groups = (
        ("News", DEFAULT_REGISTRY.news_sources, settings.news_batch_size, lambda s: s.name),
        ("Market", DEFAULT_REGISTRY.symbols, settings.market_batch_size, lambda s: s.symbol),
    )
    for label, items, size, name_of in groups:
        active = select_batch(items, size, current, settings.schedule_period_minutes)
        rprint(f"[green]{label} batches ({len(items)} items, {size} per batch):[/green]")
        for part in partition(items, size):
            marker = "*" if part.index == active.index else " "
            rprint(f" {marker} {part.index}: {', '.join(name_of(m) for m in part.members)}")

    rprint("[green]Cron triggers:[/green]")
    for expr, job in SCHEDULES.items():
        rprint(f"   {expr:<14} {job}")


@app.command("stats")
def stats_command(db: Optional[Path] = DbOption):
    """Print row counts per table."""
    with _open_store(db) as store:
        counts = store.stats()
    for table, count in counts.items():
        rprint(f"{table:<22} {count}")


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("vestlab_news.server:app", host=host, port=port, reload=reload)


def main():
    app()


if __name__ == "__main__":
    main()
