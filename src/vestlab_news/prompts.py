"""Prompt templates and plain-text rendering of briefing context."""

from __future__ import annotations

from pathlib import Path
from string import Template
from typing import List, Sequence

from .context import BriefingContext
from .models import MarketDataPoint, NewsRecord, PredictionEvent, PredictionOutcome, Session
from .polymarket import display_outcomes, rank_markets

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

SESSION_LABELS = {Session.MORNING: "早报", Session.EVENING: "晚报"}


def _load_template(filename: str) -> Template:
    return Template((TEMPLATES_DIR / filename).read_text(encoding="utf-8"))


def render_news(items: Sequence[NewsRecord]) -> str:
    if not items:
        return "（无）"
    lines = []
    for idx, item in enumerate(items, start=1):
        lines.append(f"{idx}. [{item.source or '未知'}] {item.title}\n   {item.description or ''}".rstrip())
    return "\n\n".join(lines)


def _signed(value: float | None, suffix: str = "") -> str:
    if value is None:
        return "n/a"
    return f"{value:+.2f}{suffix}"


def render_market(points: Sequence[MarketDataPoint]) -> str:
    if not points:
        return "（暂无数据）"
    return "\n".join(
        f"- {p.name} ({p.symbol}): {p.price:.2f} "
        f"{_signed(p.change_amount)} ({_signed(p.change_percent, '%')})"
        for p in points
    )


def format_outcome(outcome: PredictionOutcome) -> str:
    """`Yes: 47.0% (🔺+5.0%)`; 🆕 for new outcomes, 'unchanged' for zero delta."""
    text = f"{outcome.label}: {outcome.probability * 100:.1f}%"
    if outcome.is_new:
        return f"{text} (🆕 New)"
    if outcome.delta is None:
        return text
    if outcome.delta == 0:
        return f"{text} (unchanged)"
    arrow = "🔺" if outcome.delta > 0 else "🔻"
    return f"{text} ({arrow}{outcome.delta * 100:+.1f}%)"


def render_predictions(
    events: Sequence[PredictionEvent], *, max_events: int = 8, max_markets: int = 5
) -> str:
    if not events:
        return "（暂无数据）"
    blocks: List[str] = []
    for event in events[:max_events]:
        lines = [f"**Event: {event.title}**"]
        for market in rank_markets(event.markets)[:max_markets]:
            outcomes = ", ".join(format_outcome(o) for o in display_outcomes(market))
            lines.append(f'- Market: "{market.question}" -> [ {outcomes} ]')
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def translation_prompt(title: str, content: str, source: str = "") -> str:
    return _load_template("translate.txt").substitute(
        title=title, content=content, source=source or "未知"
    )


def briefing_prompt(context: BriefingContext, *, macro_days: int = 7) -> str:
    return _load_template("briefing.txt").substitute(
        report_date=context.report_date.isoformat(),
        session_label=SESSION_LABELS[context.session],
        news_date=context.news_date.isoformat(),
        macro_days=macro_days,
        market_date=context.market_date or "n/a",
        reference_date=context.reference_date.isoformat() if context.reference_date else "n/a",
        news_count=len(context.spot_news),
        news_section=render_news(context.spot_news),
        macro_section=render_news(context.macro_news),
        market_section=render_market(context.market_data),
        prediction_section=render_predictions(context.predictions),
    )


def briefing_heading(context: BriefingContext) -> str:
    day = context.report_date
    return (
        f"# VestLab 财经新闻综述（{day.year}年{day.month:02d}月{day.day:02d}日·"
        f"{SESSION_LABELS[context.session]}）"
    )
