"""Configuration helpers for the finance news aggregator."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )

    aliyun_api_key: str | None = Field(None, alias="ALIYUN_API_KEY")
    google_ai_key: str | None = Field(None, alias="GOOGLE_AI_KEY")
    primary_base_url: str = Field(
        "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
        description="OpenAI-compatible endpoint of the primary chat provider.",
    )
    primary_model: str = Field("qwen-plus-latest", description="Primary chat model.")
    fallback_base_url: str = Field(
        "https://gateway.ai.cloudflare.com/v1/vestlab/compat",
        description="OpenAI-compatible endpoint used when the primary refuses content.",
    )
    fallback_model: str = Field(
        "google-ai-studio/gemini-2.5-flash", description="Fallback chat model."
    )

    database_path: str = Field(
        "data/vestlab.db",
        alias="VESTLAB_DB_PATH",
        description="SQLite file holding news, translations, quotes and snapshots.",
    )

    schedule_period_minutes: int = Field(
        15, description="Minutes between scheduled fetch ticks; drives batch rotation."
    )
    news_batch_size: int = Field(2, description="News feeds processed per tick.")
    market_batch_size: int = Field(4, description="Market symbols processed per tick.")

    translation_language: str = Field("zh", description="Target translation language.")
    translation_limit: int = Field(
        20, description="Max news items translated per translation run."
    )

    quote_range: str = Field("5d", description="Chart range used for live quotes.")
    history_range: str = Field("3mo", description="Chart range used for cold-start backfill.")

    macro_news_days: int = Field(7, description="Trailing days of macro news in context.")
    macro_news_limit: int = Field(10, description="Max macro items in a briefing context.")

    prediction_tag_limit: int = Field(5, description="Events requested per prediction tag.")
    prediction_cache_seconds: float = Field(
        300.0, description="In-process cache TTL for the /polymarket/macro route."
    )

    reporting_utc_offset_hours: int = Field(
        8, description="Offset of the reporting timezone used for dates and sessions."
    )

    dashboard_origins: str = Field(
        "",
        alias="VESTLAB_DASHBOARD_ORIGINS",
        description="Comma-separated origins allowed to call the API; empty allows any origin.",
    )

    http_timeout_seconds: float = Field(10.0, description="Per-request upstream timeout.")
    user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
        description="User-Agent sent to feed and quote upstreams.",
    )


def get_settings() -> Settings:
    """Return a settings instance reflecting the current environment."""
    return Settings()
