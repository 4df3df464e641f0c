"""Finance news aggregation: feeds, quotes, prediction markets and daily briefings."""

__all__ = ["config", "models", "jobs", "store"]
