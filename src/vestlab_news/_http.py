"""Shared HTTP helpers for the upstream fetch adapters.

Provides the client factory, a GET with bounded retry/backoff, and failure
logging with query-string secrets stripped.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Optional

import httpx

from .config import get_settings

logger = logging.getLogger(__name__)

# Regex to strip API keys/tokens from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|api_key|token|key)=[^&\s]+", re.IGNORECASE)

# Status codes eligible for automatic retry with backoff.
_RETRYABLE: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Maximum number of attempts (including the first request).
MAX_ATTEMPTS: int = 3


def sanitize(text: Any) -> str:
    """Remove apikey/token query params from a URL or exception message."""
    return _TOKEN_RE.sub(r"\1=***", str(text))


def build_client(timeout: Optional[float] = None) -> httpx.Client:
    """Create an httpx client with the configured timeout and User-Agent."""
    settings = get_settings()
    return httpx.Client(
        timeout=timeout if timeout is not None else settings.http_timeout_seconds,
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )


def get_with_retry(
    client: httpx.Client,
    url: str,
    params: Optional[dict[str, Any]] = None,
    *,
    attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """GET *url*, retrying 429/5xx and transient network errors.

    Raises ``httpx.HTTPStatusError`` for a final non-2xx response and the last
    network error when every attempt failed to connect.
    """
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            response = client.get(url, params=params)
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout) as exc:
            last_exc = exc
            if attempt < attempts:
                wait = 2 ** (attempt - 1)
                logger.warning(
                    "network error for %s (%s) - retry %d/%d in %ds",
                    sanitize(url), type(exc).__name__, attempt, attempts, wait,
                )
                sleep(wait)
                continue
            raise
        if response.status_code in _RETRYABLE and attempt < attempts:
            wait = 2 ** (attempt - 1)
            logger.warning(
                "HTTP %d from %s - retry %d/%d in %ds",
                response.status_code, sanitize(url), attempt, attempts, wait,
            )
            sleep(wait)
            continue
        response.raise_for_status()
        return response
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"no response after {attempts} attempts for {sanitize(url)}")


def log_fetch_failure(label: str, exc: Exception) -> None:
    """Log an isolated upstream failure for one source or symbol."""
    if isinstance(exc, httpx.HTTPStatusError):
        logger.warning(
            "%s fetch failed (HTTP %d): %s",
            label, exc.response.status_code, sanitize(exc),
        )
    else:
        logger.warning("%s fetch failed: %s: %s", label, type(exc).__name__, sanitize(exc))
