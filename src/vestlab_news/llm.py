"""Chat-completion client with a one-shot fallback on content moderation.

Both providers expose OpenAI-compatible endpoints, so a pair of `openai`
clients pointed at different base URLs is enough.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from openai import OpenAI

from .config import Settings, get_settings
from .context import BriefingContext
from .prompts import briefing_prompt, translation_prompt
from .schema import validate_translation_payload

logger = logging.getLogger(__name__)

# Error text the primary provider returns when moderation rejects a prompt.
BLOCKED_SIGNATURES = ("data_inspection_failed", "inappropriate content")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class LLMError(RuntimeError):
    """A provider call failed."""


class ContentBlockedError(LLMError):
    """The primary provider refused the prompt on moderation grounds."""


class FallbackError(LLMError):
    """The fallback provider was unavailable or also failed."""


def build_client(api_key: str, base_url: str) -> OpenAI:
    """Create an OpenAI-compatible client; separated for easier testing."""
    return OpenAI(api_key=api_key, base_url=base_url)


def is_content_blocked(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(signature in text for signature in BLOCKED_SIGNATURES)


def _response_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return (getattr(message, "content", None) or "").strip()


class ChatClient:
    """Primary/fallback chat wrapper used by translation and briefing jobs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        primary: Optional[OpenAI] = None,
        fallback: Optional[OpenAI] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._primary = primary
        self._fallback = fallback

    @property
    def available(self) -> bool:
        return self._primary is not None or bool(self.settings.aliyun_api_key)

    def _primary_client(self) -> OpenAI:
        if self._primary is None:
            if not self.settings.aliyun_api_key:
                raise LLMError("ALIYUN_API_KEY is required. Set it in the environment or .env file.")
            self._primary = build_client(self.settings.aliyun_api_key, self.settings.primary_base_url)
        return self._primary

    def _fallback_client(self) -> Optional[OpenAI]:
        if self._fallback is None and self.settings.google_ai_key:
            self._fallback = build_client(self.settings.google_ai_key, self.settings.fallback_base_url)
        return self._fallback

    @staticmethod
    def _complete(client: OpenAI, model: str, prompt: str) -> str:
        response = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
        )
        return _response_text(response)

    def chat(self, prompt: str) -> str:
        """Ask the primary provider; on a moderation refusal retry once on the fallback."""
        try:
            return self._complete(self._primary_client(), self.settings.primary_model, prompt)
        except LLMError:
            raise
        except Exception as exc:
            if not is_content_blocked(exc):
                raise LLMError(f"primary provider error: {exc}") from exc
            blocked = ContentBlockedError(str(exc))

        logger.warning("%s; falling back to %s", blocked, self.settings.fallback_model)
        fallback = self._fallback_client()
        if fallback is None:
            raise FallbackError("content blocked and no fallback provider configured") from blocked
        try:
            return self._complete(fallback, self.settings.fallback_model, prompt)
        except Exception as exc:
            logger.error("Fallback provider also failed: %s", exc)
            raise FallbackError(f"fallback provider error: {exc}") from exc

    def translate_news(self, title: str, content: str, source: str = "") -> Dict[str, str]:
        """Return {"title", "content"}; a reply without a JSON object becomes the title."""
        text = self.chat(translation_prompt(title, content, source))
        match = _JSON_OBJECT.search(text)
        if not match:
            return {"title": text, "content": ""}
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ValueError(f"translation reply is not valid JSON: {exc}") from exc
        validated = validate_translation_payload(payload)
        return {"title": validated["title"].strip(), "content": validated["content"].strip()}

    def generate_report(self, context: BriefingContext) -> str:
        return self.chat(briefing_prompt(context, macro_days=self.settings.macro_news_days))
