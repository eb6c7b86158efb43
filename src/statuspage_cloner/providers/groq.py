"""Groq provider: free, fast inference via OpenAI-compatible API."""

from __future__ import annotations

import logging
import time

from openai import OpenAI

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import AIProvider, ChatResponse, ExtractionError, ImageInput
from statuspage_cloner.providers.openai import build_chat_messages, translate_openai_error

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

# Groq free tier: 6K TPM. Status pages reduced for services still run
# tens of thousands of chars, so keep the document budget small.
GROQ_MAX_DOCUMENT_CHARS = 24_000

# Seconds to wait between API calls to respect TPM limits.
GROQ_RATE_LIMIT_DELAY = 15


class GroqProvider(AIProvider):
    name = "groq"
    supports_images = False

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY is required for the Groq provider")
        self._client = OpenAI(
            api_key=settings.groq_api_key,
            base_url=GROQ_BASE_URL,
            timeout=settings.completion_timeout,
        )
        self._model = settings.groq_model
        self._last_call: float = 0

    def _build_messages(self, system_prompt: str, user_prompt: str, document: str) -> tuple[str, str]:
        return super()._build_messages(system_prompt, user_prompt, document[:GROQ_MAX_DOCUMENT_CHARS])

    def _rate_limit(self) -> None:
        """Wait if needed to respect Groq's TPM limit."""
        elapsed = time.time() - self._last_call
        if self._last_call and elapsed < GROQ_RATE_LIMIT_DELAY:
            wait = GROQ_RATE_LIMIT_DELAY - elapsed
            logger.info("Groq rate limit: waiting %.1fs", wait)
            time.sleep(wait)

    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """Send a chat request to Groq and return the response text."""
        self._rate_limit()

        kwargs: dict = {
            "model": self._model,
            "messages": build_chat_messages(system, user, None),
            "temperature": self.settings.temperature,
            "max_tokens": min(self.settings.max_output_tokens, 8192),
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self._client.chat.completions.create(**kwargs)
        self._last_call = time.time()
        choice = response.choices[0]
        return ChatResponse(
            text=choice.message.content or "",
            truncated=choice.finish_reason == "length",
        )

    def _translate_error(self, exc: Exception) -> ExtractionError:
        return translate_openai_error(self.name, exc)
