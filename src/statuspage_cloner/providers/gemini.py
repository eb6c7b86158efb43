"""Google Gemini provider: generous free tier, large context window."""

from __future__ import annotations

import base64
import logging
import time

from google import genai
from google.genai import errors, types

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import (
    AIProvider,
    ChatResponse,
    ExtractionError,
    ImageInput,
    QuotaExhausted,
    RateLimited,
)

logger = logging.getLogger(__name__)

# Gemini free tier: 10 RPM. 1M token context takes a whole reduced page.
GEMINI_RATE_LIMIT_DELAY = 7


class GeminiProvider(AIProvider):
    name = "gemini"

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required for the Gemini provider")
        self._client = genai.Client(api_key=settings.gemini_api_key)
        self._model = settings.gemini_model
        self._last_call: float = 0

    def _rate_limit(self) -> None:
        """Wait if needed to respect Gemini's RPM limit."""
        elapsed = time.time() - self._last_call
        if self._last_call and elapsed < GEMINI_RATE_LIMIT_DELAY:
            wait = GEMINI_RATE_LIMIT_DELAY - elapsed
            logger.info("Gemini rate limit: waiting %.1fs", wait)
            time.sleep(wait)

    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """Send a request to Gemini and return the response text."""
        self._rate_limit()

        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=self.settings.temperature,
            max_output_tokens=self.settings.max_output_tokens,
        )
        if json_mode:
            config.response_mime_type = "application/json"

        contents: list = [user]
        if image is not None:
            contents.insert(
                0,
                types.Part.from_bytes(data=base64.b64decode(image.data_b64), mime_type=image.mime_type),
            )

        response = self._client.models.generate_content(
            model=self._model,
            config=config,
            contents=contents,
        )
        self._last_call = time.time()

        truncated = False
        if response.candidates:
            truncated = response.candidates[0].finish_reason == types.FinishReason.MAX_TOKENS
        return ChatResponse(text=response.text or "", truncated=truncated)

    def _translate_error(self, exc: Exception) -> ExtractionError:
        if isinstance(exc, errors.APIError):
            if exc.code == 429:
                return RateLimited("Rate limited, please try again shortly.")
            if exc.code == 402:
                return QuotaExhausted("AI credits exhausted. Please add credits to continue.")
        return ExtractionError(f"gemini request failed: {exc}")
