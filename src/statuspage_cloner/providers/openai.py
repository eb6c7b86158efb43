"""OpenAI provider (GPT-4o by default)."""

from __future__ import annotations

import logging

import openai
from openai import OpenAI

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import (
    AIProvider,
    ChatResponse,
    CompletionTimeout,
    ExtractionError,
    ImageInput,
    QuotaExhausted,
    RateLimited,
)

logger = logging.getLogger(__name__)


def translate_openai_error(provider: str, exc: Exception) -> ExtractionError:
    """Map OpenAI-SDK errors (also used by OpenAI-compatible backends)."""
    if isinstance(exc, openai.APITimeoutError):
        return CompletionTimeout(f"{provider} request timed out")
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return QuotaExhausted("AI credits exhausted. Please add credits to continue.")
        return RateLimited("Rate limited, please try again shortly.")
    if isinstance(exc, openai.APIStatusError) and exc.status_code == 402:
        return QuotaExhausted("AI credits exhausted. Please add credits to continue.")
    return ExtractionError(f"{provider} request failed: {exc}")


def build_chat_messages(system: str, user: str, image: ImageInput | None) -> list[dict]:
    if image is None:
        content: str | list[dict] = user
    else:
        content = [
            {"type": "text", "text": user},
            {"type": "image_url", "image_url": {"url": image.data_url}},
        ]
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": content},
    ]


class OpenAIProvider(AIProvider):
    name = "openai"

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required for the OpenAI provider")
        self._client = OpenAI(api_key=settings.openai_api_key, timeout=settings.completion_timeout)

    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """Send a chat request to OpenAI and return the response text."""
        kwargs: dict = {
            "model": self.settings.openai_model,
            "messages": build_chat_messages(system, user, image),
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_output_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        return ChatResponse(
            text=choice.message.content or "",
            truncated=choice.finish_reason == "length",
        )

    def _translate_error(self, exc: Exception) -> ExtractionError:
        return translate_openai_error(self.name, exc)
