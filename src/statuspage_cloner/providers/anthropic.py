"""Anthropic Claude provider."""

from __future__ import annotations

import logging

import anthropic

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


class AnthropicProvider(AIProvider):
    name = "anthropic"

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        if not settings.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is required for the Anthropic provider")
        self._client = anthropic.Anthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.completion_timeout,
        )

    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """Send a chat request to Anthropic and return the response text."""
        content: list[dict] = []
        if image is not None:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.data_b64},
            })
        content.append({"type": "text", "text": user})

        response = self._client.messages.create(
            model=self.settings.claude_model,
            max_tokens=self.settings.max_output_tokens,
            system=system,
            messages=[{"role": "user", "content": content}],
            temperature=self.settings.temperature,
        )
        text = "".join(block.text for block in response.content if block.type == "text")
        return ChatResponse(text=text, truncated=response.stop_reason == "max_tokens")

    def _translate_error(self, exc: Exception) -> ExtractionError:
        if isinstance(exc, anthropic.APITimeoutError):
            return CompletionTimeout("anthropic request timed out")
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimited("Rate limited, please try again shortly.")
        if isinstance(exc, anthropic.APIStatusError) and (
            exc.status_code == 402 or "credit balance" in str(exc).lower()
        ):
            return QuotaExhausted("AI credits exhausted. Please add credits to continue.")
        return ExtractionError(f"anthropic request failed: {exc}")
