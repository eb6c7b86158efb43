"""Ollama provider for local inference."""

from __future__ import annotations

import logging

import httpx

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import (
    AIProvider,
    ChatResponse,
    CompletionTimeout,
    ExtractionError,
    ImageInput,
    RateLimited,
)

logger = logging.getLogger(__name__)

# Local models have small windows; a reduced status page rarely needs more.
OLLAMA_NUM_CTX = 32_768


class OllamaProvider(AIProvider):
    name = "ollama"

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model

    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """Send a chat request to Ollama and return the response text."""
        user_message: dict = {"role": "user", "content": user}
        if image is not None:
            user_message["images"] = [image.data_b64]

        payload: dict = {
            "model": self._model,
            "messages": [{"role": "system", "content": system}, user_message],
            "stream": False,
            "options": {
                "temperature": self.settings.temperature,
                "num_ctx": OLLAMA_NUM_CTX,
                "num_predict": self.settings.max_output_tokens,
            },
        }
        if json_mode:
            payload["format"] = "json"

        with httpx.Client(timeout=self.settings.completion_timeout) as client:
            response = client.post(f"{self._base_url}/api/chat", json=payload)
            response.raise_for_status()

        body = response.json()
        return ChatResponse(
            text=body.get("message", {}).get("content", ""),
            truncated=body.get("done_reason") == "length",
        )

    def _translate_error(self, exc: Exception) -> ExtractionError:
        if isinstance(exc, httpx.TimeoutException):
            return CompletionTimeout("ollama request timed out")
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
            return RateLimited("Rate limited, please try again shortly.")
        return ExtractionError(f"ollama request failed: {exc}")
