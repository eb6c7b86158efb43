"""Provider registry and factory with lazy imports."""

from __future__ import annotations

import importlib
import logging

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PROVIDER_REGISTRY: dict[str, str] = {
    "openai": "statuspage_cloner.providers.openai.OpenAIProvider",
    "anthropic": "statuspage_cloner.providers.anthropic.AnthropicProvider",
    "ollama": "statuspage_cloner.providers.ollama.OllamaProvider",
    "groq": "statuspage_cloner.providers.groq.GroqProvider",
    "gemini": "statuspage_cloner.providers.gemini.GeminiProvider",
}


def get_provider(name: str, settings: Settings) -> AIProvider:
    """Instantiate an AI provider by name. Uses lazy imports."""
    if name not in _PROVIDER_REGISTRY:
        available = ", ".join(sorted(_PROVIDER_REGISTRY))
        raise ValueError(f"Unknown provider '{name}'. Available: {available}")

    module_path, class_name = _PROVIDER_REGISTRY[name].rsplit(".", 1)
    module = importlib.import_module(module_path)
    provider_class = getattr(module, class_name)
    return provider_class(settings)


def resolve_provider(name: str | None, settings: Settings) -> AIProvider | None:
    """
    Like ``get_provider`` (defaulting to ``settings.default_provider``), but a
    provider without credentials yields None so that AI-free paths still run.
    """
    name = name or settings.default_provider
    if name not in _PROVIDER_REGISTRY:
        return get_provider(name, settings)
    try:
        return get_provider(name, settings)
    except ValueError as exc:
        logger.warning("AI provider %s unavailable: %s", name, exc)
        return None


def list_providers() -> list[str]:
    return sorted(_PROVIDER_REGISTRY)
