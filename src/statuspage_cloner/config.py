"""Centralized configuration loaded from .env."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v1/scrape"


def _load_env() -> None:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)
    else:
        load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value.strip() else default


@dataclass(frozen=True)
class Settings:
    # Structured-completion provider
    default_provider: str = "gemini"
    temperature: float = 0.0
    max_output_tokens: int = 16_384
    completion_timeout: int = 120
    max_document_chars: int = 800_000

    # AI provider keys
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    anthropic_api_key: str = ""
    claude_model: str = "claude-haiku-4-5-20251001"

    # Ollama config
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "phi4-mini"

    # Groq config (OpenAI-compatible, free tier)
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"

    # Gemini config (large context, handles whole status pages)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # Headless rendering (Firecrawl-compatible scrape API); empty key = unavailable
    render_api_url: str = FIRECRAWL_SCRAPE_URL
    render_api_key: str = ""
    render_js: bool = True
    render_timeout: int = 90
    render_wait_ms: int = 3000
    expand_passes: int = 3

    # Fetch / extraction tuning
    fetch_timeout: int = 30
    detail_batch_size: int = 5
    uptime_window: int = 90

    @property
    def can_render(self) -> bool:
        return self.render_js and bool(self.render_api_key)

    @classmethod
    def from_env(cls) -> Settings:
        _load_env()
        return cls(
            default_provider=os.getenv("DEFAULT_PROVIDER", "gemini"),
            completion_timeout=_int_env("COMPLETION_TIMEOUT", 120),
            max_document_chars=_int_env("MAX_DOCUMENT_CHARS", 800_000),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            claude_model=os.getenv("CLAUDE_MODEL", "claude-haiku-4-5-20251001"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "phi4-mini"),
            groq_api_key=os.getenv("GROQ_API_KEY", ""),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.1-8b-instant"),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            render_api_url=os.getenv("RENDER_API_URL", FIRECRAWL_SCRAPE_URL),
            render_api_key=os.getenv("RENDER_API_KEY", ""),
            render_timeout=_int_env("RENDER_TIMEOUT", 90),
            render_wait_ms=_int_env("RENDER_WAIT_MS", 3000),
            fetch_timeout=_int_env("FETCH_TIMEOUT", 30),
            detail_batch_size=_int_env("DETAIL_BATCH_SIZE", 5),
            uptime_window=_int_env("UPTIME_WINDOW", 90),
        )
