"""Tests for statuspage_cloner.config module."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from statuspage_cloner.config import FIRECRAWL_SCRAPE_URL, Settings


class TestSettings:
    def test_default_values(self):
        s = Settings()
        assert s.default_provider == "gemini"
        assert s.openai_api_key == ""
        assert s.claude_model == "claude-haiku-4-5-20251001"
        assert s.ollama_base_url == "http://localhost:11434"
        assert s.ollama_model == "phi4-mini"
        assert s.groq_model == "llama-3.1-8b-instant"
        assert s.gemini_model == "gemini-2.5-flash"
        assert s.render_api_url == FIRECRAWL_SCRAPE_URL
        assert s.render_api_key == ""
        assert s.temperature == 0.0
        assert s.completion_timeout == 120
        assert s.max_document_chars == 800_000
        assert s.expand_passes == 3
        assert s.detail_batch_size == 5
        assert s.uptime_window == 90

    def test_frozen_dataclass(self):
        s = Settings()
        with pytest.raises(AttributeError):
            s.render_api_key = "new-key"  # type: ignore[misc]

    def test_can_render_needs_key(self):
        assert Settings().can_render is False
        assert Settings(render_api_key="fc-key").can_render is True

    def test_can_render_disabled(self):
        assert Settings(render_api_key="fc-key", render_js=False).can_render is False

    def test_from_env_reads_env_vars(self):
        env = {
            "DEFAULT_PROVIDER": "anthropic",
            "OPENAI_API_KEY": "my-openai-key",
            "ANTHROPIC_API_KEY": "my-anthropic-key",
            "CLAUDE_MODEL": "claude-sonnet-4-20250514",
            "OLLAMA_BASE_URL": "http://myhost:11434",
            "GROQ_API_KEY": "my-groq-key",
            "GEMINI_API_KEY": "my-gemini-key",
            "RENDER_API_KEY": "fc-key",
            "RENDER_API_URL": "http://render.local/v1/scrape",
            "COMPLETION_TIMEOUT": "30",
            "DETAIL_BATCH_SIZE": "3",
            "UPTIME_WINDOW": "30",
        }
        with patch.dict("os.environ", env, clear=False), \
             patch("statuspage_cloner.config.load_dotenv"):
            s = Settings.from_env()
            assert s.default_provider == "anthropic"
            assert s.openai_api_key == "my-openai-key"
            assert s.anthropic_api_key == "my-anthropic-key"
            assert s.claude_model == "claude-sonnet-4-20250514"
            assert s.ollama_base_url == "http://myhost:11434"
            assert s.groq_api_key == "my-groq-key"
            assert s.gemini_api_key == "my-gemini-key"
            assert s.render_api_key == "fc-key"
            assert s.render_api_url == "http://render.local/v1/scrape"
            assert s.completion_timeout == 30
            assert s.detail_batch_size == 3
            assert s.uptime_window == 30

    def test_from_env_blank_ints_use_defaults(self):
        with patch.dict("os.environ", {"FETCH_TIMEOUT": "  ", "UPTIME_WINDOW": ""}, clear=False), \
             patch("statuspage_cloner.config.load_dotenv"):
            s = Settings.from_env()
            assert s.fetch_timeout == 30
            assert s.uptime_window == 90

    def test_from_env_bad_int_raises(self):
        with patch.dict("os.environ", {"FETCH_TIMEOUT": "soon"}, clear=False), \
             patch("statuspage_cloner.config.load_dotenv"), \
             pytest.raises(ValueError):
            Settings.from_env()
