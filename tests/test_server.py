"""Tests for the HTTP surface."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from statuspage_cloner.models import ErrorEvent, ExtractedResult, ExtractedService, ProgressEvent, ResultEvent
from statuspage_cloner.providers.base import QuotaExhausted, RateLimited
from statuspage_cloner.server import create_app, get_ai_provider


@pytest_asyncio.fixture
async def app(settings):
    return create_app(settings)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def use_provider(app, provider) -> None:
    app.dependency_overrides[get_ai_provider] = lambda: provider


def sse_events(body: str) -> list[dict]:
    return [json.loads(chunk[len("data: "):]) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


class TestCloneEndpoint:
    async def test_url_required(self, app, client):
        use_provider(app, None)
        response = await client.post("/clone-status-page", json={"url": "  "})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "URL is required"}

    async def test_streams_progress_then_result(self, app, client):
        use_provider(app, None)
        result = ExtractedResult(name="Acme", services=[ExtractedService(name="API")], start_date="2024-01-01")

        async def fake_clone(url, settings, provider=None):
            yield ProgressEvent(message=f"Connecting to {url}...")
            yield ResultEvent(data=result)

        with patch("statuspage_cloner.server.clone_page", fake_clone):
            response = await client.post("/clone-status-page", json={"url": "status.example.com"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert events[0] == {"type": "progress", "message": "Connecting to status.example.com..."}
        assert events[1]["type"] == "result"
        assert events[1]["success"] is True
        assert events[1]["data"]["services"][0]["name"] == "API"
        assert events[1]["data"]["start_date"] == "2024-01-01"

    async def test_error_event_streamed(self, app, client):
        use_provider(app, None)

        async def fake_clone(url, settings, provider=None):
            yield ErrorEvent(message="No services found on this status page.")

        with patch("statuspage_cloner.server.clone_page", fake_clone):
            response = await client.post("/clone-status-page", json={"url": "x"})

        assert sse_events(response.text) == [
            {"type": "error", "message": "No services found on this status page.", "retryable": False},
        ]

    async def test_cors_headers(self, client):
        response = await client.options(
            "/clone-status-page",
            headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
        )
        assert response.headers["access-control-allow-origin"] == "*"


class TestAnalyzeIncidentEndpoint:
    async def test_success(self, app, client, make_provider):
        use_provider(app, make_provider({"title": "API outage", "services": [{"name": "API", "status": "down"}]}))
        response = await client.post("/analyze-incident", json={"text": "The API is down"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["title"] == "API outage"
        assert body["data"]["services"] == [{"name": "API", "status": "major"}]

    async def test_text_required(self, app, client, make_provider):
        use_provider(app, make_provider())
        response = await client.post("/analyze-incident", json={"text": ""})
        assert response.status_code == 400
        assert response.json() == {"error": "Text is required"}

    async def test_no_provider(self, app, client):
        use_provider(app, None)
        response = await client.post("/analyze-incident", json={"text": "down"})
        assert response.status_code == 500

    async def test_rate_limited(self, app, client, make_provider):
        use_provider(app, make_provider(RateLimited("429")))
        response = await client.post("/analyze-incident", json={"text": "down"})
        assert response.status_code == 429

    async def test_quota_exhausted(self, app, client, make_provider):
        use_provider(app, make_provider(QuotaExhausted("402")))
        response = await client.post("/analyze-incident", json={"text": "down"})
        assert response.status_code == 402
        assert "credits" in response.json()["error"]

    async def test_unparseable_ai_output(self, app, client, make_provider):
        use_provider(app, make_provider("not json"))
        response = await client.post("/analyze-incident", json={"text": "down"})
        assert response.status_code == 500
        assert "Failed to parse" in response.json()["error"]


class TestAnalyzeDiagramEndpoint:
    async def test_base64_alias(self, app, client, make_provider):
        use_provider(app, make_provider({"organization": "Acme", "services": [{"name": "CDN"}], "summary": "Edge"}))
        response = await client.post("/analyze-diagram", json={"imageBase64": "iVBORw0KGgo"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["organization"] == "Acme"
        assert data["services"] == [{"name": "CDN", "status": "operational", "group": None}]

    async def test_image_required(self, app, client, make_provider):
        use_provider(app, make_provider())
        response = await client.post("/analyze-diagram", json={})
        assert response.status_code == 400

    async def test_svg_rejected(self, app, client, make_provider):
        provider = make_provider()
        use_provider(app, provider)
        response = await client.post("/analyze-diagram", json={"imageBase64": "PHN2ZyB4bWxucz0"})
        assert response.status_code == 400
        assert "SVG images are not supported" in response.json()["error"]
        assert provider.calls == []
