"""Tests for statuspage_cloner.fetcher module."""

from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest
from conftest import html_response, json_response, mock_client

from statuspage_cloner.fetcher import (
    EXPAND_SCRIPT,
    HEADER_PROFILES,
    FetchBlocked,
    build_render_actions,
    fetch_document,
    fetch_json,
    fetch_rendered,
)

PAGE = "https://status.example.com/"


class TestFetchDocument:
    async def test_first_profile_wins(self):
        async with mock_client({PAGE: html_response("<html>ok</html>")}) as client:
            text, content_type = await fetch_document(PAGE, client)
            assert text == "<html>ok</html>"
            assert content_type.startswith("text/html")
            assert len(client.requests) == 1
            assert "Chrome" in client.requests[0].headers["user-agent"]

    async def test_rotates_profiles_until_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "Googlebot" in request.headers["user-agent"]:
                return html_response("<html>crawler</html>")
            return html_response("blocked", status=403)

        async with mock_client({PAGE: handler}) as client:
            text, _ = await fetch_document(PAGE, client)
            assert text == "<html>crawler</html>"
            assert len(client.requests) == 2

    async def test_all_profiles_blocked(self):
        async with mock_client({PAGE: html_response("no", status=403)}) as client:
            with pytest.raises(FetchBlocked, match="Try a different URL"):
                await fetch_document(PAGE, client)
            assert len(client.requests) == len(HEADER_PROFILES)

    async def test_transport_errors_try_next_profile(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "facebookexternalhit" in request.headers["user-agent"]:
                return html_response("<html>preview</html>")
            raise httpx.ConnectError("reset", request=request)

        async with mock_client({PAGE: handler}) as client:
            text, _ = await fetch_document(PAGE, client)
            assert text == "<html>preview</html>"

    def test_profile_order(self):
        names = [name for name, _ in HEADER_PROFILES]
        assert names == ["browser", "crawler", "preview-bot"]


class TestFetchJson:
    async def test_returns_payload(self):
        url = "https://status.example.com/api/v2/summary.json"
        async with mock_client({url: json_response({"components": []})}) as client:
            assert await fetch_json(url, client) == {"components": []}

    async def test_not_found_is_none(self):
        async with mock_client({}) as client:
            assert await fetch_json("https://status.example.com/api/v2/summary.json", client) is None

    async def test_non_json_is_none(self):
        url = "https://status.example.com/api/v2/summary.json"
        async with mock_client({url: html_response("<html></html>")}) as client:
            assert await fetch_json(url, client) is None


class TestBuildRenderActions:
    def test_scroll_then_expansion_passes(self, settings):
        actions = build_render_actions(settings)
        assert actions[0] == {"type": "wait", "milliseconds": settings.render_wait_ms}
        assert actions[1] == {"type": "scroll", "direction": "down"}
        assert actions[3] == {"type": "scroll", "direction": "up"}
        scripts = [a for a in actions if a["type"] == "executeJavascript"]
        assert len(scripts) == 3
        assert all(a["script"] == EXPAND_SCRIPT for a in scripts)

    def test_waits_between_passes(self, settings):
        actions = build_render_actions(replace(settings, expand_passes=2))
        tail = actions[4:]
        assert [a["type"] for a in tail] == ["executeJavascript", "wait", "executeJavascript", "wait"]

    def test_script_expands_components(self):
        assert 'aria-expanded="false"' in EXPAND_SCRIPT
        assert "details:not([open])" in EXPAND_SCRIPT
        assert "components?" in EXPAND_SCRIPT


class TestFetchRendered:
    async def test_without_render_key_uses_plain_fetch(self, settings):
        async with mock_client({PAGE: html_response("<html>plain</html>")}) as client:
            assert await fetch_rendered(PAGE, client, settings) == "<html>plain</html>"
            assert all(r.method == "GET" for r in client.requests)

    async def test_renders_with_actions(self, settings):
        settings = replace(settings, render_api_key="fc-key")
        captured = {}

        def render(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["authorization"]
            return json_response({"success": True, "data": {"rawHtml": "<html>rendered</html>"}})

        async with mock_client({settings.render_api_url: render}) as client:
            html = await fetch_rendered(PAGE, client, settings)
        assert html == "<html>rendered</html>"
        assert captured["auth"] == "Bearer fc-key"
        assert captured["body"]["url"] == PAGE
        assert captured["body"]["formats"] == ["rawHtml"]
        assert len(captured["body"]["actions"]) == 10

    async def test_empty_render_falls_back(self, settings):
        settings = replace(settings, render_api_key="fc-key")
        routes = {
            settings.render_api_url: json_response({"success": True, "data": {}}),
            PAGE: html_response("<html>plain</html>"),
        }
        async with mock_client(routes) as client:
            assert await fetch_rendered(PAGE, client, settings) == "<html>plain</html>"

    async def test_non_json_render_falls_back(self, settings):
        settings = replace(settings, render_api_key="fc-key")
        routes = {
            settings.render_api_url: html_response("<html>gateway</html>"),
            PAGE: html_response("<html>plain</html>"),
        }
        async with mock_client(routes) as client:
            assert await fetch_rendered(PAGE, client, settings) == "<html>plain</html>"

    async def test_blocked_fallback_propagates(self, settings):
        async with mock_client({PAGE: html_response("no", status=403)}) as client:
            with pytest.raises(FetchBlocked):
                await fetch_rendered(PAGE, client, settings)
