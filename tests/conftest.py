"""Shared fixtures for statuspage-cloner tests."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from statuspage_cloner.config import Settings
from statuspage_cloner.providers.base import AIProvider, ChatResponse


@pytest.fixture()
def settings() -> Settings:
    """Minimal settings with dummy keys for testing. Rendering is off (no key)."""
    return Settings(
        openai_api_key="test-openai-key",
        anthropic_api_key="test-anthropic-key",
        groq_api_key="test-groq-key",
        gemini_api_key="test-gemini-key",
        completion_timeout=5,
    )


class FakeProvider(AIProvider):
    """Returns queued responses; dicts/lists are serialized, exceptions raised."""

    name = "fake"

    def __init__(self, settings: Settings, responses: list | None = None) -> None:
        super().__init__(settings)
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    def _chat(self, system, user, *, image=None, json_mode=True) -> ChatResponse:
        self.calls.append({"system": system, "user": user, "image": image})
        if not self.responses:
            return ChatResponse(text="{}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, ChatResponse):
            return item
        return ChatResponse(text=item if isinstance(item, str) else json.dumps(item))


@pytest.fixture()
def make_provider(settings) -> Callable[..., FakeProvider]:
    def factory(*responses) -> FakeProvider:
        return FakeProvider(settings, list(responses))

    return factory


Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


def mock_client(routes: dict[str, Route]) -> httpx.AsyncClient:
    """AsyncClient answering from a URL -> response map; anything else is a 404."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        url = str(request.url)
        route = routes.get(url) or routes.get(url.split("?")[0])
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request) if callable(route) else route

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client.requests = seen  # type: ignore[attr-defined]
    return client


def html_response(body: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=body, headers={"content-type": "text/html; charset=utf-8"})


def json_response(payload: object, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload)


# Three components; a "2 components" badge precedes two of them.
GROUPED_PAGE_HTML = """\
<!DOCTYPE html>
<html>
<head><title>Acme Status</title><script>var x = 1;</script></head>
<body>
  <nav><a href="/">Home</a></nav>
  <div class="components">
    <div class="group">
      <span class="name">Core Platform</span>
      <button class="toggle">2 components</button>
      <div class="component"><span>API</span><span class="status">Operational</span></div>
      <div class="component"><span>Dashboard</span><span class="status">Operational</span></div>
    </div>
    <div class="component"><span>Billing</span><span class="status">Degraded Performance</span></div>
  </div>
  <footer>Powered by Statuspage</footer>
</body>
</html>
"""

UPTIME_PAGE_HTML = """\
<html><body>
  <div class="uptime" data-since-value="2024-01-01">
    <div class="component">
      <span>API</span>
      <svg class="icon"><path d="M0 0"/></svg>
      <svg class="bars">
        <rect x="30" width="3" height="30" fill="#22c55e"/>
        <rect x="10" width="3" height="30" fill="#22c55e"/>
        <rect x="20" width="3" height="30" fill="#dc2626"/>
        <rect x="5" width="40" height="30" fill="transparent"/>
        <rect x="40" width="3" height="30" fill="#9ca3af"/>
      </svg>
      <span>99.95 % uptime</span>
    </div>
    <div class="component">
      <span>Dashboard</span>
      <svg class="bars">
        <rect x="0" class="day operational"/>
        <rect x="1" class="day major-outage"/>
      </svg>
    </div>
    <div class="component">
      <span>Billing</span>
    </div>
  </div>
</body></html>
"""

INCIDENT_DETAIL_HTML = """\
<html><body>
  <h1>Elevated API errors</h1>
  <div class="incident-updates">
    <div class="update-row">
      <div class="update-title">Resolved</div>
      <div class="update-body">
        <span class="whitespace-pre-wrap">This incident has been resolved.</span>
        <small>Posted <span class="ago">2 days ago</span>. <span>Jan <var>5</var>, <var>2024</var> - <var>11:30</var> UTC</span></small>
      </div>
    </div>
    <div class="update-row">
      <div class="update-title">Investigating</div>
      <div class="update-body">
        <span class="whitespace-pre-wrap">We are investigating elevated error rates.</span>
        <small>Posted <span class="ago">2 days ago</span>. <span>Jan <var>5</var>, <var>2024</var> - <var>10:00</var> UTC</span></small>
      </div>
    </div>
  </div>
  <div class="components-affected">This incident affected: API</div>
</body></html>
"""
