"""Fetch status pages: plain GET with header rotation, plus a headless-render path.

Some status pages block anything that does not look like a browser, so
``fetch_document`` walks a fixed list of header profiles and takes the
first 2xx. JavaScript-heavy pages go through ``fetch_rendered``, which
asks a Firecrawl-compatible scrape API to load the page, scroll it and
repeatedly expand collapsed groups. Rendering is best-effort: any
failure there falls back to the plain fetch.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from statuspage_cloner.config import Settings

logger = logging.getLogger(__name__)

HEADER_PROFILES: list[tuple[str, dict[str, str]]] = [
    (
        "browser",
        {
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
            ),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Upgrade-Insecure-Requests": "1",
            "Cache-Control": "max-age=0",
        },
    ),
    (
        "crawler",
        {
            "User-Agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
            "Accept": "text/html",
        },
    ),
    (
        "preview-bot",
        {
            "User-Agent": "facebookexternalhit/1.1",
            "Accept": "text/html",
        },
    ),
]

# Runs inside the rendered page. Clicks every collapsed toggle, opens
# <details>, clicks "N components" expanders and unhides collapsed nodes.
EXPAND_SCRIPT = """\
(() => {
  document.querySelectorAll('[aria-expanded="false"]').forEach((el) => {
    try { el.click(); } catch (e) {}
  });
  document.querySelectorAll('details:not([open])').forEach((el) => { el.open = true; });
  document.querySelectorAll('button, a, span, div').forEach((el) => {
    if (el.children.length === 0 && /\\d+\\s*components?/i.test(el.textContent || '')) {
      try { el.click(); } catch (e) {}
    }
  });
  document.querySelectorAll('.hidden, .collapsed').forEach((el) => {
    el.classList.remove('hidden');
    el.classList.remove('collapsed');
  });
})();"""


class FetchError(Exception):
    """Raised when a document cannot be retrieved."""


class FetchBlocked(FetchError):
    """Raised when every header profile was rejected by the target site."""


class RenderError(FetchError):
    """Raised when the headless-rendering capability fails."""


def make_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client shared by all fetches of one pipeline run."""
    return httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=True)


async def fetch_document(url: str, client: httpx.AsyncClient) -> tuple[str, str]:
    """
    GET a URL, rotating header profiles until one gets a 2xx.

    Returns:
        (body text, content type)

    Raises:
        FetchBlocked: every profile was rejected or errored.
    """
    for profile, headers in HEADER_PROFILES:
        try:
            response = await client.get(url, headers=headers, follow_redirects=True)
        except httpx.HTTPError as exc:
            logger.warning("Fetch of %s with %s profile failed: %s", url, profile, exc)
            continue
        if response.is_success:
            logger.info("Fetched %d bytes from %s (%s profile)", len(response.text), url, profile)
            return response.text, response.headers.get("content-type", "")
        logger.warning("Fetch of %s with %s profile got %d, trying next", url, profile, response.status_code)

    raise FetchBlocked("All fetch attempts were blocked by the target site. Try a different URL.")


async def fetch_json(url: str, client: httpx.AsyncClient) -> Any | None:
    """GET a JSON endpoint. Returns None on any non-success or non-JSON answer."""
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        logger.debug("JSON fetch of %s failed: %s", url, exc)
        return None
    if not response.is_success:
        logger.debug("JSON fetch of %s got %d", url, response.status_code)
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        logger.debug("JSON fetch of %s returned non-JSON content", url)
        return None


def build_render_actions(settings: Settings, script: str = EXPAND_SCRIPT) -> list[dict]:
    """Settle, scroll down and back up, then run the expansion script a fixed number of times."""
    actions: list[dict] = [
        {"type": "wait", "milliseconds": settings.render_wait_ms},
        {"type": "scroll", "direction": "down"},
        {"type": "wait", "milliseconds": 1000},
        {"type": "scroll", "direction": "up"},
    ]
    for _ in range(settings.expand_passes):
        actions.append({"type": "executeJavascript", "script": script})
        actions.append({"type": "wait", "milliseconds": settings.render_wait_ms})
    return actions


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.HTTPStatusError)),
    reraise=True,
)
async def _render(url: str, client: httpx.AsyncClient, settings: Settings, script: str) -> str:
    payload = {
        "url": url,
        "formats": ["rawHtml"],
        "waitFor": settings.render_wait_ms,
        "timeout": settings.render_timeout * 1000,
        "actions": build_render_actions(settings, script),
    }
    response = await client.post(
        settings.render_api_url,
        json=payload,
        headers={"Authorization": f"Bearer {settings.render_api_key}"},
        timeout=settings.render_timeout,
    )
    response.raise_for_status()
    body = response.json()
    data = (body.get("data") if isinstance(body, dict) else None) or {}
    html = data.get("rawHtml") or data.get("html") or ""
    if not html:
        raise RenderError(f"Renderer returned no HTML for {url}")
    return html


async def fetch_rendered(
    url: str,
    client: httpx.AsyncClient,
    settings: Settings,
    script: str = EXPAND_SCRIPT,
) -> str:
    """
    Render a page headlessly with the expansion script applied.

    Falls back to ``fetch_document`` when rendering is not configured or
    fails; only FetchBlocked from that fallback can escape.
    """
    if settings.can_render:
        try:
            html = await _render(url, client, settings, script)
            logger.info("Rendered %d bytes from %s", len(html), url)
            return html
        except (httpx.HTTPError, RenderError, ValueError) as exc:
            logger.warning("Rendering %s failed, falling back to plain fetch: %s", url, exc)

    html, _ = await fetch_document(url, client)
    return html
