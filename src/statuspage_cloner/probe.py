"""Detect a hosted status-page platform API and read its components.

Atlassian Statuspage (and the many pages built on it) serve
``/api/v2/summary.json`` and ``/api/v2/components.json`` at the page
origin. The summary endpoint is sometimes truncated, so both are fetched
in parallel and any components missing from the summary are merged in
by id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx

from statuspage_cloner.fetcher import fetch_json
from statuspage_cloner.models import ExtractedResult, ExtractedService, map_service_status

logger = logging.getLogger(__name__)

SUMMARY_PATH = "/api/v2/summary.json"
COMPONENTS_PATH = "/api/v2/components.json"


@dataclass
class PlatformComponent:
    id: str
    name: str
    status: str
    position: int = 0
    group_id: str | None = None
    is_group: bool = False


@dataclass
class PlatformData:
    """What the platform API told us about a page."""

    origin: str
    name: str = ""
    components: list[PlatformComponent] = field(default_factory=list)

    @property
    def groups(self) -> dict[str, PlatformComponent]:
        return {c.id: c for c in self.components if c.is_group}

    @property
    def services(self) -> list[PlatformComponent]:
        return [c for c in self.components if not c.is_group]

    @property
    def has_hierarchy(self) -> bool:
        """True when at least one service points at a group the API also listed."""
        groups = self.groups
        return any(c.group_id in groups for c in self.services)

    def to_result(self) -> ExtractedResult:
        """Flat services in API order, group names resolved from group ids."""
        groups = self.groups
        services = [
            ExtractedService(
                name=c.name,
                status=c.status,
                group=groups[c.group_id].name if c.group_id in groups else None,
            )
            for c in self.services
        ]
        return ExtractedResult(name=self.name, services=services)


def origin_of(url: str) -> str:
    parsed = urlparse(url if "://" in url else f"https://{url}")
    return f"{parsed.scheme}://{parsed.netloc}"


def _parse_component(raw: dict) -> PlatformComponent | None:
    comp_id = raw.get("id")
    name = (raw.get("name") or "").strip()
    if not comp_id or not name:
        return None
    try:
        position = int(raw.get("position") or 0)
    except (TypeError, ValueError):
        position = 0
    return PlatformComponent(
        id=str(comp_id),
        name=name,
        status=map_service_status(raw.get("status")),
        position=position,
        group_id=str(raw["group_id"]) if raw.get("group_id") else None,
        is_group=bool(raw.get("group")),
    )


def _components_of(payload: object) -> list[dict] | None:
    if not isinstance(payload, dict):
        return None
    components = payload.get("components")
    if not isinstance(components, list):
        return None
    return [c for c in components if isinstance(c, dict)]


async def probe_known_platform(url: str, client: httpx.AsyncClient) -> PlatformData | None:
    """
    Try the structured API at the URL's origin.

    Returns:
        PlatformData (possibly with zero components) when the API answered,
        or None when there is no usable API and generic scraping should run.
    """
    origin = origin_of(url)
    summary, listing = await asyncio.gather(
        fetch_json(f"{origin}{SUMMARY_PATH}", client),
        fetch_json(f"{origin}{COMPONENTS_PATH}", client),
    )

    primary = _components_of(summary)
    if primary is None:
        logger.info("No platform API at %s", origin)
        return None

    components: list[PlatformComponent] = []
    seen: set[str] = set()
    for raw in primary:
        comp = _parse_component(raw)
        if comp and comp.id not in seen:
            seen.add(comp.id)
            components.append(comp)

    extra = 0
    for raw in _components_of(listing) or []:
        comp = _parse_component(raw)
        if comp and comp.id not in seen:
            seen.add(comp.id)
            components.append(comp)
            extra += 1
    if extra:
        logger.info("Components listing added %d entries missing from the summary", extra)

    page = summary.get("page") if isinstance(summary, dict) else None
    name = (page or {}).get("name", "") if isinstance(page, dict) else ""
    logger.info("Platform API at %s returned %d components", origin, len(components))
    return PlatformData(origin=origin, name=name or "", components=components)
