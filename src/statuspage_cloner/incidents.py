"""Recover incidents and their update timelines.

Two paths:

* Platform API: both incident listings are fetched in parallel, merged by
  id and mapped onto local enums. Updates that came back without a body
  are filled in from the incident's public detail page.
* HTML: the completion provider extracts incidents from the page (and
  from the incident-history page when one is linked); incidents with a
  detail link and at most one update get their detail page scraped.

Detail pages are always fetched in bounded batches; a batch finishes
completely before the next one starts.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from statuspage_cloner.cleaner import reduce_for_services
from statuspage_cloner.config import Settings
from statuspage_cloner.fetcher import FetchError, fetch_document, fetch_json
from statuspage_cloner.models import ExtractedIncident, IncidentUpdate, map_update_status
from statuspage_cloner.providers.base import AIProvider, ExtractionError

logger = logging.getLogger(__name__)

UNRESOLVED_PATH = "/api/v2/incidents/unresolved.json"
INCIDENTS_PATH = "/api/v2/incidents.json"

PLATFORM_IMPACTS = {
    "none": "operational",
    "minor": "degraded",
    "major": "partial",
    "critical": "major",
    "maintenance": "maintenance",
}

TIMELINE_STATUSES = {
    "investigating", "identified", "monitoring", "resolved", "update", "postmortem",
    "scheduled", "in progress", "verifying", "completed", "maintenance",
}

_TIMELINE_STOP_RE = re.compile(
    r"^(this incident affected|this scheduled maintenance affected|powered by|subscribe to updates|← current status)",
    re.IGNORECASE,
)
_HUMAN_DATE_RE = re.compile(
    r"(?P<mon>[A-Z][a-z]{2,8})\.?\s+(?P<day>\d{1,2}),\s+(?P<year>\d{4})"
    r"(?:\s*[-–,]\s*|\s+at\s+)(?P<time>\d{1,2}:\d{2})(?:\s*(?P<ampm>[AaPp][Mm]))?(?:\s+(?P<tz>[A-Z]{2,5}))?"
)
_ISO_DATETIME_RE = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?")
_UTC_NAMES = {None, "UTC", "GMT", "Z"}
_INLINE_TAGS = ["span", "var", "small", "a", "strong", "em", "b", "i", "time", "abbr", "code", "sup", "sub"]

HISTORY_HREF_RE = re.compile(r"(?:^|/)(?:history|incident-history|incidents(?:/history)?)/?(?:[?#]|$)", re.IGNORECASE)
HISTORY_TEXT_RE = re.compile(r"\b(incident history|past incidents|view history)\b", re.IGNORECASE)

INCIDENT_SYSTEM_PROMPT = """\
You extract incidents from status page HTML. Return JSON:
{
  "incidents": [
    {
      "title": "Incident title",
      "status": "investigating|identified|monitoring|maintenance|resolved",
      "impact": "operational|degraded|partial|major|maintenance",
      "created_at": "ISO-8601 timestamp of the first update",
      "detail_url": "href of the incident title link, or null",
      "updates": [
        {"status": "investigating|identified|monitoring|maintenance|resolved",
         "message": "Update text", "timestamp": "ISO-8601"}
      ]
    }
  ]
}
List incidents newest first and each incident's updates newest first.
Copy update messages verbatim. Use null for anything the page does not show.
If the page lists no incidents, return {"incidents": []}."""

INCIDENT_USER_PROMPT = "Extract all incidents and their update timelines from this HTML:"

DETAIL_SYSTEM_PROMPT = """\
You extract the update timeline of one incident from its status page. Return JSON:
{"updates": [{"status": "investigating|identified|monitoring|maintenance|resolved",
              "message": "Update text", "timestamp": "ISO-8601"}]}
Updates newest first. Copy messages verbatim."""

DETAIL_USER_PROMPT = "Extract the incident's update timeline from this HTML:"

Report = Callable[[str], None]
T = TypeVar("T")
R = TypeVar("R")


def map_platform_impact(value: object) -> str:
    """Map a platform impact onto a local impact, defaulting to major."""
    if not isinstance(value, str):
        return "major"
    return PLATFORM_IMPACTS.get(value.strip().lower(), "major")


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sort_newest_first(incidents: list[ExtractedIncident]) -> list[ExtractedIncident]:
    floor = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(incidents, key=lambda i: parse_timestamp(i.created_at) or floor, reverse=True)


async def gather_in_batches(
    items: list[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> list[R | BaseException]:
    """Run ``worker`` over items, ``batch_size`` at a time, settling each batch fully."""
    results: list[R | BaseException] = []
    size = max(1, batch_size)
    for start in range(0, len(items), size):
        batch = items[start:start + size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True))
    return results


# ---------------------------------------------------------------------------
# Timeline parsing
# ---------------------------------------------------------------------------


@dataclass
class TimelineEntry:
    status: str
    message: str = ""
    timestamp: str | None = None


def parse_human_date(line: str) -> str | None:
    """
    Parse a date in a timeline line, e.g. "Posted 2 days ago. Jan 5, 2024 - 10:00 UTC".

    Returns an ISO-8601 UTC timestamp, or None when the date cannot be
    read without guessing (unknown time zone, bad month name).
    """
    iso = _ISO_DATETIME_RE.search(line)
    if iso:
        parsed = parse_timestamp(iso.group(0).replace(" ", "T", 1))
        return parsed.isoformat() if parsed else None

    match = _HUMAN_DATE_RE.search(line)
    if not match or match.group("tz") not in _UTC_NAMES:
        return None
    time_part = match.group("time")
    time_fmt = "%H:%M"
    if match.group("ampm"):
        time_part = f"{time_part} {match.group('ampm').upper()}"
        time_fmt = "%I:%M %p"
    raw = f"{match.group('mon')} {match.group('day')} {match.group('year')} {time_part}"
    for month_fmt in ("%b", "%B"):
        try:
            parsed = datetime.strptime(raw, f"{month_fmt} %d %Y {time_fmt}")
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc).isoformat()
    return None


def _is_date_like(line: str) -> bool:
    return bool(_ISO_DATETIME_RE.search(line) or _HUMAN_DATE_RE.search(line))


def timeline_lines(html: str) -> list[str]:
    """Block-level text lines of a page, with inline markup merged into its line."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "svg", "head"]):
        tag.decompose()
    for tag in soup.find_all(_INLINE_TAGS):
        tag.unwrap()
    soup.smooth()
    lines = []
    for raw in soup.get_text("\n").splitlines():
        line = " ".join(raw.split())
        if line:
            lines.append(line)
    return lines


def parse_timeline(html: str) -> list[TimelineEntry]:
    """
    Split a detail page into updates on lines that are exactly a status keyword.

    Following lines form the message until the next keyword; date-like lines
    become the timestamp (or are dropped when unparseable), never message text.
    """
    entries: list[TimelineEntry] = []
    current: TimelineEntry | None = None
    message: list[str] = []

    def close() -> None:
        if current is not None:
            current.message = "\n".join(message).strip()
            entries.append(current)

    for line in timeline_lines(html):
        if line.lower() in TIMELINE_STATUSES:
            close()
            current = TimelineEntry(status=map_update_status(line))
            message = []
            continue
        if current is None:
            continue
        if _TIMELINE_STOP_RE.match(line):
            close()
            current = None
            continue
        if _is_date_like(line):
            if current.timestamp is None:
                current.timestamp = parse_human_date(line)
            continue
        message.append(line)
    close()
    return entries


def _with_updates(incident: ExtractedIncident, updates: list[IncidentUpdate]) -> ExtractedIncident:
    # Newest first: the first update sets the status, the last one opened the incident.
    changes: dict = {"updates": updates, "status": updates[0].status}
    if updates[-1].timestamp:
        changes["created_at"] = updates[-1].timestamp
    return incident.model_copy(update=changes)


def merge_timeline(incident: ExtractedIncident, scraped: list[TimelineEntry]) -> ExtractedIncident:
    """
    Fill an incident's updates from a scraped timeline.

    Where both exist at the same position, the existing timestamp and
    status are kept and only an empty message is replaced.
    """
    if not scraped:
        return incident
    if not incident.updates:
        updates = [
            IncidentUpdate(status=e.status, message=e.message, timestamp=e.timestamp or incident.created_at)
            for e in scraped
        ]
        return _with_updates(incident, updates)

    updates = []
    for idx, update in enumerate(incident.updates):
        if not update.message and idx < len(scraped) and scraped[idx].message:
            update = update.model_copy(update={"message": scraped[idx].message})
        updates.append(update)
    return incident.model_copy(update={"updates": updates})


# ---------------------------------------------------------------------------
# Platform API path
# ---------------------------------------------------------------------------


def incident_from_api(raw: dict) -> ExtractedIncident | None:
    title = (raw.get("name") or "").strip()
    if not title:
        return None

    updates: list[IncidentUpdate] = []
    for item in raw.get("incident_updates") or []:
        if not isinstance(item, dict):
            continue
        timestamp = item.get("display_at") or item.get("created_at")
        if not timestamp:
            continue
        updates.append(IncidentUpdate(status=item.get("status"), message=item.get("body") or "", timestamp=timestamp))
    updates.sort(key=lambda u: parse_timestamp(u.timestamp) or datetime.min.replace(tzinfo=timezone.utc), reverse=True)

    created_at = raw.get("created_at") or (updates[-1].timestamp if updates else _now_iso())
    return ExtractedIncident(
        title=title,
        status=raw.get("status"),
        impact=map_platform_impact(raw.get("impact")),
        created_at=created_at,
        updates=updates,
        api_id=str(raw["id"]) if raw.get("id") else None,
    )


def _incidents_of(payload: Any) -> list[dict]:
    if not isinstance(payload, dict) or not isinstance(payload.get("incidents"), list):
        return []
    return [i for i in payload["incidents"] if isinstance(i, dict)]


async def fetch_platform_incidents(origin: str, client: httpx.AsyncClient) -> list[ExtractedIncident] | None:
    """
    Read both incident listings and merge them by id, newest first.

    Returns None when neither listing answered.
    """
    unresolved, listing = await asyncio.gather(
        fetch_json(f"{origin}{UNRESOLVED_PATH}", client),
        fetch_json(f"{origin}{INCIDENTS_PATH}", client),
    )
    if unresolved is None and listing is None:
        return None

    incidents: list[ExtractedIncident] = []
    seen: set[str] = set()
    for raw in _incidents_of(unresolved) + _incidents_of(listing):
        key = str(raw.get("id") or raw.get("name") or "")
        if not key or key in seen:
            continue
        incident = incident_from_api(raw)
        if incident is not None:
            seen.add(key)
            incidents.append(incident)
    logger.info("Platform API returned %d incidents", len(incidents))
    return sort_newest_first(incidents)


def _needs_messages(incident: ExtractedIncident) -> bool:
    return not incident.updates or any(not u.message for u in incident.updates)


async def fill_messages_from_detail_pages(
    incidents: list[ExtractedIncident],
    origin: str,
    client: httpx.AsyncClient,
    batch_size: int,
) -> list[ExtractedIncident]:
    """Scrape detail pages for API incidents whose updates have no text."""
    targets = [i for i in incidents if i.api_id and _needs_messages(i)]
    if not targets:
        return incidents
    logger.info("Scraping %d incident detail pages for missing update text", len(targets))

    async def scrape(incident: ExtractedIncident) -> ExtractedIncident:
        html, _ = await fetch_document(f"{origin}/incidents/{incident.api_id}", client)
        return merge_timeline(incident, parse_timeline(html))

    results = await gather_in_batches(targets, scrape, batch_size)
    enriched: dict[int, ExtractedIncident] = {}
    for incident, result in zip(targets, results):
        if isinstance(result, BaseException):
            logger.warning("Detail page for %r failed: %s", incident.title, result)
            continue
        enriched[id(incident)] = result
    return [enriched.get(id(i), i) for i in incidents]


# ---------------------------------------------------------------------------
# HTML path
# ---------------------------------------------------------------------------


def _ai_updates(raw_updates: Any, fallback_ts: str | None) -> list[IncidentUpdate]:
    updates: list[IncidentUpdate] = []
    for item in raw_updates if isinstance(raw_updates, list) else []:
        if not isinstance(item, dict):
            continue
        timestamp = item.get("timestamp") or fallback_ts
        if not timestamp:
            continue
        updates.append(IncidentUpdate(status=item.get("status"), message=item.get("message") or "", timestamp=str(timestamp)))
    return updates


def incident_from_ai(raw: dict, base_url: str) -> ExtractedIncident | None:
    title = str(raw.get("title") or "").strip()
    if not title:
        return None
    created_at = raw.get("created_at")
    updates = _ai_updates(raw.get("updates"), created_at)
    if not created_at:
        created_at = updates[-1].timestamp if updates else _now_iso()
    detail_url = raw.get("detail_url")
    return ExtractedIncident(
        title=title,
        status=raw.get("status") or (updates[0].status if updates else None),
        impact=raw.get("impact"),
        created_at=str(created_at),
        updates=updates,
        detail_url=urljoin(base_url, detail_url) if isinstance(detail_url, str) and detail_url.strip() else None,
    )


async def extract_incidents_with_ai(html: str, base_url: str, provider: AIProvider) -> list[ExtractedIncident]:
    reduced = reduce_for_services(html)
    logger.info("AI incident extraction over %d chars from %s", len(reduced), base_url)
    parsed = await provider.complete(INCIDENT_SYSTEM_PROMPT, INCIDENT_USER_PROMPT, reduced)
    if isinstance(parsed, list):
        parsed = {"incidents": parsed}
    if not isinstance(parsed, dict):
        return []
    incidents = [incident_from_ai(raw, base_url) for raw in _incidents_of(parsed)]
    return [i for i in incidents if i is not None]


def find_history_link(html: str, base_url: str) -> str | None:
    """Find a link to the page's incident history, resolved against the page URL."""
    soup = BeautifulSoup(html, "lxml")
    page = urlparse(base_url)
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "mailto:", "javascript:")):
            continue
        absolute = urljoin(base_url, href)
        target = urlparse(absolute)
        if target.netloc != page.netloc or target.path.rstrip("/") == page.path.rstrip("/"):
            continue
        if HISTORY_HREF_RE.search(target.path) or HISTORY_TEXT_RE.search(anchor.get_text(" ")):
            return absolute
    return None


def merge_by_title(primary: list[ExtractedIncident], extra: list[ExtractedIncident]) -> list[ExtractedIncident]:
    seen = {i.title.casefold() for i in primary}
    merged = list(primary)
    for incident in extra:
        key = incident.title.casefold()
        if key not in seen:
            seen.add(key)
            merged.append(incident)
    return merged


async def enrich_from_detail_links(
    incidents: list[ExtractedIncident],
    client: httpx.AsyncClient,
    provider: AIProvider | None,
    batch_size: int,
) -> list[ExtractedIncident]:
    """Fetch detail pages of incidents that have a link but at most one update."""
    targets = [i for i in incidents if i.detail_url and len(i.updates) <= 1]
    if not targets:
        return incidents
    logger.info("Fetching %d incident detail pages for fuller timelines", len(targets))

    async def enrich(incident: ExtractedIncident) -> ExtractedIncident:
        html, _ = await fetch_document(incident.detail_url, client)
        scraped = parse_timeline(html)
        if len(scraped) > len(incident.updates):
            return merge_timeline(incident.model_copy(update={"updates": []}), scraped)
        if provider is None:
            return incident
        parsed = await provider.complete(DETAIL_SYSTEM_PROMPT, DETAIL_USER_PROMPT, reduce_for_services(html))
        updates = _ai_updates(parsed.get("updates") if isinstance(parsed, dict) else None, incident.created_at)
        if len(updates) <= len(incident.updates):
            return incident
        return _with_updates(incident, updates)

    results = await gather_in_batches(targets, enrich, batch_size)
    enriched: dict[int, ExtractedIncident] = {}
    for incident, result in zip(targets, results):
        if isinstance(result, BaseException):
            logger.warning("Detail page for %r failed: %s", incident.title, result)
            continue
        enriched[id(incident)] = result
    return [enriched.get(id(i), i) for i in incidents]


async def extract_incidents_from_html(
    html: str,
    base_url: str,
    client: httpx.AsyncClient,
    provider: AIProvider,
    settings: Settings,
    report: Report | None = None,
) -> list[ExtractedIncident]:
    incidents = await extract_incidents_with_ai(html, base_url, provider)

    history_url = find_history_link(html, base_url)
    if history_url:
        if report:
            report("Found incident history page, extracting past incidents...")
        try:
            history_html, _ = await fetch_document(history_url, client)
            incidents = merge_by_title(incidents, await extract_incidents_with_ai(history_html, history_url, provider))
        except (FetchError, ExtractionError) as exc:
            logger.warning("Incident history at %s failed: %s", history_url, exc)

    return await enrich_from_detail_links(incidents, client, provider, settings.detail_batch_size)


def strip_transient(incidents: list[ExtractedIncident]) -> list[ExtractedIncident]:
    return [i.model_copy(update={"detail_url": None, "api_id": None}) for i in incidents]


async def extract_incidents(
    url: str,
    client: httpx.AsyncClient,
    settings: Settings,
    *,
    html: str | None = None,
    origin: str | None = None,
    provider: AIProvider | None = None,
    report: Report | None = None,
) -> list[ExtractedIncident]:
    """
    Extract incidents, newest first, with transient fields stripped.

    Args:
        url: The status page URL (base for relative links).
        client: Shared HTTP client.
        settings: Batch size for detail-page scraping.
        html: Page markup for the HTML path.
        origin: Platform API origin; when given, the API path is tried first.
        provider: Completion provider for the HTML path.
        report: Optional progress callback.
    """
    if origin is not None:
        incidents = await fetch_platform_incidents(origin, client)
        if incidents is not None:
            if any(_needs_messages(i) for i in incidents) and report:
                report("Fetching incident details for updates without text...")
            incidents = await fill_messages_from_detail_pages(incidents, origin, client, settings.detail_batch_size)
            return strip_transient(incidents)

    if html is None or provider is None:
        logger.info("No incident source available for %s", url)
        return []
    incidents = await extract_incidents_from_html(html, url, client, provider, settings, report)
    return strip_transient(sort_newest_first(incidents))
