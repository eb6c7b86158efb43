"""Turn an extracted result into insert payloads for a status page.

The storage backend is anything with ``insert(table, rows) -> ids``; ids
come back in row order. Rows are inserted per entity group: services,
uptime days, incidents, incident updates. A failure inserting services
or incidents propagates; uptime and update rows are supplementary and
their failures are only logged, so a page can end up partially saved.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

from statuspage_cloner.models import (
    DiagramAnalysis,
    ExtractedIncident,
    ExtractedResult,
    ExtractedService,
    IncidentAnalysis,
)

logger = logging.getLogger(__name__)

DEFAULT_UPTIME = {"operational": 99.99, "degraded": 99.5}
FALLBACK_UPTIME = 99.0

Row = dict[str, Any]


class RowStore(Protocol):
    def insert(self, table: str, rows: list[Row]) -> list[str]:
        """Insert rows and return their generated ids in the same order."""
        ...


def default_uptime(service: ExtractedService) -> float:
    if service.uptime_pct is not None:
        return service.uptime_pct
    return DEFAULT_UPTIME.get(service.status, FALLBACK_UPTIME)


def service_rows(services: list[ExtractedService], page_id: str) -> list[Row]:
    return [
        {
            "name": s.name,
            "status": s.status,
            "status_page_id": page_id,
            "display_order": i,
            "uptime": default_uptime(s),
        }
        for i, s in enumerate(services)
    ]


def uptime_rows(
    service: ExtractedService,
    service_id: str,
    start_date: str | None,
    today: date | None = None,
) -> list[Row]:
    """
    One row per known day. Bar i is ``start_date + i`` days; without a start
    date the newest bar is today.
    """
    days = service.uptime_days
    if start_date:
        first = date.fromisoformat(start_date)
    else:
        first = (today or date.today()) - timedelta(days=len(days) - 1)
    return [
        {"service_id": service_id, "day": (first + timedelta(days=i)).isoformat(), "up": up}
        for i, up in enumerate(days)
        if up is not None
    ]


def incident_row(incident: ExtractedIncident, page_id: str, now: str | None = None) -> Row:
    # Updates are newest first, so the last one opened the incident.
    created_at = incident.updates[-1].timestamp if incident.updates else incident.created_at
    if not created_at:
        created_at = now or datetime.now(timezone.utc).isoformat()
    return {
        "status_page_id": page_id,
        "title": incident.title,
        "status": incident.status,
        "impact": incident.impact,
        "created_at": created_at,
    }


def update_rows(incident: ExtractedIncident, incident_id: str) -> list[Row]:
    return [
        {"incident_id": incident_id, "status": u.status, "message": u.message, "created_at": u.timestamp}
        for u in incident.updates
    ]


def save_result(
    result: ExtractedResult,
    store: RowStore,
    page_id: str,
    today: date | None = None,
) -> dict[str, list[str]]:
    """
    Insert everything a result describes under an existing status page.

    Returns:
        Generated ids per table.
    """
    saved: dict[str, list[str]] = {"services": [], "uptime_days": [], "incidents": [], "incident_updates": []}

    if result.services:
        service_ids = store.insert("services", service_rows(result.services, page_id))
        saved["services"] = service_ids
        days: list[Row] = []
        for service, service_id in zip(result.services, service_ids):
            days.extend(uptime_rows(service, service_id, result.start_date, today))
        if days:
            try:
                saved["uptime_days"] = store.insert("uptime_days", days)
            except Exception as exc:
                logger.error("Failed to insert %d uptime rows: %s", len(days), exc)

    for incident in result.incidents:
        (incident_id,) = store.insert("incidents", [incident_row(incident, page_id)])
        saved["incidents"].append(incident_id)
        if not incident.updates:
            continue
        try:
            saved["incident_updates"].extend(store.insert("incident_updates", update_rows(incident, incident_id)))
        except Exception as exc:
            logger.error("Failed to insert updates for incident %r: %s", incident.title, exc)

    logger.info(
        "Saved page %s: %d services, %d uptime days, %d incidents",
        page_id, len(saved["services"]), len(saved["uptime_days"]), len(saved["incidents"]),
    )
    return saved


def result_from_incident(analysis: IncidentAnalysis) -> ExtractedResult:
    """A page holding the analyzed incident and the services it affects."""
    updates = list(analysis.updates)
    incident = ExtractedIncident(
        title=analysis.title,
        status=analysis.status,
        impact=analysis.impact,
        created_at=updates[-1].timestamp if updates else datetime.now(timezone.utc).isoformat(),
        updates=updates,
    )
    return ExtractedResult(
        name=analysis.organization or "",
        services=[ExtractedService(name=s.name, status=s.status) for s in analysis.services],
        incidents=[incident],
    )


def result_from_diagram(analysis: DiagramAnalysis) -> ExtractedResult:
    """A page holding the services found in a diagram."""
    return ExtractedResult(
        name=analysis.organization,
        services=[ExtractedService(name=s.name, status=s.status, group=s.group) for s in analysis.services],
    )
