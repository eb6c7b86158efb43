"""Pydantic models for the cloning pipeline."""

from __future__ import annotations

import re
from typing import Literal, Union

from pydantic import BaseModel, Field, field_validator

ServiceStatus = Literal["operational", "degraded", "partial", "major", "maintenance"]
IncidentStatus = Literal["investigating", "identified", "monitoring", "maintenance", "resolved"]

SERVICE_STATUSES: tuple[str, ...] = ("operational", "degraded", "partial", "major", "maintenance")
INCIDENT_STATUSES: tuple[str, ...] = ("investigating", "identified", "monitoring", "maintenance", "resolved")

# Checked in order; the first cue found wins. "partial outage" must hit
# partial before the generic outage/major cue.
_STATUS_CUES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(blue|maintenance|scheduled)\b"), "maintenance"),
    (re.compile(r"\b(orange|partial)"), "partial"),
    (re.compile(r"\b(yellow|degraded|slow)"), "degraded"),
    (re.compile(r"\b(red|down|major|outage)\b"), "major"),
    (re.compile(r"\b(green|up|operational)\b"), "operational"),
]


def map_service_status(value: object) -> str:
    """Map a free-form status cue to a service status, defaulting to operational."""
    if not isinstance(value, str):
        return "operational"
    text = value.strip().lower().replace("_", " ")
    if text in SERVICE_STATUSES:
        return text
    for pattern, status in _STATUS_CUES:
        if pattern.search(text):
            return status
    return "operational"


def map_update_status(value: object) -> str:
    """Map a free-form incident status to a local one, defaulting to investigating."""
    if not isinstance(value, str):
        return "investigating"
    text = value.strip().lower().replace(" ", "_")
    if text in INCIDENT_STATUSES:
        return text
    return {
        "postmortem": "resolved",
        "completed": "resolved",
        "scheduled": "maintenance",
        "in_progress": "maintenance",
        "verifying": "maintenance",
        "update": "monitoring",
    }.get(text, "investigating")


class ExtractedService(BaseModel):
    """One service (component) on a status page; ``group`` encodes hierarchy."""

    name: str
    status: ServiceStatus = "operational"
    group: str | None = None
    uptime_pct: float | None = None
    uptime_days: list[bool | None] = Field(
        default_factory=list,
        description="Per-day availability, oldest first (True=up, False=down, None=no data)",
    )

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_service_status(value)

    @field_validator("group", mode="before")
    @classmethod
    def _blank_group(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("uptime_pct", mode="before")
    @classmethod
    def _bound_pct(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            pct = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        return pct if 0 <= pct <= 100 else None


class IncidentUpdate(BaseModel):
    status: IncidentStatus = "investigating"
    message: str = ""
    timestamp: str

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_update_status(value)

    @field_validator("message", mode="before")
    @classmethod
    def _none_message(cls, value: object) -> object:
        return "" if value is None else value


class ExtractedIncident(BaseModel):
    """An incident with its update timeline, newest update first.

    ``detail_url`` and ``api_id`` only live for the duration of the
    extraction and are excluded from serialized output.
    """

    title: str
    status: IncidentStatus = "investigating"
    impact: ServiceStatus = "major"
    created_at: str
    updates: list[IncidentUpdate] = Field(default_factory=list)
    detail_url: str | None = Field(default=None, exclude=True)
    api_id: str | None = Field(default=None, exclude=True)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_update_status(value)

    @field_validator("impact", mode="before")
    @classmethod
    def _coerce_impact(cls, value: object) -> str:
        if isinstance(value, str) and value.strip().lower() in SERVICE_STATUSES:
            return value.strip().lower()
        return "major"


class ExtractedResult(BaseModel):
    """Final payload handed to the persistence layer."""

    name: str = ""
    services: list[ExtractedService] = Field(default_factory=list)
    incidents: list[ExtractedIncident] = Field(default_factory=list)
    start_date: str | None = Field(
        default=None,
        description="Calendar date (YYYY-MM-DD) of the oldest uptime bar",
    )


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    message: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    success: bool = True
    data: ExtractedResult


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    retryable: bool = False


CloneEvent = Union[ProgressEvent, ResultEvent, ErrorEvent]


class DiagramService(BaseModel):
    name: str
    status: ServiceStatus = "operational"
    group: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_service_status(value)


class DiagramAnalysis(BaseModel):
    """What the AI returns for an architecture diagram."""

    organization: str = ""
    services: list[DiagramService] = Field(default_factory=list)
    summary: str = ""


class AffectedService(BaseModel):
    name: str
    status: ServiceStatus = "major"

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_service_status(value)


class IncidentAnalysis(BaseModel):
    """What the AI returns for a free-text incident report."""

    title: str
    status: IncidentStatus = "investigating"
    impact: ServiceStatus = "major"
    services: list[AffectedService] = Field(default_factory=list)
    updates: list[IncidentUpdate] = Field(default_factory=list)
    organization: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> str:
        return map_update_status(value)

    @field_validator("impact", mode="before")
    @classmethod
    def _coerce_impact(cls, value: object) -> str:
        mapped = map_service_status(value)
        return "major" if mapped == "operational" else mapped
