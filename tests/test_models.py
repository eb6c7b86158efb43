"""Tests for statuspage_cloner.models module."""

from __future__ import annotations

import pytest

from statuspage_cloner.models import (
    ErrorEvent,
    ExtractedIncident,
    ExtractedResult,
    ExtractedService,
    IncidentAnalysis,
    IncidentUpdate,
    ProgressEvent,
    ResultEvent,
    map_service_status,
    map_update_status,
)


class TestMapServiceStatus:
    @pytest.mark.parametrize(
        "cue, expected",
        [
            ("green", "operational"),
            ("Up", "operational"),
            ("operational", "operational"),
            ("yellow", "degraded"),
            ("Degraded Performance", "degraded"),
            ("slow responses", "degraded"),
            ("orange", "partial"),
            ("partial_outage", "partial"),
            ("Partial Outage", "partial"),
            ("red", "major"),
            ("down", "major"),
            ("major_outage", "major"),
            ("blue", "maintenance"),
            ("under_maintenance", "maintenance"),
            ("Scheduled", "maintenance"),
        ],
    )
    def test_lexical_cues(self, cue, expected):
        assert map_service_status(cue) == expected

    def test_ambiguous_defaults_to_operational(self):
        assert map_service_status("something odd") == "operational"
        assert map_service_status("") == "operational"
        assert map_service_status(None) == "operational"


class TestMapUpdateStatus:
    def test_local_values_pass_through(self):
        for status in ("investigating", "identified", "monitoring", "maintenance", "resolved"):
            assert map_update_status(status) == status

    def test_platform_values(self):
        assert map_update_status("postmortem") == "resolved"
        assert map_update_status("completed") == "resolved"
        assert map_update_status("in_progress") == "maintenance"
        assert map_update_status("In progress") == "maintenance"
        assert map_update_status("scheduled") == "maintenance"

    def test_unknown_falls_back_to_investigating(self):
        assert map_update_status("weird") == "investigating"
        assert map_update_status(None) == "investigating"


class TestExtractedService:
    def test_defaults(self):
        s = ExtractedService(name="API")
        assert s.status == "operational"
        assert s.group is None
        assert s.uptime_pct is None
        assert s.uptime_days == []

    def test_status_coerced(self):
        assert ExtractedService(name="API", status="major_outage").status == "major"

    def test_blank_group_is_none(self):
        assert ExtractedService(name="API", group="  ").group is None

    def test_pct_bounds(self):
        assert ExtractedService(name="A", uptime_pct="99.9%").uptime_pct == 99.9
        assert ExtractedService(name="A", uptime_pct=150).uptime_pct is None
        assert ExtractedService(name="A", uptime_pct="n/a").uptime_pct is None

    def test_tristate_days(self):
        s = ExtractedService(name="A", uptime_days=[True, False, None])
        assert s.uptime_days == [True, False, None]


class TestExtractedIncident:
    def test_transient_fields_not_serialized(self):
        inc = ExtractedIncident(
            title="Outage",
            created_at="2024-01-05T10:00:00+00:00",
            detail_url="https://status.example.com/incidents/1",
            api_id="abc",
        )
        dumped = inc.model_dump()
        assert "detail_url" not in dumped
        assert "api_id" not in dumped
        assert inc.detail_url.endswith("/incidents/1")

    def test_unknown_impact_is_major(self):
        inc = ExtractedIncident(title="x", created_at="2024-01-05T10:00:00Z", impact="catastrophic")
        assert inc.impact == "major"

    def test_valid_impact_kept(self):
        inc = ExtractedIncident(title="x", created_at="2024-01-05T10:00:00Z", impact="Degraded")
        assert inc.impact == "degraded"

    def test_update_none_message(self):
        update = IncidentUpdate(status="update", message=None, timestamp="2024-01-05T10:00:00Z")
        assert update.message == ""
        assert update.status == "monitoring"


class TestEvents:
    def test_progress_event_json(self):
        assert ProgressEvent(message="hi").model_dump() == {"type": "progress", "message": "hi"}

    def test_result_event(self):
        event = ResultEvent(data=ExtractedResult(name="Acme"))
        dumped = event.model_dump()
        assert dumped["type"] == "result"
        assert dumped["success"] is True
        assert dumped["data"]["name"] == "Acme"
        assert dumped["data"]["start_date"] is None

    def test_error_event(self):
        event = ErrorEvent(message="boom", retryable=True)
        assert event.type == "error"
        assert event.retryable is True


class TestIncidentAnalysis:
    def test_operational_impact_becomes_major(self):
        analysis = IncidentAnalysis(title="x", impact="operational")
        assert analysis.impact == "major"

    def test_affected_service_status(self):
        analysis = IncidentAnalysis(title="x", services=[{"name": "API", "status": "partial"}])
        assert analysis.services[0].status == "partial"
        assert analysis.organization is None
