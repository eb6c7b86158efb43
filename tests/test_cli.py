"""Tests for statuspage_cloner.cli module."""

from __future__ import annotations

import json
from dataclasses import replace
from io import StringIO
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from statuspage_cloner.cli import build_parser, main
from statuspage_cloner.models import (
    DiagramAnalysis,
    DiagramService,
    ErrorEvent,
    ExtractedResult,
    ExtractedService,
    IncidentAnalysis,
    ProgressEvent,
    ResultEvent,
)


def fake_clone(*events):
    calls = []

    async def clone_page(url, settings, provider=None):
        calls.append({"url": url, "settings": settings, "provider": provider})
        for event in events:
            yield event

    clone_page.calls = calls
    return clone_page


RESULT = ExtractedResult(name="Acme", services=[ExtractedService(name="API")])


class TestBuildParser:
    def test_requires_command(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args([])

    def test_clone_args(self):
        args = build_parser().parse_args(["clone", "status.example.com", "-o", "out.json", "-p", "ollama"])
        assert args.command == "clone"
        assert args.url == "status.example.com"
        assert args.output == "out.json"
        assert args.provider == "ollama"

    def test_unknown_provider_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["clone", "x", "--provider", "nope"])

    def test_incident_and_diagram(self):
        parser = build_parser()
        assert parser.parse_args(["incident", "API down"]).text == "API down"
        assert parser.parse_args(["diagram", "arch.png"]).image == "arch.png"

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve"])
        assert args.host == "127.0.0.1"
        assert args.port == 8000

    def test_default_values(self):
        args = build_parser().parse_args(["clone", "x"])
        assert args.provider is None
        assert args.no_render is False
        assert args.output is None
        assert args.verbose is False


class TestMainClone:
    def test_outputs_json_to_stdout(self, settings):
        clone = fake_clone(ProgressEvent(message="Connecting..."), ResultEvent(data=RESULT))
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.resolve_provider", return_value=None), \
             patch("statuspage_cloner.cli.clone_page", clone), \
             patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = main(["clone", "status.example.com"])

        assert result == 0
        parsed = json.loads(mock_stdout.getvalue())
        assert parsed["name"] == "Acme"
        assert parsed["services"][0]["name"] == "API"
        assert clone.calls[0]["url"] == "status.example.com"

    def test_writes_to_file(self, settings, tmp_path):
        outfile = tmp_path / "page.json"
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.resolve_provider", return_value=None), \
             patch("statuspage_cloner.cli.clone_page", fake_clone(ResultEvent(data=RESULT))):
            result = main(["clone", "status.example.com", "-o", str(outfile)])

        assert result == 0
        assert json.loads(outfile.read_text())["name"] == "Acme"

    def test_error_event_exits_nonzero(self, settings):
        clone = fake_clone(ErrorEvent(message="No services found on this status page."))
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.resolve_provider", return_value=None), \
             patch("statuspage_cloner.cli.clone_page", clone), \
             patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            result = main(["clone", "status.example.com"])

        assert result == 1
        assert "Error: No services found" in mock_stderr.getvalue()

    def test_flags_override_settings(self, settings):
        clone = fake_clone(ResultEvent(data=RESULT))
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.resolve_provider", return_value=None) as mock_resolve, \
             patch("statuspage_cloner.cli.clone_page", clone), \
             patch("sys.stdout", new_callable=StringIO):
            main(["clone", "x", "--no-render", "--provider", "anthropic"])

        passed = clone.calls[0]["settings"]
        assert passed.render_js is False
        assert passed.default_provider == "anthropic"
        assert mock_resolve.call_args.args[0] == "anthropic"


class TestMainAnalyzers:
    def test_incident_text_from_file(self, settings, tmp_path):
        report = tmp_path / "incident.txt"
        report.write_text("Checkout is failing for all users")
        analysis = IncidentAnalysis(title="Checkout down")
        mock_analyze = AsyncMock(return_value=analysis)
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.get_provider", return_value=MagicMock()), \
             patch("statuspage_cloner.cli.analyze_incident_text", mock_analyze), \
             patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = main(["incident", str(report)])

        assert result == 0
        assert mock_analyze.call_args.args[0] == "Checkout is failing for all users"
        assert json.loads(mock_stdout.getvalue())["title"] == "Checkout down"

    def test_incident_inline_text(self, settings):
        mock_analyze = AsyncMock(return_value=IncidentAnalysis(title="x"))
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.get_provider", return_value=MagicMock()), \
             patch("statuspage_cloner.cli.analyze_incident_text", mock_analyze), \
             patch("sys.stdout", new_callable=StringIO):
            main(["incident", "Database latency is elevated"])

        assert mock_analyze.call_args.args[0] == "Database latency is elevated"

    def test_diagram_file_is_base64_encoded(self, settings, tmp_path):
        image = tmp_path / "arch.png"
        image.write_bytes(b"\x89PNG")
        analysis = DiagramAnalysis(services=[DiagramService(name="API")])
        mock_analyze = AsyncMock(return_value=analysis)
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("statuspage_cloner.cli.get_provider", return_value=MagicMock()), \
             patch("statuspage_cloner.cli.analyze_diagram_image", mock_analyze), \
             patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = main(["diagram", str(image)])

        assert result == 0
        assert mock_analyze.call_args.kwargs["image_base64"] == "iVBORw=="
        assert json.loads(mock_stdout.getvalue())["services"][0]["name"] == "API"

    def test_missing_key_reports_error(self, settings):
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=replace(settings, gemini_api_key="")), \
             patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            result = main(["incident", "API down", "-p", "gemini"])

        assert result == 1
        assert "GEMINI_API_KEY" in mock_stderr.getvalue()


class TestMainServe:
    def test_runs_uvicorn(self, settings):
        with patch("statuspage_cloner.cli.Settings.from_env", return_value=settings), \
             patch("uvicorn.run") as mock_run:
            result = main(["serve", "--port", "9000"])

        assert result == 0
        assert mock_run.call_args.kwargs == {"host": "127.0.0.1", "port": 9000}
