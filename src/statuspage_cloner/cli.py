"""Command-line interface for statuspage-cloner."""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from statuspage_cloner.analyzers import analyze_diagram_image, analyze_incident_text
from statuspage_cloner.config import Settings
from statuspage_cloner.fetcher import FetchError, make_client
from statuspage_cloner.models import ExtractedResult
from statuspage_cloner.pipeline import clone_page
from statuspage_cloner.providers import get_provider, list_providers, resolve_provider
from statuspage_cloner.providers.base import ExtractionError


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-p", "--provider",
        choices=list_providers(),
        default=None,
        help="AI provider to use (default: from .env DEFAULT_PROVIDER)",
    )
    common.add_argument(
        "--no-render",
        action="store_true",
        help="Disable JavaScript rendering",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="statuspage-cloner",
        description="Clone third-party status pages into structured data.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    clone = commands.add_parser("clone", parents=[common], help="Clone a status page by URL")
    clone.add_argument("url", help="Status page URL (e.g. status.example.com)")
    clone.add_argument(
        "-o", "--output",
        default=None,
        help="Output file path (default: stdout)",
    )

    incident = commands.add_parser("incident", parents=[common], help="Analyze a free-text incident report")
    incident.add_argument("text", help="Incident text or path to a .txt/.md file containing it")

    diagram = commands.add_parser("diagram", parents=[common], help="Extract services from an architecture diagram")
    diagram.add_argument("image", help="Image file path or URL")

    serve = commands.add_parser("serve", parents=[common], help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    return parser


def _write_output(payload: dict, output: str | None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Output written to {output}", file=sys.stderr)
    else:
        print(text)


async def _run_clone(url: str, settings: Settings, provider_name: str | None, output: str | None) -> int:
    provider = resolve_provider(provider_name, settings)
    result: ExtractedResult | None = None
    async for event in clone_page(url, settings, provider=provider):
        if event.type == "progress":
            print(f"  {event.message}", file=sys.stderr)
        elif event.type == "result":
            result = event.data
        else:
            print(f"Error: {event.message}", file=sys.stderr)
            return 1
    if result is None:
        return 1
    _write_output(result.model_dump(), output)
    return 0


async def _run_incident(text: str, settings: Settings, provider_name: str | None) -> int:
    text_path = Path(text)
    if text_path.suffix in (".txt", ".md") and text_path.is_file():
        text = text_path.read_text(encoding="utf-8")
        print(f"Loaded incident text from {text_path}", file=sys.stderr)
    provider = get_provider(provider_name or settings.default_provider, settings)
    analysis = await analyze_incident_text(text, provider)
    _write_output(analysis.model_dump(), None)
    return 0


async def _run_diagram(image: str, settings: Settings, provider_name: str | None) -> int:
    provider = get_provider(provider_name or settings.default_provider, settings)
    image_path = Path(image)
    if image_path.is_file():
        encoded = base64.b64encode(image_path.read_bytes()).decode("ascii")
        analysis = await analyze_diagram_image(provider, image_base64=encoded)
    else:
        async with make_client(settings) as client:
            analysis = await analyze_diagram_image(provider, image_url=image, client=client)
    _write_output(analysis.model_dump(), None)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    if args.no_render:
        settings = replace(settings, render_js=False)
    if args.provider:
        settings = replace(settings, default_provider=args.provider)

    if args.command == "serve":
        import uvicorn

        from statuspage_cloner.server import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    try:
        if args.command == "clone":
            return asyncio.run(_run_clone(args.url, settings, args.provider, args.output))
        if args.command == "incident":
            return asyncio.run(_run_incident(args.text, settings, args.provider))
        return asyncio.run(_run_diagram(args.image, settings, args.provider))
    except (ExtractionError, FetchError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
