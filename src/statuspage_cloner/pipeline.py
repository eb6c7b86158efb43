"""Clone pipeline: probe, fetch, structure, uptime, incidents.

``clone_page`` is the streaming entry point. It runs a ``ClonePipeline``
in a background task and yields its progress events, followed by exactly
one terminal event: a result or an error, never both.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from enum import Enum
from urllib.parse import urlparse

import httpx

from statuspage_cloner.config import Settings
from statuspage_cloner.fetcher import FetchError, fetch_rendered, make_client
from statuspage_cloner.incidents import extract_incidents
from statuspage_cloner.models import (
    CloneEvent,
    ErrorEvent,
    ExtractedIncident,
    ExtractedResult,
    ExtractedService,
    ResultEvent,
)
from statuspage_cloner.probe import PlatformData, probe_known_platform
from statuspage_cloner.providers.base import AIProvider, ExtractionError
from statuspage_cloner.reporter import ProgressReporter
from statuspage_cloner.structure import extract_structure
from statuspage_cloner.uptime import align_series, decode_uptime

logger = logging.getLogger(__name__)


class CloneState(str, Enum):
    CONNECTING = "connecting"
    PROBING_PLATFORM = "probing_platform"
    PLATFORM_SUCCESS = "platform_success"
    FALLING_BACK_TO_HTML = "falling_back_to_html"
    EXTRACTING_SERVICES = "extracting_services"
    EXTRACTING_UPTIME = "extracting_uptime"
    EXTRACTING_INCIDENTS = "extracting_incidents"
    COMPLETE = "complete"
    FAILED = "failed"


class NoServicesFound(Exception):
    """Raised when every strategy ran and no service was extracted."""


class StreamClosed(Exception):
    """Raised between stages once the consumer has gone away."""


def normalize_url(url: str) -> str:
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"
    return url


class ClonePipeline:
    """One clone invocation. Holds no state beyond the request."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        reporter: ProgressReporter,
        provider: AIProvider | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.reporter = reporter
        self.provider = provider
        self.state = CloneState.CONNECTING

    def _enter(self, state: CloneState, message: str) -> None:
        if self.reporter.closed:
            raise StreamClosed()
        self.state = state
        self.reporter.report(message)

    async def run(self, url: str) -> ExtractedResult:
        """
        Run every stage and return the merged result.

        Raises:
            FetchBlocked: the page could not be fetched and no platform API answered.
            NoServicesFound: nothing yielded a single service.
            ExtractionError: AI structure extraction was the only option and failed.
        """
        url = normalize_url(url)
        self._enter(CloneState.CONNECTING, f"Connecting to {url}...")

        self._enter(CloneState.PROBING_PLATFORM, "Checking for a status page API...")
        platform = await self._probe(url)

        if platform is not None and platform.components:
            self._enter(
                CloneState.PLATFORM_SUCCESS,
                f"Found status page API with {len(platform.services)} components",
            )
            html = await self._fetch_optional(url)
        else:
            self._enter(CloneState.FALLING_BACK_TO_HTML, "No status page API found, reading the page...")
            html = await fetch_rendered(url, self.client, self.settings)
            self.reporter.report(f"Fetched page ({len(html):,} chars)")

        self._enter(CloneState.EXTRACTING_SERVICES, "Extracting services and groups...")
        services, name = await self._extract_services(html, platform)
        if not services:
            raise NoServicesFound("No services found on this status page.")
        groups = len({s.group for s in services if s.group})
        self.reporter.report(f"Found {len(services)} services in {groups} groups")

        self._enter(CloneState.EXTRACTING_UPTIME, "Extracting uptime history...")
        services, start_date = await self._extract_uptime(html, services)

        self._enter(CloneState.EXTRACTING_INCIDENTS, "Extracting incidents...")
        incidents = await self._extract_incidents(url, html, platform)

        result = ExtractedResult(
            name=name or urlparse(url).hostname or url,
            services=services,
            incidents=incidents,
            start_date=start_date,
        )
        self._enter(
            CloneState.COMPLETE,
            f"Extraction complete: {len(services)} services, {len(incidents)} incidents",
        )
        return result

    async def execute(self, url: str) -> None:
        """Run the pipeline and turn its outcome into the terminal event."""
        try:
            result = await self.run(url)
        except StreamClosed:
            logger.info("Consumer disconnected, stopping clone of %s", url)
            return
        except (FetchError, NoServicesFound) as exc:
            self.state = CloneState.FAILED
            self.reporter.finish(ErrorEvent(message=str(exc)))
            return
        except ExtractionError as exc:
            self.state = CloneState.FAILED
            self.reporter.finish(ErrorEvent(message=str(exc), retryable=exc.retryable))
            return
        except Exception as exc:
            logger.exception("Unexpected failure cloning %s", url)
            self.state = CloneState.FAILED
            self.reporter.finish(ErrorEvent(message=f"Clone failed: {exc}"))
            return
        self.reporter.finish(ResultEvent(data=result))

    async def _probe(self, url: str) -> PlatformData | None:
        try:
            return await probe_known_platform(url, self.client)
        except Exception as exc:
            logger.warning("Platform probe for %s failed: %s", url, exc)
            self.reporter.report("Status page API check failed, continuing without it")
            return None

    async def _fetch_optional(self, url: str) -> str:
        try:
            html = await fetch_rendered(url, self.client, self.settings)
        except FetchError as exc:
            logger.warning("Page fetch failed, continuing with API data only: %s", exc)
            self.reporter.report("Could not load the page itself, using API data only")
            return ""
        self.reporter.report(f"Fetched page ({len(html):,} chars)")
        return html

    async def _extract_services(
        self,
        html: str,
        platform: PlatformData | None,
    ) -> tuple[list[ExtractedService], str]:
        known = platform.to_result().services if platform is not None else []
        structure = await extract_structure(
            html,
            known,
            platform=platform,
            provider=self.provider,
        )
        if structure.strategy:
            self.reporter.report(f"Service structure from {structure.strategy} data")
        name = structure.name or (platform.name if platform is not None else "")
        return structure.services, name

    async def _extract_uptime(
        self,
        html: str,
        services: list[ExtractedService],
    ) -> tuple[list[ExtractedService], str | None]:
        if not html:
            return services, None
        names = [s.name for s in services]
        try:
            decoding = await decode_uptime(html, names, self.provider)
        except Exception as exc:
            logger.warning("Uptime extraction failed: %s", exc)
            self.reporter.report("Could not extract uptime history, continuing without it")
            return services, None

        with_bars = [n for n, s in decoding.series.items() if s.uptime_days]
        if not with_bars:
            self.reporter.report("No uptime bars found")
            return services, None

        aligned, start_date = align_series(decoding.series, self.settings.uptime_window, decoding.anchor)
        self.reporter.report(f"Decoded uptime bars for {len(with_bars)} of {len(names)} services")
        updated = []
        for service in services:
            series = decoding.series.get(service.name)
            update: dict = {"uptime_days": aligned.get(service.name, [])}
            if series is not None and series.uptime_pct is not None:
                update["uptime_pct"] = series.uptime_pct
            updated.append(service.model_copy(update=update))
        return updated, start_date

    async def _extract_incidents(
        self,
        url: str,
        html: str,
        platform: PlatformData | None,
    ) -> list[ExtractedIncident]:
        try:
            incidents = await extract_incidents(
                url,
                self.client,
                self.settings,
                html=html or None,
                origin=platform.origin if platform is not None else None,
                provider=self.provider,
                report=self.reporter.report,
            )
        except Exception as exc:
            logger.warning("Incident extraction failed: %s", exc)
            self.reporter.report("Could not extract incidents, continuing without them")
            return []
        self.reporter.report(f"Found {len(incidents)} incidents")
        return incidents


async def clone_page(
    url: str,
    settings: Settings | None = None,
    *,
    provider: AIProvider | None = None,
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[CloneEvent]:
    """
    Clone a status page, yielding progress events and one terminal event.

    Closing the generator early cancels the remaining work.
    """
    settings = settings or Settings.from_env()
    owns_client = client is None
    http = client or make_client(settings)
    reporter = ProgressReporter()
    pipeline = ClonePipeline(settings, http, reporter, provider)
    task = asyncio.create_task(pipeline.execute(url))
    try:
        async for event in reporter.events():
            yield event
    finally:
        reporter.close()
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if owns_client:
            await http.aclose()
