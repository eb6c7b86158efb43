"""Single-shot analyzers: free-text incident reports and architecture diagrams.

Both share the completion provider with the clone pipeline but make one
call each, with no strategy cascade and no streaming.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone

import httpx
from pydantic import ValidationError

from statuspage_cloner.fetcher import FetchError
from statuspage_cloner.models import DiagramAnalysis, IncidentAnalysis
from statuspage_cloner.providers.base import (
    AIProvider,
    ExtractionFailed,
    ImageInput,
    UnsupportedImageFormat,
)

logger = logging.getLogger(__name__)

MAX_INCIDENT_TEXT = 10_000

# Base64 prefixes of the image formats' magic numbers.
BASE64_SIGNATURES: list[tuple[str, str]] = [
    ("/9j/", "image/jpeg"),
    ("iVBOR", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
    ("PHN2Zy", "image/svg+xml"),
    ("PD94bW", "image/svg+xml"),
]

SVG_REJECTION = "SVG images are not supported. Please use a PNG, JPEG, or WebP image instead."

INCIDENT_SYSTEM_PROMPT = """\
You are an expert at analyzing incident reports and status updates for software services.
Given an incident description or status update text, extract:
1. A concise incident title
2. The current incident status (investigating, identified, monitoring, maintenance or resolved)
3. The impact severity (major, partial, degraded or maintenance)
4. The affected services/components mentioned or implied, each with its current status:
   "major" = completely down, "partial" = partially working, "degraded" = slow or reduced
   capacity, "maintenance" = planned maintenance
5. A timeline of status updates (newest first) if the text contains several
6. The organization name, if the text mentions one
If the text is vague about services, infer reasonable names (e.g. "API", "Website", "Database").
If no timestamps can be inferred, use the current date and time given in the message.
Return JSON:
{"title": "...", "status": "...", "impact": "...", "organization": "... or null",
 "services": [{"name": "...", "status": "..."}],
 "updates": [{"status": "...", "message": "...", "timestamp": "ISO-8601"}]}"""

DIAGRAM_SYSTEM_PROMPT = """\
You are an expert at analyzing system architecture and infrastructure diagrams.
Extract ALL services, components and systems visible in the diagram: every distinct
service, database, queue, cache, load balancer, CDN and so on.
Default every status to "operational" unless the diagram clearly indicates otherwise
(allowed: operational, degraded, partial, major, maintenance).
Group related services when there is a clear hierarchy (e.g. "REST API" and
"GraphQL API" under "API").
Return JSON:
{"organization": "name if visible, else empty string",
 "services": [{"name": "...", "status": "operational", "group": "optional group name"}],
 "summary": "one-line summary of the architecture"}"""

DIAGRAM_USER_PROMPT = "Analyze this system diagram and extract all services and components:"


def sniff_image_type(data_b64: str) -> str:
    """Guess the MIME type from the base64 prefix; PNG when unknown."""
    for prefix, mime in BASE64_SIGNATURES:
        if data_b64.startswith(prefix):
            return mime
    return "image/png"


def image_from_base64(data: str) -> ImageInput:
    """Accept raw base64 or a data URL. Raises UnsupportedImageFormat for SVG."""
    data = data.strip()
    mime = ""
    if data.startswith("data:") and "," in data:
        header, data = data.split(",", 1)
        mime = header[5:].split(";")[0].strip()
    mime = mime or sniff_image_type(data)
    if mime == "image/svg+xml":
        raise UnsupportedImageFormat(SVG_REJECTION)
    return ImageInput(mime_type=mime, data_b64=data)


async def fetch_image(url: str, client: httpx.AsyncClient) -> ImageInput:
    """
    Download an image server-side.

    Raises:
        FetchError: the URL did not answer with a 2xx.
        UnsupportedImageFormat: the content is not an image, or is SVG.
    """
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        raise FetchError(f"Failed to fetch image from URL: {exc}") from exc
    if not response.is_success:
        raise FetchError(f"Failed to fetch image from URL ({response.status_code})")

    content_type = response.headers.get("content-type", "")
    if not content_type.startswith("image/"):
        raise UnsupportedImageFormat(f"URL did not return an image (got {content_type or 'no content type'})")
    mime = content_type.split(";")[0].strip()
    if mime == "image/svg+xml":
        raise UnsupportedImageFormat(SVG_REJECTION)
    logger.info("Fetched %d-byte %s image from %s", len(response.content), mime, url)
    return ImageInput(mime_type=mime, data_b64=base64.b64encode(response.content).decode("ascii"))


async def analyze_incident_text(
    text: str,
    provider: AIProvider,
    now: datetime | None = None,
) -> IncidentAnalysis:
    """Turn a free-text incident report into a structured incident."""
    text = text.strip()
    if not text:
        raise ValueError("Text is required")
    now = now or datetime.now(timezone.utc)
    user_prompt = (
        f"Current date and time: {now.isoformat()}\n\n"
        f"Analyze this incident report and extract the structured data:\n\n{text[:MAX_INCIDENT_TEXT]}"
    )
    parsed = await provider.complete(INCIDENT_SYSTEM_PROMPT, user_prompt)
    if not isinstance(parsed, dict):
        raise ExtractionFailed("AI did not return an incident object")

    for update in parsed.get("updates") or []:
        if isinstance(update, dict) and not update.get("timestamp"):
            update["timestamp"] = now.isoformat()
    try:
        analysis = IncidentAnalysis.model_validate(parsed)
    except ValidationError as exc:
        raise ExtractionFailed(f"AI returned an invalid incident: {exc.error_count()} errors") from exc
    logger.info("Incident %r affects %d services", analysis.title, len(analysis.services))
    return analysis


async def analyze_diagram_image(
    provider: AIProvider,
    *,
    image_base64: str | None = None,
    image_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> DiagramAnalysis:
    """
    Extract services from an architecture diagram given as base64 or URL.

    Raises:
        ValueError: neither input was given.
        UnsupportedImageFormat: SVG or non-image input, rejected before any AI call.
    """
    if image_base64:
        image = image_from_base64(image_base64)
    elif image_url:
        if client is None:
            async with httpx.AsyncClient(timeout=30) as own_client:
                image = await fetch_image(image_url, own_client)
        else:
            image = await fetch_image(image_url, client)
    else:
        raise ValueError("An image (base64 or URL) is required")

    parsed = await provider.complete(DIAGRAM_SYSTEM_PROMPT, DIAGRAM_USER_PROMPT, image=image)
    if isinstance(parsed, list):
        parsed = {"services": parsed}
    if not isinstance(parsed, dict):
        raise ExtractionFailed("AI did not return a diagram analysis")
    parsed["services"] = [s for s in parsed.get("services") or [] if isinstance(s, dict) and s.get("name")]
    parsed["organization"] = parsed.get("organization") or ""
    parsed["summary"] = parsed.get("summary") or ""
    try:
        analysis = DiagramAnalysis.model_validate(parsed)
    except ValidationError as exc:
        raise ExtractionFailed(f"AI returned an invalid diagram analysis: {exc.error_count()} errors") from exc
    logger.info("Diagram analysis found %d services", len(analysis.services))
    return analysis
