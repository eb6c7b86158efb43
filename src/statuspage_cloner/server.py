"""HTTP surface: clone (streamed), incident analysis and diagram analysis."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from statuspage_cloner import __version__
from statuspage_cloner.analyzers import analyze_diagram_image, analyze_incident_text
from statuspage_cloner.config import Settings
from statuspage_cloner.fetcher import FetchError, make_client
from statuspage_cloner.pipeline import clone_page
from statuspage_cloner.providers import resolve_provider
from statuspage_cloner.providers.base import (
    AIProvider,
    ExtractionError,
    QuotaExhausted,
    RateLimited,
    UnsupportedImageFormat,
)

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Rate limited, please try again shortly."
QUOTA_MESSAGE = "AI credits exhausted. Please add credits to continue."


class CloneRequest(BaseModel):
    url: str = ""


class IncidentRequest(BaseModel):
    text: str = ""


class DiagramRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_base64: str | None = Field(default=None, alias="imageBase64")
    image_url: str | None = Field(default=None, alias="imageUrl")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ai_provider(request: Request) -> AIProvider | None:
    """Provider for this request, or None when none is configured."""
    return resolve_provider(None, request.app.state.settings)


def error_response(exc: Exception) -> JSONResponse:
    """Map analyzer failures onto HTTP statuses."""
    if isinstance(exc, RateLimited):
        return JSONResponse({"error": RATE_LIMITED_MESSAGE}, status_code=429)
    if isinstance(exc, QuotaExhausted):
        return JSONResponse({"error": QUOTA_MESSAGE}, status_code=402)
    if isinstance(exc, (UnsupportedImageFormat, FetchError, ValueError)):
        return JSONResponse({"error": str(exc)}, status_code=400)
    logger.error("Analysis failed: %s", exc)
    return JSONResponse({"error": str(exc) or "Unknown error"}, status_code=500)


def _no_provider() -> JSONResponse:
    return JSONResponse({"error": "No AI provider is configured"}, status_code=500)


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(title="statuspage-cloner", version=__version__)
    app.state.settings = settings or Settings.from_env()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/clone-status-page")
    async def clone_status_page(
        body: CloneRequest,
        settings: Settings = Depends(get_settings),
        provider: AIProvider | None = Depends(get_ai_provider),
    ):
        """Stream progress events, then one result or error event."""
        url = body.url.strip()
        if not url:
            return JSONResponse({"success": False, "error": "URL is required"}, status_code=400)

        async def event_stream() -> AsyncIterator[str]:
            async for event in clone_page(url, settings, provider=provider):
                yield f"data: {event.model_dump_json()}\n\n"

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/analyze-incident")
    async def analyze_incident(
        body: IncidentRequest,
        provider: AIProvider | None = Depends(get_ai_provider),
    ):
        if not body.text.strip():
            return JSONResponse({"error": "Text is required"}, status_code=400)
        if provider is None:
            return _no_provider()
        try:
            analysis = await analyze_incident_text(body.text, provider)
        except (ExtractionError, ValueError) as exc:
            return error_response(exc)
        return {"success": True, "data": analysis.model_dump()}

    @app.post("/analyze-diagram")
    async def analyze_diagram(
        body: DiagramRequest,
        settings: Settings = Depends(get_settings),
        provider: AIProvider | None = Depends(get_ai_provider),
    ):
        if not body.image_base64 and not body.image_url:
            return JSONResponse({"error": "An image (base64 or URL) is required"}, status_code=400)
        if provider is None:
            return _no_provider()
        try:
            async with make_client(settings) as client:
                analysis = await analyze_diagram_image(
                    provider,
                    image_base64=body.image_base64,
                    image_url=body.image_url,
                    client=client,
                )
        except (ExtractionError, FetchError, ValueError) as exc:
            return error_response(exc)
        return {"success": True, "data": analysis.model_dump()}

    return app
