"""Abstract base class for structured-completion providers.

Every extraction stage that needs AI goes through ``AIProvider.complete``:
it trims the document to the configured budget, runs the blocking SDK
call in a worker thread under a hard timeout, and turns whatever text
comes back into JSON (stripping code fences, repairing output that was
cut off by the token limit).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from statuspage_cloner.cleaner import truncate_document
from statuspage_cloner.config import Settings

logger = logging.getLogger(__name__)

JSON_ONLY_SUFFIX = "Return ONLY valid JSON. No prose, no code fences."

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

# How many structural boundaries the repair step may back up over
# before giving up on a truncated response.
_MAX_REPAIR_STEPS = 200


class ExtractionError(Exception):
    """Raised when a structured-completion call fails."""

    retryable: bool = False


class ExtractionFailed(ExtractionError):
    """The completion returned text that could not be parsed or repaired."""


class RateLimited(ExtractionError):
    """The AI capability is throttling requests."""

    retryable = True


class QuotaExhausted(ExtractionError):
    """The AI capability has no remaining credits."""


class CompletionTimeout(ExtractionError):
    """The completion call exceeded its time budget."""

    retryable = True


class UnsupportedImageFormat(ExtractionError):
    """The image cannot be sent to an image-capable model (e.g. SVG)."""


@dataclass(frozen=True)
class ImageInput:
    mime_type: str
    data_b64: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data_b64}"


@dataclass(frozen=True)
class ChatResponse:
    text: str
    truncated: bool = False


def _scan_open_containers(text: str) -> tuple[bool, str]:
    """Return (inside_string, closing_sequence) for a JSON prefix."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
    return in_string, "".join(reversed(stack))


def repair_truncated_json(text: str) -> Any | None:
    """Close unbalanced strings, objects and arrays in a cut-off JSON document.

    If closing the prefix as-is does not parse (a dangling key, half a
    literal), back up to the previous element boundary and try again.
    Returns the parsed value, or None when no repair works.
    """
    text = text.rstrip()
    start = min((i for i in (text.find("{"), text.find("[")) if i != -1), default=-1)
    if start == -1:
        return None
    text = text[start:]
    cut = len(text)

    for _ in range(_MAX_REPAIR_STEPS):
        candidate = text[:cut].rstrip()
        in_string, closers = _scan_open_containers(candidate)
        if in_string:
            candidate += '"'
        candidate = candidate.rstrip().rstrip(",").rstrip()
        if candidate.endswith(":"):
            candidate += " null"
        try:
            return json.loads(candidate + closers)
        except json.JSONDecodeError:
            pass

        boundary = max(text.rfind(",", 0, cut), text.rfind("{", 0, cut) + 1, text.rfind("[", 0, cut) + 1)
        if boundary >= cut:
            boundary = cut - 1
        if boundary <= 0:
            break
        cut = boundary
    return None


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Unclosed fence: the response was cut off before the closing ```
    if text.startswith("```"):
        first_nl = text.find("\n")
        text = text[first_nl + 1:] if first_nl != -1 else ""
    return text.strip()


def parse_structured(raw: str) -> Any:
    """Parse a completion into JSON, repairing truncation when needed."""
    text = strip_code_fences(raw)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Leading prose or trailing chatter around a complete object.
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if starts:
        try:
            obj, _ = json.JSONDecoder().raw_decode(text[min(starts):])
            return obj
        except json.JSONDecodeError:
            pass

    repaired = repair_truncated_json(text)
    if repaired is not None:
        logger.warning("Repaired truncated JSON response (%d chars)", len(text))
        return repaired

    raise ExtractionFailed(f"Failed to parse AI response: {text[:200]}")


class AIProvider(ABC):
    """Contract for structured-completion providers."""

    name: str
    supports_images: bool = True

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def _chat(
        self,
        system: str,
        user: str,
        *,
        image: ImageInput | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        """
        Send one blocking chat request.

        Args:
            system: System prompt.
            user: User message (prompt plus inlined document).
            image: Optional image to attach to the user turn.
            json_mode: Ask the backend for JSON output when it supports it.

        Returns:
            ChatResponse with the raw text and whether the output was cut
            off by the token limit.
        """
        ...

    def _translate_error(self, exc: Exception) -> ExtractionError:
        """Map an SDK exception onto the extraction error taxonomy."""
        return ExtractionError(f"{self.name} request failed: {exc}")

    def _build_messages(self, system_prompt: str, user_prompt: str, document: str) -> tuple[str, str]:
        """Build system and user messages, inlining the (budgeted) document."""
        system = f"{system_prompt}\n\n{JSON_ONLY_SUFFIX}"
        if not document:
            return system, user_prompt
        doc = truncate_document(document, self.settings.max_document_chars)
        user = f"{user_prompt}\n\n---PAGE CONTENT---\n{doc}\n---END PAGE CONTENT---"
        return system, user

    async def _call(self, system: str, user: str, image: ImageInput | None) -> ChatResponse:
        if image is not None and not self.supports_images:
            raise UnsupportedImageFormat(f"The {self.name} provider cannot analyze images")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._chat, system, user, image=image),
                timeout=self.settings.completion_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("%s completion timed out after %ss", self.name, self.settings.completion_timeout)
            raise CompletionTimeout(
                f"AI request timed out after {self.settings.completion_timeout}s"
            ) from exc
        except ExtractionError:
            raise
        except Exception as exc:
            logger.error("%s request failed: %s", self.name, exc)
            raise self._translate_error(exc) from exc

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        document: str = "",
        *,
        image: ImageInput | None = None,
    ) -> Any:
        """
        Run a structured completion and return parsed JSON.

        When the output was truncated and cannot be repaired, retries once
        with the document cut in half before surfacing ExtractionFailed.
        """
        system, user = self._build_messages(system_prompt, user_prompt, document)
        response = await self._call(system, user, image)
        try:
            return parse_structured(response.text)
        except ExtractionFailed:
            if not (response.truncated and document):
                raise
            logger.warning("%s output truncated and unrepairable, retrying with a trimmed document", self.name)

        half = truncate_document(document, min(len(document), self.settings.max_document_chars) // 2)
        system, user = self._build_messages(system_prompt, user_prompt, half)
        response = await self._call(system, user, image)
        return parse_structured(response.text)
