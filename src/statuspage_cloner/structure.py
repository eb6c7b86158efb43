"""Work out which services a page lists, how they are grouped and in what order.

Strategies run in order and the first one that returns a result wins:

1. ``PlatformHierarchyStrategy`` trusts explicit group ids from the platform API.
2. ``MarkupHeuristicStrategy`` infers groups from "N components" badges in
   the page and takes visual order from document order.
3. ``PlatformFlatStrategy`` keeps the platform's flat list when the markup
   did not mention any of its services.
4. ``AIStructureStrategy`` asks the completion provider for a hierarchy.

The badge heuristic is greedy and count-capped: a service belongs to the
nearest preceding group that still has room. When the page's nesting
disagrees with its declared counts, services can be misattributed; that
is a known accuracy limit.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString

from statuspage_cloner.cleaner import reduce_for_services
from statuspage_cloner.models import ExtractedService, map_service_status
from statuspage_cloner.probe import PlatformData
from statuspage_cloner.providers.base import AIProvider, ExtractionError

logger = logging.getLogger(__name__)

BADGE_RE = re.compile(r"\b(\d+)\s*components?\b", re.IGNORECASE)
MIN_BADGE_COUNT = 1
MAX_BADGE_COUNT = 200
# Badges are short labels; longer text mentioning components is prose.
MAX_BADGE_TEXT = 40

STATUS_WORD_RE = re.compile(
    r"^(operational|degraded( performance)?|partial( outage)?|major( outage)?|outage|"
    r"(under )?maintenance|scheduled( maintenance)?|down|up|unknown|no data)$",
    re.IGNORECASE,
)
PERCENT_RE = re.compile(r"^\d{1,3}(\.\d+)?\s*%")
_PAGE_NAME_SUFFIX = re.compile(r"\s*(?:[|\-–—:]\s*)?(?:status\s*page|status)\s*$", re.IGNORECASE)

STRUCTURE_SYSTEM_PROMPT = """\
You extract status page data from HTML. Return JSON with this structure:
{
  "name": "Page name/title",
  "services": [
    {"name": "Service or group name", "status": "operational|degraded|partial|major|maintenance",
     "children": [{"name": "Child service", "status": "operational", "children": []}]}
  ]
}
Extract ALL services listed on the page, in the order they appear.
When services are organized into groups/categories, return the group as an entry whose
"children" holds its services. A group header is NOT itself a service.
Map statuses: green/up/operational -> "operational", yellow/degraded/slow -> "degraded",
orange/partial -> "partial", red/down/major -> "major", blue/maintenance/scheduled -> "maintenance".
If unsure, use "operational".
For "name", drop trailing suffixes like "| Status", "Status", "- Status Page"."""

STRUCTURE_USER_PROMPT = "Extract the status page name and ALL services with their current statuses from this HTML:"


def normalize_key(text: str) -> str:
    return " ".join(text.split()).casefold()


def clean_page_name(name: str) -> str:
    """'Acme | Status' -> 'Acme'."""
    cleaned = _PAGE_NAME_SUFFIX.sub("", name.strip()).strip()
    return cleaned or name.strip()


def document_text_nodes(html: str) -> list[str]:
    """Non-empty text nodes of a document, whitespace-normalized, in document order."""
    soup = BeautifulSoup(html, "lxml")
    nodes: list[str] = []
    for node in soup.find_all(string=True):
        if isinstance(node, PreformattedString) or not isinstance(node, NavigableString):
            continue
        text = " ".join(node.split())
        if text:
            nodes.append(text)
    return nodes


@dataclass
class StructureResult:
    services: list[ExtractedService]
    groups: dict[str, str] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    name: str = ""
    strategy: str = ""


@dataclass
class StructureInput:
    html: str
    known_services: list[ExtractedService] = field(default_factory=list)
    platform: PlatformData | None = None


@dataclass
class GroupBadge:
    label: str
    count: int
    index: int
    remaining: int = 0

    def __post_init__(self) -> None:
        self.remaining = self.count


class StructureStrategy(ABC):
    name: str

    @abstractmethod
    async def attempt(self, inp: StructureInput) -> StructureResult | None:
        """Return a result, or None to hand over to the next strategy."""
        ...


def _build_result(services: list[ExtractedService], name: str, strategy: str) -> StructureResult:
    return StructureResult(
        services=services,
        groups={s.name: s.group for s in services if s.group},
        order=[s.name for s in services],
        name=name,
        strategy=strategy,
    )


class PlatformHierarchyStrategy(StructureStrategy):
    """Sort by (group position, item position) using explicit API group ids."""

    name = "platform"

    async def attempt(self, inp: StructureInput) -> StructureResult | None:
        platform = inp.platform
        if platform is None or not platform.has_hierarchy:
            return None

        groups = platform.groups
        top_level = sorted(
            [c for c in platform.components if c.is_group or c.group_id not in groups],
            key=lambda c: c.position,
        )
        services: list[ExtractedService] = []
        for item in top_level:
            if not item.is_group:
                services.append(ExtractedService(name=item.name, status=item.status))
                continue
            children = sorted(
                (c for c in platform.services if c.group_id == item.id),
                key=lambda c: c.position,
            )
            services.extend(
                ExtractedService(name=c.name, status=c.status, group=item.name) for c in children
            )
        return _build_result(services, platform.name, self.name)


def find_group_badges(tokens: list[str], known_keys: set[str]) -> list[GroupBadge]:
    """Locate "N components" badges and the label text that precedes each."""
    badges: list[GroupBadge] = []
    for idx, token in enumerate(tokens):
        if len(token) > MAX_BADGE_TEXT:
            continue
        match = BADGE_RE.search(token)
        if not match:
            continue
        count = int(match.group(1))
        if not MIN_BADGE_COUNT <= count <= MAX_BADGE_COUNT:
            logger.debug("Ignoring badge %r: count out of range", token)
            continue
        label = _label_before(tokens, idx, known_keys)
        if label is None:
            logger.debug("No label found for badge %r", token)
            continue
        badges.append(GroupBadge(label=label, count=count, index=idx))
    return badges


def _label_before(tokens: list[str], idx: int, known_keys: set[str]) -> str | None:
    for token in reversed(tokens[:idx]):
        if normalize_key(token) in known_keys:
            continue
        if STATUS_WORD_RE.match(token) or PERCENT_RE.match(token):
            continue
        if BADGE_RE.search(token) and len(token) <= MAX_BADGE_TEXT:
            continue
        if not any(ch.isalpha() for ch in token):
            continue
        return token
    return None


def assign_groups(tokens: list[str], known: dict[str, str], badges: list[GroupBadge]) -> dict[str, str]:
    """
    Greedy, count-capped assignment of service occurrences to groups.

    Each not-yet-assigned service occurrence goes to the nearest preceding
    badge that still has capacity. Occurrences with no such badge stay
    ungrouped (a later occurrence of the same name may still be claimed).
    """
    assigned: dict[str, str] = {}
    for idx, token in enumerate(tokens):
        name = known.get(normalize_key(token))
        if name is None or name in assigned:
            continue
        for badge in sorted((b for b in badges if b.index < idx), key=lambda b: b.index, reverse=True):
            if badge.remaining > 0:
                badge.remaining -= 1
                assigned[name] = badge.label
                break
    return assigned


def visual_order(tokens: list[str], names: list[str]) -> list[str]:
    """Known names by first occurrence in the document; unmatched ones appended."""
    first_seen: dict[str, int] = {}
    known = {normalize_key(n): n for n in names}
    for idx, token in enumerate(tokens):
        name = known.get(normalize_key(token))
        if name is not None and name not in first_seen:
            first_seen[name] = idx
    ordered = sorted(first_seen, key=first_seen.__getitem__)
    return ordered + [n for n in names if n not in first_seen]


class MarkupHeuristicStrategy(StructureStrategy):
    """Groups from count badges, order from document order."""

    name = "markup"

    async def attempt(self, inp: StructureInput) -> StructureResult | None:
        if not inp.known_services:
            return None

        tokens = document_text_nodes(reduce_for_services(inp.html))
        known = {normalize_key(s.name): s.name for s in inp.known_services}
        if not any(normalize_key(t) in known for t in tokens):
            logger.info("None of the %d known services appear in the markup", len(known))
            return None

        badges = find_group_badges(tokens, set(known))
        assigned = assign_groups(tokens, known, badges)
        order = visual_order(tokens, [s.name for s in inp.known_services])
        by_name = {s.name: s for s in inp.known_services}
        services = [
            by_name[name].model_copy(update={"group": assigned.get(name)})
            for name in order
        ]
        logger.info(
            "Markup heuristics: %d badges, %d of %d services grouped",
            len(badges), len(assigned), len(services),
        )
        name = inp.platform.name if inp.platform else ""
        return _build_result(services, name, self.name)


class PlatformFlatStrategy(StructureStrategy):
    """Keep the API's flat list as-is when nothing better is available."""

    name = "platform-flat"

    async def attempt(self, inp: StructureInput) -> StructureResult | None:
        if not inp.known_services:
            return None
        name = inp.platform.name if inp.platform else ""
        return _build_result(list(inp.known_services), name, self.name)


def flatten_hierarchy(items: list, parent: str | None = None) -> list[ExtractedService]:
    """Turn {name, status, children[]} trees into flat services keyed by parent name."""
    services: list[ExtractedService] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        children = item.get("children") or item.get("services") or []
        if isinstance(children, list) and children:
            services.extend(flatten_hierarchy(children, parent=name))
            continue
        group = parent if parent is not None else item.get("group")
        services.append(
            ExtractedService(name=name, status=map_service_status(item.get("status")), group=group)
        )
    return services


class AIStructureStrategy(StructureStrategy):
    """Last resort: hierarchical extraction through the completion provider."""

    name = "ai"

    def __init__(self, provider: AIProvider) -> None:
        self.provider = provider

    async def attempt(self, inp: StructureInput) -> StructureResult | None:
        reduced = reduce_for_services(inp.html)
        logger.info("AI structure extraction over %d chars", len(reduced))
        parsed = await self.provider.complete(STRUCTURE_SYSTEM_PROMPT, STRUCTURE_USER_PROMPT, reduced)
        if isinstance(parsed, list):
            parsed = {"services": parsed}
        if not isinstance(parsed, dict):
            return None

        seen: set[str] = set()
        services: list[ExtractedService] = []
        for service in flatten_hierarchy(parsed.get("services") or []):
            if service.name not in seen:
                seen.add(service.name)
                services.append(service)
        if not services:
            return None
        return _build_result(services, clean_page_name(str(parsed.get("name") or "")), self.name)


def default_strategies(provider: AIProvider | None) -> list[StructureStrategy]:
    strategies: list[StructureStrategy] = [
        PlatformHierarchyStrategy(),
        MarkupHeuristicStrategy(),
        PlatformFlatStrategy(),
    ]
    if provider is not None:
        strategies.append(AIStructureStrategy(provider))
    return strategies


async def extract_structure(
    html: str,
    known_services: list[ExtractedService] | None = None,
    *,
    platform: PlatformData | None = None,
    provider: AIProvider | None = None,
    strategies: list[StructureStrategy] | None = None,
) -> StructureResult:
    """
    Run the strategy chain and return the first result.

    Raises:
        ExtractionError: only when the last strategy to run failed and
            no strategy produced anything.
    """
    inp = StructureInput(html=html, known_services=list(known_services or []), platform=platform)
    last_error: ExtractionError | None = None

    for strategy in strategies if strategies is not None else default_strategies(provider):
        try:
            result = await strategy.attempt(inp)
        except ExtractionError as exc:
            logger.warning("Structure strategy %s failed: %s", strategy.name, exc)
            last_error = exc
            continue
        if result is not None and result.services:
            logger.info("Structure from %s strategy: %d services", strategy.name, len(result.services))
            return result

    if last_error is not None:
        raise last_error
    return StructureResult(services=[])
