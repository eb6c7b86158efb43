"""Reconstruct per-day uptime series from uptime-bar graphics.

The deterministic decoder finds, for each service, the first SVG with
<rect> day-cells that follows its name and precedes the next service's
name, classifies every visible rect by fill color (or class name when it
has no fill), and orders the cells left to right. Services it cannot
decode, or pages without a "since" date anchor, go to the completion
provider with the same color rules.

All series of one page are aligned to a common length, padding at the
oldest end, so bar index i means the same calendar day for every
service.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from statuspage_cloner.cleaner import reduce_for_uptime
from statuspage_cloner.providers.base import AIProvider, ExtractionError
from statuspage_cloner.structure import normalize_key

logger = logging.getLogger(__name__)

# Channel spread under which a color counts as gray (no data).
NEUTRAL_SPREAD = 32

NAMED_COLORS: dict[str, tuple[int, int, int]] = {
    "green": (0, 128, 0),
    "lime": (0, 255, 0),
    "limegreen": (50, 205, 50),
    "forestgreen": (34, 139, 34),
    "seagreen": (46, 139, 87),
    "mediumseagreen": (60, 179, 113),
    "darkgreen": (0, 100, 0),
    "red": (255, 0, 0),
    "darkred": (139, 0, 0),
    "crimson": (220, 20, 60),
    "firebrick": (178, 34, 34),
    "tomato": (255, 99, 71),
    "orange": (255, 165, 0),
    "darkorange": (255, 140, 0),
    "gold": (255, 215, 0),
    "yellow": (255, 255, 0),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "darkgray": (169, 169, 169),
    "darkgrey": (169, 169, 169),
    "lightgray": (211, 211, 211),
    "lightgrey": (211, 211, 211),
    "silver": (192, 192, 192),
    "gainsboro": (220, 220, 220),
    "white": (255, 255, 255),
    "black": (0, 0, 0),
    "blue": (0, 0, 255),
}

_HEX_RE = re.compile(r"^#([0-9a-f]{3,4}|[0-9a-f]{6}|[0-9a-f]{8})$", re.IGNORECASE)
_RGB_RE = re.compile(r"^rgba?\(\s*([\d.]+)%?\s*[, ]\s*([\d.]+)%?\s*[, ]\s*([\d.]+)%?\s*(?:[,/]\s*([\d.]+%?)\s*)?\)$", re.IGNORECASE)
_STYLE_PROP_RE = re.compile(r"(?:^|;)\s*([\w-]+)\s*:\s*([^;]+)")
_TRANSLATE_RE = re.compile(r"translate\(\s*(-?[\d.]+)")
_PCT_RE = re.compile(r"(\d{1,3}(?:\.\d+)?)\s*%")
_SINCE_TEXT_RE = re.compile(r"since\s+(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")

_NO_DATA_CLASSES = ("nodata", "unknown", "empty")
_DOWN_CLASSES = ("degraded", "partial", "warning", "major", "outage", "down", "critical")
_UP_CLASSES = ("operational", "success", "healthy")

UPTIME_SYSTEM_PROMPT = """\
You extract uptime bar chart data from status page HTML. Return JSON:
{
  "start_date": "YYYY-MM-DD of the oldest bar if the page states it, else null",
  "services": [
    {"name": "Service Name", "uptime_pct": 99.95, "uptime_days": [true, true, false, true, null]}
  ]
}
uptime_days: one entry per bar, oldest first (left to right).
Map each bar's fill color or class: green/operational/success -> true;
red, orange, yellow, degraded, partial, outage -> false; gray or no data -> null.
Skip transparent or zero-opacity overlay rectangles entirely.
uptime_pct: the percentage shown near the bar chart, or null if not visible.
ONLY extract data for these services: {names}"""

UPTIME_USER_PROMPT = "Extract uptime bar data for the listed services from this HTML:"


@dataclass
class UptimeSeries:
    uptime_pct: float | None = None
    uptime_days: list[bool | None] = field(default_factory=list)


@dataclass
class UptimeDecoding:
    series: dict[str, UptimeSeries]
    anchor: date | None = None


def parse_color(value: str) -> tuple[int, int, int, float] | None:
    """Parse hex, rgb()/rgba() or a named color into (r, g, b, alpha)."""
    text = value.strip().lower()
    if not text:
        return None
    if text in ("transparent", "none"):
        return (0, 0, 0, 0.0)
    if text in NAMED_COLORS:
        return (*NAMED_COLORS[text], 1.0)

    match = _HEX_RE.match(text)
    if match:
        digits = match.group(1)
        if len(digits) in (3, 4):
            digits = "".join(ch * 2 for ch in digits)
        r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
        alpha = int(digits[6:8], 16) / 255 if len(digits) == 8 else 1.0
        return (r, g, b, alpha)

    match = _RGB_RE.match(text)
    if match:
        r, g, b = (min(255, int(float(match.group(i)))) for i in (1, 2, 3))
        alpha = 1.0
        if match.group(4):
            raw = match.group(4)
            alpha = float(raw[:-1]) / 100 if raw.endswith("%") else float(raw)
        return (r, g, b, alpha)
    return None


def is_transparent(value: str) -> bool:
    parsed = parse_color(value)
    return parsed is not None and parsed[3] == 0


def classify_rgb(r: int, g: int, b: int) -> bool | None:
    """Dominant green is up; red, orange and yellow are down; near-gray is no data."""
    if max(r, g, b) - min(r, g, b) < NEUTRAL_SPREAD:
        return None
    if g > r and g > b:
        return True
    if r >= g and r > b:
        return False
    return None


def classify_fill(value: str) -> bool | None:
    """Classify a fill color. Unparseable colors count as no data."""
    parsed = parse_color(value)
    if parsed is None:
        return None
    r, g, b, _ = parsed
    return classify_rgb(r, g, b)


def classify_class(classes: str | list[str]) -> bool | None:
    """Classify a day-cell by its CSS class names."""
    if isinstance(classes, list):
        classes = " ".join(classes)
    text = classes.lower().replace("-", "").replace("_", "")
    if any(word in text for word in _NO_DATA_CLASSES):
        return None
    if any(word in text for word in _DOWN_CLASSES):
        return False
    if any(word in text for word in _UP_CLASSES):
        return True
    return None


def _style_props(tag: Tag) -> dict[str, str]:
    style = tag.get("style") or ""
    return {k.lower(): v.strip() for k, v in _STYLE_PROP_RE.findall(style)}


def _zero(value: str | None) -> bool:
    if value is None:
        return False
    try:
        return float(value.strip().rstrip("%")) == 0
    except ValueError:
        return False


def _rect_x(rect: Tag) -> float | None:
    raw = rect.get("x")
    if raw is None:
        match = _TRANSLATE_RE.search(rect.get("transform") or "")
        raw = match.group(1) if match else None
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None


@dataclass
class DayCell:
    x: float | None
    state: bool | None


def decode_rect(rect: Tag) -> DayCell | None:
    """Classify one <rect>; None means it is an invisible overlay, not data."""
    style = _style_props(rect)
    fill = style.get("fill") or rect.get("fill")
    for opacity in (style.get("fill-opacity"), rect.get("fill-opacity"), style.get("opacity"), rect.get("opacity")):
        if _zero(opacity):
            return None
    if fill is not None and is_transparent(fill):
        return None

    if fill:
        state = classify_fill(fill)
    else:
        state = classify_class(rect.get("class") or "")
    return DayCell(x=_rect_x(rect), state=state)


def decode_rects(rects: list[Tag]) -> list[bool | None]:
    """Classify rects and order them oldest (leftmost) first."""
    cells = [cell for cell in (decode_rect(r) for r in rects) if cell is not None]
    if cells and all(c.x is not None for c in cells):
        cells.sort(key=lambda c: c.x)
    return [c.state for c in cells]


def find_anchor_date(soup: BeautifulSoup) -> date | None:
    """Find the "since" date of the oldest bar in attributes or text."""
    for tag in soup.find_all(True):
        for attr, value in tag.attrs.items():
            if "since" not in attr.lower() or not isinstance(value, str):
                continue
            anchor = _parse_iso_date(value)
            if anchor is not None:
                return anchor
    match = _SINCE_TEXT_RE.search(soup.get_text(" "))
    return _parse_iso_date(match.group(1)) if match else None


def _parse_iso_date(value: str) -> date | None:
    match = _ISO_DATE_RE.match(value.strip())
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


def _in_svg(node) -> bool:
    return node.find_parent("svg") is not None


def _walk_events(soup: BeautifulSoup, known: dict[str, str]) -> list[tuple[str, object]]:
    """Document-order stream of ("name", str), ("svg", Tag) and ("pct", float) events."""
    events: list[tuple[str, object]] = []
    for node in soup.descendants:
        if isinstance(node, Tag):
            if node.name == "svg" and not _in_svg(node) and node.find("rect") is not None:
                events.append(("svg", node))
            continue
        if isinstance(node, PreformattedString) or not isinstance(node, NavigableString):
            continue
        text = " ".join(node.split())
        if not text or _in_svg(node):
            continue
        name = known.get(normalize_key(text))
        if name is not None:
            events.append(("name", name))
            continue
        pct = _PCT_RE.search(text)
        if pct and float(pct.group(1)) <= 100:
            events.append(("pct", float(pct.group(1))))
    return events


def decode_uptime_bars(html: str, service_names: list[str]) -> UptimeDecoding:
    """Deterministically decode uptime bars for each known service."""
    soup = BeautifulSoup(reduce_for_uptime(html), "lxml")
    known = {normalize_key(n): n for n in service_names}
    events = _walk_events(soup, known)

    series: dict[str, UptimeSeries] = {}
    for idx, (kind, value) in enumerate(events):
        if kind != "name":
            continue
        name = value
        current = series.get(name)
        if current is not None and current.uptime_days:
            continue

        svg: Tag | None = None
        pct: float | None = None
        for other_kind, other in events[idx + 1:]:
            if other_kind == "name" and other != name:
                break
            if other_kind == "svg" and svg is None:
                svg = other
            elif other_kind == "pct" and pct is None:
                pct = other

        days = decode_rects(svg.find_all("rect")) if svg is not None else []
        if current is None or days:
            series[name] = UptimeSeries(uptime_pct=pct, uptime_days=days)

    for name in service_names:
        series.setdefault(name, UptimeSeries())
        logger.debug("%s: %d bars", name, len(series[name].uptime_days))

    anchor = find_anchor_date(soup)
    decoded = sum(1 for s in series.values() if s.uptime_days)
    logger.info("Decoded uptime bars for %d of %d services (anchor %s)", decoded, len(service_names), anchor)
    return UptimeDecoding(series=series, anchor=anchor)


def _coerce_day(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return {"true": True, "up": True, "false": False, "down": False}.get(value.strip().lower())
    return None


async def ai_uptime_fallback(
    provider: AIProvider,
    html: str,
    service_names: list[str],
) -> UptimeDecoding:
    """Ask the completion provider to read the bars for the given services."""
    system = UPTIME_SYSTEM_PROMPT.replace("{names}", json.dumps(service_names))
    parsed = await provider.complete(system, UPTIME_USER_PROMPT, reduce_for_uptime(html))
    if not isinstance(parsed, dict):
        return UptimeDecoding(series={})

    wanted = set(service_names)
    series: dict[str, UptimeSeries] = {}
    for item in parsed.get("services") or []:
        if not isinstance(item, dict) or item.get("name") not in wanted:
            continue
        days = item.get("uptime_days") or []
        pct = item.get("uptime_pct")
        series[item["name"]] = UptimeSeries(
            uptime_pct=float(pct) if isinstance(pct, (int, float)) and 0 <= pct <= 100 else None,
            uptime_days=[_coerce_day(d) for d in days] if isinstance(days, list) else [],
        )
    start = parsed.get("start_date")
    return UptimeDecoding(series=series, anchor=_parse_iso_date(start) if isinstance(start, str) else None)


async def decode_uptime(
    html: str,
    service_names: list[str],
    provider: AIProvider | None = None,
) -> UptimeDecoding:
    """
    Deterministic decoding first; the provider fills in services without
    bars, and supplies the anchor when the markup has none.

    Deterministic series always win over AI series for the same service.
    """
    result = decode_uptime_bars(html, service_names)
    missing = [n for n in service_names if not result.series[n].uptime_days]
    if provider is None or not service_names or (not missing and result.anchor is not None):
        return result

    targets = missing or service_names
    logger.info("AI uptime fallback for %d services (anchor found: %s)", len(targets), result.anchor is not None)
    try:
        fallback = await ai_uptime_fallback(provider, html, targets)
    except ExtractionError as exc:
        logger.warning("AI uptime fallback failed, keeping decoded bars: %s", exc)
        return result
    for name, ai_series in fallback.series.items():
        current = result.series.get(name)
        if current is None or not current.uptime_days:
            result.series[name] = ai_series
    if result.anchor is None:
        result.anchor = fallback.anchor
    return result


def align_series(
    series: dict[str, UptimeSeries],
    window: int,
    anchor: date | None,
) -> tuple[dict[str, list[bool | None]], str | None]:
    """
    Bring every series to ``window`` days, padding with None at the oldest end.

    The anchor is the date of the oldest bar of the longest series; it is
    shifted by however many days padding or trimming moved that bar.

    Returns:
        (aligned series by name, start date as YYYY-MM-DD or None)
    """
    longest = max((len(s.uptime_days) for s in series.values()), default=0)
    aligned: dict[str, list[bool | None]] = {}
    for name, s in series.items():
        days = [None] * (longest - len(s.uptime_days)) + list(s.uptime_days)
        if longest > window:
            days = days[longest - window:]
        else:
            days = [None] * (window - longest) + days
        aligned[name] = days

    if anchor is None or longest == 0:
        return aligned, None
    start = anchor + timedelta(days=longest - window)
    return aligned, start.isoformat()
