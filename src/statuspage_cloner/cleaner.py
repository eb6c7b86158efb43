"""Markup reduction before extraction.

Two pure string transforms: an aggressive one for working out which
services exist, and a lighter one that keeps SVG (the uptime bars live
there). Both only delete spans and collapse whitespace, so surviving
elements and text keep their document order, which the extractors use
as a stand-in for visual order.
"""

from __future__ import annotations

import re

_FLAGS = re.DOTALL | re.IGNORECASE

_BOILERPLATE_BLOCKS = [
    re.compile(r"<script\b[^>]*>.*?</script\s*>", _FLAGS),
    re.compile(r"<style\b[^>]*>.*?</style\s*>", _FLAGS),
    re.compile(r"<noscript\b[^>]*>.*?</noscript\s*>", _FLAGS),
    re.compile(r"<head\b[^>]*>.*?</head\s*>", _FLAGS),
    re.compile(r"<footer\b[^>]*>.*?</footer\s*>", _FLAGS),
    re.compile(r"<nav\b[^>]*>.*?</nav\s*>", _FLAGS),
]
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_SVG_BLOCK = re.compile(r"<svg\b[^>]*>.*?</svg\s*>", _FLAGS)
_VISUAL_ATTRS = [
    re.compile(r"""\s+style\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE),
    re.compile(r"""\s+class\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE),
    re.compile(r"""\s+data-[a-z0-9_.:-]+\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE),
]
_RUNS_OF_SPACE = re.compile(r"\s{2,}")
_SPACE_BETWEEN_TAGS = re.compile(r">\s+<")


def _strip_boilerplate(text: str) -> str:
    for pattern in _BOILERPLATE_BLOCKS:
        text = pattern.sub("", text)
    return _COMMENT.sub("", text)


def _collapse_whitespace(text: str) -> str:
    text = _RUNS_OF_SPACE.sub(" ", text)
    return _SPACE_BETWEEN_TAGS.sub("><", text).strip()


def reduce_for_services(raw_html: str) -> str:
    """Strip everything that does not help answer "which services exist"."""
    text = _strip_boilerplate(raw_html)
    text = _SVG_BLOCK.sub("", text)
    for pattern in _VISUAL_ATTRS:
        text = pattern.sub("", text)
    return _collapse_whitespace(text)


def reduce_for_uptime(raw_html: str) -> str:
    """Strip boilerplate but keep SVG, inline styles and classes (bar colors live there)."""
    return _collapse_whitespace(_strip_boilerplate(raw_html))


def truncate_document(text: str, max_chars: int) -> str:
    """Cut a document to the completion budget."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars]
