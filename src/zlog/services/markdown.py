"""Plain-text summaries of markdown content, used for excerpts."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

EXCERPT_LENGTH = 300

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADER_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_CALLOUT_RE = re.compile(r"^>\s*\[![A-Za-z]+\]\s*", re.MULTILINE)
_QUOTE_RE = re.compile(r"^>\s?", re.MULTILINE)
_STRONG_RE = re.compile(r"(\*\*|__)(.*?)\1")
_EMPHASIS_RE = re.compile(r"(\*|_)(.*?)\1")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_RULE_RE = re.compile(r"^[-*_]{3,}\s*$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-+*]\s+", re.MULTILINE)
_ORDERED_RE = re.compile(r"^\s*\d+\.\s+", re.MULTILINE)
_WHITESPACE_RE = re.compile(r"\s+")


def summarize(content: str | None) -> str:
    """Strip markdown and HTML formatting from ``content`` and return plain text."""
    if not content:
        return ""

    # Code is rarely a good summary; drop it before anything else.
    text = _CODE_BLOCK_RE.sub("", content)
    text = BeautifulSoup(text, "html.parser").get_text(separator=" ")

    text = _IMAGE_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _HEADER_RE.sub("", text)
    text = _CALLOUT_RE.sub("", text)
    text = _QUOTE_RE.sub("", text)
    text = _RULE_RE.sub("", text)
    text = _STRONG_RE.sub(r"\2", text)
    text = _EMPHASIS_RE.sub(r"\2", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _BULLET_RE.sub("", text)
    text = _ORDERED_RE.sub("", text)

    return _WHITESPACE_RE.sub(" ", text).strip()


def make_excerpt(content: str | None, limit: int = EXCERPT_LENGTH) -> str:
    """Return a summary of ``content`` truncated to ``limit`` characters."""
    return summarize(content)[:limit]
