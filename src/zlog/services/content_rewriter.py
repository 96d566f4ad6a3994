"""Rewriting of asset URLs inside ingested remote content.

A remote post's markup refers to images the way its origin stores them:
root-relative (``/uploads/a.png``) or absolute against whatever host the
origin believed it was serving from (often ``http://localhost:3000``).
Copied verbatim those references break on every subscriber, so ingestion
re-anchors them on the remote site URL.

Only the origin's own asset paths (``/uploads/`` and ``/img/``) are touched.
Absolute URLs on third party hosts are left alone.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from zlog.services.remote_url import is_loopback_host, is_private_host

ASSET_PREFIXES = ("/uploads/", "/img/")

# ![alt](target "optional title")
_MARKDOWN_IMAGE_RE = re.compile(r"(!\[[^\]]*\]\()\s*([^)\s]+)")
# src="target" or src='target'
_HTML_SRC_RE = re.compile(r"""(\bsrc\s*=\s*)(["'])(.*?)\2""", re.IGNORECASE)


def _normalize_site(remote_site_url: str) -> str:
    return remote_site_url.rstrip("/")


def _is_asset_path(path: str) -> bool:
    return path.startswith(ASSET_PREFIXES)


def _has_wrong_host(url: str, remote_site_url: str) -> bool:
    hostname = (urlsplit(url).hostname or "").rstrip(".")
    # The origin's own host under another scheme or port counts as wrong too.
    return (
        is_loopback_host(hostname)
        or is_private_host(hostname)
        or hostname == (urlsplit(remote_site_url).hostname or "")
    )


def _rewrite_asset_reference(target: str, site: str) -> str:
    if target.startswith("//"):
        return target
    if target.startswith("/"):
        return site + target if _is_asset_path(target) else target
    if not target.lower().startswith(("http://", "https://")):
        return target

    try:
        parts = urlsplit(target)
    except ValueError:
        return target
    if not _is_asset_path(parts.path) or not _has_wrong_host(target, site):
        return target

    rewritten = site + parts.path
    if parts.query:
        rewritten += "?" + parts.query
    if parts.fragment:
        rewritten += "#" + parts.fragment
    return rewritten


def rewrite_url(url: str | None, remote_site_url: str) -> str | None:
    """Rewrite a single URL (e.g. a cover image) against ``remote_site_url``.

    Any root-relative path is made absolute; absolute asset URLs on a wrong
    host are re-anchored. ``None`` and empty strings pass through.
    """
    if not url:
        return url
    site = _normalize_site(remote_site_url)
    if url.startswith("/") and not url.startswith("//"):
        return site + url
    return _rewrite_asset_reference(url, site)


def rewrite_content(content: str, remote_site_url: str) -> str:
    """Rewrite asset references in markdown images and HTML ``src`` attributes."""
    if not content:
        return content
    site = _normalize_site(remote_site_url)

    def _markdown(match: re.Match[str]) -> str:
        return match.group(1) + _rewrite_asset_reference(match.group(2), site)

    def _html(match: re.Match[str]) -> str:
        quote = match.group(2)
        return f"{match.group(1)}{quote}{_rewrite_asset_reference(match.group(3), site)}{quote}"

    rewritten = _MARKDOWN_IMAGE_RE.sub(_markdown, content)
    return _HTML_SRC_RE.sub(_html, rewritten)
