"""Inline every external reference of a page so the markup stands alone."""

from __future__ import annotations

import asyncio
import base64
import html
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import requests
from bs4 import BeautifulSoup
from filetype import guess

from .models import ResolvedReference
from .sanitize import (
    empty_svg,
    extract_svg_span,
    looks_like_svg,
    parse_size_hint,
    raster_wrapper,
    sanitize,
)

logger = logging.getLogger("svgbook.resolver")

# 1x1 fully transparent PNG.
PLACEHOLDER_DATA_URI = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

ACCEPT_IMAGE = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"
ACCEPT_FONT = "font/woff2,font/woff,font/ttf,application/font-woff,*/*;q=0.5"
ACCEPT_SVG = "image/svg+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_ANY = "*/*"

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".avif"}
FONT_SUFFIXES = {".woff", ".woff2", ".ttf", ".otf", ".eot"}
FONT_TYPES = {
    "application/font-woff",
    "application/font-woff2",
    "application/font-sfnt",
    "application/x-font-woff",
    "application/x-font-ttf",
    "application/x-font-otf",
    "application/vnd.ms-fontobject",
}
GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_ATTR_REF = re.compile(r"(?<![\w:-])(?:xlink:href|href|src)\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_CSS_REF = re.compile(r"url\(\s*[\"']?([^\"')]+?)[\"']?\s*\)", re.IGNORECASE)


def is_self_contained(reference: str) -> bool:
    ref = reference.strip()
    return not ref or ref.startswith("#") or ref[:5].lower() == "data:"


def find_references(text: str) -> List[str]:
    """Collect distinct external references in document order."""
    seen: Dict[str, None] = {}
    for pattern in (_ATTR_REF, _CSS_REF):
        for match in pattern.finditer(text):
            ref = match.group(1)
            if not is_self_contained(ref):
                seen.setdefault(ref, None)
    return list(seen)


def accept_header_for(url: str) -> str:
    suffix = Path(urlsplit(url).path).suffix.lower()
    if suffix == ".svg":
        return ACCEPT_SVG
    if suffix in IMAGE_SUFFIXES:
        return ACCEPT_IMAGE
    if suffix in FONT_SUFFIXES:
        return ACCEPT_FONT
    return ACCEPT_ANY


def embeddable_type(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Return the MIME type to embed ``data`` with, or None if it is no image/font."""
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared.startswith(("image/", "font/")) or declared in FONT_TYPES:
        return declared
    if declared not in GENERIC_TYPES:
        return None
    kind = guess(data)
    if kind and (kind.mime.startswith(("image/", "font/")) or kind.mime in FONT_TYPES):
        return kind.mime
    if looks_like_svg(data[:4096].decode("utf-8", errors="ignore")):
        return "image/svg+xml"
    return None


def to_data_uri(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def find_wrapped_image(body: str) -> Optional[str]:
    """Pull the image source out of an HTML page that wraps a single image."""
    soup = BeautifulSoup(body, "html.parser")
    img = soup.find("img", src=True)
    if img is None:
        return None
    src = img["src"].strip()
    return src or None


def _fetch(
    http: requests.Session,
    url: str,
    accept: str,
    referer: Optional[str],
    timeout: float,
) -> requests.Response:
    headers = {"Accept": accept}
    if referer:
        headers["Referer"] = referer
    return http.get(url, headers=headers, timeout=timeout)


def _try_embed(
    http: requests.Session,
    url: str,
    referer: str,
    timeout: float,
    record: ResolvedReference,
) -> Tuple[Optional[str], Optional[requests.Response]]:
    try:
        resp = _fetch(http, url, accept_header_for(url), referer, timeout)
    except requests.RequestException as exc:
        logger.warning("Failed to fetch %s (reference %r): %s", url, record.reference, exc)
        return None, None
    if not resp.ok:
        logger.warning(
            "Reference %r -> %s returned HTTP %s", record.reference, url, resp.status_code
        )
        return None, None
    mime = embeddable_type(resp.headers.get("Content-Type"), resp.content)
    if mime:
        return to_data_uri(mime, resp.content), resp
    return None, resp


def resolve_reference(
    http: requests.Session,
    reference: str,
    origin: str,
    timeout: float = 30.0,
) -> ResolvedReference:
    """Fetch one reference, falling back to HTML salvage and then a placeholder."""
    absolute = urljoin(origin, html.unescape(reference.strip()))
    record = ResolvedReference(reference=reference, absolute_url=absolute)

    record.attempts.append("direct")
    data_uri, resp = _try_embed(http, absolute, origin, timeout, record)
    if data_uri:
        record.outcome, record.data_uri = "embedded", data_uri
        return record

    if resp is not None:
        record.attempts.append("html-salvage")
        wrapped = find_wrapped_image(resp.text)
        if wrapped and not is_self_contained(wrapped):
            salvage_url = urljoin(absolute, html.unescape(wrapped))
            data_uri, _ = _try_embed(http, salvage_url, origin, timeout, record)
            if data_uri:
                record.outcome, record.data_uri = "salvaged", data_uri
                logger.debug("Salvaged %s via wrapped image %s", absolute, salvage_url)
                return record
        elif wrapped and wrapped[:11].lower() == "data:image/":
            record.outcome, record.data_uri = "salvaged", wrapped
            return record
        logger.warning(
            "No image payload for %s (Content-Type=%s); using placeholder",
            absolute,
            resp.headers.get("Content-Type"),
        )

    record.attempts.append("placeholder")
    record.outcome, record.data_uri = "placeholder", PLACEHOLDER_DATA_URI
    return record


def substitute(text: str, replacements: Dict[str, str]) -> str:
    """Literally replace every occurrence of each key, longest keys first."""
    if not replacements:
        return text
    pattern = re.compile(
        "|".join(re.escape(key) for key in sorted(replacements, key=len, reverse=True))
    )
    return pattern.sub(lambda m: replacements[m.group(0)], text)


async def resolve_references(
    text: str,
    origin: str,
    http: requests.Session,
    timeout: float = 30.0,
) -> str:
    """Embed all external references of one page concurrently."""
    references = find_references(text)
    if not references:
        return text
    records = await asyncio.gather(
        *(
            asyncio.to_thread(resolve_reference, http, ref, origin, timeout)
            for ref in references
        )
    )
    placeholders = sum(1 for record in records if record.outcome == "placeholder")
    logger.debug(
        "Resolved %d reference(s) for %s (%d placeholder)", len(records), origin, placeholders
    )
    return substitute(text, {record.reference: record.data_uri for record in records})


async def extract_foreign_content(
    body: str,
    url: str,
    http: requests.Session,
    timeout: float = 30.0,
) -> str:
    """Turn an arbitrary response body into an SVG document."""
    span = extract_svg_span(body)
    if span is not None:
        return span
    wrapped = find_wrapped_image(body)
    if wrapped:
        record = await asyncio.to_thread(resolve_reference, http, wrapped, url, timeout)
        if record.outcome != "placeholder":
            width, height = parse_size_hint(body)
            logger.info("Wrapped raster page %s into a %dx%d SVG", url, width, height)
            return raster_wrapper(record.data_uri, width, height)
    logger.warning("Nothing salvageable in %s; substituting an empty page", url)
    return empty_svg()


async def fetch_page_markup(
    url: str,
    http: requests.Session,
    timeout: float = 30.0,
) -> Tuple[str, str]:
    """Download one page document and return ``(raw, normalized)`` markup.

    Raises ``requests.RequestException`` when the page itself cannot be
    fetched; reference failures never raise.
    """
    resp = await asyncio.to_thread(_fetch, http, url, ACCEPT_SVG, None, timeout)
    resp.raise_for_status()
    raw = resp.text
    markup = await extract_foreign_content(raw, url, http, timeout)
    markup = await resolve_references(markup, url, http, timeout)
    return raw, sanitize(markup)


async def download_page(
    url: str,
    destination: Path,
    http: requests.Session,
    timeout: float = 30.0,
) -> Path:
    """Fetch, inline and sanitize a single page document into ``destination``."""
    _, markup = await fetch_page_markup(url, http, timeout)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(markup, encoding="utf-8")
    logger.info("Saved page %s to %s", url, destination)
    return destination
