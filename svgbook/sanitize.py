"""Text-level repair of third-party SVG markup.

The markup handed to us is not guaranteed to be well-formed XML, so every
step here is a regular-expression pass over the raw text rather than a
parse/serialize round trip. The passes run in a fixed order and the whole
pipeline is repeated until the text stops changing, which keeps
``sanitize(sanitize(x)) == sanitize(x)`` even when one removal splices
together a construct that an earlier pass would have caught.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
XLINK_NAMESPACE = "http://www.w3.org/1999/xlink"

DASH_EPSILON = "0.001"
DEFAULT_WRAPPER_SIZE = (595, 842)

_DASH_ATTR = re.compile(r"(stroke-dasharray\s*=\s*)([\"'])(.*?)\2", re.IGNORECASE | re.DOTALL)
_DASH_PROPERTY = re.compile(r"(stroke-dasharray\s*:\s*)([^;\"'}<>]+)", re.IGNORECASE)
_DASH_ENTRY = re.compile(
    r"(?P<number>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)(?P<unit>[a-zA-Z%]*)"
)

# Element kinds that must never reach the renderer.
_BLOCK_TAGS = ("script", "foreignObject", "head", "iframe", "object", "embed", "link", "meta")
_WRAPPER_TAGS = ("html", "body")

_BLOCK_PATTERNS = [
    re.compile(rf"<{tag}\b[^>]*(?<!/)>.*?</{tag}\s*>", re.IGNORECASE | re.DOTALL)
    for tag in _BLOCK_TAGS
]
_BARE_PATTERNS = [
    re.compile(rf"</?{tag}\b[^>]*>", re.IGNORECASE)
    for tag in _BLOCK_TAGS + _WRAPPER_TAGS
]
_STYLESHEET_PI = re.compile(r"<\?xml-stylesheet\b.*?\?>", re.IGNORECASE | re.DOTALL)

_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_DOCTYPE = re.compile(r"<!DOCTYPE\b(?:[^>\[]|\[[^\]]*\])*>", re.IGNORECASE)

_ROOT_SVG = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
_DEFAULT_XMLNS = re.compile(r"\sxmlns\s*=")
_XLINK_XMLNS = re.compile(r"\sxmlns:xlink\s*=")

_SVG_SPAN = re.compile(r"<svg\b.*</svg\s*>", re.IGNORECASE | re.DOTALL)
_SVG_TAG = re.compile(r"<svg\b[^>]*>|</svg\s*>", re.IGNORECASE)
_ROOT_LENGTH = re.compile(r"\s(width|height)\s*=\s*[\"']\s*(\d*\.?\d+)")
_PROLOG = re.compile(
    r"(?:\s|<\?.*?\?>|<!--.*?-->|<!DOCTYPE\b(?:[^>\[]|\[[^\]]*\])*>)*", re.IGNORECASE | re.DOTALL
)
_SIZE_HINT_PAIR = re.compile(r"\b(\d{2,5})\s*[x×]\s*(\d{2,5})\b")
_SIZE_HINT_WIDTH = re.compile(r"\bwidth\s*[=:]\s*[\"']?\s*(\d{2,5})", re.IGNORECASE)
_SIZE_HINT_HEIGHT = re.compile(r"\bheight\s*[=:]\s*[\"']?\s*(\d{2,5})", re.IGNORECASE)


def _fix_dash_entry(match: re.Match) -> str:
    if float(match.group("number")) == 0:
        return DASH_EPSILON
    return match.group(0)


def _fix_dash_list(values: str) -> str:
    return _DASH_ENTRY.sub(_fix_dash_entry, values)


def fix_dash_arrays(text: str) -> str:
    """Replace zero-length dash/gap entries with a tiny positive length."""
    text = _DASH_ATTR.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{_fix_dash_list(m.group(3))}{m.group(2)}",
        text,
    )
    return _DASH_PROPERTY.sub(lambda m: m.group(1) + _fix_dash_list(m.group(2)), text)


def strip_hostile_tags(text: str) -> str:
    """Drop scripts, externally loaded styles, HTML wrappers and foreign objects."""
    for pattern in _BLOCK_PATTERNS:
        text = pattern.sub("", text)
    for pattern in _BARE_PATTERNS:
        text = pattern.sub("", text)
    return _STYLESHEET_PI.sub("", text)


def strip_comments(text: str) -> str:
    text = _COMMENT.sub("", text)
    return _DOCTYPE.sub("", text)


def ensure_namespace(text: str) -> str:
    """Declare the SVG (and, when used, XLink) namespace on the root element."""
    match = _ROOT_SVG.search(text)
    if not match:
        return text
    tag = match.group(0)
    additions = ""
    if not _DEFAULT_XMLNS.search(tag):
        additions += f' xmlns="{SVG_NAMESPACE}"'
    if "xlink:" in text and not _XLINK_XMLNS.search(tag):
        additions += f' xmlns:xlink="{XLINK_NAMESPACE}"'
    if not additions:
        return text
    patched = tag[:4] + additions + tag[4:]
    return text[: match.start()] + patched + text[match.end():]


SANITIZE_PASSES: Sequence[Callable[[str], str]] = (
    fix_dash_arrays,
    strip_hostile_tags,
    strip_comments,
    ensure_namespace,
    str.lstrip,
)


def sanitize(text: str) -> str:
    """Normalize raw SVG markup into something safe for the PDF renderer."""
    while True:
        result = text
        for step in SANITIZE_PASSES:
            result = step(result)
        if result == text:
            return result
        text = result


def looks_like_svg(text: str) -> bool:
    """True when the first element after any XML prolog is ``<svg``."""
    head = text[:4096]
    return head[_PROLOG.match(head).end():][:4].lower() == "<svg"


def _svg_blocks(text: str) -> List[str]:
    """Top-level ``<svg>...</svg>`` blocks, pairing open and close tags by depth."""
    blocks: List[str] = []
    depth = 0
    start = 0
    for match in _SVG_TAG.finditer(text):
        tag = match.group(0)
        if tag.startswith("</"):
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                blocks.append(text[start:match.end()])
        elif tag.endswith("/>"):
            if depth == 0:
                blocks.append(tag)
        else:
            if depth == 0:
                start = match.start()
            depth += 1
    return blocks


def _declared_area(block: str) -> float:
    root = _ROOT_SVG.match(block)
    if not root:
        return 0.0
    lengths = dict(_ROOT_LENGTH.findall(root.group(0).lower()))
    try:
        return float(lengths["width"]) * float(lengths["height"])
    except (KeyError, ValueError):
        return 0.0


def extract_svg_span(text: str) -> Optional[str]:
    """Return the page's ``<svg>...</svg>`` block from arbitrary text.

    HTML pages often carry small inline icons next to the page itself, so
    among the top-level blocks the one with the largest declared size wins.
    """
    if looks_like_svg(text):
        return text
    blocks = _svg_blocks(text)
    if blocks:
        return max(blocks, key=lambda block: (_declared_area(block), len(block)))
    # Unbalanced markup: fall back to the widest span.
    match = _SVG_SPAN.search(text)
    return match.group(0) if match else None


def parse_size_hint(text: str) -> Tuple[int, int]:
    """Find a ``W x H`` or ``width=..`` / ``height=..`` hint, else a portrait default."""
    pair = _SIZE_HINT_PAIR.search(text)
    if pair:
        return int(pair.group(1)), int(pair.group(2))
    width = _SIZE_HINT_WIDTH.search(text)
    height = _SIZE_HINT_HEIGHT.search(text)
    if width and height:
        return int(width.group(1)), int(height.group(1))
    return DEFAULT_WRAPPER_SIZE


def raster_wrapper(href: str, width: int, height: int) -> str:
    """Minimal SVG document that displays a single raster image."""
    return (
        f'<svg xmlns="{SVG_NAMESPACE}" xmlns:xlink="{XLINK_NAMESPACE}" '
        f'width="{width}" height="{height}" viewBox="0 0 {width} {height}">'
        f'<image x="0" y="0" width="{width}" height="{height}" xlink:href="{href}"/>'
        "</svg>"
    )


def empty_svg(width: int = DEFAULT_WRAPPER_SIZE[0], height: int = DEFAULT_WRAPPER_SIZE[1]) -> str:
    return (
        f'<svg xmlns="{SVG_NAMESPACE}" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}"/>'
    )
