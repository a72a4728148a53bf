"""Utility helpers for string normalization and path handling."""

from __future__ import annotations

import re
import unicodedata
from typing import List, Union
from urllib.parse import urlsplit, urlunsplit

UNSAFE_PATH_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")
DIGIT_RUN = re.compile(r"(\d+)")

MAX_OUTPUT_STEM = 120


def safe_title(value: str, fallback: str = "document") -> str:
    """Turn a document title into a directory name that every filesystem accepts."""
    cleaned = UNSAFE_PATH_CHARS.sub("", value).strip().rstrip(".")
    return cleaned or fallback


def deaccent(value: str) -> str:
    """Strip diacritics, keeping the base letters."""
    normalized = unicodedata.normalize("NFKD", value)
    return normalized.encode("ascii", "ignore").decode("ascii")


def output_filename(directory_name: str, suffix: str = ".pdf") -> str:
    """Build the output document name from its directory's name."""
    stem = UNSAFE_FILENAME_CHARS.sub("_", deaccent(directory_name))
    stem = re.sub(r"_+", "_", stem).strip(" ._") or "document"
    return stem[:MAX_OUTPUT_STEM].rstrip(" ._") + suffix


def natural_sort_key(name: str) -> List[Union[int, str]]:
    """Sort key that orders embedded numbers numerically (``2`` before ``10``)."""
    return [
        int(part) if part.isdigit() else part.casefold()
        for part in DIGIT_RUN.split(name)
    ]


def directory_url(url: str) -> str:
    """Return ``url`` as a directory so relative references keep every segment.

    Viewer URLs such as ``.../ebook/1234/5`` end in a bare segment that is a
    directory; ``urljoin`` would otherwise drop it.
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    last = path.rsplit("/", 1)[-1]
    if last and "." not in last:
        path += "/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))
