"""Combine a folder of normalized SVG pages into one PDF."""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from typing import List, Optional

from reportlab.graphics import renderPDF
from reportlab.pdfgen import canvas as pdfcanvas
from svglib.svglib import svg2rlg

from .errors import AssemblyError
from .models import AssemblyResult, PageSize
from .utils import natural_sort_key, output_filename

logger = logging.getLogger("svgbook.assemble")

UNIT_SUFFIX = ".svg"

POINTS_PER_UNIT = {
    "": 72.0 / 96.0,
    "px": 72.0 / 96.0,
    "pt": 1.0,
    "mm": 72.0 / 25.4,
    "cm": 72.0 / 2.54,
    "in": 72.0,
}

_ROOT_SVG = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
_WIDTH = re.compile(r"\swidth\s*=\s*[\"']\s*(\d*\.?\d+)\s*([a-zA-Z]*)\s*[\"']")
_HEIGHT = re.compile(r"\sheight\s*=\s*[\"']\s*(\d*\.?\d+)\s*([a-zA-Z]*)\s*[\"']")


def to_points(value: float, unit: str) -> Optional[float]:
    """Convert a length to PDF points; unknown units yield None."""
    factor = POINTS_PER_UNIT.get(unit.lower())
    if factor is None:
        return None
    return value * factor


def parse_svg_size(markup: str) -> Optional[PageSize]:
    """Read the root element's declared width and height."""
    root = _ROOT_SVG.search(markup)
    if not root:
        return None
    width = _WIDTH.search(root.group(0))
    height = _HEIGHT.search(root.group(0))
    if not width or not height:
        return None
    width_pt = to_points(float(width.group(1)), width.group(2))
    height_pt = to_points(float(height.group(1)), height.group(2))
    if not width_pt or not height_pt:
        return None
    return PageSize(width_pt, height_pt)


def page_size_for(markup: str) -> PageSize:
    return parse_svg_size(markup) or PageSize.a4()


def collect_units(directory: Path) -> List[Path]:
    """Page units in natural numeric order (``0002`` before ``0010``)."""
    units = [
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() == UNIT_SUFFIX
    ]
    return sorted(units, key=lambda path: natural_sort_key(path.name))


def _draw_unit(pdf: pdfcanvas.Canvas, unit: Path, size: PageSize) -> None:
    drawing = svg2rlg(str(unit))
    if drawing is None:
        raise AssemblyError(f"Could not render page unit {unit}")
    if drawing.width and drawing.height:
        drawing.scale(size.width_pt / drawing.width, size.height_pt / drawing.height)
        drawing.width, drawing.height = size.width_pt, size.height_pt
    pdf.setPageSize((size.width_pt, size.height_pt))
    renderPDF.draw(drawing, pdf, 0, 0)
    pdf.showPage()


def assemble_document(directory: Path) -> AssemblyResult:
    """Render every page unit in ``directory`` into ``<directory>/<name>.pdf``.

    The PDF is written to a ``.part`` file and only moved into place once
    ReportLab has finished writing it, so a failed run never leaves a
    truncated or empty document behind.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise AssemblyError(f"Document directory does not exist: {directory}")
    units = collect_units(directory)
    if not units:
        raise AssemblyError(f"No {UNIT_SUFFIX} page units found in {directory}")

    output_path = directory / output_filename(directory.name)
    partial_path = output_path.with_name(output_path.name + ".part")
    start = time.perf_counter()
    logger.info("Assembling %d page(s) from %s", len(units), directory)

    pdf = pdfcanvas.Canvas(str(partial_path), pageCompression=1)
    pdf.setTitle(directory.name)
    try:
        for unit in units:
            size = page_size_for(unit.read_text(encoding="utf-8", errors="replace"))
            _draw_unit(pdf, unit, size)
            logger.debug("Added %s (%.1f x %.1f pt)", unit.name, size.width_pt, size.height_pt)
        pdf.save()
    except Exception:
        partial_path.unlink(missing_ok=True)
        raise
    os.replace(partial_path, output_path)

    elapsed = time.perf_counter() - start
    logger.info("Saved PDF to %s (%d pages, %.2fs)", output_path, len(units), elapsed)
    return AssemblyResult(
        directory=directory,
        output_path=output_path,
        page_count=len(units),
        total_seconds=elapsed,
    )
