"""Tests for turning a folder of page units into a PDF."""

import pytest

from svgbook.assemble import (
    assemble_document,
    collect_units,
    page_size_for,
    parse_svg_size,
    to_points,
)
from svgbook.errors import AssemblyError
from svgbook.models import PageSize

pdfium = pytest.importorskip("pypdfium2")

SVG_NS = "http://www.w3.org/2000/svg"


def _unit(width=None, height=None, fill="#333"):
    size = f' width="{width}" height="{height}"' if width else ""
    return (
        f'<svg xmlns="{SVG_NS}"{size} viewBox="0 0 100 100">'
        f'<rect x="10" y="10" width="80" height="80" fill="{fill}"/></svg>'
    )


def _page_sizes(path):
    pdf = pdfium.PdfDocument(str(path))
    try:
        return [pdf[index].get_size() for index in range(len(pdf))]
    finally:
        pdf.close()


@pytest.mark.parametrize(
    ("value", "unit"),
    [(96, "px"), (96, ""), (1, "in"), (25.4, "mm"), (2.54, "cm"), (72, "pt")],
)
def test_to_points(value, unit):
    assert to_points(value, unit) == pytest.approx(72)


def test_to_points_unknown_unit():
    assert to_points(50, "%") is None
    assert to_points(3, "em") is None


class TestParseSvgSize:
    def test_root_dimensions(self):
        size = parse_svg_size('<svg width="210mm" height="297mm"><rect width="5" height="5"/></svg>')
        assert size.width_pt == pytest.approx(595.28, abs=0.01)
        assert size.height_pt == pytest.approx(841.89, abs=0.01)

    def test_ignores_child_dimensions(self):
        assert parse_svg_size('<svg viewBox="0 0 1 1"><rect width="5" height="5"/></svg>') is None

    def test_stroke_width_is_not_width(self):
        markup = '<svg stroke-width="4" width="96" height="48"/>'
        assert parse_svg_size(markup) == PageSize(72, 36)

    def test_fallback_to_a4(self):
        assert page_size_for('<svg width="100%" height="100%"/>') == PageSize.a4()
        assert page_size_for("<svg/>") == PageSize.a4()


def test_units_in_natural_order(tmp_path):
    for name in ("0010.svg", "0002.svg", "0001.svg", "notes.txt"):
        (tmp_path / name).write_text(_unit(10, 10), encoding="utf-8")
    assert [path.name for path in collect_units(tmp_path)] == ["0001.svg", "0002.svg", "0010.svg"]


class TestAssembleDocument:
    def test_one_page_per_unit_with_own_size(self, tmp_path):
        directory = tmp_path / "Geografie 2"
        directory.mkdir()
        (directory / "0001.svg").write_text(_unit("96px", "192px"), encoding="utf-8")
        (directory / "0002.svg").write_text(_unit("1in", "2in"), encoding="utf-8")
        (directory / "0010.svg").write_text(_unit(), encoding="utf-8")

        result = assemble_document(directory)

        assert result.output_path == directory / "Geografie 2.pdf"
        assert result.page_count == 3
        assert not (directory / "Geografie 2.pdf.part").exists()
        sizes = _page_sizes(result.output_path)
        assert len(sizes) == 3
        assert sizes[0] == pytest.approx((72, 144), abs=0.5)
        assert sizes[1] == pytest.approx((72, 144), abs=0.5)
        assert sizes[2] == pytest.approx((595.28, 841.89), abs=0.5)

    def test_output_name_is_ascii(self, tmp_path):
        directory = tmp_path / "Mathematik für Ökonomen"
        directory.mkdir()
        (directory / "0001.svg").write_text(_unit(96, 96), encoding="utf-8")
        result = assemble_document(directory)
        assert result.output_path.name == "Mathematik fur Okonomen.pdf"

    def test_empty_directory(self, tmp_path):
        with pytest.raises(AssemblyError):
            assemble_document(tmp_path)
        assert list(tmp_path.iterdir()) == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(AssemblyError):
            assemble_document(tmp_path / "nope")

    def test_rerun_replaces_output(self, tmp_path):
        (tmp_path / "0001.svg").write_text(_unit(96, 96), encoding="utf-8")
        first = assemble_document(tmp_path)
        (tmp_path / "0002.svg").write_text(_unit(96, 96), encoding="utf-8")
        second = assemble_document(tmp_path)
        assert second.output_path == first.output_path
        assert len(_page_sizes(second.output_path)) == 2
