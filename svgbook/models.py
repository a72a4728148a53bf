"""Data models used throughout the capture pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

A4_WIDTH_PT = 595.28
A4_HEIGHT_PT = 841.89


@dataclass(frozen=True)
class PageSize:
    """Physical page size in PDF points."""

    width_pt: float
    height_pt: float

    @classmethod
    def a4(cls) -> "PageSize":
        return cls(A4_WIDTH_PT, A4_HEIGHT_PT)


@dataclass(frozen=True)
class Page:
    """A captured page: raw markup as received plus its normalized form."""

    index: int
    source_url: str
    raw_markup: str
    markup: str
    size: Optional[PageSize] = None

    @property
    def filename(self) -> str:
        return f"{self.index:04d}.svg"


@dataclass
class ResolvedReference:
    """Fallback chain record for one external reference."""

    reference: str
    absolute_url: str
    attempts: List[str] = field(default_factory=list)
    outcome: str = "placeholder"
    data_uri: Optional[str] = None


@dataclass
class CaptureResult:
    """Summary of a captured document."""

    title: str
    directory: Path
    page_count: int
    skipped_pages: List[int]
    total_seconds: float


@dataclass
class AssemblyResult:
    """Timing details for an assembled output document."""

    directory: Path
    output_path: Path
    page_count: int
    total_seconds: float


@dataclass
class RunSummary:
    """Outcome of an orchestrated multi-title run."""

    captured: List[CaptureResult] = field(default_factory=list)
    assembled: List[AssemblyResult] = field(default_factory=list)
    failed_titles: List[str] = field(default_factory=list)
    failed_assemblies: List[Path] = field(default_factory=list)
    skipped_titles: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_titles and not self.failed_assemblies
