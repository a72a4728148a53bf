"""Exception types raised by the capture pipeline."""

from __future__ import annotations


class SvgbookError(RuntimeError):
    """Base class for pipeline failures."""


class ViewTimeout(SvgbookError):
    """A bounded wait on the remote view expired."""


class ViewError(SvgbookError):
    """The remote view rejected an interaction."""


class CaptureError(SvgbookError):
    """Capturing a document failed; sibling documents are unaffected."""


class DocumentNotFoundError(CaptureError):
    """The requested title is not present in the document listing."""


class DocumentOpenError(CaptureError):
    """The document opened but no addressing scheme reached page 1."""


class AssemblyError(SvgbookError, ValueError):
    """A folder of page units could not be turned into an output document."""
