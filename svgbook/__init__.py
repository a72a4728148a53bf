"""Capture SVG e-books from a web viewer and rebuild them as PDFs."""
