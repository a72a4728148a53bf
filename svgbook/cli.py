"""Command-line entry point for svgbook."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

import requests

from .assemble import assemble_document
from .config import CAPTURE_MODES, CaptureConfig
from .errors import AssemblyError
from .orchestrator import run_books
from .resolver import download_page
from .session import http_session

logger = logging.getLogger("svgbook.cli")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _add_capture_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("titles", nargs="+", help="Titles of the books to capture")
    parser.add_argument(
        "--output",
        default="books",
        type=Path,
        help="Directory where one folder per book is written",
    )
    parser.add_argument(
        "--cooldown",
        type=float,
        default=None,
        help="Seconds to wait between two books (default: 30)",
    )
    parser.add_argument(
        "--mode",
        choices=CAPTURE_MODES,
        default=None,
        help="Page acquisition: intercept viewer traffic, fetch directly, or both (default: auto)",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        default=None,
        help="Run the browser without a window",
    )
    parser.add_argument(
        "--profile",
        type=Path,
        default=None,
        help="Persistent Chromium profile directory (default: $CHROME_PROFILE)",
    )
    parser.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip books whose PDF already exists",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=2,
        help="Processes used to assemble PDFs",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Capture SVG e-books from a web viewer and assemble them into PDFs.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    capture_parser = subparsers.add_parser("capture", help="Capture books and build their PDFs")
    _add_capture_arguments(capture_parser)

    assemble_parser = subparsers.add_parser(
        "assemble", help="Build PDFs from folders of captured pages"
    )
    assemble_parser.add_argument("directories", nargs="+", type=Path)

    fetch_parser = subparsers.add_parser(
        "fetch-page", help="Download one page document and inline its assets"
    )
    fetch_parser.add_argument("url", help="Absolute URL of the page's SVG document")
    fetch_parser.add_argument("destination", type=Path, help="Where to write the SVG")
    fetch_parser.add_argument("--cookie", default=None, help="Raw Cookie header to send")
    fetch_parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")

    return parser.parse_args(argv)


def _run_capture(args: argparse.Namespace) -> int:
    config = CaptureConfig.from_env(
        Path(args.output).resolve(),
        cooldown=args.cooldown,
        capture_mode=args.mode,
        headless=args.headless,
        profile_dir=args.profile,
    )
    summary = asyncio.run(
        run_books(args.titles, config, skip_existing=args.skip_existing, max_workers=args.workers)
    )
    for result in summary.assembled:
        logger.info("%s -> %s (%d pages)", result.directory.name, result.output_path, result.page_count)
    for title in summary.failed_titles:
        logger.error("Not captured: %s", title)
    for directory in summary.failed_assemblies:
        logger.error("Not assembled: %s", directory)
    return 0 if summary.ok else 1


def _run_assemble(args: argparse.Namespace) -> int:
    failures = 0
    for directory in args.directories:
        try:
            assemble_document(directory)
        except AssemblyError as exc:
            logger.error("%s", exc)
            failures += 1
    return 1 if failures else 0


def _run_fetch_page(args: argparse.Namespace) -> int:
    session = http_session(cookie_header=args.cookie)
    try:
        asyncio.run(download_page(args.url, args.destination, session, args.timeout))
    except requests.RequestException as exc:
        logger.error("Could not fetch %s: %s", args.url, exc)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "capture":
        return _run_capture(args)
    if args.command == "assemble":
        return _run_assemble(args)
    return _run_fetch_page(args)


if __name__ == "__main__":
    sys.exit(main())
