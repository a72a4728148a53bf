"""Drive a remote viewer through a document and persist every page as SVG."""

from __future__ import annotations

import asyncio
import enum
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests

from .assemble import parse_svg_size
from .config import CaptureConfig
from .errors import CaptureError, DocumentNotFoundError, DocumentOpenError, ViewError, ViewTimeout
from .models import CaptureResult, Page
from .resolver import fetch_page_markup, resolve_references
from .sanitize import empty_svg, sanitize
from .utils import directory_url, safe_title
from .viewer import ObservedResponse, RemoteView

logger = logging.getLogger("svgbook.capture")

_PAGE_FILE = re.compile(r"/(\d+)\.svg$", re.IGNORECASE)


class CaptureState(enum.Enum):
    IDLE = "idle"
    LOCATING = "locating"
    OPENED = "opened"
    PAGE_READY = "page-ready"
    ADVANCING = "advancing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryParamAddressing:
    """Pages addressed as ``...?page=N``."""

    param: str = "page"
    name: str = "query-parameter"

    def page_url(self, base_url: str, page: int) -> str:
        parts = urlsplit(base_url)
        query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != self.param]
        query.append((self.param, str(page)))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


@dataclass(frozen=True)
class NestedPathAddressing:
    """Pages addressed as a numeric sub-directory, ``.../<book>/N/``.

    When the base URL already ends in two numeric segments the last one is
    taken to be a page number left over from a resumed session.
    """

    name: str = "nested-path"

    def page_url(self, base_url: str, page: int) -> str:
        parts = urlsplit(base_url)
        segments = [segment for segment in parts.path.split("/") if segment]
        if len(segments) >= 2 and segments[-1].isdigit() and segments[-2].isdigit():
            segments.pop()
        path = "/" + "/".join(segments + [str(page)]) + "/"
        return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


DEFAULT_ADDRESSING = (QueryParamAddressing(), NestedPathAddressing())


def _normalize_title(value: str) -> str:
    return " ".join(value.split()).casefold()


def match_title(entries: Sequence[str], title: str) -> Optional[int]:
    """Index of the listing entry for ``title``: exact match first, then containment."""
    wanted = _normalize_title(title)
    normalized = [_normalize_title(entry) for entry in entries]
    for index, entry in enumerate(normalized):
        if entry == wanted:
            return index
    for index, entry in enumerate(normalized):
        if wanted and wanted in entry:
            return index
    return None


class PassiveCapture:
    """Collects page documents the viewer downloads on its own.

    Deliveries are keyed by page number; the first body wins and any
    re-delivery of the same file is ignored. HTML served under a page's
    file name (a login redirect, an error page) is never taken as a page.
    """

    def __init__(self) -> None:
        self._deliveries: Dict[int, asyncio.Future] = {}

    def _slot(self, page: int) -> asyncio.Future:
        slot = self._deliveries.get(page)
        if slot is None:
            slot = asyncio.get_running_loop().create_future()
            self._deliveries[page] = slot
        return slot

    async def handle(self, response: ObservedResponse) -> None:
        match = _PAGE_FILE.search(urlsplit(response.url).path)
        if not match or response.status >= 400:
            return
        if response.content_type.split(";")[0].strip().lower() == "text/html":
            logger.debug("Ignoring HTML served for %s", response.url)
            return
        slot = self._slot(int(match.group(1)))
        if slot.done():
            logger.debug("Ignoring repeated delivery of %s", response.url)
            return
        try:
            body = await response.read()
        except ViewError as exc:
            logger.warning("Could not read intercepted page %s: %s", response.url, exc)
            return
        if not slot.done():
            slot.set_result((response.url, body.decode("utf-8", errors="replace")))

    async def take(self, page: int, timeout: float) -> Optional[Tuple[str, str]]:
        """Wait up to ``timeout`` seconds for page ``page``'s document."""
        slot = self._slot(page)
        try:
            return await asyncio.wait_for(asyncio.shield(slot), timeout)
        except asyncio.TimeoutError:
            return None


class PageCaptureDriver:
    """State machine that turns one viewer session into numbered SVG files."""

    def __init__(
        self,
        view: RemoteView,
        http: requests.Session,
        config: CaptureConfig,
        addressing: Sequence = DEFAULT_ADDRESSING,
    ) -> None:
        self.view = view
        self.http = http
        self.config = config
        self.selectors = config.selectors
        self.addressing = tuple(addressing)
        self.state = CaptureState.IDLE

    def _transition(self, state: CaptureState, detail: object = "") -> None:
        logger.debug("%s -> %s %s", self.state.value, state.value, detail)
        self.state = state

    async def capture(self, title: str) -> CaptureResult:
        """Capture every page of ``title`` into ``<output_root>/<safe title>/``."""
        start = time.perf_counter()
        directory = self.config.output_root / safe_title(title)
        reader: Optional[RemoteView] = None
        passive = PassiveCapture()
        try:
            reader = await self._locate(title)
            reader.on_response(passive.handle)
            strategy, base_url = await self._open_first_page(reader)
            directory.mkdir(parents=True, exist_ok=True)
            page_count, skipped = await self._capture_pages(
                reader, strategy, base_url, passive, directory
            )
        except CaptureError:
            self._transition(CaptureState.FAILED, title)
            raise
        except (ViewTimeout, ViewError) as exc:
            self._transition(CaptureState.FAILED, title)
            raise CaptureError(f"Capturing {title!r} failed: {exc}") from exc
        finally:
            if reader is not None:
                reader.off_response(passive.handle)
                if reader is not self.view:
                    await reader.close()

        self._transition(CaptureState.DONE, title)
        elapsed = time.perf_counter() - start
        logger.info("Finished %s: %d pages in %.1fs", title, page_count, elapsed)
        if skipped:
            logger.warning("%s: pages %s were replaced by blank pages", title, skipped)
        return CaptureResult(
            title=title,
            directory=directory,
            page_count=page_count,
            skipped_pages=skipped,
            total_seconds=elapsed,
        )

    async def _locate(self, title: str) -> RemoteView:
        self._transition(CaptureState.LOCATING, title)
        library_url = self.config.library_url
        if library_url and self.view.url.rstrip("/") != library_url.rstrip("/"):
            await self.view.goto(library_url)
        try:
            await self.view.wait_for_element(
                self.selectors.listing_entry, self.config.element_timeout
            )
        except ViewTimeout as exc:
            raise DocumentNotFoundError(f"Document listing did not load: {exc}") from exc
        entries = await self.view.entry_texts(self.selectors.listing_entry)
        index = match_title(entries, title)
        if index is None:
            raise DocumentNotFoundError(
                f"No listing entry matches {title!r} ({len(entries)} entries)"
            )
        reader = await self.view.open_entry(
            self.selectors.listing_entry, index, self.config.popup_timeout
        )
        try:
            await reader.wait_for_url(
                self.config.reader_url_pattern, self.config.navigation_timeout
            )
        except ViewTimeout as exc:
            raise DocumentOpenError(f"Reader for {title!r} never opened: {exc}") from exc
        self._transition(CaptureState.OPENED, reader.url)
        return reader

    async def _open_first_page(self, reader: RemoteView) -> Tuple[object, str]:
        """Force page 1, trying each addressing scheme in order."""
        base_url = reader.url
        container = self.selectors.container_for(1)
        for strategy in self.addressing:
            url = strategy.page_url(base_url, 1)
            try:
                await reader.goto(url)
                await reader.wait_for_element(container, self.config.element_timeout)
            except (ViewTimeout, ViewError) as exc:
                logger.warning("Page 1 not reachable via %s addressing (%s): %s", strategy.name, url, exc)
                continue
            logger.debug("Using %s addressing for %s", strategy.name, base_url)
            return strategy, base_url
        raise DocumentOpenError(f"No addressing scheme reached page 1 of {base_url}")

    async def _try_view(self, action, selector: str, default):
        """Run a best-effort view query; a failure only costs this attempt."""
        try:
            return await action(selector)
        except (ViewError, ViewTimeout) as exc:
            logger.debug("Overlay step on %s failed: %s", selector, exc)
            return default

    async def dismiss_overlays(self, view: RemoteView) -> bool:
        """Remove guided-tour overlays; click a dismiss control if they come back."""
        removed = 0
        for selector in self.selectors.overlay_containers:
            removed += await self._try_view(view.remove_elements, selector, 0)
        if removed:
            await asyncio.sleep(self.config.overlay_settle)

        reinjected = False
        for selector in self.selectors.overlay_containers:
            if await self._try_view(view.count, selector, 0):
                reinjected = True
                break
        if not reinjected:
            return removed > 0

        for control in self.selectors.overlay_dismiss:
            if not await self._try_view(view.count, control, 0):
                continue
            try:
                await view.click(control)
            except (ViewError, ViewTimeout) as exc:
                logger.debug("Dismiss control %s not clickable: %s", control, exc)
                continue
            await asyncio.sleep(self.config.overlay_settle)
            return True
        return removed > 0

    async def _capture_pages(
        self,
        reader: RemoteView,
        strategy,
        base_url: str,
        passive: PassiveCapture,
        directory: Path,
    ) -> Tuple[int, List[int]]:
        page = 1
        reached = True
        skipped: List[int] = []
        consecutive_failures = 0
        while True:
            self._transition(CaptureState.PAGE_READY, page)
            if reached:
                await self.dismiss_overlays(reader)
                captured = await self._capture_page(reader, page, passive, directory)
            else:
                self._skip_page(page, directory, "page never appeared in the viewer")
                captured = False
            if captured:
                consecutive_failures = 0
            else:
                skipped.append(page)
                consecutive_failures += 1
                if consecutive_failures > self.config.max_consecutive_page_failures:
                    raise CaptureError(
                        f"{consecutive_failures} consecutive pages failed (last: {page})"
                    )

            self._transition(CaptureState.ADVANCING, page)
            state = await reader.control_state(self.selectors.next_control)
            if state.is_terminal:
                return page, skipped
            page += 1
            reached = await self._advance(reader, strategy, base_url, page)

    async def _advance(self, reader: RemoteView, strategy, base_url: str, page: int) -> bool:
        """Show page ``page``; False if neither 'next' nor direct addressing got there."""
        container = self.selectors.container_for(page)
        timeout = self.config.element_timeout
        waiter = asyncio.ensure_future(reader.wait_for_element(container, timeout))
        try:
            await reader.click(self.selectors.next_control)
            await waiter
            return True
        except (ViewTimeout, ViewError) as exc:
            if not waiter.done():
                waiter.cancel()
            elif not waiter.cancelled():
                # Mark the waiter's own failure as seen.
                waiter.exception()
            logger.warning("Page %d did not appear after 'next' (%s); addressing it directly", page, exc)

        try:
            await reader.goto(strategy.page_url(base_url, page))
            await reader.wait_for_element(container, timeout)
            return True
        except (ViewTimeout, ViewError) as exc:
            logger.warning("Page %d unreachable: %s", page, exc)
            return False

    async def _acquire(
        self, reader: RemoteView, page: int, passive: PassiveCapture
    ) -> Tuple[str, str, str]:
        mode = self.config.capture_mode
        timeout = self.config.request_timeout
        if mode in ("auto", "passive"):
            wait = self.config.passive_wait if mode == "auto" else self.config.element_timeout
            delivered = await passive.take(page, wait)
            if delivered is not None:
                url, raw = delivered
                markup = await resolve_references(raw, url, self.http, timeout)
                return url, raw, sanitize(markup)
            if mode == "passive":
                raise LookupError(f"page {page} was never delivered over the network")

        reference = await reader.get_attribute(self.selectors.container_for(page), "data")
        if not reference:
            raise LookupError(f"page {page} has no vector object reference")
        url = urljoin(directory_url(reader.url), reference)
        raw, markup = await fetch_page_markup(url, self.http, timeout)
        return url, raw, markup

    async def _capture_page(
        self,
        reader: RemoteView,
        page: int,
        passive: PassiveCapture,
        directory: Path,
    ) -> bool:
        try:
            url, raw, markup = await self._acquire(reader, page, passive)
        except (requests.RequestException, ViewError, ViewTimeout, LookupError) as exc:
            self._skip_page(page, directory, exc)
            return False
        unit = Page(
            index=page,
            source_url=url,
            raw_markup=raw,
            markup=markup,
            size=parse_svg_size(markup),
        )
        self._persist(unit, directory)
        if unit.size is None:
            logger.info("Saved page %d (%s, no declared size)", page, url)
        else:
            logger.info(
                "Saved page %d (%s, %.0f x %.0f pt)", page, url, unit.size.width_pt, unit.size.height_pt
            )
        logger.debug(
            "Page %d: %d -> %d characters after normalizing", page, len(unit.raw_markup), len(unit.markup)
        )
        return True

    def _skip_page(self, page: int, directory: Path, reason: object) -> None:
        """Keep numbering contiguous by writing a blank page in place of ``page``."""
        logger.warning("Skipping page %d: %s", page, reason)
        self._persist(Page(index=page, source_url="", raw_markup="", markup=sanitize(empty_svg())), directory)

    def _persist(self, page: Page, directory: Path) -> Path:
        path = directory / page.filename
        path.write_text(page.markup, encoding="utf-8")
        return path
