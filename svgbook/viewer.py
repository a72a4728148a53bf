"""Remote viewer interface and its Playwright implementation."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    Response,
    TimeoutError as PlaywrightTimeoutError,
)

from .errors import ViewError, ViewTimeout

logger = logging.getLogger("svgbook.viewer")

_CONTROL_STATE_JS = """
(element) => ({
    disabled: element.hasAttribute('disabled'),
    classes: Array.from(element.classList),
    pointerEvents: getComputedStyle(element).pointerEvents,
})
"""

_REMOVE_JS = """
(selector) => {
    const nodes = document.querySelectorAll(selector);
    nodes.forEach((node) => node.remove());
    return nodes.length;
}
"""


@dataclass(frozen=True)
class ControlState:
    """Interactive state of a navigation control."""

    present: bool = True
    disabled_attribute: bool = False
    classes: Tuple[str, ...] = ()
    pointer_events: str = "auto"

    @property
    def is_terminal(self) -> bool:
        return (
            not self.present
            or self.disabled_attribute
            or "disabled" in self.classes
            or self.pointer_events == "none"
        )


@dataclass(frozen=True)
class ObservedResponse:
    """A network response seen by the viewer while it renders."""

    url: str
    status: int
    content_type: str
    read: Callable[[], Awaitable[bytes]]


ResponseHandler = Callable[[ObservedResponse], Awaitable[None]]


class RemoteView(Protocol):
    """What the capture driver needs from a live viewer session."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str) -> None: ...

    async def wait_for_url(self, pattern: str, timeout: float) -> None: ...

    async def wait_for_element(self, selector: str, timeout: float) -> None: ...

    async def count(self, selector: str) -> int: ...

    async def get_attribute(self, selector: str, name: str) -> Optional[str]: ...

    async def click(self, selector: str) -> None: ...

    async def remove_elements(self, selector: str) -> int: ...

    async def control_state(self, selector: str) -> ControlState: ...

    async def entry_texts(self, selector: str) -> List[str]: ...

    async def open_entry(self, selector: str, index: int, popup_timeout: float) -> "RemoteView": ...

    def on_response(self, handler: ResponseHandler) -> None: ...

    def off_response(self, handler: ResponseHandler) -> None: ...

    async def close(self) -> None: ...


class PlaywrightView:
    """``RemoteView`` backed by a Playwright page."""

    def __init__(self, page: Page, navigation_timeout: float = 60.0) -> None:
        self._page = page
        self._navigation_timeout = navigation_timeout
        self._listeners: Dict[ResponseHandler, Callable[[Response], Awaitable[None]]] = {}

    @property
    def url(self) -> str:
        return self._page.url

    @property
    def page(self) -> Page:
        return self._page

    async def goto(self, url: str) -> None:
        logger.debug("Navigating to %s", url)
        try:
            await self._page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self._navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError as exc:
            raise ViewTimeout(f"Timed out navigating to {url}") from exc
        except PlaywrightError as exc:
            raise ViewError(f"Navigation to {url} failed: {exc}") from exc

    async def wait_for_url(self, pattern: str, timeout: float) -> None:
        try:
            await self._page.wait_for_url(re.compile(pattern), timeout=timeout * 1000)
            await self._page.wait_for_load_state("domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise ViewTimeout(f"URL never matched {pattern!r} (at {self._page.url})") from exc
        except PlaywrightError as exc:
            raise ViewError(f"Waiting for {pattern!r} failed: {exc}") from exc

    async def wait_for_element(self, selector: str, timeout: float) -> None:
        try:
            await self._page.wait_for_selector(selector, state="attached", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ViewTimeout(f"{selector} did not appear within {timeout:.0f}s") from exc
        except PlaywrightError as exc:
            raise ViewError(f"Waiting for {selector} failed: {exc}") from exc

    async def count(self, selector: str) -> int:
        try:
            return await self._page.locator(selector).count()
        except PlaywrightError as exc:
            raise ViewError(f"Counting {selector} failed: {exc}") from exc

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        try:
            handle = await self._page.query_selector(selector)
            if handle is None:
                return None
            return await handle.get_attribute(name)
        except PlaywrightError as exc:
            raise ViewError(f"Reading {name} of {selector} failed: {exc}") from exc

    async def click(self, selector: str) -> None:
        try:
            await self._page.locator(selector).first.click(timeout=self._navigation_timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ViewTimeout(f"Timed out clicking {selector}") from exc
        except PlaywrightError as exc:
            raise ViewError(f"Clicking {selector} failed: {exc}") from exc

    async def remove_elements(self, selector: str) -> int:
        try:
            return int(await self._page.evaluate(_REMOVE_JS, selector))
        except PlaywrightError as exc:
            raise ViewError(f"Removing {selector} failed: {exc}") from exc

    async def control_state(self, selector: str) -> ControlState:
        try:
            handle = await self._page.query_selector(selector)
            if handle is None:
                return ControlState(present=False)
            state = await handle.evaluate(_CONTROL_STATE_JS)
        except PlaywrightError as exc:
            raise ViewError(f"Inspecting {selector} failed: {exc}") from exc
        return ControlState(
            present=True,
            disabled_attribute=bool(state["disabled"]),
            classes=tuple(state["classes"]),
            pointer_events=state["pointerEvents"],
        )

    async def entry_texts(self, selector: str) -> List[str]:
        try:
            return await self._page.locator(selector).all_inner_texts()
        except PlaywrightError as exc:
            raise ViewError(f"Reading {selector} entries failed: {exc}") from exc

    async def open_entry(self, selector: str, index: int, popup_timeout: float) -> "PlaywrightView":
        """Click a listing entry; follow the new tab if one opens."""
        popup = asyncio.ensure_future(
            self._page.context.wait_for_event("page", timeout=popup_timeout * 1000)
        )
        try:
            await self._page.locator(selector).nth(index).click()
        except PlaywrightError as exc:
            popup.cancel()
            raise ViewError(f"Opening entry {index} of {selector} failed: {exc}") from exc
        try:
            new_page = await popup
        except PlaywrightTimeoutError:
            logger.debug("No new tab opened; reusing the current view")
            return self
        logger.debug("Document opened in a new tab")
        return PlaywrightView(new_page, self._navigation_timeout)

    def on_response(self, handler: ResponseHandler) -> None:
        async def _forward(response: Response) -> None:
            async def _read() -> bytes:
                try:
                    return await response.body()
                except PlaywrightError as exc:
                    raise ViewError(f"Body of {response.url} unavailable: {exc}") from exc

            await handler(
                ObservedResponse(
                    url=response.url,
                    status=response.status,
                    content_type=response.headers.get("content-type", ""),
                    read=_read,
                )
            )

        self._listeners[handler] = _forward
        self._page.on("response", _forward)

    def off_response(self, handler: ResponseHandler) -> None:
        forward = self._listeners.pop(handler, None)
        if forward is not None:
            self._page.remove_listener("response", forward)

    async def close(self) -> None:
        await self._page.close()
