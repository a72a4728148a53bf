"""Shared pytest fixtures: a scripted viewer and a routed HTTP session."""

import base64
import re
from typing import Dict, List, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from svgbook.config import CaptureConfig
from svgbook.errors import ViewError, ViewTimeout
from svgbook.resolver import PLACEHOLDER_DATA_URI
from svgbook.viewer import ControlState, ObservedResponse

PNG_BYTES = base64.b64decode(PLACEHOLDER_DATA_URI.split(",", 1)[1])

LIBRARY_URL = "https://viewer.example/ebooks"
READER_URL = "https://viewer.example/ebook/42/"

_CONTAINER = re.compile(r"data\$='(\d+)\.svg'")


def make_response(status=200, content_type="image/png", body=b""):
    """A stand-in for ``requests.Response``."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    resp = MagicMock()
    resp.ok = status < 400
    resp.status_code = status
    resp.headers = CaseInsensitiveDict({"Content-Type": content_type} if content_type else {})
    resp.content = body
    resp.text = body.decode("utf-8", errors="replace")
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    return resp


class RoutedHttp:
    """Maps absolute URLs to canned responses; anything else is a 404."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes = dict(routes or {})
        self.session = MagicMock(spec=requests.Session)
        self.session.get.side_effect = self._get
        self.requested: List[str] = []

    def _get(self, url, headers=None, timeout=None):
        self.requested.append(url)
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return make_response(404, "text/html", "<html><body>Not found</body></html>")
        return route


def page_svg(n: int, image: Optional[str] = None, width: str = "96", height: str = "96") -> str:
    image_tag = f'<image x="0" y="0" width="10" height="10" xlink:href="{image}"/>' if image else ""
    return (
        f'<svg width="{width}" height="{height}" viewBox="0 0 96 96">'
        f'<rect x="1" y="1" width="{n}" height="{n}" fill="#000"/>{image_tag}</svg>'
    )


class FakeView:
    """Scripted ``RemoteView``: a listing page that opens a paged reader."""

    def __init__(
        self,
        pages: int = 3,
        listing=("Mathematik 1", "Recht IV HAK mit E-Book"),
        nested_only: bool = False,
        stuck_next_at: Optional[int] = None,
        overlays: int = 0,
        deliveries: Optional[Dict[int, List[bytes]]] = None,
        reader_url: str = READER_URL,
        delivery_type: str = "image/svg+xml",
    ):
        self._url = "about:blank"
        self.pages = pages
        self.listing = list(listing)
        self.nested_only = nested_only
        self.stuck_next_at = stuck_next_at
        self.overlays = overlays
        self.deliveries = deliveries or {}
        self.reader_url = reader_url
        self.delivery_type = delivery_type
        self.current: Optional[int] = None
        self.opened = False
        self.handlers = []
        self.clicks: List[str] = []
        self.visited: List[str] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def _show(self, page: Optional[int]) -> None:
        self.current = page
        if page is None:
            return
        for body in self.deliveries.get(page, []):
            for handler in list(self.handlers):
                async def read(body=body):
                    return body

                await handler(
                    ObservedResponse(
                        url=f"{self.reader_url}{page}.svg",
                        status=200,
                        content_type=self.delivery_type,
                        read=read,
                    )
                )

    async def goto(self, url: str) -> None:
        self._url = url
        self.visited.append(url)
        if not self.opened:
            return
        parts = urlsplit(url)
        query = parse_qs(parts.query)
        if "page" in query:
            await self._show(None if self.nested_only else int(query["page"][0]))
            return
        segments = [segment for segment in parts.path.split("/") if segment]
        if len(segments) >= 3 and segments[-1].isdigit():
            await self._show(int(segments[-1]))
        else:
            await self._show(None)

    async def wait_for_url(self, pattern: str, timeout: float) -> None:
        if not re.search(pattern, self._url):
            raise ViewTimeout(f"URL never matched {pattern!r}")

    async def wait_for_element(self, selector: str, timeout: float) -> None:
        if selector == "app-book-list-entry":
            if not self.listing:
                raise ViewTimeout("listing missing")
            return
        match = _CONTAINER.search(selector)
        if match and self.current == int(match.group(1)):
            return
        raise ViewTimeout(f"{selector} did not appear")

    async def count(self, selector: str) -> int:
        if selector.startswith(".introjs-overlay"):
            return 1 if self.overlays else 0
        if selector == ".introjs-skipbutton":
            return 1 if self.overlays else 0
        return 0

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        match = _CONTAINER.search(selector)
        if match and self.current == int(match.group(1)) and name == "data":
            return f"{self.current}.svg"
        return None

    async def click(self, selector: str) -> None:
        self.clicks.append(selector)
        if selector == "#btnNext":
            if self.current is None or self.current >= self.pages:
                raise ViewError("next is disabled")
            if self.stuck_next_at == self.current + 1:
                self.stuck_next_at = None
                return
            await self._show(self.current + 1)
        elif selector == ".introjs-skipbutton":
            self.overlays = 0

    async def remove_elements(self, selector: str) -> int:
        if selector == ".introjs-overlay" and self.overlays:
            self.overlays -= 1
            return 1
        return 0

    async def control_state(self, selector: str) -> ControlState:
        at_end = self.current is not None and self.current >= self.pages
        return ControlState(classes=("btn", "disabled") if at_end else ("btn",))

    async def entry_texts(self, selector: str) -> List[str]:
        return list(self.listing)

    async def open_entry(self, selector: str, index: int, popup_timeout: float) -> "FakeView":
        self.opened = True
        self._url = self.reader_url
        return self

    def on_response(self, handler) -> None:
        self.handlers.append(handler)

    def off_response(self, handler) -> None:
        self.handlers.remove(handler)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config(tmp_path):
    return CaptureConfig(
        output_root=tmp_path / "books",
        library_url=LIBRARY_URL,
        element_timeout=0.01,
        passive_wait=0.0,
        overlay_settle=0.0,
        cooldown=0.0,
        capture_mode="active",
    )


@pytest.fixture
def png_bytes():
    return PNG_BYTES
