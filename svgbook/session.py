"""Authenticated browser session shared by every document of a run."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

import requests
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from .config import CaptureConfig
from .errors import SvgbookError
from .viewer import PlaywrightView

logger = logging.getLogger("svgbook.session")


def http_session(
    cookies: Iterable[Mapping] = (),
    user_agent: Optional[str] = None,
    cookie_header: Optional[str] = None,
) -> requests.Session:
    """A ``requests`` session carrying the browser's credentials."""
    session = requests.Session()
    for cookie in cookies:
        session.cookies.set(
            cookie["name"],
            cookie["value"],
            domain=cookie.get("domain", ""),
            path=cookie.get("path", "/"),
        )
    if cookie_header:
        session.headers["Cookie"] = cookie_header
    if user_agent:
        session.headers["User-Agent"] = user_agent
    return session


class BrowserSession:
    """Launches Chromium (optionally with a persistent, logged-in profile)."""

    def __init__(self, config: CaptureConfig) -> None:
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._view: Optional[PlaywrightView] = None

    async def __aenter__(self) -> "BrowserSession":
        self._playwright = await async_playwright().start()
        options = {"headless": self.config.headless}
        if self.config.browser_executable:
            options["executable_path"] = self.config.browser_executable
        chromium = self._playwright.chromium
        if self.config.profile_dir:
            logger.info("Using browser profile %s", self.config.profile_dir)
            self._context = await chromium.launch_persistent_context(
                str(self.config.profile_dir), **options
            )
        else:
            self._browser = await chromium.launch(**options)
            self._context = await self._browser.new_context()
        self._context.set_default_timeout(self.config.navigation_timeout * 1000)
        pages = self._context.pages
        page = pages[0] if pages else await self._context.new_page()
        self._view = PlaywrightView(page, self.config.navigation_timeout)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    def view(self) -> PlaywrightView:
        if self._view is None:
            raise SvgbookError("Browser session has not been started")
        return self._view

    async def login(self) -> None:
        """Submit the login form when credentials are configured."""
        if not self.config.has_credentials:
            logger.info("No credentials configured; assuming the profile is already logged in")
            return
        selectors = self.config.selectors
        page = self.view().page
        await page.goto(self.config.login_url)
        await page.fill(selectors.login_email, self.config.email or "")
        await page.fill(selectors.login_password, self.config.password or "")
        async with page.expect_response(lambda r: selectors.login_response in r.url) as info:
            await page.locator(selectors.login_submit).click()
        response = await info.value
        body = (await response.text()).strip()
        if response.status != 200 or body != "OK":
            raise SvgbookError(f"Login failed (HTTP {response.status})")
        logger.info("Login successful")

    async def http_session(self) -> requests.Session:
        if self._context is None:
            raise SvgbookError("Browser session has not been started")
        cookies = await self._context.cookies()
        user_agent = await self.view().page.evaluate("navigator.userAgent")
        return http_session(cookies, user_agent=user_agent)
