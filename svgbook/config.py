"""Configuration objects and constants for the capture pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_LOGIN_URL = "https://digi4school.at/login"
DEFAULT_LIBRARY_URL = "https://digi4school.at/ebooks"
DEFAULT_READER_URL_PATTERN = r"/(reader|ebook)/"

CAPTURE_MODES = ("auto", "passive", "active")


@dataclass
class ViewerSelectors:
    """CSS selectors describing the remote viewer's structure."""

    listing_entry: str = "app-book-list-entry"
    page_container: str = "object[type='image/svg+xml'][data$='{page}.svg']"
    next_control: str = "#btnNext"
    overlay_containers: Tuple[str, ...] = (
        ".introjs-overlay",
        ".introjs-helperLayer",
        ".introjs-tooltipReferenceLayer",
        ".shepherd-modal-overlay-container",
        ".shepherd-element",
        ".driver-overlay",
        "#driver-popover-item",
    )
    overlay_dismiss: Tuple[str, ...] = (
        ".introjs-skipbutton",
        ".introjs-donebutton",
        ".shepherd-cancel-icon",
        "#driver-popover-item .driver-close-btn",
        "button[aria-label='Close']",
    )
    login_email: str = "input[autocomplete='email']"
    login_password: str = "input[autocomplete='current-password']"
    login_submit: str = "ion-button:has-text('Anmelden')"
    login_response: str = "/br/xhr/v2/login"

    def container_for(self, page: int) -> str:
        return self.page_container.format(page=page)


@dataclass
class CaptureConfig:
    """Top-level settings that control capturing and assembling documents."""

    output_root: Path
    login_url: str = DEFAULT_LOGIN_URL
    library_url: Optional[str] = DEFAULT_LIBRARY_URL
    reader_url_pattern: str = DEFAULT_READER_URL_PATTERN
    navigation_timeout: float = 60.0
    element_timeout: float = 15.0
    popup_timeout: float = 7.0
    request_timeout: float = 30.0
    passive_wait: float = 2.0
    overlay_settle: float = 0.3
    cooldown: float = 30.0
    capture_mode: str = "auto"
    max_consecutive_page_failures: int = 3
    headless: bool = False
    profile_dir: Optional[Path] = None
    browser_executable: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    selectors: ViewerSelectors = field(default_factory=ViewerSelectors)

    def __post_init__(self) -> None:
        if self.capture_mode not in CAPTURE_MODES:
            raise ValueError(
                f"Unknown capture mode {self.capture_mode!r}; expected one of {CAPTURE_MODES}"
            )

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)

    @classmethod
    def from_env(cls, output_root: Path, **overrides) -> "CaptureConfig":
        """Build a config from environment variables, then apply overrides."""
        profile = os.getenv("CHROME_PROFILE")
        config = cls(
            output_root=output_root,
            library_url=os.getenv("SVGBOOK_LIBRARY_URL", DEFAULT_LIBRARY_URL),
            profile_dir=Path(profile).expanduser() if profile else None,
            browser_executable=os.getenv("CHROME_PATH") or None,
            email=os.getenv("SVGBOOK_EMAIL") or os.getenv("EMAIL") or None,
            password=os.getenv("SVGBOOK_PASSWORD") or os.getenv("PASSWORD") or None,
        )
        overrides = {key: value for key, value in overrides.items() if value is not None}
        return replace(config, **overrides)
