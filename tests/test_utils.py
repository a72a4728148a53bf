"""Tests for naming helpers and configuration loading."""

from pathlib import Path

import pytest

from svgbook.config import DEFAULT_LIBRARY_URL, CaptureConfig, ViewerSelectors
from svgbook.utils import directory_url, natural_sort_key, output_filename, safe_title


class TestNames:
    def test_safe_title_strips_path_characters(self):
        assert safe_title('Deutsch: Sprache/Literatur?') == "Deutsch SpracheLiteratur"

    def test_safe_title_fallback(self):
        assert safe_title(" ... ") == "document"
        assert safe_title("", fallback="book") == "book"

    def test_output_filename_drops_diacritics(self):
        assert output_filename("Mathematik für Ökonomen") == "Mathematik fur Okonomen.pdf"

    def test_output_filename_replaces_symbols(self):
        assert output_filename("Recht & Wirtschaft (2024)") == "Recht _ Wirtschaft _2024.pdf"

    def test_output_filename_is_capped(self):
        name = output_filename("A" * 300)
        assert name == "A" * 120 + ".pdf"

    def test_natural_sort(self):
        names = ["page10.svg", "Page1.svg", "page2.svg"]
        assert sorted(names, key=natural_sort_key) == ["Page1.svg", "page2.svg", "page10.svg"]


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://v.example/ebook/1234/5", "https://v.example/ebook/1234/5/"),
        ("https://v.example/ebook/1234/5/", "https://v.example/ebook/1234/5/"),
        ("https://v.example/ebook/1234/5.svg", "https://v.example/ebook/1234/5.svg"),
        ("https://v.example/ebook?page=3#top", "https://v.example/ebook/?page=3"),
    ],
)
def test_directory_url(url, expected):
    assert directory_url(url) == expected


class TestCaptureConfig:
    def test_rejects_unknown_mode(self, tmp_path):
        with pytest.raises(ValueError):
            CaptureConfig(output_root=tmp_path, capture_mode="turbo")

    def test_container_selector(self):
        assert ViewerSelectors().container_for(12) == "object[type='image/svg+xml'][data$='12.svg']"

    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHROME_PROFILE", "/tmp/profile")
        monkeypatch.setenv("EMAIL", "student@example.org")
        monkeypatch.setenv("SVGBOOK_PASSWORD", "hunter2")
        monkeypatch.delenv("SVGBOOK_EMAIL", raising=False)
        monkeypatch.delenv("SVGBOOK_LIBRARY_URL", raising=False)
        monkeypatch.delenv("CHROME_PATH", raising=False)

        config = CaptureConfig.from_env(tmp_path, cooldown=None, capture_mode="passive")

        assert config.profile_dir == Path("/tmp/profile")
        assert config.email == "student@example.org"
        assert config.has_credentials
        assert config.library_url == DEFAULT_LIBRARY_URL
        assert config.browser_executable is None
        assert config.cooldown == 30.0
        assert config.capture_mode == "passive"

    def test_from_env_validates_overrides(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CHROME_PROFILE", raising=False)
        with pytest.raises(ValueError):
            CaptureConfig.from_env(tmp_path, capture_mode="fast")
