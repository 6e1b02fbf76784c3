"""Pytest configuration and shared fixtures for the font localizer test suite."""

import httpx
import pytest
import requests


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that require external services (network)"
    )


# ---------------------------------------------------------------------------
# Sample CSS fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_font_css():
    """Stylesheet with two usable @font-face rules, one without src, and ordinary rules."""
    return """\
@font-face {
    font-family: "Roboto";
    font-style: italic;
    font-weight: 700;
    src: url("fonts/roboto.woff2") format("woff2"), url("fonts/roboto.woff") format("woff");
}

@font-face {
    font-family: "Open Sans";
    font-style: normal;
    font-weight: 400;
    src: url(/static/open-sans.ttf?v=2) format("truetype");
}

@font-face {
    font-family: "No Source";
    font-weight: 400;
}

body {
    font-family: "Roboto", sans-serif;
    color: #333333;
}

@media print {
    body { color: black; }
}
"""


@pytest.fixture
def absolute_font_css():
    """Stylesheet whose font URLs are already absolute (safe for local files)."""
    return """\
@font-face {
    font-family: "Inter";
    font-style: normal;
    font-weight: 400;
    src: url("https://fonts.example.com/inter/inter-regular.woff2") format("woff2"),
         url("https://fonts.example.com/inter/inter-regular.woff") format("woff");
}
"""


@pytest.fixture
def relative_font_css():
    """Stylesheet with path-relative font URLs."""
    return """\
@font-face {
    font-family: "Roboto";
    font-style: italic;
    font-weight: 700;
    src: url("fonts/roboto.woff2") format("woff2");
}
"""


# ---------------------------------------------------------------------------
# Temporary file fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fonts_base_dir(tmp_path):
    """Base directory that per-stylesheet font folders are created under."""
    return tmp_path / "data" / "fonts"


@pytest.fixture
def absolute_css_file(tmp_path, absolute_font_css):
    """Write the absolute-URL stylesheet to a temp file and return the path."""
    css_file = tmp_path / "inter.css"
    css_file.write_text(absolute_font_css, encoding="utf-8")
    return css_file


@pytest.fixture
def relative_css_file(tmp_path, relative_font_css):
    """Write the relative-URL stylesheet to a temp file and return the path."""
    css_file = tmp_path / "roboto.css"
    css_file.write_text(relative_font_css, encoding="utf-8")
    return css_file


# ---------------------------------------------------------------------------
# Mock font server
# ---------------------------------------------------------------------------

class FontServer:
    """In-memory font host backed by httpx.MockTransport.

    files maps absolute URLs to response bodies; anything else is a 404.
    """

    def __init__(self, files):
        self.files = dict(files)
        self.requested = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request):
        url = str(request.url)
        self.requested.append(url)
        if url in self.files:
            return httpx.Response(200, content=self.files[url])
        return httpx.Response(404, content=b"not found")


@pytest.fixture
def font_server():
    """Serves the fonts referenced by the sample stylesheets."""
    return FontServer({
        "https://cdn.example.com/fonts/roboto.woff2": b"wOF2-roboto",
        "https://cdn.example.com/fonts/roboto.woff": b"wOFF-roboto",
        "https://cdn.example.com/static/open-sans.ttf?v=2": b"\x00\x01\x00\x00open-sans",
        "https://fonts.example.com/inter/inter-regular.woff2": b"wOF2-inter",
        "https://fonts.example.com/inter/inter-regular.woff": b"wOFF-inter",
    })


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, text, status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


@pytest.fixture
def fake_response():
    """Factory for FakeResponse objects."""
    return FakeResponse
