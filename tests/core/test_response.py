"""Tests for crawlq.core.response.Page"""

import codecs

import pytest

from crawlq.core.response import Page
from crawlq.core.task import RequestTask


def make_page(content: bytes = b"", **kwargs) -> Page:
    defaults = {"url": "https://example.com/dir/page", "status_code": 200, "headers": {}}
    defaults.update(kwargs)
    return Page(content=content, **defaults)


def test_text_uses_declared_encoding():
    page = make_page("café".encode("latin-1"), encoding="latin-1")
    assert page.encoding == "latin-1"
    assert page.text() == "café"


def test_text_detects_encoding_when_undeclared():
    page = make_page("<html><body>plain ascii text</body></html>".encode())
    assert page.text() == "<html><body>plain ascii text</body></html>"
    assert isinstance(page.encoding, str)


def test_unknown_declared_charset_falls_back_to_detection():
    """A bogus server charset does not break text()."""
    page = make_page(b"<html><body>plain ascii text</body></html>", encoding="x-no-such-charset")

    assert page.text() == "<html><body>plain ascii text</body></html>"
    assert codecs.lookup(page.encoding)


def test_text_explicit_encoding_overrides():
    page = make_page("żółw".encode(), encoding="latin-1")
    assert page.text("utf-8") == "żółw"


def test_json_parses_body():
    page = make_page(b'{"items": [1, 2, 3]}')
    assert page.json() == {"items": [1, 2, 3]}


def test_json_invalid_raises_value_error():
    page = make_page(b"<html>")
    with pytest.raises(ValueError, match="Failed to parse JSON"):
        page.json()


@pytest.mark.parametrize(
    "href, expected",
    [
        ("other", "https://example.com/dir/other"),
        ("/root", "https://example.com/root"),
        ("../up", "https://example.com/up"),
        ("https://other.example/x", "https://other.example/x"),
        ("", "https://example.com/dir/page"),
    ],
)
def test_urljoin_resolves_against_page_url(href, expected):
    assert make_page().urljoin(href) == expected


def test_repr_includes_status_and_size():
    page = make_page(b"abc", status_code=201, task=RequestTask("https://example.com/"))
    text = repr(page)
    assert "status=201" in text
    assert "size=3 bytes" in text
