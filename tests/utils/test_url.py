"""Tests for crawlq.utils.url.urljoin"""

import pytest

from crawlq.utils.url import urljoin


@pytest.mark.parametrize(
    "base, href, expected",
    [
        ("https://example.com/a/b", "c", "https://example.com/a/c"),
        ("https://example.com/a/b", "/c", "https://example.com/c"),
        ("https://example.com/a/", "c?x=1", "https://example.com/a/c?x=1"),
        ("https://example.com/a/b", "  c  ", "https://example.com/a/c"),
        ("https://example.com/a/b", "https://other.example/Q?b=2&a=1", "https://other.example/Q?b=2&a=1"),
        ("https://example.com/a/b", "", "https://example.com/a/b"),
    ],
)
def test_urljoin(base, href, expected):
    assert urljoin(base, href) == expected
