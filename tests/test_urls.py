import pytest

from pipelines.urls import normalize_url, root_url_for_host
from services.shared.errors import InvalidURL


@pytest.mark.parametrize("raw,expected", [
    ("https://A.com", "https://a.com/"),
    ("https://a.com/", "https://a.com/"),
    ("HTTPS://Example.COM:443/Path?q=1#frag", "https://example.com/Path?q=1"),
    ("http://example.com:80", "http://example.com/"),
    ("http://example.com:8080/x", "http://example.com:8080/x"),
    ("  https://example.com/docs  ", "https://example.com/docs"),
    ("http://[::1]:8000/", "http://[::1]:8000/"),
])
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "not a url", "ftp://example.com/file", "https://", "/relative/path"])
def test_invalid_urls(raw):
    with pytest.raises(InvalidURL):
        normalize_url(raw)


def test_root_url_prefers_https():
    assert root_url_for_host("Example.com") == "https://example.com/"


def test_root_url_for_bad_host():
    with pytest.raises(InvalidURL):
        root_url_for_host("")
