"""URL normalization shared by the seed queue and the fetch cache."""

from urllib.parse import urlsplit, urlunsplit

from services.shared.errors import InvalidURL

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """Canonical form of an absolute http(s) URL, fragment removed.

    Scheme and host are lowercased, default ports dropped and an empty path
    becomes ``/``, so ``https://A.com`` and ``https://a.com/#top`` collapse to
    the same string.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidURL(str(url), "empty URL")

    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidURL(url, str(e)) from e

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidURL(url, "scheme must be http or https")

    hostname = parts.hostname
    if not hostname:
        raise InvalidURL(url, "missing host")

    host = hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    userinfo = ""
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f":{parts.password}"
        userinfo += "@"

    return urlunsplit((scheme, userinfo + host, parts.path or "/", parts.query, ""))


def root_url_for_host(hostname: str) -> str:
    """Seed URL for a known host: ``https://host/``, else ``http://host/``.

    This is a guess; nothing checks that the root reaches the pages that were
    originally crawled on that host.
    """
    last_error = None
    for scheme in ALLOWED_SCHEMES[::-1]:
        try:
            return normalize_url(f"{scheme}://{hostname}/")
        except InvalidURL as e:
            last_error = e
    raise last_error
