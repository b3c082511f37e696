"""Endpoint parsing and credential injection for HTTP import sources."""

from __future__ import annotations

from typing import Optional, Union

import httpx

from .errors import InvalidEndpointError

__all__ = ["parse_endpoint", "with_credentials", "redact_url"]

_SUPPORTED_SCHEMES = {"http", "https"}


def parse_endpoint(endpoint: str) -> httpx.URL:
    """Parse ``endpoint`` into an :class:`httpx.URL`.

    Raises:
        InvalidEndpointError: If the value is blank, malformed, lacks a host, or
            uses a scheme other than ``http``/``https``.
    """

    if not endpoint or not endpoint.strip():
        raise InvalidEndpointError("endpoint is missing or blank")
    try:
        url = httpx.URL(endpoint.strip())
    except httpx.InvalidURL as exc:
        raise InvalidEndpointError(f"unable to parse endpoint {endpoint!r}", cause=exc) from exc
    if url.scheme not in _SUPPORTED_SCHEMES:
        raise InvalidEndpointError(f"unsupported endpoint scheme {url.scheme!r}")
    if not url.host:
        raise InvalidEndpointError(f"endpoint {endpoint!r} has no host")
    return url


def with_credentials(
    url: httpx.URL, access_key: Optional[str], secret_key: Optional[str]
) -> httpx.URL:
    """Embed ``access_key:secret_key`` in ``url`` when both are supplied."""

    if access_key and secret_key:
        return url.copy_with(username=access_key, password=secret_key)
    return url


def redact_url(url: Union[httpx.URL, str]) -> str:
    """Render ``url`` for logs with any embedded password masked."""

    parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
    if parsed.password:
        parsed = parsed.copy_with(username=parsed.username, password="redacted")
    return str(parsed)
