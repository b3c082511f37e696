# === NAVMAP v1 ===
# {
#   "module": "DiskImport.HttpImport.http_reader",
#   "purpose": "Cancellable HTTPX-backed byte stream used to classify remote disk images",
#   "sections": [
#     {
#       "id": "create-ssl-context",
#       "name": "create_ssl_context",
#       "anchor": "function-create-ssl-context",
#       "kind": "function"
#     },
#     {
#       "id": "create-http-client",
#       "name": "create_http_client",
#       "anchor": "function-create-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "httpreader",
#       "name": "HttpReader",
#       "anchor": "class-httpreader",
#       "kind": "class"
#     },
#     {
#       "id": "open-http-reader",
#       "name": "open_http_reader",
#       "anchor": "function-open-http-reader",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Cancellable HTTPX-backed byte stream for remote disk images.

The reader opened here only feeds format classification; the bulk transfer is
performed by nbdkit's curl plugin.  Responses are always streamed and the
response is closed by the owning :class:`CancellationToken`, which aborts an
in-flight read on another thread and returns the connection to the pool.
"""

from __future__ import annotations

import io
import logging
import ssl
from pathlib import Path
from typing import Iterator, Optional, Tuple

import certifi
import httpx

from .cancellation import CancellationToken
from .endpoint import redact_url
from .errors import TransportError

logger = logging.getLogger(__name__)

__all__ = ["HttpReader", "create_http_client", "create_ssl_context", "open_http_reader"]


def create_ssl_context(cert_dir: Optional[str] = None) -> ssl.SSLContext:
    """Return a verifying SSL context trusting certifi plus every certificate in ``cert_dir``.

    Files in ``cert_dir`` that hold no loadable certificate, such as private
    keys, are skipped.

    Raises:
        OSError: If ``cert_dir`` cannot be listed.
    """

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    if cert_dir:
        for cert_file in sorted(Path(cert_dir).iterdir()):
            if not cert_file.is_file():
                continue
            try:
                ctx.load_verify_locations(cafile=str(cert_file))
            except ssl.SSLError as exc:
                logger.debug(
                    "skipping non-certificate file",
                    extra={
                        "stage": "open",
                        "extra_fields": {"file": str(cert_file), "error": str(exc)},
                    },
                )
    return ctx


def create_http_client(
    cert_dir: Optional[str] = None,
    *,
    connect_timeout: float = 30.0,
    read_timeout: float = 60.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Build the HTTPX client used to open the classification stream.

    Args:
        cert_dir: Directory of additional trust material.
        connect_timeout: Seconds allowed to establish a connection.
        read_timeout: Seconds allowed between received chunks.
        transport: Optional transport override, e.g. ``httpx.MockTransport``.
    """

    timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
    if transport is not None:
        return httpx.Client(transport=transport, timeout=timeout, follow_redirects=True)
    return httpx.Client(
        verify=create_ssl_context(cert_dir),
        timeout=timeout,
        follow_redirects=True,
    )


class HttpReader(io.RawIOBase):
    """Read-only raw stream over a streamed :class:`httpx.Response` body."""

    def __init__(
        self,
        response: httpx.Response,
        *,
        client: Optional[httpx.Client] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> None:
        super().__init__()
        self._response = response
        self._client = client
        self._token = cancellation_token
        self._chunks: Iterator[bytes] = response.iter_bytes()
        self._buffer = b""

    @property
    def response(self) -> httpx.Response:
        return self._response

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        if self.closed or (self._token is not None and self._token.is_cancelled()):
            raise OSError("HTTP read was cancelled")
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
            except (httpx.HTTPError, httpx.StreamError) as exc:
                if self._token is not None and self._token.is_cancelled():
                    raise OSError("HTTP read was cancelled") from exc
                raise OSError(f"HTTP read failed: {exc}") from exc
        size = min(len(buffer), len(self._buffer))
        buffer[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._response.close()
            if self._client is not None:
                self._client.close()
        finally:
            super().close()


def open_http_reader(
    url: httpx.URL,
    access_key: Optional[str],
    secret_key: Optional[str],
    cert_dir: Optional[str],
    *,
    cancellation_token: CancellationToken,
    client: Optional[httpx.Client] = None,
    connect_timeout: float = 30.0,
    read_timeout: float = 60.0,
) -> Tuple[HttpReader, int]:
    """GET ``url`` and return a cancellable reader plus the reported content length.

    When ``client`` is omitted a dedicated client is created and closed together
    with the reader.  The returned length is ``0`` when the server does not
    report one; it is advisory only.

    Raises:
        TransportError: If the request fails or the status is not 200.
    """

    owned_client = client is None
    if client is None:
        try:
            client = create_http_client(
                cert_dir, connect_timeout=connect_timeout, read_timeout=read_timeout
            )
        except OSError as exc:
            raise TransportError(
                f"unable to load trust material from {cert_dir!r}", cause=exc
            ) from exc
    auth = httpx.BasicAuth(access_key, secret_key) if access_key and secret_key else None

    try:
        request = client.build_request("GET", url)
        if auth is not None:
            response = client.send(request, stream=True, auth=auth)
        else:
            response = client.send(request, stream=True)
    except httpx.HTTPError as exc:
        if owned_client:
            client.close()
        raise TransportError(f"HTTP request to {redact_url(url)} failed", cause=exc) from exc

    if response.status_code != httpx.codes.OK:
        response.close()
        if owned_client:
            client.close()
        raise TransportError(
            f"expected status code 200, got {response.status_code}",
            status_code=response.status_code,
        )

    content_length = _content_length(response)
    logger.info(
        "opened HTTP reader",
        extra={
            "stage": "open",
            "extra_fields": {"url": redact_url(url), "content_length": content_length},
        },
    )
    reader = HttpReader(
        response,
        client=client if owned_client else None,
        cancellation_token=cancellation_token,
    )
    cancellation_token.add_callback(reader.close)
    return reader, content_length


def _content_length(response: httpx.Response) -> int:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return 0
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0
