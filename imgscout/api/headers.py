"""Declared-header extraction for the HTTP surface.

The body submitted to imgscout is someone else's HTTP response, so its
Content-Type / Content-Encoding cannot travel in the request's own headers
(those describe the upload). Callers pass them in dedicated headers:

  - ``X-Declared-Content-Type``
  - ``X-Declared-Content-Encoding``

For ``/v1/inspect/fetch`` the fetched response's own headers are used.
"""

from __future__ import annotations

from typing import Mapping, Optional

import httpx

DECLARED_CONTENT_TYPE_HEADER: str = "x-declared-content-type"
DECLARED_CONTENT_ENCODING_HEADER: str = "x-declared-content-encoding"

# Encodings imgscout can undo; advertised on outbound fetches so the raw body
# never arrives in a coding the decoder treats as identity (e.g. br, zstd).
FETCH_ACCEPT_ENCODING: str = "gzip, deflate"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def declared_headers(request_headers: Mapping[str, str]) -> tuple[Optional[str], Optional[str]]:
    """Return ``(content_type, content_encoding)`` declared by the caller.

    Blank values count as absent.
    """
    return (
        _clean(request_headers.get(DECLARED_CONTENT_TYPE_HEADER)),
        _clean(request_headers.get(DECLARED_CONTENT_ENCODING_HEADER)),
    )


def response_headers(headers: httpx.Headers) -> tuple[Optional[str], Optional[str]]:
    """Return ``(content_type, content_encoding)`` from a fetched response."""
    return _clean(headers.get("content-type")), _clean(headers.get("content-encoding"))
