"""
media.py — Fetch a stored report attachment and base-64 encode it.

The analysis service takes media inline, so the whole body is read into
memory. A hard cap (MEDIA_MAX_BYTES, default 25 MB) bounds that:

    1. Content-Length header above the cap → PayloadTooLargeError, no body read
    2. Streamed body crossing the cap       → PayloadTooLargeError, stream aborted

Failure modes:
    InvalidInputError        — not an absolute http(s) URL
    UpstreamUnavailableError — transport error or non-2xx status
    PayloadTooLargeError     — body exceeds the cap
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

import httpx

from crowdalert.alerts.models import validate_media_url
from crowdalert.core.config import settings
from crowdalert.core.errors import PayloadTooLargeError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

SERVICE_NAME = "media_store"


class MediaFetcher:
    """Downloads media with a size cap. Borrows its HTTP client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        max_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self._http = http_client
        self.max_bytes = max_bytes if max_bytes is not None else settings.MEDIA_MAX_BYTES
        self.timeout = timeout if timeout is not None else settings.MEDIA_FETCH_TIMEOUT

    async def fetch_bytes(self, url: str) -> bytes:
        """Raw body of ``url``, at most ``max_bytes`` long."""
        url = validate_media_url(url)

        try:
            async with self._http.stream("GET", url, timeout=self.timeout) as response:
                if not response.is_success:
                    raise UpstreamUnavailableError(
                        SERVICE_NAME, f"HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise PayloadTooLargeError(self.max_bytes, received_bytes=int(declared))

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise PayloadTooLargeError(self.max_bytes, received_bytes=len(body))
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, type(e).__name__) from e

        logger.debug("Fetched %d bytes from %s", len(body), url)
        return bytes(body)

    async def fetch_as_encoded_payload(self, url: str) -> str:
        """Base-64 (standard alphabet, ASCII) encoding of the media body."""
        raw = await self.fetch_bytes(url)
        return base64.b64encode(raw).decode("ascii")
