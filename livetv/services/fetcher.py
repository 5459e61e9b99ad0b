"""
Upstream fetcher

One HTTP GET per call, no retries. Plain bodies are materialized in memory;
gzipped bodies are handed back as a single-use stream that decompresses on
demand while the response is still open.
"""
from __future__ import annotations

import asyncio
import logging
import zlib
from collections.abc import AsyncIterator
from urllib.parse import urlsplit

import httpx

from livetv.errors import FetchError, NetworkError, UpstreamError, UpstreamTimeoutError
from livetv.services.fetch_types import FetchResult
from livetv.utils.file_operations import gunzip_chunks
from livetv.utils.logging_helpers import format_file_size, sanitize_url_for_logging


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEFAULT_MAX_CONCURRENCY = 16


def is_gzip_response(url: str, content_type: str | None) -> bool:
    """A response is gzipped when the URL path ends with .gz or the content type says gzip."""
    path = urlsplit(url).path
    if path.lower().endswith(".gz"):
        return True
    content_type = (content_type or "").lower()
    return "gzip" in content_type or "application/x-gzip" in content_type


class Fetcher:
    """
    Async HTTP fetcher shared by one sync cycle.

    Use as an async context manager so the underlying client is closed:

        async with Fetcher() as fetcher:
            result = await fetcher.fetch(url)
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.request_count = 0

    async def __aenter__(self) -> "Fetcher":
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchResult:
        """
        GET a URL

        Returns:
            FetchResult with `content` for plain bodies, or `stream` for gzipped ones

        Raises:
            UpstreamError: Non-2xx status
            UpstreamTimeoutError: Deadline exceeded
            NetworkError: Any other transport failure
        """
        if self._client is None:
            raise RuntimeError("Fetcher used outside of its async context")

        safe_url = sanitize_url_for_logging(url)
        async with self._semaphore:
            self.request_count += 1
            logger.info("Fetching %s", safe_url)
            try:
                request = self._client.build_request("GET", url)
                response = await self._client.send(request, stream=True)
            except httpx.TimeoutException as exc:
                logger.error("Timed out fetching %s: %s", safe_url, exc)
                raise UpstreamTimeoutError(url, f"Timed out fetching {safe_url}") from exc
            except httpx.HTTPError as exc:
                logger.error("Network error fetching %s: %s", safe_url, exc)
                raise NetworkError(url, f"{type(exc).__name__}: {exc}") from exc

            if not response.is_success:
                await response.aclose()
                logger.error("HTTP %s fetching %s", response.status_code, safe_url)
                raise UpstreamError(url, response.status_code, response.reason_phrase)

            content_type = response.headers.get("content-type", "")
            if is_gzip_response(url, content_type):
                logger.info("Response from %s is gzipped, streaming decompression", safe_url)
                return FetchResult(
                    url=url,
                    is_gzipped=True,
                    stream=self._decompressed_body(response, url),
                    content_type=content_type,
                )

            try:
                content = await response.aread()
            except httpx.TimeoutException as exc:
                raise UpstreamTimeoutError(url, f"Timed out reading {safe_url}") from exc
            except httpx.HTTPError as exc:
                raise NetworkError(url, f"{type(exc).__name__}: {exc}") from exc
            finally:
                await response.aclose()

        logger.info("Fetched %s from %s", format_file_size(len(content)), safe_url)
        return FetchResult(url=url, content=content, content_type=content_type)

    async def _decompressed_body(self, response: httpx.Response, url: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in gunzip_chunks(response.aiter_bytes()):
                yield chunk
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(url, "Timed out reading gzipped body") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(url, f"{type(exc).__name__}: {exc}") from exc
        except zlib.error as exc:
            raise FetchError(url, f"Invalid gzip body: {exc}") from exc
        finally:
            await response.aclose()
