from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import requests

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 60.0
DEFAULT_CHUNK_SIZE = 64 * 1024


class FetchError(RuntimeError):
    pass


class HttpFetcher:
    """Source side of a transfer: HEAD checks, small downloads and streamed bodies.

    ``timeout`` bounds connecting and each socket read. Nothing is retried.
    """

    def __init__(
        self,
        *,
        session: Optional[Any] = None,
        timeout: float = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def check(self, url: str) -> None:
        logger.info("Checking %s", url)
        try:
            r = self.session.head(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise FetchError(f"Failed to check {url}: {e}") from e
        try:
            if r.status_code != 200:
                raise FetchError(f"URL unavailable ({r.status_code}): {url}")
        finally:
            r.close()

    def fetch_bytes(self, url: str) -> bytes:
        logger.info("Downloading %s", url)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to download {url}: {e}") from e
        try:
            if r.status_code != 200:
                raise FetchError(f"URL unavailable ({r.status_code}): {url}")
            return r.content
        finally:
            r.close()

    def open_stream(self, url: str) -> Iterator[bytes]:
        """GET ``url`` and return an iterator over its body.

        The status is checked before returning; errors while reading the body
        are raised from the iterator.
        """

        logger.info("Streaming %s", url)
        try:
            r = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise FetchError(f"Failed to get {url}: {e}") from e
        if r.status_code != 200:
            r.close()
            raise FetchError(f"URL unavailable ({r.status_code}): {url}")
        return self._iter_body(r)

    def _iter_body(self, r: Any) -> Iterator[bytes]:
        try:
            for chunk in r.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        finally:
            r.close()
