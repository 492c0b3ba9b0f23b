from __future__ import annotations

import pytest
import requests

from coreos_installer.lib.fetch import FetchError, HttpFetcher


class FakeResponse:
    def __init__(self, status_code=200, content=b"", chunks=None, error=None):
        self.status_code = status_code
        self.content = content
        self._chunks = chunks if chunks is not None else [content]
        self._error = error
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def _respond(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        r = self.responses[(method, url)]
        if isinstance(r, Exception):
            raise r
        return r

    def head(self, url, **kwargs):
        return self._respond("HEAD", url, kwargs)

    def get(self, url, **kwargs):
        return self._respond("GET", url, kwargs)


URL = "http://stable.release.core-os.net/amd64-usr/current/coreos_production_image.bin.bz2"


def test_check_accepts_200_and_rejects_others():
    ok = FakeResponse(200)
    session = FakeSession({("HEAD", URL): ok, ("HEAD", URL + ".sig"): FakeResponse(404)})
    fetcher = HttpFetcher(session=session, timeout=5)

    fetcher.check(URL)
    assert ok.closed
    assert session.calls[0][2]["timeout"] == 5

    with pytest.raises(FetchError, match="404"):
        fetcher.check(URL + ".sig")


def test_network_errors_become_fetch_errors():
    session = FakeSession({("GET", URL): requests.ConnectionError("refused")})
    with pytest.raises(FetchError, match="refused"):
        HttpFetcher(session=session).fetch_bytes(URL)


def test_fetch_bytes_returns_the_body():
    session = FakeSession({("GET", URL + ".sig"): FakeResponse(200, content=b"SIG")})
    assert HttpFetcher(session=session).fetch_bytes(URL + ".sig") == b"SIG"


def test_open_stream_checks_status_before_reading():
    r = FakeResponse(503)
    session = FakeSession({("GET", URL): r})
    with pytest.raises(FetchError, match="503"):
        HttpFetcher(session=session).open_stream(URL)
    assert r.closed


def test_open_stream_yields_chunks_and_closes():
    r = FakeResponse(200, chunks=[b"ab", b"", b"cd"])
    session = FakeSession({("GET", URL): r})
    fetcher = HttpFetcher(session=session, chunk_size=2)

    stream = fetcher.open_stream(URL)
    assert session.calls[0][2]["stream"] is True
    assert list(stream) == [b"ab", b"cd"]
    assert r.closed


def test_errors_while_streaming_propagate():
    r = FakeResponse(200, chunks=[b"ab"], error=requests.ConnectionError("reset"))
    session = FakeSession({("GET", URL): r})
    stream = HttpFetcher(session=session).open_stream(URL)

    with pytest.raises(requests.ConnectionError):
        list(stream)
    assert r.closed
