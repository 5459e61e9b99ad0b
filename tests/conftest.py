"""
Pytest configuration and fixtures for Live TV service tests.
"""
import gzip
import os
import tempfile
from collections import Counter
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="livetv-tests-"))
os.environ.setdefault("CACHE_DIR", str(_TEST_ROOT / "cache"))
os.environ.setdefault("DATABASE_PATH", str(_TEST_ROOT / "data" / "livetv.db"))

import httpx
import pytest

from livetv.database import close_db, init_db
from livetv.services.cache_service import LiveTVCache
from livetv.services.fetcher import Fetcher
from livetv.services.sync_coordinator import reset_sync_coordinator


SAMPLE_M3U = """#EXTM3U
#EXTINF:-1 tvg-id="c1" tvg-name="Channel One" tvg-logo="http://logos/c1.png" group-title="News",Channel One
http://streams/1
#EXTINF:-1 tvg-id="c2" group-title="Sports",Channel Two
http://streams/2
#EXTINF:-1,Channel Without ID
http://streams/3
"""

SAMPLE_EPG = """<?xml version="1.0" encoding="UTF-8"?>
<tv>
  <channel id="c1"><display-name>Channel One</display-name></channel>
  <channel id="c2"><display-name>Channel Two</display-name></channel>
  <programme channel="c1" start="20240101120000 +0000" stop="20240101130000 +0000">
    <title lang="en">Show</title>
    <desc lang="en">A show about things</desc>
    <category lang="en">News</category>
    <icon src="http://icons/show.png"/>
    <episode-num system="xmltv_ns">0.1.</episode-num>
  </programme>
  <programme channel="c1" start="20240101130000 +0000" stop="20240101140000 +0000">
    <title>Later Show</title>
  </programme>
  <programme channel="c2" start="20240101120000 +0100" stop="20240101123000 +0100">
    <title>Match</title>
  </programme>
  <programme channel="ghost" start="20240101120000 +0000" stop="20240101130000 +0000">
    <title>Unknown Channel Show</title>
  </programme>
</tv>
"""


class FakeUpstream:
    """In-memory upstream provider served through httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[str, tuple[int, dict[str, str], bytes]] = {}
        self.requests: Counter[str] = Counter()

    def add(self, url: str, body: bytes | str, *, status: int = 200, headers: dict | None = None) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, headers or {}, body)

    def add_gzip(self, url: str, body: bytes | str, *, content_type: str = "application/gzip") -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.add(url, gzip.compress(body), headers={"content-type": content_type})

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url] += 1
        if url not in self.routes:
            return httpx.Response(404, content=b"not found")
        status, headers, body = self.routes[url]
        return httpx.Response(status, headers=headers, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def fetcher_factory(self, **kwargs):
        return lambda: Fetcher(transport=self.transport, **kwargs)


@pytest.fixture(autouse=True)
def _fresh_sync_coordinator():
    reset_sync_coordinator()
    yield
    reset_sync_coordinator()


@pytest.fixture
def sample_m3u_content():
    return SAMPLE_M3U


@pytest.fixture
def sample_epg_xml():
    return SAMPLE_EPG


@pytest.fixture
def sample_epg_file(sample_epg_xml, tmp_path):
    epg_file = tmp_path / "guide.xml"
    epg_file.write_text(sample_epg_xml, encoding="utf-8")
    return epg_file


@pytest.fixture
def cache(tmp_path):
    return LiveTVCache(tmp_path / "cache")


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database for one test."""
    await init_db(str(tmp_path / "livetv.db"))
    yield
    await close_db()
