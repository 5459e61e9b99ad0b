"""
Tests for the per-user processor failure policy.
"""
import pytest

from livetv.services.fetch_types import EPGPayload, UserLiveTVTarget
from livetv.services.user_processor import process_user


def _target(username="alice", epg_url="http://p/a.xml"):
    return UserLiveTVTarget(username=username, m3u_url="http://p/a.m3u", epg_url=epg_url)


class TestProcessUser:

    @pytest.mark.asyncio
    async def test_happy_path(self, cache, sample_m3u_content, sample_epg_xml):
        result = await process_user(
            _target(),
            sample_m3u_content.encode(),
            EPGPayload(url="http://p/a.xml", content=sample_epg_xml.encode()),
            cache,
        )

        assert result.success is True
        assert len(result.channels) == 3
        assert len(result.programs) == 3
        assert all(c.username == "alice" for c in result.channels)
        assert all(p.username == "alice" for p in result.programs)
        assert cache.m3u_path("alice").read_text() == sample_m3u_content
        assert cache.epg_file("alice").read_text() == sample_epg_xml

    @pytest.mark.asyncio
    async def test_missing_m3u_fails_user(self, cache):
        result = await process_user(_target(), None, None, cache)

        assert result.success is False
        assert result.error == "Failed to fetch M3U content"
        assert result.to_dict() == {
            "username": "alice",
            "success": False,
            "error": "Failed to fetch M3U content",
        }

    @pytest.mark.asyncio
    async def test_epg_fetch_failure_keeps_channels(self, cache, sample_m3u_content):
        result = await process_user(
            _target(),
            sample_m3u_content.encode(),
            EPGPayload(url="http://p/a.xml", error="HTTP 500"),
            cache,
        )

        assert result.success is True
        assert len(result.channels) == 3
        assert result.programs == []
        assert result.to_dict()["programs"] == 0
        assert result.epg_error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_epg_parse_failure_keeps_channels(self, cache, sample_m3u_content):
        result = await process_user(
            _target(),
            sample_m3u_content.encode(),
            EPGPayload(url="http://p/a.xml", content=b"<tv><programme>"),
            cache,
        )

        assert result.success is True
        assert len(result.channels) == 3
        assert result.programs == []
        assert result.epg_error

    @pytest.mark.asyncio
    async def test_no_epg_url(self, cache, sample_m3u_content):
        result = await process_user(_target(epg_url=None), sample_m3u_content.encode(), None, cache)

        assert result.success is True
        assert result.programs == []
        assert result.epg_error is None
        assert await cache.epg_path("alice") is None

    @pytest.mark.asyncio
    async def test_shared_epg_is_copied(self, cache, sample_m3u_content, sample_epg_file):
        result = await process_user(
            _target(),
            sample_m3u_content.encode(),
            EPGPayload(url="http://p/a.xml.gz", shared_path=sample_epg_file),
            cache,
        )

        assert len(result.programs) == 3
        assert cache.epg_file("alice").read_bytes() == sample_epg_file.read_bytes()
        assert sample_epg_file.exists()

    @pytest.mark.asyncio
    async def test_duplicate_channel_ids_keep_first(self, cache):
        playlist = (
            "#EXTM3U\n"
            "#EXTINF:-1 tvg-id=\"dup\",First\nhttp://s/1\n"
            "#EXTINF:-1 tvg-id=\"dup\",Second\nhttp://s/2\n"
        )

        result = await process_user(_target(epg_url=None), playlist.encode(), None, cache)

        assert [c.name for c in result.channels] == ["First"]

    @pytest.mark.asyncio
    async def test_invalid_username_fails_user(self, cache, sample_m3u_content):
        result = await process_user(_target(username="../evil"), sample_m3u_content.encode(), None, cache)

        assert result.success is False
        assert not (cache.base_dir.parent / "evil").exists()
