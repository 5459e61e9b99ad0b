"""
End-to-end tests for the Live TV sync pipeline.
"""
import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from livetv.database import session_scope
from livetv.errors import ConfigCorruptError, StorageError
from livetv.models import User
from livetv.services import sync_service, xmltv_parser_service
from livetv.services.db_service import find_channels, find_programs, insert_channels, insert_programs
from livetv.services.fetch_types import ChannelRecord, ProgramRecord
from livetv.services.sync_coordinator import get_sync_coordinator
from livetv.services.sync_service import parse_live_tv_config, sync_all_users
from livetv.utils.timezone import ensure_utc


SCENARIO_M3U = '#EXTM3U\n#EXTINF:-1 tvg-id="c1" tvg-logo="L",Channel One\nhttp://s/1\n'

SCENARIO_EPG = """<?xml version="1.0" encoding="UTF-8"?>
<tv>
  <channel id="c1"/>
  <programme channel="c1" start="20240101120000 +0000" stop="20240101130000 +0000"><title>Show</title></programme>
</tv>
"""


def _guide(programme_count: int, unknown_every: int) -> str:
    parts = ['<?xml version="1.0" encoding="UTF-8"?>\n<tv>\n  <channel id="c1"/>\n']
    base = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp())
    for index in range(programme_count):
        channel = "unknown" if index % unknown_every == 0 else "c1"
        start = datetime.fromtimestamp(base + index * 600, tz=timezone.utc)
        stop = datetime.fromtimestamp(base + index * 600 + 600, tz=timezone.utc)
        parts.append(
            f'  <programme channel="{channel}" start="{start:%Y%m%d%H%M%S} +0000" '
            f'stop="{stop:%Y%m%d%H%M%S} +0000"><title>P{index}</title></programme>\n'
        )
    parts.append("</tv>\n")
    return "".join(parts)


async def _seed_users(**users):
    async with session_scope() as session:
        session.add_all([User(username=name, live_tv=live_tv) for name, live_tv in users.items()])


async def _seed_rows(username: str, channel_id: str = "old"):
    start = datetime(2023, 6, 1, 12, tzinfo=timezone.utc)
    stop = datetime(2023, 6, 1, 13, tzinfo=timezone.utc)
    async with session_scope() as session:
        await insert_channels(
            session,
            [ChannelRecord(username=username, channel_id=channel_id, name="Old", url="http://old")],
        )
        await insert_programs(
            session,
            [ProgramRecord(username=username, channel_id=channel_id, start=start, stop=stop, title="Old show")],
        )


async def _rows(username: str):
    async with session_scope() as session:
        channels = await find_channels(session, username=username)
        programs = await find_programs(session, username)
    return channels, programs


def _run(cache, upstream):
    return sync_all_users(cache=cache, fetcher_factory=upstream.fetcher_factory())


class TestConfigClassification:

    @pytest.mark.parametrize("live_tv", [None, "yes", [], {"m3u_url": ""}, {"m3u_url": "   "}, {"m3u_url": None}])
    def test_skipped(self, live_tv):
        assert parse_live_tv_config(live_tv) is None

    def test_missing_m3u_key_is_corrupted(self):
        with pytest.raises(ConfigCorruptError, match=r"m3u_url property missing"):
            parse_live_tv_config({"epg_url": "http://p/a.xml"})

    def test_urls_are_trimmed(self):
        config = parse_live_tv_config({"m3u_url": "  http://p/a.m3u ", "epg_url": " "})

        assert config.m3u_url == "http://p/a.m3u"
        assert config.epg_url is None


@pytest.mark.usefixtures("db")
class TestSyncScenarios:

    @pytest.mark.asyncio
    async def test_happy_path_single_user(self, cache, upstream):
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/a.xml", SCENARIO_EPG)
        await _seed_users(alice={"m3u_url": "http://p/a.m3u", "epg_url": "http://p/a.xml"})

        result = await _run(cache, upstream)

        assert result["users_processed"] == 1
        assert result["results"] == [{"username": "alice", "success": True, "channels": 1, "programs": 1}]
        assert result["channels_inserted"] == 1
        assert result["programs_inserted"] == 1

        channels, programs = await _rows("alice")
        assert len(channels) == 1
        channel = channels[0]
        assert (channel.channel_id, channel.name, channel.url, channel.tvg_logo) == ("c1", "Channel One", "http://s/1", "L")
        assert len(programs) == 1
        program = programs[0]
        assert (program.channel_id, program.title) == ("c1", "Show")
        assert ensure_utc(program.start) == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        assert ensure_utc(program.stop) == datetime(2024, 1, 1, 13, tzinfo=timezone.utc)

        assert cache.m3u_path("alice").read_text() == SCENARIO_M3U
        assert cache.epg_file("alice").read_text() == SCENARIO_EPG

    @pytest.mark.asyncio
    async def test_shared_urls_are_fetched_once(self, cache, upstream):
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/a.xml", SCENARIO_EPG)
        config = {"m3u_url": "http://p/a.m3u", "epg_url": "http://p/a.xml"}
        await _seed_users(alice=config, bob={"m3u_url": " http://p/a.m3u ", "epg_url": "http://p/a.xml"})

        result = await _run(cache, upstream)

        assert upstream.requests["http://p/a.m3u"] == 1
        assert upstream.requests["http://p/a.xml"] == 1
        assert result["users_processed"] == 2

        alice_channels, _ = await _rows("alice")
        bob_channels, _ = await _rows("bob")
        strip = lambda rows: [(c.channel_id, c.name, c.url, c.tvg_logo) for c in rows]
        assert strip(alice_channels) == strip(bob_channels)

    @pytest.mark.asyncio
    async def test_gzipped_epg_shared_by_two_users(self, cache, upstream):
        """A gzipped guide is downloaded and decompressed once, then copied to each subscriber."""
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add_gzip("http://p/guide.xml.gz", SCENARIO_EPG)
        config = {"m3u_url": "http://p/a.m3u", "epg_url": "http://p/guide.xml.gz"}
        await _seed_users(alice=config, bob=config)

        result = await _run(cache, upstream)

        assert upstream.requests["http://p/guide.xml.gz"] == 1
        assert [r["programs"] for r in result["results"]] == [1, 1]
        assert cache.epg_file("alice").read_text() == SCENARIO_EPG
        assert cache.epg_file("bob").read_text() == SCENARIO_EPG
        shared_dir = cache.base_dir / ".shared"
        assert not shared_dir.exists() or not any(shared_dir.iterdir())

    @pytest.mark.asyncio
    async def test_oversized_guide_uses_streaming(self, cache, upstream, monkeypatch):
        async def no_dom(*args, **kwargs):
            raise AssertionError("DOM parser should not run")

        monkeypatch.setattr(xmltv_parser_service, "DOM_SIZE_THRESHOLD", 4096)
        monkeypatch.setattr(xmltv_parser_service, "parse_epg_dom", no_dom)
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/big.xml", _guide(2000, unknown_every=200))
        await _seed_users(alice={"m3u_url": "http://p/a.m3u", "epg_url": "http://p/big.xml"})

        result = await _run(cache, upstream)

        assert result["results"][0]["programs"] == 1990
        _, programs = await _rows("alice")
        assert len(programs) == 1990
        assert all(p.channel_id == "c1" for p in programs)

    @pytest.mark.asyncio
    async def test_dom_stack_exhaustion_falls_back(self, cache, upstream, monkeypatch):
        def exhausted(data):
            raise RecursionError("Maximum call stack size exceeded")

        monkeypatch.setattr(xmltv_parser_service, "_parse_dom_tree", exhausted)
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/a.xml", _guide(300, unknown_every=100))
        await _seed_users(alice={"m3u_url": "http://p/a.m3u", "epg_url": "http://p/a.xml"})

        result = await _run(cache, upstream)

        assert result["results"][0]["programs"] == 297

    @pytest.mark.asyncio
    async def test_partial_failure(self, cache, upstream):
        upstream.add("http://p/bob.m3u", SCENARIO_M3U)
        upstream.add("http://p/bob.xml", SCENARIO_EPG)
        await _seed_users(
            alice={"m3u_url": "http://p/alice.m3u", "epg_url": "http://p/alice.xml"},
            bob={"m3u_url": "http://p/bob.m3u", "epg_url": "http://p/bob.xml"},
        )
        await _seed_rows("alice")
        await _seed_rows("bob")

        result = await _run(cache, upstream)

        assert result["results"] == [
            {"username": "alice", "success": False, "error": "Failed to fetch M3U content"},
            {"username": "bob", "success": True, "channels": 1, "programs": 1},
        ]
        # nobody else needs alice's guide
        assert upstream.requests["http://p/alice.xml"] == 0

        alice_channels, alice_programs = await _rows("alice")
        assert [c.channel_id for c in alice_channels] == ["old"]
        assert [p.title for p in alice_programs] == ["Old show"]

        bob_channels, bob_programs = await _rows("bob")
        assert [c.channel_id for c in bob_channels] == ["c1"]
        assert [p.title for p in bob_programs] == ["Show"]
        assert result["deleted"] == {"channels": 1, "programs": 1}

    @pytest.mark.asyncio
    async def test_epg_failure_wipes_programs_but_keeps_channels(self, cache, upstream):
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/a.xml", "boom", status=500)
        await _seed_users(alice={"m3u_url": "http://p/a.m3u", "epg_url": "http://p/a.xml"})
        await _seed_rows("alice")

        result = await _run(cache, upstream)

        user_result = result["results"][0]
        assert user_result["success"] is True
        assert user_result["programs"] == 0
        assert "500" in user_result["epg_error"]
        channels, programs = await _rows("alice")
        assert [c.channel_id for c in channels] == ["c1"]
        assert programs == []


@pytest.mark.usefixtures("db")
class TestSkippedAndCorruptedUsers:

    @pytest.mark.asyncio
    async def test_unconfigured_users_are_invisible(self, cache, upstream):
        await _seed_users(carol=None, dave={"m3u_url": ""})
        await _seed_rows("dave")

        result = await _run(cache, upstream)

        assert result["users_processed"] == 0
        assert result["results"] == []
        assert sum(upstream.requests.values()) == 0
        channels, programs = await _rows("dave")
        assert len(channels) == 1
        assert len(programs) == 1

    @pytest.mark.asyncio
    async def test_corrupted_config_is_reported(self, cache, upstream):
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        await _seed_users(
            erin={"epg_url": "http://p/a.xml"},
            frank={"m3u_url": "http://p/a.m3u"},
        )
        await _seed_rows("erin")

        result = await _run(cache, upstream)

        assert result["users_processed"] == 2
        assert result["results"][0] == {
            "username": "erin",
            "success": False,
            "error": "Live TV configuration is corrupted (m3u_url property missing)",
        }
        assert result["results"][1]["success"] is True
        assert upstream.requests["http://p/a.xml"] == 0
        channels, _ = await _rows("erin")
        assert [c.channel_id for c in channels] == ["old"]


@pytest.mark.usefixtures("db")
class TestPersistenceFailures:

    @pytest.mark.asyncio
    async def test_storage_error_propagates_and_rolls_back(self, cache, upstream, monkeypatch):
        async def broken_insert(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(sync_service, "insert_programs", broken_insert)
        upstream.add("http://p/a.m3u", SCENARIO_M3U)
        upstream.add("http://p/a.xml", SCENARIO_EPG)
        await _seed_users(alice={"m3u_url": "http://p/a.m3u", "epg_url": "http://p/a.xml"})
        await _seed_rows("alice")

        with pytest.raises(StorageError):
            await _run(cache, upstream)

        channels, programs = await _rows("alice")
        assert [c.channel_id for c in channels] == ["old"]
        assert [p.title for p in programs] == ["Old show"]

    @pytest.mark.asyncio
    async def test_concurrent_sync_is_skipped(self, cache, upstream):
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()
            return {}

        running = asyncio.create_task(get_sync_coordinator().execute(blocker))
        await asyncio.sleep(0)

        result = await _run(cache, upstream)
        gate.set()
        await running

        assert result["status"] == "skipped"
