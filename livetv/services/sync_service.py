"""
Live TV Sync Service

Coordinates fetching, per-user processing and bulk persistence of every
user's Live TV playlist and guide.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from livetv.config import settings
from livetv.database import session_scope
from livetv.errors import ConfigCorruptError, FetchError, StorageError
from livetv.schemas import LiveTVConfig
from livetv.services.cache_service import LiveTVCache
from livetv.services.db_service import (
    delete_channels_by_usernames,
    delete_programs_by_usernames,
    insert_channels,
    insert_programs,
    load_live_tv_users,
)
from livetv.services.fetch_types import (
    ChannelRecord,
    EPGPayload,
    ProgramRecord,
    UserLiveTVTarget,
    UserSyncResult,
)
from livetv.services.fetcher import Fetcher
from livetv.services.sync_coordinator import get_sync_coordinator
from livetv.services.user_processor import process_user
from livetv.utils.logging_helpers import (
    log_section_end,
    log_section_start,
    log_storage_stats,
    log_sync_end,
    log_sync_start,
    sanitize_url_for_logging,
)


logger = logging.getLogger(__name__)

CONFIG_CORRUPTED_MESSAGE = "Live TV configuration is corrupted (m3u_url property missing)"

FetcherFactory = Callable[[], Fetcher]


@dataclass(slots=True)
class M3UEntry:
    """One unique playlist URL and the users subscribed to it."""
    url: str
    users: list[str] = field(default_factory=list)
    content: bytes | None = None
    error: str | None = None


@dataclass(slots=True)
class EPGEntry:
    """One unique guide URL and the users subscribed to it."""
    url: str
    users: list[str] = field(default_factory=list)
    content: bytes | None = None
    shared_path: Path | None = None
    error: str | None = None

    def payload(self) -> EPGPayload:
        return EPGPayload(
            url=self.url,
            content=self.content,
            shared_path=self.shared_path,
            error=self.error,
        )


@dataclass(slots=True)
class PersistSummary:
    deleted_channels: int = 0
    deleted_programs: int = 0
    channels_inserted: int = 0
    programs_inserted: int = 0


def parse_live_tv_config(live_tv: Any) -> LiveTVConfig | None:
    """
    Validate a user's raw liveTV value

    Returns:
        The config when it names an M3U URL, None when the user simply has no
        Live TV configured

    Raises:
        ConfigCorruptError: The liveTV object exists but has no m3u_url
            property, or its values are not strings
    """
    if not isinstance(live_tv, dict):
        return None

    try:
        config = LiveTVConfig.model_validate(live_tv)
    except ValidationError as exc:
        fields = ", ".join(str(error["loc"][0]) for error in exc.errors() if error.get("loc"))
        raise ConfigCorruptError(f"Live TV configuration is corrupted (invalid {fields})") from exc

    if not config.has_m3u_key:
        raise ConfigCorruptError(CONFIG_CORRUPTED_MESSAGE)
    if not config.m3u_url:
        return None
    return config


def _default_fetcher_factory() -> Fetcher:
    return Fetcher(
        timeout=settings.fetch_timeout_sec,
        max_concurrency=settings.fetch_max_concurrency,
    )


class LiveTVSyncPipeline:
    """Runs one sync cycle: classify, fetch, process, persist."""

    def __init__(
        self,
        cache: LiveTVCache,
        *,
        fetcher_factory: FetcherFactory | None = None,
        parse_timeout_seconds: int | None = None,
    ) -> None:
        self.cache = cache
        self._fetcher_factory = fetcher_factory or _default_fetcher_factory
        self._parse_timeout = (
            settings.epg_parse_timeout_sec if parse_timeout_seconds is None else parse_timeout_seconds
        )

    async def run(self, users: Iterable[Any]) -> dict:
        """
        Sync the given users

        Args:
            users: Objects exposing `username` and `live_tv` (ORM rows work)

        Returns:
            Aggregated result; silently skipped users are not listed

        Raises:
            StorageError: Bulk persistence failed
        """
        started_at = datetime.now(timezone.utc)
        targets, results = self._classify_users(users)

        if not results:
            logger.info("No users with Live TV configured")
            return self._build_result(started_at, [], PersistSummary())

        log_sync_start(logger, len(targets))

        m3u_map, epg_map = self._build_url_maps(targets)
        logger.info(
            "Coalesced %s user(s) into %s M3U URL(s) and %s EPG URL(s)",
            len(targets),
            len(m3u_map),
            len(epg_map),
        )

        try:
            if targets:
                log_section_start(logger, "Upstream download")
                async with self._fetcher_factory() as fetcher:
                    await self._fetch_m3u_sources(fetcher, m3u_map)
                    await self._fetch_epg_sources(fetcher, epg_map, m3u_map, targets)
                log_section_end(logger, "Upstream download")

                log_section_start(logger, "User processing")
                processed = await self._process_users(targets, m3u_map, epg_map)
                log_section_end(logger, "User processing")
                for result in processed:
                    results[result.username] = result
        finally:
            await self._discard_spools(epg_map)

        ordered_results = list(results.values())
        summary = await self._persist(ordered_results)

        log_sync_end(logger)
        return self._build_result(started_at, ordered_results, summary)

    def _classify_users(
        self,
        users: Iterable[Any],
    ) -> tuple[list[UserLiveTVTarget], dict[str, UserSyncResult | None]]:
        """
        Split users into eligible targets and corrupted configurations.

        The returned dict keeps input order; eligible users hold a None
        placeholder until they are processed.
        """
        targets: list[UserLiveTVTarget] = []
        results: dict[str, UserSyncResult | None] = {}

        for user in users:
            username = user.username
            try:
                config = parse_live_tv_config(user.live_tv)
            except ConfigCorruptError as exc:
                logger.warning("User %s: %s", username, exc)
                results[username] = UserSyncResult(username=username, success=False, error=str(exc))
                continue

            if config is None:
                continue

            targets.append(
                UserLiveTVTarget(
                    username=username,
                    m3u_url=config.m3u_url,
                    epg_url=config.epg_url,
                )
            )
            results[username] = None

        return targets, results

    def _build_url_maps(
        self,
        targets: list[UserLiveTVTarget],
    ) -> tuple[dict[str, M3UEntry], dict[str, EPGEntry]]:
        m3u_map: dict[str, M3UEntry] = {}
        epg_map: dict[str, EPGEntry] = {}

        for target in targets:
            m3u_map.setdefault(target.m3u_url, M3UEntry(url=target.m3u_url)).users.append(target.username)
            if target.epg_url:
                epg_map.setdefault(target.epg_url, EPGEntry(url=target.epg_url)).users.append(target.username)

        return m3u_map, epg_map

    async def _fetch_m3u_sources(self, fetcher: Fetcher, m3u_map: dict[str, M3UEntry]) -> None:
        tasks = [
            asyncio.create_task(self._fetch_m3u(fetcher, entry))
            for entry in m3u_map.values()
        ]
        await asyncio.gather(*tasks)

        failed = sum(1 for entry in m3u_map.values() if entry.error)
        logger.info("Fetched %s M3U URL(s), %s failed", len(m3u_map) - failed, failed)

    async def _fetch_m3u(self, fetcher: Fetcher, entry: M3UEntry) -> None:
        try:
            result = await fetcher.fetch(entry.url)
            if result.stream is not None:
                entry.content = b"".join([chunk async for chunk in result.stream])
            else:
                entry.content = result.content
        except FetchError as exc:
            logger.error(
                "Error fetching M3U %s for %s user(s): %s",
                sanitize_url_for_logging(entry.url),
                len(entry.users),
                exc,
            )
            entry.error = str(exc)

    async def _fetch_epg_sources(
        self,
        fetcher: Fetcher,
        epg_map: dict[str, EPGEntry],
        m3u_map: dict[str, M3UEntry],
        targets: list[UserLiveTVTarget],
    ) -> None:
        # Guides are fetched only for users whose playlist arrived; a user
        # without a playlist fails before its guide is read, so skipping
        # those URLs leaves every result unchanged (see DESIGN.md).
        usable_users = {
            target.username
            for target in targets
            if m3u_map[target.m3u_url].content is not None
        }
        entries = [
            entry for entry in epg_map.values()
            if any(username in usable_users for username in entry.users)
        ]
        if len(entries) < len(epg_map):
            logger.info(
                "Skipping %s EPG URL(s) whose subscribers have no playlist",
                len(epg_map) - len(entries),
            )

        tasks = [
            asyncio.create_task(self._fetch_epg(fetcher, entry))
            for entry in entries
        ]
        await asyncio.gather(*tasks)

    async def _fetch_epg(self, fetcher: Fetcher, entry: EPGEntry) -> None:
        safe_url = sanitize_url_for_logging(entry.url)
        try:
            result = await fetcher.fetch(entry.url)
            if result.stream is not None:
                # Decompress once; every subscriber copies the spooled file
                entry.shared_path = await self.cache.spool_shared_epg(entry.url, result.stream)
                logger.info(
                    "Decompressed gzipped EPG %s once for %s user(s)",
                    safe_url,
                    len(entry.users),
                )
            else:
                entry.content = result.content
        except FetchError as exc:
            logger.error("Error fetching EPG %s: %s", safe_url, exc)
            entry.error = str(exc)
        except OSError as exc:
            logger.error("Error spooling EPG %s to disk: %s", safe_url, exc)
            entry.error = f"Failed to store EPG content: {exc}"

    async def _process_users(
        self,
        targets: list[UserLiveTVTarget],
        m3u_map: dict[str, M3UEntry],
        epg_map: dict[str, EPGEntry],
    ) -> list[UserSyncResult]:
        tasks = [
            asyncio.create_task(self._process_user(target, m3u_map, epg_map))
            for target in targets
        ]
        return list(await asyncio.gather(*tasks))

    async def _process_user(
        self,
        target: UserLiveTVTarget,
        m3u_map: dict[str, M3UEntry],
        epg_map: dict[str, EPGEntry],
    ) -> UserSyncResult:
        m3u_entry = m3u_map[target.m3u_url]
        epg_payload = epg_map[target.epg_url].payload() if target.epg_url else None

        try:
            return await process_user(
                target,
                m3u_entry.content,
                epg_payload,
                self.cache,
                parse_timeout_seconds=self._parse_timeout,
            )
        except Exception as exc:
            logger.error(
                "Error syncing Live TV for %s: %s",
                target.username,
                exc,
                exc_info=True,
            )
            return UserSyncResult(username=target.username, success=False, error=str(exc))

    async def _discard_spools(self, epg_map: dict[str, EPGEntry]) -> None:
        for entry in epg_map.values():
            if entry.shared_path is not None:
                await self.cache.discard_shared(entry.shared_path)
                entry.shared_path = None

    async def _persist(self, results: list[UserSyncResult]) -> PersistSummary:
        """
        Replace the stored records of every successfully processed user.

        Deletes and inserts run in one transaction, so a failure leaves the
        previous rows in place.

        Raises:
            StorageError: Any database error
        """
        succeeded = [result for result in results if result.success]
        if not succeeded:
            logger.info("No successfully processed users, nothing to persist")
            return PersistSummary()

        usernames = [result.username for result in succeeded]
        all_channels: list[ChannelRecord] = []
        all_programs: list[ProgramRecord] = []
        for result in succeeded:
            all_channels.extend(result.channels)
            all_programs.extend(result.programs)

        log_storage_stats(logger, len(usernames), len(all_channels), len(all_programs))

        log_section_start(logger, "Bulk persistence")
        summary = PersistSummary()
        try:
            async with session_scope() as session:
                summary.deleted_channels = await delete_channels_by_usernames(session, usernames)
                summary.deleted_programs = await delete_programs_by_usernames(session, usernames)
                summary.channels_inserted = await insert_channels(session, all_channels)
                summary.programs_inserted = await insert_programs(session, all_programs)
        except SQLAlchemyError as exc:
            logger.error("Bulk persistence failed: %s", exc, exc_info=True)
            raise StorageError(f"Bulk persistence failed: {exc}") from exc

        log_section_end(logger, "Bulk persistence")
        return summary

    def _build_result(
        self,
        started_at: datetime,
        results: list[UserSyncResult],
        summary: PersistSummary,
    ) -> dict:
        return {
            "users_processed": len(results),
            "results": [result.to_dict() for result in results],
            "started_at": started_at.isoformat(),
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "channels_inserted": summary.channels_inserted,
            "programs_inserted": summary.programs_inserted,
            "deleted": {
                "channels": summary.deleted_channels,
                "programs": summary.deleted_programs,
            },
        }


async def sync_all_users(
    *,
    cache: LiveTVCache | None = None,
    fetcher_factory: FetcherFactory | None = None,
) -> dict:
    """
    Main entry point for Live TV sync with concurrency protection.

    Returns:
        Sync result, or a skip response when a sync is already running

    Raises:
        StorageError: Bulk persistence failed
    """
    async def _run() -> dict:
        async with session_scope() as session:
            users = await load_live_tv_users(session)

        pipeline = LiveTVSyncPipeline(
            cache or LiveTVCache(settings.cache_dir),
            fetcher_factory=fetcher_factory,
        )
        return await pipeline.run(users)

    return await get_sync_coordinator().execute(_run)
