"""
Per-user Live TV processor

Caches one user's upstream payloads and turns them into channel and program
records. Never touches the database; the sync pipeline persists the output.
"""
import logging

from livetv.config import settings
from livetv.errors import ParseError
from livetv.services.cache_service import LiveTVCache
from livetv.services.fetch_types import EPGPayload, ProgramRecord, UserLiveTVTarget, UserSyncResult
from livetv.services.m3u_parser_service import parse_m3u
from livetv.services.xmltv_parser_service import parse_epg_file
from livetv.utils.data_merging import dedupe_channels


logger = logging.getLogger(__name__)

M3U_FETCH_FAILED = "Failed to fetch M3U content"
EPG_FETCH_FAILED = "Failed to fetch EPG content"


async def process_user(
    user: UserLiveTVTarget,
    m3u_payload: bytes | None,
    epg_payload: EPGPayload | None,
    cache: LiveTVCache,
    *,
    parse_timeout_seconds: int | None = None,
) -> UserSyncResult:
    """
    Cache and parse one user's playlist and guide

    Args:
        user: Eligible user with trimmed URLs
        m3u_payload: Playlist body, or None when the shared fetch failed
        epg_payload: Guide payload, or None when the user has no EPG URL
        cache: Cache the raw files are written to

    Keyword Args:
        parse_timeout_seconds: EPG parse timeout (defaults to settings)

    Returns:
        UserSyncResult; a failed M3U makes the whole user fail, a failed EPG
        only empties the program list
    """
    username = user.username

    if m3u_payload is None:
        logger.warning("User %s: %s", username, M3U_FETCH_FAILED)
        return UserSyncResult(username=username, success=False, error=M3U_FETCH_FAILED)

    try:
        await cache.write_m3u(username, m3u_payload)
    except ValueError as exc:
        logger.error("User %s: cannot cache M3U: %s", username, exc)
        return UserSyncResult(username=username, success=False, error=str(exc))
    except OSError as exc:
        logger.error("User %s: failed to write M3U cache: %s", username, exc)
        return UserSyncResult(username=username, success=False, error=f"Failed to cache M3U content: {exc}")

    try:
        parsed_channels = parse_m3u(m3u_payload, username)
    except ParseError as exc:
        logger.error("User %s: M3U parsing failed: %s", username, exc)
        return UserSyncResult(username=username, success=False, error=f"Failed to parse M3U content: {exc}")

    channels, duplicates = dedupe_channels(parsed_channels)
    if duplicates:
        logger.info("User %s: dropped %s duplicate channel id(s)", username, duplicates)
    logger.info("User %s: parsed %s channels", username, len(channels))

    programs: list[ProgramRecord] = []
    epg_error = None
    if epg_payload is not None:
        timeout = settings.epg_parse_timeout_sec if parse_timeout_seconds is None else parse_timeout_seconds
        try:
            programs = await _process_epg(username, epg_payload, cache, timeout)
        except (ParseError, OSError) as exc:
            logger.error("User %s: EPG processing failed, keeping channels only: %s", username, exc)
            epg_error = str(exc) or type(exc).__name__
        else:
            logger.info("User %s: parsed %s programs", username, len(programs))

        if epg_error is None and epg_payload.error:
            epg_error = epg_payload.error

    return UserSyncResult(
        username=username,
        success=True,
        channels=channels,
        programs=programs,
        epg_error=epg_error,
    )


async def _process_epg(
    username: str,
    payload: EPGPayload,
    cache: LiveTVCache,
    parse_timeout_seconds: int,
) -> list[ProgramRecord]:
    if payload.error:
        logger.warning("User %s: %s: %s", username, EPG_FETCH_FAILED, payload.error)
        return []

    if payload.shared_path is not None:
        epg_path = await cache.copy_epg_from(username, payload.shared_path)
    elif payload.content is not None:
        epg_path = await cache.write_epg(username, payload.content)
    else:
        logger.warning("User %s: EPG payload is empty", username)
        return []

    return await parse_epg_file(epg_path, username, parse_timeout_seconds=parse_timeout_seconds)
