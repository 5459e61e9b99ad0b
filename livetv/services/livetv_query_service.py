"""
Live TV Query Service

Read operations over the synced channels, programs and cached files. These
back the consumer-facing API layer; none of them mutate state.
"""
from datetime import datetime, timezone
import logging
from pathlib import Path
from urllib.parse import quote

from sqlalchemy.ext.asyncio import AsyncSession

from livetv.models import Program
from livetv.schemas import ChannelResponse, ProgramResponse
from livetv.services.cache_service import LiveTVCache
from livetv.services.db_service import find_channels, find_one_channel, find_programs
from livetv.services.m3u_parser_service import M3U_HEADER, UNKNOWN_CHANNEL_NAME, parse_m3u
from livetv.utils.timezone import ensure_utc

logger = logging.getLogger(__name__)

STREAM_PATH = "/api/livetv/stream"
API_KEY_PLACEHOLDER = "{API_KEY}"


def _program_response(program: Program) -> ProgramResponse:
    response = ProgramResponse.model_validate(program)
    response.start = ensure_utc(response.start)
    response.stop = ensure_utc(response.stop)
    return response


async def get_user_channels(
    db: AsyncSession,
    username: str,
    now: datetime | None = None
) -> list[ChannelResponse]:
    """
    Get a user's channels annotated with the program currently on air

    Args:
        db: Database session
        username: Owner
        now: Reference time (defaults to the current UTC time)

    Returns:
        Channels, each with `current_program` set to the first program whose
        start <= now <= stop, or None
    """
    now = ensure_utc(now) if now else datetime.now(timezone.utc)

    channels = await find_channels(db, username=username)
    airing = await find_programs(db, username, airing_at=now)

    current_by_channel: dict[str, Program] = {}
    for program in airing:
        current_by_channel.setdefault(program.channel_id, program)

    logger.debug(
        "User %s: %s channels, %s currently airing",
        username,
        len(channels),
        len(current_by_channel),
    )

    responses = []
    for channel in channels:
        response = ChannelResponse.model_validate(channel)
        current = current_by_channel.get(channel.channel_id)
        response.current_program = _program_response(current) if current else None
        responses.append(response)
    return responses


async def get_channel_programs(db: AsyncSession, username: str, channel_id: str) -> list[ProgramResponse]:
    """Programs for one channel of a user, ordered by start ascending."""
    programs = await find_programs(db, username, channel_id=channel_id)
    return [_program_response(program) for program in programs]


async def get_channel(db: AsyncSession, username: str, channel_id: str) -> ChannelResponse | None:
    channel = await find_one_channel(db, username=username, channel_id=channel_id)
    if channel is None:
        return None
    return ChannelResponse.model_validate(channel)


async def build_m3u_playlist(cache: LiveTVCache, username: str, base_url: str) -> str:
    """
    Build a playlist from the user's cached M3U with stream URLs rewritten

    Each URL points at `{base_url}/api/livetv/stream/{channel id}` with a literal
    `{API_KEY}` placeholder for the client to fill in.

    Raises:
        FileNotFoundError: No playlist has been cached for the user
    """
    content = await cache.read_m3u(username)
    if content is None:
        logger.warning("M3U playlist requested for %s but nothing is cached", username)
        raise FileNotFoundError(f"M3U file not found in cache for user {username}")

    base_url = base_url.rstrip("/")
    lines = [M3U_HEADER]

    for channel in parse_m3u(content, username):
        display_name = channel.name if channel.name != UNKNOWN_CHANNEL_NAME else None
        stream_id = channel.tvg_id or display_name or "unknown"

        params = []
        if channel.tvg_id:
            params.append(f'tvg-id="{channel.tvg_id}"')
        if channel.tvg_name:
            params.append(f'tvg-name="{channel.tvg_name}"')
        if channel.tvg_logo:
            params.append(f'tvg-logo="{channel.tvg_logo}"')
        if channel.group_title:
            params.append(f'group-title="{channel.group_title}"')

        lines.append(f"#EXTINF:{channel.duration} {' '.join(params)},{channel.name}")
        lines.append(f"{base_url}{STREAM_PATH}/{quote(stream_id, safe='')}?api_key={API_KEY_PLACEHOLDER}")

    return "\n".join(lines)


async def get_epg_path(cache: LiveTVCache, username: str) -> Path | None:
    """Path of the user's cached EPG XML, or None if absent."""
    try:
        return await cache.epg_path(username)
    except ValueError as exc:
        logger.error("Error getting EPG path for %s: %s", username, exc)
        return None
