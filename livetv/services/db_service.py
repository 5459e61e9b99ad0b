"""
Database operations for Live TV data

This module contains the bulk write operations used by the sync pipeline and
the repository-style reads used by the query service.
"""
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from time import perf_counter
from typing import cast

from sqlalchemy import delete, insert, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from livetv.config import settings
from livetv.models import Channel, Program, User
from livetv.services.fetch_types import ChannelRecord, ProgramRecord


logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement
USERNAME_BATCH_SIZE = 500

_CHANNEL_FIELDS = (
    "username",
    "channel_id",
    "name",
    "url",
    "tvg_id",
    "tvg_name",
    "tvg_logo",
    "group_title",
    "duration",
    "created_at",
    "last_updated",
)

_PROGRAM_FIELDS = (
    "username",
    "channel_id",
    "start",
    "stop",
    "title",
    "desc",
    "category",
    "icon",
    "episode",
    "created_at",
    "last_updated",
)


async def load_live_tv_users(db: AsyncSession) -> list[User]:
    """
    Load every user that carries a liveTV configuration.

    Classification (eligible / skipped / corrupted) is left to the caller.
    """
    result = await db.execute(
        select(User).where(User.live_tv.is_not(None)).order_by(User.username)
    )
    return list(result.scalars().all())


async def _delete_by_usernames(db: AsyncSession, model, usernames: Sequence[str]) -> int:
    deleted = 0
    names = list(dict.fromkeys(usernames))
    for start_index in range(0, len(names), USERNAME_BATCH_SIZE):
        batch = names[start_index:start_index + USERNAME_BATCH_SIZE]
        raw_result = await db.execute(delete(model).where(model.username.in_(batch)))
        rowcount = cast(CursorResult, raw_result).rowcount
        if rowcount and rowcount > 0:
            deleted += rowcount
    return deleted


async def delete_channels_by_usernames(db: AsyncSession, usernames: Sequence[str]) -> int:
    """
    Delete all channels owned by the given users.

    Returns:
        Number of deleted channel rows
    """
    if not usernames:
        return 0
    deleted = await _delete_by_usernames(db, Channel, usernames)
    logger.info("Deleted %s channels for %s user(s)", deleted, len(usernames))
    return deleted


async def delete_programs_by_usernames(db: AsyncSession, usernames: Sequence[str]) -> int:
    """
    Delete all programs owned by the given users.

    Returns:
        Number of deleted program rows
    """
    if not usernames:
        return 0
    deleted = await _delete_by_usernames(db, Program, usernames)
    logger.info("Deleted %s programs for %s user(s)", deleted, len(usernames))
    return deleted


def _build_payload(records: Sequence, fields: tuple[str, ...]) -> list[dict[str, object]]:
    now = datetime.now(timezone.utc)
    payload = []
    for record in records:
        row = {name: getattr(record, name) for name in fields}
        row["created_at"] = row["created_at"] or now
        row["last_updated"] = row["last_updated"] or now
        payload.append(row)
    return payload


async def _insert_chunked(
    db: AsyncSession,
    model,
    rows: list[dict[str, object]],
    chunk_size: int,
    label: str,
) -> int:
    total = len(rows)
    chunk_number = 0
    for start_index in range(0, total, chunk_size):
        chunk_number += 1
        chunk = rows[start_index:start_index + chunk_size]
        execute_start = perf_counter()
        await db.execute(insert(model), chunk)
        logger.debug(
            "%s chunk %s persisted: rows=%s, exec_time=%.2fs",
            label,
            chunk_number,
            len(chunk),
            perf_counter() - execute_start,
        )
    return total


async def insert_channels(
    db: AsyncSession,
    channels: Sequence[ChannelRecord],
    *,
    chunk_size: int | None = None,
) -> int:
    """
    Insert channel records in executemany batches.

    Args:
        db: Database session
        channels: Records to insert; (username, channel_id) must be unique
        chunk_size: Rows per statement (defaults to settings)

    Returns:
        Number of inserted channels
    """
    if not channels:
        logger.debug("No channels to store")
        return 0

    chunk_size = chunk_size or settings.channels_insert_chunk_size
    payload = _build_payload(channels, _CHANNEL_FIELDS)
    inserted = await _insert_chunked(db, Channel, payload, chunk_size, "Channel")
    logger.info("Inserted %s channels", inserted)
    return inserted


async def insert_programs(
    db: AsyncSession,
    programs: Sequence[ProgramRecord],
    *,
    chunk_size: int | None = None,
) -> int:
    """
    Insert program records in executemany batches.

    Args:
        db: Database session
        programs: Records to insert; the composite key must be unique
        chunk_size: Rows per statement (defaults to settings)

    Returns:
        Number of inserted programs
    """
    if not programs:
        logger.debug("No programs to store")
        return 0

    chunk_size = chunk_size or settings.programs_insert_chunk_size
    payload = _build_payload(programs, _PROGRAM_FIELDS)
    inserted = await _insert_chunked(db, Program, payload, chunk_size, "Program")
    logger.info("Inserted %s programs", inserted)
    return inserted


async def find_channels(db: AsyncSession, **filters) -> list[Channel]:
    """Channels matching the given column filters, ordered by owner and channel id."""
    stmt = select(Channel).filter_by(**filters).order_by(Channel.username, Channel.channel_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_one_channel(db: AsyncSession, **filters) -> Channel | None:
    stmt = select(Channel).filter_by(**filters).limit(1)
    result = await db.execute(stmt)
    return result.scalars().first()


async def find_programs(
    db: AsyncSession,
    username: str,
    channel_id: str | None = None,
    airing_at: datetime | None = None,
) -> list[Program]:
    """
    Programs for a user, ordered by start time

    Args:
        db: Database session
        username: Owner
        channel_id: Restrict to one channel
        airing_at: Restrict to programs with start <= airing_at <= stop

    Returns:
        List of program rows
    """
    stmt = select(Program).where(Program.username == username)
    if channel_id is not None:
        stmt = stmt.where(Program.channel_id == channel_id)
    if airing_at is not None:
        stmt = stmt.where(Program.start <= airing_at, Program.stop >= airing_at)
    stmt = stmt.order_by(Program.start, Program.channel_id)

    result = await db.execute(stmt)
    return list(result.scalars().all())
