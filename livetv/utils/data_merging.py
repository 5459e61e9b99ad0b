"""
Data merging utilities

This module collapses duplicate records before they reach the store, whose
primary keys would otherwise reject the whole batch.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from livetv.services.fetch_types import ChannelRecord

logger = logging.getLogger(__name__)


def dedupe_channels(channels: Sequence[ChannelRecord]) -> tuple[list[ChannelRecord], int]:
    """
    Drop channels whose (username, channel_id) was already seen.

    The first occurrence in playlist order is kept.

    Args:
        channels: Parsed channel records

    Returns:
        Tuple of (unique_channels, count_of_duplicates_dropped)
    """
    unique: dict[tuple[str, str], ChannelRecord] = {}
    duplicates = 0

    for channel in channels:
        key = (channel.username, channel.channel_id)
        if key in unique:
            duplicates += 1
            logger.debug(
                "Skipping duplicate channel %s (%s) for user %s",
                channel.channel_id,
                channel.name,
                channel.username,
            )
            continue
        unique[key] = channel

    return list(unique.values()), duplicates

