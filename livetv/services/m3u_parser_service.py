"""
M3U Parser Service

Parses extended M3U/M3U8 playlists into channel records.
"""
import logging
import re
from datetime import datetime, timezone

from livetv.services.fetch_types import ChannelRecord


logger = logging.getLogger(__name__)

M3U_HEADER = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF:"
EXTGRP_PREFIX = "#EXTGRP:"

UNKNOWN_CHANNEL_NAME = "Unknown Channel"

# key="value" or key='value'
ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z0-9_-]+)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')')
DURATION_PATTERN = re.compile(r'^\s*(-?\d+(?:\.\d+)?)')


def parse_m3u(buffer: bytes | str, username: str = "") -> list[ChannelRecord]:
    """
    Parse an M3U playlist and return channel records in playlist order

    Args:
        buffer: Raw playlist bytes (decoded as UTF-8) or text
        username: Owner stamped onto every record

    Returns:
        List of ChannelRecord; empty when the #EXTM3U header is missing
    """
    if isinstance(buffer, bytes):
        text = buffer.decode("utf-8", errors="replace")
    else:
        text = buffer

    lines = text.lstrip("\ufeff").splitlines()
    first_line = next((line.strip() for line in lines if line.strip()), "")
    if not first_line.upper().startswith(M3U_HEADER):
        logger.warning("M3U payload has no %s header, ignoring it", M3U_HEADER)
        return []

    channels: list[ChannelRecord] = []
    now = datetime.now(timezone.utc)
    current: dict | None = None
    skipped = 0

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue

        if line.upper().startswith(EXTINF_PREFIX):
            if current is not None:
                logger.debug("Dropping #EXTINF entry without URL: %s", current.get("name"))
                skipped += 1
            try:
                current = _parse_extinf(line[len(EXTINF_PREFIX):])
            except (ValueError, IndexError) as exc:
                logger.debug("Skipping malformed #EXTINF line %r: %s", line, exc)
                current = None
                skipped += 1
            continue

        if line.upper().startswith(EXTGRP_PREFIX):
            if current is not None and not current.get("group_title"):
                current["group_title"] = line[len(EXTGRP_PREFIX):].strip() or None
            continue

        if line.startswith("#"):
            continue

        if current is None:
            continue

        tvg_id = current.get("tvg_id") or None
        channels.append(
            ChannelRecord(
                username=username,
                channel_id=tvg_id or f"channel_{len(channels)}",
                name=current.get("name") or UNKNOWN_CHANNEL_NAME,
                url=line,
                tvg_id=tvg_id,
                tvg_name=current.get("tvg_name") or None,
                tvg_logo=current.get("tvg_logo") or None,
                group_title=current.get("group_title") or None,
                duration=current.get("duration", -1),
                created_at=now,
                last_updated=now,
            )
        )
        current = None

    if skipped:
        logger.debug("Skipped %s malformed or incomplete M3U entries", skipped)
    logger.debug("Parsed %s channels from M3U playlist", len(channels))
    return channels


def _parse_extinf(body: str) -> dict:
    """Parse the part of an #EXTINF line after the colon."""
    split_at = _find_name_separator(body)
    if split_at < 0:
        meta, name = body, ""
    else:
        meta, name = body[:split_at], body[split_at + 1:]

    duration = -1
    duration_match = DURATION_PATTERN.match(meta)
    if duration_match:
        duration = int(float(duration_match.group(1)))

    attributes = {}
    for key, double_quoted, single_quoted in ATTRIBUTE_PATTERN.findall(meta):
        value = double_quoted if double_quoted or not single_quoted else single_quoted
        attributes[key.lower()] = value.strip()

    return {
        "duration": duration,
        "tvg_id": attributes.get("tvg-id"),
        "tvg_name": attributes.get("tvg-name"),
        "tvg_logo": attributes.get("tvg-logo"),
        "group_title": attributes.get("group-title"),
        "name": name.strip(),
    }


def _find_name_separator(body: str) -> int:
    """Index of the first comma outside quoted attribute values, or -1."""
    quote = None
    for index, char in enumerate(body):
        if quote:
            if char == quote:
                quote = None
        elif char in ('"', "'"):
            quote = char
        elif char == ",":
            return index
    return -1
