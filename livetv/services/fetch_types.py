"""
Shared dataclasses used across the Live TV sync pipeline.
"""
from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass(slots=True)
class ChannelRecord:
    """In-memory representation of a channel row before persistence."""
    username: str
    channel_id: str
    name: str
    url: str
    tvg_id: str | None = None
    tvg_name: str | None = None
    tvg_logo: str | None = None
    group_title: str | None = None
    duration: int = -1
    created_at: datetime | None = None
    last_updated: datetime | None = None


@dataclass(slots=True)
class ProgramRecord:
    """In-memory representation of a program row before persistence."""
    username: str
    channel_id: str
    start: datetime
    stop: datetime
    title: str
    desc: str | None = None
    category: str | None = None
    icon: str | None = None
    episode: str | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None


@dataclass(slots=True)
class FetchResult:
    """
    Outcome of one upstream GET.

    Exactly one of `content` (materialized body) or `stream` (single-use,
    decompressing chunk iterator for gzipped bodies) is set.
    """
    url: str
    is_gzipped: bool = False
    content: bytes | None = None
    stream: AsyncIterator[bytes] | None = None
    content_type: str = ""


@dataclass(slots=True)
class EPGPayload:
    """EPG data handed to the per-user processor."""
    url: str
    content: bytes | None = None
    shared_path: Path | None = None
    error: str | None = None


@dataclass(slots=True)
class UserLiveTVTarget:
    """A user eligible for ingestion, with trimmed upstream URLs."""
    username: str
    m3u_url: str
    epg_url: str | None = None


@dataclass(slots=True)
class UserSyncResult:
    """Per-user outcome of the processing stage."""
    username: str
    success: bool
    channels: list[ChannelRecord] = field(default_factory=list)
    programs: list[ProgramRecord] = field(default_factory=list)
    error: str | None = None
    epg_error: str | None = None

    def to_dict(self) -> dict:
        if not self.success:
            return {
                "username": self.username,
                "success": False,
                "error": self.error,
            }
        payload = {
            "username": self.username,
            "success": True,
            "channels": len(self.channels),
            "programs": len(self.programs),
        }
        if self.epg_error:
            payload["epg_error"] = self.epg_error
        return payload


__all__ = [
    "ChannelRecord",
    "ProgramRecord",
    "FetchResult",
    "EPGPayload",
    "UserLiveTVTarget",
    "UserSyncResult",
]
