from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LiveTVConfig(BaseModel):
    """A user's liveTV configuration as stored on the user document"""
    model_config = ConfigDict(extra="allow")

    m3u_url: str | None = Field(None, description="M3U/M3U8 playlist URL")
    epg_url: str | None = Field(None, description="XMLTV guide URL, optionally gzipped")

    @field_validator("m3u_url", "epg_url")
    @classmethod
    def strip_url(cls, v: str | None) -> str | None:
        """Trim surrounding whitespace; blank values become None"""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def has_m3u_key(self) -> bool:
        """True when the stored object carried an m3u_url property at all"""
        return "m3u_url" in self.model_fields_set


class ProgramResponse(BaseModel):
    """Single program data"""
    channel_id: str
    start: datetime
    stop: datetime
    title: str
    desc: str | None = None
    category: str | None = None
    icon: str | None = None
    episode: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChannelResponse(BaseModel):
    """Channel with the program currently on air, if any"""
    channel_id: str
    name: str
    url: str
    tvg_id: str | None = None
    tvg_name: str | None = None
    tvg_logo: str | None = None
    group_title: str | None = None
    duration: int = -1
    current_program: ProgramResponse | None = None

    model_config = ConfigDict(from_attributes=True)
