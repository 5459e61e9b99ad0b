"""
Services package for the Live TV service

This package contains the ingestion engine and the read-side query helpers.
"""
from livetv.services.livetv_query_service import (
    build_m3u_playlist,
    get_channel,
    get_channel_programs,
    get_epg_path,
    get_user_channels,
)
from livetv.services.scheduler_service import livetv_scheduler
from livetv.services.sync_service import sync_all_users

__all__ = [
    'build_m3u_playlist',
    'get_channel',
    'get_channel_programs',
    'get_epg_path',
    'get_user_channels',
    'livetv_scheduler',
    'sync_all_users',
]
