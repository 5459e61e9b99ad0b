"""
Live TV cache

Keeps the latest raw M3U and uncompressed EPG XML per user on disk so they can
be re-served without hitting the upstream provider again.

Layout: <cache_root>/liveTV/<username>/{live.m3u, epg.xml, epg.tmp}
"""
import hashlib
import logging
from collections.abc import AsyncIterable
from pathlib import Path

import aiofiles
import aiofiles.os

from livetv.utils.file_operations import cleanup_temp_file


logger = logging.getLogger(__name__)

LIVE_TV_DIR = "liveTV"
SHARED_DIR = ".shared"
M3U_FILENAME = "live.m3u"
EPG_FILENAME = "epg.xml"
EPG_TEMP_FILENAME = "epg.tmp"
COPY_CHUNK_SIZE = 1024 * 1024


class LiveTVCache:
    """Per-user on-disk cache for raw playlist and guide files."""

    def __init__(self, cache_root: str | Path):
        self.cache_root = Path(cache_root)
        self.base_dir = self.cache_root / LIVE_TV_DIR

    def user_dir(self, username: str) -> Path:
        """Cache directory for a user; rejects names that would escape it."""
        if (
            not username
            or username in (".", "..", SHARED_DIR)
            or "/" in username
            or "\\" in username
            or "\x00" in username
        ):
            raise ValueError(f"Invalid username for cache path: {username!r}")
        return self.base_dir / username

    def m3u_path(self, username: str) -> Path:
        return self.user_dir(username) / M3U_FILENAME

    def epg_file(self, username: str) -> Path:
        return self.user_dir(username) / EPG_FILENAME

    async def ensure_user_dir(self, username: str) -> Path:
        user_dir = self.user_dir(username)
        await aiofiles.os.makedirs(user_dir, exist_ok=True)
        return user_dir

    async def write_m3u(self, username: str, content: bytes) -> Path:
        """Write the raw playlist bytes to live.m3u."""
        user_dir = await self.ensure_user_dir(username)
        path = user_dir / M3U_FILENAME
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
        logger.debug("Cached M3U for user %s (%s bytes)", username, len(content))
        return path

    async def write_epg(self, username: str, content: bytes) -> Path:
        """Write an uncompressed EPG body to epg.xml."""
        user_dir = await self.ensure_user_dir(username)
        path = user_dir / EPG_FILENAME
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
        logger.debug("Cached EPG for user %s (%s bytes)", username, len(content))
        return path

    async def copy_epg_from(self, username: str, source_path: Path) -> Path:
        """Copy a shared, already-decompressed EPG into the user's cache atomically."""
        user_dir = await self.ensure_user_dir(username)
        return await self._write_atomic(
            _read_chunks(source_path),
            user_dir / EPG_TEMP_FILENAME,
            user_dir / EPG_FILENAME,
        )

    async def spool_shared_epg(self, url: str, chunks: AsyncIterable[bytes]) -> Path:
        """
        Write a decompressed EPG stream once so several users can copy it.

        The file name is derived from the URL, so concurrent syncs of different
        URLs never collide.
        """
        shared_dir = self.base_dir / SHARED_DIR
        await aiofiles.os.makedirs(shared_dir, exist_ok=True)
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
        return await self._write_atomic(
            chunks,
            shared_dir / f"{digest}.tmp",
            shared_dir / f"{digest}.xml",
        )

    async def discard_shared(self, path: Path) -> None:
        if not await aiofiles.os.path.exists(path):
            return
        cleanup_temp_file(path)

    async def _write_atomic(
        self,
        chunks: AsyncIterable[bytes],
        temp_path: Path,
        final_path: Path,
    ) -> Path:
        written = 0
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    written += len(chunk)
            await aiofiles.os.replace(temp_path, final_path)
        except BaseException:
            cleanup_temp_file(temp_path)
            raise
        logger.debug("Wrote %s bytes to %s", written, final_path)
        return final_path

    async def read_m3u(self, username: str) -> str | None:
        """Cached playlist text, or None when nothing has been cached yet."""
        path = self.m3u_path(username)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
            return await f.read()

    async def epg_path(self, username: str) -> Path | None:
        """Path of the cached EPG XML, or None when absent."""
        path = self.epg_file(username)
        if await aiofiles.os.path.exists(path):
            return path
        return None


async def _read_chunks(path: Path, chunk_size: int = COPY_CHUNK_SIZE):
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk
