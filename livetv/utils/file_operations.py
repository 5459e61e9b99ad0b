"""
File and byte-stream utilities

Gzip decompression of streamed upstream bodies and cleanup of temporary
files left behind by interrupted cache writes.
"""
import logging
import zlib
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


async def gunzip_chunks(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """
    Decompress a gzip byte stream chunk by chunk

    Concatenated gzip members are supported. When the stream does not start
    with the gzip magic number (the transport already decoded it) the bytes
    are passed through unchanged.

    Raises:
        zlib.error: If the stream is gzip but corrupt
    """
    decompressor = None
    passthrough = False
    head = b""

    async for chunk in chunks:
        if not chunk:
            continue

        if decompressor is None and not passthrough:
            head += chunk
            if len(head) < len(GZIP_MAGIC):
                continue
            chunk, head = head, b""
            if chunk.startswith(GZIP_MAGIC):
                decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
            else:
                logger.debug("Body is not gzip-framed, passing it through unchanged")
                passthrough = True

        if passthrough:
            yield chunk
            continue

        while chunk:
            data = decompressor.decompress(chunk)
            if data:
                yield data
            if not decompressor.eof:
                break
            # next gzip member, if any
            chunk = decompressor.unused_data
            decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

    if head:
        # body shorter than the magic number
        yield head
    elif decompressor is not None:
        tail = decompressor.flush()
        if tail:
            yield tail


def cleanup_temp_file(file_path: Path) -> bool:
    """
    Safely delete a temporary file

    Args:
        file_path: Path to file to delete

    Returns:
        True if deleted successfully, False otherwise
    """
    if not file_path or not file_path.exists():
        return False

    try:
        file_path.unlink()
        logger.debug("Removed temporary file: %s", file_path)
        return True
    except OSError as e:
        logger.warning("Failed to delete temporary file %s: %s", file_path, e)
        return False
