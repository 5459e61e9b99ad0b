"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging without excessive decorative separators.
"""
import logging
from datetime import datetime, timezone


def log_section_start(logger: logging.Logger, section_name: str) -> None:
    """
    Log the start of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being started
    """
    logger.info(f"Starting: {section_name}")


def log_section_end(logger: logging.Logger, section_name: str) -> None:
    """
    Log the end of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being ended
    """
    logger.info(f"Completed: {section_name}")


def log_sync_start(logger: logging.Logger, user_count: int) -> None:
    """Log Live TV sync operation start."""
    logger.info(
        f"Live TV sync started at {datetime.now(timezone.utc).isoformat()} "
        f"for {format_number(user_count)} user(s)"
    )


def log_sync_end(logger: logging.Logger) -> None:
    """Log Live TV sync operation end."""
    logger.info(f"Live TV sync completed at {datetime.now(timezone.utc).isoformat()}")


def log_storage_stats(
    logger: logging.Logger,
    usernames_count: int,
    total_channels: int,
    total_programs: int
) -> None:
    """
    Log storage statistics.

    Args:
        logger: Logger instance
        usernames_count: Number of users whose records are replaced
        total_channels: Total channels to store
        total_programs: Total programs to store
    """
    logger.info(
        f"Storing data for {format_number(usernames_count)} user(s): "
        f"{format_number(total_channels)} channels, {format_number(total_programs)} programs"
    )


def format_number(value: int) -> str:
    """Render an integer with thousands separators."""
    return f"{value:,}"


def format_file_size(size_bytes: int) -> str:
    """Render a byte count as a human readable size."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.2f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.2f} GB"


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest.split("/", 1)[0]:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url
