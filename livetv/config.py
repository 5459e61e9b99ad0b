from pathlib import Path
import logging

from croniter import croniter
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    cache_dir: str = "/app/cache"  # CACHE_DIR
    database_path: str = "./data/livetv.db"
    livetv_sync_cron: str = "0 */6 * * *"  # Every 6 hours
    livetv_sync_misfire_grace_sec: int = 3600
    fetch_timeout_sec: float = 120.0
    fetch_max_concurrency: int = 16
    epg_parse_timeout_sec: int = 1800  # 0 disables timeout
    channels_insert_chunk_size: int = 1000
    programs_insert_chunk_size: int = 5000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, value: str) -> str:
        """Reject an empty cache root."""
        if not value or not value.strip():
            raise ValueError("CACHE_DIR must not be empty")
        return value.strip()

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("livetv_sync_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @field_validator("livetv_sync_misfire_grace_sec", "epg_parse_timeout_sec")
    @classmethod
    def validate_non_negative(cls, value: int, info) -> int:
        """Ensure grace periods and timeouts are not negative."""
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("fetch_timeout_sec")
    @classmethod
    def validate_fetch_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("fetch_timeout_sec must be > 0")
        return value

    @field_validator("fetch_max_concurrency", "channels_insert_chunk_size")
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure concurrency and chunk sizes are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("programs_insert_chunk_size")
    @classmethod
    def validate_programs_chunk(cls, value: int) -> int:
        """Program inserts are batched between 1,000 and 10,000 rows per call."""
        if not 1000 <= value <= 10000:
            raise ValueError("programs_insert_chunk_size must be between 1000 and 10000")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Cache Dir: %s", self.cache_dir)
        logger.info("  Database: %s", self.database_path)
        logger.info("  Sync Schedule: %s", self.livetv_sync_cron)
        logger.info("  Sync Misfire Grace: %ss", self.livetv_sync_misfire_grace_sec)
        logger.info("  Fetch Timeout: %ss", self.fetch_timeout_sec)
        logger.info("  Fetch Concurrency: %s", self.fetch_max_concurrency)
        logger.info(
            "  EPG Parse Timeout: %s",
            f"{self.epg_parse_timeout_sec}s" if self.epg_parse_timeout_sec else "disabled",
        )
        logger.info("  Channel Insert Batch Size: %s", self.channels_insert_chunk_size)
        logger.info("  Program Insert Batch Size: %s", self.programs_insert_chunk_size)


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
