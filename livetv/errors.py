"""
Exception hierarchy for the Live TV ingestion engine.

Fetch and parse errors are recovered per user or per URL by the sync pipeline;
StorageError is the only kind that aborts a whole sync cycle.
"""


class LiveTVError(Exception):
    """Base class for all Live TV engine errors"""
    pass


class FetchError(LiveTVError):
    """Raised when an upstream resource cannot be retrieved"""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Transport-level failure (DNS, connection refused, reset, ...)"""
    pass


class UpstreamError(FetchError):
    """Upstream answered with a non-2xx status"""

    def __init__(self, url: str, status_code: int, reason: str = ""):
        message = f"HTTP {status_code}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(url, message)
        self.status_code = status_code


class UpstreamTimeoutError(FetchError):
    """Upstream did not answer within the configured deadline"""
    pass


class ParseError(LiveTVError):
    """Raised when an M3U or XMLTV payload cannot be parsed"""
    pass


class ConfigCorruptError(LiveTVError):
    """A user's liveTV object exists but is unusable"""
    pass


class StorageError(LiveTVError):
    """Bulk persistence failed; the whole sync cycle is aborted"""
    pass
