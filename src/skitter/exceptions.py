"""Custom exceptions for skitter."""


class SkitterError(Exception):
    """Base exception for all skitter errors."""


class ConfigError(SkitterError):
    """Raised when configuration is invalid or cannot be loaded."""


class UnknownExtensionError(SkitterError, TypeError):
    """Raised by Spider.use() for a value that is neither an extension nor a middleware.

    This is a setup-time fault and is never routed through the hook chains.
    """


class RequestError(SkitterError):
    """Failure attached to a request before any network activity (e.g. malformed URL)."""


class HTTPStatusError(SkitterError):
    """HTTP status error for non-2xx responses."""

    def __init__(self, status_code: int, url: str) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code} for {url}")
