"""Exception types shared across the harvester.

Per-page and per-category failures (``WikiApiError``, ``PersistenceError``) are
contained by the crawl loop; ``ConfigurationError`` is fatal at startup.
"""


class LoreKeeperError(Exception):
    """Base class for all harvester errors."""


class WikiApiError(LoreKeeperError):
    """A content-API call failed: bad status, malformed JSON or missing fields."""

    def __init__(self, message: str, *, url: str = None, status_code: int = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PersistenceError(LoreKeeperError):
    """A store read or write failed."""


class ConfigurationError(LoreKeeperError):
    """Invalid or conflicting settings; raised before any crawl work starts."""
