"""Exception taxonomy for the feed pipeline.

Every error carries a short ``code`` that ends up in run reports and in the
error report file. Per-task errors are contained by the scheduler; only
``NoWorkUnits``, ``FeedWriteError`` and ``SettingsError`` stop a run.
"""
from __future__ import annotations


class FeedError(Exception):
    """Base class for all pipeline errors."""

    code = "feed_error"


class ResolutionError(FeedError):
    code = "resolution_error"


class ProductIdNotFound(ResolutionError):
    """No product identifier could be derived from a URL."""

    code = "not_found"

    def __init__(self, url: str) -> None:
        super().__init__(f"no product id in {url}")
        self.url = url


class ExtractionError(FeedError):
    code = "extraction_error"


class InsufficientData(ExtractionError):
    """Title or primary image is still empty after every strategy."""

    code = "insufficient_data"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"missing required fields: {', '.join(missing)}")
        self.missing = missing


class NavigationError(FeedError):
    code = "navigation_error"


class NavigationTimeout(NavigationError):
    code = "navigation_timeout"


class DecoyDetected(FeedError):
    """A URL or title matched the decoy / off-domain filter."""

    code = "decoy"


class ArchiveReadError(FeedError):
    code = "archive_read"


class FeedWriteError(FeedError):
    code = "feed_write"


class NoWorkUnits(FeedError):
    code = "no_input"


class SettingsError(FeedError):
    code = "settings"


def classify(exc: BaseException) -> str:
    """Short classification string for a task failure."""
    if isinstance(exc, FeedError):
        return exc.code
    return f"unexpected:{type(exc).__name__}"
