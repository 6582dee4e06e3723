"""Exceptions raised by the element detection core."""

from typing import Optional


class ExplorerError(Exception):
    """Base class for browser explorer errors."""


class ObserverUnavailableError(ExplorerError):
    """Raised when an AI observation session cannot be started."""
    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class PageUnavailableError(ExplorerError):
    """Raised when the page itself can no longer be queried.

    Covers destroyed execution contexts (navigation mid-detection) and
    closed pages, targets or browsers. No partial detection result is
    returned when this is raised.
    """
    def __init__(self, message: str, url: Optional[str] = None):
        self.message = message
        self.url = url
        super().__init__(message)


class ObservationParseError(ExplorerError):
    """Raised when a model answer cannot be turned into observations."""
    def __init__(self, message: str, raw_response: Optional[str] = None):
        self.message = message
        self.raw_response = raw_response
        super().__init__(message)


# Fragments of Playwright error messages that mean the page is gone
PAGE_FATAL_MARKERS = [
    'execution context was destroyed',
    'target closed',
    'target page, context or browser has been closed',
    'page has been closed',
    'browser has been closed',
    'frame was detached',
]


def is_page_fatal(error: BaseException) -> bool:
    """Check whether an error means the page can no longer be queried."""
    if isinstance(error, PageUnavailableError):
        return True
    error_str = str(error).lower()
    return any(marker in error_str for marker in PAGE_FATAL_MARKERS)


def raise_if_page_fatal(error: BaseException, url: Optional[str] = None) -> None:
    """Re-raise page-level failures as PageUnavailableError, ignore the rest."""
    if isinstance(error, PageUnavailableError):
        raise error
    if is_page_fatal(error):
        raise PageUnavailableError(f"Page unavailable: {error}", url=url) from error
