"""
Exception hierarchy shared by the browser session and the document store.
"""


class ScraperException(Exception):
    """Base exception for scraper errors."""
    pass


class NavigationException(ScraperException):
    """Exception for navigation/network errors reaching the source site."""
    pass


class StorageException(ScraperException):
    """Exception for durable store failures."""
    pass
