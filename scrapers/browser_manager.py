"""
Browser session management with retry logic and structured error handling.

This module owns the single impersonating HTTP session shared by a scrape run,
hands out lightweight pages bound to it, and provides the bounded-retry
wrapper used around every navigation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import curl_cffi
from bs4 import BeautifulSoup

from utils.exceptions import NavigationException, ScraperException
from utils.retry_handler import retry_with_backoff

# Type variable for generic return types
T = TypeVar('T')


@dataclass
class BrowserConfig:
    """Configuration for browser session behavior."""
    impersonate: str = "chrome"  # curl_cffi client fingerprint
    user_agent: Optional[str] = None
    accept_language: str = "en-US,en;q=0.9"
    timeout: int = 30  # Default navigation timeout in seconds
    max_retries: int = 3
    retry_delay: float = 2.0  # Fixed delay between attempts


@dataclass
class NavigationStats:
    """Statistics tracking for page navigations."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_retries: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def record_success(self) -> None:
        """Record a successful navigation."""
        self.total_requests += 1
        self.successful_requests += 1

    def record_failure(self) -> None:
        """Record a failed navigation."""
        self.total_requests += 1
        self.failed_requests += 1

    def record_retry(self) -> None:
        """Record a retry attempt."""
        self.total_retries += 1

    def get_success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.successful_requests / self.total_requests) * 100

    def get_duration(self) -> Optional[timedelta]:
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None

    def __str__(self) -> str:
        """Generate summary statistics string."""
        duration = self.get_duration()
        duration_str = str(duration).split('.')[0] if duration else "N/A"
        return (
            f"📊 Browser Statistics:\n"
            f"  Total Navigations: {self.total_requests}\n"
            f"  ✅ Successful: {self.successful_requests}\n"
            f"  ❌ Failed: {self.failed_requests}\n"
            f"  🔄 Retries: {self.total_retries}\n"
            f"  📈 Success Rate: {self.get_success_rate():.2f}%\n"
            f"  ⏱️  Duration: {duration_str}"
        )


class BrowserPage:
    """
    A navigable page bound to the shared browser session.

    ``goto`` returns the rendered HTML so callers sharing one page
    concurrently never read each other's content.
    """

    def __init__(self, manager: 'BrowserManager', page_id: int):
        self._manager = manager
        self.page_id = page_id
        self.url: Optional[str] = None
        self._html: str = ""
        self._document: Optional[BeautifulSoup] = None
        self.closed = False

    async def goto(self, url: str, timeout: Optional[float] = None) -> str:
        """
        Navigate to ``url`` and return its HTML.

        Raises:
            NavigationException: On transport errors, timeouts or HTTP errors
        """
        if self.closed:
            raise NavigationException(f"Page {self.page_id} is closed")
        html = await self._manager._fetch(url, timeout)
        self.url = url
        self._html = html
        self._document = None
        return html

    def content(self) -> str:
        """HTML of the last successful navigation."""
        return self._html

    def document(self) -> BeautifulSoup:
        """Parsed tree of the last successful navigation."""
        if self._document is None:
            self._document = BeautifulSoup(self._html, 'html.parser')
        return self._document

    def has_selector(self, selector: str) -> bool:
        return self.document().select_one(selector) is not None

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._manager._release(self)


class BrowserManager:
    """
    Owns one impersonating client session per scrape run.

    Provides:
    - Lazy session start with Chrome impersonation (TLS/HTTP2 fingerprint)
    - Document-only navigation (images, styles, fonts and media never load)
    - Bounded retry with a fixed backoff
    - Statistics tracking
    - Idempotent shutdown, also via ``async with``
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        session_factory: Optional[Callable[[], Any]] = None
    ):
        """
        Initialize browser manager.

        Args:
            config: Browser configuration object
            session_factory: Builds the underlying async session (injectable for tests)
        """
        self.config = config or BrowserConfig()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._session_factory = session_factory or self._default_session
        self.session: Optional[Any] = None
        self.pages: List[BrowserPage] = []
        self._page_counter = 0
        self.stats = NavigationStats()

    def _default_session(self) -> Any:
        headers = {
            'Accept': 'text/html,application/xhtml+xml;q=0.9',
            'Accept-Language': self.config.accept_language,
        }
        if self.config.user_agent:
            headers['User-Agent'] = self.config.user_agent
        return curl_cffi.AsyncSession(
            impersonate=self.config.impersonate,
            headers=headers,
            timeout=self.config.timeout,
        )

    async def initialize(self) -> Any:
        """Start the session if it is not running yet."""
        if self.session is not None:
            return self.session

        self.logger.info("🚀 Initializing browser session...")
        try:
            self.session = self._session_factory()
        except Exception as e:
            self.logger.error(f"❌ Failed to initialize session: {e}")
            raise ScraperException(f"Session initialization failed: {e}")

        self.stats = NavigationStats(start_time=datetime.now(timezone.utc))
        self.logger.info(f"✅ Session initialized with {self.config.impersonate} impersonation")
        return self.session

    async def acquire_page(self) -> BrowserPage:
        """Return a ready-to-navigate page on the shared session."""
        await self.initialize()
        self._page_counter += 1
        page = BrowserPage(self, self._page_counter)
        self.pages.append(page)
        return page

    async def _fetch(self, url: str, timeout: Optional[float]) -> str:
        if self.session is None:
            raise NavigationException("Browser session is not running")

        self.logger.debug(f"📡 Navigating: {url}")
        try:
            response = await self.session.get(url, timeout=timeout or self.config.timeout)
        except Exception as e:
            self.stats.record_failure()
            raise NavigationException(f"Failed to load {url}: {e}") from e

        if response.status_code >= 400:
            self.stats.record_failure()
            raise NavigationException(f"Failed to load {url}: HTTP {response.status_code}")

        self.stats.record_success()
        return response.text

    def _release(self, page: BrowserPage) -> None:
        if page in self.pages:
            self.pages.remove(page)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None
    ) -> T:
        """
        Run ``operation`` with a fixed backoff between failed attempts.

        Args:
            operation: Zero-argument callable returning an awaitable
            max_attempts: Maximum attempts (overrides config)

        Returns:
            Result of the operation

        Raises:
            The final error once all attempts fail
        """
        max_attempts = max_attempts or self.config.max_retries
        failures = 0

        async def attempt() -> T:
            nonlocal failures
            if failures:
                self.stats.record_retry()
            try:
                return await operation()
            except Exception:
                failures += 1
                raise

        return await retry_with_backoff(
            attempt,
            max_attempts=max_attempts,
            base_delay=self.config.retry_delay,
            description="navigation",
        )

    async def shutdown(self) -> None:
        """Tear down the session; safe to call more than once."""
        if self.session is None:
            return

        for page in list(self.pages):
            await page.close()

        session, self.session = self.session, None
        try:
            await session.close()
        finally:
            self.stats.end_time = datetime.now(timezone.utc)
            self.logger.info("🔌 Browser session closed")
            self.logger.info(f"\n{self.stats}")

    async def __aenter__(self) -> 'BrowserManager':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        if exc_type is not None:
            self.logger.error(f"❌ Operation failed with error: {exc_val}")
        return False  # Don't suppress exceptions


def with_error_handling(default_return=None):
    """
    Decorator for adding error handling to extraction methods.

    Args:
        default_return: Value to return if an error occurs
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"❌ Error in {func.__name__}: {e}", exc_info=True)
                return default_return
        return wrapper
    return decorator
