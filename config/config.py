"""
Configuration management for the scraper.
"""

from dataclasses import dataclass
from typing import Optional
import os


# Restaurant id -> path segment used by menu.dining.ucla.edu/Menus/<Name>/<date>
RESTAURANT_DISPLAY_NAMES = {
    'de-neve': 'DeNeve',
    'bruin-plate': 'BruinPlate',
    'epicuria-covel': 'Epicuria',
    'epicuria': 'Epicuria',
    'bruin-cafe': 'BruinCafe',
    'cafe-1919': 'Cafe1919',
    'rendezvous': 'Rendezvous',
    'the-study': 'TheStudy',
    'feast': 'FEAST',
    'spice-kitchen': 'SpiceKitchen',
}

RESIDENTIAL_RESTAURANTS = ('bruin-plate', 'de-neve', 'epicuria-covel', 'epicuria')

DEFAULT_RESTAURANTS = ['de-neve', 'bruin-plate', 'epicuria-covel']
ALL_RESTAURANTS = ['de-neve', 'bruin-plate', 'epicuria-covel', 'feast', 'rendezvous', 'the-study']

# Recipe detail pages, in the order they are tried
RECIPE_URL_TEMPLATES = (
    "https://menu.dining.ucla.edu/Recipes/{recipe_id}/1",
    "https://menu.dining.ucla.edu/Recipes/{recipe_id}",
    "https://dining.ucla.edu/menu-item/?recipe={recipe_id}",
)

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class ScraperSettings:
    """
    Global settings for the scraping pipeline.
    """
    # Source site
    menu_base_url: str = "https://menu.dining.ucla.edu/Menus"

    # Network settings
    max_retries: int = 3
    retry_delay: float = 2.0  # Fixed backoff between navigation attempts
    timeout: int = 30  # Menu page navigation timeout (seconds)
    recipe_timeout: int = 15  # Recipe detail navigation timeout (seconds)
    impersonate: str = "chrome"  # For curl_cffi impersonation
    user_agent: str = CHROME_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"

    # Task queue
    concurrency: int = 2
    rate_limit_delay: float = 3.0  # Minimum interval between recipe dispatches
    interval_cap: int = 1

    # Storage
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "nutri_bruin"
    redis_url: str = "redis://localhost:6379/0"
    recipe_cache_ttl: int = 86400  # 24 hours

    # Scheduling
    timezone: str = "America/Los_Angeles"

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    show_progress: bool = True

    @classmethod
    def from_env(cls) -> 'ScraperSettings':
        """
        Load configuration from environment variables.

        Environment variables:
        - MONGODB_CONNECTION_STRING: MongoDB connection string
        - MONGODB_DATABASE: Database name
        - REDIS_URL: Redis connection URL
        - SCRAPER_MENU_BASE_URL: Base URL for restaurant menu pages
        - SCRAPER_MAX_RETRIES: Maximum navigation attempts
        - SCRAPER_RETRY_DELAY: Delay between navigation attempts in seconds
        - SCRAPER_TIMEOUT: Menu page timeout in seconds
        - SCRAPER_RECIPE_TIMEOUT: Recipe page timeout in seconds
        - SCRAPER_CONCURRENCY: Maximum recipe fetches in flight
        - SCRAPER_RATE_LIMIT: Minimum seconds between recipe fetch dispatches
        - SCRAPER_TIMEZONE: Dining hall timezone
        - SCRAPER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        - SCRAPER_LOG_DIR: Directory for log files (empty disables file logging)

        Returns:
            ScraperSettings instance
        """
        log_dir = os.getenv('SCRAPER_LOG_DIR', cls.log_dir)

        return cls(
            menu_base_url=os.getenv('SCRAPER_MENU_BASE_URL', cls.menu_base_url),
            max_retries=int(os.getenv('SCRAPER_MAX_RETRIES', str(cls.max_retries))),
            retry_delay=float(os.getenv('SCRAPER_RETRY_DELAY', str(cls.retry_delay))),
            timeout=int(os.getenv('SCRAPER_TIMEOUT', str(cls.timeout))),
            recipe_timeout=int(os.getenv('SCRAPER_RECIPE_TIMEOUT', str(cls.recipe_timeout))),
            concurrency=int(os.getenv('SCRAPER_CONCURRENCY', str(cls.concurrency))),
            rate_limit_delay=float(os.getenv('SCRAPER_RATE_LIMIT', str(cls.rate_limit_delay))),
            mongodb_uri=os.getenv('MONGODB_CONNECTION_STRING', cls.mongodb_uri),
            mongodb_database=os.getenv('MONGODB_DATABASE', cls.mongodb_database),
            redis_url=os.getenv('REDIS_URL', cls.redis_url),
            timezone=os.getenv('SCRAPER_TIMEZONE', cls.timezone),
            log_level=os.getenv('SCRAPER_LOG_LEVEL', cls.log_level).upper(),
            log_dir=log_dir or None,
        )

    def menu_url(self, restaurant: str, date_str: str) -> str:
        """URL of one restaurant's menu page for an ISO date."""
        display_name = RESTAURANT_DISPLAY_NAMES.get(restaurant, restaurant)
        return f"{self.menu_base_url.rstrip('/')}/{display_name}/{date_str}"

    def to_browser_config(self):
        """
        Convert to BrowserConfig for use with the browser manager.

        Returns:
            BrowserConfig instance
        """
        from scrapers.browser_manager import BrowserConfig

        return BrowserConfig(
            impersonate=self.impersonate,
            user_agent=self.user_agent,
            accept_language=self.accept_language,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )

# Default configuration instance
DEFAULT_CONFIG = ScraperSettings()
