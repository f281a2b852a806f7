"""
Recurring scrape schedule.

- Daily at 04:00 dining-hall time: today's menus, reusing weekly templates
- Sundays at 02:00 dining-hall time: the next seven days, forced refresh
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from config.config import DEFAULT_RESTAURANTS
from config.models import ScrapeConfig, ScrapeResult, day_of_week_for

DAILY_HOUR = 4
WEEKLY_DAY = 0  # Sunday
WEEKLY_HOUR = 2


def next_daily_run(after: datetime, hour: int, minute: int = 0, tz: str = "America/Los_Angeles") -> datetime:
    """First ``hour:minute`` local time strictly after ``after``."""
    zone = ZoneInfo(tz)
    local = after.astimezone(zone)
    candidate = datetime.combine(local.date(), time(hour, minute), tzinfo=zone)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), time(hour, minute), tzinfo=zone)
    return candidate


def next_weekly_run(
    after: datetime,
    day_of_week: int,
    hour: int,
    minute: int = 0,
    tz: str = "America/Los_Angeles"
) -> datetime:
    """First ``hour:minute`` on ``day_of_week`` (0 = Sunday) strictly after ``after``."""
    zone = ZoneInfo(tz)
    local = after.astimezone(zone)
    days_ahead = (day_of_week - day_of_week_for(local.date())) % 7
    run_day = local.date() + timedelta(days=days_ahead)
    candidate = datetime.combine(run_day, time(hour, minute), tzinfo=zone)
    if candidate <= local:
        candidate = datetime.combine(run_day + timedelta(days=7), time(hour, minute), tzinfo=zone)
    return candidate


class ScraperScheduler:
    """Runs the daily update and weekly refresh against a DiningMenuScraper."""

    def __init__(
        self,
        scraper,
        timezone_name: str = "America/Los_Angeles",
        restaurants: Sequence[str] = DEFAULT_RESTAURANTS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            scraper: Object exposing ``async scrape_menus(ScrapeConfig)``
            timezone_name: Timezone the schedule is expressed in
            restaurants: Restaurants covered by scheduled runs
            clock: Current-time source (injectable for tests)
        """
        self.scraper = scraper
        self.timezone_name = timezone_name
        self.restaurants = list(restaurants)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: List[asyncio.Task] = []
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def local_today(self) -> date:
        return self._clock().astimezone(ZoneInfo(self.timezone_name)).date()

    def daily_config(self, today: Optional[date] = None) -> ScrapeConfig:
        today = today or self.local_today()
        return ScrapeConfig(
            restaurants=self.restaurants,
            dates=[today.isoformat()],
            mode="update",
        )

    def weekly_config(self, today: Optional[date] = None) -> ScrapeConfig:
        today = today or self.local_today()
        return ScrapeConfig(
            restaurants=self.restaurants,
            dates=[(today + timedelta(days=i)).isoformat() for i in range(7)],
            mode="full",
            force_refresh=True,
        )

    def next_daily(self) -> datetime:
        return next_daily_run(self._clock(), DAILY_HOUR, tz=self.timezone_name)

    def next_weekly(self) -> datetime:
        return next_weekly_run(self._clock(), WEEKLY_DAY, WEEKLY_HOUR, tz=self.timezone_name)

    async def _run_daily(self) -> None:
        self.logger.info("🌅 Starting daily menu scrape...")
        try:
            result = await self.scraper.scrape_menus(self.daily_config())
            self.logger.info(f"✅ Daily scrape completed: {result.items_saved} items saved")
        except Exception as e:
            self.logger.error(f"❌ Daily scrape failed: {e}", exc_info=True)

    async def _run_weekly(self) -> None:
        self.logger.info("🔄 Starting weekly full refresh...")
        try:
            result = await self.scraper.scrape_menus(self.weekly_config())
            self.logger.info(f"✅ Weekly refresh completed: {result.items_saved} items saved")
        except Exception as e:
            self.logger.error(f"❌ Weekly refresh failed: {e}", exc_info=True)

    async def _loop(self, next_fire: Callable[[], datetime], job: Callable[[], Awaitable[None]]) -> None:
        while True:
            fire_at = next_fire()
            delay = (fire_at - self._clock()).total_seconds()
            self.logger.debug(f"⏰ Next run at {fire_at.isoformat()} (in {delay:.0f}s)")
            await asyncio.sleep(max(delay, 0))
            await job()

    def start(self) -> None:
        """Schedule both jobs on the running event loop."""
        if self.is_running:
            return
        self._tasks = [
            asyncio.create_task(self._loop(self.next_daily, self._run_daily), name="daily-scrape"),
            asyncio.create_task(self._loop(self.next_weekly, self._run_weekly), name="weekly-refresh"),
        ]
        self.logger.info("📅 Scraping schedule initialized")
        self.logger.info(f"  - Daily scrape: {DAILY_HOUR:02d}:00 {self.timezone_name}")
        self.logger.info(f"  - Weekly refresh: Sunday {WEEKLY_HOUR:02d}:00 {self.timezone_name}")

    async def stop(self) -> None:
        """Cancel both jobs."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("🛑 Scraping schedule stopped")

    async def run_immediately(self) -> ScrapeResult:
        """Run the daily scrape now."""
        self.logger.info("🚀 Running immediate scrape...")
        return await self.scraper.scrape_menus(self.daily_config())
