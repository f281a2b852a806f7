import asyncio
from datetime import date, datetime, timedelta, timezone

from config.models import ScrapeResult
from scheduler import ScraperScheduler, next_daily_run, next_weekly_run

UTC = timezone.utc


class RecordingScraper:
    def __init__(self, fail=False):
        self.fail = fail
        self.configs = []

    async def scrape_menus(self, config):
        self.configs.append(config)
        if self.fail:
            raise RuntimeError("mongo down")
        return ScrapeResult(success=True)


def test_next_daily_run_later_today():
    # 03:00 in Los Angeles (PDT)
    fire = next_daily_run(datetime(2025, 6, 12, 10, 0, tzinfo=UTC), 4)

    assert fire.astimezone(UTC) == datetime(2025, 6, 12, 11, 0, tzinfo=UTC)
    assert fire.hour == 4


def test_next_daily_run_is_strictly_after():
    fire = next_daily_run(datetime(2025, 6, 12, 11, 0, tzinfo=UTC), 4)
    assert fire.astimezone(UTC) == datetime(2025, 6, 13, 11, 0, tzinfo=UTC)


def test_next_daily_run_in_winter_time():
    fire = next_daily_run(datetime(2025, 1, 10, 20, 0, tzinfo=UTC), 4)
    assert fire.astimezone(UTC) == datetime(2025, 1, 11, 12, 0, tzinfo=UTC)


def test_next_weekly_run_on_sunday():
    fire = next_weekly_run(datetime(2025, 6, 12, 10, 0, tzinfo=UTC), 0, 2)

    assert fire.astimezone(UTC) == datetime(2025, 6, 15, 9, 0, tzinfo=UTC)
    assert fire.date() == date(2025, 6, 15)


def test_next_weekly_run_skips_a_week_once_passed():
    # Sunday 03:00 local, an hour after the weekly slot
    fire = next_weekly_run(datetime(2025, 6, 15, 10, 0, tzinfo=UTC), 0, 2)
    assert fire.date() == date(2025, 6, 22)


def test_configs_use_local_date():
    # 02:00 UTC on the 13th is still the 12th in Los Angeles
    scheduler = ScraperScheduler(
        RecordingScraper(),
        restaurants=["de-neve"],
        clock=lambda: datetime(2025, 6, 13, 2, 0, tzinfo=UTC),
    )

    daily = scheduler.daily_config()
    weekly = scheduler.weekly_config()

    assert daily.dates == ["2025-06-12"]
    assert daily.mode == "update"
    assert not daily.force_refresh
    assert len(weekly.dates) == 7
    assert weekly.dates[-1] == "2025-06-18"
    assert weekly.force_refresh
    assert weekly.restaurants == ["de-neve"]


def test_run_immediately_scrapes_today():
    scraper = RecordingScraper()
    scheduler = ScraperScheduler(scraper, clock=lambda: datetime(2025, 6, 12, 18, 0, tzinfo=UTC))

    result = asyncio.run(scheduler.run_immediately())

    assert result.success
    assert scraper.configs[0].dates == ["2025-06-12"]


def test_daily_job_fires_and_errors_are_contained():
    scraper = RecordingScraper(fail=True)
    # A moment before 04:00 Los Angeles time
    now = datetime(2025, 6, 12, 11, 0, tzinfo=UTC) - timedelta(milliseconds=10)
    scheduler = ScraperScheduler(scraper, clock=lambda: now)

    async def scenario():
        scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.1)
        await scheduler.stop()

    asyncio.run(scenario())

    assert scraper.configs
    assert all(config.mode == "update" for config in scraper.configs)
    assert not scheduler.is_running


def test_start_twice_keeps_one_schedule():
    scheduler = ScraperScheduler(RecordingScraper(), clock=lambda: datetime(2025, 6, 12, 18, 0, tzinfo=UTC))

    async def scenario():
        scheduler.start()
        first = list(scheduler._tasks)
        scheduler.start()
        same = scheduler._tasks == first
        await scheduler.stop()
        return same

    assert asyncio.run(scenario())
