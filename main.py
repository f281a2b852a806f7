"""
Main orchestrator for the Dining Menu Scraper.

This module coordinates one scrape run over (restaurant, date) units:
1. Replay the weekly template when one exists for that weekday
2. Otherwise load the menu page and parse its structure
3. Resolve every recipe's nutrition through the cache tiers (fetching misses)
4. Upsert dated menu items and refresh the weekly template
"""

import argparse
import asyncio
import logging
import sys
import time
from datetime import date, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from config.config import ALL_RESTAURANTS, DEFAULT_CONFIG, DEFAULT_RESTAURANTS, ScraperSettings
from config.models import (
    MenuItem,
    RecipeMaster,
    ScrapeConfig,
    ScrapeError,
    ScrapeResult,
    ScrapeStats,
    ScraperStatsSnapshot,
    UnitResult,
    WeeklyTemplate,
    date_to_datetime,
    day_of_week_for,
)
from scheduler import ScraperScheduler
from scrapers.browser_manager import BrowserManager, BrowserPage
from scrapers.menu_parser import MenuStructureParser
from scrapers.nutrition_parser import NutritionFactParser
from services.data_transformer import DataTransformer
from services.job_tracker import JobTracker
from services.recipe_cache import RecipeCacheManager
from services.weekly_templates import WeeklyTemplateStore
from utils.mongodb_store import MENU_ITEMS, MongoDBStore
from utils.redis_cache import RedisCache
from utils.task_queue import ScrapeQueue


# Configure logging
def setup_logging(settings: ScraperSettings) -> Optional[Path]:
    """
    Configure logging for the application.

    Args:
        settings: Scraper settings containing log configuration

    Returns:
        Path of the log file, or None when file logging is disabled
    """
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.log_level, logging.INFO))
    console_handler.setFormatter(logging.Formatter(log_format))
    handlers: List[logging.Handler] = [console_handler]

    log_file = None
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"scraper_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        # File handler
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(
        level=logging.DEBUG,
        format=log_format,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    # Set specific logger levels
    logging.getLogger('pymongo').setLevel(logging.WARNING)
    logging.getLogger('curl_cffi').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    if log_file:
        logging.info(f"Logging to: {log_file}")
    return log_file


def menu_cache_key(restaurant: str, date_str: str) -> str:
    return f"menu:{restaurant}:{date_str}"


class DiningMenuScraper:
    """
    Main orchestrator for scrape runs.

    One run processes its (restaurant, date) units one after another; inside
    a unit, recipe lookups go through the rate-limited queue. A unit failure
    is recorded and the run moves on.
    """

    def __init__(
        self,
        settings: Optional[ScraperSettings] = None,
        store: Optional[Any] = None,
        cache: Optional[Any] = None,
        browser_manager: Optional[BrowserManager] = None,
        queue: Optional[ScrapeQueue] = None
    ):
        """
        Initialize the scraper pipeline.

        Args:
            settings: Configuration settings (uses defaults if not provided)
            store: Durable document store (MongoDBStore by default)
            cache: Distributed cache (RedisCache by default)
            browser_manager: Browser session manager
            queue: Task queue for recipe resolution
        """
        self.settings = settings or DEFAULT_CONFIG
        self.logger = logging.getLogger(self.__class__.__name__)

        # Initialize components
        self.store = store if store is not None else MongoDBStore(
            self.settings.mongodb_uri,
            self.settings.mongodb_database,
            show_progress=self.settings.show_progress
        )
        self.cache = cache if cache is not None else RedisCache(self.settings.redis_url)
        self.browser_manager = browser_manager or BrowserManager(self.settings.to_browser_config())
        self.queue = queue or ScrapeQueue(
            concurrency=self.settings.concurrency,
            interval=self.settings.rate_limit_delay,
            interval_cap=self.settings.interval_cap
        )

        self.menu_parser = MenuStructureParser()
        self.transformer = DataTransformer()
        self.recipes = RecipeCacheManager(
            self.store,
            self.cache,
            parser=NutritionFactParser(timeout=self.settings.recipe_timeout),
            transformer=self.transformer,
            ttl=self.settings.recipe_cache_ttl
        )
        self.templates = WeeklyTemplateStore(self.store)

        # Runs share the browser session, so they never overlap
        self._run_lock = asyncio.Lock()

    def today(self) -> date:
        """Current date at the dining halls."""
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    async def scrape_menus(self, config: Optional[ScrapeConfig] = None) -> ScrapeResult:
        """
        Execute one scrape run.

        Args:
            config: Restaurants, dates and refresh mode (defaults: the three
                residential halls, today, update)

        Returns:
            ScrapeResult with totals, per-unit statistics and errors
        """
        config = config or ScrapeConfig()
        start_time = time.monotonic()
        errors: List[ScrapeError] = []
        units: List[UnitResult] = []
        stats = ScrapeStats()
        items_scraped = 0
        items_saved = 0

        async with self._run_lock:
            try:
                restaurants = config.restaurants or list(DEFAULT_RESTAURANTS)
                dates = config.dates or [self.today().isoformat()]

                self.logger.info("=" * 70)
                self.logger.info(
                    f"🚀 Starting scrape for {len(restaurants)} restaurants, {len(dates)} dates"
                )
                self.logger.info(f"📅 Dates: {', '.join(dates)}")
                self.logger.info(f"🍽️  Restaurants: {', '.join(restaurants)}")
                self.logger.info("=" * 70)

                for restaurant in restaurants:
                    for date_str in dates:
                        try:
                            unit = await self.process_unit(restaurant, date_str, config.force_refresh)
                        except Exception as e:
                            self.logger.error(f"❌ Failed to process {restaurant} on {date_str}: {e}")
                            errors.append(ScrapeError(
                                restaurant=restaurant,
                                date=date_str,
                                error=str(e) or e.__class__.__name__
                            ))
                        else:
                            units.append(unit)
                            items_scraped += unit.items_scraped
                            items_saved += unit.items_saved
                            stats.recipes_created += unit.new_recipes
                            stats.recipes_reused += unit.existing_recipes
                            if unit.source == "scrape":
                                stats.restaurants_scraped += 1
                            if unit.template_updated:
                                stats.templates_updated += 1

                        await self.cache.delete(menu_cache_key(restaurant, date_str))

                # Wait for all queued tasks to complete
                await self.queue.drain()

                self.logger.info("✅ Scraping completed!")
                self.logger.info(f"📊 Stats: {stats.model_dump()}")

            except Exception as e:
                self.logger.error(f"❌ Scraper failed: {e}", exc_info=True)
                errors.append(ScrapeError(error=str(e) or e.__class__.__name__))
            finally:
                await self.browser_manager.shutdown()
                self.recipes.clear_memory_cache()
                self.templates.clear()

        return ScrapeResult(
            success=not errors,
            items_scraped=items_scraped,
            items_saved=items_saved,
            errors=errors,
            duration=int((time.monotonic() - start_time) * 1000),
            stats=stats,
            units=units,
        )

    async def process_unit(self, restaurant: str, date_str: str, force_refresh: bool = False) -> UnitResult:
        """
        Process one (restaurant, date) unit.

        Args:
            restaurant: Restaurant identifier
            date_str: ISO date
            force_refresh: Ignore any stored template

        Returns:
            UnitResult for the unit
        """
        day_of_week = day_of_week_for(date.fromisoformat(date_str))

        template = None
        if not force_refresh:
            template = await self.templates.get(restaurant, day_of_week)

        if template:
            self.logger.info(f"\n📋 Using cached template for {restaurant} on {date_str}")
            return await self.replay_template(template, date_str)

        self.logger.info(f"\n🔄 Scraping fresh menu for {restaurant} on {date_str}")
        return await self.scrape_restaurant(restaurant, date_str, day_of_week)

    async def replay_template(self, template: WeeklyTemplate, date_str: str) -> UnitResult:
        """
        Rebuild a day's menu from a weekly template and the recipe cache.

        Args:
            template: Template for the restaurant and weekday
            date_str: ISO date being served

        Returns:
            UnitResult with source "template"
        """
        recipes: Dict[str, RecipeMaster] = {}
        for recipe_id in dict.fromkeys(template.recipe_ids()):
            recipe = await self.recipes.get_recipe(recipe_id)
            if recipe is not None:
                recipes[recipe_id] = recipe

        items = self.transformer.transform_template(template, recipes, date_str)
        saved = await self.save_menu_items(items)
        self.logger.info(f"✅ Processed {len(items)} items from template")

        return UnitResult(
            restaurant=template.restaurant,
            date=date_str,
            source="template",
            items_saved=saved,
            existing_recipes=len(items),
        )

    async def scrape_restaurant(self, restaurant: str, date_str: str, day_of_week: int) -> UnitResult:
        """
        Scrape one restaurant's menu page and resolve its recipes.

        Args:
            restaurant: Restaurant identifier
            date_str: ISO date
            day_of_week: Weekday of date_str, 0 = Sunday

        Returns:
            UnitResult with source "scrape" (or "closed" when nothing is served)
        """
        page = await self.browser_manager.acquire_page()
        nutrition_page: Optional[BrowserPage] = None

        try:
            url = self.settings.menu_url(restaurant, date_str)
            self.logger.info(f"📍 Navigating to: {url}")

            html = await self.browser_manager.execute_with_retry(
                lambda: page.goto(url, timeout=self.settings.timeout)
            )

            structure = self.menu_parser.parse(html, restaurant, date_str)
            recipe_ids = structure.unique_recipe_ids()
            if not recipe_ids and self.menu_parser.is_closed(html):
                self.logger.warning(f"⚠️  No menu available for {restaurant} on {date_str}")
                return UnitResult(restaurant=restaurant, date=date_str, source="closed")
            self.logger.info(f"🔍 Found {len(recipe_ids)} unique recipes")

            names = structure.recipe_names()
            nutrition_page = await self.browser_manager.acquire_page()
            tasks = [
                self.queue.enqueue(
                    partial(self.recipes.resolve, recipe_id, nutrition_page, names.get(recipe_id))
                )
                for recipe_id in recipe_ids
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            recipes: Dict[str, RecipeMaster] = {}
            new_recipes = 0
            existing_recipes = 0
            for recipe_id, outcome in zip(recipe_ids, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.warning(f"⚠️  Recipe {recipe_id} failed: {outcome}")
                    continue
                recipe, created = outcome
                if recipe is None:
                    continue
                recipes[recipe_id] = recipe
                if created:
                    new_recipes += 1
                else:
                    existing_recipes += 1

            items = self.transformer.transform_structure(structure, recipes, date_str)
            saved = await self.save_menu_items(items)
            self.logger.info(f"💾 Saved {saved} menu items")

            template_updated = False
            if recipes:
                await self.templates.upsert(restaurant, day_of_week, structure, resolvable_ids=recipes.keys())
                template_updated = True

            return UnitResult(
                restaurant=restaurant,
                date=date_str,
                source="scrape",
                items_scraped=len(recipe_ids),
                items_saved=saved,
                new_recipes=new_recipes,
                existing_recipes=existing_recipes,
                template_updated=template_updated,
            )
        finally:
            await page.close()
            if nutrition_page is not None:
                await nutrition_page.close()

    async def save_menu_items(self, items: List[MenuItem]) -> int:
        """
        Upsert menu items by (name, restaurant, date).

        Returns:
            Number of items written (created or overwritten)
        """
        unique = self.transformer.dedupe(items)
        if not unique:
            return 0

        result = await self.store.bulk_upsert(
            MENU_ITEMS, [(item.key(), item.to_document()) for item in unique]
        )
        return result['upserted'] + result['matched']

    async def get_scraper_stats(self) -> ScraperStatsSnapshot:
        """Counts of cached recipes, weekly templates and today's menu items."""
        return ScraperStatsSnapshot(
            cached_recipes=await self.recipes.get_recipe_count(),
            weekly_templates=await self.templates.count(),
            todays_menu_items=await self.store.count(
                MENU_ITEMS, {"date": date_to_datetime(self.today())}
            ),
        )

    async def close(self) -> None:
        """Release the browser, cache and store connections."""
        await self.browser_manager.shutdown()
        await self.cache.close()
        await self.store.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Scrape UCLA dining hall menus and nutrition into MongoDB',
        epilog=(
            'Examples:\n'
            '  python main.py                          # Today, default restaurants\n'
            '  python main.py de-neve --tomorrow       # Tomorrow\'s menu for De Neve\n'
            '  python main.py --all --week --force     # Full refresh of all restaurants for the week\n'
            '  python main.py --schedule --run-now     # Run as a service, scraping once on startup'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        'restaurants',
        nargs='*',
        help=f"Restaurant ids (default: {', '.join(DEFAULT_RESTAURANTS)})"
    )
    parser.add_argument('--all', action='store_true', help='Scrape all restaurants')
    parser.add_argument('--force', action='store_true', help='Force refresh (ignore templates)')
    dates = parser.add_mutually_exclusive_group()
    dates.add_argument('--tomorrow', action='store_true', help="Scrape tomorrow's menu")
    dates.add_argument('--week', action='store_true', help='Scrape the next seven days')
    parser.add_argument(
        '--schedule',
        action='store_true',
        help='Run as a service: daily update at 04:00 and weekly refresh on Sunday 02:00'
    )
    parser.add_argument(
        '--run-now',
        action='store_true',
        help="With --schedule, also scrape today's menus on startup"
    )
    args = parser.parse_args(argv)
    if args.run_now and not args.schedule:
        parser.error('--run-now requires --schedule')
    return args


def build_scrape_config(args: argparse.Namespace, today: date) -> ScrapeConfig:
    """Translate command line arguments into a ScrapeConfig."""
    if args.all:
        restaurants = list(ALL_RESTAURANTS)
    else:
        restaurants = args.restaurants or list(DEFAULT_RESTAURANTS)

    if args.week:
        days = [today + timedelta(days=i) for i in range(7)]
    elif args.tomorrow:
        days = [today + timedelta(days=1)]
    else:
        days = [today]

    return ScrapeConfig(
        restaurants=restaurants,
        dates=[d.isoformat() for d in days],
        mode='full' if args.force else 'update',
        force_refresh=args.force,
    )


def log_result(result: ScrapeResult) -> None:
    logger = logging.getLogger('DiningMenuScraper')
    logger.info("\n" + "=" * 70)
    logger.info("📊 Scraping Results:")
    logger.info(f"  ✅ Success: {result.success}")
    logger.info(f"  📥 Items scraped: {result.items_scraped}")
    logger.info(f"  💾 Items saved: {result.items_saved}")
    logger.info(f"  ⏱️  Duration: {result.duration / 1000:.2f}s")
    logger.info(f"  📈 Stats: {result.stats.model_dump()}")
    if result.errors:
        logger.info("  ❌ Errors:")
        for error in result.errors:
            logger.info(f"   - {error.restaurant or 'general'} {error.date or ''}: {error.error}")
    logger.info("=" * 70)


async def run(settings: ScraperSettings, config: ScrapeConfig) -> ScrapeResult:
    scraper = DiningMenuScraper(settings)
    try:
        await scraper.store.ensure_indexes()
        result = await scraper.scrape_menus(config)
    finally:
        await scraper.close()
    log_result(result)
    return result


async def run_schedule(
    settings: ScraperSettings,
    restaurants: Optional[List[str]] = None,
    run_now: bool = False,
    stop: Optional[asyncio.Event] = None,
    scraper: Optional[DiningMenuScraper] = None
) -> None:
    """
    Keep the recurring schedule running until ``stop`` is set or the task is cancelled.

    Args:
        settings: Scraper settings
        restaurants: Restaurants covered by scheduled runs (defaults when omitted)
        run_now: Start a tracked scrape of today's menus right away
        stop: Event that ends the service
        scraper: Pipeline to drive (built from settings when omitted)
    """
    logger = logging.getLogger(__name__)
    scraper = scraper or DiningMenuScraper(settings)
    scheduler = ScraperScheduler(
        scraper,
        timezone_name=settings.timezone,
        restaurants=restaurants or DEFAULT_RESTAURANTS,
    )
    tracker = JobTracker(scraper)
    stop = stop or asyncio.Event()

    try:
        await scraper.store.ensure_indexes()
        scheduler.start()
        if run_now:
            await tracker.submit_scheduled(scheduler)
        logger.info("⏳ Scheduler running, press Ctrl+C to stop")
        await stop.wait()
    finally:
        await scheduler.stop()
        await tracker.wait()
        summary = await tracker.summary()
        logger.info(
            f"📊 Jobs: {summary['total_completed']} completed, {summary['total_failed']} failed"
        )
        await scraper.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the scraper.

    Returns:
        0 once the run completes (unit errors included) or the schedule is
        stopped with Ctrl+C, 1 on a fatal error
    """
    load_dotenv()
    args = parse_args(argv)

    settings = ScraperSettings.from_env()
    setup_logging(settings)

    if args.schedule:
        restaurants = list(ALL_RESTAURANTS) if args.all else args.restaurants or None
        try:
            asyncio.run(run_schedule(settings, restaurants, run_now=args.run_now))
        except KeyboardInterrupt:
            logging.getLogger(__name__).info("\n🛑 Scheduler stopped by user")
        except Exception as e:
            logging.getLogger(__name__).error(f"\n❌ Scheduler failed: {e}", exc_info=True)
            return 1
        return 0

    config = build_scrape_config(args, datetime.now(ZoneInfo(settings.timezone)).date())
    try:
        asyncio.run(run(settings, config))
    except KeyboardInterrupt:
        logging.getLogger(__name__).warning("\n⚠️  Scrape interrupted by user")
        return 1
    except Exception as e:
        logging.getLogger(__name__).error(f"\n❌ Scraping failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
