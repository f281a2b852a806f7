import asyncio
from datetime import date

from config.models import ScrapeConfig
from main import DiningMenuScraper, menu_cache_key
from tests.fakes import FakeCache, FakeStore, make_browser, make_settings
from tests.pages import (
    BRUIN_PLATE_MENU,
    CLOSED_MENU,
    DE_NEVE_MENU,
    DE_NEVE_MENU_WITH_HOURS,
    GRILLED_CHICKEN,
    MENU_URL_BRUIN_PLATE,
    MENU_URL_DE_NEVE,
    MENU_URL_EPICURIA,
    NAMELESS_RECIPE,
    QUINOA_BOWL,
    SCRAMBLED_EGGS,
    VEGGIE_BURGER,
    recipe_url,
)
from utils.mongodb_store import MENU_ITEMS, RECIPE_MASTERS, WEEKLY_MENUS
from utils.task_queue import ScrapeQueue

THURSDAY = "2025-06-12"

ROUTES = {
    MENU_URL_DE_NEVE: DE_NEVE_MENU,
    MENU_URL_BRUIN_PLATE: BRUIN_PLATE_MENU,
    recipe_url("077001"): SCRAMBLED_EGGS,
    recipe_url("077003"): GRILLED_CHICKEN,
    recipe_url("077004"): VEGGIE_BURGER,
    recipe_url("088001"): QUINOA_BOWL,
}


def _config(*restaurants, force=False):
    return ScrapeConfig(restaurants=list(restaurants), dates=[THURSDAY], force_refresh=force)


def _run(configs, routes=None, store=None, cache=None):
    """Run each config in turn on one scraper inside one event loop."""
    store = store or FakeStore()
    cache = cache or FakeCache()
    manager, session = make_browser(dict(ROUTES, **(routes or {})))

    async def scenario():
        scraper = DiningMenuScraper(
            make_settings(),
            store=store,
            cache=cache,
            browser_manager=manager,
            queue=ScrapeQueue(concurrency=2, interval=0),
        )
        results = []
        for config in configs:
            results.append(await scraper.scrape_menus(config))
        return results

    return asyncio.run(scenario()), store, cache, session


def _menu_item(store, name):
    return next(d for d in store.documents(MENU_ITEMS) if d["name"] == name)


def test_fresh_scrape_saves_items_recipes_and_template():
    [result], store, cache, session = _run([_config("de-neve")])

    assert result.success
    assert result.errors == []
    assert result.items_scraped == 4
    assert result.items_saved == 3
    assert result.stats.restaurants_scraped == 1
    assert result.stats.recipes_created == 3
    assert result.stats.recipes_reused == 0
    assert result.stats.templates_updated == 1
    assert result.duration >= 0

    chicken = _menu_item(store, "Grilled Chicken Breast")
    assert chicken["restaurant"] == "de-neve"
    assert chicken["restaurant_type"] == "residential"
    assert chicken["meal_period"] == "lunch"
    assert chicken["station"] == "Grill"
    assert chicken["serving_size_oz"] == 4.5
    assert chicken["nutrition"]["calories"] == 220
    assert chicken["nutrition"]["protein"] == 28
    assert chicken["dietary_tags"] == ["halal", "contains-soy"]
    assert chicken["date"].date() == date(2025, 6, 12)

    assert len(store.documents(RECIPE_MASTERS)) == 3
    assert menu_cache_key("de-neve", THURSDAY) in cache.deleted
    assert session.close_count == 1


def test_template_excludes_unresolvable_recipes():
    _, store, _, _ = _run([_config("de-neve")])

    [template] = store.documents(WEEKLY_MENUS)
    assert template["restaurant"] == "de-neve"
    assert template["day_of_week"] == 4
    assert template["meal_periods"] == {
        "breakfast": {"Flex Bar": ["077001"]},
        "lunch": {"Grill": ["077003", "077004"]},
        "dinner": {"Grill": ["077003"]},
    }


def test_rerun_replays_template_without_duplicates():
    results, store, _, session = _run([_config("de-neve"), _config("de-neve")])
    second = results[1]

    assert second.success
    assert second.units[0].source == "template"
    assert second.items_saved == 3
    assert second.stats.recipes_reused == 3
    assert second.stats.restaurants_scraped == 0
    assert len(store.documents(MENU_ITEMS)) == 3
    assert session.calls_to("/Menus/DeNeve") == 1
    assert _menu_item(store, "Grilled Chicken Breast")["meal_period"] == "lunch"


def test_forced_rerun_reuses_cached_recipes():
    results, store, _, session = _run([_config("de-neve"), _config("de-neve", force=True)])
    second = results[1]

    assert second.units[0].source == "scrape"
    assert second.stats.recipes_created == 0
    assert second.stats.recipes_reused == 3
    assert session.calls_to("/Menus/DeNeve") == 2
    assert session.calls_to("/Recipes/077003") == 1
    assert len(store.documents(RECIPE_MASTERS)) == 3
    assert len(store.documents(MENU_ITEMS)) == 3


def test_recipe_shared_across_restaurants_is_fetched_once():
    routes = {MENU_URL_BRUIN_PLATE: DE_NEVE_MENU}
    [result], store, _, session = _run([_config("de-neve", "bruin-plate")], routes=routes)

    assert result.stats.recipes_created == 3
    assert result.stats.recipes_reused == 3
    assert session.calls_to("/Recipes/077003/1") == 1
    assert {d["restaurant"] for d in store.documents(MENU_ITEMS)} == {"de-neve", "bruin-plate"}


def test_failed_unit_does_not_stop_the_run():
    routes = {MENU_URL_EPICURIA: TimeoutError("navigation timed out")}
    [result], store, cache, session = _run(
        [_config("de-neve", "epicuria-covel", "bruin-plate")], routes=routes
    )

    assert not result.success
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.restaurant == "epicuria-covel"
    assert error.date == THURSDAY
    assert "timed out" in error.error
    assert session.calls_to("/Menus/Epicuria") == 3
    assert result.items_saved == 4
    assert {u.restaurant for u in result.units} == {"de-neve", "bruin-plate"}
    assert menu_cache_key("epicuria-covel", THURSDAY) in cache.deleted


def test_closed_restaurant_writes_nothing():
    routes = {MENU_URL_DE_NEVE: CLOSED_MENU}
    [result], store, _, _ = _run([_config("de-neve")], routes=routes)

    assert result.success
    assert result.units[0].source == "closed"
    assert result.items_saved == 0
    assert result.stats.restaurants_scraped == 0
    assert store.documents(MENU_ITEMS) == []
    assert store.documents(WEEKLY_MENUS) == []


def test_menu_mentioning_closing_days_is_still_scraped():
    routes = {MENU_URL_DE_NEVE: DE_NEVE_MENU_WITH_HOURS}
    [result], store, _, _ = _run([_config("de-neve")], routes=routes)

    assert result.units[0].source == "scrape"
    assert result.items_saved == 3
    assert result.stats.templates_updated == 1
    assert len(store.documents(WEEKLY_MENUS)) == 1


def test_empty_menu_without_closed_notice_is_a_zero_item_scrape():
    routes = {
        MENU_URL_DE_NEVE: "<html><body><h2>Thursday, June 12, 2025</h2><p>Menu coming soon</p></body></html>"
    }
    [result], store, _, _ = _run([_config("de-neve")], routes=routes)

    assert result.success
    assert result.units[0].source == "scrape"
    assert result.items_scraped == 0
    assert result.units[0].template_updated is False
    assert store.documents(WEEKLY_MENUS) == []


def test_nameless_recipe_pages_keep_menu_names_across_reruns():
    routes = {recipe_url("077003"): NAMELESS_RECIPE, recipe_url("077004"): NAMELESS_RECIPE}
    results, store, _, _ = _run([_config("de-neve"), _config("de-neve")], routes=routes)

    assert results[1].units[0].source == "template"
    assert results[1].items_saved == 3
    assert sorted(d["name"] for d in store.documents(MENU_ITEMS)) == [
        "Grilled Chicken",
        "Scrambled Eggs",
        "Veggie Burger",
    ]
    assert {d["recipe_id"]: d["name"] for d in store.documents(RECIPE_MASTERS)} == {
        "077001": "Scrambled Eggs",
        "077003": "Grilled Chicken",
        "077004": "Veggie Burger",
    }


def test_no_resolvable_recipes_leaves_template_unwritten():
    routes = {recipe_url("088001"): (500, "error")}
    [result], store, _, _ = _run([_config("bruin-plate")], routes=routes)

    assert result.success
    assert result.units[0].items_scraped == 1
    assert result.units[0].template_updated is False
    assert store.documents(WEEKLY_MENUS) == []


def test_concurrent_runs_are_serialized():
    store, cache = FakeStore(), FakeCache()
    manager, session = make_browser(ROUTES)

    async def scenario():
        scraper = DiningMenuScraper(
            make_settings(), store=store, cache=cache, browser_manager=manager,
            queue=ScrapeQueue(concurrency=2, interval=0),
        )
        return await asyncio.gather(
            scraper.scrape_menus(_config("de-neve", force=True)),
            scraper.scrape_menus(_config("de-neve", force=True)),
        )

    first, second = asyncio.run(scenario())

    assert first.success and second.success
    assert session.calls_to("/Recipes/077003/1") == 1
    assert session.close_count == 2


def test_scraper_stats_snapshot():
    store = FakeStore()
    _run([_config("de-neve")], store=store)

    async def scenario():
        scraper = DiningMenuScraper(
            make_settings(), store=store, cache=FakeCache(),
            browser_manager=make_browser()[0], queue=ScrapeQueue(interval=0),
        )
        return await scraper.get_scraper_stats()

    snapshot = asyncio.run(scenario())

    assert snapshot.cached_recipes == 3
    assert snapshot.weekly_templates == 1
    assert snapshot.todays_menu_items == 0
