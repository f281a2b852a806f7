"""
Menu structure parser module.

Turns a rendered restaurant/date menu page into meal period -> station ->
recipe links. Works purely on HTML; no network calls.
"""

import logging
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Union

from bs4 import BeautifulSoup, Tag

from scrapers.browser_manager import BrowserPage, with_error_handling
from config.models import MealPeriod, MenuStructure, ParsedMenuItem, day_of_week_for


# /Recipes/077003/1, RecipeDetails.aspx?RecipeNumber=077003, ?recipe=2066
RECIPE_LINK_PATTERNS = (
    re.compile(r"/Recipes/(\d+)", re.IGNORECASE),
    re.compile(r"RecipeNumber=(\d+)", re.IGNORECASE),
    re.compile(r"recipe=(\d+)", re.IGNORECASE),
)

RECIPE_LINK_MARKERS = ("/recipes/", "recipedetails", "recipe=")

# Checked in order; first substring hit wins
MEAL_PERIOD_KEYWORDS = (
    ("breakfast", MealPeriod.BREAKFAST),
    ("lunch", MealPeriod.LUNCH),
    ("dinner", MealPeriod.DINNER),
    ("late", MealPeriod.LATE_NIGHT),
)

# Notices on no-service pages: "No menu available", "Closed today", "Closed for Summer"
CLOSED_NOTICE = re.compile(
    r"\bno menus?\b|\bclosed\s+(?:today|for)\b|\b(?:is|are|currently)\s+closed\b",
    re.IGNORECASE,
)

HIDDEN_TAGS = ("script", "style", "noscript", "template")

PAGE_DATE_PATTERN = re.compile(r"(\w+,\s+\w+\s+\d+,\s+\d+)")

DEFAULT_STATION = "General"


class MenuStructureParser:
    """
    Parser for restaurant/date menu pages.

    Two passes:
    - Structured: each ``h3`` opens a meal period, ``h4`` / ``.station-header``
      switch the current station, recipe anchors become items
    - Flat: when no meal period is found, every recipe anchor on the page
      goes into ``all-day`` / ``General``
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def extract_recipe_id(href: str) -> Optional[str]:
        """Numeric recipe id from any known recipe link shape."""
        for pattern in RECIPE_LINK_PATTERNS:
            match = pattern.search(href or "")
            if match:
                return match.group(1)
        return None

    @staticmethod
    def is_recipe_link(href: str) -> bool:
        lowered = (href or "").lower()
        return any(marker in lowered for marker in RECIPE_LINK_MARKERS)

    @staticmethod
    def classify_meal_period(header_text: str) -> MealPeriod:
        lowered = header_text.lower()
        for keyword, period in MEAL_PERIOD_KEYWORDS:
            if keyword in lowered:
                return period
        return MealPeriod.ALL_DAY

    @staticmethod
    def visible_text(html: str) -> str:
        """Body text as a reader sees it, without scripts or styles."""
        document = BeautifulSoup(html, 'html.parser')
        for element in document(HIDDEN_TAGS):
            element.decompose()
        return (document.body or document).get_text(" ", strip=True)

    @classmethod
    def is_closed(cls, html: str) -> bool:
        """
        True when the page carries a no-service notice.

        Only visible body text is searched, for whole phrases; opening hours
        such as "Closed Sundays" do not count.
        """
        return CLOSED_NOTICE.search(cls.visible_text(html)) is not None

    @staticmethod
    def _is_station_header(element: Tag) -> bool:
        return element.name == "h4" or "station-header" in (element.get("class") or [])

    @with_error_handling(default_return=None)
    def extract_page_date(self, document: BeautifulSoup) -> Optional[date]:
        """
        Extract the menu date from the first ``h2`` (e.g. "Thursday, June 12, 2025").

        Args:
            document: Parsed HTML document

        Returns:
            Date shown on the page, or None
        """
        heading = document.find("h2")
        if not heading:
            return None
        match = PAGE_DATE_PATTERN.search(heading.get_text(" ", strip=True))
        if not match:
            return None
        try:
            return datetime.strptime(match.group(1), "%A, %B %d, %Y").date()
        except ValueError:
            self.logger.debug(f"  ℹ️  Unrecognised page date: {match.group(1)}")
            return None

    def _build_item(
        self,
        anchor: Tag,
        meal_period: MealPeriod,
        station: str
    ) -> Optional[ParsedMenuItem]:
        href = anchor.get("href", "")
        if not self.is_recipe_link(href):
            return None
        name = anchor.get_text(" ", strip=True)
        recipe_id = self.extract_recipe_id(href)
        if not name or not recipe_id:
            return None
        return ParsedMenuItem(
            name=name,
            recipe_id=recipe_id,
            category=station,
            meal_period=meal_period,
            station=station,
        )

    @staticmethod
    def _walk(element: Tag) -> Iterable[Tag]:
        yield element
        yield from element.find_all(True)

    def extract_meal_periods(
        self,
        document: BeautifulSoup
    ) -> Dict[str, Dict[str, List[ParsedMenuItem]]]:
        """
        Structured pass over ``h3`` meal period sections.

        Args:
            document: Parsed HTML document

        Returns:
            Meal period -> station -> items
        """
        meal_periods: Dict[str, Dict[str, List[ParsedMenuItem]]] = {}

        for header in document.find_all("h3"):
            period = self.classify_meal_period(header.get_text(" ", strip=True))
            stations = meal_periods.setdefault(period.value, {})
            station = DEFAULT_STATION

            for sibling in header.find_next_siblings():
                if sibling.name == "h3":
                    break
                for element in self._walk(sibling):
                    if self._is_station_header(element):
                        station = element.get_text(" ", strip=True) or DEFAULT_STATION
                        stations.setdefault(station, [])
                    elif element.name == "a":
                        item = self._build_item(element, period, station)
                        if item:
                            stations.setdefault(station, []).append(item)

            self.logger.debug(
                f"    🍽️  {period.value}: {sum(len(v) for v in stations.values())} items"
            )

        return meal_periods

    def extract_flat(self, document: BeautifulSoup) -> Dict[str, Dict[str, List[ParsedMenuItem]]]:
        """
        Fallback pass: every recipe anchor on the page in one bucket.

        Args:
            document: Parsed HTML document

        Returns:
            ``{"all-day": {"General": [...]}}``
        """
        items: List[ParsedMenuItem] = []
        for anchor in document.find_all("a", href=True):
            item = self._build_item(anchor, MealPeriod.ALL_DAY, DEFAULT_STATION)
            if item:
                items.append(item)
        return {MealPeriod.ALL_DAY.value: {DEFAULT_STATION: items}}

    def parse(
        self,
        page: Union[BrowserPage, str],
        restaurant_id: str,
        menu_date: Optional[Union[date, str]] = None
    ) -> MenuStructure:
        """
        Parse a rendered menu page.

        Args:
            page: Page after navigation, or raw HTML
            restaurant_id: Restaurant identifier (e.g. "de-neve")
            menu_date: Date used when the page does not show one

        Returns:
            MenuStructure for the page
        """
        self.logger.info(f"📄 Parsing menu for {restaurant_id}")
        if isinstance(page, str):
            document = BeautifulSoup(page, 'html.parser')
        else:
            document = page.document()

        if isinstance(menu_date, str):
            menu_date = date.fromisoformat(menu_date)
        parsed_date = self.extract_page_date(document) or menu_date or date.today()

        meal_periods = self.extract_meal_periods(document)
        if not meal_periods:
            self.logger.warning("⚠️  No meal periods found, trying alternative parsing...")
            meal_periods = self.extract_flat(document)

        structure = MenuStructure(
            restaurant=restaurant_id,
            date=parsed_date.isoformat(),
            day_of_week=day_of_week_for(parsed_date),
            meal_periods=meal_periods,
        )
        self.logger.info(
            f"✅ Found {len(meal_periods)} meal periods, "
            f"{len(structure.unique_recipe_ids())} unique recipes"
        )
        return structure
