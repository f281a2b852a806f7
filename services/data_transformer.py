"""
Data transformation module.

Turns parser output into the stored record shapes: recipe masters (one per
recipe id) and dated menu items (one per dish, restaurant and day).
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from config.config import RESIDENTIAL_RESTAURANTS
from config.models import (
    UNKNOWN_ITEM,
    MealPeriod,
    MenuItem,
    MenuItemNutrition,
    MenuStructure,
    NutritionInfo,
    ParsedMenuItem,
    RecipeMaster,
    RecipeNutrition,
    RestaurantType,
    WeeklyTemplate,
)


def normalize_restaurant(restaurant: str) -> str:
    """'De Neve' -> 'de-neve'."""
    return "-".join(restaurant.strip().lower().split())


def restaurant_type_for(restaurant: str) -> RestaurantType:
    if normalize_restaurant(restaurant) in RESIDENTIAL_RESTAURANTS:
        return RestaurantType.RESIDENTIAL
    return RestaurantType.BOUTIQUE


class DataTransformer:
    """
    Transforms parsed menu and nutrition data into normalized records.

    Produces:
    - RecipeMaster entities from nutrition pages
    - MenuItem entities from a parsed menu (fresh scrape)
    - MenuItem entities from a weekly template (replay)
    """

    def __init__(self):
        """Initialize data transformer."""
        self.logger = logging.getLogger(self.__class__.__name__)

    def to_recipe_master(
        self,
        recipe_id: str,
        nutrition: NutritionInfo,
        fallback_name: Optional[str] = None
    ) -> RecipeMaster:
        """
        Transform parsed nutrition facts into a RecipeMaster.

        Args:
            recipe_id: Numeric recipe identifier
            nutrition: Parser output for that recipe
            fallback_name: Menu page name, kept when the detail page has none

        Returns:
            RecipeMaster entity
        """
        facts = nutrition.model_dump()
        name = nutrition.name
        if (not name or name == UNKNOWN_ITEM) and fallback_name:
            name = fallback_name
        recipe = RecipeMaster(
            recipe_id=recipe_id,
            name=name,
            serving_size=nutrition.serving_size,
            serving_size_oz=nutrition.serving_size_oz,
            nutrition=RecipeNutrition(
                **{k: v for k, v in facts.items() if k in RecipeNutrition.model_fields and v is not None}
            ),
            dietary_tags=nutrition.dietary_tags,
        )
        self.logger.debug(f"  ✅ Created RecipeMaster: {recipe.name} ({recipe_id})")
        return recipe

    def build_menu_item(
        self,
        recipe: RecipeMaster,
        restaurant: str,
        menu_date: Union[date, str],
        station: str,
        meal_period: Optional[Union[MealPeriod, str]] = None,
        fallback_name: Optional[str] = None
    ) -> Optional[MenuItem]:
        """
        Build one dated MenuItem from a recipe master and its menu position.

        The recipe's own name wins over the name shown on the menu page.

        Args:
            recipe: Resolved recipe master
            restaurant: Restaurant identifier
            menu_date: Menu date
            station: Station (also used as category)
            meal_period: Meal period, when known
            fallback_name: Name from the menu page

        Returns:
            MenuItem, or None when the record fails validation
        """
        name = recipe.name
        if (not name or name == UNKNOWN_ITEM) and fallback_name:
            name = fallback_name

        if isinstance(menu_date, str):
            menu_date = date.fromisoformat(menu_date)

        restaurant_id = normalize_restaurant(restaurant)
        nutrition = recipe.nutrition.model_dump(include=set(MenuItemNutrition.model_fields))
        try:
            return MenuItem(
                name=name,
                serving_size=recipe.serving_size,
                serving_size_oz=recipe.serving_size_oz,
                restaurant=restaurant_id,
                restaurant_type=restaurant_type_for(restaurant_id),
                category=station,
                station=station,
                dietary_tags=recipe.dietary_tags,
                nutrition=MenuItemNutrition(**nutrition),
                date=menu_date,
                meal_period=meal_period,
            )
        except ValidationError as e:
            self.logger.warning(f"⚠️  Skipping invalid menu item '{name}': {e.error_count()} errors")
            return None

    def from_parsed_item(
        self,
        parsed: ParsedMenuItem,
        recipe: Optional[RecipeMaster],
        restaurant: str,
        menu_date: Union[date, str]
    ) -> Optional[MenuItem]:
        if recipe is None:
            self.logger.debug(f"    ⚠️  No nutrition data for {parsed.name}, skipping...")
            return None
        return self.build_menu_item(
            recipe,
            restaurant,
            menu_date,
            station=parsed.station,
            meal_period=parsed.meal_period,
            fallback_name=parsed.name,
        )

    def transform_structure(
        self,
        structure: MenuStructure,
        recipes: Dict[str, RecipeMaster],
        menu_date: Optional[Union[date, str]] = None
    ) -> List[MenuItem]:
        """
        Transform a freshly parsed menu into MenuItems.

        Args:
            structure: Parsed menu page
            recipes: Resolved recipe masters by recipe id
            menu_date: Date the items are served (defaults to the page date)

        Returns:
            MenuItems for every entry whose recipe resolved; a recipe listed
            at several stations keeps its first position
        """
        menu_date = menu_date or structure.date
        items = []
        seen = set()
        for parsed in structure.iter_items():
            if parsed.recipe_id in seen:
                continue
            seen.add(parsed.recipe_id)
            item = self.from_parsed_item(parsed, recipes.get(parsed.recipe_id), structure.restaurant, menu_date)
            if item:
                items.append(item)
        return items

    def transform_template(
        self,
        template: WeeklyTemplate,
        recipes: Dict[str, RecipeMaster],
        menu_date: Union[date, str]
    ) -> List[MenuItem]:
        """
        Rebuild a day's MenuItems from a weekly template.

        Args:
            template: Stored template for the restaurant and weekday
            recipes: Resolved recipe masters by recipe id
            menu_date: Date the items are served

        Returns:
            MenuItems; template ids without a recipe are skipped and a
            recipe listed at several stations keeps its first position
        """
        items = []
        seen = set()
        for period, stations in template.meal_periods.items():
            for station, recipe_ids in stations.items():
                for recipe_id in recipe_ids:
                    if recipe_id in seen:
                        continue
                    seen.add(recipe_id)
                    recipe = recipes.get(recipe_id)
                    if recipe is None:
                        self.logger.debug(f"    ⚠️  Template recipe {recipe_id} unavailable, skipping")
                        continue
                    item = self.build_menu_item(recipe, template.restaurant, menu_date, station, period)
                    if item:
                        items.append(item)
        return items

    @staticmethod
    def dedupe(items: Iterable[MenuItem]) -> List[MenuItem]:
        """One item per (name, restaurant, date); the last occurrence wins."""
        unique: Dict[tuple, MenuItem] = {}
        for item in items:
            unique[(item.name, item.restaurant, item.date)] = item
        return list(unique.values())
