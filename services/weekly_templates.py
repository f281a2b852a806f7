"""
Weekly menu templates.

Dining halls repeat their menu on a weekly cycle, so the recipe layout seen
on one Thursday is reused for later Thursdays until a forced refresh.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from config.models import MenuStructure, WeeklyTemplate, utcnow
from utils.mongodb_store import WEEKLY_MENUS


def template_key(restaurant: str, day_of_week: int) -> str:
    return f"{restaurant}-{day_of_week}"


class WeeklyTemplateStore:
    """Templates by (restaurant, day of week), backed by the document store."""

    def __init__(self, store: Any):
        self.store = store
        self.logger = logging.getLogger(self.__class__.__name__)
        self._templates: Dict[str, WeeklyTemplate] = {}

    async def get(self, restaurant: str, day_of_week: int) -> Optional[WeeklyTemplate]:
        """
        Fetch the template for a restaurant and weekday (0 = Sunday).

        Returns:
            WeeklyTemplate, or None when none has been recorded
        """
        key = template_key(restaurant, day_of_week)
        if key in self._templates:
            return self._templates[key]

        document = await self.store.find_one(
            WEEKLY_MENUS, {"restaurant": restaurant, "day_of_week": day_of_week}
        )
        if not document:
            return None

        try:
            template = WeeklyTemplate.model_validate(document)
        except ValidationError as e:
            self.logger.warning(f"⚠️  Ignoring malformed template {key}: {e.error_count()} errors")
            return None

        self._templates[key] = template
        return template

    @staticmethod
    def build_layout(
        structure: MenuStructure,
        resolvable_ids: Optional[Iterable[str]] = None
    ) -> Dict[str, Dict[str, List[str]]]:
        """Meal period -> station -> recipe ids, without empty stations or periods."""
        allowed = set(resolvable_ids) if resolvable_ids is not None else None
        layout: Dict[str, Dict[str, List[str]]] = {}

        for period, stations in structure.meal_periods.items():
            period_layout = {}
            for station, items in stations.items():
                ids = [
                    item.recipe_id
                    for item in items
                    if allowed is None or item.recipe_id in allowed
                ]
                if ids:
                    period_layout[station] = ids
            if period_layout:
                layout[period] = period_layout

        return layout

    async def upsert(
        self,
        restaurant: str,
        day_of_week: int,
        structure: MenuStructure,
        resolvable_ids: Optional[Iterable[str]] = None
    ) -> WeeklyTemplate:
        """
        Record the layout of a freshly scraped menu as the weekday's template.

        Args:
            restaurant: Restaurant identifier
            day_of_week: Weekday, 0 = Sunday
            structure: Parsed menu
            resolvable_ids: When given, only these recipe ids are kept

        Returns:
            The stored template
        """
        template = WeeklyTemplate(
            restaurant=restaurant,
            day_of_week=day_of_week,
            meal_periods=self.build_layout(structure, resolvable_ids),
            last_updated=utcnow(),
        )
        await self.store.upsert(
            WEEKLY_MENUS,
            {"restaurant": restaurant, "day_of_week": day_of_week},
            template.to_document()
        )
        self._templates[template_key(restaurant, day_of_week)] = template
        self.logger.info(
            f"📋 Updated weekly template for {restaurant} (day {day_of_week}): "
            f"{len(template.recipe_ids())} recipes"
        )
        return template

    async def count(self) -> int:
        return await self.store.count(WEEKLY_MENUS)

    def clear(self) -> None:
        self._templates.clear()
