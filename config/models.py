"""
Pydantic models for dining-hall menu and nutrition data.

This module defines the data models used throughout the scraping pipeline,
providing validation, serialization, and type safety.
"""

from datetime import date, datetime, time, timezone
from typing import Dict, Iterator, List, Literal, Optional, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum

UNKNOWN_ITEM = "Unknown Item"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def day_of_week_for(value: date) -> int:
    """Day of week with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % 7


def date_to_datetime(value: date) -> datetime:
    """Midnight UTC for a calendar date (BSON has no pure date type)."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class DietaryTag(str, Enum):
    """Dietary and allergen markers shown by the dining site's icon system."""
    VEGAN = "vegan"
    VEGETARIAN = "vegetarian"
    LOW_CARBON = "low-carbon"
    HIGH_CARBON = "high-carbon"
    HALAL = "halal"
    CONTAINS_GLUTEN = "contains-gluten"
    CONTAINS_WHEAT = "contains-wheat"
    CONTAINS_DAIRY = "contains-dairy"
    CONTAINS_EGGS = "contains-eggs"
    CONTAINS_SOY = "contains-soy"
    CONTAINS_NUTS = "contains-nuts"
    CONTAINS_FISH = "contains-fish"
    CONTAINS_SHELLFISH = "contains-shellfish"
    CONTAINS_SESAME = "contains-sesame"
    CONTAINS_ALCOHOL = "contains-alcohol"


class MealPeriod(str, Enum):
    """Segments of a dining day."""
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    LATE_NIGHT = "late-night"
    ALL_DAY = "all-day"


class RestaurantType(str, Enum):
    """Residential dining halls vs. boutique take-out locations."""
    RESIDENTIAL = "residential"
    BOUTIQUE = "boutique"


def order_tags(tags) -> List[DietaryTag]:
    """De-duplicate dietary tags and return them in canonical order."""
    wanted = {DietaryTag(t) for t in tags}
    return [tag for tag in DietaryTag if tag in wanted]


# ============================================================================
# PARSED DATA MODELS (Raw from website)
# ============================================================================

class NutritionInfo(BaseModel):
    """Nutrition facts as parsed from a recipe detail page."""
    name: str = UNKNOWN_ITEM
    serving_size: str = "1 serving"
    serving_size_oz: float = Field(default=4.0, gt=0)
    calories: float = Field(default=0, ge=0)
    total_fat: float = Field(default=0, ge=0)
    saturated_fat: float = Field(default=0, ge=0)
    trans_fat: float = Field(default=0, ge=0)
    cholesterol: float = Field(default=0, ge=0)
    sodium: float = Field(default=0, ge=0)
    total_carbs: float = Field(default=0, ge=0)
    dietary_fiber: float = Field(default=0, ge=0)
    sugars: float = Field(default=0, ge=0)
    added_sugars: float = Field(default=0, ge=0)
    protein: float = Field(default=0, ge=0)
    vitamin_d: Optional[float] = Field(default=None, ge=0)
    calcium: Optional[float] = Field(default=None, ge=0)
    iron: Optional[float] = Field(default=None, ge=0)
    potassium: Optional[float] = Field(default=None, ge=0)
    dietary_tags: List[DietaryTag] = Field(default_factory=list)

    @field_validator('dietary_tags')
    @classmethod
    def canonical_tags(cls, v):
        return order_tags(v)


class ParsedMenuItem(BaseModel):
    """One recipe link discovered on a restaurant/date menu page."""
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1)
    recipe_id: str = Field(..., pattern=r"^\d+$")
    category: str
    meal_period: MealPeriod
    station: str


class MenuStructure(BaseModel):
    """Meal period -> station -> items, as discovered on one menu page."""
    restaurant: str
    date: str
    day_of_week: int = Field(..., ge=0, le=6)
    meal_periods: Dict[str, Dict[str, List[ParsedMenuItem]]] = Field(default_factory=dict)

    def iter_items(self) -> Iterator[ParsedMenuItem]:
        """Yield every parsed item in discovery order."""
        for stations in self.meal_periods.values():
            for items in stations.values():
                yield from items

    def unique_recipe_ids(self) -> List[str]:
        """Recipe ids in discovery order, without repeats."""
        seen = {}
        for item in self.iter_items():
            seen.setdefault(item.recipe_id, None)
        return list(seen)

    def recipe_names(self) -> Dict[str, str]:
        """Menu display name per recipe id; the first listing wins."""
        names: Dict[str, str] = {}
        for item in self.iter_items():
            names.setdefault(item.recipe_id, item.name)
        return names


# ============================================================================
# TARGET DATABASE MODELS (Normalized structure)
# ============================================================================

class MenuItemNutrition(BaseModel):
    """Nutrition facts tracked on a served menu item."""
    calories: float = Field(..., ge=0)
    protein: float = Field(..., ge=0)
    total_fat: float = Field(..., ge=0)
    saturated_fat: float = Field(..., ge=0)
    cholesterol: float = Field(..., ge=0)
    sodium: float = Field(..., ge=0)
    total_carbs: float = Field(..., ge=0)
    dietary_fiber: float = Field(..., ge=0)
    sugars: float = Field(..., ge=0)
    calcium: float = Field(default=0, ge=0)
    iron: float = Field(default=0, ge=0)
    potassium: float = Field(default=0, ge=0)


class RecipeNutrition(MenuItemNutrition):
    """Full nutrition facts kept on the recipe master record."""
    trans_fat: float = Field(default=0, ge=0)
    added_sugars: float = Field(default=0, ge=0)
    vitamin_d: Optional[float] = Field(default=None, ge=0)


class MenuItem(BaseModel):
    """One dish served by one restaurant on one date."""
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=200)
    serving_size: str = Field(..., min_length=1)
    serving_size_oz: float = Field(..., gt=0, le=100)
    restaurant: str = Field(..., min_length=1)
    restaurant_type: RestaurantType
    category: str = Field(..., min_length=1, max_length=100)
    station: Optional[str] = Field(default=None, max_length=100)
    dietary_tags: List[DietaryTag] = Field(default_factory=list)
    nutrition: MenuItemNutrition
    date: date
    meal_period: Optional[MealPeriod] = None

    @field_validator('name', 'category', 'station')
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('dietary_tags')
    @classmethod
    def canonical_tags(cls, v):
        return [tag.value for tag in order_tags(v)]

    def key(self) -> Dict[str, Any]:
        """Composite identity: (name, restaurant, date)."""
        return {
            'name': self.name,
            'restaurant': self.restaurant,
            'date': date_to_datetime(self.date),
        }

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the document store."""
        doc = self.model_dump(mode="json")
        doc['date'] = date_to_datetime(self.date)
        doc['updated_at'] = utcnow()
        return doc


class RecipeMaster(BaseModel):
    """Restaurant-agnostic nutrition record keyed by the site's recipe id."""
    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    recipe_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    serving_size: str
    serving_size_oz: float = Field(..., gt=0)
    nutrition: RecipeNutrition
    dietary_tags: List[DietaryTag] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc['last_updated'] = self.last_updated
        return doc


class WeeklyTemplate(BaseModel):
    """Structural snapshot of a restaurant's menu for one day of the week."""
    model_config = ConfigDict(extra="ignore")

    restaurant: str
    day_of_week: int = Field(..., ge=0, le=6)
    meal_periods: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utcnow)

    def recipe_ids(self) -> List[str]:
        return [
            recipe_id
            for stations in self.meal_periods.values()
            for ids in stations.values()
            for recipe_id in ids
        ]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()


# ============================================================================
# RUN / JOB MODELS
# ============================================================================

class ScrapeConfig(BaseModel):
    """What a scrape run should cover."""
    restaurants: Optional[List[str]] = None
    dates: Optional[List[str]] = None
    mode: Literal["full", "update"] = "update"
    force_refresh: bool = False

    @field_validator('dates')
    @classmethod
    def iso_dates(cls, v):
        if v is None:
            return v
        for value in v:
            date.fromisoformat(value)
        return v

    @field_validator('restaurants')
    @classmethod
    def normalize_restaurants(cls, v):
        if v is None:
            return v
        return [r.strip().lower().replace(" ", "-") for r in v if r and r.strip()]


class ScrapeError(BaseModel):
    """An error recorded for one unit, or for the run when no unit is set."""
    restaurant: Optional[str] = None
    date: Optional[str] = None
    error: str


class ScrapeStats(BaseModel):
    restaurants_scraped: int = 0
    recipes_created: int = 0
    recipes_reused: int = 0
    templates_updated: int = 0


class UnitResult(BaseModel):
    """Statistics for one (restaurant, date) unit of work."""
    restaurant: str
    date: str
    source: Literal["template", "scrape", "closed"]
    items_scraped: int = 0
    items_saved: int = 0
    new_recipes: int = 0
    existing_recipes: int = 0
    template_updated: bool = False


class ScrapeResult(BaseModel):
    success: bool
    items_scraped: int = 0
    items_saved: int = 0
    errors: List[ScrapeError] = Field(default_factory=list)
    duration: int = 0  # milliseconds
    stats: ScrapeStats = Field(default_factory=ScrapeStats)
    units: List[UnitResult] = Field(default_factory=list)


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScrapeJob(BaseModel):
    """Transient record of one background scrape run."""
    job_id: str
    status: JobStatus = JobStatus.RUNNING
    job_type: Literal["manual", "refresh", "scheduled"] = "manual"
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    config: Optional[ScrapeConfig] = None
    result: Optional[ScrapeResult] = None
    error: Optional[str] = None


class ScraperStatsSnapshot(BaseModel):
    cached_recipes: int
    weekly_templates: int
    todays_menu_items: int
    last_updated: datetime = Field(default_factory=utcnow)
