"""
Three-tier recipe cache: process memory, Redis, MongoDB.

A recipe's nutrition is fetched from the site at most once; afterwards every
lookup is served from one of the tiers.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from config.models import RecipeMaster
from scrapers.browser_manager import BrowserPage
from utils.exceptions import StorageException
from scrapers.nutrition_parser import NutritionFactParser
from services.data_transformer import DataTransformer
from utils.mongodb_store import RECIPE_MASTERS
from utils.redis_cache import MemoryCache

RECIPE_CACHE_TTL = 86400  # 24 hours


def recipe_cache_key(recipe_id: str) -> str:
    return f"recipe:{recipe_id}"


class RecipeCacheManager:
    """
    Resolves recipe ids to RecipeMaster records.

    Lookup order: memory -> distributed cache -> durable store, backfilling
    the faster tiers on the way out. Misses are fetched through the nutrition
    parser under a per-id lock so concurrent requests share one fetch.
    """

    def __init__(
        self,
        store: Any,
        cache: Any,
        parser: Optional[NutritionFactParser] = None,
        transformer: Optional[DataTransformer] = None,
        memory: Optional[MemoryCache] = None,
        ttl: int = RECIPE_CACHE_TTL
    ):
        """
        Initialize recipe cache manager.

        Args:
            store: Durable document store (MongoDBStore interface)
            cache: Distributed cache (RedisCache interface)
            parser: Nutrition parser used on a full miss
            transformer: Builds RecipeMaster from parser output
            memory: Process-local tier
            ttl: Distributed cache lifetime in seconds
        """
        self.store = store
        self.cache = cache
        self.parser = parser or NutritionFactParser()
        self.transformer = transformer or DataTransformer()
        self.memory = memory if memory is not None else MemoryCache()
        self.ttl = ttl
        self.logger = logging.getLogger(self.__class__.__name__)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, recipe_id: str) -> asyncio.Lock:
        lock = self._locks.get(recipe_id)
        if lock is None:
            lock = self._locks[recipe_id] = asyncio.Lock()
        return lock

    async def _remember(self, recipe: RecipeMaster) -> None:
        await self.memory.set(recipe.recipe_id, recipe)
        await self.cache.set(
            recipe_cache_key(recipe.recipe_id),
            recipe.model_dump(mode="json"),
            self.ttl
        )

    async def get_recipe(self, recipe_id: str) -> Optional[RecipeMaster]:
        """
        Look a recipe up in the cache tiers without touching the site.

        Args:
            recipe_id: Numeric recipe identifier

        Returns:
            RecipeMaster, or None when no tier has it
        """
        recipe = await self.memory.get(recipe_id)
        if recipe is not None:
            return recipe

        cached = await self.cache.get(recipe_cache_key(recipe_id))
        if cached:
            try:
                recipe = RecipeMaster.model_validate(cached)
            except ValidationError as e:
                self.logger.warning(f"⚠️  Ignoring malformed cached recipe {recipe_id}: {e.error_count()} errors")
            else:
                await self.memory.set(recipe_id, recipe)
                return recipe

        document = await self.store.find_one(RECIPE_MASTERS, {"recipe_id": recipe_id})
        if document:
            try:
                recipe = RecipeMaster.model_validate(document)
            except ValidationError as e:
                self.logger.warning(f"⚠️  Ignoring malformed stored recipe {recipe_id}: {e.error_count()} errors")
                return None
            await self._remember(recipe)
            return recipe

        return None

    async def resolve(
        self,
        recipe_id: str,
        page: BrowserPage,
        name: Optional[str] = None
    ) -> Tuple[Optional[RecipeMaster], bool]:
        """
        Return the recipe for ``recipe_id``, fetching it on a full miss.

        Args:
            recipe_id: Numeric recipe identifier
            page: Page used for the nutrition fetch
            name: Menu page name, stored when the detail page shows none

        Returns:
            (recipe or None, True when this call created the record)
        """
        recipe = await self.get_recipe(recipe_id)
        if recipe is not None:
            return recipe, False

        async with self._lock_for(recipe_id):
            # Another task may have fetched it while we waited
            recipe = await self.get_recipe(recipe_id)
            if recipe is not None:
                self.logger.debug(f"✅ Recipe {recipe_id} already cached")
                return recipe, False

            self.logger.info(f"🔄 Fetching new recipe {recipe_id}")
            nutrition = await self.parser.parse(page, recipe_id)
            if nutrition is None:
                self.logger.warning(f"❌ Failed to fetch nutrition for recipe {recipe_id}")
                return None, False

            recipe = self.transformer.to_recipe_master(recipe_id, nutrition, fallback_name=name)
            try:
                await self.store.upsert(RECIPE_MASTERS, {"recipe_id": recipe_id}, recipe.to_document())
            except StorageException as e:
                self.logger.error(f"❌ Failed to save recipe {recipe_id}: {e}")
                return None, False

            await self._remember(recipe)
            self.logger.info(f"💾 Saved recipe {recipe_id}: {recipe.name}")
            return recipe, True

    async def fetch_and_cache(self, recipe_id: str, page: BrowserPage) -> Optional[RecipeMaster]:
        """Like ``resolve`` but returns only the recipe."""
        recipe, _ = await self.resolve(recipe_id, page)
        return recipe

    def clear_memory_cache(self) -> None:
        self.memory.clear()
        self._locks.clear()
        self.logger.info("🗑️  Cleared recipe memory cache")

    async def get_recipe_count(self) -> int:
        return await self.store.count(RECIPE_MASTERS)
