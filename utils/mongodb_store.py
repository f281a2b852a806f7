"""
MongoDB document store for menu items, recipe masters and weekly templates.

Every write is an upsert on the record's natural key, so re-running a scrape
overwrites rather than duplicates.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, AsyncMongoClient, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError
from tqdm import tqdm

from utils.exceptions import StorageException

logger = logging.getLogger(__name__)

MENU_ITEMS = "menu_items"
RECIPE_MASTERS = "recipe_masters"
WEEKLY_MENUS = "weekly_menus"

# collection -> unique natural key
UNIQUE_KEYS = {
    MENU_ITEMS: [("name", ASCENDING), ("restaurant", ASCENDING), ("date", ASCENDING)],
    RECIPE_MASTERS: [("recipe_id", ASCENDING)],
    WEEKLY_MENUS: [("restaurant", ASCENDING), ("day_of_week", ASCENDING)],
}

# Batches smaller than this are prepared without a progress bar
PROGRESS_THRESHOLD = 50


def _upsert_update(document: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in document.items() if k not in ('_id', 'created_at')}
    return {'$set': fields, '$setOnInsert': {'created_at': datetime.now(timezone.utc)}}


class MongoDBStore:
    """Async MongoDB access with upsert-only writes."""

    def __init__(
        self,
        connection_string: str = "mongodb://localhost:27017",
        database_name: str = "nutri_bruin",
        client: Optional[Any] = None,
        show_progress: bool = True
    ):
        """
        Initialize MongoDB store.

        Args:
            connection_string: MongoDB connection string
            database_name: Database name (default: nutri_bruin)
            client: Pre-built AsyncMongoClient (overrides connection_string)
            show_progress: Show tqdm bars while preparing large batches
        """
        self.client = client if client is not None else AsyncMongoClient(connection_string)
        self.db = self.client[database_name]
        self.show_progress = show_progress
        logger.info(f"Connected to MongoDB database: {database_name}")

    async def ensure_indexes(self) -> None:
        """Create the unique natural-key indexes."""
        for collection, keys in UNIQUE_KEYS.items():
            await self.db[collection].create_index(keys, unique=True)
        logger.info("MongoDB indexes ensured")

    async def find_one(self, collection: str, filter_: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return await self.db[collection].find_one(filter_)
        except PyMongoError as e:
            raise StorageException(f"find_one on {collection} failed: {e}") from e

    async def count(self, collection: str, filter_: Optional[Dict[str, Any]] = None) -> int:
        try:
            return await self.db[collection].count_documents(filter_ or {})
        except PyMongoError as e:
            raise StorageException(f"count on {collection} failed: {e}") from e

    async def upsert(self, collection: str, filter_: Dict[str, Any], document: Dict[str, Any]) -> bool:
        """
        Insert or overwrite one document.

        Returns:
            True when a new document was created
        """
        try:
            result = await self.db[collection].update_one(
                filter_, _upsert_update(document), upsert=True
            )
        except PyMongoError as e:
            raise StorageException(f"upsert on {collection} failed: {e}") from e
        return result.upserted_id is not None

    async def bulk_upsert(
        self,
        collection: str,
        pairs: Sequence[Tuple[Dict[str, Any], Dict[str, Any]]]
    ) -> Dict[str, int]:
        """
        Upsert many (filter, document) pairs in one unordered bulk write.

        Args:
            collection: Target collection name
            pairs: (natural-key filter, document) tuples

        Returns:
            Statistics dict with upserted/matched/modified/errors counts
        """
        if not pairs:
            return {'upserted': 0, 'matched': 0, 'modified': 0, 'errors': 0}

        operations: List[UpdateOne] = []
        disable = not self.show_progress or len(pairs) < PROGRESS_THRESHOLD
        for filter_, document in tqdm(pairs, desc=f"Preparing {collection}", disable=disable):
            operations.append(UpdateOne(filter_, _upsert_update(document), upsert=True))

        logger.info(f"Upserting {len(operations)} documents into {collection}...")
        try:
            result = await self.db[collection].bulk_write(operations, ordered=False)
            stats = {
                'upserted': result.upserted_count,
                'matched': result.matched_count,
                'modified': result.modified_count,
                'errors': 0
            }
            logger.info(f"{collection} upsert complete: {stats}")
            return stats
        except BulkWriteError as e:
            logger.error(f"Bulk write error: {e.details}")
            return {
                'upserted': e.details.get('nUpserted', 0),
                'matched': e.details.get('nMatched', 0),
                'modified': e.details.get('nModified', 0),
                'errors': len(e.details.get('writeErrors', []))
            }
        except PyMongoError as e:
            raise StorageException(f"bulk upsert on {collection} failed: {e}") from e

    async def close(self) -> None:
        """Close MongoDB connection."""
        await self.client.close()
        logger.info("MongoDB connection closed")
