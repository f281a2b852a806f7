import asyncio
from types import SimpleNamespace

import pytest
from pymongo.errors import BulkWriteError, ServerSelectionTimeoutError

from utils.exceptions import StorageException
from utils.mongodb_store import MENU_ITEMS, RECIPE_MASTERS, UNIQUE_KEYS, WEEKLY_MENUS, MongoDBStore, _upsert_update


class FakeCollection:
    def __init__(self, bulk_error=None, failure=None):
        self.bulk_error = bulk_error
        self.failure = failure
        self.indexes = []
        self.operations = []
        self.updates = []

    async def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))

    async def update_one(self, filter_, update, upsert=False):
        if self.failure:
            raise self.failure
        self.updates.append((filter_, update, upsert))
        return SimpleNamespace(upserted_id="abc" if len(self.updates) == 1 else None)

    async def bulk_write(self, operations, ordered=True):
        self.operations = list(operations)
        if self.bulk_error:
            raise self.bulk_error
        if self.failure:
            raise self.failure
        return SimpleNamespace(upserted_count=2, matched_count=1, modified_count=1)

    async def find_one(self, filter_):
        if self.failure:
            raise self.failure
        return None

    async def count_documents(self, filter_):
        return 0


class FakeDatabase(dict):
    def __missing__(self, name):
        collection = self[name] = FakeCollection()
        return collection


class FakeClient:
    def __init__(self, collection):
        self.db = FakeDatabase({MENU_ITEMS: collection, RECIPE_MASTERS: collection})
        self.closed = False

    def __getitem__(self, name):
        return self.db

    async def close(self):
        self.closed = True


def _store(collection=None):
    collection = collection or FakeCollection()
    client = FakeClient(collection)
    return MongoDBStore(client=client, show_progress=False), collection, client


def test_upsert_update_keeps_created_at_on_insert_only():
    update = _upsert_update({"_id": 1, "name": "Soup", "created_at": "old"})

    assert update["$set"] == {"name": "Soup"}
    assert "created_at" in update["$setOnInsert"]


def test_upsert_reports_creation():
    store, collection, _ = _store()

    async def scenario():
        first = await store.upsert(RECIPE_MASTERS, {"recipe_id": "1"}, {"recipe_id": "1", "name": "Soup"})
        second = await store.upsert(RECIPE_MASTERS, {"recipe_id": "1"}, {"recipe_id": "1", "name": "Soup"})
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert all(upsert for _, _, upsert in collection.updates)


def test_bulk_upsert_counts():
    store, collection, _ = _store()
    pairs = [({"name": str(n)}, {"name": str(n)}) for n in range(3)]

    stats = asyncio.run(store.bulk_upsert(MENU_ITEMS, pairs))

    assert stats == {"upserted": 2, "matched": 1, "modified": 1, "errors": 0}
    assert len(collection.operations) == 3


def test_bulk_upsert_empty_batch_is_a_no_op():
    store, collection, _ = _store()

    assert asyncio.run(store.bulk_upsert(MENU_ITEMS, []))["upserted"] == 0
    assert collection.operations == []


def test_bulk_write_error_is_reported_in_stats():
    error = BulkWriteError({
        "nUpserted": 1,
        "nMatched": 0,
        "nModified": 0,
        "writeErrors": [{"index": 1, "code": 11000, "errmsg": "duplicate key"}],
    })
    store, _, _ = _store(FakeCollection(bulk_error=error))

    stats = asyncio.run(store.bulk_upsert(MENU_ITEMS, [({"name": "a"}, {"name": "a"}), ({"name": "a"}, {"name": "a"})]))

    assert stats == {"upserted": 1, "matched": 0, "modified": 0, "errors": 1}


def test_connection_errors_become_storage_exceptions():
    store, _, _ = _store(FakeCollection(failure=ServerSelectionTimeoutError("no servers")))

    with pytest.raises(StorageException):
        asyncio.run(store.find_one(RECIPE_MASTERS, {"recipe_id": "1"}))
    with pytest.raises(StorageException):
        asyncio.run(store.bulk_upsert(MENU_ITEMS, [({"name": "a"}, {"name": "a"})]))


def test_ensure_indexes_and_close():
    store, collection, client = _store()

    async def scenario():
        await store.ensure_indexes()
        await store.close()

    asyncio.run(scenario())

    assert set(client.db) == set(UNIQUE_KEYS)
    assert all(unique for _, unique in collection.indexes)
    assert client.db[WEEKLY_MENUS].indexes == [(UNIQUE_KEYS[WEEKLY_MENUS], True)]
    assert client.closed
