from __future__ import annotations

import os
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

# Must be set before utils.rate_limit is imported by the app
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SAVE_AT_FRONT"] = "true"


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        if isinstance(expected, dict) and "$in" in expected:
            if doc.get(key) not in expected["$in"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, key, direction):
        self._docs.sort(key=lambda d: d.get(key) or "", reverse=direction == -1)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return dict(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Just enough of AsyncIOMotorCollection for the expense service."""

    def __init__(self, name: str = "expenses"):
        self.name = name
        self.docs: list[dict] = []
        self.fail_with: str | None = None

    def _check(self):
        if self.fail_with:
            raise PyMongoError(self.fail_with)

    def find(self, query=None):
        self._check()
        return FakeCursor(d for d in self.docs if _matches(d, query or {}))

    async def insert_one(self, doc):
        self._check()
        doc.setdefault("_id", ObjectId())
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one_and_update(self, query, update, return_document=None):
        self._check()
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update["$set"])
                return dict(doc)
        return None

    async def delete_one(self, query):
        self._check()
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


@pytest.fixture
def collection():
    return FakeCollection()
