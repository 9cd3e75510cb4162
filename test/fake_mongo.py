# kitchen_cost_engine/test/fake_mongo.py
"""
In-process stand-in for the few pymongo calls the repositories make.

Stored datetimes are cut to milliseconds and handed back naive, as BSON
and the driver do.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence, Tuple


def _to_bson(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.replace(microsecond=value.microsecond // 1000 * 1000)
    return value


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$gte" in cond and value < _to_bson(cond["$gte"]):
                return False
            if "$lte" in cond and value > _to_bson(cond["$lte"]):
                return False
        elif isinstance(value, list):
            if cond not in value:
                return False
        elif value != _to_bson(cond):
            return False
    return True


def _sorted(docs: List[Dict[str, Any]], keys: Sequence[Tuple[str, int]]) -> List[Dict[str, Any]]:
    out = list(docs)
    # stable multi-key sort: least significant key first
    for field, direction in reversed(list(keys)):
        out.sort(key=lambda d: d.get(field), reverse=direction < 0)
    return out


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, keys: Sequence[Tuple[str, int]]) -> "FakeCursor":
        return FakeCursor(_sorted(self._docs, keys))

    def __iter__(self):
        return iter([dict(d) for d in self._docs])


class FakeCollection:
    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []

    def create_index(self, keys: Any, **kwargs: Any) -> str:
        return "fake_index"

    def insert_one(self, doc: Dict[str, Any]) -> None:
        self.docs.append({k: _to_bson(v) for k, v in doc.items()})

    def find(self, query: Optional[Dict[str, Any]] = None) -> FakeCursor:
        return FakeCursor([d for d in self.docs if _matches(d, query or {})])

    def find_one(self, query: Dict[str, Any], sort: Optional[Sequence[Tuple[str, int]]] = None) -> Optional[Dict[str, Any]]:
        docs = [d for d in self.docs if _matches(d, query)]
        if sort:
            docs = _sorted(docs, sort)
        return dict(docs[0]) if docs else None

    def replace_one(self, query: Dict[str, Any], doc: Dict[str, Any], upsert: bool = False) -> None:
        self.docs = [d for d in self.docs if not _matches(d, query)]
        self.insert_one(doc)

    def delete_one(self, query: Dict[str, Any]) -> SimpleNamespace:
        before = len(self.docs)
        for i, d in enumerate(self.docs):
            if _matches(d, query):
                del self.docs[i]
                break
        return SimpleNamespace(deleted_count=before - len(self.docs))

    def find_one_and_update(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False, **kwargs: Any):
        found = self.find_one(query)
        if found is not None:
            return found
        self.insert_one({**update.get("$setOnInsert", {}), **query})
        return self.find_one(query)


class FakeDatabase:
    def __init__(self) -> None:
        self._cols: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self._cols.setdefault(name, FakeCollection())


class FakeClient:
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dbs: Dict[str, FakeDatabase] = {}

    def __getitem__(self, name: str) -> FakeDatabase:
        return self._dbs.setdefault(name, FakeDatabase())

    def close(self) -> None:
        pass
