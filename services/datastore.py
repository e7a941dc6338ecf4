"""
Datastore boundary.

:class:`Datastore` is the async contract the data access tools read through.
Filters arrive as Mongo-shaped mappings or as a parsed
:class:`core.filters.FilterExpr`.  :class:`InMemoryDatastore` evaluates them
directly and backs the CLI, the tests and local demos.
"""
from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from core.filters import FilterExpr, matches, parse_filter
from services.aggregation import SortSpec, apply_projection, run_pipeline, sort_documents

logger = logging.getLogger(__name__)

FilterLike = Union[Mapping[str, Any], FilterExpr, None]


class Datastore(ABC):
    """Read-only async access to named collections."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: FilterLike = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: SortSpec = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(
        self,
        collection: str,
        filter: FilterLike = None,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        docs = await self.find(collection, filter, projection=projection, limit=1)
        return docs[0] if docs else None

    async def count(self, collection: str, filter: FilterLike = None) -> int:
        return len(await self.find(collection, filter, projection={"_id": 1}))


class InMemoryDatastore(Datastore):
    """Dictionary-of-lists datastore evaluating filters via the filter AST."""

    def __init__(self, collections: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None):
        self._collections: Dict[str, List[Dict[str, Any]]] = {}
        for name, docs in (collections or {}).items():
            self.insert_many(name, docs)

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryDatastore":
        """Load ``{"collection": [doc, ...], ...}`` from a JSON fixture."""
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        store = cls(raw)
        logger.info(
            f"📦 Loaded dataset {path}: "
            + ", ".join(f"{k}={len(v)}" for k, v in store._collections.items())
        )
        return store

    def insert_many(self, collection: str, docs: Iterable[Mapping[str, Any]]) -> None:
        self._collections.setdefault(collection, []).extend(copy.deepcopy(dict(d)) for d in docs)

    def _docs(self, collection: str) -> List[Dict[str, Any]]:
        return self._collections.get(collection, [])

    async def find(
        self,
        collection: str,
        filter: FilterLike = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: SortSpec = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Dict[str, Any]]:
        expr = parse_filter(filter)
        docs = [d for d in self._docs(collection) if matches(expr, d)]
        if sort:
            docs = sort_documents(docs, sort)
        if skip:
            docs = docs[skip:]
        if limit is not None and limit > 0:
            docs = docs[:limit]
        return [apply_projection(copy.deepcopy(d), projection) for d in docs]

    async def aggregate(self, collection: str, pipeline: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return run_pipeline(copy.deepcopy(self._docs(collection)), pipeline)
