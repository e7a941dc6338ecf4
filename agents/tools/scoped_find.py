"""
Scoped Find

Scoped read of one collection with per-field fallback augmentation: any
declared fallback field that is missing or empty on a returned record is
filled from the first secondary source holding a value, and the origin
collection is recorded as provenance.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, List, Optional, Set, Tuple

from pydantic import AliasChoices, Field

from agents.tools.base import DataTool, StepResult, ToolInput, ToolKind, extract_value, is_empty
from core.errors import ValidationError
from core.filters import get_value
from core.schema_registry import FallbackSource, FieldDefinition
from services.aggregation import is_inclusion_projection

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
SOURCES_KEY = "_sources"


class ScopedFindInput(ToolInput):
    collection: str
    filter: Dict[str, Any] = Field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None
    related_fields: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("relatedFields", "populate", "related_fields"),
    )
    limit: Optional[int] = Field(default=None, ge=1)
    sort: Optional[Dict[str, Any]] = None
    enable_fallback: bool = Field(
        default=True, validation_alias=AliasChoices("enableFallback", "enable_fallback")
    )


def _key(value: Any) -> Hashable:
    return value if isinstance(value, Hashable) else repr(value)


class ScopedFindTool(DataTool):
    kind = ToolKind.SCOPED_FIND
    description = (
        "Find records in one collection with a filter. Missing fields that "
        "declare fallback sources are filled from enrichments/intelligence "
        "and tagged in `sources`."
    )
    input_model = ScopedFindInput

    async def run(self, raw_input: Any) -> StepResult:
        params: ScopedFindInput = self.parse_input(raw_input)
        collection = params.collection
        self.require_collection(collection)

        validation = self.registry.validate_filter(collection, params.filter)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors))
        warnings = list(validation.warnings)

        targets = self._fallback_targets(collection, params.projection) if params.enable_fallback else []
        projection, helper_fields = self._read_projection(params.projection, targets)

        limit = min(params.limit or DEFAULT_LIMIT, MAX_LIMIT)
        effective = self.scope.scoped(collection, params.filter)
        docs = await self.datastore.find(
            collection, effective, projection=projection, sort=params.sort, limit=limit
        )
        logger.info(f"🔎 scoped_find {collection}: {len(docs)} records")

        sources: Dict[str, str] = {}
        if targets and docs:
            sources = await self._apply_fallbacks(docs, targets)
        for doc in docs:
            for name in helper_fields:
                doc.pop(name, None)

        if params.related_fields and docs:
            await self._expand_related(collection, docs, params.related_fields, warnings)

        return StepResult(success=True, data=docs, count=len(docs), sources=sources, warnings=warnings)

    # ------------------------------------------------------------------
    # Fallback augmentation
    # ------------------------------------------------------------------
    def _fallback_targets(self, collection: str, projection: Optional[Dict[str, Any]]) -> List[FieldDefinition]:
        schema = self.registry.get_collection(collection)
        fields = schema.fallback_fields() if schema else []
        if is_inclusion_projection(projection):
            wanted = {p.split(".", 1)[0] for p, v in projection.items() if v not in (0, False)}
            return [f for f in fields if f.name in wanted]
        if projection:
            excluded = {p for p, v in projection.items() if v in (0, False)}
            return [f for f in fields if f.name not in excluded]
        return fields

    @staticmethod
    def _read_projection(
        projection: Optional[Dict[str, Any]], targets: List[FieldDefinition]
    ) -> Tuple[Optional[Dict[str, Any]], Set[str]]:
        """Add link fields the fallbacks need to an inclusion projection."""
        if not is_inclusion_projection(projection):
            return projection, set()
        read = dict(projection)
        helpers: Set[str] = set()
        for fdef in targets:
            for src in fdef.fallback:
                if src.local_field not in read and src.local_field != "_id":
                    read[src.local_field] = 1
                    helpers.add(src.local_field)
                elif src.local_field == "_id" and read.get("_id", 1) in (0, False):
                    read["_id"] = 1
                    helpers.add("_id")
        return read, helpers

    async def _secondary_index(
        self,
        src: FallbackSource,
        docs: List[Dict[str, Any]],
        cache: Dict[Tuple[str, str, str], Dict[Hashable, List[Dict[str, Any]]]],
    ) -> Dict[Hashable, List[Dict[str, Any]]]:
        cache_key = (src.collection, src.local_field, src.foreign_field)
        if cache_key in cache:
            return cache[cache_key]

        links = []
        for doc in docs:
            link = get_value(doc, src.local_field)
            if link is not None and link not in links:
                links.append(link)

        index: Dict[Hashable, List[Dict[str, Any]]] = {}
        if links:
            secondary = await self.datastore.find(
                src.collection, self.scope.scoped(src.collection, {src.foreign_field: {"$in": links}})
            )
            for sdoc in secondary:
                index.setdefault(_key(get_value(sdoc, src.foreign_field)), []).append(sdoc)
        cache[cache_key] = index
        return index

    async def _apply_fallbacks(
        self, docs: List[Dict[str, Any]], targets: List[FieldDefinition]
    ) -> Dict[str, str]:
        sources: Dict[str, str] = {}
        cache: Dict[Tuple[str, str, str], Dict[Hashable, List[Dict[str, Any]]]] = {}
        filled = 0

        for fdef in targets:
            for doc in docs:
                if not is_empty(doc.get(fdef.name)):
                    continue
                for src in fdef.fallback:
                    index = await self._secondary_index(src, docs, cache)
                    link = get_value(doc, src.local_field)
                    value = None
                    for sdoc in index.get(_key(link), []) if link is not None else []:
                        value = extract_value(sdoc, src.path, fdef.type)
                        if not is_empty(value):
                            break
                    if not is_empty(value):
                        doc[fdef.name] = value
                        doc.setdefault(SOURCES_KEY, {})[fdef.name] = src.collection
                        sources.setdefault(fdef.name, src.collection)
                        filled += 1
                        break

        if filled:
            logger.info(f"🧩 Filled {filled} field values from fallback sources: {sources}")
        return sources

    # ------------------------------------------------------------------
    # Reference expansion
    # ------------------------------------------------------------------
    async def _expand_related(
        self, collection: str, docs: List[Dict[str, Any]], related: List[str], warnings: List[str]
    ) -> None:
        for name in related:
            fdef = self.registry.get_field(collection, name)
            if fdef is None or not fdef.ref:
                warnings.append(f"Cannot expand '{name}': not a reference field of {collection}")
                continue
            ids = []
            for doc in docs:
                value = doc.get(name)
                if value is not None and value not in ids:
                    ids.append(value)
            if not ids:
                continue
            referenced = await self.datastore.find(
                fdef.ref, self.scope.scoped(fdef.ref, {"_id": {"$in": ids}})
            )
            by_id = {_key(r.get("_id")): r for r in referenced}
            for doc in docs:
                match = by_id.get(_key(doc.get(name)))
                if match is not None:
                    doc[name] = match
