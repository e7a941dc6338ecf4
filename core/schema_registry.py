"""
Schema Registry

Static declaration of the queryable collections, their fields and the ordered
fallback sources of each field.  Loaded once from ``schema_registry.yaml`` and
never mutated afterwards; every lookup is a pure function of the loaded data.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from core.errors import FilterSyntaxError
from core.filters import field_names, parse_filter

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).resolve().parent / "schema_registry.yaml"
_NESTED_TYPES = ("object", "array")


@dataclass(frozen=True)
class FallbackSource:
    collection: str
    path: str
    local_field: str = "_id"
    foreign_field: str = "companyId"


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: str
    items: Optional[str] = None
    stored: bool = True
    ref: Optional[str] = None
    fallback: Tuple[FallbackSource, ...] = ()


@dataclass(frozen=True)
class CollectionSchema:
    name: str
    fields: Mapping[str, FieldDefinition]
    text_search: Tuple[str, ...] = ()
    description: str = ""

    def fallback_fields(self) -> List[FieldDefinition]:
        return [f for f in self.fields.values() if f.fallback]


@dataclass
class FilterValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class SchemaRegistry:
    """Read-only lookup and validation service over collection schemas."""

    def __init__(self, collections: Mapping[str, CollectionSchema]):
        self._collections = MappingProxyType(dict(collections))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SchemaRegistry":
        collections: Dict[str, CollectionSchema] = {}
        for cname, cdef in (raw.get("collections") or {}).items():
            fields: Dict[str, FieldDefinition] = {}
            for fname, fdef in (cdef.get("fields") or {}).items():
                fdef = fdef or {}
                fallback = tuple(
                    FallbackSource(
                        collection=src["collection"],
                        path=src["path"],
                        local_field=src.get("localField", "_id"),
                        foreign_field=src.get("foreignField", "companyId"),
                    )
                    for src in fdef.get("fallback") or []
                )
                fields[fname] = FieldDefinition(
                    name=fname,
                    type=fdef.get("type", "string"),
                    items=fdef.get("items"),
                    stored=bool(fdef.get("stored", True)),
                    ref=fdef.get("ref"),
                    fallback=fallback,
                )
            collections[cname] = CollectionSchema(
                name=cname,
                fields=MappingProxyType(fields),
                text_search=tuple(cdef.get("textSearch") or ()),
                description=cdef.get("description", ""),
            )
        return cls(collections)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SchemaRegistry":
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        registry = cls.from_dict(raw)
        logger.info(f"Loaded schema registry with {len(registry.collections)} collections from {path}")
        return registry

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @property
    def collections(self) -> Tuple[str, ...]:
        return tuple(self._collections)

    def has_collection(self, collection: str) -> bool:
        return collection in self._collections

    def get_collection(self, collection: str) -> Optional[CollectionSchema]:
        return self._collections.get(collection)

    def get_field(self, collection: str, field_name: str) -> Optional[FieldDefinition]:
        schema = self._collections.get(collection)
        if schema is None:
            return None
        return schema.fields.get(field_name)

    def is_valid_field(self, collection: str, field_name: str) -> bool:
        """True when ``field_name`` (or the root of a dotted path into an
        object/array field) is stored on ``collection``."""
        root, _, rest = field_name.partition(".")
        definition = self.get_field(collection, root)
        if definition is None or not definition.stored:
            return False
        if rest and definition.type not in _NESTED_TYPES:
            return False
        return True

    def get_fallback_sources(self, collection: str, field_name: str) -> List[FallbackSource]:
        definition = self.get_field(collection, field_name)
        return list(definition.fallback) if definition else []

    def get_text_search_fields(self, collection: str) -> List[str]:
        schema = self._collections.get(collection)
        return list(schema.text_search) if schema else []

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_filter(self, collection: str, filter_expr: Any) -> FilterValidation:
        """Check every leaf field of ``filter_expr`` against ``collection``.

        Boolean combinators are transparent.  A field the collection does not
        store but that has fallback sources is a warning (the value may be
        filled after the read but cannot be matched by it); a field with no
        fallback is an error.
        """
        if collection not in self._collections:
            return FilterValidation(False, [f"Unknown collection: {collection}"])

        try:
            expr = parse_filter(filter_expr)
        except FilterSyntaxError as e:
            return FilterValidation(False, [e.message])

        report = FilterValidation(True)
        for name in field_names(expr):
            if self.is_valid_field(collection, name):
                continue
            fallback = self.get_fallback_sources(collection, name.split(".", 1)[0])
            if fallback:
                origins = ", ".join(dict.fromkeys(src.collection for src in fallback))
                report.warnings.append(f"Field '{name}' not in {collection} schema, but available in: {origins}")
            else:
                report.errors.append(f"Unknown field '{name}' in {collection}")

        report.valid = not report.errors
        return report

    # ------------------------------------------------------------------
    # Prompt support
    # ------------------------------------------------------------------
    def describe(self) -> str:
        """Compact schema text used in reasoning prompts."""
        lines: List[str] = []
        for schema in self._collections.values():
            lines.append(f"{schema.name}: {schema.description}".rstrip(": "))
            for fdef in schema.fields.values():
                type_text = f"{fdef.type}<{fdef.items}>" if fdef.items else fdef.type
                extras = []
                if fdef.ref:
                    extras.append(f"ref {fdef.ref}")
                if not fdef.stored:
                    extras.append("not stored")
                if fdef.fallback:
                    chain = " -> ".join(f"{s.collection}:{s.path}" for s in fdef.fallback)
                    extras.append(f"fallback {chain}")
                suffix = f" ({'; '.join(extras)})" if extras else ""
                lines.append(f"  - {fdef.name}: {type_text}{suffix}")
            text_fields = self.get_text_search_fields(schema.name)
            if text_fields:
                lines.append(f"  text search: {', '.join(text_fields)}")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def load_default_registry() -> SchemaRegistry:
    return SchemaRegistry.from_yaml(DEFAULT_REGISTRY_PATH)
