"""
Multi-Source Cascade

Resolves a list of fields for one company or employee by walking a fixed
priority order and stopping at the first source holding a value:

    company:  company record -> registry fallbacks (enrichment paths,
              intelligence overview) -> raw enrichment ``data.<field>``
              -> company intelligence document
    employee: employee record -> registry fallbacks (persona overview)
              -> persona intelligence document -> the company cascade
              for the employee's company
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import AliasChoices, Field

from agents.tools.base import DataTool, StepResult, ToolInput, ToolKind, extract_value, is_empty
from core.errors import NotFoundError, ValidationError
from core.filters import get_value
from core.json_path import first_value

logger = logging.getLogger(__name__)

PRIMARY_COLLECTION = {"company": "companies", "employee": "employees"}
INTELLIGENCE_COLLECTION = {"company": "gtm_intelligence", "employee": "gtm_persona_intelligence"}
INTELLIGENCE_LINK = {"company": "companyId", "employee": "employeeId"}
ENRICHMENT_COLLECTION = "enrichments"

FIELD_ALIASES = {
    "company": {
        "analysis": "gtmOverview",
        "overview": "gtmOverview",
        "headcount": "employeeCount",
        "employees": "employeeCount",
        "revenue": "annualRevenue",
        "funding": "totalFunding",
    },
    "employee": {
        "analysis": "personaOverview",
        "overview": "personaOverview",
        "jobTitle": "title",
    },
}

Resolution = Tuple[Any, Optional[str]]


class MultiSourceInput(ToolInput):
    entity_kind: Literal["company", "employee"] = Field(
        validation_alias=AliasChoices("entityKind", "entity", "entityType", "entity_kind")
    )
    entity_id: Any = Field(validation_alias=AliasChoices("entityId", "id", "entity_id"))
    fields: List[str] = Field(min_length=1)


class _Sources:
    """Secondary documents for one entity, fetched once per call."""

    def __init__(self, record: Optional[Dict[str, Any]], enrichments: List[Dict[str, Any]],
                 intelligence: Optional[Dict[str, Any]]):
        self.record = record
        self.enrichments = enrichments
        self.intelligence = intelligence


class MultiSourceTool(DataTool):
    kind = ToolKind.MULTI_SOURCE
    description = (
        "Resolve a list of fields for one company or employee, trying the primary "
        "record, then enrichment data, then intelligence write-ups. Returns "
        "values, per-field sources and a coverage ratio. Use 'analysis' for the "
        "intelligence overview."
    )
    input_model = MultiSourceInput

    async def run(self, raw_input: Any) -> StepResult:
        params: MultiSourceInput = self.parse_input(raw_input)
        kind = params.entity_kind
        entity_id = params.entity_id
        if isinstance(entity_id, list):
            if len(entity_id) != 1:
                raise ValidationError(f"multi_source needs a single entityId, got {len(entity_id)}")
            entity_id = entity_id[0]

        warnings: List[str] = []
        primary = await self._load(kind, entity_id)
        if primary.record is None:
            if kind == "employee":
                raise NotFoundError(f"Employee {entity_id} not found")
            warnings.append(f"Company {entity_id} not found; using fallback sources only")

        company: Optional[_Sources] = None
        if kind == "employee":
            company_id = primary.record.get("companyId")
            if company_id is not None:
                company = await self._load("company", company_id)

        result: Dict[str, Any] = {"_id": entity_id}
        sources: Dict[str, str] = {}
        unresolved: List[str] = []
        for requested in params.fields:
            value, origin = self._resolve(kind, requested, primary)
            if origin is None and company is not None:
                value, origin = self._resolve("company", requested, company)
            result[requested] = value
            if origin is None:
                unresolved.append(requested)
            else:
                sources[requested] = origin

        if unresolved:
            warnings.append(f"Unresolved fields: {', '.join(unresolved)}")
        coverage = (len(params.fields) - len(unresolved)) / len(params.fields)
        logger.info(f"🪜 multi_source {kind} {entity_id}: coverage {coverage:.0%}")
        return StepResult(
            success=True, data=result, count=1, sources=sources, warnings=warnings, coverage=coverage
        )

    async def _load(self, kind: str, entity_id: Any) -> _Sources:
        collection = PRIMARY_COLLECTION[kind]
        intel = INTELLIGENCE_COLLECTION[kind]

        record_task = self.datastore.find_one(collection, self.scope.scoped(collection, {"_id": entity_id}))
        intel_task = self.datastore.find_one(
            intel, self.scope.scoped(intel, {INTELLIGENCE_LINK[kind]: entity_id})
        )
        if kind == "company":
            enrich_task = self.datastore.find(
                ENRICHMENT_COLLECTION,
                self.scope.scoped(ENRICHMENT_COLLECTION, {"companyId": entity_id}),
            )
            record, intelligence, enrichments = await asyncio.gather(record_task, intel_task, enrich_task)
        else:
            record, intelligence = await asyncio.gather(record_task, intel_task)
            enrichments = []
        return _Sources(record, enrichments, intelligence)

    def _secondary_docs(self, collection: str, loaded: _Sources) -> List[Dict[str, Any]]:
        if collection == ENRICHMENT_COLLECTION:
            return loaded.enrichments
        if collection in INTELLIGENCE_COLLECTION.values() and loaded.intelligence:
            return [loaded.intelligence]
        return []

    def _resolve(self, kind: str, requested: str, loaded: _Sources) -> Resolution:
        name = FIELD_ALIASES[kind].get(requested, requested)
        collection = PRIMARY_COLLECTION[kind]

        if loaded.record is not None:
            value = get_value(loaded.record, name)
            if not is_empty(value):
                return value, collection

        fdef = self.registry.get_field(collection, name)
        field_type = fdef.type if fdef else None
        for src in self.registry.get_fallback_sources(collection, name):
            for doc in self._secondary_docs(src.collection, loaded):
                value = extract_value(doc, src.path, field_type)
                if not is_empty(value):
                    return value, src.collection

        for blob in loaded.enrichments:
            value = first_value(blob, f"$.data.{name}") if _simple_name(name) else None
            if not is_empty(value):
                return value, ENRICHMENT_COLLECTION

        if loaded.intelligence is not None:
            value = get_value(loaded.intelligence, name)
            if not is_empty(value):
                return value, INTELLIGENCE_COLLECTION[kind]

        return None, None


def _simple_name(name: str) -> bool:
    """Dotted field name that can be spliced into a JSONPath."""
    return all(
        part.isascii() and (part[:1].isalpha() or part[:1] == "_") and part.replace("_", "").replace("-", "").isalnum()
        for part in name.split(".")
    )
