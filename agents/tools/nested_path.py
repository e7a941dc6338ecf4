"""Nested-Path Extraction: evaluate a JSONPath-like expression on an enrichment blob."""
from __future__ import annotations

import logging
from typing import Any, List

from pydantic import AliasChoices, Field

from agents.tools.base import DataTool, StepResult, ToolInput, ToolKind
from core.errors import NotFoundError, ValidationError
from core.json_path import compile_path, evaluate

logger = logging.getLogger(__name__)

ENRICHMENT_COLLECTION = "enrichments"


class ExtractPathInput(ToolInput):
    entity_id: Any = Field(validation_alias=AliasChoices("entityId", "companyId", "entity_id"))
    path: str = Field(validation_alias=AliasChoices("path", "jsonPath", "json_path"))


class NestedPathTool(DataTool):
    kind = ToolKind.EXTRACT_PATH
    description = (
        "Extract values from a company's raw enrichment payload with a JSONPath "
        "expression such as $.data.funding_rounds[*].amount."
    )
    input_model = ExtractPathInput

    async def run(self, raw_input: Any) -> StepResult:
        params: ExtractPathInput = self.parse_input(raw_input)
        compile_path(params.path)

        entity_id = params.entity_id
        if isinstance(entity_id, list):
            if len(entity_id) != 1:
                raise ValidationError(
                    f"extract_path needs a single entityId, got {len(entity_id)}"
                )
            entity_id = entity_id[0]
        if entity_id is None or entity_id == "":
            raise ValidationError("extract_path requires entityId")

        blobs = await self.datastore.find(
            ENRICHMENT_COLLECTION,
            self.scope.scoped(ENRICHMENT_COLLECTION, {"companyId": entity_id}),
        )
        if not blobs:
            raise NotFoundError(f"No enrichment data found for entity {entity_id}")

        found: List[Any] = []
        for blob in blobs:
            found = evaluate(blob, params.path)
            if not found and isinstance(blob.get("data"), dict):
                found = evaluate(blob["data"], params.path)
            if found:
                break
        if not found:
            raise NotFoundError(f"Path '{params.path}' not found in enrichment data for entity {entity_id}")

        logger.info(f"🧬 extract_path {params.path} on {entity_id}: {len(found)} match(es)")
        return StepResult(
            success=True,
            data=found[0] if len(found) == 1 else found,
            count=len(found),
            sources={params.path: ENRICHMENT_COLLECTION},
        )
