"""Scoped Aggregate: run a caller pipeline behind a scope ``$match`` stage."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import Field

from agents.tools.base import DataTool, StepResult, ToolInput, ToolKind
from core.errors import ValidationError

logger = logging.getLogger(__name__)

# Stages that read other collections or write
FORBIDDEN_STAGES = ("$lookup", "$graphLookup", "$unionWith", "$out", "$merge")
# Stages after which documents no longer have the collection's shape
_RESHAPING_STAGES = ("$group", "$project", "$unwind", "$count", "$addFields", "$set")


class ScopedAggregateInput(ToolInput):
    collection: str
    pipeline: List[Dict[str, Any]]
    options: Dict[str, Any] = Field(default_factory=dict)


def forbidden_stages(pipeline: Any) -> List[str]:
    if not isinstance(pipeline, list):
        return []
    found = []
    for stage in pipeline:
        if isinstance(stage, dict):
            found.extend(name for name in stage if name in FORBIDDEN_STAGES)
    return found


class ScopedAggregateTool(DataTool):
    kind = ToolKind.SCOPED_AGGREGATE
    description = (
        "Run an aggregation pipeline ($match, $group, $sort, $project, $unwind, "
        "$limit, ...) on one collection. Cross-collection and write stages are rejected."
    )
    input_model = ScopedAggregateInput

    async def run(self, raw_input: Any) -> StepResult:
        params: ScopedAggregateInput = self.parse_input(raw_input)
        collection = params.collection
        self.require_collection(collection)

        bad = forbidden_stages(params.pipeline)
        if bad:
            raise ValidationError(f"Forbidden aggregation stage(s): {', '.join(bad)}")

        warnings: List[str] = []
        for stage in params.pipeline:
            if any(name in _RESHAPING_STAGES for name in stage):
                break
            if "$match" in stage:
                validation = self.registry.validate_filter(collection, stage["$match"])
                if not validation.valid:
                    raise ValidationError("; ".join(validation.errors))
                warnings.extend(validation.warnings)

        pipeline = [{"$match": self.scope.filter_for(collection)}] + list(params.pipeline)
        if params.options:
            logger.debug(f"Aggregation options ignored by this datastore: {params.options}")
        rows = await self.datastore.aggregate(collection, pipeline)
        logger.info(f"📊 scoped_aggregate {collection}: {len(rows)} rows")
        return StepResult(success=True, data=rows, count=len(rows), warnings=warnings)
