"""
Plan Validator Module

Checks a normalized :class:`ExecutionPlan` independently of the reasoning
output's good faith:

    (a) at least one step
    (b) every tool is one of the known tools
    (c) dependsOn entries name existing, strictly earlier steps
    (d) toolInput is an object
    (e) tool-specific required inputs are present and well formed
    (f) filters pass schema registry validation

plus unique stepNumbers / outputVariables and references to variables that an
earlier step produces.  Messages are prefixed with ``Step N:``.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Set

from agents.query_planner import config
from agents.query_planner.schemas import ExecutionPlan, PlanStep, PlanValidationReport
from agents.tools.base import ToolKind
from agents.tools.registry import parse_tool_kind
from agents.tools.scoped_aggregate import forbidden_stages
from core.errors import JsonPathError
from core.json_path import compile_path
from core.schema_registry import SchemaRegistry
from core.variables import StepOutputRef

logger = logging.getLogger(__name__)

_MISSING = object()


def _first(inp: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in inp:
            return inp[key]
    return _MISSING


def _blank(value: Any) -> bool:
    return value is _MISSING or value is None or value == ""


class PlanValidator:
    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    def validate(self, plan: ExecutionPlan) -> PlanValidationReport:
        report = PlanValidationReport(valid=True)
        if not plan.steps:
            report.error(None, "Plan has no steps")
            return report

        numbers = [s.step_number for s in plan.steps]
        seen_numbers: Set[int] = set()
        seen_outputs: Set[str] = set()
        produced: Set[str] = set()

        for step in plan.steps:
            n = step.step_number
            if n < 1:
                report.error(n, "stepNumber must be a positive integer")
            if n in seen_numbers:
                report.error(n, "duplicate stepNumber")
            seen_numbers.add(n)
            if step.output_variable in seen_outputs:
                report.error(n, f"duplicate outputVariable '{step.output_variable}'")
            seen_outputs.add(step.output_variable)

            self._check_dependencies(step, numbers, report)

            kind = parse_tool_kind(step.tool)
            if not step.tool:
                report.error(n, "missing tool")
            elif kind is None:
                report.error(n, f"Unknown tool '{step.tool}'")

            if not isinstance(step.tool_input, Mapping):
                report.error(n, "toolInput must be an object")
            elif kind is not None:
                self._check_tool_input(n, kind, step.tool_input, report)

            for variable in step.reads:
                if variable not in produced:
                    report.warn(n, f"references variable '{variable}' that no earlier step produces")
            produced.add(step.output_variable)

        if report.errors:
            logger.warning(f"❌ Plan validation failed: {report.errors}")
        return report

    @staticmethod
    def _check_dependencies(step: PlanStep, numbers: Sequence[int], report: PlanValidationReport) -> None:
        n = step.step_number
        for dep in step.depends_on:
            if dep not in numbers:
                report.error(n, f"dependsOn references unknown step {dep}")
            elif dep >= n:
                report.error(n, f"dependsOn must reference an earlier step (got {dep})")

    def _check_collection(self, n: int, tool: str, inp: Mapping[str, Any], report: PlanValidationReport) -> Optional[str]:
        collection = _first(inp, config.COLLECTION_KEYS)
        if _blank(collection):
            report.error(n, f"{tool} requires 'collection'")
            return None
        if not isinstance(collection, str) or not self.registry.has_collection(collection):
            report.error(n, f"Unknown collection: {collection}")
            return None
        return collection

    def _check_tool_input(self, n: int, kind: ToolKind, inp: Mapping[str, Any], report: PlanValidationReport) -> None:
        tool = kind.value
        if kind is ToolKind.SCOPED_FIND:
            collection = self._check_collection(n, tool, inp, report)
            flt = _first(inp, config.FILTER_KEYS)
            if flt is _MISSING or flt is None:
                return
            if not isinstance(flt, Mapping):
                report.error(n, "filter must be an object")
            elif collection is not None:
                result = self.registry.validate_filter(collection, flt)
                for message in result.errors:
                    report.error(n, message)
                for message in result.warnings:
                    report.warn(n, message)

        elif kind is ToolKind.SCOPED_AGGREGATE:
            self._check_collection(n, tool, inp, report)
            pipeline = _first(inp, config.PIPELINE_KEYS)
            if not isinstance(pipeline, list):
                report.error(n, f"{tool} requires 'pipeline' to be a list")
                return
            bad = forbidden_stages(pipeline)
            if bad:
                report.error(n, f"forbidden aggregation stage(s): {', '.join(bad)}")

        elif kind is ToolKind.EXTRACT_PATH:
            if _blank(_first(inp, config.ENTITY_ID_KEYS)):
                report.error(n, f"{tool} requires 'entityId'")
            path = _first(inp, config.PATH_KEYS)
            if _blank(path):
                report.error(n, f"{tool} requires 'path'")
            elif isinstance(path, str):
                try:
                    compile_path(path)
                except JsonPathError as e:
                    report.error(n, e.message)

        elif kind is ToolKind.MULTI_SOURCE:
            entity_kind = _first(inp, config.ENTITY_KIND_KEYS)
            if entity_kind not in config.ENTITY_KINDS:
                report.error(n, f"{tool} requires entityKind in {{company, employee}}")
            if _blank(_first(inp, config.ENTITY_ID_KEYS)):
                report.error(n, f"{tool} requires 'entityId'")
            fields = _first(inp, config.FIELDS_KEYS)
            if isinstance(fields, StepOutputRef):
                return
            if not isinstance(fields, list) or not fields:
                report.error(n, f"{tool} requires non-empty 'fields'")
