"""
Query Planner Agent Module

This module contains the QueryPlannerAgent that turns a question and its
classified intent into an :class:`ExecutionPlan` via the reasoning
capability, normalizes the raw plan (positional defaults, bound step-output
references) and validates it with :class:`PlanValidator`.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from agents.base import Agent
from agents.intent_classifier.schemas import Intent
from agents.query_planner import config
from agents.query_planner.schemas import ExecutionPlan, FallbackStrategy, PlanStep, PlanValidationReport
from agents.query_planner.validator import PlanValidator
from core.errors import PlanCreationError, ReasoningError
from core.schema_registry import SchemaRegistry
from core.variables import bind_references
from services.reasoning import ReasoningCapability

logger = logging.getLogger(__name__)


def _pick(step: Mapping[str, Any], keys, default: Any = None) -> Any:
    for key in keys:
        if key in step and step[key] is not None:
            return step[key]
    return default


def _step_ref(value: Any) -> Union[int, str]:
    """Coerce a dependsOn entry to a step number; anything else is kept as text."""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return text


class QueryPlannerAgent(Agent):
    """
    Converts a question + intent into a validated execution plan.

    Features:
    - Reasoning-backed plan generation with a timeout
    - Replanning feedback (previous validation errors or step failure)
    - Positional defaults for stepNumber / outputVariable / dependsOn
    - Typed step-output references bound once at normalization
    """

    def __init__(
        self,
        reasoning: ReasoningCapability,
        registry: SchemaRegistry,
        timeout_seconds: float = 45.0,
    ):
        super().__init__(reasoning, timeout_seconds)
        self.registry = registry
        self.validator = PlanValidator(registry)

    async def run(self, payload: str, context: Dict[str, Any]) -> ExecutionPlan:
        return await self.create_plan(
            payload,
            context["intent"],
            context.get("scope_summary", ""),
            context.get("feedback"),
        )

    async def create_plan(
        self,
        query: str,
        intent: Intent,
        scope_summary: str,
        feedback: Optional[Dict[str, Any]] = None,
    ) -> ExecutionPlan:
        """
        Create an execution plan for ``query``.

        Args:
            query: the user's question
            intent: classified intent
            scope_summary: text describing the request scope
            feedback: errors of the previous plan when replanning

        Returns:
            ExecutionPlan: normalized plan (not yet validated)

        Raises:
            PlanCreationError: reasoning failed, timed out or returned an unusable plan
        """
        logger.info(f"🗺️ Creating plan (replan={feedback is not None}) for: {query}")
        try:
            raw = await self._bounded(
                self.reasoning.plan(query, intent.to_public(), scope_summary, feedback)
            )
        except asyncio.TimeoutError as e:
            raise PlanCreationError(f"Plan creation timed out after {self.timeout_seconds}s") from e
        except ReasoningError as e:
            raise PlanCreationError(f"Plan creation failed: {e.message}") from e
        except Exception as e:
            logger.exception(f"❌ Reasoning backend error while planning: {e}")
            raise PlanCreationError(f"Plan creation failed: {e}") from e

        plan = self.normalize(raw)
        logger.info(f"Plan has {len(plan.steps)} step(s): {[s.tool for s in plan.steps]}")
        return plan

    def validate_plan(self, plan: ExecutionPlan) -> PlanValidationReport:
        return self.validator.validate(plan)

    @staticmethod
    def normalize(raw: Any) -> ExecutionPlan:
        """Apply positional defaults and bind references in a raw plan."""
        if not isinstance(raw, dict):
            raise PlanCreationError("Plan must be a JSON object")
        if "steps" not in raw and isinstance(raw.get("plan"), dict):
            raw = raw["plan"]
        raw_steps = raw.get("steps")
        if not isinstance(raw_steps, list):
            raise PlanCreationError("Plan has no 'steps' list")

        steps: List[PlanStep] = []
        for index, step in enumerate(raw_steps):
            if not isinstance(step, dict):
                raise PlanCreationError(f"Step {index + 1} is not an object")

            number = _pick(step, config.STEP_NUMBER_KEYS, index + 1)
            depends = step.get("dependsOn")
            if depends is None:
                depends = []
            elif not isinstance(depends, list):
                depends = [depends]
            depends = [_step_ref(dep) for dep in depends]
            output = step.get("outputVariable")
            tool_input, reads = bind_references(_pick(step, config.TOOL_INPUT_KEYS))
            try:
                steps.append(PlanStep(
                    step_number=number,
                    tool=str(step.get("tool") or ""),
                    tool_input=tool_input,
                    description=str(step.get("description") or config.PLACEHOLDER_DESCRIPTION),
                    depends_on=depends,
                    output_variable=str(output) if output not in (None, "")
                    else config.OUTPUT_VARIABLE_TEMPLATE.format(n=number),
                    reads=reads,
                ))
            except PydanticValidationError as e:
                raise PlanCreationError(f"Step {index + 1} is malformed: {e.error_count()} invalid field(s)") from e

        steps.sort(key=lambda s: s.step_number)

        fallback = None
        if isinstance(raw.get("fallbackStrategy"), dict):
            try:
                fallback = FallbackStrategy.model_validate(raw["fallbackStrategy"])
            except PydanticValidationError:
                logger.warning("Ignoring malformed fallbackStrategy in plan")

        return ExecutionPlan(
            steps=steps,
            expected_output=str(raw.get("expectedOutput") or ""),
            requires_synthesis=bool(raw.get("requiresSynthesis", True)),
            fallback_strategy=fallback,
        )
