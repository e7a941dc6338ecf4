"""Execution engine for the agentic query pipeline.

This module defines the :class:`ExecutionEngine`, a state machine that wires
together the agents involved in answering an analytic question:

    intent classification → planning → plan validation → step execution
    (loop) → synthesis

Phases move along an explicit transition table keyed by ``(phase, route)``::

    CLASSIFY_INTENT --ok------> CREATE_PLAN
    CREATE_PLAN     --ok------> VALIDATE_PLAN      --error--> TERMINAL
    VALIDATE_PLAN   --ok------> EXECUTE_STEP
                    --retry---> CREATE_PLAN        --error--> TERMINAL
    EXECUTE_STEP    --continue> EXECUTE_STEP
                    --done----> SYNTHESIZE
                    --error---> HANDLE_ERROR
    HANDLE_ERROR    --retry---> EXECUTE_STEP
                    --replan--> CREATE_PLAN
                    --fail----> TERMINAL
    SYNTHESIZE      --ok/error> TERMINAL

A failed step increments ``step_retry_count`` and only a successful step
resets it, so the count keeps accumulating across replans.  The same step is
retried while the count is below ``max_step_retries``; the plan is rebuilt
while it is below ``max_step_failures`` (and the replan budget allows);
otherwise the run ends with the last step error.

Components (reasoning capability, datastore) can be swapped out by dotted
path in ``core/workflow.yaml``; see :func:`build_component`.
"""
from __future__ import annotations

import asyncio
import importlib
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from agents.intent_classifier.agent import IntentClassifierAgent
from agents.query_planner.agent import QueryPlannerAgent
from agents.query_planner.schemas import PlanStep
from agents.synthesis.agent import SynthesisAgent
from agents.tools.base import StepResult, ToolEnvironment
from agents.tools.registry import create_tool, parse_tool_kind
from core.config import EngineSettings
from core.context import GOVERNED_COLLECTIONS, ScopeContext
from core.errors import (
    AgenticQueryError,
    NotFoundError,
    PlanCreationError,
    PlanValidationError,
    StepExecutionError,
    SynthesisError,
    VariableResolutionError,
)
from core.schema_registry import SchemaRegistry, load_default_registry
from core.state import ExecutionState, Phase, QueryResult
from core.variables import resolve_value, to_jsonable
from services.datastore import Datastore
from services.reasoning import ReasoningCapability

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]

TRANSITIONS: Dict[tuple, Phase] = {
    (Phase.CLASSIFY_INTENT, "ok"): Phase.CREATE_PLAN,
    (Phase.CREATE_PLAN, "ok"): Phase.VALIDATE_PLAN,
    (Phase.CREATE_PLAN, "error"): Phase.TERMINAL,
    (Phase.VALIDATE_PLAN, "ok"): Phase.EXECUTE_STEP,
    (Phase.VALIDATE_PLAN, "retry"): Phase.CREATE_PLAN,
    (Phase.VALIDATE_PLAN, "error"): Phase.TERMINAL,
    (Phase.EXECUTE_STEP, "continue"): Phase.EXECUTE_STEP,
    (Phase.EXECUTE_STEP, "done"): Phase.SYNTHESIZE,
    (Phase.EXECUTE_STEP, "error"): Phase.HANDLE_ERROR,
    (Phase.HANDLE_ERROR, "retry"): Phase.EXECUTE_STEP,
    (Phase.HANDLE_ERROR, "replan"): Phase.CREATE_PLAN,
    (Phase.HANDLE_ERROR, "fail"): Phase.TERMINAL,
    (Phase.SYNTHESIZE, "ok"): Phase.TERMINAL,
    (Phase.SYNTHESIZE, "error"): Phase.TERMINAL,
}


def _import_from_path(path: str):
    """Import ``path`` of the form ``module.submodule:Class`` or
    ``module.submodule.Class`` and return the class."""
    if ":" in path:
        module_path, class_name = path.split(":", 1)
    else:
        module_path, class_name = path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def build_component(cfg: Mapping[str, Any], **extra: Any) -> Any:
    """Instantiate ``cfg["class"]`` with ``cfg["params"]``.

    ``cfg["factory"]`` names an alternative classmethod constructor.
    """
    cls = _import_from_path(cfg["class"])
    params = dict(cfg.get("params") or {})
    params.update(extra)
    factory = cfg.get("factory")
    if factory:
        return getattr(cls, factory)(**params)
    return cls(**params)


class ExecutionEngine:
    """Stateless engine; every call to :meth:`run` owns its own state."""

    def __init__(
        self,
        reasoning: ReasoningCapability,
        datastore: Datastore,
        registry: Optional[SchemaRegistry] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.reasoning = reasoning
        self.datastore = datastore
        self.registry = registry or load_default_registry()
        self.settings = settings or EngineSettings()

        timeout = self.settings.reasoning_timeout_seconds
        self.classifier = IntentClassifierAgent(reasoning, self.registry, timeout_seconds=timeout)
        self.planner = QueryPlannerAgent(reasoning, self.registry, timeout_seconds=timeout)
        self.synthesizer = SynthesisAgent(
            reasoning, timeout_seconds=timeout, max_records=self.settings.synthesis_max_records
        )
        self._handlers = {
            Phase.CLASSIFY_INTENT: self._classify_intent,
            Phase.CREATE_PLAN: self._create_plan,
            Phase.VALIDATE_PLAN: self._validate_plan,
            Phase.EXECUTE_STEP: self._execute_step,
            Phase.HANDLE_ERROR: self._handle_error,
            Phase.SYNTHESIZE: self._synthesize,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self, query: str, scope: ScopeContext, listener: Optional[Listener] = None) -> QueryResult:
        """Execute the pipeline for ``query`` within ``scope``.

        Parameters
        ----------
        query:
            Natural language analytic question.
        scope:
            Request scope; its predicates are applied to every data access.
        listener:
            Optional coroutine receiving ``(event, payload)`` for the
            ``start``, ``intent``, ``plan``, ``step``, ``answer``/``error``
            and ``done`` events.

        Returns
        -------
        QueryResult
            Successful answer, or the terminal error with partial results.
        """
        started = time.perf_counter()
        state = ExecutionState(query=query, scope=scope)
        logger.info(f"🚀 Query started: {query}")
        await self._emit(listener, "start", {"query": query})

        while state.phase is not Phase.TERMINAL:
            phase = state.phase
            route = await self._handlers[phase](state, listener)
            state.phase = TRANSITIONS[(phase, route)]
            logger.debug(f"{phase.value} --{route}--> {state.phase.value}")

        result = self._build_result(state, (time.perf_counter() - started) * 1000)
        if result.success:
            logger.info(f"✅ Query answered in {result.execution_time_ms:.0f}ms")
            await self._emit(listener, "answer", {"answer": result.answer})
        else:
            logger.error(f"❌ Query failed ({result.error_type}): {result.error}")
            await self._emit(listener, "error", {"error": result.error, "errorType": result.error_type})
        await self._emit(
            listener, "done",
            {"success": result.success, "executionTimeMs": result.execution_time_ms, "stats": result.stats},
        )
        return result

    async def run_tool(self, tool_name: str, tool_input: Any, scope: ScopeContext) -> StepResult:
        """Invoke one data access tool directly."""
        kind = parse_tool_kind(tool_name)
        if kind is None:
            raise NotFoundError(f"Unknown tool: {tool_name}")
        tool = create_tool(kind, ToolEnvironment(self.datastore, self.registry, scope))
        return await asyncio.wait_for(tool.run(tool_input), timeout=self.settings.step_timeout_seconds)

    async def data_stats(self, scope: ScopeContext) -> Dict[str, int]:
        """Number of documents the scope can see, per governed collection."""
        names = [c for c in GOVERNED_COLLECTIONS if self.registry.has_collection(c)]
        counts = await asyncio.gather(*(self.datastore.count(c, scope.filter_for(c)) for c in names))
        return dict(zip(names, counts))

    # ------------------------------------------------------------------
    # Phase handlers
    # ------------------------------------------------------------------
    async def _classify_intent(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        state.intent = await self.classifier.classify(state.query, state.scope.summary())
        if state.intent.degraded:
            state.add_warning(f"Intent classification degraded: {state.intent.reasoning}")
        await self._emit(listener, "intent", {"intent": state.intent.to_public()})
        return "ok"

    async def _create_plan(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        try:
            plan = await self.planner.create_plan(
                state.query, state.intent, state.scope.summary(), state.feedback
            )
        except PlanCreationError as e:
            state.fail(e)
            return "error"
        state.plan = plan
        state.plan_version += 1
        state.current_step_index = 0
        state.results_by_variable = {}
        state.feedback = None
        return "ok"

    async def _validate_plan(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        report = self.planner.validate_plan(state.plan)
        if report.valid:
            for warning in report.warnings:
                state.add_warning(warning)
            await self._emit(listener, "plan", {"plan": state.plan.to_public(), "version": state.plan_version})
            return "ok"

        err = PlanValidationError(report.errors, report.warnings)
        if state.replan_count < self.settings.max_plan_replans:
            state.replan_count += 1
            state.total_replan_count += 1
            state.last_error = err
            state.feedback = {
                "reason": "plan_validation",
                "errors": report.errors,
                "previousPlan": state.plan.to_public(),
            }
            logger.warning(f"🔁 Replanning after validation failure ({state.replan_count}/"
                           f"{self.settings.max_plan_replans})")
            return "retry"
        state.fail(err)
        return "error"

    async def _execute_step(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        step = state.current_step
        if step is None:
            return "done"

        state.total_step_attempts += 1
        attempt = state.step_retry_count + 1
        logger.info(f"▶️ Step {step.step_number} ({step.tool}) attempt {attempt}: {step.description}")
        try:
            result = await self._run_step(step, state.results_by_variable, state.scope)
        except StepExecutionError as e:
            return self._record_failure(state, step, e)
        except AgenticQueryError as e:
            return self._record_failure(
                state, step, StepExecutionError(f"Step {step.step_number} failed: {e.message}", step.step_number)
            )
        except asyncio.TimeoutError:
            return self._record_failure(state, step, StepExecutionError(
                f"Step {step.step_number} timed out after {self.settings.step_timeout_seconds}s",
                step.step_number,
            ))
        except Exception as e:
            logger.exception(f"Unexpected error in step {step.step_number}")
            return self._record_failure(
                state, step, StepExecutionError(f"Step {step.step_number} failed: {e}", step.step_number)
            )

        state.results_by_variable[step.output_variable] = result
        state.partial_results[step.output_variable] = result
        state.step_retry_count = 0
        state.current_step_index += 1
        for warning in result.warnings:
            state.add_warning(f"Step {step.step_number}: {warning}")
        state.history.append({
            "stepNumber": step.step_number,
            "tool": step.tool,
            "outputVariable": step.output_variable,
            "planVersion": state.plan_version,
            "attempt": attempt,
            "success": True,
            "count": result.count,
        })
        logger.info(f"Step {step.step_number} returned {result.count} record(s)")
        await self._emit(listener, "step", {
            "stepNumber": step.step_number,
            "tool": step.tool,
            "outputVariable": step.output_variable,
            "count": result.count,
            "sources": result.sources,
            "warnings": result.warnings,
        })
        return "continue" if state.current_step is not None else "done"

    async def _run_step(self, step: PlanStep, results: Mapping[str, StepResult], scope: ScopeContext) -> StepResult:
        try:
            tool_input = resolve_value(step.tool_input, results)
        except VariableResolutionError as e:
            if e.step_number is None:
                e.step_number = step.step_number
            raise
        result = await self.run_tool(step.tool, tool_input, scope)
        if not result.success:
            raise StepExecutionError(
                f"Step {step.step_number} failed: {result.error or 'tool reported failure'}", step.step_number
            )
        return result

    def _record_failure(self, state: ExecutionState, step: PlanStep, err: StepExecutionError) -> str:
        state.step_retry_count += 1
        state.last_error = err
        state.history.append({
            "stepNumber": step.step_number,
            "tool": step.tool,
            "outputVariable": step.output_variable,
            "planVersion": state.plan_version,
            "attempt": state.step_retry_count,
            "success": False,
            "error": err.message,
        })
        logger.warning(f"⚠️ {err.message} (failure {state.step_retry_count})")
        return "error"

    async def _handle_error(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        count = state.step_retry_count
        err = state.last_error
        if count < self.settings.max_step_retries:
            logger.info(f"🔁 Retrying step (failure {count}/{self.settings.max_step_retries})")
            return "retry"
        if count < self.settings.max_step_failures and state.failure_replan_count < self.settings.max_plan_replans:
            state.failure_replan_count += 1
            state.total_replan_count += 1
            step = state.current_step
            state.feedback = {
                "reason": "step_failure",
                "failedStep": step.step_number if step else None,
                "error": err.message if err else None,
                "completedVariables": list(state.results_by_variable),
                "previousPlan": state.plan.to_public() if state.plan else None,
            }
            logger.warning(f"🔁 Replanning after repeated step failure ({state.failure_replan_count}/"
                           f"{self.settings.max_plan_replans})")
            return "replan"
        state.fail(err or StepExecutionError("Step execution failed"))
        return "fail"

    async def _synthesize(self, state: ExecutionState, listener: Optional[Listener]) -> str:
        if not state.plan.requires_synthesis:
            state.final_answer = self._summarize(state)
            return "ok"
        try:
            state.final_answer = await self.synthesizer.synthesize(
                state.query, state.scope.summary(), state.results_by_variable
            )
        except SynthesisError as e:
            state.fail(e)
            return "error"
        return "ok"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _summarize(state: ExecutionState) -> str:
        lines = [f"{name}: {result.count} record(s)" for name, result in state.results_by_variable.items()]
        return "Results\n" + "\n".join(lines)

    @staticmethod
    def _build_result(state: ExecutionState, elapsed_ms: float) -> QueryResult:
        success = state.error is None and state.final_answer is not None
        return QueryResult(
            success=success,
            query=state.query,
            answer=state.final_answer if success else None,
            intent=state.intent.to_public() if state.intent else None,
            plan=state.plan.to_public() if state.plan else None,
            steps=state.history,
            warnings=state.warnings,
            error=state.error,
            error_type=state.error_type,
            partial_results={k: to_jsonable(v.model_dump()) for k, v in state.partial_results.items()},
            execution_time_ms=round(elapsed_ms, 2),
            stats={
                "step_attempts": state.total_step_attempts,
                "replans": state.total_replan_count,
                "step_retry_count": state.step_retry_count,
            },
        )

    @staticmethod
    async def _emit(listener: Optional[Listener], event: str, payload: Dict[str, Any]) -> None:
        if listener is not None:
            await listener(event, payload)
