"""
Per-request execution state.

One :class:`ExecutionState` is created when a query starts and discarded when
it ends; it is passed explicitly through the engine's phase handlers and is
never shared between requests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from agents.intent_classifier.schemas import Intent
from agents.query_planner.schemas import ExecutionPlan
from agents.tools.base import StepResult
from core.context import ScopeContext
from core.errors import AgenticQueryError


class Phase(str, Enum):
    CLASSIFY_INTENT = "classify_intent"
    CREATE_PLAN = "create_plan"
    VALIDATE_PLAN = "validate_plan"
    EXECUTE_STEP = "execute_step"
    HANDLE_ERROR = "handle_error"
    SYNTHESIZE = "synthesize"
    TERMINAL = "terminal"


@dataclass
class ExecutionState:
    """
    Mutable state of one query run.

    Attributes:
        results_by_variable: results of the current plan, keyed by outputVariable
        partial_results: every successful StepResult of the run, across replans
        step_retry_count: consecutive step failures; reset by a successful step
        replan_count: replans caused by plan validation failures
        failure_replan_count: replans caused by exhausted step retries
        history: one record per step attempt
    """
    query: str
    scope: ScopeContext
    phase: Phase = Phase.CLASSIFY_INTENT
    intent: Optional[Intent] = None
    plan: Optional[ExecutionPlan] = None
    plan_version: int = 0
    current_step_index: int = 0
    results_by_variable: Dict[str, StepResult] = field(default_factory=dict)
    partial_results: Dict[str, StepResult] = field(default_factory=dict)
    step_retry_count: int = 0
    replan_count: int = 0
    failure_replan_count: int = 0
    total_replan_count: int = 0
    total_step_attempts: int = 0
    feedback: Optional[Dict[str, Any]] = None
    last_error: Optional[AgenticQueryError] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    final_answer: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def current_step(self):
        if self.plan is None or self.current_step_index >= len(self.plan.steps):
            return None
        return self.plan.steps[self.current_step_index]

    def add_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def fail(self, err: AgenticQueryError) -> None:
        self.last_error = err
        self.error = err.message
        self.error_type = err.error_type


class QueryResult(BaseModel):
    """Response object returned for every query, successful or not."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    query: str
    answer: Optional[str] = None
    intent: Optional[Dict[str, Any]] = None
    plan: Optional[Dict[str, Any]] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = Field(None, serialization_alias="errorType")
    partial_results: Dict[str, Any] = Field(default_factory=dict, serialization_alias="partialResults")
    execution_time_ms: float = Field(0.0, serialization_alias="executionTimeMs")
    stats: Dict[str, int] = Field(default_factory=dict)
