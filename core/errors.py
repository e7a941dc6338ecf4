"""Error taxonomy shared by the planning and execution pipeline.

Only the terminal forms (plan creation, exhausted plan validation, exhausted
step execution, synthesis) reach the caller as a failed :class:`QueryResult`;
everything else is absorbed by the engine and reported as a warning.
"""
from __future__ import annotations

from typing import List, Optional


class AgenticQueryError(Exception):
    """Base class for every error raised by the engine and its tools."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def error_type(self) -> str:
        return type(self).__name__


# ------------------------------------------------------------------
# Boundary errors (tools, datastore, reasoning, scope)
# ------------------------------------------------------------------
class ValidationError(AgenticQueryError):
    """Tool input, filter or collection rejected before touching data."""


class FilterSyntaxError(ValidationError):
    """A filter mapping could not be parsed into a filter expression."""


class JsonPathError(ValidationError):
    """A JSONPath-like expression could not be compiled."""


class NotFoundError(AgenticQueryError):
    """The scoped lookup matched nothing."""


class ScopeError(AgenticQueryError):
    """The request carries no usable scope identity."""


class ReasoningError(AgenticQueryError):
    """The reasoning capability failed or produced unusable output."""


# ------------------------------------------------------------------
# Pipeline errors
# ------------------------------------------------------------------
class ClassificationDegraded(AgenticQueryError):
    """Intent classification failed and the default intent was used."""


class PlanCreationError(AgenticQueryError):
    """No plan could be produced; nothing was executed."""


class PlanValidationError(AgenticQueryError):
    """The plan failed structural or schema validation."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(f"Plan validation failed: {', '.join(errors)}")
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class StepExecutionError(AgenticQueryError):
    """A plan step failed (tool error, timeout, unsuccessful result)."""

    def __init__(self, message: str, step_number: Optional[int] = None):
        super().__init__(message)
        self.step_number = step_number


class VariableResolutionError(StepExecutionError):
    """A step referenced an output variable that cannot be resolved."""

    def __init__(self, variable: str, message: Optional[str] = None,
                 step_number: Optional[int] = None):
        super().__init__(
            message or f"Variable '{variable}' not found in previous steps",
            step_number=step_number,
        )
        self.variable = variable


class SynthesisError(AgenticQueryError):
    """All steps succeeded but the final answer could not be produced."""
