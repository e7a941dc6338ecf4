"""
Shared contract of the data access tools.

Every tool declares a pydantic input model and one ``async run`` returning a
:class:`StepResult`.  Tools are constructed per request with a
:class:`ToolEnvironment` so the request scope travels with them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.context import ScopeContext
from core.errors import ValidationError
from core.json_path import evaluate, first_value
from core.schema_registry import SchemaRegistry
from services.datastore import Datastore


class ToolKind(str, Enum):
    SCOPED_FIND = "scoped_find"
    SCOPED_AGGREGATE = "scoped_aggregate"
    EXTRACT_PATH = "extract_path"
    MULTI_SOURCE = "multi_source"


class StepResult(BaseModel):
    """Outcome of one tool call.

    Attributes:
        success: False when the tool ran but could not produce usable data
        data: a record, a list of records or an extracted value
        count: number of records (or matched values)
        sources: field -> collection that supplied it when not the primary
        warnings: non-fatal notes (schema warnings, unresolved fields)
        error: message when ``success`` is False
        coverage: resolved/requested ratio for the multi-source cascade
    """
    success: bool = True
    data: Any = None
    count: int = 0
    sources: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    coverage: Optional[float] = None


class ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class ToolEnvironment:
    datastore: Datastore
    registry: SchemaRegistry
    scope: ScopeContext


def is_empty(value: Any) -> bool:
    """Missing for fallback purposes; ``0`` and ``False`` are values."""
    return value is None or value == "" or value == [] or value == {}


def extract_value(doc: Any, path: str, field_type: Optional[str] = None) -> Any:
    """Value of ``path`` in a secondary document.

    Array fields collect every match; other fields take the first non-null one.
    """
    if field_type != "array":
        return first_value(doc, path)
    values = [v for v in evaluate(doc, path) if v is not None]
    if len(values) == 1 and isinstance(values[0], list):
        return values[0]
    return values


def format_pydantic_error(err: PydanticValidationError) -> str:
    parts = []
    for item in err.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "input"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


class DataTool(ABC):
    """Base class of the closed set of data access tools."""

    kind: ClassVar[ToolKind]
    description: ClassVar[str] = ""
    input_model: ClassVar[Type[ToolInput]] = ToolInput

    def __init__(self, env: ToolEnvironment):
        self.env = env

    @property
    def datastore(self) -> Datastore:
        return self.env.datastore

    @property
    def registry(self) -> SchemaRegistry:
        return self.env.registry

    @property
    def scope(self) -> ScopeContext:
        return self.env.scope

    def parse_input(self, raw_input: Any) -> ToolInput:
        if isinstance(raw_input, self.input_model):
            return raw_input
        if not isinstance(raw_input, Mapping):
            raise ValidationError(f"{self.kind.value} input must be an object")
        try:
            return self.input_model.model_validate(dict(raw_input))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid input for {self.kind.value}: {format_pydantic_error(e)}"
            ) from e

    def require_collection(self, collection: str) -> None:
        if not self.registry.has_collection(collection):
            raise ValidationError(f"Unknown collection: {collection}")

    @abstractmethod
    async def run(self, raw_input: Any) -> StepResult:
        raise NotImplementedError
