from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from core.variables import to_jsonable


class PlanStep(BaseModel):
    """
    One unit of plan work.

    Attributes:
        step_number (int): position in the plan, referenced by ``depends_on``
        tool (str): tool name; checked against the tool set by the validator
        tool_input (Any): tool arguments with bound step-output references
        description (str): human readable purpose
        depends_on (list): stepNumbers this step needs; entries that are not
            step numbers are kept so the validator can report them
        output_variable (str): name its result is stored under
        reads (list): output variables its input refers to
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    step_number: int = Field(alias="stepNumber")
    tool: str = ""
    tool_input: Any = Field(default=None, alias="toolInput")
    description: str = ""
    depends_on: List[Union[int, str]] = Field(default_factory=list, alias="dependsOn")
    output_variable: str = Field(alias="outputVariable")
    reads: List[str] = Field(default_factory=list)

    def to_public(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={"tool_input"})
        data["toolInput"] = to_jsonable(self.tool_input)
        return data


class FallbackStrategy(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    primary_source: str = Field("", alias="primarySource")
    ordered_fallback_sources: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("orderedFallbackSources", "fallbackSources", "ordered_fallback_sources"),
        serialization_alias="orderedFallbackSources",
    )
    fields: List[str] = Field(default_factory=list)


class ExecutionPlan(BaseModel):
    """Ordered steps plus the expected answer shape."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    steps: List[PlanStep] = Field(default_factory=list)
    expected_output: str = Field("", alias="expectedOutput")
    requires_synthesis: bool = Field(True, alias="requiresSynthesis")
    fallback_strategy: Optional[FallbackStrategy] = Field(None, alias="fallbackStrategy")

    def to_public(self) -> Dict[str, Any]:
        return {
            "steps": [s.to_public() for s in self.steps],
            "expectedOutput": self.expected_output,
            "requiresSynthesis": self.requires_synthesis,
            "fallbackStrategy": (
                self.fallback_strategy.model_dump(by_alias=True) if self.fallback_strategy else None
            ),
        }


@dataclass
class PlanValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def error(self, step: Optional[int], message: str) -> None:
        self.errors.append(f"Step {step}: {message}" if step is not None else message)
        self.valid = False

    def warn(self, step: Optional[int], message: str) -> None:
        self.warnings.append(f"Step {step}: {message}" if step is not None else message)
