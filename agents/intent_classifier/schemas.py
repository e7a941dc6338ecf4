from typing import List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

IntentCategory = Literal["analytics", "search", "comparison", "extraction", "visualization", "multi_step"]
Complexity = Literal["simple", "medium", "complex"]
PrimaryEntity = Literal["company", "employee", "both", "other"]


class Intent(BaseModel):
    """
    Structured classification of a user question.

    Attributes:
        category (str): kind of question (analytics, search, comparison, ...)
        complexity (str): simple | medium | complex
        requires_* (bool): capabilities the plan will likely need
        collections (tuple): collections the question touches
        primary_entity (str): company | employee | both | other
        confidence (int): 0-100
        reasoning (str): one-sentence rationale, or the degradation reason
        suggested_fields (tuple): fields the model expects the answer to use
        degraded (bool): True when the default intent was substituted
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    category: IntentCategory
    complexity: Complexity = "simple"
    requires_join: bool = Field(False, alias="requiresJoin")
    requires_aggregation: bool = Field(False, alias="requiresAggregation")
    requires_vector_search: bool = Field(False, alias="requiresVectorSearch")
    requires_text_search: bool = Field(False, alias="requiresTextSearch")
    requires_fallback: bool = Field(False, alias="requiresFallback")
    collections: Tuple[str, ...] = ("companies",)
    primary_entity: PrimaryEntity = Field("company", alias="primaryEntity")
    confidence: int = Field(50, ge=0, le=100)
    reasoning: str = ""
    suggested_fields: Tuple[str, ...] = Field((), alias="suggestedFields")
    degraded: bool = False

    @field_validator("collections", "suggested_fields", mode="before")
    @classmethod
    def _dedupe(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(dict.fromkeys(str(v) for v in value))

    @field_validator("confidence", mode="before")
    @classmethod
    def _scale_confidence(cls, value):
        # Models sometimes answer on a 0-1 scale
        if isinstance(value, float) and 0.0 <= value <= 1.0:
            return round(value * 100)
        if isinstance(value, float):
            return round(value)
        return value

    def to_public(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def degraded_intent(reason: str) -> Intent:
    """Default intent used when classification fails."""
    return Intent(
        category="search",
        complexity="simple",
        requires_fallback=False,
        requires_text_search=True,
        collections=("companies",),
        primary_entity="company",
        confidence=50,
        reasoning=reason,
        degraded=True,
    )


def known_collections(intent: Intent, available: List[str]) -> Tuple[str, ...]:
    return tuple(c for c in intent.collections if c in available)
