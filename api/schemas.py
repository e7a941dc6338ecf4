from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ScopedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: Optional[str] = Field(None, validation_alias=AliasChoices("sessionId", "session_id"))
    icp_model_id: Optional[str] = Field(None, validation_alias=AliasChoices("icpModelId", "icp_model_id"))


class QueryRequest(ScopedRequest):
    # Optional so that a missing query is answered with 400 rather than 422
    query: Optional[str] = None


class ToolRequest(ScopedRequest):
    tool: str
    input: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("input", "toolInput"))


class ToolResponse(BaseModel):
    tool: str
    success: bool
    data: Any = None
    count: int = 0
    sources: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    coverage: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    collections: List[str]
    tools: List[str]


class DataStatsResponse(BaseModel):
    user_id: str = Field(serialization_alias="userId")
    session_id: Optional[str] = Field(None, serialization_alias="sessionId")
    icp_model_id: Optional[str] = Field(None, serialization_alias="icpModelId")
    counts: Dict[str, int]
