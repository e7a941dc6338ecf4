import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from agents.tools.base import ToolKind
from api.dependencies import user_dep, workflow_dep
from api.schemas import DataStatsResponse, HealthResponse, QueryRequest, ToolRequest, ToolResponse
from core.context import ScopeContext, build_context
from core.errors import NotFoundError, ScopeError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agentic", tags=["Agentic Query"])


def _scope(user_id: str, session_id: Optional[str], icp_model_id: Optional[str]) -> ScopeContext:
    try:
        return build_context(user_id, session_id, icp_model_id)
    except ScopeError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)


def _require_query(body: QueryRequest) -> str:
    if body.query is None or not body.query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")
    return body.query.strip()


def _sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


@router.post("/query")
async def run_query(body: QueryRequest, user_id: user_dep, workflow: workflow_dep):
    """
    Answer an analytic question within the caller's scope.

    Pipeline failures are reported in the body with ``success: false``.
    """
    query = _require_query(body)
    scope = _scope(user_id, body.session_id, body.icp_model_id)
    try:
        result = await workflow.engine.run(query, scope)
    except Exception as e:
        logger.exception("Unhandled error while running query")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return result.model_dump(mode="json", by_alias=True)


@router.post("/query/stream")
async def stream_query(body: QueryRequest, user_id: user_dep, workflow: workflow_dep):
    """Same as ``/query`` but streams pipeline events as server-sent events."""
    query = _require_query(body)
    scope = _scope(user_id, body.session_id, body.icp_model_id)
    queue: asyncio.Queue = asyncio.Queue()

    async def listener(event: str, payload: Dict[str, Any]) -> None:
        await queue.put({"type": event, **payload})

    async def produce() -> None:
        try:
            await workflow.engine.run(query, scope, listener)
        except Exception as e:
            logger.exception("Unhandled error while streaming query")
            await queue.put({"type": "error", "error": str(e), "errorType": type(e).__name__})
            await queue.put({"type": "done", "success": False})
        finally:
            await queue.put(None)

    async def events():
        task = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _sse(item)
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"}
    )


@router.post("/test-tool", response_model=ToolResponse)
async def run_tool(body: ToolRequest, user_id: user_dep, workflow: workflow_dep):
    """Run one data access tool directly, within the caller's scope."""
    scope = _scope(user_id, body.session_id, body.icp_model_id)
    try:
        result = await workflow.engine.run_tool(body.tool, body.input, scope)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return ToolResponse(tool=body.tool, **result.model_dump())


@router.get("/health", response_model=HealthResponse)
async def health(workflow: workflow_dep):
    return HealthResponse(
        status="ok",
        collections=list(workflow.registry.collections),
        tools=[kind.value for kind in ToolKind],
    )


@router.get("/my-data-stats", response_model=DataStatsResponse, response_model_by_alias=True)
async def my_data_stats(
    user_id: user_dep,
    workflow: workflow_dep,
    sessionId: Optional[str] = None,
    icpModelId: Optional[str] = None,
):
    """Document counts visible to the caller, per governed collection."""
    scope = _scope(user_id, sessionId, icpModelId)
    counts = await workflow.engine.data_stats(scope)
    return DataStatsResponse(user_id=user_id, session_id=sessionId, icp_model_id=icpModelId, counts=counts)
