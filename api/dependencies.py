import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from agents.workflow import QueryWorkflow

logger = logging.getLogger(__name__)


def get_workflow(request: Request) -> QueryWorkflow:
    """Return the app's workflow, building it from configuration on first use."""
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is None:
        logger.info("No workflow attached to the app; building one from configuration")
        workflow = QueryWorkflow.from_config()
        request.app.state.workflow = workflow
    return workflow


# Identity comes from the upstream gateway in the x-user-id header
async def get_user_id(x_user_id: Annotated[Optional[str], Header()] = None) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity: x-user-id header is required",
        )
    return x_user_id.strip()


workflow_dep = Annotated[QueryWorkflow, Depends(get_workflow)]
user_dep = Annotated[str, Depends(get_user_id)]
