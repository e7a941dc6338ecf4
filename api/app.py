"""FastAPI application factory.

Run with ``uvicorn --factory api.app:create_app``; the workflow is built from
``core/workflow.yaml`` on first request unless one is passed in.
"""
import logging
from typing import Optional

from fastapi import FastAPI

from agents.workflow import QueryWorkflow
from api.routes import router

logger = logging.getLogger(__name__)


def create_app(workflow: Optional[QueryWorkflow] = None) -> FastAPI:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="Agentic Query Engine API")
    app.state.workflow = workflow
    app.include_router(router)
    logger.info("API application created")
    return app
