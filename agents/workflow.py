"""High level workflow interface around the configurable :class:`ExecutionEngine`."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from core.config import EngineSettings, load_config, resolve_path
from core.context import build_context
from core.orchestrator import ExecutionEngine, Listener, build_component
from core.schema_registry import SchemaRegistry, load_default_registry
from core.state import QueryResult
from services.llm_service import LLMService

logger = logging.getLogger(__name__)


class QueryWorkflow:
    """Thin wrapper binding request identity to :class:`ExecutionEngine` runs."""

    def __init__(self, engine: ExecutionEngine):
        self.engine = engine

    @property
    def registry(self) -> SchemaRegistry:
        return self.engine.registry

    @classmethod
    def from_config(
        cls,
        config_path: Optional[str | Path] = None,
        dataset_path: Optional[str | Path] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> "QueryWorkflow":
        """Build the reasoning capability, datastore and engine named in ``workflow.yaml``."""
        if config is None:
            config = load_config(config_path)
        components = config.get("components", {})

        openai_cfg = config.get("openai") or {}
        if openai_cfg.get("api_key"):
            LLMService.configure(api_key=openai_cfg["api_key"], timeout=openai_cfg.get("timeout"))

        registry = load_default_registry()

        # Inject the runtime dataset path into the datastore params
        store_cfg = dict(components["datastore"])
        params = dict(store_cfg.get("params") or {})
        if dataset_path is not None:
            params["path"] = dataset_path
        if "path" in params:
            params["path"] = resolve_path(params["path"])
        store_cfg["params"] = params

        datastore = build_component(store_cfg)
        reasoning = build_component(components["reasoning"], registry=registry)
        settings = EngineSettings.from_mapping(config.get("engine"))
        logger.info(
            f"Workflow ready: reasoning={type(reasoning).__name__}, datastore={type(datastore).__name__}"
        )
        return cls(ExecutionEngine(reasoning, datastore, registry, settings))

    async def run(
        self,
        query: str,
        user_id: str,
        session_id: Optional[str] = None,
        icp_model_id: Optional[str] = None,
        listener: Optional[Listener] = None,
    ) -> QueryResult:
        """Execute the engine for ``query`` on behalf of ``user_id``."""
        scope = build_context(user_id, session_id, icp_model_id)
        return await self.engine.run(query, scope, listener)
