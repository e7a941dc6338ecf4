"""Closed dispatch table from :class:`ToolKind` to tool class."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Type

from agents.tools.base import DataTool, ToolEnvironment, ToolKind
from agents.tools.multi_source import MultiSourceTool
from agents.tools.nested_path import NestedPathTool
from agents.tools.scoped_aggregate import ScopedAggregateTool
from agents.tools.scoped_find import ScopedFindTool

TOOL_CLASSES: Dict[ToolKind, Type[DataTool]] = {
    ToolKind.SCOPED_FIND: ScopedFindTool,
    ToolKind.SCOPED_AGGREGATE: ScopedAggregateTool,
    ToolKind.EXTRACT_PATH: NestedPathTool,
    ToolKind.MULTI_SOURCE: MultiSourceTool,
}


def parse_tool_kind(name: Any) -> Optional[ToolKind]:
    if isinstance(name, ToolKind):
        return name
    try:
        return ToolKind(str(name))
    except ValueError:
        return None


def create_tool(kind: ToolKind, env: ToolEnvironment) -> DataTool:
    return TOOL_CLASSES[kind](env)


def tool_catalog() -> List[Dict[str, Any]]:
    """Name, description and input schema of every tool (prompts, API)."""
    return [
        {
            "name": kind.value,
            "description": cls.description,
            "input_schema": cls.input_model.model_json_schema(by_alias=True),
        }
        for kind, cls in TOOL_CLASSES.items()
    ]
