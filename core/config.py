"""Configuration loading for the engine.

``core/workflow.yaml`` names the component classes and the engine limits;
environment variables (optionally from ``.env``) override the file:

- ``AGENTIC_CONFIG``: alternative YAML file
- ``AGENTIC_DATASET``: JSON dataset for the in-memory datastore
- ``AGENTIC_MODEL``: reasoning model name
- ``OPENAI_API_KEY``: API key handed to the LLM client
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "workflow.yaml"


@dataclass(frozen=True)
class EngineSettings:
    """Limits of the execution engine."""
    max_step_retries: int = 3
    max_step_failures: int = 5
    max_plan_replans: int = 2
    step_timeout_seconds: float = 30.0
    reasoning_timeout_seconds: float = 45.0
    synthesis_max_records: int = 50

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EngineSettings":
        known = {f.name for f in fields(cls)}
        data = data or {}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown engine settings: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Read the YAML configuration and apply environment overrides."""
    load_dotenv()
    path = Path(path or os.getenv("AGENTIC_CONFIG") or DEFAULT_CONFIG_PATH)
    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    components = config.setdefault("components", {})
    dataset = os.getenv("AGENTIC_DATASET")
    if dataset:
        components.setdefault("datastore", {}).setdefault("params", {})["path"] = dataset
    model = os.getenv("AGENTIC_MODEL")
    if model:
        components.setdefault("reasoning", {}).setdefault("params", {})["model"] = model
    api_key = os.getenv("OPENAI_API_KEY")
    if api_key:
        config.setdefault("openai", {})["api_key"] = api_key

    logger.info(f"Loaded configuration from {path}")
    return config


def resolve_path(value: str | Path) -> Path:
    """Resolve a relative path against the working directory, then the repository root."""
    p = Path(value)
    if p.is_absolute() or p.exists():
        return p
    return ROOT / p
