"""Test configuration ensuring repository root is on ``sys.path``, plus shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from agents.tools.base import ToolEnvironment  # noqa: E402
from core.config import EngineSettings  # noqa: E402
from core.context import build_context  # noqa: E402
from core.orchestrator import ExecutionEngine  # noqa: E402
from core.schema_registry import load_default_registry  # noqa: E402
from services.datastore import InMemoryDatastore  # noqa: E402
from services.reasoning import ReasoningCapability  # noqa: E402

DATASET_PATH = ROOT / "data" / "sample_dataset.json"

DEFAULT_INTENT = {
    "category": "search",
    "complexity": "simple",
    "requiresFallback": True,
    "collections": ["companies"],
    "primaryEntity": "company",
    "confidence": 90,
    "reasoning": "Looks up companies",
}


class StubReasoning(ReasoningCapability):
    """Scripted reasoning capability.

    ``plans`` are returned in order (the last one repeats); any scripted item
    that is an exception instance is raised instead of returned.
    """

    def __init__(self, intent: Any = None, plans: Optional[List[Any]] = None, answer: Any = "stub answer"):
        self.intent = DEFAULT_INTENT if intent is None else intent
        self.plans = list(plans or [])
        self.answer = answer
        self.classify_calls: List[str] = []
        self.plan_calls: List[Dict[str, Any]] = []
        self.synthesize_calls: List[Dict[str, Any]] = []

    @staticmethod
    def _give(item: Any) -> Any:
        if isinstance(item, BaseException):
            raise item
        return item

    async def classify(self, query, context_summary):
        self.classify_calls.append(query)
        return self._give(self.intent)

    async def plan(self, query, intent, context_summary, feedback=None):
        self.plan_calls.append({"query": query, "intent": intent, "feedback": feedback})
        index = min(len(self.plan_calls), len(self.plans)) - 1
        return self._give(self.plans[index])

    async def synthesize(self, query, context_summary, results):
        self.synthesize_calls.append({"query": query, "results": results})
        return self._give(self.answer)


@pytest.fixture
def registry():
    return load_default_registry()


@pytest.fixture
def datastore():
    return InMemoryDatastore.from_json(DATASET_PATH)


@pytest.fixture
def scope():
    return build_context("u1", "s1")


@pytest.fixture
def env(datastore, registry, scope):
    return ToolEnvironment(datastore=datastore, registry=registry, scope=scope)


@pytest.fixture
def make_engine(datastore, registry):
    """Build an engine around a :class:`StubReasoning`; the stub is ``engine.reasoning``."""

    def _make(intent=None, plans=None, answer="stub answer", store=None, **settings):
        settings.setdefault("step_timeout_seconds", 1.0)
        settings.setdefault("reasoning_timeout_seconds", 1.0)
        reasoning = StubReasoning(intent=intent, plans=plans, answer=answer)
        return ExecutionEngine(reasoning, store or datastore, registry, EngineSettings(**settings))

    return _make
