"""
Reasoning capability.

:class:`ReasoningCapability` is the contract the classifier, planner and
synthesis agents depend on; it is injected, never imported as a concrete
client, so tests can substitute a scripted implementation.
:class:`LLMReasoning` implements it on top of :class:`LLMService`.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import openai

from agents.tools.registry import tool_catalog
from core.errors import ReasoningError
from core.schema_registry import SchemaRegistry, load_default_registry
from services import prompts
from services.llm_service import LLMService, default_model

logger = logging.getLogger(__name__)


def parse_json_payload(text: Optional[str]) -> Dict[str, Any]:
    """Parse a JSON object from model output.

    Strips Markdown code fences; if the text is still not valid JSON, tries
    the longest ``{...}`` span that parses to an object.
    """
    s = (text or "").strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*|\s*```$", "", s, flags=re.DOTALL).strip()
    try:
        obj = json.loads(s)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    starts = [m.start() for m in re.finditer(r"\{", s)]
    ends = [m.start() for m in re.finditer(r"\}", s)]
    for i in range(len(starts)):
        for j in range(len(ends) - 1, -1, -1):
            if ends[j] < starts[i]:
                break
            try:
                obj = json.loads(s[starts[i]:ends[j] + 1])
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                return obj
    raise ReasoningError("Could not parse JSON object from model output")


class ReasoningCapability(ABC):
    """Natural-language reasoning used by the pipeline."""

    @abstractmethod
    async def classify(self, query: str, context_summary: str) -> Dict[str, Any]:
        """Return intent JSON for ``query``."""

    @abstractmethod
    async def plan(
        self,
        query: str,
        intent: Dict[str, Any],
        context_summary: str,
        feedback: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Return execution plan JSON."""

    @abstractmethod
    async def synthesize(self, query: str, context_summary: str, results: Dict[str, Any]) -> str:
        """Return the final answer text."""


class LLMReasoning(ReasoningCapability):
    """OpenAI-backed reasoning capability."""

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 1500,
        registry: Optional[SchemaRegistry] = None,
    ):
        self.model = model or default_model()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.registry = registry or load_default_registry()
        logger.info(f"LLMReasoning initialized with model={self.model}")

    async def _complete(self, messages, purpose: str, json_mode: bool) -> str:
        opts: Dict[str, Any] = {"temperature": self.temperature, "max_tokens": self.max_tokens}
        if json_mode:
            opts["response_format"] = {"type": "json_object"}
        try:
            response = await LLMService.invoke(self.model, messages, purpose=purpose, **opts)
        except openai.OpenAIError as e:
            raise ReasoningError(f"{purpose} call failed: {e}") from e
        if not response.choices:
            raise ReasoningError(f"{purpose} call returned no choices")
        return response.choices[0].message.content or ""

    async def classify(self, query: str, context_summary: str) -> Dict[str, Any]:
        messages = prompts.classification_messages(query, context_summary, self.registry.describe())
        raw = await self._complete(messages, "classify", json_mode=True)
        return parse_json_payload(raw)

    async def plan(
        self,
        query: str,
        intent: Dict[str, Any],
        context_summary: str,
        feedback: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        messages = prompts.planning_messages(
            query, intent, context_summary, self.registry.describe(), tool_catalog(), feedback
        )
        raw = await self._complete(messages, "plan", json_mode=True)
        return parse_json_payload(raw)

    async def synthesize(self, query: str, context_summary: str, results: Dict[str, Any]) -> str:
        messages = prompts.synthesis_messages(query, context_summary, results)
        return (await self._complete(messages, "synthesize", json_mode=False)).strip()
