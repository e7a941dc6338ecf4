"""
Intent Classifier Agent Module

Wraps the reasoning capability to turn a raw question into an :class:`Intent`.
Classification is never fatal: any failure (timeout, reasoning error,
malformed or schema-invalid output) yields the degraded default intent.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from agents.base import Agent
from agents.intent_classifier.schemas import Intent, degraded_intent, known_collections
from core.errors import ClassificationDegraded, ReasoningError
from core.schema_registry import SchemaRegistry
from services.reasoning import ReasoningCapability

logger = logging.getLogger(__name__)


class IntentClassifierAgent(Agent):
    def __init__(
        self,
        reasoning: ReasoningCapability,
        registry: Optional[SchemaRegistry] = None,
        timeout_seconds: float = 30.0,
    ):
        super().__init__(reasoning, timeout_seconds)
        self.registry = registry

    async def run(self, payload: str, context: Dict[str, Any]) -> Intent:
        return await self.classify(payload, context.get("scope_summary", ""))

    async def classify(self, query: str, scope_summary: str) -> Intent:
        try:
            intent = await self._classify_strict(query, scope_summary)
        except ClassificationDegraded as e:
            logger.warning(f"⚠️ {e.message}; using default intent")
            return degraded_intent(e.message)
        logger.info(
            f"🎯 Intent: {intent.category}/{intent.complexity} on {list(intent.collections)} "
            f"(confidence {intent.confidence})"
        )
        return intent

    async def _classify_strict(self, query: str, scope_summary: str) -> Intent:
        try:
            raw = await self._bounded(self.reasoning.classify(query, scope_summary))
        except asyncio.TimeoutError as e:
            raise ClassificationDegraded(
                f"Intent classification timed out after {self.timeout_seconds}s"
            ) from e
        except ReasoningError as e:
            raise ClassificationDegraded(f"Intent classification failed: {e.message}") from e
        except Exception as e:
            logger.exception("Unexpected error from reasoning capability during classification")
            raise ClassificationDegraded(f"Intent classification failed: {e}") from e

        if not isinstance(raw, dict):
            raise ClassificationDegraded("Intent classification returned a non-object payload")
        try:
            intent = Intent.model_validate(raw)
        except PydanticValidationError as e:
            raise ClassificationDegraded(
                f"Malformed intent: {e.error_count()} invalid field(s)"
            ) from e

        if self.registry is not None:
            collections = known_collections(intent, list(self.registry.collections))
            if collections != intent.collections:
                intent = intent.model_copy(update={"collections": collections or ("companies",)})
        return intent
