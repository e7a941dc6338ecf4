"""
Synthesis Agent Module

Turns the collected step results into the final answer text. Every variable's
data, count, warnings and provenance is sent to the reasoning capability;
record lists are truncated to ``max_records`` with a note.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping

from agents.base import Agent
from core.errors import ReasoningError, SynthesisError
from services.reasoning import ReasoningCapability

logger = logging.getLogger(__name__)


class SynthesisAgent(Agent):
    def __init__(
        self,
        reasoning: ReasoningCapability,
        timeout_seconds: float = 45.0,
        max_records: int = 50,
    ):
        super().__init__(reasoning, timeout_seconds)
        self.max_records = max_records

    async def run(self, payload: str, context: Dict[str, Any]) -> str:
        return await self.synthesize(payload, context.get("scope_summary", ""), context["results"])

    def build_payload(self, results: Mapping[str, Any]) -> Dict[str, Any]:
        """Per-variable view of the results that is sent for synthesis."""
        payload: Dict[str, Any] = {}
        for variable, result in results.items():
            data = result.data
            entry: Dict[str, Any] = {"count": result.count}
            if isinstance(data, list) and len(data) > self.max_records:
                entry["data"] = data[: self.max_records]
                entry["note"] = f"Showing first {self.max_records} of {len(data)} records"
            else:
                entry["data"] = data
            if result.warnings:
                entry["warnings"] = list(result.warnings)
            if result.sources:
                entry["sources"] = dict(result.sources)
            if result.coverage is not None:
                entry["coverage"] = result.coverage
            payload[variable] = entry
        return payload

    async def synthesize(self, query: str, scope_summary: str, results: Mapping[str, Any]) -> str:
        """
        Produce the answer for ``query`` from ``results``.

        Raises:
            SynthesisError: on timeout, reasoning failure or empty output
        """
        payload = self.build_payload(results)
        logger.info(f"✍️ Synthesizing answer from {len(payload)} result set(s)")
        try:
            answer = await self._bounded(self.reasoning.synthesize(query, scope_summary, payload))
        except asyncio.TimeoutError as e:
            raise SynthesisError(f"Synthesis timed out after {self.timeout_seconds}s") from e
        except ReasoningError as e:
            raise SynthesisError(f"Synthesis failed: {e.message}") from e
        except Exception as e:
            logger.exception(f"❌ Reasoning backend error while synthesizing: {e}")
            raise SynthesisError(f"Synthesis failed: {e}") from e

        if not isinstance(answer, str) or not answer.strip():
            raise SynthesisError("Synthesis returned an empty answer")
        return answer.strip()
