import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, TypeVar

from services.reasoning import ReasoningCapability

T = TypeVar("T")


class Agent(ABC):
    """Base for the agents that delegate to a reasoning capability under a time limit."""

    def __init__(self, reasoning: ReasoningCapability, timeout_seconds: float):
        self.reasoning = reasoning
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, call: Awaitable[T]) -> T:
        """Await ``call``; raises ``asyncio.TimeoutError`` after ``timeout_seconds``."""
        return await asyncio.wait_for(call, timeout=self.timeout_seconds)

    @abstractmethod
    async def run(self, payload: Any, context: Dict[str, Any]):
        """Execute the agent with provided payload and context."""
        raise NotImplementedError
