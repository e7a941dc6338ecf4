import logging
import os
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.token_tracker import record_openai_usage_from_response

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

# Errors worth repeating the identical request for
TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def default_model() -> str:
    return os.getenv("AGENTIC_MODEL") or DEFAULT_MODEL


class LLMService:
    """Central service for invoking chat models and logging usage."""

    _client: Optional[AsyncOpenAI] = None

    @classmethod
    def _get_client(cls) -> AsyncOpenAI:
        if cls._client is None:
            cls._client = AsyncOpenAI()
        return cls._client

    @classmethod
    def configure(cls, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        """Replace the shared client (e.g. with an explicit key)."""
        kwargs: Dict[str, Any] = {}
        if api_key:
            kwargs["api_key"] = api_key
        if timeout:
            kwargs["timeout"] = timeout
        cls._client = AsyncOpenAI(**kwargs)

    @classmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def invoke(cls, model: str, messages: List[Dict[str, str]], purpose: str = "general", **opts: Any):
        """Invoke a chat completion model.

        Transient API errors are retried with exponential backoff; usage is
        recorded in the token tracker under ``purpose``.
        """
        client = cls._get_client()
        logger.debug(f"Invoking {model} for {purpose} with {len(messages)} messages")
        response = await client.chat.completions.create(model=model, messages=messages, **opts)
        record_openai_usage_from_response(response, purpose=purpose)
        return response
