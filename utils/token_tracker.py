#!/usr/bin/env python3
"""
Token usage tracker for OpenAI API calls across the app lifecycle.
Thread-safe, opt-in, no-ops if usage isn't available in responses.
Totals are kept overall and per purpose (classify / plan / synthesize).
"""
from __future__ import annotations
import logging
import threading
from typing import Optional, Any, Dict

logger = logging.getLogger(__name__)


def _empty() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0, "calls": 0}


class _TokenTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals = _empty()
        self._by_purpose: Dict[str, Dict[str, int]] = {}

    def reset(self) -> None:
        with self._lock:
            self._totals = _empty()
            self._by_purpose = {}

    def add(self, prompt: int = 0, completion: int = 0, total: Optional[int] = None,
            purpose: str = "general") -> None:
        prompt = int(prompt or 0)
        completion = int(completion or 0)
        total = int(total) if total is not None else prompt + completion
        with self._lock:
            for bucket in (self._totals, self._by_purpose.setdefault(purpose, _empty())):
                bucket["prompt_tokens"] += prompt
                bucket["completion_tokens"] += completion
                bucket["total_tokens"] += total
                bucket["calls"] += 1

    def get_totals(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._totals)

    def get_by_purpose(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {k: dict(v) for k, v in self._by_purpose.items()}


token_tracker = _TokenTracker()


def record_openai_usage_from_response(resp: Any, purpose: str = "general") -> None:
    """Extract usage from an OpenAI SDK response; responses without usage are ignored."""
    usage = getattr(resp, "usage", None)
    if not usage:
        return
    if isinstance(usage, dict):
        prompt = usage.get("prompt_tokens")
        completion = usage.get("completion_tokens")
        total = usage.get("total_tokens")
    else:
        prompt = getattr(usage, "prompt_tokens", None)
        completion = getattr(usage, "completion_tokens", None)
        total = getattr(usage, "total_tokens", None)
    token_tracker.add(prompt or 0, completion or 0, total, purpose=purpose)
    logger.info(
        "LLM usage [%s] - prompt: %s, completion: %s, total: %s",
        purpose, prompt, completion, total,
    )
