import asyncio

import pytest

from agents.intent_classifier.agent import IntentClassifierAgent
from agents.intent_classifier.schemas import Intent, degraded_intent
from conftest import DEFAULT_INTENT, StubReasoning
from core.errors import ReasoningError


class SlowReasoning(StubReasoning):
    async def classify(self, query, context_summary):
        await asyncio.sleep(5)
        return DEFAULT_INTENT


@pytest.mark.asyncio
async def test_classify_parses_intent(registry):
    raw = dict(DEFAULT_INTENT, collections=["companies", "employees", "made_up"], confidence=0.85)
    agent = IntentClassifierAgent(StubReasoning(intent=raw), registry)
    intent = await agent.classify("Series A companies and their CTOs", "Data scope: user=u1")
    assert intent.category == "search"
    assert intent.collections == ("companies", "employees")
    assert intent.confidence == 85
    assert intent.requires_fallback is True
    assert intent.degraded is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "scripted",
    [
        ReasoningError("model unavailable"),
        RuntimeError("socket closed"),
        ["not", "an", "object"],
        {"category": "gossip"},
        {"complexity": "simple"},
    ],
)
async def test_classify_degrades_instead_of_raising(registry, scripted):
    agent = IntentClassifierAgent(StubReasoning(intent=scripted), registry)
    intent = await agent.classify("anything", "")
    assert intent.degraded is True
    assert intent.category == "search"
    assert intent.complexity == "simple"
    assert intent.requires_text_search is True
    assert intent.requires_fallback is False
    assert intent.collections == ("companies",)
    assert intent.primary_entity == "company"
    assert intent.confidence == 50


@pytest.mark.asyncio
async def test_classify_timeout_degrades(registry):
    agent = IntentClassifierAgent(SlowReasoning(), registry, timeout_seconds=0.05)
    intent = await agent.classify("slow question", "")
    assert intent.degraded is True
    assert "timed out" in intent.reasoning


def test_intent_is_frozen_and_public_form_uses_aliases():
    intent = degraded_intent("reason")
    with pytest.raises(Exception):
        intent.category = "analytics"
    public = intent.to_public()
    assert public["requiresTextSearch"] is True
    assert public["primaryEntity"] == "company"
    assert public["collections"] == ["companies"]


def test_intent_accepts_snake_and_camel_case():
    a = Intent.model_validate({"category": "analytics", "requiresAggregation": True})
    b = Intent.model_validate({"category": "analytics", "requires_aggregation": True})
    assert a == b
