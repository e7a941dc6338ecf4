"""Property-based checks of the invariants the engine relies on."""
import asyncio
import json

from hypothesis import given, settings
from hypothesis import strategies as st

from agents.query_planner.agent import QueryPlannerAgent
from agents.query_planner.validator import PlanValidator
from agents.tools.base import ToolEnvironment
from agents.tools.scoped_find import ScopedFindTool
from conftest import DATASET_PATH
from core.context import GOVERNED_COLLECTIONS, build_context, merge_filters
from core.schema_registry import load_default_registry
from services.datastore import InMemoryDatastore

REGISTRY = load_default_registry()
STORE = InMemoryDatastore.from_json(DATASET_PATH)
with open(DATASET_PATH, encoding="utf-8") as f:
    RAW = json.load(f)
STORED_COMPANIES = {doc["_id"]: doc for doc in RAW["companies"]}

SCOPE = build_context("u1", "s1")
ENV = ToolEnvironment(datastore=STORE, registry=REGISTRY, scope=SCOPE)

FALLBACK_FIELDS = [f.name for f in REGISTRY.get_collection("companies").fallback_fields()]

identities = st.sampled_from(["u1", "u2", "u3", "s1", "s2", ""])
scope_keys = st.sampled_from(["userId", "sessionId", "icpModelId"])
caller_conditions = st.dictionaries(
    scope_keys,
    st.one_of(identities, st.fixed_dictionaries({"$ne": identities}), st.fixed_dictionaries({"$in": st.lists(identities)})),
    max_size=3,
)
caller_filters = st.one_of(
    caller_conditions,
    caller_conditions.map(lambda c: {"$or": [c, {"userId": "u2"}]}),
    st.lists(caller_conditions, min_size=1, max_size=3).map(lambda cs: {"$and": cs}),
)


@given(st.lists(st.lists(st.integers(min_value=-1, max_value=8), max_size=3), min_size=1, max_size=6))
def test_depends_on_must_reference_earlier_existing_steps(deps):
    plan = QueryPlannerAgent.normalize({
        "steps": [
            {"tool": "scoped_find", "toolInput": {"collection": "companies"}, "dependsOn": d}
            for d in deps
        ],
    })
    report = PlanValidator(REGISTRY).validate(plan)
    numbers = range(1, len(deps) + 1)
    expected_ok = all(dep in numbers and dep < n for n, d in zip(numbers, deps) for dep in d)
    assert report.valid == expected_ok


@given(st.sampled_from(GOVERNED_COLLECTIONS), caller_filters)
def test_scope_predicates_always_win(collection, caller):
    scope_filter = SCOPE.filter_for(collection)
    merged = merge_filters(scope_filter, caller)
    for key, value in scope_filter.items():
        assert merged[key] == value


@settings(max_examples=50, deadline=None)
@given(caller_filters)
def test_scoped_find_never_leaves_the_tenant(caller):
    result = asyncio.run(
        ScopedFindTool(ENV).run({"collection": "companies", "filter": caller, "enableFallback": False})
    )
    for doc in result.data:
        assert doc["userId"] == "u1"
        assert doc["sessionId"] == "s1"


@settings(max_examples=30, deadline=None)
@given(st.lists(st.sampled_from(FALLBACK_FIELDS), min_size=1, unique=True))
def test_fallback_values_carry_provenance(fields):
    projection = {name: 1 for name in fields}
    result = asyncio.run(ScopedFindTool(ENV).run({"collection": "companies", "projection": projection}))
    for record in result.data:
        stored = STORED_COMPANIES[record["_id"]]
        sources = record.get("_sources", {})
        for name in fields:
            if name in stored:
                assert record[name] == stored[name]
                assert name not in sources
            elif name in record:
                allowed = {src.collection for src in REGISTRY.get_fallback_sources("companies", name)}
                assert sources[name] in allowed
                assert result.sources[name] in allowed
