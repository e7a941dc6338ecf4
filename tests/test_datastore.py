import pytest

from core.errors import ValidationError
from core.filters import parse_filter
from services.aggregation import apply_projection, evaluate_expression, run_pipeline, sort_documents
from services.datastore import InMemoryDatastore

COMPANIES = [
    {"_id": "a", "userId": "u1", "industry": "Software", "employeeCount": 80, "tags": ["saas"]},
    {"_id": "b", "userId": "u1", "industry": "Software", "employeeCount": 20, "tags": []},
    {"_id": "c", "userId": "u1", "industry": "Robotics", "employeeCount": 300, "tags": ["hw", "ai"]},
    {"_id": "d", "userId": "u2", "industry": "Fintech"},
]


@pytest.fixture
def store():
    return InMemoryDatastore({"companies": COMPANIES})


@pytest.mark.asyncio
async def test_find_filter_sort_limit(store):
    docs = await store.find("companies", {"userId": "u1"}, sort={"employeeCount": -1}, limit=2)
    assert [d["_id"] for d in docs] == ["c", "a"]


@pytest.mark.asyncio
async def test_find_accepts_filter_ast(store):
    docs = await store.find("companies", parse_filter({"industry": "Software"}))
    assert {d["_id"] for d in docs} == {"a", "b"}


@pytest.mark.asyncio
async def test_find_returns_copies(store):
    doc = await store.find_one("companies", {"_id": "a"})
    doc["industry"] = "changed"
    again = await store.find_one("companies", {"_id": "a"})
    assert again["industry"] == "Software"


@pytest.mark.asyncio
async def test_find_projection_and_skip(store):
    docs = await store.find("companies", {"userId": "u1"}, projection={"industry": 1}, skip=1)
    assert docs == [{"_id": "b", "industry": "Software"}, {"_id": "c", "industry": "Robotics"}]


@pytest.mark.asyncio
async def test_count_and_unknown_collection(store):
    assert await store.count("companies", {"userId": "u1"}) == 3
    assert await store.find("nothing") == []
    assert await store.find_one("companies", {"_id": "zzz"}) is None


@pytest.mark.asyncio
async def test_aggregate_group_and_sort(store):
    rows = await store.aggregate("companies", [
        {"$match": {"userId": "u1"}},
        {"$group": {"_id": "$industry", "total": {"$sum": "$employeeCount"}, "n": {"$count": {}}}},
        {"$sort": {"total": -1}},
    ])
    assert rows == [
        {"_id": "Robotics", "total": 300, "n": 1},
        {"_id": "Software", "total": 100, "n": 2},
    ]


def test_pipeline_unwind_count_and_add_fields():
    rows = run_pipeline(COMPANIES, [
        {"$unwind": "$tags"},
        {"$addFields": {"upper": {"$toUpper": "$tags"}}},
        {"$project": {"upper": 1, "_id": 0}},
    ])
    assert rows == [{"upper": "SAAS"}, {"upper": "HW"}, {"upper": "AI"}]
    assert run_pipeline(COMPANIES, [{"$match": {"industry": "Software"}}, {"$count": "n"}]) == [{"n": 2}]


def test_pipeline_avg_min_max_and_skip_limit():
    rows = run_pipeline(COMPANIES, [
        {"$match": {"employeeCount": {"$exists": True}}},
        {"$group": {
            "_id": None,
            "avg": {"$avg": "$employeeCount"},
            "min": {"$min": "$employeeCount"},
            "max": {"$max": "$employeeCount"},
            "ids": {"$push": "$_id"},
        }},
    ])
    assert rows == [{"_id": None, "avg": 400 / 3, "min": 20, "max": 300, "ids": ["a", "b", "c"]}]
    assert [r["_id"] for r in run_pipeline(COMPANIES, [{"$skip": 1}, {"$limit": 2}])] == ["b", "c"]


def test_pipeline_rejects_unsupported_stage():
    with pytest.raises(ValidationError):
        run_pipeline(COMPANIES, [{"$facet": {}}])
    with pytest.raises(ValidationError):
        run_pipeline(COMPANIES, [{"$match": {}, "$limit": 1}])


def test_expressions():
    doc = {"a": 6, "b": 3, "name": "Acme", "tags": ["x", "y"]}
    assert evaluate_expression({"$divide": ["$a", "$b"]}, doc) == 2
    assert evaluate_expression({"$divide": ["$a", 0]}, doc) is None
    assert evaluate_expression({"$add": ["$a", "$missing"]}, doc) is None
    assert evaluate_expression({"$size": "$tags"}, doc) == 2
    assert evaluate_expression({"$ifNull": ["$missing", "fallback"]}, doc) == "fallback"
    assert evaluate_expression({"$concat": ["$name", "-", "co"]}, doc) == "Acme-co"
    with pytest.raises(ValidationError):
        evaluate_expression({"$regexFind": "$name"}, doc)


def test_projection_modes():
    doc = {"_id": 1, "a": 1, "b": {"c": 2, "d": 3}}
    assert apply_projection(doc, {"b.c": 1}) == {"_id": 1, "b": {"c": 2}}
    assert apply_projection(doc, {"a": 0, "_id": 0}) == {"b": {"c": 2, "d": 3}}


def test_sort_puts_missing_first_ascending():
    docs = sort_documents(COMPANIES, [("employeeCount", 1)])
    assert [d["_id"] for d in docs] == ["d", "b", "a", "c"]
