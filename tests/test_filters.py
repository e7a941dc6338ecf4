import pytest

from core.errors import FilterSyntaxError
from core.filters import (
    MATCH_ALL,
    Combinator,
    Condition,
    Negation,
    field_names,
    get_value,
    lookup_path,
    matches,
    parse_filter,
)

DOC = {
    "_id": "c1",
    "name": "Acme Analytics",
    "employeeCount": 80,
    "fundingStage": "Series A",
    "isPublic": False,
    "tags": ["saas", "b2b"],
    "location": {"city": "Berlin", "country": "Germany"},
    "rounds": [{"stage": "seed", "amount": 2}, {"stage": "A", "amount": 10}],
}


def test_parse_none_matches_everything():
    assert parse_filter(None) == MATCH_ALL
    assert matches(MATCH_ALL, DOC)


def test_parse_simple_equality_and_operators():
    expr = parse_filter({"fundingStage": "Series A", "employeeCount": {"$gte": 50, "$lt": 100}})
    assert isinstance(expr, Combinator)
    assert expr.kind == "and"
    assert Condition("fundingStage", "eq", "Series A") in expr.clauses
    assert Condition("employeeCount", "gte", 50) in expr.clauses
    assert Condition("employeeCount", "lt", 100) in expr.clauses


def test_bare_operator_names_are_accepted():
    expr = parse_filter({"employeeCount": {"gte": 50}})
    assert expr == Condition("employeeCount", "gte", 50)


def test_unknown_operator_rejected():
    with pytest.raises(FilterSyntaxError):
        parse_filter({"employeeCount": {"$between": [1, 2]}})


def test_top_level_combinators_need_non_empty_list():
    with pytest.raises(FilterSyntaxError):
        parse_filter({"$or": []})
    with pytest.raises(FilterSyntaxError):
        parse_filter({"$or": {"name": "x"}})
    with pytest.raises(FilterSyntaxError):
        parse_filter({"$where": "this.a > 1"})


def test_options_without_regex_rejected():
    with pytest.raises(FilterSyntaxError):
        parse_filter({"name": {"$options": "i"}})


def test_not_and_elem_match_parse():
    expr = parse_filter({"name": {"$not": {"$regex": "^beta", "$options": "i"}}})
    assert isinstance(expr, Negation)
    expr = parse_filter({"rounds": {"$elemMatch": {"stage": "A", "amount": {"$gt": 5}}}})
    assert isinstance(expr, Condition)
    assert expr.op == "elemMatch"


def test_field_names_walks_combinators():
    expr = parse_filter({"$or": [{"name": "x"}, {"$and": [{"industry": "y"}, {"employeeCount": 3}]}]})
    assert field_names(expr) == ["name", "industry", "employeeCount"]


def test_lookup_path_fans_out_over_arrays():
    assert lookup_path(DOC, "location.city") == ["Berlin"]
    assert lookup_path(DOC, "rounds.stage") == ["seed", "A"]
    assert lookup_path(DOC, "missing.path") == []
    assert get_value(DOC, "rounds.amount") == 2
    assert get_value(DOC, "nope", "default") == "default"


@pytest.mark.parametrize(
    "flt,expected",
    [
        ({"fundingStage": "Series A"}, True),
        ({"fundingStage": "Series B"}, False),
        ({"employeeCount": {"$gte": 50}}, True),
        ({"employeeCount": {"$gt": 80}}, False),
        ({"employeeCount": {"$ne": 80}}, False),
        ({"tags": "saas"}, True),
        ({"tags": {"$all": ["saas", "b2b"]}}, True),
        ({"tags": {"$size": 2}}, True),
        ({"fundingStage": {"$in": ["Series A", "Seed"]}}, True),
        ({"fundingStage": {"$nin": ["Series A"]}}, False),
        ({"name": {"$regex": "acme", "$options": "i"}}, True),
        ({"name": {"$regex": "acme"}}, False),
        ({"name": {"$not": {"$regex": "^Beta"}}}, True),
        ({"website": {"$exists": False}}, True),
        ({"website": None}, True),
        ({"isPublic": False}, True),
        ({"isPublic": 0}, False),
        ({"location.country": "Germany"}, True),
        ({"rounds": {"$elemMatch": {"stage": "A", "amount": {"$gte": 10}}}}, True),
        ({"rounds": {"$elemMatch": {"stage": "seed", "amount": {"$gte": 10}}}}, False),
        ({"$or": [{"fundingStage": "Seed"}, {"employeeCount": 80}]}, True),
        ({"$nor": [{"fundingStage": "Seed"}, {"employeeCount": 80}]}, False),
    ],
)
def test_matches(flt, expected):
    assert matches(parse_filter(flt), DOC) is expected


def test_comparison_across_types_does_not_match():
    assert not matches(parse_filter({"name": {"$gt": 5}}), DOC)


def test_in_requires_array_at_evaluation():
    expr = parse_filter({"fundingStage": {"$in": "Series A"}})
    with pytest.raises(FilterSyntaxError):
        matches(expr, DOC)


def test_empty_in_matches_nothing():
    assert not matches(parse_filter({"_id": {"$in": []}}), DOC)
