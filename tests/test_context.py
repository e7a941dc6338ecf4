import logging

import pytest

from core.context import GOVERNED_COLLECTIONS, build_context, merge_filters
from core.errors import ScopeError


def test_build_context_predicates():
    scope = build_context("u1", "s1", "m1")
    assert scope.filter_for("companies") == {"userId": "u1", "icpModelId": "m1", "sessionId": "s1"}
    assert scope.filter_for("enrichments") == {"userId": "u1", "icpModelId": "m1", "sessionId": "s1"}
    assert scope.filter_for("sessions") == {"userId": "u1", "icpModelId": "m1", "_id": "s1"}
    assert set(scope.predicates) == set(GOVERNED_COLLECTIONS)


def test_build_context_user_only():
    scope = build_context("u1")
    assert scope.filter_for("employees") == {"userId": "u1"}
    assert scope.session_id is None
    assert "user=u1" in scope.summary()


@pytest.mark.parametrize("user_id", [None, "", "   "])
def test_missing_user_is_scope_error(user_id):
    with pytest.raises(ScopeError):
        build_context(user_id, "s1")


def test_ungoverned_collection_rejected():
    with pytest.raises(ScopeError):
        build_context("u1").filter_for("audit_log")


def test_scope_wins_over_caller_keys(caplog):
    with caplog.at_level(logging.WARNING, logger="core.context"):
        merged = merge_filters({"userId": "u1"}, {"userId": "u2", "name": "Acme"})
    assert merged == {"userId": "u1", "name": "Acme"}
    assert "override scope key 'userId'" in caplog.text


def test_and_lists_are_concatenated():
    merged = merge_filters(
        {"userId": "u1", "$and": [{"sessionId": "s1"}]},
        {"$and": [{"name": "Acme"}], "fundingStage": "Series A"},
    )
    assert merged["userId"] == "u1"
    assert merged["fundingStage"] == "Series A"
    assert merged["$and"] == [{"name": "Acme"}, {"sessionId": "s1"}]


def test_merge_does_not_mutate_inputs():
    scope = {"userId": "u1"}
    caller = {"userId": "u2"}
    merge_filters(scope, caller)
    assert caller == {"userId": "u2"}
    assert scope == {"userId": "u1"}


def test_scoped_returns_effective_filter():
    scope = build_context("u1", "s1")
    assert scope.scoped("companies", {"sessionId": "other", "name": "x"}) == {
        "sessionId": "s1", "name": "x", "userId": "u1",
    }
