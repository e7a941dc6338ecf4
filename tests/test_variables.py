import pytest

from agents.tools.base import StepResult
from core.errors import StepExecutionError, VariableResolutionError
from core.variables import (
    StepOutputRef,
    bind_references,
    resolve_reference,
    resolve_value,
    to_jsonable,
)

RESULTS = {
    "companies": StepResult(data=[{"_id": "c1", "name": "Acme"}, {"_id": "c2", "name": "Beta"}], count=2),
    "profile": StepResult(data={"_id": "e1", "company": {"name": "Acme"}}, count=1),
    "empty": StepResult(data=[], count=0),
}


def test_bind_template_and_ref_forms():
    bound, reads = bind_references({
        "collection": "employees",
        "filter": {
            "companyId": {"$in": "{{companies._id}}"},
            "name": {"$ref": "profile.company.name"},
        },
        "fields": ["title"],
    })
    assert bound["filter"]["companyId"]["$in"] == StepOutputRef("companies", ("_id",))
    assert bound["filter"]["name"] == StepOutputRef("profile", ("company", "name"))
    assert bound["fields"] == ["title"]
    assert reads == ["companies", "profile"]


def test_bind_leaves_plain_strings_alone():
    bound, reads = bind_references({"name": "{not a ref}", "n": 3})
    assert bound == {"name": "{not a ref}", "n": 3}
    assert reads == []


def test_bind_and_render_references():
    bound, reads = bind_references(["{{a.x}}", {"k": "{{ b }}"}])
    assert reads == ["a", "b"]
    assert bound[0].dotted == "a.x"
    assert to_jsonable(bound) == ["{{a.x}}", {"k": "{{b}}"}]


def test_list_projection():
    assert resolve_reference(StepOutputRef("companies", ("_id",)), RESULTS) == ["c1", "c2"]
    assert resolve_reference(StepOutputRef("companies", ("data", "name")), RESULTS) == ["Acme", "Beta"]


def test_empty_list_projects_to_empty_list():
    assert resolve_reference(StepOutputRef("empty", ("_id",)), RESULTS) == []


def test_index_and_nested_paths():
    assert resolve_reference(StepOutputRef("companies", ("1", "name")), RESULTS) == "Beta"
    assert resolve_reference(StepOutputRef("profile", ("company", "name")), RESULTS) == "Acme"
    whole = resolve_reference(StepOutputRef("companies"), RESULTS)
    assert len(whole) == 2


def test_unknown_variable_names_it():
    with pytest.raises(VariableResolutionError) as excinfo:
        resolve_reference(StepOutputRef("ghost", ("_id",)), RESULTS)
    assert excinfo.value.variable == "ghost"
    assert "ghost" in excinfo.value.message
    assert isinstance(excinfo.value, StepExecutionError)


def test_missing_key_raises():
    with pytest.raises(VariableResolutionError):
        resolve_reference(StepOutputRef("profile", ("missing",)), RESULTS)


def test_index_out_of_range_raises():
    with pytest.raises(VariableResolutionError):
        resolve_reference(StepOutputRef("companies", ("5",)), RESULTS)


def test_reading_from_scalar_raises():
    with pytest.raises(VariableResolutionError):
        resolve_reference(StepOutputRef("profile", ("_id", "deeper")), RESULTS)


def test_resolve_value_replaces_every_handle():
    bound, _ = bind_references({"filter": {"_id": {"$in": "{{companies._id}}"}}, "limit": 5})
    assert resolve_value(bound, RESULTS) == {"filter": {"_id": {"$in": ["c1", "c2"]}}, "limit": 5}
