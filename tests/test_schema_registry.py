import dataclasses

import pytest

from core.schema_registry import FallbackSource, SchemaRegistry


def test_default_registry_collections(registry):
    assert set(registry.collections) == {
        "companies", "employees", "enrichments", "gtm_intelligence", "gtm_persona_intelligence", "sessions",
    }
    assert registry.get_text_search_fields("companies") == ["name", "description", "industry"]
    assert registry.get_text_search_fields("nope") == []


def test_is_valid_field(registry):
    assert registry.is_valid_field("companies", "employeeCount")
    assert registry.is_valid_field("companies", "scoring.fit")
    assert registry.is_valid_field("enrichments", "data.employees_count")
    assert not registry.is_valid_field("companies", "name.first")
    assert not registry.is_valid_field("companies", "headcount")
    # only reachable through fallback
    assert not registry.is_valid_field("companies", "gtmOverview")
    assert not registry.is_valid_field("unknown", "name")


def test_fallback_sources_are_ordered(registry):
    sources = registry.get_fallback_sources("companies", "employeeCount")
    assert [s.path for s in sources] == ["$.data.employees_count", "$.data.size_employees_count"]
    assert all(s.collection == "enrichments" for s in sources)
    assert registry.get_fallback_sources("companies", "name") == []
    persona = registry.get_fallback_sources("employees", "personaOverview")
    assert persona == [FallbackSource("gtm_persona_intelligence", "$.overview", "_id", "employeeId")]


def test_validate_unknown_field_is_error(registry):
    result = registry.validate_filter("companies", {"headcount": {"gte": 50}})
    assert result.valid is False
    assert result.errors == ["Unknown field 'headcount' in companies"]
    assert result.warnings == []


def test_validate_fallback_only_field_is_warning(registry):
    result = registry.validate_filter("companies", {"gtmOverview": {"$exists": True}})
    assert result.valid is True
    assert result.warnings == ["Field 'gtmOverview' not in companies schema, but available in: gtm_intelligence"]


def test_validate_combinators_are_transparent(registry):
    result = registry.validate_filter(
        "companies",
        {"$or": [{"fundingStage": "Series A"}, {"$and": [{"bogus": 1}, {"employeeCount": {"$gt": 5}}]}]},
    )
    assert result.errors == ["Unknown field 'bogus' in companies"]


def test_validate_reports_a_repeated_field_once(registry):
    result = registry.validate_filter("companies", {"$or": [{"headcount": 1}, {"headcount": {"$gt": 5}}]})
    assert result.errors == ["Unknown field 'headcount' in companies"]


def test_describe_lists_text_search_fields(registry):
    text = registry.describe()
    assert "  text search: name, description, industry" in text
    assert "  - employeeCount: number" in text


def test_validate_unknown_collection_short_circuits(registry):
    result = registry.validate_filter("people", {"headcount": 1})
    assert result.valid is False
    assert result.errors == ["Unknown collection: people"]


def test_validate_malformed_filter(registry):
    result = registry.validate_filter("companies", {"name": {"$foo": 1}})
    assert result.valid is False
    assert "Unsupported operator" in result.errors[0]


def test_registry_is_immutable(registry):
    schema = registry.get_collection("companies")
    with pytest.raises(TypeError):
        schema.fields["newField"] = None
    with pytest.raises(dataclasses.FrozenInstanceError):
        schema.name = "other"


def test_from_dict_defaults():
    registry = SchemaRegistry.from_dict({
        "collections": {
            "things": {
                "fields": {
                    "_id": None,
                    "size": {"type": "number", "fallback": [{"collection": "extra", "path": "$.size"}]},
                }
            }
        }
    })
    size = registry.get_field("things", "size")
    assert size.fallback == (FallbackSource("extra", "$.size", "_id", "companyId"),)
    assert registry.get_field("things", "_id").type == "string"


def test_describe_mentions_fallbacks(registry):
    text = registry.describe()
    assert "gtmOverview: string (not stored; fallback gtm_intelligence:$.overview)" in text
    assert "companyId: objectId (ref companies)" in text
