"""
tests/test_validators.py
Unit tests for dalgen.validators.

Tests cover:
- ValidationResult accumulation and reporting
- Field names of types and payloads
- Validation rules and named formats
- Media type shapes and views
- Relational storage: keys, relationships, table names
- Resources and actions: parameters, headers, routes, payloads, responses
- Generation config
- The full pipeline on the reference design
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from dalgen.models import APIDefinition, GenerationConfig
from dalgen.validators import (
    ValidationError,
    ValidationResult,
    validate_design,
    validate_formats,
    validate_full,
    validate_generation_config,
    validate_media_types,
    validate_resources,
    validate_storage,
    validate_type_fields,
)


# ===========================================================================
# Design builders
# ===========================================================================


def _api(**sections: Any) -> APIDefinition:
    raw: Dict[str, Any] = {"name": "test"}
    raw.update(sections)
    return APIDefinition.model_validate(raw)


def _type(name: str, fields: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    return {"name": name, "attribute": {"type": {"kind": "object", "fields": fields}}, **extra}


def _media(name: str, identifier: str, fields: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    return {**_type(name, fields), "identifier": identifier, **extra}


def _resource(actions: List[Dict[str, Any]], name: str = "item", **extra: Any) -> Dict[str, Any]:
    return {"name": name, "base_path": f"/{name}s", "actions": actions, **extra}


def _action(name: str = "show", **extra: Any) -> Dict[str, Any]:
    return {"name": name, **extra}


def _codes(result: ValidationResult, level: str = "") -> List[str]:
    return [i.code for i in result.all_items if not level or i.level == level]


# ===========================================================================
# ValidationResult
# ===========================================================================


class TestValidationResult:
    """Accumulation, counting and reporting."""

    def test_empty_result_is_valid(self) -> None:
        result = ValidationResult()
        assert result.is_valid
        assert bool(result) is True
        assert len(result) == 0
        assert result.codes() == []

    def test_levels(self) -> None:
        result = ValidationResult()
        result.add_error("E1", "broken", {"type": "Post"})
        result.add_warning("W1", "odd")
        result.add_info("I1", "fyi")
        assert result.error_count == 1 and result.warning_count == 1
        assert result.has_errors and result.has_warnings
        assert bool(result) is False
        assert result.codes() == ["E1", "W1", "I1"]
        assert [e.code for e in result.errors] == ["E1"]
        assert [w.code for w in result.warnings] == ["W1"]

    def test_merge_keeps_order(self) -> None:
        first, second = ValidationResult(), ValidationResult()
        first.add_warning("A", "a")
        second.add_error("B", "b")
        first.merge(second)
        assert first.codes() == ["A", "B"]

    def test_format_report(self) -> None:
        result = ValidationResult()
        result.add_error("E1", "broken", {"type": "Post"})
        result.add_info("I1", "fyi")
        report = result.format_report()
        assert report.startswith("Validation: 1 error(s), 0 warning(s), 2 total item(s).")
        assert "[E1] broken" in report
        assert "type: Post" in report
        assert "I1" not in report
        assert "[I1] fyi" in result.format_report(include_info=True)

    def test_error_descriptor(self) -> None:
        item = ValidationError("warning", "W1", "odd")
        assert item.is_warning and not item.is_error
        assert str(item) == "[WARNING] W1: odd"
        assert item.to_dict() == {"level": "warning", "code": "W1", "message": "odd", "context": {}}


# ===========================================================================
# Field names
# ===========================================================================


class TestTypeFields:
    """Generated members and identifier collisions."""

    def test_generated_method_names_are_reserved(self) -> None:
        api = _api(media_types=[_media("Doc", "application/vnd.doc+json", {"validate": "string"})])
        assert _codes(validate_type_fields(api)) == ["RESERVED_FIELD_NAME"]

    def test_nested_objects_are_checked(self) -> None:
        nested = {"type": {"kind": "object", "fields": {"dump": "string"}}}
        api = _api(user_types=[_type("Doc", {"meta": nested})])
        result = validate_type_fields(api)
        assert _codes(result) == ["RESERVED_FIELD_NAME"]
        assert result.errors[0].context["field"] == "Doc.meta.dump"

    def test_identifier_collision(self) -> None:
        api = _api(user_types=[_type("Doc", {"postID": "integer", "post_id": "integer"})])
        assert _codes(validate_type_fields(api)) == ["FIELD_NAME_COLLISION"]

    def test_payload_fields_are_checked(self) -> None:
        payload = _type("DocPayload", {"dump": "string"})
        api = _api(resources=[_resource([_action("create", payload=payload)])])
        assert _codes(validate_type_fields(api)) == ["RESERVED_FIELD_NAME"]

    def test_reference_design_is_clean(self, api: APIDefinition) -> None:
        assert len(validate_type_fields(api)) == 0


# ===========================================================================
# Rules and formats
# ===========================================================================


class TestFormats:
    """Validation rules must make sense for the attribute kind."""

    def _with(self, attribute: Any) -> APIDefinition:
        return _api(user_types=[_type("Doc", {"value": attribute})])

    def test_unknown_format(self) -> None:
        result = validate_formats(self._with({"type": "string", "validations": {"format": "isbn"}}))
        assert _codes(result) == ["UNKNOWN_FORMAT"]
        assert result.errors[0].context == {"attribute": "Doc.value"}

    def test_known_format(self) -> None:
        assert len(validate_formats(self._with({"type": "string", "validations": {"format": "email"}}))) == 0

    def test_string_rules_on_numbers(self) -> None:
        result = validate_formats(self._with({"type": "integer", "validations": {"pattern": "^1"}}))
        assert _codes(result, "warning") == ["STRING_RULE_IGNORED"]
        assert result.is_valid

    def test_range_rules_on_strings(self) -> None:
        result = validate_formats(self._with({"type": "string", "validations": {"minimum": 1}}))
        assert _codes(result, "warning") == ["RANGE_RULE_IGNORED"]

    def test_empty_ranges(self) -> None:
        numeric = self._with({"type": "number", "validations": {"minimum": 5, "maximum": 1}})
        assert _codes(validate_formats(numeric)) == ["EMPTY_RANGE"]
        lengths = self._with({"type": "string", "validations": {"min_length": 3, "max_length": 2}})
        assert _codes(validate_formats(lengths)) == ["EMPTY_LENGTH_RANGE"]

    def test_action_params_are_checked(self) -> None:
        params = {"fields": {"since": {"type": "string", "validations": {"format": "when"}}}}
        api = _api(resources=[_resource([_action("list", params=params)])])
        result = validate_formats(api)
        assert _codes(result) == ["UNKNOWN_FORMAT"]
        assert result.errors[0].context["attribute"] == "item.list.since"


# ===========================================================================
# Media types
# ===========================================================================


class TestMediaTypes:
    """Identifiers, root shapes and views."""

    def test_duplicate_identifier(self) -> None:
        api = _api(media_types=[
            _media("A", "application/vnd.x+json", {"a": "string"}),
            _media("B", "application/vnd.x+json", {"b": "string"}),
        ])
        assert _codes(validate_media_types(api)) == ["DUPLICATE_IDENTIFIER"]

    def test_root_must_be_object_or_array(self) -> None:
        api = _api(media_types=[{"name": "Raw", "identifier": "text/x-raw", "attribute": "string"}])
        assert _codes(validate_media_types(api)) == ["MEDIA_ROOT_SHAPE"]

    def test_unknown_version(self) -> None:
        api = _api(versions=["1.0"], media_types=[
            _media("A", "application/vnd.a+json", {"a": "string"}, versions=["2.0"]),
        ])
        assert _codes(validate_media_types(api), "warning") == ["UNKNOWN_VERSION"]

    def test_collection_views_are_ignored(self) -> None:
        api = _api(media_types=[{
            "name": "Names",
            "identifier": "application/vnd.names+json",
            "attribute": {"type": {"kind": "array", "element": "string"}},
            "views": [{"name": "default"}],
        }])
        assert _codes(validate_media_types(api), "warning") == ["COLLECTION_VIEWS_IGNORED"]

    def test_view_problems(self) -> None:
        api = _api(media_types=[
            _media(
                "A",
                "application/vnd.a+json",
                {"a": "string", "b": "string"},
                views=[
                    {"name": "default", "attributes": ["a", "c"]},
                    {"name": "default", "attributes": ["b"], "attribute_views": {"a": "tiny"}},
                ],
            )
        ])
        result = validate_media_types(api)
        assert _codes(result) == ["UNKNOWN_VIEW_ATTRIBUTE", "DUPLICATE_VIEW", "UNUSED_ATTRIBUTE_VIEW"]
        assert result.errors[0].context == {"media_type": "A", "view": "default"}

    def test_reference_design_is_clean(self, api: APIDefinition) -> None:
        assert len(validate_media_types(api)) == 0


# ===========================================================================
# Storage
# ===========================================================================


class TestStorage:
    """Keys, relationships and table names of relational types."""

    def test_record_members_are_reserved(self) -> None:
        api = _api(user_types=[_type("Doc", {"to_dict": "string"})])
        assert _codes(validate_storage(api)) == ["RESERVED_FIELD_NAME"]

    def test_primary_key_must_be_a_field(self) -> None:
        api = _api(user_types=[_type("Doc", {"code": "string"}, primary_keys=[{"name": "slug", "kind": "string"}])])
        assert _codes(validate_storage(api)) == ["PRIMARY_KEY_NOT_FOUND"]

    def test_base_fields_are_reported(self) -> None:
        api = _api(user_types=[_type("Doc", {"id": "integer", "created_at": "string"})])
        result = validate_storage(api)
        assert _codes(result, "info") == ["BASE_FIELD_DROPPED", "BASE_FIELD_DROPPED"]
        assert result.is_valid

    def test_role_capable_needs_role(self) -> None:
        api = _api(user_types=[_type("Doc", {"name": "string"}, options={"role_capable": True})])
        assert _codes(validate_storage(api)) == ["ROLE_ATTRIBUTE_MISSING"]

    def test_duplicate_table_name(self) -> None:
        api = _api(user_types=[
            _type("Thing", {"a": "string"}),
            _type("Other", {"b": "string"}, options={"table_name": "things"}),
        ])
        result = validate_storage(api)
        assert _codes(result) == ["DUPLICATE_TABLE_NAME"]
        assert result.errors[0].context == {"type": "Other"}

    def test_dynamic_table_name_default(self) -> None:
        api = _api(user_types=[
            _type("Log", {"a": "string"}, options={"dynamic_table_name": True, "table_name": "logs"}),
            _type("Other", {"b": "string"}, options={"table_name": "logs"}),
        ])
        assert _codes(validate_storage(api)) == ["DEFAULT_TABLE_NAME"]

    def test_unknown_parent(self) -> None:
        api = _api(user_types=[_type("Comment", {"text": "string"}, belongs_to=[{"parent": "Post"}])])
        result = validate_storage(api)
        assert _codes(result) == ["UNKNOWN_PARENT"]
        assert result.errors[0].context["parent"] == "Post"

    def test_foreign_key_must_be_integer(self) -> None:
        api = _api(user_types=[
            _type("Post", {"title": "string"}),
            _type("Comment", {"post_ref": "string"}, belongs_to=[{"parent": "Post", "foreign_key": "post_ref"}]),
        ])
        assert _codes(validate_storage(api)) == ["FOREIGN_KEY_KIND"]

    def test_implicit_foreign_key_is_accepted(self) -> None:
        api = _api(user_types=[
            _type("Post", {"title": "string"}),
            _type("Comment", {"text": "string"}, belongs_to=[{"parent": "Post"}]),
        ])
        assert len(validate_storage(api)) == 0

    def test_unknown_related_type(self) -> None:
        api = _api(user_types=[_type("Post", {"title": "string"}, many_to_many=[{"relation": "Tag"}])])
        assert _codes(validate_storage(api)) == ["UNKNOWN_RELATED_TYPE"]

    def test_many_to_many_needs_integer_keys(self) -> None:
        api = _api(user_types=[
            _type("Post", {"title": "string"}, many_to_many=[{"relation": "Label"}]),
            _type("Label", {"code": "string"}, primary_keys=[{"name": "code", "kind": "string"}]),
        ])
        result = validate_storage(api)
        assert _codes(result) == ["MANY_TO_MANY_KEY"]
        assert "'Label'" in result.errors[0].message

    def test_reference_design_has_no_errors(self, api: APIDefinition) -> None:
        result = validate_storage(api)
        assert result.is_valid
        assert _codes(result, "info") == ["DEFAULT_TABLE_NAME"]


# ===========================================================================
# Resources and actions
# ===========================================================================


class TestResources:
    """Parameters, headers, routes, payloads and responses."""

    def test_reserved_param_name(self) -> None:
        api = _api(resources=[_resource([_action(params={"fields": {"payload": "string"}})])])
        assert _codes(validate_resources(api)) == ["RESERVED_PARAM_NAME"]

    def test_param_shapes(self) -> None:
        nested_array = {"type": {"kind": "array", "element": {"type": {"kind": "array", "element": "string"}}}}
        params = {
            "fields": {
                "filter": {"type": {"kind": "object", "fields": {}}},
                "grid": nested_array,
                "ids": {"type": {"kind": "array", "element": "integer"}},
            }
        }
        api = _api(resources=[_resource([_action(params=params)])])
        assert _codes(validate_resources(api)) == ["UNSUPPORTED_PARAM_SHAPE", "UNSUPPORTED_PARAM_SHAPE"]

    def test_composite_headers_are_presence_checked(self) -> None:
        headers = {"fields": {"X-Tags": {"type": {"kind": "array", "element": "string"}}}}
        api = _api(resources=[_resource([_action(headers=headers)])])
        assert _codes(validate_resources(api), "warning") == ["HEADER_SHAPE_IGNORED"]

    def test_undeclared_path_param(self) -> None:
        api = _api(resources=[_resource([_action(routes=[{"verb": "GET", "path": "/:itemID"}])])])
        result = validate_resources(api)
        assert _codes(result, "warning") == ["UNDECLARED_PATH_PARAM"]
        assert result.is_valid

    def test_payload_must_be_object(self) -> None:
        payload = {"name": "Raw", "attribute": "string"}
        api = _api(resources=[_resource([_action("create", payload=payload)])])
        assert _codes(validate_resources(api)) == ["PAYLOAD_SHAPE"]

    def test_unknown_response_media_type(self) -> None:
        responses = [{"name": "ok", "status": 200, "media_type": "text/csv"}]
        api = _api(resources=[_resource([_action(responses=responses)])])
        result = validate_resources(api)
        assert _codes(result, "warning") == ["UNKNOWN_RESPONSE_MEDIA_TYPE"]
        assert result.warnings[0].context["response"] == "ok"

    def test_resource_responses_are_checked_per_action(self) -> None:
        api = _api(resources=[_resource(
            [_action("show"), _action("list")],
            responses=[{"name": "gone", "status": 410, "media_type": "text/csv"}],
        )])
        assert _codes(validate_resources(api)) == ["UNKNOWN_RESPONSE_MEDIA_TYPE"] * 2

    def test_resource_problems(self) -> None:
        api = _api(resources=[
            _resource([_action("show"), _action("show")], canonical_action="get",
                      media_type="application/vnd.none+json", versions=["3.0"]),
            _resource([]),
        ])
        assert _codes(validate_resources(api)) == [
            "UNKNOWN_VERSION",
            "UNKNOWN_CANONICAL_ACTION",
            "UNKNOWN_RESOURCE_MEDIA_TYPE",
            "DUPLICATE_ACTION",
            "DUPLICATE_RESOURCE",
        ]

    def test_reference_design_warns_about_raw_preview(self, api: APIDefinition) -> None:
        result = validate_resources(api)
        assert result.is_valid
        assert _codes(result) == ["UNKNOWN_RESPONSE_MEDIA_TYPE"]
        assert "text/plain" in result.warnings[0].message


# ===========================================================================
# Generation config
# ===========================================================================


class TestGenerationConfig:
    """Names generated code is laid out under."""

    def test_defaults_are_valid(self, config: GenerationConfig) -> None:
        assert len(validate_generation_config(config)) == 0

    @pytest.mark.parametrize("module", ["my-runtime", "a..b", "1pkg", ""])
    def test_runtime_module_must_be_importable(self, module: str) -> None:
        result = validate_generation_config(GenerationConfig(runtime_module=module))
        assert _codes(result) == ["INVALID_RUNTIME_MODULE"]

    def test_dotted_runtime_module(self) -> None:
        assert len(validate_generation_config(GenerationConfig(runtime_module="app.support.dal"))) == 0

    def test_keyword_models_package(self) -> None:
        assert _codes(validate_generation_config(GenerationConfig(models_package="class"))) == [
            "INVALID_MODELS_PACKAGE"
        ]

    def test_models_package_clash(self) -> None:
        assert _codes(validate_generation_config(GenerationConfig(models_package="hrefs"))) == [
            "MODELS_PACKAGE_CLASH"
        ]


# ===========================================================================
# Pipelines
# ===========================================================================


class TestPipelines:
    """validate_design and validate_full."""

    def test_reference_design(self, api: APIDefinition, config: GenerationConfig) -> None:
        result = validate_full(api, config)
        assert result.is_valid
        assert [w.code for w in result.warnings] == ["UNKNOWN_RESPONSE_MEDIA_TYPE"]

    def test_minimal_design_is_clean(self, minimal_api: APIDefinition, config: GenerationConfig) -> None:
        assert validate_full(minimal_api, config).codes() == []

    def test_design_checks_run_in_order(self) -> None:
        api = _api(
            user_types=[_type("Doc", {"dump": "string", "n": {"type": "integer", "validations": {"format": "x"}}},
                              options={"role_capable": True})],
            media_types=[{"name": "Raw", "identifier": "text/x-raw", "attribute": "string"}],
            resources=[_resource([_action(), _action()])],
        )
        assert _codes(validate_design(api), "error") == [
            "RESERVED_FIELD_NAME",
            "UNKNOWN_FORMAT",
            "MEDIA_ROOT_SHAPE",
            "ROLE_ATTRIBUTE_MISSING",
            "DUPLICATE_ACTION",
        ]

    def test_full_includes_config(self, minimal_api: APIDefinition) -> None:
        result = validate_full(minimal_api, GenerationConfig(models_package="contexts"))
        assert result.codes() == ["MODELS_PACKAGE_CLASH"]
        assert not result
