# File: dalgen/validators.py
"""
DALGen - Design & Configuration Validators
==========================================
A **pure-function validation pipeline** over the pydantic models defined
in ``dalgen.models``.

Pydantic handles per-field structural correctness (kinds, required keys,
unique type names). This module adds **cross-entity semantic checks**:
reference resolution between types, resources and responses, names that
would collide with generated members, storage options that need specific
attributes, and shapes the renderers cannot express.

Usage by downstream modules:
    from dalgen.validators import validate_full
    result = validate_full(api, config)
    if result.has_errors:
        raise DesignValidationError(result)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from dalgen.models import (
    Action,
    APIDefinition,
    Attribute,
    AttributeKind,
    GenerationConfig,
    ObjectType,
    Resource,
    UserType,
)
from dalgen.relational import resolve_table_name
from dalgen.runtime import KNOWN_FORMATS, MODEL_FIELDS
from dalgen.utils import safe_identifier, to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.validators")

# ---------------------------------------------------------------------------
# Validation result container
# ---------------------------------------------------------------------------


class ValidationError:
    """Lightweight error descriptor (no pydantic overhead)."""

    __slots__ = ("level", "code", "message", "context")

    def __init__(
        self,
        level: str,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.level: str = level  # "error" | "warning" | "info"
        self.code: str = code
        self.message: str = message
        self.context: Dict[str, Any] = context or {}

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @property
    def is_warning(self) -> bool:
        return self.level == "warning"

    def __repr__(self) -> str:
        return f"[{self.level.upper()}] {self.code}: {self.message}"

    def __str__(self) -> str:
        return self.__repr__()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationResult:
    """Accumulates ``ValidationError`` instances produced by the pipeline."""

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: List[ValidationError] = []

    # -- Mutation -----------------------------------------------------------

    def add_error(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._items.append(ValidationError("error", code, message, context))

    def add_warning(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._items.append(ValidationError("warning", code, message, context))

    def add_info(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._items.append(ValidationError("info", code, message, context))

    def merge(self, other: "ValidationResult") -> None:
        self._items.extend(other._items)

    # -- Query --------------------------------------------------------------

    @property
    def errors(self) -> List[ValidationError]:
        return [e for e in self._items if e.is_error]

    @property
    def warnings(self) -> List[ValidationError]:
        return [e for e in self._items if e.is_warning]

    @property
    def all_items(self) -> List[ValidationError]:
        return list(self._items)

    @property
    def has_errors(self) -> bool:
        return any(e.is_error for e in self._items)

    @property
    def has_warnings(self) -> bool:
        return any(e.is_warning for e in self._items)

    @property
    def error_count(self) -> int:
        return sum(1 for e in self._items if e.is_error)

    @property
    def warning_count(self) -> int:
        return sum(1 for e in self._items if e.is_warning)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def codes(self) -> List[str]:
        return [e.code for e in self._items]

    def summary(self) -> str:
        return (
            f"Validation: {self.error_count} error(s), "
            f"{self.warning_count} warning(s), "
            f"{len(self._items)} total item(s)."
        )

    def __repr__(self) -> str:
        return f"<ValidationResult {self.summary()}>"

    def __bool__(self) -> bool:
        """Truthy when there are NO errors (i.e. valid)."""
        return self.is_valid

    def __len__(self) -> int:
        return len(self._items)

    def format_report(self, include_info: bool = False) -> str:
        """Human-readable multi-line report."""
        lines: List[str] = [self.summary(), ""]
        for item in self._items:
            if not include_info and item.level == "info":
                continue
            prefix: str = {"error": "✗", "warning": "!", "info": "i"}.get(item.level, "•")
            lines.append(f"  {prefix} [{item.code}] {item.message}")
            for k, v in item.context.items():
                lines.append(f"       {k}: {v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Reserved names
# ---------------------------------------------------------------------------

# Members of generated data classes
_TYPE_MEMBERS: FrozenSet[str] = frozenset({"validate", "dump"})

# Members of generated relational records
_RECORD_MEMBERS: FrozenSet[str] = frozenset({"to_dict", "to_media", "get_role", "table_name"})

# Fields of generated action contexts
_CONTEXT_MEMBERS: FrozenSet[str] = frozenset({"request", "payload"})

_DOTTED_IDENTIFIER_RE: re.Pattern[str] = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$"
)


def _walk(attribute: Attribute, path: str) -> Iterator[Tuple[str, Attribute]]:
    """Every attribute nested in *attribute*, depth first, with its path."""
    yield path, attribute
    if attribute.kind is AttributeKind.ARRAY:
        yield from _walk(attribute.type.element, f"{path}[]")
    elif attribute.kind is AttributeKind.OBJECT:
        for name, child in attribute.type.fields.items():
            yield from _walk(child, f"{path}.{name}")


def _all_types(api: APIDefinition) -> List[UserType]:
    types: List[UserType] = list(api.user_types) + list(api.media_types)
    for resource in api.resources:
        types.extend(a.payload for a in resource.actions if a.payload is not None)
    return types


# ---------------------------------------------------------------------------
# Individual validation functions
# ---------------------------------------------------------------------------


def validate_type_fields(api: APIDefinition) -> ValidationResult:
    """
    Field names of every declared type and payload:

    - must not collide with generated members (``validate``, ``dump``);
    - must not map to the same Python identifier as a sibling field;
    - nested objects follow the same rules.
    """
    result: ValidationResult = ValidationResult()
    for ut in _all_types(api):
        for path, attribute in _walk(ut.attribute, ut.name):
            obj: Optional[ObjectType] = attribute.object_type
            if obj is None:
                continue
            seen: Dict[str, str] = {}
            for name in obj.fields:
                ident: str = safe_identifier(name)
                ctx: Dict[str, Any] = {"type": ut.name, "field": f"{path}.{name}"}
                if ident in _TYPE_MEMBERS:
                    result.add_error(
                        "RESERVED_FIELD_NAME",
                        f"Field '{name}' of '{path}' collides with the generated "
                        f"'{ident}' method.",
                        ctx,
                    )
                if ident in seen:
                    result.add_error(
                        "FIELD_NAME_COLLISION",
                        f"Fields '{seen[ident]}' and '{name}' of '{path}' both "
                        f"render as '{ident}'.",
                        ctx,
                    )
                seen[ident] = name
    return result


def validate_formats(api: APIDefinition) -> ValidationResult:
    """Named formats must be known; rules must fit the attribute kind."""
    result: ValidationResult = ValidationResult()
    attributes: List[Tuple[str, Attribute]] = []
    for ut in _all_types(api):
        attributes.extend(_walk(ut.attribute, ut.name))
    for resource in api.resources:
        for action in resource.actions:
            for name, attribute in action.params.fields.items():
                attributes.extend(_walk(attribute, f"{resource.name}.{action.name}.{name}"))

    for path, attribute in attributes:
        rules = attribute.validations
        kind: AttributeKind = attribute.kind
        ctx: Dict[str, Any] = {"attribute": path}
        if rules.format is not None and rules.format not in KNOWN_FORMATS:
            result.add_error(
                "UNKNOWN_FORMAT",
                f"Attribute '{path}' uses unknown format '{rules.format}'. "
                f"Known formats: {sorted(KNOWN_FORMATS)}.",
                ctx,
            )
        if (rules.format or rules.pattern) and kind is not AttributeKind.STRING:
            result.add_warning(
                "STRING_RULE_IGNORED",
                f"Format and pattern rules on non-string attribute '{path}' are ignored.",
                ctx,
            )
        if (rules.minimum is not None or rules.maximum is not None) and kind not in (
            AttributeKind.INTEGER,
            AttributeKind.NUMBER,
        ):
            result.add_warning(
                "RANGE_RULE_IGNORED",
                f"Range rules on non-numeric attribute '{path}' are ignored.",
                ctx,
            )
        if (
            rules.minimum is not None
            and rules.maximum is not None
            and rules.minimum > rules.maximum
        ):
            result.add_error(
                "EMPTY_RANGE",
                f"Attribute '{path}' has minimum {rules.minimum} above maximum {rules.maximum}.",
                ctx,
            )
        if (
            rules.min_length is not None
            and rules.max_length is not None
            and rules.min_length > rules.max_length
        ):
            result.add_error(
                "EMPTY_LENGTH_RANGE",
                f"Attribute '{path}' has min_length above max_length.",
                ctx,
            )
    return result


def validate_media_types(api: APIDefinition) -> ValidationResult:
    """Root shape, view contents and identifier uniqueness of media types."""
    result: ValidationResult = ValidationResult()
    identifiers: Dict[str, str] = {}
    for mt in api.media_types:
        ctx: Dict[str, Any] = {"media_type": mt.name}
        if mt.identifier in identifiers:
            result.add_error(
                "DUPLICATE_IDENTIFIER",
                f"Media types '{identifiers[mt.identifier]}' and '{mt.name}' share "
                f"identifier '{mt.identifier}'.",
                ctx,
            )
        identifiers[mt.identifier] = mt.name

        if mt.attribute.kind not in (AttributeKind.OBJECT, AttributeKind.ARRAY):
            result.add_error(
                "MEDIA_ROOT_SHAPE",
                f"Media type '{mt.name}' must be an object or an array, "
                f"not '{mt.attribute.kind.value}'.",
                ctx,
            )
            continue
        for version in mt.versions:
            if version not in api.versions:
                result.add_warning(
                    "UNKNOWN_VERSION",
                    f"Media type '{mt.name}' declares undeclared version '{version}'.",
                    ctx,
                )

        obj: Optional[ObjectType] = mt.object_type
        if obj is None:
            if mt.views:
                result.add_warning(
                    "COLLECTION_VIEWS_IGNORED",
                    f"Collection '{mt.name}' takes its views from its element type.",
                    ctx,
                )
            continue
        seen_views: Set[str] = set()
        for view in mt.views:
            if view.name in seen_views:
                result.add_error(
                    "DUPLICATE_VIEW",
                    f"Media type '{mt.name}' declares view '{view.name}' twice.",
                    ctx,
                )
            seen_views.add(view.name)
            for name in view.attributes:
                if name not in obj.fields:
                    result.add_error(
                        "UNKNOWN_VIEW_ATTRIBUTE",
                        f"View '{view.name}' of '{mt.name}' lists unknown field '{name}'.",
                        {**ctx, "view": view.name},
                    )
            for name in view.attribute_views:
                if name not in view.attributes:
                    result.add_warning(
                        "UNUSED_ATTRIBUTE_VIEW",
                        f"View '{view.name}' of '{mt.name}' sets a nested view for "
                        f"'{name}', which it does not render.",
                        {**ctx, "view": view.name},
                    )
    return result


def validate_storage(api: APIDefinition) -> ValidationResult:
    """Keys, relationships and storage options of relational types."""
    result: ValidationResult = ValidationResult()
    types: Dict[str, UserType] = {t.name: t for t in api.storage_types()}
    tables: Dict[str, str] = {}

    for ut in types.values():
        obj: ObjectType = ut.object_type  # type: ignore[assignment]
        ctx: Dict[str, Any] = {"type": ut.name}
        columns: Set[str] = {safe_identifier(n) for n in obj.fields}

        for name in obj.fields:
            if safe_identifier(name) in _RECORD_MEMBERS:
                result.add_error(
                    "RESERVED_FIELD_NAME",
                    f"Field '{name}' of '{ut.name}' collides with a generated record method.",
                    ctx,
                )

        if not ut.has_default_key:
            for key in ut.primary_keys:
                if safe_identifier(key.name) not in columns:
                    result.add_error(
                        "PRIMARY_KEY_NOT_FOUND",
                        f"Primary key '{key.name}' of '{ut.name}' is not one of its fields.",
                        ctx,
                    )
        else:
            for name in obj.fields:
                if safe_identifier(name) in MODEL_FIELDS:
                    result.add_info(
                        "BASE_FIELD_DROPPED",
                        f"Field '{name}' of '{ut.name}' is provided by the base record.",
                        ctx,
                    )

        if ut.options.role_capable and "role" not in columns:
            result.add_error(
                "ROLE_ATTRIBUTE_MISSING",
                f"'{ut.name}' is role capable but declares no 'role' field.",
                ctx,
            )

        if not ut.options.dynamic_table_name:
            table: str = resolve_table_name(ut)
            if ut.options.table_name and table in tables:
                result.add_error(
                    "DUPLICATE_TABLE_NAME",
                    f"Types '{tables[table]}' and '{ut.name}' both use table '{table}'.",
                    ctx,
                )
            tables[table] = ut.name
        elif ut.options.table_name:
            result.add_info(
                "DEFAULT_TABLE_NAME",
                f"'{ut.name}' uses '{ut.options.table_name}' only as its default table name.",
                ctx,
            )

        for rel in ut.belongs_to:
            if rel.parent not in types:
                result.add_error(
                    "UNKNOWN_PARENT",
                    f"'{ut.name}' belongs to unknown type '{rel.parent}'.",
                    {**ctx, "parent": rel.parent},
                )
            fk: str = rel.foreign_key or f"{to_snake_case(rel.parent)}_id"
            declared: Optional[Attribute] = next(
                (a for n, a in obj.fields.items() if safe_identifier(n) == fk), None
            )
            if declared is not None and declared.kind is not AttributeKind.INTEGER:
                result.add_error(
                    "FOREIGN_KEY_KIND",
                    f"Foreign key '{fk}' of '{ut.name}' must be an integer field.",
                    ctx,
                )

        for rel in ut.many_to_many:
            related: Optional[UserType] = types.get(rel.related)
            if related is None:
                result.add_error(
                    "UNKNOWN_RELATED_TYPE",
                    f"'{ut.name}' relates to unknown type '{rel.related}'.",
                    {**ctx, "related": rel.related},
                )
                continue
            for side in (ut, related):
                if len(side.primary_keys) != 1 or side.primary_keys[0].kind != "integer":
                    result.add_error(
                        "MANY_TO_MANY_KEY",
                        f"Many-to-many '{ut.name}.{rel.relation}' needs '{side.name}' "
                        f"to have a single integer primary key.",
                        ctx,
                    )
    return result


def _validate_action(
    api: APIDefinition, resource: Resource, action: Action, result: ValidationResult
) -> None:
    ctx: Dict[str, Any] = {"resource": resource.name, "action": action.name}
    for name, attribute in action.params.fields.items():
        ident: str = safe_identifier(name)
        if ident in _CONTEXT_MEMBERS:
            result.add_error(
                "RESERVED_PARAM_NAME",
                f"Parameter '{name}' of '{resource.name}.{action.name}' collides "
                f"with the context's '{ident}' field.",
                ctx,
            )
        element: Attribute = (
            attribute.type.element if attribute.kind is AttributeKind.ARRAY else attribute
        )
        if element.kind in (AttributeKind.OBJECT, AttributeKind.ARRAY):
            result.add_error(
                "UNSUPPORTED_PARAM_SHAPE",
                f"Parameter '{name}' of '{resource.name}.{action.name}' must be a "
                f"primitive or an array of primitives.",
                ctx,
            )
    for name, attribute in action.headers.fields.items():
        if not attribute.is_primitive:
            result.add_warning(
                "HEADER_SHAPE_IGNORED",
                f"Header '{name}' is only checked for presence.",
                ctx,
            )
    for route in action.routes:
        for wildcard in route.params():
            if wildcard not in action.params.fields:
                result.add_warning(
                    "UNDECLARED_PATH_PARAM",
                    f"Route '{route.path}' of '{resource.name}.{action.name}' has "
                    f"wildcard '{wildcard}' with no declared parameter.",
                    ctx,
                )
    if action.payload is not None and action.payload.object_type is None:
        result.add_error(
            "PAYLOAD_SHAPE",
            f"Payload of '{resource.name}.{action.name}' must be an object.",
            ctx,
        )
    for response in action.responses + resource.responses:
        if response.media_type and api.media_type_with_identifier(response.media_type) is None:
            result.add_warning(
                "UNKNOWN_RESPONSE_MEDIA_TYPE",
                f"Response '{response.name}' references unknown media type "
                f"'{response.media_type}' and sends raw bytes.",
                {**ctx, "response": response.name},
            )


def validate_resources(api: APIDefinition) -> ValidationResult:
    """Names, parameters, payloads and responses of resources and actions."""
    result: ValidationResult = ValidationResult()
    seen_resources: Set[str] = set()
    for resource in api.resources:
        ctx: Dict[str, Any] = {"resource": resource.name}
        if resource.name in seen_resources:
            result.add_error(
                "DUPLICATE_RESOURCE",
                f"Resource '{resource.name}' is defined more than once.",
                ctx,
            )
        seen_resources.add(resource.name)
        for version in resource.versions:
            if version not in api.versions:
                result.add_warning(
                    "UNKNOWN_VERSION",
                    f"Resource '{resource.name}' declares undeclared version '{version}'.",
                    ctx,
                )
        if resource.canonical_action and resource.get_action(resource.canonical_action) is None:
            result.add_error(
                "UNKNOWN_CANONICAL_ACTION",
                f"Canonical action '{resource.canonical_action}' of '{resource.name}' "
                f"is not one of its actions.",
                ctx,
            )
        if resource.media_type and api.media_type_with_identifier(resource.media_type) is None:
            result.add_warning(
                "UNKNOWN_RESOURCE_MEDIA_TYPE",
                f"Resource '{resource.name}' references unknown media type "
                f"'{resource.media_type}'.",
                ctx,
            )

        seen_actions: Set[str] = set()
        for action in resource.actions:
            if action.name in seen_actions:
                result.add_error(
                    "DUPLICATE_ACTION",
                    f"Action '{action.name}' of '{resource.name}' is defined more than once.",
                    {**ctx, "action": action.name},
                )
            seen_actions.add(action.name)
            _validate_action(api, resource, action, result)
    return result


def validate_generation_config(config: GenerationConfig) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    if not _DOTTED_IDENTIFIER_RE.match(config.runtime_module):
        result.add_error(
            "INVALID_RUNTIME_MODULE",
            f"runtime_module '{config.runtime_module}' is not an importable module path.",
            {"runtime_module": config.runtime_module},
        )
    if safe_identifier(config.models_package) != config.models_package:
        result.add_error(
            "INVALID_MODELS_PACKAGE",
            f"models_package '{config.models_package}' is not a valid package name.",
            {"models_package": config.models_package},
        )
    if config.models_package in {"contexts", "media_types", "hrefs"}:
        result.add_error(
            "MODELS_PACKAGE_CLASH",
            f"models_package '{config.models_package}' clashes with a generated module.",
            {"models_package": config.models_package},
        )
    return result


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


def validate_design(api: APIDefinition) -> ValidationResult:
    """Run all design-level validators and merge their results."""
    result: ValidationResult = ValidationResult()
    validators: List[Callable[[APIDefinition], ValidationResult]] = [
        validate_type_fields,
        validate_formats,
        validate_media_types,
        validate_storage,
        validate_resources,
    ]
    for validator_fn in validators:
        logger.debug("Running validator: %s", validator_fn.__name__)
        result.merge(validator_fn(api))
    logger.info("Design validation complete: %s", result.summary())
    return result


def validate_full(api: APIDefinition, config: GenerationConfig) -> ValidationResult:
    """
    **Master validation entry point**, called by ``generator.py`` and
    ``cli.py`` before any code is rendered.
    """
    logger.info(
        "Starting full validation of '%s': %d user types, %d media types, %d resources.",
        api.name,
        len(api.user_types),
        len(api.media_types),
        len(api.resources),
    )
    result: ValidationResult = ValidationResult()
    result.merge(validate_design(api))
    result.merge(validate_generation_config(config))

    for item in result.warnings:
        logger.warning("%s", item)
    if result.has_errors:
        logger.error("Validation FAILED with %d error(s). %s", result.error_count, result.summary())
    else:
        logger.info("Validation PASSED. %s", result.summary())
    return result


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ValidationError",
    "ValidationResult",
    "validate_type_fields",
    "validate_formats",
    "validate_media_types",
    "validate_storage",
    "validate_resources",
    "validate_generation_config",
    "validate_design",
    "validate_full",
]

logger.debug("dalgen.validators loaded — %d public symbols.", len(__all__))
