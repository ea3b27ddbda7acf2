# File: dalgen/models.py
"""
DALGen - Design Model
=====================
Pydantic V2 models describing an API design: attribute types, user and
media types with their storage options and relationships, resources with
their actions, plus the generation configuration and the records produced
by a generation run.

The design model is read-only once loaded. Renderers look entities up
through the O(1) maps built in ``model_post_init`` and never mutate them.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, Iterator, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    computed_field,
    field_validator,
    model_validator,
)

from dalgen.errors import DuplicateArtifactError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.models")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AttributeKind(str, Enum):
    """Closed set of attribute type kinds."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    NUMBER = "number"
    STRING = "string"
    ANY = "any"
    ARRAY = "array"
    OBJECT = "object"


class ArtifactKind(str, Enum):
    """Kinds of generated artifacts."""

    PACKAGE = "package"
    CONTEXTS = "contexts"
    MEDIA_TYPES = "media_types"
    HREFS = "hrefs"
    MODEL = "model"


PRIMITIVE_KINDS: FrozenSet[AttributeKind] = frozenset({
    AttributeKind.BOOLEAN,
    AttributeKind.INTEGER,
    AttributeKind.NUMBER,
    AttributeKind.STRING,
    AttributeKind.ANY,
})

# Route wildcards look like ":accountID"
_WILDCARD_RE: re.Pattern[str] = re.compile(r"/:([a-zA-Z0-9_]+)")

# ---------------------------------------------------------------------------
# Shared model configuration
# ---------------------------------------------------------------------------

_SHARED_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    validate_assignment=True,
    frozen=False,
    extra="forbid",
)


# ---------------------------------------------------------------------------
# Attribute types
# ---------------------------------------------------------------------------


class Validations(BaseModel):
    """Validation rules attached to a single attribute."""

    model_config = _SHARED_CONFIG

    enum: Optional[List[Any]] = Field(
        default=None, description="Allowed values."
    )
    format: Optional[str] = Field(
        default=None, description="Named string format (email, uri, ...)."
    )
    pattern: Optional[str] = Field(
        default=None, description="Regular expression the value must match."
    )
    minimum: Optional[float] = Field(default=None, description="Inclusive lower bound.")
    maximum: Optional[float] = Field(default=None, description="Inclusive upper bound.")
    min_length: Optional[int] = Field(default=None, ge=0, description="Minimum length.")
    max_length: Optional[int] = Field(default=None, ge=0, description="Maximum length.")

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"Invalid pattern {v!r}: {exc}") from exc
        return v

    @property
    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in (
                "enum", "format", "pattern", "minimum", "maximum",
                "min_length", "max_length",
            )
        )


class PrimitiveType(BaseModel):
    """A scalar (leaf) attribute type."""

    model_config = _SHARED_CONFIG

    kind: Literal["boolean", "integer", "number", "string", "any"] = Field(
        ..., description="Scalar kind."
    )


class ArrayType(BaseModel):
    """An ordered sequence of elements sharing one attribute definition."""

    model_config = _SHARED_CONFIG

    kind: Literal["array"] = "array"
    element: Attribute = Field(..., description="Element attribute.")


class ObjectType(BaseModel):
    """
    An ordered mapping of field name to attribute.

    ``type_name`` is set when the object stands for a declared user or
    media type; renderers then reference that type instead of inlining it.
    """

    model_config = _SHARED_CONFIG

    kind: Literal["object"] = "object"
    fields: Dict[str, Attribute] = Field(
        default_factory=dict, description="Fields in declaration order."
    )
    required: List[str] = Field(
        default_factory=list, description="Names of required fields."
    )
    non_zero: List[str] = Field(
        default_factory=list,
        description="Names of fields that must not hold their zero value.",
    )
    type_name: Optional[str] = Field(
        default=None, description="Declared type this object stands for."
    )

    @model_validator(mode="after")
    def _validate_required_names(self) -> "ObjectType":
        for group in ("required", "non_zero"):
            missing: List[str] = [
                n for n in getattr(self, group) if n not in self.fields
            ]
            if missing:
                raise ValueError(
                    f"'{group}' names unknown fields {missing}; "
                    f"declared fields: {list(self.fields)}"
                )
        return self

    def is_required(self, name: str) -> bool:
        return name in self.required

    def is_non_zero(self, name: str) -> bool:
        return name in self.non_zero

    def is_primitive_pointer(self, name: str) -> bool:
        """
        Whether field *name* is rendered as ``Optional[T] = None``.

        True for primitive, non-any fields that are neither required nor
        carry a default value.
        """
        att: Attribute = self.fields[name]
        return (
            att.kind in PRIMITIVE_KINDS
            and att.kind is not AttributeKind.ANY
            and not self.is_required(name)
            and att.default is None
        )


AttributeType = Annotated[
    Union[PrimitiveType, ArrayType, ObjectType],
    Field(discriminator="kind"),
]


class Attribute(BaseModel):
    """
    A typed value with optional validations and default.

    Accepts the shorthand ``"integer"`` or ``{"type": "integer"}`` for
    scalar attributes.
    """

    model_config = _SHARED_CONFIG

    type: AttributeType = Field(..., description="Attribute type.")
    description: str = Field(default="", description="Human description.")
    default: Any = Field(default=None, description="Default value.")
    validations: Validations = Field(default_factory=Validations)

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"type": {"kind": data}}
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            data = dict(data)
            data["type"] = {"kind": data["type"]}
        return data

    @property
    def kind(self) -> AttributeKind:
        return AttributeKind(self.type.kind)

    @property
    def is_primitive(self) -> bool:
        return self.kind in PRIMITIVE_KINDS

    @property
    def object_type(self) -> Optional[ObjectType]:
        return self.type if isinstance(self.type, ObjectType) else None

    def __repr__(self) -> str:
        return f"<Attribute {self.kind.value}>"


ArrayType.model_rebuild()
ObjectType.model_rebuild()
Attribute.model_rebuild()


# ---------------------------------------------------------------------------
# Storage options & relationships
# ---------------------------------------------------------------------------


class StorageOptions(BaseModel):
    """Per-type options driving relational model generation."""

    model_config = _SHARED_CONFIG

    cached: bool = Field(default=False, description="Front reads with a TTL cache.")
    table_name: str = Field(default="", description="Fixed table name.")
    dynamic_table_name: bool = Field(
        default=False, description="Table name is supplied on every call."
    )
    no_media: bool = Field(
        default=False, description="Skip record-to-media conversion helpers."
    )
    role_capable: bool = Field(default=False, description="Emit get_role().")
    sql_tag: str = Field(default="", description="Opaque SQL tag kept in table info.")


class PrimaryKey(BaseModel):
    """One row-identity field."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    kind: Literal["boolean", "integer", "number", "string"] = "integer"


class BelongsTo(BaseModel):
    """Many-to-one link recorded as a foreign-key column on the child."""

    model_config = _SHARED_CONFIG

    parent: str = Field(..., min_length=1, description="Parent type name.")
    foreign_key: str = Field(
        default="", description="Foreign key column; defaults to <parent>_id."
    )


class ManyToMany(BaseModel):
    """Association mediated by a join table."""

    model_config = _SHARED_CONFIG

    relation: str = Field(..., min_length=1, description="Relation name, e.g. 'Tag'.")
    related: str = Field(default="", description="Related type name; defaults to relation.")
    join_table: str = Field(default="", description="Join table name.")

    @model_validator(mode="after")
    def _default_related(self) -> "ManyToMany":
        if not self.related:
            object.__setattr__(self, "related", self.relation)
        return self


class View(BaseModel):
    """A named projection of a media type's fields."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    attributes: List[str] = Field(default_factory=list)
    attribute_views: Dict[str, str] = Field(
        default_factory=dict,
        description="View used to render a nested typed field, by field name.",
    )


# ---------------------------------------------------------------------------
# User & media types
# ---------------------------------------------------------------------------


class UserType(BaseModel):
    """A named data type, optionally backed by relational storage."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="Type name (PascalCase).")
    description: str = Field(default="")
    attribute: Attribute = Field(..., description="Root attribute, usually an object.")
    options: StorageOptions = Field(default_factory=StorageOptions)
    primary_keys: List[PrimaryKey] = Field(default_factory=list)
    belongs_to: List[BelongsTo] = Field(default_factory=list)
    many_to_many: List[ManyToMany] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_primary_key(self) -> "UserType":
        if not self.primary_keys:
            object.__setattr__(self, "primary_keys", [PrimaryKey(name="id")])
        return self

    @property
    def object_type(self) -> Optional[ObjectType]:
        return self.attribute.object_type

    @property
    def has_default_key(self) -> bool:
        """True when the row identity is the single integer ``id`` column."""
        return (
            len(self.primary_keys) == 1
            and self.primary_keys[0].name == "id"
            and self.primary_keys[0].kind == "integer"
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class MediaType(UserType):
    """A user type rendered in responses, with views and a content identifier."""

    identifier: str = Field(..., min_length=1, description="Content identifier.")
    views: List[View] = Field(default_factory=list)
    versions: List[str] = Field(default_factory=list)

    @property
    def is_collection(self) -> bool:
        return self.attribute.kind is AttributeKind.ARRAY

    def computed_views(self) -> List[View]:
        """Declared views, or one implicit ``default`` view with every field."""
        if self.views:
            return list(self.views)
        obj: Optional[ObjectType] = self.object_type
        names: List[str] = list(obj.fields) if obj is not None else []
        return [View(name="default", attributes=names)]

    def supports_version(self, version: str) -> bool:
        if not self.versions:
            return version == ""
        return version in self.versions


# ---------------------------------------------------------------------------
# Resources & actions
# ---------------------------------------------------------------------------


class Route(BaseModel):
    """One verb plus path template."""

    model_config = _SHARED_CONFIG

    verb: str = Field(default="GET")
    path: str = Field(default="")

    def params(self) -> List[str]:
        """Wildcard names declared in the path, in order."""
        return _WILDCARD_RE.findall(self.path)


class Response(BaseModel):
    """A named response with its status and optional media type identifier."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    status: int = Field(default=200, ge=100, le=599)
    media_type: Optional[str] = Field(default=None)


class Action(BaseModel):
    """One resource action with parameters, headers, payload and responses."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    routes: List[Route] = Field(default_factory=list)
    params: ObjectType = Field(default_factory=ObjectType)
    headers: ObjectType = Field(default_factory=ObjectType)
    payload: Optional[UserType] = Field(default=None)
    responses: List[Response] = Field(default_factory=list)

    def is_path_param(self, name: str) -> bool:
        """True when every route of the action declares *name* as a wildcard."""
        if not self.routes:
            return False
        return all(name in route.params() for route in self.routes)


class Resource(BaseModel):
    """A resource grouping actions under a base path."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    base_path: str = Field(default="")
    canonical_action: Optional[str] = Field(default=None)
    media_type: Optional[str] = Field(default=None, description="Default media type identifier.")
    versions: List[str] = Field(default_factory=list)
    headers: ObjectType = Field(default_factory=ObjectType)
    responses: List[Response] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)

    def supports_version(self, version: str) -> bool:
        if not self.versions:
            return version == ""
        return version in self.versions

    def get_action(self, name: str) -> Optional[Action]:
        for action in self.actions:
            if action.name == name:
                return action
        return None


# ---------------------------------------------------------------------------
# API definition (top-level container)
# ---------------------------------------------------------------------------


class APIDefinition(BaseModel):
    """
    The root of a design: every type and resource the generator processes.

    Invariant: ``_type_map`` and ``_media_by_identifier`` are built once
    after validation and give O(1) lookups.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    title: str = Field(default="")
    base_path: str = Field(default="")
    versions: List[str] = Field(default_factory=list)
    user_types: List[UserType] = Field(default_factory=list)
    media_types: List[MediaType] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)

    _type_map: Dict[str, UserType] = PrivateAttr(default_factory=dict)
    _media_by_identifier: Dict[str, MediaType] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._type_map = {t.name: t for t in self.user_types}
        self._type_map.update({m.name: m for m in self.media_types})
        self._media_by_identifier = {m.identifier: m for m in self.media_types}

    @model_validator(mode="after")
    def _validate_unique_names(self) -> "APIDefinition":
        names: List[str] = [t.name for t in self.user_types]
        names += [m.name for m in self.media_types]
        dupes: List[str] = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate type names: {dupes}")
        return self

    def get_type(self, name: str) -> Optional[UserType]:
        return self._type_map.get(name)

    def media_type_with_identifier(self, identifier: str) -> Optional[MediaType]:
        return self._media_by_identifier.get(identifier)

    def iterate_versions(self) -> Iterator[str]:
        """The default version ``""`` first, then declared versions in order."""
        yield ""
        for version in self.versions:
            if version:
                yield version

    def resources_for(self, version: str) -> List[Resource]:
        return [r for r in self.resources if r.supports_version(version)]

    def media_types_for(self, version: str) -> List[MediaType]:
        return [m for m in self.media_types if m.supports_version(version)]

    def storage_types(self) -> List[UserType]:
        """Object user types that get a relational model, in declaration order."""
        return [t for t in self.user_types if t.object_type is not None]

    def __repr__(self) -> str:
        return (
            f"<APIDefinition {self.name} "
            f"({len(self.user_types)} types, {len(self.media_types)} media types, "
            f"{len(self.resources)} resources)>"
        )


# ---------------------------------------------------------------------------
# Code Generation Configuration
# ---------------------------------------------------------------------------


class GenerationConfig(BaseModel):
    """Options controlling where and how generated code is laid out."""

    model_config = _SHARED_CONFIG

    output_dir: str = Field(
        default="./generated", description="Root package directory for generated code."
    )
    models_package: str = Field(
        default="models",
        pattern=r"^[a-z_][a-z0-9_]*$",
        description="Sub-package holding relational models.",
    )
    runtime_module: str = Field(
        default="dalgen.runtime",
        description="Module generated code imports its support code from.",
    )
    cache_expiration_seconds: float = Field(default=300.0, gt=0)
    cache_cleanup_seconds: float = Field(default=30.0, gt=0)
    generate_hrefs: bool = Field(default=True)
    overwrite_existing: bool = Field(default=True)

    @model_validator(mode="after")
    def _validate_cache_window(self) -> "GenerationConfig":
        if self.cache_cleanup_seconds > self.cache_expiration_seconds:
            logger.warning(
                "cache_cleanup_seconds (%s) exceeds cache_expiration_seconds (%s).",
                self.cache_cleanup_seconds,
                self.cache_expiration_seconds,
            )
        return self


# ---------------------------------------------------------------------------
# Generation output
# ---------------------------------------------------------------------------


class GeneratedFile(BaseModel):
    """A single generated artifact, identified by (version, key)."""

    model_config = _SHARED_CONFIG

    version: str = Field(default="", description="API version, '' for default.")
    key: str = Field(..., min_length=1, description="Logical artifact key.")
    path: str = Field(..., min_length=1, description="Path relative to output_dir.")
    kind: ArtifactKind = Field(...)
    content: str = Field(..., description="Full file content.")
    line_count: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _compute_metrics(self) -> "GeneratedFile":
        object.__setattr__(
            self, "line_count", self.content.count("\n") + (1 if self.content else 0)
        )
        object.__setattr__(self, "size_bytes", len(self.content.encode("utf-8")))
        return self


class GenerationResult(BaseModel):
    """All artifacts of one generation pass, in production order."""

    model_config = _SHARED_CONFIG

    api_name: str = Field(default="")
    files: List[GeneratedFile] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = Field(default=None)

    @computed_field  # type: ignore[misc]
    @property
    def total_files(self) -> int:
        return len(self.files)

    @computed_field  # type: ignore[misc]
    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)

    @computed_field  # type: ignore[misc]
    @property
    def artifact_paths(self) -> List[str]:
        return [f.path for f in self.files]

    def as_mapping(self) -> Dict[str, str]:
        """Relative path to content."""
        return {f.path: f.content for f in self.files}

    def get(self, version: str, key: str) -> Optional[GeneratedFile]:
        for f in self.files:
            if f.version == version and f.key == key:
                return f
        return None

    def add_file(
        self,
        version: str,
        key: str,
        path: str,
        kind: ArtifactKind,
        content: str,
    ) -> GeneratedFile:
        """Append an artifact; a second artifact for (version, key) is an error."""
        if self.get(version, key) is not None:
            raise DuplicateArtifactError(version, key)
        generated = GeneratedFile(
            version=version, key=key, path=path, kind=kind, content=content
        )
        self.files.append(generated)
        return generated

    def __repr__(self) -> str:
        return f"<GenerationResult {self.total_files} files, {self.total_lines} lines>"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "AttributeKind",
    "ArtifactKind",
    "PRIMITIVE_KINDS",
    "Validations",
    "PrimitiveType",
    "ArrayType",
    "ObjectType",
    "AttributeType",
    "Attribute",
    "StorageOptions",
    "PrimaryKey",
    "BelongsTo",
    "ManyToMany",
    "View",
    "UserType",
    "MediaType",
    "Route",
    "Response",
    "Action",
    "Resource",
    "APIDefinition",
    "GenerationConfig",
    "GeneratedFile",
    "GenerationResult",
]

logger.debug("dalgen.models loaded — %d public symbols.", len(__all__))
