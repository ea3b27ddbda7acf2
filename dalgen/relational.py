# File: dalgen/relational.py
"""
DALGen - Relational Model Generator
===================================
Renders one module per storage-backed user type containing:

- ``<type>_table(name)``: the SQLAlchemy Core ``Table`` of the type,
  created once per table name in the module's ``metadata``;
- ``create_tables(engine)``: creates that table and its join tables;
- the record dataclass (embedding ``Model`` when keyed by a single
  integer ``id``), with ``to_dict`` and, where enabled, ``table_name``,
  ``get_role`` and ``to_media``;
- per belongs-to parent a query scope ``<type>_filter_by_<parent>`` and
  an in-memory ``filter_<type>_by_<parent>``;
- a ``<Type>Storage`` protocol and the ``<Type>DB`` data access object:
  ``one``, ``list``, ``add``, ``update``, ``delete``, the parent-scoped
  ``list_by_<parent>``/``one_by_<parent>`` and the many-to-many
  ``add_<rel>``/``delete_<rel>``/``list_<rels>``.

With ``cached`` set, reads go through a ``ReadThroughCache`` and writes
update it in the background. With ``dynamic_table_name`` set, every
operation takes the table name as its first argument.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dalgen.coercion import field_declaration
from dalgen.models import (
    APIDefinition,
    Attribute,
    AttributeKind,
    BelongsTo,
    GenerationConfig,
    ManyToMany,
    MediaType,
    ObjectType,
    PrimaryKey,
    UserType,
)
from dalgen.runtime import MODEL_FIELDS
from dalgen.utils import (
    RenderScope,
    class_name,
    docstring_line,
    indent_lines,
    join_blocks,
    pad,
    quote,
    safe_identifier,
    to_plural,
    to_snake_case,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.relational")

# ---------------------------------------------------------------------------
# Type tables
# ---------------------------------------------------------------------------

_COLUMN_TYPES: Dict[AttributeKind, str] = {
    AttributeKind.BOOLEAN: "sa.Boolean",
    AttributeKind.INTEGER: "sa.Integer",
    AttributeKind.NUMBER: "sa.Float",
    AttributeKind.STRING: "sa.String",
    AttributeKind.ANY: "sa.JSON",
    AttributeKind.ARRAY: "sa.JSON",
    AttributeKind.OBJECT: "sa.JSON",
}

_KEY_TYPES: Dict[str, Tuple[str, str]] = {
    "integer": ("int", "sa.Integer"),
    "string": ("str", "sa.String"),
    "number": ("float", "sa.Float"),
    "boolean": ("bool", "sa.Boolean"),
}


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


def resolve_table_name(ut: UserType) -> str:
    """Declared table name, else the plural snake_case type name."""
    return ut.options.table_name or to_plural(to_snake_case(ut.name))


def foreign_key_column(rel: BelongsTo) -> str:
    return rel.foreign_key or f"{to_snake_case(rel.parent)}_id"


def join_table_name(owner: UserType, rel: ManyToMany) -> str:
    return rel.join_table or f"{to_snake_case(owner.name)}_{to_plural(to_snake_case(rel.related))}"


def join_columns(owner: UserType, rel: ManyToMany) -> Tuple[str, str]:
    """Owner and related id columns of the join table."""
    owner_col: str = f"{to_snake_case(owner.name)}_id"
    related_col: str = f"{to_snake_case(rel.related)}_id"
    if owner_col == related_col:
        related_col = f"{to_snake_case(rel.relation)}_id"
    return owner_col, related_col


def model_module_name(ut: UserType) -> str:
    return safe_identifier(ut.name)


def record_attributes(ut: UserType) -> Dict[str, Attribute]:
    """
    Attributes stored as record fields, in declaration order.

    When the type embeds the ``Model`` base record, attributes whose column
    would collide with the base fields (``id``, ``created_at``,
    ``updated_at``) are left to the base.
    """
    obj: Optional[ObjectType] = ut.object_type
    if obj is None:
        return {}
    if not ut.has_default_key:
        return dict(obj.fields)
    return {
        name: attribute
        for name, attribute in obj.fields.items()
        if safe_identifier(name) not in MODEL_FIELDS
    }


# ---------------------------------------------------------------------------
# Internal structures
# ---------------------------------------------------------------------------


@dataclass
class _Column:
    name: str
    sa_type: str
    primary_key: bool = False
    nullable: bool = True

    def render(self) -> str:
        options: List[str] = []
        if self.primary_key:
            options.append("primary_key=True")
        elif not self.nullable:
            options.append("nullable=False")
        suffix: str = "".join(f", {o}" for o in options)
        return f"sa.Column({quote(self.name)}, {self.sa_type}{suffix})"


@dataclass
class _Operation:
    name: str
    params: List[str]
    returns: str
    doc: str
    body: List[str] = field(default_factory=list)
    public: bool = True

    def signature(self) -> str:
        return f"def {self.name}({', '.join(['self'] + self.params)}) -> {self.returns}:"

    def render(self) -> List[str]:
        lines: List[str] = [f"{pad(1)}{self.signature()}", docstring_line(self.doc, 2)]
        lines.extend(indent_lines(self.body, 2))
        return lines


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class RelationalModelGenerator:
    """Renders the relational model module of one user type."""

    def __init__(self, api: APIDefinition, ut: UserType, config: GenerationConfig) -> None:
        self.api: APIDefinition = api
        self.ut: UserType = ut
        self.config: GenerationConfig = config
        self.scope: RenderScope = RenderScope()

        self.cls: str = class_name(ut.name)
        self.snake: str = to_snake_case(ut.name)
        self.table_func: str = f"{self.snake}_table"
        self.table_const: str = f"{self.snake.upper()}_TABLE_NAME"
        self.table_name: str = resolve_table_name(ut)
        self.dynamic: bool = ut.options.dynamic_table_name
        self.cached: bool = ut.options.cached
        self.embeds_model: bool = ut.has_default_key
        self.attributes: Dict[str, Attribute] = record_attributes(ut)
        self.keys: List[PrimaryKey] = list(ut.primary_keys)

    # -- Shared fragments ---------------------------------------------------

    @property
    def _table_params(self) -> List[str]:
        return ["table_name: str"] if self.dynamic else []

    def _table_call(self) -> str:
        return f"{self.table_func}(table_name)" if self.dynamic else f"{self.table_func}()"

    def _key_params(self) -> List[str]:
        return [f"{safe_identifier(k.name)}: {_KEY_TYPES[k.kind][0]}" for k in self.keys]

    def _key_args(self, owner: str = "") -> List[str]:
        prefix: str = f"{owner}." if owner else ""
        return [f"{prefix}{safe_identifier(k.name)}" for k in self.keys]

    def _key_where(self, tbl: str, args: List[str]) -> str:
        """Row filter on the primary key; multi-column keys use an ordered text clause."""
        columns: List[str] = [safe_identifier(k.name) for k in self.keys]
        if len(columns) == 1:
            return f"{tbl}.c.{columns[0]} == {args[0]}"
        clause: str = " AND ".join(f"{c} = :{c}" for c in columns)
        binds: str = ", ".join(f"{c}={a}" for c, a in zip(columns, args))
        return f"sa.text({quote(clause)}).bindparams({binds})"

    def _cache_key(self, args: List[str]) -> str:
        """Cache key expression; dynamic types key on the table name as well."""
        self.scope.runtime("cache_key")
        parts: List[str] = (["table_name"] if self.dynamic else []) + args
        return f"cache_key({', '.join(parts)})"

    def _single_int_key(self) -> bool:
        return len(self.keys) == 1 and self.keys[0].kind == "integer"

    def _rows(self, stmt: str, target: str = "rows") -> List[str]:
        return [
            "with self.engine.connect() as conn:",
            f"    {target} = conn.execute({stmt}).mappings().all()",
        ]

    def _first_row(self, stmt: str) -> List[str]:
        self.scope.runtime("RecordNotFoundError", "cache_key")
        return [
            "with self.engine.connect() as conn:",
            f"    row = conn.execute({stmt}).mappings().first()",
            "if row is None:",
            f"    raise RecordNotFoundError({quote(self.cls)}, cache_key({', '.join(self._key_args())}))",
        ]

    # -- Schema -------------------------------------------------------------

    def columns(self) -> List[_Column]:
        obj: ObjectType = self.ut.object_type  # type: ignore[assignment]
        key_names: List[str] = [safe_identifier(k.name) for k in self.keys]
        cols: List[_Column] = []
        if self.embeds_model:
            cols.append(_Column("id", "sa.Integer", primary_key=True))
            cols.append(_Column("created_at", "sa.DateTime"))
            cols.append(_Column("updated_at", "sa.DateTime"))
        for name, attribute in self.attributes.items():
            column: str = safe_identifier(name)
            required: bool = obj.is_required(name) and attribute.is_primitive
            cols.append(
                _Column(
                    column,
                    _COLUMN_TYPES[attribute.kind],
                    primary_key=column in key_names,
                    nullable=not required,
                )
            )
        for fk in self.implicit_foreign_keys():
            cols.append(_Column(fk, "sa.Integer"))
        return cols

    def implicit_foreign_keys(self) -> List[str]:
        """Belongs-to foreign key columns the type does not declare itself."""
        declared: List[str] = [safe_identifier(n) for n in self.attributes]
        if self.embeds_model:
            declared += list(MODEL_FIELDS)
        extra: List[str] = []
        for rel in self.ut.belongs_to:
            column: str = foreign_key_column(rel)
            if column not in declared and column not in extra:
                extra.append(column)
        return extra

    def _render_table(self) -> List[str]:
        lines: List[str] = [
            f"{self.table_const} = {quote(self.table_name)}",
            "",
            "metadata = sa.MetaData()",
            "",
            "",
            f"def {self.table_func}(name: str = {self.table_const}) -> sa.Table:",
            docstring_line(f"Table holding {self.cls} records under *name*.", 1),
            f"{pad(1)}existing = metadata.tables.get(name)",
            f"{pad(1)}if existing is not None:",
            f"{pad(2)}return existing",
            f"{pad(1)}return sa.Table(",
            f"{pad(2)}name,",
            f"{pad(2)}metadata,",
        ]
        lines.extend(f"{pad(2)}{c.render()}," for c in self.columns())
        if self.ut.options.sql_tag:
            lines.append(f"{pad(2)}info={{\"sql_tag\": {quote(self.ut.options.sql_tag)}}},")
        lines.append(f"{pad(1)})")
        return lines

    def _render_join_tables(self) -> List[List[str]]:
        blocks: List[List[str]] = []
        for rel in self.ut.many_to_many:
            owner_col, related_col = join_columns(self.ut, rel)
            func: str = self._join_table_func(rel)
            name_expr: str = (
                f'f"{{table_name}}_{join_table_name(self.ut, rel) if rel.join_table else to_plural(to_snake_case(rel.related))}"'
                if self.dynamic
                else quote(join_table_name(self.ut, rel))
            )
            params: str = "table_name: str" if self.dynamic else ""
            blocks.append([
                f"def {func}({params}) -> sa.Table:",
                docstring_line(f"Join table linking {self.cls} and {class_name(rel.related)} records.", 1),
                f"{pad(1)}name = {name_expr}",
                f"{pad(1)}existing = metadata.tables.get(name)",
                f"{pad(1)}if existing is not None:",
                f"{pad(2)}return existing",
                f"{pad(1)}return sa.Table(",
                f"{pad(2)}name,",
                f"{pad(2)}metadata,",
                f"{pad(2)}sa.Column({quote(owner_col)}, sa.Integer, primary_key=True),",
                f"{pad(2)}sa.Column({quote(related_col)}, sa.Integer, primary_key=True),",
                f"{pad(1)})",
            ])
        return blocks

    def _render_create_tables(self) -> List[str]:
        """``create_tables``: the type's table and its join tables, created in one pass."""
        if self.dynamic:
            params: str = f"engine: Engine, table_name: str = {self.table_const}"
            calls: List[str] = [f"{self.table_func}(table_name)"]
            calls += [f"{self._join_table_func(rel)}(table_name)" for rel in self.ut.many_to_many]
            doc: str = f"Create the {self.cls} table named *table_name* and its join tables in *engine*."
        else:
            params = "engine: Engine"
            calls = [f"{self.table_func}()"]
            calls += [f"{self._join_table_func(rel)}()" for rel in self.ut.many_to_many]
            doc = f"Create the {self.cls} table and its join tables in *engine*."
        return [
            f"def create_tables({params}) -> None:",
            docstring_line(doc, 1),
            f"{pad(1)}metadata.create_all(engine, tables=[{', '.join(calls)}])",
        ]

    def _join_table_func(self, rel: ManyToMany) -> str:
        return f"{self.snake}_{to_plural(to_snake_case(rel.relation))}_table"

    # -- Record -------------------------------------------------------------

    def _record_namer(self, attribute: Attribute) -> str:
        self.scope.need("typing", "Any", "Dict")
        return "Dict[str, Any]"

    def _media_type(self) -> Optional[MediaType]:
        """Default-version media type whose root object stands for this type."""
        if self.ut.options.no_media:
            return None
        for mt in self.api.media_types_for(""):
            obj: Optional[ObjectType] = mt.object_type
            if obj is not None and obj.type_name == self.ut.name:
                return mt
        return None

    def _render_record(self) -> List[str]:
        scope: RenderScope = self.scope
        obj: ObjectType = self.ut.object_type  # type: ignore[assignment]
        scope.need("dataclasses", "dataclass")
        scope.need("typing", "Any", "Dict")
        base: str = ""
        if self.embeds_model:
            scope.runtime("Model")
            base = "(Model)"
        lines: List[str] = [
            "@dataclass",
            f"class {self.cls}{base}:",
            docstring_line(self.ut.description or f"{self.cls} relational model.", 1),
            "",
        ]
        fields_rendered: int = 0
        annotations: Dict[str, str] = {}
        for name in self.attributes:
            annotation, default = field_declaration(name, obj, self._record_namer, scope)
            annotations[safe_identifier(name)] = annotation
            lines.append(f"{pad(1)}{safe_identifier(name)}: {annotation} = {default}")
            fields_rendered += 1
        for fk in self.implicit_foreign_keys():
            scope.need("typing", "Optional")
            lines.append(f"{pad(1)}{fk}: Optional[int] = None")
            fields_rendered += 1
        if fields_rendered:
            lines.append("")

        if self.ut.options.table_name:
            lines.extend([
                f"{pad(1)}def table_name(self) -> str:",
                docstring_line("Name of the table the record is stored in.", 2),
                f"{pad(2)}return {self.table_const}",
                "",
            ])
        if self.ut.options.role_capable:
            if "role" not in annotations:
                scope.need("typing", "Optional")
            lines.extend([
                f"{pad(1)}def get_role(self) -> {annotations.get('role', 'Optional[str]')}:",
                docstring_line("Role carried by the record.", 2),
                f"{pad(2)}return self.role",
                "",
            ])
        scope.runtime("record_values")
        lines.extend([
            f"{pad(1)}def to_dict(self) -> Dict[str, Any]:",
            f"{pad(2)}return record_values(self)",
        ])

        mt: Optional[MediaType] = self._media_type()
        if mt is not None:
            lines.append("")
            lines.extend(self._render_to_media(mt))
        return lines

    def _render_to_media(self, mt: MediaType) -> List[str]:
        self.scope.need("..", "media_types")
        media_obj: ObjectType = mt.object_type  # type: ignore[assignment]
        record_fields: List[str] = [safe_identifier(n) for n in self.attributes]
        if self.embeds_model:
            record_fields += list(MODEL_FIELDS)
        record_fields += self.implicit_foreign_keys()
        kwargs: List[str] = []
        unset: List[str] = []
        for name, attribute in media_obj.fields.items():
            field_name: str = safe_identifier(name)
            nested: bool = attribute.kind is AttributeKind.OBJECT or (
                attribute.kind is AttributeKind.ARRAY and not attribute.type.element.is_primitive
            )
            # nested media values are not decoded from stored columns
            if field_name not in record_fields or nested:
                unset.append(field_name)
                continue
            kwargs.append(f"{field_name}=self.{field_name}")
        media_cls: str = class_name(mt.name)
        doc: str = f"Convert the record into its {media_cls} media type."
        if unset:
            doc += f" Left at their defaults: {', '.join(unset)}."
        return [
            f"{pad(1)}def to_media(self) -> media_types.{media_cls}:",
            docstring_line(doc, 2),
            f"{pad(2)}return media_types.{media_cls}({', '.join(kwargs)})",
        ]

    # -- Relationship helpers -----------------------------------------------

    def _render_filters(self) -> List[List[str]]:
        blocks: List[List[str]] = []
        self.scope.need("typing", "Callable", "List", "Optional")
        for rel in self.ut.belongs_to:
            parent: str = to_snake_case(rel.parent)
            column: str = foreign_key_column(rel)
            blocks.append([
                f"def {self.snake}_filter_by_{parent}(parent_id: int, tbl: sa.Table) -> Callable[[sa.Select], sa.Select]:",
                docstring_line(
                    f"Scope a {self.cls} query to one {class_name(rel.parent)}; identity when parent_id <= 0.",
                    1,
                ),
                f"{pad(1)}if parent_id > 0:",
                f"{pad(2)}return lambda stmt: stmt.where(tbl.c.{column} == parent_id)",
                f"{pad(1)}return lambda stmt: stmt",
            ])
            blocks.append([
                f"def filter_{self.snake}_by_{parent}(parent_id: Optional[int], items: List[{self.cls}]) -> List[{self.cls}]:",
                docstring_line(f"Keep the {self.cls} records of one {class_name(rel.parent)}.", 1),
                f"{pad(1)}if parent_id is None or parent_id <= 0:",
                f"{pad(2)}return list(items)",
                f"{pad(1)}return [item for item in items if item.{column} == parent_id]",
            ])
        return blocks

    def _related(self, rel: ManyToMany) -> Tuple[str, str]:
        """Class and table function references of a many-to-many related type."""
        related: UserType = self.api.get_type(rel.related)  # type: ignore[assignment]
        if related.name == self.ut.name:
            return self.cls, self.table_func
        module: str = model_module_name(related)
        alias: str = f"{module}_model"
        self.scope.need(".", f"{module} as {alias}")
        return f"{alias}.{class_name(related.name)}", f"{alias}.{to_snake_case(related.name)}_table"

    def _related_key(self, rel: ManyToMany) -> str:
        related: UserType = self.api.get_type(rel.related)  # type: ignore[assignment]
        return safe_identifier(related.primary_keys[0].name)

    # -- Data access operations ---------------------------------------------

    def operations(self) -> List[_Operation]:
        scope: RenderScope = self.scope
        scope.need("typing", "List")
        cls: str = self.cls
        key_args: List[str] = self._key_args()
        key_params: List[str] = self._key_params()
        table_args: List[str] = ["table_name"] if self.dynamic else []
        ops: List[_Operation] = [
            _Operation("db", [], "Engine", "Engine the records are stored in.", ["return self.engine"]),
        ]

        # one / _fetch
        fetch_body: List[str] = [f"tbl = {self._table_call()}"]
        fetch_body += self._first_row(f"sa.select(tbl).where({self._key_where('tbl', key_args)})")
        fetch_body.append(f"return {cls}(**row)")
        ops.append(_Operation(
            "_fetch", self._table_params + key_params, cls,
            f"Load one {cls} from storage, bypassing the cache.", fetch_body, public=False,
        ))
        fetch_call: str = f"self._fetch({', '.join(table_args + key_args)})"
        if self.cached:
            one_body: List[str] = [
                f"key = {self._cache_key(key_args)}",
                "cached = self.cache.get(key)",
                "if cached is not None:",
                "    return cached",
                f"obj = {fetch_call}",
                "self.cache.set_async(key, obj)",
                "return obj",
            ]
        else:
            one_body = [f"return {fetch_call}"]
        ops.append(_Operation("one", self._table_params + key_params, cls, f"Load one {cls} by primary key.", one_body))

        # list
        list_body: List[str] = [f"tbl = {self._table_call()}"]
        list_body += self._rows("sa.select(tbl)")
        list_body.append(f"return [{cls}(**row) for row in rows]")
        ops.append(_Operation("list", list(self._table_params), f"List[{cls}]", f"Every {cls} record.", list_body))

        ops.append(self._add_operation())
        ops.append(self._update_operation())

        # delete
        delete_body: List[str] = [
            f"tbl = {self._table_call()}",
            "with self.engine.begin() as conn:",
            f"    conn.execute(sa.delete(tbl).where({self._key_where('tbl', key_args)}))",
        ]
        if self.cached:
            delete_body.append(f"self.cache.delete_async({self._cache_key(key_args)})")
        ops.append(_Operation("delete", self._table_params + key_params, "None", f"Delete one {cls} by primary key.", delete_body))

        for rel in self.ut.belongs_to:
            ops.extend(self._belongs_to_operations(rel))
        for rel in self.ut.many_to_many:
            ops.extend(self._many_to_many_operations(rel))
        return ops

    def _add_operation(self) -> _Operation:
        scope: RenderScope = self.scope
        scope.runtime("record_values")
        body: List[str] = [f"tbl = {self._table_call()}"]
        if self.embeds_model:
            scope.runtime("utcnow")
            body += ["now = utcnow()", "model.created_at = now", "model.updated_at = now"]
        body.append("values = record_values(model)")
        auto_key: Optional[str] = safe_identifier(self.keys[0].name) if self._single_int_key() else None
        if auto_key:
            body += [f"if not model.{auto_key}:", f"    del values[{quote(auto_key)}]"]
        target: str = "result = " if auto_key else ""
        body += [
            "with self.engine.begin() as conn:",
            f"    {target}conn.execute(sa.insert(tbl).values(**values))",
        ]
        if auto_key:
            body += [f"if not model.{auto_key}:", f"    model.{auto_key} = result.inserted_primary_key[0]"]
        if self.cached:
            body.append(f"self.cache.set_async({self._cache_key(self._key_args('model'))}, model)")
        body.append("return model")
        return _Operation(
            "add", self._table_params + [f"model: {self.cls}"], self.cls,
            f"Insert a {self.cls}, assigning its generated key.", body,
        )

    def _update_operation(self) -> _Operation:
        scope: RenderScope = self.scope
        scope.runtime("changed_values")
        model_keys: List[str] = self._key_args("model")
        table_args: List[str] = ["table_name"] if self.dynamic else []
        excluded: List[str] = [safe_identifier(k.name) for k in self.keys]
        if self.embeds_model:
            excluded += [f for f in MODEL_FIELDS if f not in excluded]
        body: List[str] = [
            f"tbl = {self._table_call()}",
            f"obj = self._fetch({', '.join(table_args + model_keys)})",
            f"changes = changed_values(model, exclude=({', '.join(quote(e) for e in excluded)},))",
        ]
        write: List[str] = [
            "with self.engine.begin() as conn:",
            f"    conn.execute(sa.update(tbl).where({self._key_where('tbl', self._key_args('obj'))}).values(**changes))",
        ]
        if self.embeds_model:
            # changes always holds updated_at
            scope.runtime("utcnow")
            body.append('changes["updated_at"] = utcnow()')
            body += write
        else:
            body += ["if changes:"] + indent_lines(write, 1)
        if self.cached:
            keys: str = ", ".join(self._key_args("obj"))
            body += [
                f"key_values = ({keys},)",
                "self.cache.refresh_async(",
                f"    {self._cache_key(['*key_values'])},",
                f"    lambda: self._fetch({', '.join(table_args + ['*key_values'])}),",
                ")",
            ]
        return _Operation(
            "update", self._table_params + [f"model: {self.cls}"], "None",
            f"Write the non-blank fields of an existing {self.cls}.", body,
        )

    def _belongs_to_operations(self, rel: BelongsTo) -> List[_Operation]:
        cls: str = self.cls
        parent: str = to_snake_case(rel.parent)
        column: str = foreign_key_column(rel)
        scope_call: str = f"{self.snake}_filter_by_{parent}(parent_id, tbl)"
        key_args: List[str] = self._key_args()

        list_body: List[str] = [
            f"tbl = {self._table_call()}",
            f"stmt = {scope_call}(sa.select(tbl))",
        ]
        list_body += self._rows("stmt")
        list_body.append(f"return [{cls}(**row) for row in rows]")

        one_body: List[str] = []
        if self.cached:
            one_body += [
                f"cached = self.cache.get({self._cache_key(key_args)})",
                f"if cached is not None and (parent_id <= 0 or cached.{column} == parent_id):",
                "    return cached",
            ]
        one_body += [
            f"tbl = {self._table_call()}",
            f"stmt = {scope_call}(sa.select(tbl).where({self._key_where('tbl', key_args)}))",
        ]
        one_body += self._first_row("stmt")
        one_body.append(f"obj = {cls}(**row)")
        if self.cached:
            one_body.append(f"self.cache.set_async({self._cache_key(key_args)}, obj)")
        one_body.append("return obj")

        parent_cls: str = class_name(rel.parent)
        return [
            _Operation(
                f"list_by_{parent}", self._table_params + ["parent_id: int"], f"List[{cls}]",
                f"Every {cls} belonging to one {parent_cls}.", list_body,
            ),
            _Operation(
                f"one_by_{parent}", self._table_params + ["parent_id: int"] + self._key_params(), cls,
                f"Load one {cls} of one {parent_cls}.", one_body,
            ),
        ]

    def _many_to_many_operations(self, rel: ManyToMany) -> List[_Operation]:
        owner_col, related_col = join_columns(self.ut, rel)
        related_cls, related_table = self._related(rel)
        related_key: str = self._related_key(rel)
        join_call: str = (
            f"{self._join_table_func(rel)}(table_name)" if self.dynamic else f"{self._join_table_func(rel)}()"
        )
        single: str = to_snake_case(rel.relation)
        plural: str = to_plural(single)
        params: List[str] = self._table_params + [f"{owner_col}: int", f"{related_col}: int"]
        match: str = f"join.c.{owner_col} == {owner_col}, join.c.{related_col} == {related_col}"
        list_body: List[str] = [
            f"join = {join_call}",
            f"related = {related_table}()",
            "stmt = (",
            "    sa.select(related)",
            f"    .join(join, join.c.{related_col} == related.c.{related_key})",
            f"    .where(join.c.{owner_col} == {owner_col})",
            ")",
        ]
        list_body += self._rows("stmt")
        list_body.append(f"return [{related_cls}(**row) for row in rows]")
        return [
            _Operation(
                f"add_{single}", params, "None",
                f"Associate a {class_name(rel.related)} with a {self.cls}.",
                [
                    f"join = {join_call}",
                    "with self.engine.begin() as conn:",
                    f"    conn.execute(sa.insert(join).values({owner_col}={owner_col}, {related_col}={related_col}))",
                ],
            ),
            _Operation(
                f"delete_{single}", params, "None",
                f"Remove the association of a {class_name(rel.related)} with a {self.cls}.",
                [
                    f"join = {join_call}",
                    "with self.engine.begin() as conn:",
                    f"    conn.execute(sa.delete(join).where({match}))",
                ],
            ),
            _Operation(
                f"list_{plural}", self._table_params + [f"{owner_col}: int"], f"List[{related_cls}]",
                f"Every {class_name(rel.related)} associated with a {self.cls}.", list_body,
            ),
        ]

    # -- Classes ------------------------------------------------------------

    def _render_protocol(self, ops: List[_Operation]) -> List[str]:
        self.scope.need("typing", "Protocol")
        lines: List[str] = [
            f"class {self.cls}Storage(Protocol):",
            docstring_line(f"Data access surface for {self.cls} records.", 1),
        ]
        for op in ops:
            if op.public:
                lines.extend(["", f"{pad(1)}{op.signature()}", f"{pad(2)}..."])
        return lines

    def _render_dao(self, ops: List[_Operation]) -> List[str]:
        lines: List[str] = [
            f"class {self.cls}DB:",
            docstring_line(f"Data access object for {self.cls} records on an SQLAlchemy engine.", 1),
            "",
            f"{pad(1)}def __init__(self, engine: Engine) -> None:",
            f"{pad(2)}self.engine = engine",
        ]
        if self.cached:
            self.scope.runtime("ReadThroughCache")
            lines.append(
                f"{pad(2)}self.cache = ReadThroughCache("
                f"expiration={self.config.cache_expiration_seconds!r}, "
                f"cleanup_interval={self.config.cache_cleanup_seconds!r})"
            )
        for op in ops:
            lines.append("")
            lines.extend(op.render())
        return lines

    # -- Module -------------------------------------------------------------

    def render(self) -> str:
        logger.debug(
            "Rendering relational model %s (table=%s, dynamic=%s, cached=%s).",
            self.ut.name, self.table_name, self.dynamic, self.cached,
        )
        self.scope.need("sqlalchemy as sa")
        self.scope.need("sqlalchemy.engine", "Engine")
        ops: List[_Operation] = self.operations()
        blocks: List[List[str]] = [self._render_table()]
        blocks.extend(self._render_join_tables())
        blocks.append(self._render_create_tables())
        blocks.append(self._render_record())
        blocks.extend(self._render_filters() if self.ut.belongs_to else [])
        blocks.append(self._render_protocol(ops))
        blocks.append(self._render_dao(ops))
        body: List[str] = join_blocks(blocks)

        header: List[str] = [
            f'"""{self.cls} relational model. Generated by dalgen; do not edit."""',
            "",
            "from __future__ import annotations",
            "",
        ]
        return "\n".join(
            header + self.scope.import_lines(self.config.runtime_module) + ["", ""] + body
        ) + "\n"


def render_model_module(api: APIDefinition, ut: UserType, config: GenerationConfig) -> str:
    """Source of the relational model module of *ut*."""
    return RelationalModelGenerator(api, ut, config).render()


def render_models_init(api: APIDefinition, types: List[UserType]) -> str:
    """
    ``__init__.py`` of the models package.

    Re-exports records and DAOs and defines ``create_all(engine)``, which
    creates every table of the package; dynamic types get their default
    table.
    """
    modules: List[str] = [model_module_name(ut) for ut in types]
    lines: List[str] = [
        '"""Relational models. Generated by dalgen; do not edit."""',
        "",
        "from sqlalchemy.engine import Engine",
        "",
        f"from . import {', '.join(modules)}",
    ]
    exported: List[str] = []
    for ut, module in zip(types, modules):
        cls: str = class_name(ut.name)
        names: List[str] = [cls, f"{cls}DB", f"{cls}Storage"]
        lines.append(f"from .{module} import {', '.join(names)}")
        exported.extend(names)
    lines.extend([
        "",
        "",
        "def create_all(engine: Engine) -> None:",
        docstring_line("Create the tables of every model in *engine*.", 1),
    ])
    lines.extend(f"{pad(1)}{module}.create_tables(engine)" for module in modules)
    exported.append("create_all")
    lines.extend(["", "", "__all__ = ["])
    lines.extend(f"{pad(1)}{quote(n)}," for n in exported)
    lines.append("]")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "resolve_table_name",
    "foreign_key_column",
    "join_table_name",
    "join_columns",
    "model_module_name",
    "record_attributes",
    "RelationalModelGenerator",
    "render_model_module",
    "render_models_init",
]

logger.debug("dalgen.relational loaded — %d public symbols.", len(__all__))
