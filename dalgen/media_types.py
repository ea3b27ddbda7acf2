# File: dalgen/media_types.py
"""
DALGen - Media & User Type Renderer
===================================
Renders declared data types as dataclasses together with:

- ``load_<type>(raw, context)``: decode untyped JSON data, fail fast;
- ``validate(context)``: every declared validation, all failures
  collected into one error (own scalar fields first, then composite
  children in declaration order);
- ``_dump_<view>()`` per view and a public ``dump([view])``: project the
  value onto a view's fields without touching the source;
- a ``<Type>View`` enum when a type declares more than one view.

Collections (array media types) become ``load_``/``validate_``/``dump_``
functions over ``List[Element]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from dalgen.coercion import (
    AccumulateSink,
    RaiseSink,
    compile_non_zero_check,
    compile_unmarshal,
    compile_validation,
    field_declaration,
    is_optional_field,
    python_type,
)
from dalgen.models import Attribute, AttributeKind, MediaType, ObjectType, UserType, View
from dalgen.utils import (
    RenderScope,
    class_name,
    docstring_line,
    join_blocks,
    pad,
    quote,
    safe_identifier,
    to_snake_case,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.media_types")

_DEFAULT_VIEW: str = "default"


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def loader_name(cls: str) -> str:
    return f"load_{to_snake_case(cls)}"


def view_enum_name(cls: str) -> str:
    return f"{cls}View"


def view_member(view: str) -> str:
    return safe_identifier(view).upper()


def dump_method(view: str) -> str:
    return f"_dump_{safe_identifier(view)}"


@dataclass
class MediaTypeInfo:
    """Names generated for a media type, shared with the response binder."""

    class_name: str
    is_collection: bool
    views: List[str]
    view_enum: Optional[str]
    default_view: str

    @property
    def loader(self) -> str:
        return loader_name(self.class_name)

    @property
    def validator(self) -> Optional[str]:
        return f"validate_{to_snake_case(self.class_name)}" if self.is_collection else None

    @property
    def dumper(self) -> Optional[str]:
        return f"dump_{to_snake_case(self.class_name)}" if self.is_collection else None

    @property
    def multi_view(self) -> bool:
        return self.view_enum is not None


def _pick_default(views: List[str]) -> str:
    return _DEFAULT_VIEW if _DEFAULT_VIEW in views else views[0]


def describe_media_type(mt: MediaType, known: Dict[str, MediaType]) -> MediaTypeInfo:
    """
    Generated names of *mt*.

    A collection takes the views, and so the view enum, of its element
    media type when the element references one in *known*.
    """
    cls: str = class_name(mt.name)
    view_owner: str = cls
    views: List[str] = [v.name for v in mt.computed_views()]
    if mt.is_collection:
        element: Attribute = mt.attribute.type.element
        obj: Optional[ObjectType] = element.object_type
        if obj is not None and obj.type_name in known and obj.type_name != mt.name:
            view_owner = class_name(obj.type_name)
            views = [v.name for v in known[obj.type_name].computed_views()]
        else:
            views = [_DEFAULT_VIEW]
            view_owner = ""
    enum: Optional[str] = view_enum_name(view_owner) if len(views) > 1 and view_owner else None
    return MediaTypeInfo(
        class_name=cls,
        is_collection=mt.is_collection,
        views=views,
        view_enum=enum,
        default_view=_pick_default(views),
    )


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


class TypeRenderer:
    """
    Accumulates the data classes of one generated module.

    Classes are rendered once per name; nested classes land before the
    class that first references them. *known* media types are rendered
    from their own definition wherever a field references them by name.
    """

    def __init__(
        self,
        scope: RenderScope,
        known: Optional[Dict[str, MediaType]] = None,
        root_context: str = "response",
    ) -> None:
        self.scope: RenderScope = scope
        self.known: Dict[str, MediaType] = dict(known or {})
        self.root_context: str = root_context
        self._blocks: Dict[str, List[str]] = {}
        self._in_progress: Set[str] = set()
        self._views: Dict[str, List[str]] = {}

    # -- Public API ---------------------------------------------------------

    def render_media_type(self, mt: MediaType) -> MediaTypeInfo:
        info: MediaTypeInfo = describe_media_type(mt, self.known)
        if info.class_name in self._blocks or info.class_name in self._in_progress:
            return info
        logger.debug("Rendering media type %s (%s).", mt.name, mt.identifier)
        if mt.is_collection:
            self._render_collection(mt, info)
            return info
        obj: Optional[ObjectType] = mt.object_type
        if obj is None:
            logger.warning("Media type %s is neither an object nor a collection.", mt.name)
            return info
        self._render_object(
            info.class_name,
            obj,
            mt.computed_views(),
            f"{mt.description or mt.name} media type.",
            mt.identifier,
        )
        return info

    def render_user_type(self, ut: UserType, cls: Optional[str] = None) -> str:
        name: str = cls or class_name(ut.name)
        obj: Optional[ObjectType] = ut.object_type
        if obj is None:
            logger.warning("User type %s is not an object; nothing rendered.", ut.name)
            return name
        if name not in self._blocks and name not in self._in_progress:
            logger.debug("Rendering user type %s as %s.", ut.name, name)
            self._render_object(
                name,
                obj,
                [View(name=_DEFAULT_VIEW, attributes=list(obj.fields))],
                ut.description or f"{ut.name} user type.",
                None,
            )
        return name

    def lines(self) -> List[str]:
        return join_blocks(list(self._blocks.values()))

    @property
    def class_names(self) -> List[str]:
        return list(self._blocks)

    # -- Nested type resolution ---------------------------------------------

    def _namer(self, parent: str, field_name: str) -> Callable[[Attribute], str]:
        def name_object(attribute: Attribute) -> str:
            obj: ObjectType = attribute.object_type  # type: ignore[assignment]
            if obj.type_name and obj.type_name in self.known:
                return self.render_media_type(self.known[obj.type_name]).class_name
            cls: str = class_name(obj.type_name) if obj.type_name else f"{parent}{class_name(field_name)}"
            if cls not in self._blocks and cls not in self._in_progress:
                self._render_object(
                    cls,
                    obj,
                    [View(name=_DEFAULT_VIEW, attributes=list(obj.fields))],
                    f"{cls} is the type of {parent}.{field_name}.",
                    None,
                )
            return cls

        return name_object

    def _nested_view(self, cls: str, wanted: str) -> str:
        views: List[str] = self._views.get(cls, [_DEFAULT_VIEW])
        if wanted in views:
            return wanted
        return _pick_default(views)

    # -- Objects ------------------------------------------------------------

    def _render_object(
        self,
        cls: str,
        obj: ObjectType,
        views: List[View],
        description: str,
        identifier: Optional[str],
    ) -> None:
        self._in_progress.add(cls)
        self._views[cls] = [v.name for v in views]
        scope: RenderScope = self.scope
        scope.need("dataclasses", "dataclass")
        scope.need("typing", "Any", "Dict", "Optional")

        class_lines: List[str] = ["@dataclass", f"class {cls}:"]
        if identifier:
            class_lines.extend([
                f'{pad(1)}"""',
                f"{pad(1)}{description}",
                "",
                f"{pad(1)}Identifier: {identifier}",
                f'{pad(1)}"""',
            ])
        else:
            class_lines.append(docstring_line(description, 1))
        class_lines.append("")
        for name in obj.fields:
            annotation, default = field_declaration(name, obj, self._namer(cls, name), scope)
            class_lines.append(f"{pad(1)}{safe_identifier(name)}: {annotation} = {default}")
        class_lines.append("")
        class_lines.extend(self._validate_method(cls, obj))
        for view in views:
            class_lines.append("")
            class_lines.extend(self._dump_view_method(cls, obj, view))
        class_lines.append("")
        class_lines.extend(self._dump_method(cls, views))

        blocks: List[List[str]] = []
        if len(views) > 1:
            blocks.append(self._view_enum(cls, views))
        blocks.append(class_lines)
        blocks.append(self._loader(cls, obj))
        self._in_progress.discard(cls)
        self._blocks[cls] = join_blocks(blocks)

    def _view_enum(self, cls: str, views: List[View]) -> List[str]:
        self.scope.need("enum", "Enum")
        lines: List[str] = [
            f"class {view_enum_name(cls)}(str, Enum):",
            docstring_line(f"Views of {cls}.", 1),
            "",
        ]
        lines.extend(f"{pad(1)}{view_member(v.name)} = {quote(v.name)}" for v in views)
        return lines

    def _validate_method(self, cls: str, obj: ObjectType) -> List[str]:
        scope: RenderScope = self.scope
        sink: AccumulateSink = AccumulateSink()
        own: List[str] = []
        children: List[str] = []
        for name, attribute in obj.fields.items():
            target: str = f"self.{safe_identifier(name)}"
            context: str = f"context + {quote('.' + name)}"
            optional: bool = is_optional_field(name, obj)
            if obj.is_required(name) and optional:
                scope.runtime("MissingAttributeError")
                own.append(f"{pad(2)}if {target} is None:")
                own.extend(sink.emit(f"MissingAttributeError(context, {quote(name)})", 3, scope))
            if attribute.is_primitive:
                if obj.is_non_zero(name) and not optional:
                    own.extend(compile_non_zero_check(target, context, 2, scope, sink))
                own.extend(compile_validation(attribute, target, context, 2, scope, sink, optional))
            else:
                children.extend(compile_validation(attribute, target, context, 2, scope, sink, optional))

        header: List[str] = [
            f'{pad(1)}def validate(self, context: str = "{self.root_context}") -> None:',
        ]
        if not own and not children:
            header.append(docstring_line(f"validate is a no-op: {cls} declares no validations.", 2))
            return header
        scope.runtime("RequestError")
        header.append(docstring_line("Run every declared validation, raising all failures at once.", 2))
        header.append(f"{pad(2)}err: Optional[RequestError] = None")
        return header + own + children + [f"{pad(2)}if err is not None:", f"{pad(3)}raise err"]

    def _project(self, attribute: Attribute, expr: str, view: str, field_name: str, cls: str) -> str:
        kind: AttributeKind = attribute.kind
        if attribute.is_primitive:
            return expr
        if kind is AttributeKind.ARRAY:
            element: Attribute = attribute.type.element
            if element.is_primitive:
                return f"list({expr})"
            item: str = self.scope.tmp("item")
            inner: str = self._project(element, item, view, field_name, cls)
            return f"[{inner} for {item} in {expr}]"
        nested: str = self._namer(cls, field_name)(attribute)
        return f"{expr}.{dump_method(self._nested_view(nested, view))}()"

    def _dump_view_method(self, cls: str, obj: ObjectType, view: View) -> List[str]:
        lines: List[str] = [
            f"{pad(1)}def {dump_method(view.name)}(self) -> Dict[str, Any]:",
            f"{pad(2)}res: Dict[str, Any] = {{}}",
        ]
        for name in view.attributes:
            attribute: Attribute = obj.fields[name]
            target: str = f"self.{safe_identifier(name)}"
            wanted: str = view.attribute_views.get(name, view.name)
            projected: str = self._project(attribute, target, wanted, name, cls)
            if is_optional_field(name, obj):
                lines.append(f"{pad(2)}if {target} is not None:")
                lines.append(f"{pad(3)}res[{quote(name)}] = {projected}")
            else:
                lines.append(f"{pad(2)}res[{quote(name)}] = {projected}")
        lines.append(f"{pad(2)}return res")
        return lines

    def _dump_method(self, cls: str, views: List[View]) -> List[str]:
        names: List[str] = [v.name for v in views]
        if len(views) == 1:
            return [
                f"{pad(1)}def dump(self) -> Dict[str, Any]:",
                docstring_line(f"Project {cls} onto its {names[0]} view.", 2),
                f"{pad(2)}return self.{dump_method(names[0])}()",
            ]
        enum: str = view_enum_name(cls)
        default: str = _pick_default(names)
        lines: List[str] = [
            f"{pad(1)}def dump(self, view: {enum} = {enum}.{view_member(default)}) -> Dict[str, Any]:",
            docstring_line(f"Project {cls} onto *view*; the instance itself is left untouched.", 2),
            f"{pad(2)}view = {enum}(view)",
        ]
        for name in names[:-1]:
            lines.append(f"{pad(2)}if view is {enum}.{view_member(name)}:")
            lines.append(f"{pad(3)}return self.{dump_method(name)}()")
        lines.append(f"{pad(2)}return self.{dump_method(names[-1])}()")
        return lines

    def _loader(self, cls: str, obj: ObjectType) -> List[str]:
        scope: RenderScope = self.scope
        scope.runtime("InvalidAttributeTypeError")
        lines: List[str] = [
            f'def {loader_name(cls)}(raw: Any, context: str = "{self.root_context}") -> {cls}:',
            docstring_line(f"Decode untyped data into a {cls}, failing on the first mismatch.", 1),
            f"{pad(1)}if not isinstance(raw, dict):",
            f'{pad(2)}raise InvalidAttributeTypeError(context, raw, "object")',
        ]
        for name in obj.required:
            scope.runtime("MissingAttributeError")
            lines.append(f"{pad(1)}if raw.get({quote(name)}) is None:")
            lines.extend(RaiseSink().emit(f"MissingAttributeError(context, {quote(name)})", 2, scope))
        lines.append(f"{pad(1)}res = {cls}()")
        for name, attribute in obj.fields.items():
            value: str = scope.tmp("value")
            lines.append(f"{pad(1)}{value} = raw.get({quote(name)})")
            lines.append(f"{pad(1)}if {value} is not None:")
            lines.extend(
                compile_unmarshal(
                    attribute,
                    value,
                    f"res.{safe_identifier(name)}",
                    f"context + {quote('.' + name)}",
                    2,
                    scope,
                    lambda att, n=name: loader_name(self._namer(cls, n)(att)),
                )
            )
        lines.append(f"{pad(1)}return res")
        return lines

    # -- Collections --------------------------------------------------------

    def _render_collection(self, mt: MediaType, info: MediaTypeInfo) -> None:
        cls: str = info.class_name
        self._in_progress.add(cls)
        scope: RenderScope = self.scope
        scope.need("typing", "Any", "Dict", "List", "Optional")
        element_namer: Callable[[Attribute], str] = self._namer(cls, "item")
        element_type: str = python_type(mt.attribute.type.element, element_namer, scope)
        sink: AccumulateSink = AccumulateSink()

        alias: List[str] = [f"{cls} = List[{element_type}]"]

        loader: List[str] = [
            f'def {info.loader}(raw: Any, context: str = "{self.root_context}") -> List[{element_type}]:',
            docstring_line(f"Decode untyped data into a {cls}.", 1),
        ]
        loader.extend(
            compile_unmarshal(
                mt.attribute, "raw", "res", "context", 1, scope,
                lambda att: loader_name(element_namer(att)),
            )
        )
        loader.append(f"{pad(1)}return res")

        checks: List[str] = compile_validation(mt.attribute, "items", "context", 1, scope, sink)
        validator: List[str] = [
            f'def {info.validator}(items: List[{element_type}], context: str = "{self.root_context}") -> None:',
            docstring_line(f"Validate every element of a {cls}, raising all failures at once.", 1),
        ]
        if checks:
            scope.runtime("RequestError")
            validator.append(f"{pad(1)}err: Optional[RequestError] = None")
            validator.extend(checks)
            validator.extend([f"{pad(1)}if err is not None:", f"{pad(2)}raise err"])

        dumper: List[str] = []
        if info.multi_view:
            enum: str = info.view_enum  # type: ignore[assignment]
            dumper.append(
                f"def {info.dumper}(items: List[{element_type}], "
                f"view: {enum} = {enum}.{view_member(info.default_view)}) -> List[Any]:"
            )
            dumper.append(docstring_line(f"Project every element of a {cls} onto *view*.", 1))
            dumper.append(f"{pad(1)}view = {enum}(view)")
            for name in info.views[:-1]:
                projected: str = self._project(mt.attribute, "items", name, "item", cls)
                dumper.append(f"{pad(1)}if view is {enum}.{view_member(name)}:")
                dumper.append(f"{pad(2)}return {projected}")
            dumper.append(f"{pad(1)}return {self._project(mt.attribute, 'items', info.views[-1], 'item', cls)}")
        else:
            dumper.append(f"def {info.dumper}(items: List[{element_type}]) -> List[Any]:")
            dumper.append(docstring_line(f"Project every element of a {cls}.", 1))
            dumper.append(f"{pad(1)}return {self._project(mt.attribute, 'items', info.default_view, 'item', cls)}")

        self._in_progress.discard(cls)
        self._blocks[cls] = join_blocks([alias, loader, validator, dumper])


# ---------------------------------------------------------------------------
# Module writer
# ---------------------------------------------------------------------------


def render_media_types_module(
    media_types: List[MediaType],
    runtime_module: str,
    version: str = "",
) -> str:
    """Source of the ``media_types.py`` module for one API version."""
    scope: RenderScope = RenderScope()
    known: Dict[str, MediaType] = {mt.name: mt for mt in media_types}
    renderer: TypeRenderer = TypeRenderer(scope, known)
    for mt in media_types:
        renderer.render_media_type(mt)

    label: str = f"version {version}" if version else "the default version"
    header: List[str] = [
        f'"""Media types of {label}. Generated by dalgen; do not edit."""',
        "",
        "from __future__ import annotations",
        "",
    ]
    body: List[str] = renderer.lines()
    imports: List[str] = scope.import_lines(runtime_module)
    logger.info(
        "Rendered %d media type classes for %s.", len(renderer.class_names), label
    )
    return "\n".join(header + imports + ["", ""] + body) + "\n"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "MediaTypeInfo",
    "describe_media_type",
    "loader_name",
    "view_enum_name",
    "view_member",
    "dump_method",
    "TypeRenderer",
    "render_media_types_module",
]

logger.debug("dalgen.media_types loaded — %d public symbols.", len(__all__))
