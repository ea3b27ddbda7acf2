# File: dalgen/coercion.py
"""
DALGen - Coercion Compiler
==========================
Emits the Python statements that turn untyped input into typed, validated
values. Three emitters share one exhaustive dispatch over ``AttributeKind``:

- ``compile_coercion``: raw request strings (path/query parameters) to
  typed values; parse failures are routed through an ``ErrorSink``.
- ``compile_unmarshal``: decoded JSON values to typed values, failing
  fast on the first type mismatch.
- ``compile_validation``: declared validation checks on a typed value.

Every emitter returns source lines indented at the requested level.
Temporary identifiers come from the caller's ``RenderScope``, so the
output is a pure function of the inputs.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from dalgen.errors import UnsupportedCompositeShapeError
from dalgen.models import Attribute, AttributeKind, ObjectType
from dalgen.utils import RenderScope, indent_lines, pad, python_literal, quote, safe_identifier

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.coercion")

# ---------------------------------------------------------------------------
# Kind tables
# ---------------------------------------------------------------------------

_SCALAR_PARSERS: Dict[AttributeKind, Tuple[str, str]] = {
    AttributeKind.BOOLEAN: ("parse_bool", "boolean"),
    AttributeKind.INTEGER: ("parse_int", "integer"),
    AttributeKind.NUMBER: ("parse_float", "number"),
}

_ZERO_VALUES: Dict[AttributeKind, str] = {
    AttributeKind.BOOLEAN: "False",
    AttributeKind.INTEGER: "0",
    AttributeKind.NUMBER: "0.0",
    AttributeKind.STRING: '""',
    AttributeKind.ANY: "None",
}

_PYTHON_TYPES: Dict[AttributeKind, str] = {
    AttributeKind.BOOLEAN: "bool",
    AttributeKind.INTEGER: "int",
    AttributeKind.NUMBER: "float",
    AttributeKind.STRING: "str",
    AttributeKind.ANY: "Any",
}

# Resolves an object attribute to the class (or loader) generated for it.
ObjectNamer = Callable[[Attribute], str]


def _unsupported(name: str, attribute: Attribute, path: str) -> UnsupportedCompositeShapeError:
    logger.error("Attribute '%s' (%s) reached the %s.", name, attribute.kind.value, path)
    return UnsupportedCompositeShapeError(name, attribute.kind.value, path)


# ---------------------------------------------------------------------------
# Error sinks
# ---------------------------------------------------------------------------


class ErrorSink:
    """Decides what generated code does with an error expression."""

    def emit(self, expr: str, level: int, scope: RenderScope) -> List[str]:
        raise NotImplementedError


class AccumulateSink(ErrorSink):
    """Chain the error onto an accumulator and keep going."""

    def __init__(self, var: str = "err") -> None:
        self.var: str = var

    def emit(self, expr: str, level: int, scope: RenderScope) -> List[str]:
        scope.runtime("merge_errors")
        return [f"{pad(level)}{self.var} = merge_errors({self.var}, {expr})"]


class FirstErrorSink(ErrorSink):
    """Remember only the first error stored in *var*."""

    def __init__(self, var: str) -> None:
        self.var: str = var

    def emit(self, expr: str, level: int, scope: RenderScope) -> List[str]:
        p: str = pad(level)
        return [f"{p}if {self.var} is None:", f"{p}    {self.var} = {expr}"]


class RaiseSink(ErrorSink):
    """Raise the error immediately."""

    def emit(self, expr: str, level: int, scope: RenderScope) -> List[str]:
        return [f"{pad(level)}raise {expr}"]


# ---------------------------------------------------------------------------
# Type rendering helpers
# ---------------------------------------------------------------------------


def zero_value(attribute: Attribute) -> str:
    """Source of the zero value of *attribute*; composites are ``None``."""
    return _ZERO_VALUES.get(attribute.kind, "None")


def python_type(attribute: Attribute, object_name: ObjectNamer, scope: RenderScope) -> str:
    """Annotation source for a value of *attribute*."""
    kind: AttributeKind = attribute.kind
    if kind in _PYTHON_TYPES:
        if kind is AttributeKind.ANY:
            scope.need("typing", "Any")
        return _PYTHON_TYPES[kind]
    if kind is AttributeKind.ARRAY:
        scope.need("typing", "List")
        return f"List[{python_type(attribute.type.element, object_name, scope)}]"
    if kind is AttributeKind.OBJECT:
        return object_name(attribute)
    raise _unsupported("<value>", attribute, "type renderer")


def field_declaration(
    name: str,
    parent: ObjectType,
    object_name: ObjectNamer,
    scope: RenderScope,
) -> Tuple[str, str]:
    """
    ``(annotation, default)`` source for field *name* of *parent*.

    Optional primitives without default become ``Optional[T] = None``;
    other primitives hold their default or zero value; composites are
    ``Optional`` unless they declare a default.
    """
    attribute: Attribute = parent.fields[name]
    annotation: str = python_type(attribute, object_name, scope)
    if parent.is_primitive_pointer(name):
        scope.need("typing", "Optional")
        return f"Optional[{annotation}]", "None"
    if attribute.default is not None:
        if isinstance(attribute.default, (list, dict)):
            scope.need("dataclasses", "field")
            return annotation, f"field(default_factory=lambda: {python_literal(attribute.default)})"
        return annotation, python_literal(attribute.default)
    if attribute.is_primitive:
        return annotation, zero_value(attribute)
    scope.need("typing", "Optional")
    return f"Optional[{annotation}]", "None"


def is_optional_field(name: str, parent: ObjectType) -> bool:
    """Whether generated code must guard field *name* against ``None``."""
    attribute: Attribute = parent.fields[name]
    if parent.is_primitive_pointer(name) or attribute.kind is AttributeKind.ANY:
        return True
    return not attribute.is_primitive and attribute.default is None


# ---------------------------------------------------------------------------
# Parameter coercion (raw strings)
# ---------------------------------------------------------------------------


def compile_coercion(
    name: str,
    attribute: Attribute,
    target: str,
    level: int,
    scope: RenderScope,
    raw_var: Optional[str] = None,
    sink: Optional[ErrorSink] = None,
    on_success: Sequence[str] = (),
) -> List[str]:
    """
    Statements assigning the raw string *raw_var* to *target* as *attribute*.

    Parse failures emit ``InvalidParamTypeError(name, raw, kind)`` through
    *sink* (accumulating into ``err`` by default) and leave *target*
    untouched. *on_success* lines run only when the value was assigned.
    """
    raw: str = raw_var or f"raw_{safe_identifier(name)}"
    error_sink: ErrorSink = sink or AccumulateSink()
    kind: AttributeKind = attribute.kind
    p: str = pad(level)

    if kind is AttributeKind.STRING or kind is AttributeKind.ANY:
        return [f"{p}{target} = {raw}"] + indent_lines(on_success, level)

    if kind in _SCALAR_PARSERS:
        parser, expected = _SCALAR_PARSERS[kind]
        scope.runtime(parser, "InvalidParamTypeError")
        lines: List[str] = [
            f"{p}try:",
            f"{p}    {target} = {parser}({raw})",
            f"{p}except ValueError:",
        ]
        lines.extend(
            error_sink.emit(
                f"InvalidParamTypeError({quote(name)}, {raw}, {quote(expected)})",
                level + 1,
                scope,
            )
        )
        if on_success:
            lines.append(f"{p}else:")
            lines.extend(indent_lines(on_success, level + 1))
        return lines

    if kind is AttributeKind.ARRAY:
        return _compile_array_coercion(
            name, attribute, target, level, scope, raw, error_sink, on_success
        )

    if kind is AttributeKind.OBJECT:
        raise _unsupported(name, attribute, "parameter coercion compiler")

    raise _unsupported(name, attribute, "parameter coercion compiler")


def _compile_array_coercion(
    name: str,
    attribute: Attribute,
    target: str,
    level: int,
    scope: RenderScope,
    raw: str,
    sink: ErrorSink,
    on_success: Sequence[str],
) -> List[str]:
    element: Attribute = attribute.type.element
    p: str = pad(level)
    parts: str = scope.tmp()
    lines: List[str] = [f'{p}{parts} = {raw}.split(",")']

    if element.kind is AttributeKind.STRING:
        lines.append(f"{p}{target} = {parts}")
        lines.extend(indent_lines(on_success, level))
        return lines
    if element.kind is AttributeKind.OBJECT:
        raise _unsupported(f"{name}[]", element, "parameter coercion compiler")

    values: str = scope.tmp()
    failure: str = scope.tmp()
    index: str = scope.tmp("i")
    raw_elem: str = scope.tmp("raw")
    lines.extend([
        f"{p}{values} = [{zero_value(element)}] * len({parts})",
        f"{p}{failure} = None",
        f"{p}for {index}, {raw_elem} in enumerate({parts}):",
    ])
    lines.extend(
        compile_coercion(
            name,
            element,
            f"{values}[{index}]",
            level + 1,
            scope,
            raw_var=raw_elem,
            sink=FirstErrorSink(failure),
        )
    )
    lines.extend([f"{p}if {failure} is None:", f"{p}    {target} = {values}"])
    lines.extend(indent_lines(on_success, level + 1))
    lines.append(f"{p}else:")
    lines.extend(sink.emit(failure, level + 1, scope))
    return lines


# ---------------------------------------------------------------------------
# Object decode path (JSON values)
# ---------------------------------------------------------------------------


def compile_unmarshal(
    attribute: Attribute,
    source: str,
    target: str,
    context: str,
    level: int,
    scope: RenderScope,
    loader_name: ObjectNamer,
) -> List[str]:
    """
    Statements converting the decoded value *source* into *target*.

    Type mismatches raise ``InvalidAttributeTypeError(context, value,
    kind)``. Objects delegate to the loader named by *loader_name*; arrays
    decode element by element with an indexed context.
    """
    kind: AttributeKind = attribute.kind
    p: str = pad(level)

    def mismatch(condition: str, expected: str) -> List[str]:
        scope.runtime("InvalidAttributeTypeError")
        return [
            f"{p}if {condition}:",
            f"{p}    raise InvalidAttributeTypeError({context}, {source}, {quote(expected)})",
        ]

    if kind is AttributeKind.BOOLEAN:
        return mismatch(f"not isinstance({source}, bool)", "boolean") + [
            f"{p}{target} = {source}"
        ]
    if kind is AttributeKind.INTEGER:
        condition: str = (
            f"isinstance({source}, bool) or not isinstance({source}, (int, float)) "
            f"or (isinstance({source}, float) and not {source}.is_integer())"
        )
        return mismatch(condition, "integer") + [f"{p}{target} = int({source})"]
    if kind is AttributeKind.NUMBER:
        condition = f"isinstance({source}, bool) or not isinstance({source}, (int, float))"
        return mismatch(condition, "number") + [f"{p}{target} = float({source})"]
    if kind is AttributeKind.STRING:
        return mismatch(f"not isinstance({source}, str)", "string") + [
            f"{p}{target} = {source}"
        ]
    if kind is AttributeKind.ANY:
        return [f"{p}{target} = {source}"]
    if kind is AttributeKind.ARRAY:
        items: str = scope.tmp()
        index: str = scope.tmp("i")
        item: str = scope.tmp("item")
        value: str = scope.tmp()
        lines: List[str] = mismatch(f"not isinstance({source}, list)", "array")
        lines.extend([f"{p}{items} = []", f"{p}for {index}, {item} in enumerate({source}):"])
        lines.extend(
            compile_unmarshal(
                attribute.type.element,
                item,
                value,
                f'{context} + "[" + str({index}) + "]"',
                level + 1,
                scope,
                loader_name,
            )
        )
        lines.extend([f"{p}    {items}.append({value})", f"{p}{target} = {items}"])
        return lines
    if kind is AttributeKind.OBJECT:
        return [f"{p}{target} = {loader_name(attribute)}({source}, {context})"]

    raise _unsupported(target, attribute, "decode compiler")


# ---------------------------------------------------------------------------
# Validation checks
# ---------------------------------------------------------------------------


def _bound(value: float, kind: AttributeKind) -> str:
    if kind is AttributeKind.INTEGER and float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def compile_validation(
    attribute: Attribute,
    target: str,
    context: str,
    level: int,
    scope: RenderScope,
    sink: ErrorSink,
    optional: bool = False,
) -> List[str]:
    """
    Checks for every validation declared on *attribute*, applied to *target*.

    Arrays check their own length and then each element; objects call the
    generated ``validate`` of their class. *optional* targets are skipped
    when ``None``.
    """
    checks: List[str] = _validation_checks(attribute, target, context, scope, sink)
    if not checks:
        return []
    if optional:
        return [f"{pad(level)}if {target} is not None:"] + indent_lines(checks, level + 1)
    return indent_lines(checks, level)


def compile_non_zero_check(
    target: str,
    context: str,
    level: int,
    scope: RenderScope,
    sink: ErrorSink,
) -> List[str]:
    """Reject a value equal to its type's zero value."""
    scope.runtime("ValidationFailedError")
    lines: List[str] = [f"{pad(level)}if not {target}:"]
    lines.extend(
        sink.emit(f'ValidationFailedError({context}, "must not be empty")', level + 1, scope)
    )
    return lines


def _validation_checks(
    attribute: Attribute,
    target: str,
    context: str,
    scope: RenderScope,
    sink: ErrorSink,
) -> List[str]:
    rules = attribute.validations
    kind: AttributeKind = attribute.kind
    lines: List[str] = []

    if rules.enum is not None:
        allowed: str = python_literal(list(rules.enum))
        scope.runtime("InvalidEnumValueError")
        lines.append(f"if {target} not in {allowed}:")
        lines.extend(sink.emit(f"InvalidEnumValueError({context}, {target}, {allowed})", 1, scope))

    if kind is AttributeKind.STRING:
        if rules.format:
            reason: str = scope.tmp("reason")
            fmt: str = quote(rules.format)
            scope.runtime("validate_format", "InvalidFormatError")
            lines.append(f"{reason} = validate_format({fmt}, {target})")
            lines.append(f"if {reason} is not None:")
            lines.extend(
                sink.emit(f"InvalidFormatError({context}, {target}, {fmt}, {reason})", 1, scope)
            )
        if rules.pattern:
            pattern: str = quote(rules.pattern)
            scope.need("re")
            scope.runtime("InvalidPatternError")
            lines.append(f"if re.search({pattern}, {target}) is None:")
            lines.extend(sink.emit(f"InvalidPatternError({context}, {target}, {pattern})", 1, scope))

    if kind in (AttributeKind.INTEGER, AttributeKind.NUMBER):
        for bound_value, is_min in ((rules.minimum, True), (rules.maximum, False)):
            if bound_value is None:
                continue
            bound: str = _bound(bound_value, kind)
            scope.runtime("InvalidRangeError")
            lines.append(f"if {target} {'<' if is_min else '>'} {bound}:")
            lines.extend(
                sink.emit(f"InvalidRangeError({context}, {target}, {bound}, {is_min})", 1, scope)
            )

    if kind in (AttributeKind.STRING, AttributeKind.ARRAY):
        for length, is_min in ((rules.min_length, True), (rules.max_length, False)):
            if length is None:
                continue
            scope.runtime("InvalidLengthError")
            lines.append(f"if len({target}) {'<' if is_min else '>'} {length}:")
            lines.extend(
                sink.emit(
                    f"InvalidLengthError({context}, {target}, len({target}), {length}, {is_min})",
                    1,
                    scope,
                )
            )

    if kind is AttributeKind.ARRAY:
        index: str = scope.tmp("i")
        item: str = scope.tmp("item")
        element_checks: List[str] = _validation_checks(
            attribute.type.element,
            item,
            f'{context} + "[" + str({index}) + "]"',
            scope,
            sink,
        )
        if element_checks:
            lines.append(f"for {index}, {item} in enumerate({target}):")
            lines.extend(indent_lines(element_checks, 1))

    if kind is AttributeKind.OBJECT:
        exc: str = scope.tmp("exc")
        scope.runtime("RequestError")
        lines.extend([
            "try:",
            f"    {target}.validate({context})",
            f"except RequestError as {exc}:",
        ])
        lines.extend(sink.emit(exc, 1, scope))

    return lines


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ErrorSink",
    "AccumulateSink",
    "FirstErrorSink",
    "RaiseSink",
    "ObjectNamer",
    "zero_value",
    "python_type",
    "field_declaration",
    "is_optional_field",
    "compile_coercion",
    "compile_unmarshal",
    "compile_validation",
    "compile_non_zero_check",
]

logger.debug("dalgen.coercion loaded — %d public symbols.", len(__all__))
