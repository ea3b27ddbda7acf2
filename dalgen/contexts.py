# File: dalgen/contexts.py
"""
DALGen - Action Contexts & Responses
====================================
For every action of every resource in one API version this module emits:

- a ``<Action><Resource>Context`` dataclass holding the typed parameters
  and payload, forwarding unknown attributes to the request accessor;
- a ``new_<action>_<resource>_context(request)`` factory returning
  ``(ctx, err)``. Header and parameter problems accumulate into ``err``
  while every other parameter is still coerced; a bad payload aborts
  construction and returns ``(None, err)``;
- one response method per declared response, which projects the value
  with its media type's ``dump`` and sends it with the content type set.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from dalgen.coercion import (
    AccumulateSink,
    compile_coercion,
    compile_non_zero_check,
    compile_validation,
    field_declaration,
)
from dalgen.errors import UnsupportedCompositeShapeError
from dalgen.media_types import MediaTypeInfo, TypeRenderer, describe_media_type, loader_name
from dalgen.models import Action, APIDefinition, Attribute, MediaType, ObjectType, Resource, Response
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
logger: logging.Logger = logging.getLogger("dalgen.contexts")

_MEDIA_MODULE: str = ".media_types"


# ---------------------------------------------------------------------------
# Naming & merging helpers
# ---------------------------------------------------------------------------


def context_class_name(action: Action, resource: Resource) -> str:
    return f"{class_name(action.name)}{class_name(resource.name)}Context"


def context_factory_name(action: Action, resource: Resource) -> str:
    return f"new_{to_snake_case(action.name)}_{to_snake_case(resource.name)}_context"


def payload_class_name(action: Action, resource: Resource) -> str:
    if action.payload is not None and action.payload.name:
        return class_name(action.payload.name)
    return f"{class_name(action.name)}{class_name(resource.name)}Payload"


def merge_headers(resource: Resource, action: Action) -> ObjectType:
    """Resource headers overlaid with the action's own; required names are unioned."""
    fields: Dict[str, Attribute] = dict(resource.headers.fields)
    fields.update(action.headers.fields)
    required: List[str] = list(resource.headers.required)
    required += [n for n in action.headers.required if n not in required]
    return ObjectType(fields=fields, required=required)


def merge_responses(resource: Resource, action: Action) -> List[Response]:
    """Resource responses overlaid with the action's, keeping first-seen order."""
    merged: Dict[str, Response] = {r.name: r for r in resource.responses}
    for response in action.responses:
        merged[response.name] = response
    return list(merged.values())


def _no_objects(attribute: Attribute) -> str:
    raise UnsupportedCompositeShapeError("<parameter>", attribute.kind.value, "parameter context synthesizer")


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class ContextSynthesizer:
    """Renders the contexts module of one API version."""

    def __init__(self, api: APIDefinition, version: str, runtime_module: str) -> None:
        self.api: APIDefinition = api
        self.version: str = version
        self.runtime_module: str = runtime_module
        self.scope: RenderScope = RenderScope()
        self.known: Dict[str, MediaType] = {mt.name: mt for mt in api.media_types_for(version)}
        self._by_identifier: Dict[str, MediaType] = {
            mt.identifier: mt for mt in self.known.values()
        }
        self.payloads: TypeRenderer = TypeRenderer(self.scope, root_context="payload")
        self._blocks: List[List[str]] = []

    # -- Actions ------------------------------------------------------------

    def render_action(self, resource: Resource, action: Action) -> None:
        logger.debug("Rendering context for %s.%s.", resource.name, action.name)
        payload_cls: Optional[str] = None
        if action.payload is not None:
            payload_cls = self.payloads.render_user_type(
                action.payload, payload_class_name(action, resource)
            )
        self._blocks.append(self._context_class(resource, action, payload_cls))
        self._blocks.append(self._context_factory(resource, action, payload_cls))

    def _context_class(
        self, resource: Resource, action: Action, payload_cls: Optional[str]
    ) -> List[str]:
        scope: RenderScope = self.scope
        cls: str = context_class_name(action, resource)
        scope.need("dataclasses", "dataclass")
        scope.need("typing", "Any")
        scope.runtime("RequestAccessor")
        lines: List[str] = [
            "@dataclass",
            f"class {cls}:",
            docstring_line(
                f"{cls} provides the {resource.name} {action.name} action context.", 1
            ),
            "",
            f"{pad(1)}request: RequestAccessor",
        ]
        for name in action.params.fields:
            annotation, default = field_declaration(name, action.params, _no_objects, scope)
            lines.append(f"{pad(1)}{safe_identifier(name)}: {annotation} = {default}")
        if payload_cls is not None:
            scope.need("typing", "Optional")
            lines.append(f"{pad(1)}payload: Optional[{payload_cls}] = None")
        lines.extend([
            "",
            f"{pad(1)}def __getattr__(self, name: str) -> Any:",
            f'{pad(2)}if name == "request":',
            f"{pad(3)}raise AttributeError(name)",
            f"{pad(2)}return getattr(self.request, name)",
        ])
        for response in merge_responses(resource, action):
            lines.append("")
            lines.extend(self.render_response(response))
        return lines

    def _context_factory(
        self, resource: Resource, action: Action, payload_cls: Optional[str]
    ) -> List[str]:
        scope: RenderScope = self.scope
        cls: str = context_class_name(action, resource)
        sink: AccumulateSink = AccumulateSink()
        scope.need("typing", "Optional", "Tuple")
        scope.runtime("RequestAccessor", "RequestError")
        lines: List[str] = [
            f"def {context_factory_name(action, resource)}(",
            f"{pad(1)}request: RequestAccessor,",
            f") -> Tuple[Optional[{cls}], Optional[RequestError]]:",
            docstring_line(
                f"Parse the request into a {cls}, collecting every header and parameter error.",
                1,
            ),
            f"{pad(1)}err: Optional[RequestError] = None",
            f"{pad(1)}ctx = {cls}(request=request)",
        ]

        headers: ObjectType = merge_headers(resource, action)
        for name in headers.required:
            scope.runtime("MissingHeaderError")
            lines.append(f"{pad(1)}if not request.header({quote(name)}):")
            lines.extend(sink.emit(f"MissingHeaderError({quote(name)})", 2, scope))

        for name, attribute in action.params.fields.items():
            lines.extend(self._param_lines(action, name, attribute, sink))

        if payload_cls is not None:
            loader: str = loader_name(payload_cls)
            exc: str = scope.tmp("exc")
            lines.extend([
                f"{pad(1)}try:",
                f'{pad(2)}payload = {loader}(request.payload(), "payload")',
                f'{pad(2)}payload.validate("payload")',
                f"{pad(1)}except RequestError as {exc}:",
                f"{pad(2)}return None, {exc}",
                f"{pad(1)}ctx.payload = payload",
            ])
        lines.append(f"{pad(1)}return ctx, err")
        return lines

    def _param_lines(
        self,
        action: Action,
        name: str,
        attribute: Attribute,
        sink: AccumulateSink,
    ) -> List[str]:
        scope: RenderScope = self.scope
        params: ObjectType = action.params
        raw: str = f"raw_{safe_identifier(name)}"
        target: str = f"ctx.{safe_identifier(name)}"
        context: str = quote(name)

        on_success: List[str] = []
        if params.is_non_zero(name) and attribute.is_primitive:
            on_success.extend(compile_non_zero_check(target, context, 0, scope, sink))
        on_success.extend(compile_validation(attribute, target, context, 0, scope, sink))

        lines: List[str] = [f"{pad(1)}{raw} = request.get({quote(name)})"]
        coercion: List[str] = compile_coercion(
            name, attribute, target, 2, scope, raw_var=raw, sink=sink, on_success=on_success
        )
        path_param: bool = action.is_path_param(name) and attribute.is_primitive
        if params.is_required(name) and not path_param:
            scope.runtime("MissingParamError")
            lines.append(f'{pad(1)}if {raw} == "":')
            lines.extend(sink.emit(f"MissingParamError({quote(name)})", 2, scope))
            lines.append(f"{pad(1)}else:")
        else:
            lines.append(f'{pad(1)}if {raw} != "":')
        lines.extend(coercion)
        return lines

    # -- Responses ----------------------------------------------------------

    def render_response(self, response: Response) -> List[str]:
        """Method sending *response*, keyed by its snake_case name."""
        scope: RenderScope = self.scope
        method: str = safe_identifier(response.name)
        scope.need("typing", "Any")
        doc: str = docstring_line(f"Send an HTTP response with status code {response.status}.", 2)
        identifier: Optional[str] = response.media_type
        if identifier is None:
            return [
                f"{pad(1)}def {method}(self) -> Any:",
                doc,
                f"{pad(2)}return self.request.respond({response.status}, None)",
            ]

        content_type: str = quote(f"{identifier}; charset=utf-8")
        mt: Optional[MediaType] = self._by_identifier.get(identifier)
        if mt is None:
            return [
                f"{pad(1)}def {method}(self, resp: bytes) -> Any:",
                doc,
                f'{pad(2)}self.request.set_header("Content-Type", {content_type})',
                f"{pad(2)}return self.request.respond({response.status}, resp)",
            ]

        info: MediaTypeInfo = describe_media_type(mt, self.known)
        resp_type: str = info.class_name
        scope.need(_MEDIA_MODULE, info.class_name)
        scope.runtime("encode_json")
        params: str = f"self, resp: {resp_type}"
        if info.is_collection:
            scope.need(_MEDIA_MODULE, info.dumper)  # type: ignore[arg-type]
            call: str = f"{info.dumper}(resp, view)" if info.multi_view else f"{info.dumper}(resp)"
        else:
            call = "resp.dump(view)" if info.multi_view else "resp.dump()"
        if info.multi_view:
            scope.need(_MEDIA_MODULE, info.view_enum)  # type: ignore[arg-type]
            params += f", view: {info.view_enum}"
        return [
            f"{pad(1)}def {method}({params}) -> Any:",
            doc,
            f"{pad(2)}body = {call}",
            f'{pad(2)}self.request.set_header("Content-Type", {content_type})',
            f"{pad(2)}return self.request.respond({response.status}, encode_json(body))",
        ]

    # -- Module -------------------------------------------------------------

    def render(self) -> str:
        resources: List[Resource] = self.api.resources_for(self.version)
        for resource in resources:
            for action in resource.actions:
                self.render_action(resource, action)

        label: str = f"version {self.version}" if self.version else "the default version"
        header: List[str] = [
            f'"""Action contexts of {label}. Generated by dalgen; do not edit."""',
            "",
            "from __future__ import annotations",
            "",
        ]
        body: List[str] = join_blocks([self.payloads.lines()] + self._blocks)
        logger.info(
            "Rendered %d action contexts for %s.", len(self._blocks) // 2, label
        )
        return "\n".join(header + self.scope.import_lines(self.runtime_module) + ["", ""] + body) + "\n"


def render_contexts_module(api: APIDefinition, version: str, runtime_module: str) -> str:
    """Source of the ``contexts.py`` module for one API version."""
    return ContextSynthesizer(api, version, runtime_module).render()


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "context_class_name",
    "context_factory_name",
    "payload_class_name",
    "merge_headers",
    "merge_responses",
    "ContextSynthesizer",
    "render_contexts_module",
]

logger.debug("dalgen.contexts loaded — %d public symbols.", len(__all__))
