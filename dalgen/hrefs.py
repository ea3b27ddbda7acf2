# File: dalgen/hrefs.py
"""
DALGen - Resource Hrefs
=======================
Renders ``hrefs.py``: one ``<resource>_href(*params)`` function per
resource with a canonical action, built from the first route of that
action. Wildcards (``:accountID``) become positional parameters in
template order.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from dalgen.models import Action, APIDefinition, Resource
from dalgen.utils import docstring_line, join_blocks, pad, quote, safe_identifier, to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.hrefs")

_WILDCARD_RE: re.Pattern[str] = re.compile(r":([a-zA-Z0-9_]+)")


def canonical_template(api: APIDefinition, resource: Resource) -> Optional[str]:
    """Full path of the resource's canonical route, or None when it has none."""
    if not resource.canonical_action:
        return None
    action: Optional[Action] = resource.get_action(resource.canonical_action)
    if action is None or not action.routes:
        return None
    return f"{api.base_path}{resource.base_path}{action.routes[0].path}" or "/"


def render_href(api: APIDefinition, resource: Resource) -> List[str]:
    template: Optional[str] = canonical_template(api, resource)
    if template is None:
        return []
    params: List[str] = [safe_identifier(p) for p in _WILDCARD_RE.findall(template)]
    fmt: str = quote(_WILDCARD_RE.sub("{}", template.replace("{", "{{").replace("}", "}}")))
    signature: str = ", ".join(f"{p}: Any" for p in params)
    lines: List[str] = [
        f"def {to_snake_case(resource.name)}_href({signature}) -> str:",
        docstring_line(f"Canonical href of a {resource.name} resource.", 1),
    ]
    if params:
        lines.append(f"{pad(1)}return {fmt}.format({', '.join(params)})")
    else:
        lines.append(f"{pad(1)}return {fmt}")
    return lines


def render_hrefs_module(api: APIDefinition, version: str) -> str:
    """Source of the ``hrefs.py`` module for one API version."""
    blocks: List[List[str]] = [render_href(api, r) for r in api.resources_for(version)]
    rendered: int = sum(1 for b in blocks if b)
    label: str = f"version {version}" if version else "the default version"
    lines: List[str] = [
        f'"""Resource hrefs of {label}. Generated by dalgen; do not edit."""',
        "",
        "from __future__ import annotations",
    ]
    if rendered:
        lines += ["", "from typing import Any", "", ""] + join_blocks(blocks)
    logger.debug("Rendered %d hrefs for %s.", rendered, label)
    return "\n".join(lines) + "\n"


__all__: List[str] = ["canonical_template", "render_href", "render_hrefs_module"]

logger.debug("dalgen.hrefs loaded — %d public symbols.", len(__all__))
