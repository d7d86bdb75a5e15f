"""
Render a Manifest into a typed client module.

Every endpoint becomes one method on ``Client`` named like its dispatch
handler (``get_pets_by_id``). A method takes the endpoint's request model,
fills the path through ``runtime.interpolate_path``, serialises query and
header bindings with ``runtime.format_param``, sends Body-bound fields as
JSON and decodes the reply into the declared response type.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from apiforge.codegen.dispatch import HEADER, check_duplicate_routes
from apiforge.codegen.naming import unique_slugs
from apiforge.codegen.typeexpr import import_lines, type_aliases, type_expr
from apiforge.domain.models import Manifest, ManifestBindings, ManifestEndpoint, ManifestFieldBinding

logger = logging.getLogger(__name__)


def _guarded(b: ManifestFieldBinding, line: str) -> List[str]:
    if b.is_pointer:
        return [f"        if req.{b.field_name} is not None:", f"            {line}"]
    return [f"        {line}"]


def _query_lines(b: ManifestFieldBinding) -> List[str]:
    if b.is_slice:
        return [
            f"        for v in req.{b.field_name} or ():",
            f"            query.append(({b.tag_value!r}, _rt.format_param(v)))",
        ]
    return _guarded(b, f"query.append(({b.tag_value!r}, _rt.format_param(req.{b.field_name})))")


def _header_lines(b: ManifestFieldBinding) -> List[str]:
    return _guarded(b, f"headers[{b.tag_value!r}] = _rt.format_param(req.{b.field_name})")


def _render_method(name: str, ep: ManifestEndpoint, req_expr: Optional[str], resp_expr: Optional[str]) -> List[str]:
    out_expr = resp_expr or "None"
    params = f"self, req: {req_expr}" if req_expr else "self"
    lines = [
        f"    def {name}({params}) -> {out_expr}:",
        f'        """{ep.pattern} -> {ep.handler_key}"""',
    ]
    if req_expr is None:
        lines.append(f"        return self.call({ep.method!r}, {ep.path!r}, [], {{}}, None, {out_expr})")
        return lines

    bindings = ep.bindings or ManifestBindings()
    if bindings.path_bindings:
        values = ", ".join(f"{b.tag_value!r}: req.{b.field_name}" for b in bindings.path_bindings)
        lines.append(f"        path = _rt.interpolate_path({ep.path!r}, {{{values}}})")
    else:
        lines.append(f"        path = {ep.path!r}")

    lines.append("        query: list[tuple[str, str]] = []")
    for b in bindings.query_bindings:
        lines.extend(_query_lines(b))
    lines.append("        headers: dict[str, str] = {}")
    for b in bindings.header_bindings:
        lines.extend(_header_lines(b))

    body = "_rt.encode_body(req)" if bindings.has_json_body else "None"
    lines.append(f"        return self.call({ep.method!r}, path, query, headers, {body}, {out_expr})")
    return lines


def generate_client(manifest: Manifest, package: str) -> str:
    """Client module source for `package`. Raises GeneratorError on duplicate routes or unrenderable types."""
    endpoints = sorted(manifest.endpoints, key=lambda e: e.sort_key())
    check_duplicate_routes(endpoints)

    names = unique_slugs((ep.method, ep.path) for ep in endpoints)
    aliases = type_aliases(t for ep in endpoints for t in (ep.req_type, ep.resp_type) if t)

    def render(t: Optional[str], ep: ManifestEndpoint) -> Optional[str]:
        if t is None:
            return None
        return type_expr(t, aliases, "invalid_type", f"endpoint {ep.pattern}")

    out: List[str] = [
        HEADER,
        f'"""Typed client for {package}."""',
        "from __future__ import annotations",
        "",
        "from apiforge import runtime as _rt",
    ]
    if aliases:
        out.append("")
        out.extend(import_lines(aliases))

    out.extend(
        [
            "",
            "",
            "class Client(_rt.BaseClient):",
            f'    """Calls the routes registered by {package} through a transport."""',
        ]
    )
    for name, ep in zip(names, endpoints):
        out.append("")
        out.extend(_render_method(name, ep, render(ep.req_type, ep), render(ep.resp_type, ep)))

    logger.debug("rendered client for %d endpoint(s) in %s", len(endpoints), package)
    return "\n".join(out) + "\n"
