"""
Render a Manifest into a dispatch module.

The output is plain Python that imports the handler and middleware modules,
binds each request to the handler's request model and threads it through the
endpoint's middleware chain via ``apiforge.runtime``. Rendering is pure: the
same manifest always gives the same text.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from apiforge.codegen.naming import unique_slugs
from apiforge.domain.models import Manifest, ManifestEndpoint, ManifestFieldBinding
from apiforge.errors import GeneratorError

logger = logging.getLogger(__name__)

HEADER = "# Code generated by apiforge. DO NOT EDIT."


def _module_aliases(endpoints: List[ManifestEndpoint]) -> Dict[str, str]:
    modules = set()
    for ep in endpoints:
        modules.add(ep.handler_pkg)
        for mw in ep.middlewares:
            modules.add(mw.pkg)
    return {m: f"_m{i}" for i, m in enumerate(sorted(modules))}


def check_duplicate_routes(endpoints: List[ManifestEndpoint]) -> None:
    seen: Dict[tuple[str, str], ManifestEndpoint] = {}
    for ep in endpoints:
        key = (ep.method, ep.path)
        if key in seen:
            raise GeneratorError(
                "duplicate_route",
                f"route {ep.pattern} is registered by both {seen[key].handler_key} and {ep.handler_key}",
            )
        seen[key] = ep


def _param_lines(fn: str, b: ManifestFieldBinding, source: str) -> List[str]:
    kind = b.elem_kind if b.is_slice and b.elem_kind else b.type_kind
    if source == "path":
        return [f"    values[{b.field_name!r}] = _rt.path_param(request, {b.tag_value!r}, {kind!r})"]
    if source == "query" and b.is_slice:
        call = f"_rt.query_param(request, {b.tag_value!r}, {kind!r}, many=True)"
    else:
        call = f"_rt.{fn}(request, {b.tag_value!r}, {kind!r})"
    return [
        f"    value = {call}",
        "    if value is not _rt.MISSING:",
        f"        values[{b.field_name!r}] = value",
    ]


def _render_binder(name: str, handler_ref: str, ep: ManifestEndpoint) -> List[str]:
    bindings = ep.bindings
    lines = [
        f"def _bind_{name}(request: _rt.Request) -> Any:",
        f"    model = _rt.request_model({handler_ref})",
    ]
    if bindings is not None and bindings.has_json_body:
        lines.append("    values: dict[str, Any] = _rt.decode_body(request, model)")
    else:
        lines.append("    values: dict[str, Any] = {}")
    if bindings is not None:
        for b in bindings.path_bindings:
            lines.extend(_param_lines("path_param", b, "path"))
        for b in bindings.query_bindings:
            lines.extend(_param_lines("query_param", b, "query"))
        for b in bindings.header_bindings:
            lines.extend(_param_lines("header_param", b, "header"))
    lines.append("    return _rt.build_request(model, values)")
    return lines


def _render_handler(name: str, handler_ref: str, mw_refs: List[str], ep: ManifestEndpoint) -> List[str]:
    if ep.shape in ("ctx_req_err", "ctx_req_resp_err"):
        call = f"{handler_ref}(req.context, _bind_{name}(req))"
    else:
        call = f"{handler_ref}(req.context)"

    lines = [
        f"def handle_{name}(request: _rt.Request) -> _rt.Response:",
        f'    """{ep.pattern} -> {ep.handler_key}"""',
        "",
        "    def terminal(req: _rt.Request) -> _rt.HandlerResult:",
    ]
    if ep.shape in ("ctx_resp_err", "ctx_req_resp_err"):
        lines.append(f"        return _rt.json_result({call})")
    else:
        lines.append(f"        {call}")
        lines.append("        return _rt.no_content()")
    lines.append("")

    if mw_refs:
        chain = "(" + ", ".join(mw_refs) + ("," if len(mw_refs) == 1 else "") + ")"
    else:
        chain = "()"
    lines.append(f"    return _rt.run_chain(request, {chain}, terminal)")
    return lines


def generate_dispatch(manifest: Manifest, package: str) -> str:
    """Dispatch module source for `package`. Raises GeneratorError on duplicate routes."""
    endpoints = sorted(manifest.endpoints, key=lambda e: e.sort_key())
    check_duplicate_routes(endpoints)

    aliases = _module_aliases(endpoints)
    names = unique_slugs((ep.method, ep.path) for ep in endpoints)

    out: List[str] = [
        HEADER,
        f'"""HTTP dispatch for {package}."""',
        "from __future__ import annotations",
        "",
        "from typing import Any, Callable",
        "",
        "from apiforge import runtime as _rt",
    ]
    if aliases:
        out.append("")
        for module in sorted(aliases):
            out.append(f"import {module} as {aliases[module]}")

    for name, ep in zip(names, endpoints):
        handler_ref = f"{aliases[ep.handler_pkg]}.{ep.handler_name}"
        mw_refs = [f"{aliases[mw.pkg]}.{mw.name}" for mw in ep.middlewares]

        if ep.shape in ("ctx_req_err", "ctx_req_resp_err"):
            out.extend(["", ""])
            out.extend(_render_binder(name, handler_ref, ep))

        out.extend(["", ""])
        out.extend(_render_handler(name, handler_ref, mw_refs, ep))

    out.extend(["", ""])
    out.append("ROUTES: dict[str, Callable[[_rt.Request], _rt.Response]] = {")
    for name, ep in zip(names, endpoints):
        out.append(f"    {ep.pattern!r}: handle_{name},")
    out.append("}")
    out.extend(
        [
            "",
            "",
            "def serve(request: _rt.Request) -> _rt.Response:",
            "    return _rt.dispatch(ROUTES, request)",
        ]
    )

    logger.debug("rendered dispatch for %d endpoint(s) in %s", len(endpoints), package)
    return "\n".join(out) + "\n"
