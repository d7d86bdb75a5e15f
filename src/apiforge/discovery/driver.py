"""
In-sandbox side of discovery.

``build_manifest`` imports the target project's registration modules, runs
``register(app)`` / ``register_middleware(registry)``, validates everything and
returns a Manifest. ``driver_main`` is what the synthesized driver script calls:
manifest JSON on stdout, diagnostics on stderr, exit code says which.
"""
from __future__ import annotations

import contextlib
import importlib
import inspect
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from apiforge.analysis.bindings import BindingInfo, FieldBinding, analyze_bindings
from apiforge.analysis.handlers import classify_handler
from apiforge.analysis.schema import collect_types, parse_doc
from apiforge.analysis.typeinfo import own_doc
from apiforge.app import App, Endpoint, MiddlewareRef
from apiforge.domain.models import (
    Manifest,
    ManifestBindings,
    ManifestContextKey,
    ManifestDoc,
    ManifestEndpoint,
    ManifestFieldBinding,
    ManifestMayReturnStatus,
    ManifestMiddleware,
    ManifestMiddlewareMetadata,
)
from apiforge.errors import EndpointValidationError, RegistrationError, RegistryError, ValidationError
from apiforge.middleware import MiddlewareRegistry, validate_strict_middleware

logger = logging.getLogger(__name__)

REGISTER_FN = "register"
REGISTER_MIDDLEWARE_FN = "register_middleware"

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_IMPORT = 2


def _is_addressable(pkg: str, name: str) -> bool:
    # generated code reaches the symbol as <module>.<qualname>
    return bool(pkg) and bool(name) and "<" not in name


def _entrypoint(module_name: str, fn_name: str) -> Any:
    module = importlib.import_module(module_name)
    fn = getattr(module, fn_name, None)
    if not callable(fn):
        raise ImportError(f"module {module_name} has no callable {fn_name}()")
    return fn


def _binding(fb: FieldBinding) -> ManifestFieldBinding:
    kind, optional, is_list, elem = fb.describe()
    return ManifestFieldBinding(
        field_name=fb.field_name,
        tag_value=fb.tag_value,
        type_kind=kind,
        is_pointer=optional,
        is_slice=is_list,
        elem_kind=elem,
    )


def _bindings(info: BindingInfo) -> ManifestBindings:
    return ManifestBindings(
        has_json_body=info.has_body,
        path_bindings=[_binding(b) for b in info.path_bindings],
        query_bindings=[_binding(b) for b in info.query_bindings],
        header_bindings=[_binding(b) for b in info.header_bindings],
    )


def _middleware(ref: MiddlewareRef) -> ManifestMiddleware:
    if not _is_addressable(ref.pkg, ref.name):
        raise RegistryError(
            "middleware_not_addressable",
            f"middleware {ref.qualified_name} must be a module-level function",
        )
    return ManifestMiddleware(pkg=ref.pkg, name=ref.name)


def validate_endpoint(ep: Endpoint) -> tuple[Endpoint, Optional[BindingInfo]]:
    """Classify the handler and analyse request bindings, tagging errors with the route."""
    try:
        bound_to_instance = inspect.ismethod(ep.handler) and not isinstance(ep.handler.__self__, type)
        if bound_to_instance or not _is_addressable(ep.handler_pkg, ep.handler_name):
            raise ValidationError(
                "handler_not_addressable",
                f"handler {ep.handler_pkg}.{ep.handler_name} must be a module-level function",
            )
        info = classify_handler(ep.handler)
        bindings = analyze_bindings(ep.path, info.req_type) if info.req_type is not None else None
    except ValidationError as exc:
        raise EndpointValidationError(ep.method, ep.path, exc) from exc
    return ep.with_info(info), bindings


def build_manifest(target: str, middleware: Optional[str] = None) -> Manifest:
    app = App()
    _entrypoint(target, REGISTER_FN)(app)
    endpoints = app.endpoints()
    logger.debug("registered %d endpoint(s) from %s", len(endpoints), target)

    registry: Optional[MiddlewareRegistry] = None
    if middleware:
        registry = MiddlewareRegistry()
        _entrypoint(middleware, REGISTER_MIDDLEWARE_FN)(registry)
    validate_strict_middleware(endpoints, registry, configured=middleware is not None)

    manifest_endpoints: list[ManifestEndpoint] = []
    roots: list[Any] = []
    docs: dict[str, ManifestDoc] = {}

    for ep in endpoints:
        ep, bindings = validate_endpoint(ep)
        info = ep.handler_info
        me = ManifestEndpoint(
            method=ep.method,
            path=ep.path,
            handler_pkg=ep.handler_pkg,
            handler_name=ep.handler_name,
            shape=info.shape.value,
            req_type=info.req_type_name,
            resp_type=info.resp_type_name,
            middlewares=[_middleware(m) for m in ep.middlewares],
            bindings=_bindings(bindings) if bindings is not None else None,
        )
        manifest_endpoints.append(me)

        for t in (info.req_type, info.resp_type):
            if t is not None:
                roots.append(t)

        summary, description = parse_doc(own_doc(inspect.unwrap(ep.handler)))
        if summary:
            docs[me.handler_key] = ManifestDoc(summary=summary, description=description)

    middlewares: list[ManifestMiddleware] = []
    context_keys: list[ManifestContextKey] = []
    metadata: dict[str, ManifestMiddlewareMetadata] = {}
    if registry is not None:
        for ref in registry.middlewares():
            middlewares.append(_middleware(ref))
            meta = registry.get_metadata(ref.fn)
            if meta is not None:
                metadata[ref.qualified_name] = ManifestMiddlewareMetadata(
                    required_headers=list(meta.required_headers),
                    required_cookies=list(meta.required_cookies),
                    security_schemes=list(meta.security_schemes),
                    may_return_statuses=[
                        ManifestMayReturnStatus(status=s.status, description=s.description)
                        for s in meta.may_return_statuses
                    ],
                )
        context_keys = [ManifestContextKey(key=pk.key, type=pk.type) for pk in registry.provided_keys()]

    return Manifest(
        endpoints=manifest_endpoints,
        middlewares=middlewares,
        context_keys=context_keys,
        middleware_metadata=metadata,
        types=collect_types(roots),
        endpoint_docs=docs,
    )


def driver_main(descriptor_path: str) -> int:
    descriptor = json.loads(Path(descriptor_path).read_text(encoding="utf-8"))
    for entry in reversed(descriptor.get("search_paths", [])):
        if entry not in sys.path:
            sys.path.insert(0, entry)

    try:
        # stdout carries only the manifest; anything the target prints goes to stderr
        with contextlib.redirect_stdout(sys.stderr):
            manifest = build_manifest(descriptor["target"], descriptor.get("middleware"))
    except (ValidationError, RegistryError) as exc:
        sys.stderr.write(f"validation error: {exc}\n")
        return EXIT_VALIDATION
    except RegistrationError as exc:
        sys.stderr.write(f"registration error: {exc}\n")
        return EXIT_VALIDATION
    except ImportError as exc:
        sys.stderr.write(f"import error: {exc}\n")
        return EXIT_IMPORT

    sys.stdout.write(manifest.to_json())
    sys.stdout.flush()
    return EXIT_OK
