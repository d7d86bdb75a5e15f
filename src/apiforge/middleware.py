from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from apiforge.analysis.typeinfo import type_name
from apiforge.app import Endpoint, MiddlewareRef
from apiforge.errors import RegistryError

_CONTEXT_KEY = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class ProvidedKey:
    key: str
    type: str


@dataclass(frozen=True)
class MayReturnStatus:
    status: int
    description: str


@dataclass
class MiddlewareMetadata:
    required_headers: list[str] = field(default_factory=list)
    required_cookies: list[str] = field(default_factory=list)
    security_schemes: list[str] = field(default_factory=list)
    may_return_statuses: list[MayReturnStatus] = field(default_factory=list)


def validate_context_key(key: str) -> None:
    """Keys are snake_case: [a-z][a-z0-9_]*, no double or trailing underscore."""
    if not key:
        raise RegistryError("invalid_context_key", "context key cannot be empty")
    if not _CONTEXT_KEY.match(key):
        raise RegistryError("invalid_context_key", f"context key {key!r} must match pattern [a-z][a-z0-9_]*")
    if "__" in key:
        raise RegistryError("invalid_context_key", f"context key {key!r} cannot contain consecutive underscores")
    if key.endswith("_"):
        raise RegistryError("invalid_context_key", f"context key {key!r} cannot end with underscore")


class MiddlewareDescriptor:
    """Builder returned by MiddlewareRegistry.describe(); every method returns self."""

    def __init__(self, meta: MiddlewareMetadata) -> None:
        self._meta = meta

    def require_header(self, name: str) -> "MiddlewareDescriptor":
        self._meta.required_headers.append(name)
        return self

    def require_cookie(self, name: str) -> "MiddlewareDescriptor":
        self._meta.required_cookies.append(name)
        return self

    def security(self, scheme: str) -> "MiddlewareDescriptor":
        self._meta.security_schemes.append(scheme)
        return self

    def may_return(self, status: int, description: str) -> "MiddlewareDescriptor":
        self._meta.may_return_statuses.append(MayReturnStatus(status=status, description=description))
        return self


class MiddlewareRegistry:
    """
    Middleware declarations collected from a project's ``register_middleware(registry)``.

    Declaration order is kept; provided context keys are reported sorted.
    """

    def __init__(self) -> None:
        self._middlewares: list[MiddlewareRef] = []
        self._provided: dict[str, Any] = {}
        self._metadata: dict[tuple[str, str], MiddlewareMetadata] = {}

    def use(self, mw: Callable[..., Any]) -> None:
        self._middlewares.append(MiddlewareRef.of(mw))

    def middlewares(self) -> list[MiddlewareRef]:
        return list(self._middlewares)

    def is_declared(self, pkg: str, name: str) -> bool:
        return any(m.pkg == pkg and m.name == name for m in self._middlewares)

    def provide(self, key: str, typ: Any) -> None:
        validate_context_key(key)
        if key in self._provided:
            if self._provided[key] == typ:
                raise RegistryError("duplicate_context_key", f"context key {key!r} is already declared")
            raise RegistryError(
                "duplicate_context_key_type_mismatch",
                f"context key {key!r} is already declared with a different type",
            )
        self._provided[key] = typ

    def provided_keys(self) -> list[ProvidedKey]:
        return [ProvidedKey(key=k, type=type_name(self._provided[k])) for k in sorted(self._provided)]

    def describe(self, mw: Callable[..., Any]) -> MiddlewareDescriptor:
        ref = MiddlewareRef.of(mw)
        if not self.is_declared(ref.pkg, ref.name):
            raise RegistryError(
                "describe_undeclared_middleware",
                f"middleware {ref.qualified_name} must be declared via use() before calling describe()",
            )
        meta = self._metadata.setdefault((ref.pkg, ref.name), MiddlewareMetadata())
        return MiddlewareDescriptor(meta)

    def get_metadata(self, mw: Callable[..., Any]) -> Optional[MiddlewareMetadata]:
        ref = MiddlewareRef.of(mw)
        return self._metadata.get((ref.pkg, ref.name))


def validate_strict_middleware(
    endpoints: Iterable[Endpoint],
    registry: Optional[MiddlewareRegistry],
    configured: bool,
) -> None:
    """Every middleware an endpoint uses must be declared in register_middleware()."""
    used: set[tuple[str, str]] = set()
    for ep in endpoints:
        for mw in ep.middlewares:
            used.add((mw.pkg, mw.name))

    if not used:
        return

    if not configured:
        raise RegistryError(
            "middleware_used_without_registry",
            "middleware is used by endpoints but no middleware package is configured; "
            "set middleware_package under [tool.apiforge]",
        )

    undeclared = sorted(k for k in used if registry is None or not registry.is_declared(*k))
    if undeclared:
        names = [f"{pkg}.{name}" if pkg else name for pkg, name in undeclared]
        raise RegistryError(
            "undeclared_middleware",
            f"the following middleware is used but not declared in register_middleware(): {names}",
        )
