from __future__ import annotations

import types
import typing
from dataclasses import dataclass
from typing import Any, Generic, Mapping, Optional, TypeVar

if typing.TYPE_CHECKING:
    from apiforge.middleware import MiddlewareRegistry

T = TypeVar("T")


class Context:
    """
    Immutable request-scoped value store.

    Every write returns a new Context; the receiver is never modified, so
    contexts handed to parallel branches cannot see each other's values.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Mapping[str, Any] = types.MappingProxyType(dict(values or {}))

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Context(keys={sorted(self._values)!r})"

    def keys(self) -> list[str]:
        return sorted(self._values)

    def raw(self, key: str) -> Any:
        return self._values.get(key)


def put(ctx: Context, key: str, value: Any) -> Context:
    merged = dict(ctx._values)
    merged[key] = value
    return Context(merged)


def _matches(value: Any, typ: Any) -> bool:
    if typ is Any or typ is object:
        return True
    if typ is None or typ is type(None):
        return value is None

    origin = typing.get_origin(typ)
    if origin is typing.Union or origin is types.UnionType:
        return any(_matches(value, arg) for arg in typing.get_args(typ))
    if origin is not None:
        typ = origin
    if isinstance(typ, type):
        return isinstance(value, typ)
    return True


def get_typed(ctx: Context, key: str, typ: Any) -> tuple[Any, bool]:
    """Return (value, True) when present and of the declared type, else (None, False)."""
    if key not in ctx._values:
        return None, False
    value = ctx._values[key]
    if not _matches(value, typ):
        return None, False
    return value, True


def must_typed(ctx: Context, key: str, typ: Any) -> Any:
    value, ok = get_typed(ctx, key, typ)
    if not ok:
        raise LookupError(f"apiforge: context key {key!r} not found or type mismatch")
    return value


@dataclass(frozen=True)
class Cap(Generic[T]):
    """
    Capability token for a declared context key.

    Holding a Cap means the key was accepted by a MiddlewareRegistry. Reads and
    writes go through put/get_typed/must_typed, so values written through a Cap
    are visible to generated helpers and vice versa.
    """

    key: str
    typ: Any

    def put(self, ctx: Context, value: T) -> Context:
        return put(ctx, self.key, value)

    def get(self, ctx: Context) -> tuple[Optional[T], bool]:
        return get_typed(ctx, self.key, self.typ)

    def must(self, ctx: Context) -> T:
        return must_typed(ctx, self.key, self.typ)


@dataclass(frozen=True)
class ContextKey(Generic[T]):
    name: str
    typ: Any

    def provide(self, registry: MiddlewareRegistry) -> Cap[T]:
        # validation is owned by the registry
        registry.provide(self.name, self.typ)
        return Cap(key=self.name, typ=self.typ)

