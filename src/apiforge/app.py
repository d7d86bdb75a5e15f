from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from apiforge.analysis.bindings import extract_path_variables
from apiforge.analysis.handlers import HandlerInfo
from apiforge.errors import RegistrationError

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")


def _symbol_of(fn: Any) -> tuple[str, str]:
    """(module, qualname) identity of a function or bound method."""
    target = getattr(fn, "__func__", fn)
    return getattr(target, "__module__", "") or "", getattr(target, "__qualname__", "") or ""


@dataclass(frozen=True)
class MiddlewareRef:
    pkg: str
    name: str
    fn: Callable[..., Any] = dataclasses.field(compare=False, repr=False)

    @classmethod
    def of(cls, fn: Callable[..., Any]) -> "MiddlewareRef":
        if fn is None:
            raise RegistrationError("middleware function cannot be None")
        pkg, name = _symbol_of(fn)
        return cls(pkg=pkg, name=name, fn=fn)

    @property
    def qualified_name(self) -> str:
        return f"{self.pkg}.{self.name}" if self.pkg else self.name


@dataclass(frozen=True)
class Endpoint:
    method: str
    path: str
    handler: Callable[..., Any] = dataclasses.field(compare=False, repr=False)
    handler_pkg: str = ""
    handler_name: str = ""
    middlewares: tuple[MiddlewareRef, ...] = ()
    handler_info: Optional[HandlerInfo] = dataclasses.field(default=None, compare=False)

    @classmethod
    def new(
        cls,
        method: str,
        path: str,
        handler: Callable[..., Any],
        middlewares: Iterable[MiddlewareRef] = (),
    ) -> "Endpoint":
        m = (method or "").strip().upper()
        if not m:
            raise RegistrationError("method cannot be empty")
        if m not in ALLOWED_METHODS:
            raise RegistrationError(f"unsupported method: {method}")

        p = (path or "").strip()
        if not p:
            raise RegistrationError("path cannot be empty")
        if not p.startswith("/"):
            raise RegistrationError("path must start with /")
        if len(p) > 1 and p.endswith("/"):
            p = p.rstrip("/") or "/"

        pkg, name = _symbol_of(handler)
        return cls(
            method=m,
            path=p,
            handler=handler,
            handler_pkg=pkg,
            handler_name=name,
            middlewares=tuple(middlewares),
        )

    def path_variables(self) -> list[str]:
        return extract_path_variables(self.path)

    def mux_pattern(self) -> str:
        return f"{self.method} {self.path}"

    def sort_key(self) -> tuple[str, str, str, str]:
        return (self.method, self.path, self.handler_pkg, self.handler_name)

    def with_info(self, info: HandlerInfo) -> "Endpoint":
        return dataclasses.replace(self, handler_info=info)


def sort_endpoints(endpoints: Iterable[Endpoint]) -> list[Endpoint]:
    """New list ordered by (method, path, handler package, handler name). Input is untouched."""
    return sorted(endpoints, key=lambda e: e.sort_key())


class _Registrar:
    def _register(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        raise NotImplementedError

    def get(self, path: str, handler: Callable[..., Any]) -> None:
        self._register("GET", path, handler)

    def post(self, path: str, handler: Callable[..., Any]) -> None:
        self._register("POST", path, handler)

    def put(self, path: str, handler: Callable[..., Any]) -> None:
        self._register("PUT", path, handler)

    def delete(self, path: str, handler: Callable[..., Any]) -> None:
        self._register("DELETE", path, handler)


class App(_Registrar):
    """
    Records endpoint registrations during discovery.

    Only used at build time: the discovery driver hands a fresh App to the
    target's ``register(app)`` and reads ``endpoints()`` back.
    """

    def __init__(self) -> None:
        self._endpoints: list[Endpoint] = []

    def _add(self, method: str, path: str, handler: Callable[..., Any], middlewares: tuple[MiddlewareRef, ...]) -> None:
        if handler is None:
            raise RegistrationError("handler cannot be None")
        self._endpoints.append(Endpoint.new(method, path, handler, middlewares))

    def _register(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        self._add(method, path, handler, ())

    def group(self) -> "Group":
        return Group(self, ())

    def endpoints(self) -> list[Endpoint]:
        return list(self._endpoints)


class Group(_Registrar):
    """
    A middleware scope. Nested groups start from a copy of the parent's
    middleware, so ``use`` inside a child is never seen by the parent.

        with app.group() as api:
            api.use(auth)
            api.get("/me", me)
    """

    def __init__(self, app: App, middlewares: tuple[MiddlewareRef, ...]) -> None:
        self._app = app
        self._middlewares = middlewares

    def __enter__(self) -> "Group":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    @property
    def middlewares(self) -> tuple[MiddlewareRef, ...]:
        return self._middlewares

    def use(self, mw: Callable[..., Any]) -> None:
        self._middlewares = self._middlewares + (MiddlewareRef.of(mw),)

    def group(self) -> "Group":
        return Group(self._app, self._middlewares)

    def _register(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        self._app._add(method, path, handler, self._middlewares)
