"""
Serve-time helpers used by generated dispatch code.

Generated modules only ever call into this module: parameter extraction and
string conversion, request model construction, result encoding and the
middleware chain. Nothing here knows about discovery or code generation.
"""
from __future__ import annotations

import dataclasses
import datetime
import decimal
import functools
import inspect
import json
import logging
import re
import typing
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.parse import parse_qs, quote, urlencode, urlsplit

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from apiforge.analysis.bindings import body_field_map
from apiforge.analysis.typeinfo import is_pydantic_model, model_fields
from apiforge.context import Context

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class HTTPError(Exception):
    """Raised by handlers and middleware to produce a JSON error response."""

    def __init__(self, status: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.status} {self.code}: {self.message}"


class BindError(HTTPError):
    def __init__(self, message: str) -> None:
        super().__init__(400, "bad_request", message)


def bad_request(message: str) -> HTTPError:
    return HTTPError(400, "bad_request", message)


def unauthorized(message: str = "unauthorized") -> HTTPError:
    return HTTPError(401, "unauthorized", message)


def forbidden(message: str = "forbidden") -> HTTPError:
    return HTTPError(403, "forbidden", message)


def not_found(message: str = "not found") -> HTTPError:
    return HTTPError(404, "not_found", message)


def internal_error(message: str = "internal server error") -> HTTPError:
    return HTTPError(500, "internal_error", message)


def _normalize_path(path: str) -> str:
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path or "/"


@dataclass(frozen=True)
class Request:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, list[str]] = field(default_factory=dict)
    body: bytes = b""
    path_params: Mapping[str, str] = field(default_factory=dict)
    context: Context = field(default_factory=Context)

    @classmethod
    def build(
        cls,
        method: str,
        target: str,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes | str = b"",
        context: Optional[Context] = None,
    ) -> "Request":
        """Request from a raw target such as ``/pets/7?verbose=true``."""
        parts = urlsplit(target)
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(
            method=method.upper(),
            path=_normalize_path(parts.path),
            headers={k.lower(): v for k, v in (headers or {}).items()},
            query=parse_qs(parts.query, keep_blank_values=True),
            body=body,
            context=context if context is not None else Context(),
        )

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lowered:
                return v
        return None

    def with_context(self, ctx: Context) -> "Request":
        return dataclasses.replace(self, context=ctx)


@dataclass(frozen=True)
class Response:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


@dataclass(frozen=True)
class HandlerResult:
    status: int = 200
    json: Any = None
    no_content: bool = False

    def validate(self) -> None:
        if not 100 <= self.status <= 599:
            raise ValueError(f"invalid HTTP status {self.status}")
        if self.no_content and self.json is not None:
            raise ValueError("no_content result cannot carry a JSON body")

    def to_response(self) -> Response:
        if self.no_content:
            return Response(status=self.status)
        body = json.dumps(self.json, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return Response(status=self.status, headers={"content-type": "application/json"}, body=body)


_ANY = TypeAdapter(Any)


def encode(value: Any) -> Any:
    return _ANY.dump_python(value, mode="json", by_alias=True)


def json_result(value: Any, status: int = 200) -> HandlerResult:
    return HandlerResult(status=status, json=encode(value))


def no_content() -> HandlerResult:
    return HandlerResult(status=204, no_content=True)


def error_response(err: HTTPError) -> Response:
    payload = {"error": {"code": err.code, "message": err.message}}
    return HandlerResult(status=err.status, json=payload).to_response()


# conversion


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"invalid boolean {raw!r}")


def _parse_datetime(raw: str) -> datetime.datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(raw)


_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": _parse_bool,
    "datetime": _parse_datetime,
    "date": datetime.date.fromisoformat,
    "uuid": uuid.UUID,
    "decimal": decimal.Decimal,
}


def convert(raw: str, kind: str) -> Any:
    """Convert one raw string to a scalar kind (str, int, bool, datetime, uuid, ...)."""
    try:
        conv = _CONVERTERS[kind]
    except KeyError:
        raise ValueError(f"unsupported kind {kind!r}") from None
    try:
        return conv(raw)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ValueError(f"cannot convert {raw!r} to {kind}") from exc


def _convert_param(source: str, name: str, raw: str, kind: str) -> Any:
    try:
        return convert(raw, kind)
    except ValueError as exc:
        raise BindError(f"invalid {source} parameter {name!r}: {exc}") from exc


def path_param(request: Request, name: str, kind: str) -> Any:
    raw = request.path_params.get(name)
    if raw is None:
        raise BindError(f"missing path parameter {name!r}")
    return _convert_param("path", name, raw, kind)


def query_param(request: Request, name: str, kind: str, many: bool = False) -> Any:
    """Converted value(s), or MISSING when the parameter is absent."""
    values = request.query.get(name)
    if not values:
        return MISSING
    if many:
        return [_convert_param("query", name, v, kind) for v in values]
    return _convert_param("query", name, values[0], kind)


def header_param(request: Request, name: str, kind: str) -> Any:
    raw = request.header(name)
    if raw is None:
        return MISSING
    return _convert_param("header", name, raw, kind)


def decode_body(request: Request, model: type) -> dict[str, Any]:
    """Body-bound values of `model` keyed by field name. An empty body decodes to {}."""
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise BindError(f"invalid JSON body: {exc}") from exc
    if not isinstance(payload, dict):
        raise BindError("JSON body must be an object")

    out: dict[str, Any] = {}
    for key, field_name in body_field_map(model).items():
        if key in payload:
            out[field_name] = payload[key]
    return out


def build_request(model: type, values: Mapping[str, Any]) -> Any:
    """Instantiate a pydantic model or dataclass from field-name keyed values."""
    if is_pydantic_model(model):
        by_alias = {(f.alias or f.name): values[f.name] for f in model_fields(model) if f.name in values}
        try:
            return model.model_validate(by_alias)
        except PydanticValidationError as exc:
            raise BindError(f"invalid request: {exc.error_count()} validation error(s): {exc.errors()[0]['msg']}") from exc
    try:
        return model(**values)
    except (TypeError, ValueError) as exc:
        raise BindError(f"invalid request: {exc}") from exc


@functools.lru_cache(maxsize=None)
def request_model(handler: Callable[..., Any]) -> type:
    """Type of the parameter after ctx, read through decorators the same way the classifier does."""
    names = list(inspect.signature(handler).parameters)
    hints = typing.get_type_hints(inspect.unwrap(handler))
    if len(names) < 2 or names[1] not in hints:
        raise TypeError(f"{handler!r} does not take a request parameter")
    return hints[names[1]]


# chain and routing

Middleware = Callable[[Request, Callable[[Request], HandlerResult]], HandlerResult]


def run_chain(
    request: Request,
    middlewares: Sequence[Middleware],
    terminal: Callable[[Request], HandlerResult],
) -> Response:
    """Call middlewares outermost first, then `terminal`, and render the result."""

    def call(i: int, req: Request) -> HandlerResult:
        if i == len(middlewares):
            return terminal(req)
        return middlewares[i](req, lambda r: call(i + 1, r))

    try:
        result = call(0, request)
        result.validate()
        return result.to_response()
    except HTTPError as err:
        return error_response(err)
    except Exception:
        logger.exception("unhandled error serving %s %s", request.method, request.path)
        return error_response(internal_error())


_ROUTE_VAR = re.compile(r"^\{([^}]+?)(\.\.\.)?\}$")


def match_route(pattern: str, path: str) -> Optional[dict[str, str]]:
    """Path parameters when `path` matches `pattern`, else None."""
    pat = [s for s in pattern.strip("/").split("/") if s]
    segs = [s for s in _normalize_path(path).strip("/").split("/") if s]
    params: dict[str, str] = {}

    for i, p in enumerate(pat):
        m = _ROUTE_VAR.match(p)
        if m and m.group(2):
            params[m.group(1)] = "/".join(segs[i:])
            return params
        if i >= len(segs):
            return None
        if m:
            params[m.group(1)] = segs[i]
        elif p != segs[i]:
            return None

    if len(segs) != len(pat):
        return None
    return params


def _literal_segments(pattern: str) -> int:
    return sum(1 for s in pattern.strip("/").split("/") if s and not _ROUTE_VAR.match(s))


def dispatch(routes: Mapping[str, Callable[[Request], Response]], request: Request) -> Response:
    """Route "METHOD /path" keys to handlers; the most literal matching pattern wins."""
    best: Optional[tuple[int, Callable[[Request], Response], dict[str, str]]] = None
    path_matched = False

    for key, handler in routes.items():
        method, _, pattern = key.partition(" ")
        params = match_route(pattern, request.path)
        if params is None:
            continue
        path_matched = True
        if method != request.method:
            continue
        score = _literal_segments(pattern)
        if best is None or score > best[0]:
            best = (score, handler, params)

    if best is None:
        if path_matched:
            return error_response(HTTPError(405, "method_not_allowed", f"method {request.method} not allowed"))
        return error_response(not_found(f"no route for {request.method} {request.path}"))

    _, handler, params = best
    return handler(dataclasses.replace(request, path_params=params))


def interpolate_path(pattern: str, values: Mapping[str, Any]) -> str:
    """
    Fill ``{name}`` variables of a route pattern for a client request.

    Wildcards (``{name...}``) are rejected here even though route analysis
    accepts them.
    """
    out: list[str] = []
    for seg in pattern.split("/"):
        m = _ROUTE_VAR.match(seg)
        if not m:
            out.append(seg)
            continue
        name = m.group(1)
        if m.group(2):
            raise ValueError(f"wildcard path variable {{{name}...}} is not supported")
        if name not in values or values[name] is None:
            raise ValueError(f"missing value for path variable {{{name}}}")
        text = str(values[name])
        if not text:
            raise ValueError(f"empty value for path variable {{{name}}}")
        out.append(quote(text, safe=""))
    return "/".join(out)


# client side

Transport = Callable[[Request], Response]

_ERROR_SNIPPET = 256


def format_param(value: Any) -> str:
    """Wire form of a scalar path, query or header value; the inverse of convert()."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return str(value)


def encode_body(req: Any) -> bytes:
    """JSON object of the request's Body-bound fields, keyed by their JSON names."""
    payload = {key: getattr(req, name) for key, name in body_field_map(type(req)).items()}
    return json.dumps(encode(payload), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _error_message(body: bytes) -> str:
    if not body:
        return "empty error response"
    snippet = body[:_ERROR_SNIPPET].decode("utf-8", errors="replace")
    if snippet.lstrip()[:1] in ("{", "["):
        return f"unparseable error response: {snippet}"
    return f"error response: {snippet}"


def decode_error(response: Response) -> HTTPError:
    """HTTPError from a ``{"error": {"code", "message"}}`` envelope, with fallbacks for anything else."""
    code, message = "unknown_error", ""
    try:
        detail = json.loads(response.body)["error"]
        code = detail.get("code") or code
        message = detail.get("message") or ""
    except (ValueError, TypeError, KeyError, AttributeError):
        pass
    return HTTPError(response.status, code, message or _error_message(response.body))


@functools.lru_cache(maxsize=None)
def _adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


class BaseClient:
    """
    Base for generated clients.

    Requests go through ``transport``, any callable from Request to Response;
    the generated ``serve`` function works in-process. Non-2xx replies are
    raised as HTTPError, 2xx bodies are validated into the declared response type.
    """

    def __init__(self, transport: Transport, headers: Optional[Mapping[str, str]] = None) -> None:
        self.transport = transport
        self.headers = dict(headers or {})

    def call(
        self,
        method: str,
        path: str,
        query: Sequence[tuple[str, str]],
        headers: Mapping[str, str],
        body: Optional[bytes],
        out: Any,
    ) -> Any:
        target = f"{path}?{urlencode(query)}" if query else path
        sent = {**self.headers, **headers}
        if body is not None:
            sent["content-type"] = "application/json"
        response = self.transport(Request.build(method, target, headers=sent, body=body or b""))
        logger.debug("%s %s -> %d", method, target, response.status)

        if not 200 <= response.status < 300:
            raise decode_error(response)
        if out is None or not response.body:
            return None
        return _adapter(out).validate_json(response.body)
