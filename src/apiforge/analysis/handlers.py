from __future__ import annotations

import enum
import inspect
import typing
from dataclasses import dataclass
from typing import Any, Callable, Optional

from apiforge.analysis.typeinfo import type_name
from apiforge.context import Context
from apiforge.errors import ValidationError


class HandlerShape(str, enum.Enum):
    CTX_ERR = "ctx_err"
    CTX_RESP_ERR = "ctx_resp_err"
    CTX_REQ_ERR = "ctx_req_err"
    CTX_REQ_RESP_ERR = "ctx_req_resp_err"


@dataclass(frozen=True)
class HandlerInfo:
    shape: HandlerShape
    req_type: Optional[Any] = None
    resp_type: Optional[Any] = None

    @property
    def req_type_name(self) -> Optional[str]:
        return type_name(self.req_type) if self.req_type is not None else None

    @property
    def resp_type_name(self) -> Optional[str]:
        return type_name(self.resp_type) if self.resp_type is not None else None


_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


def _is_context(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, Context)


def _is_exception_type(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseException)


def classify_handler(handler: Callable[..., Any]) -> HandlerInfo:
    """
    Validate a handler and return its shape.

    Supported shapes (errors are raised, never returned):
      - (ctx: Context) -> None
      - (ctx: Context) -> Resp
      - (ctx: Context, req: Req) -> None
      - (ctx: Context, req: Req) -> Resp
    """
    if handler is None:
        raise ValidationError("nil_handler", "handler is None")

    if not (inspect.isfunction(handler) or inspect.ismethod(handler)):
        raise ValidationError("not_a_function", "handler must be a function")

    if inspect.iscoroutinefunction(handler):
        raise ValidationError("async_not_supported", "async handlers not supported")

    params = list(inspect.signature(handler).parameters.values())
    if any(p.kind in _VARIADIC for p in params):
        raise ValidationError("variadic_not_supported", "variadic handlers not supported")
    if any(p.kind is inspect.Parameter.KEYWORD_ONLY for p in params):
        raise ValidationError(
            "keyword_only_not_supported", "handler parameters must be positional (ctx, req)"
        )

    try:
        hints = typing.get_type_hints(inspect.unwrap(handler))
    except Exception as exc:
        raise ValidationError(
            "unresolved_annotation", f"handler annotations cannot be resolved: {exc}"
        ) from exc

    # Args
    if not params:
        raise ValidationError("missing_context", "first arg must be apiforge.context.Context")
    if not _is_context(hints.get(params[0].name)):
        raise ValidationError("first_arg_not_context", "first arg must be apiforge.context.Context")
    if len(params) > 2:
        raise ValidationError("too_many_args", "at most 2 args allowed (ctx, req)")

    # Return
    if "return" not in hints:
        raise ValidationError(
            "missing_error_return",
            "handler must annotate its return type (-> None when there is no response)",
        )
    ret = hints["return"]
    if _is_exception_type(ret):
        raise ValidationError("misplaced_error_return", "errors must be raised, not returned")
    if typing.get_origin(ret) is tuple:
        raise ValidationError("too_many_returns", "at most 1 response value allowed")

    req_type = hints.get(params[1].name, inspect.Parameter.empty) if len(params) == 2 else None
    if req_type is inspect.Parameter.empty:
        raise ValidationError("request_not_struct", "request parameter must be annotated with its model type")
    resp_type = None if ret is type(None) else ret

    if req_type is not None and resp_type is not None:
        shape = HandlerShape.CTX_REQ_RESP_ERR
    elif req_type is not None:
        shape = HandlerShape.CTX_REQ_ERR
    elif resp_type is not None:
        shape = HandlerShape.CTX_RESP_ERR
    else:
        shape = HandlerShape.CTX_ERR

    return HandlerInfo(shape=shape, req_type=req_type, resp_type=resp_type)
