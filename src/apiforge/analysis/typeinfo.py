from __future__ import annotations

import dataclasses
import datetime
import decimal
import inspect
import types
import typing
import uuid
from dataclasses import dataclass
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel

SCALAR_KINDS: dict[type, str] = {
    str: "str",
    int: "int",
    float: "float",
    bool: "bool",
    datetime.datetime: "datetime",
    datetime.date: "date",
    uuid.UUID: "uuid",
    decimal.Decimal: "decimal",
}


@dataclass(frozen=True)
class ModelField:
    name: str
    annotation: Any
    metadata: tuple[Any, ...]
    required: bool
    alias: Optional[str] = None
    description: Optional[str] = None


def type_name(t: Any) -> str:
    """Stable, human-readable descriptor for a type: ``pkg.mod.Name``, ``list[str]``, ``int | None``."""
    if t is None or t is type(None):
        return "None"
    if t is Any:
        return "typing.Any"
    if t is Ellipsis:
        return "..."

    origin = typing.get_origin(t)
    if origin is Annotated:
        return type_name(typing.get_args(t)[0])
    if origin is Union or origin is types.UnionType:
        return " | ".join(type_name(a) for a in typing.get_args(t))
    if origin is not None:
        args = typing.get_args(t)
        base = type_name(origin)
        if not args:
            return base
        return f"{base}[{', '.join(type_name(a) for a in args)}]"

    if isinstance(t, type):
        if t.__module__ == "builtins":
            return t.__qualname__
        return f"{t.__module__}.{t.__qualname__}"
    return repr(t)


def split_optional(t: Any) -> tuple[Any, bool]:
    """Optional[X] / X | None -> (X, True); anything else -> (t, False)."""
    origin = typing.get_origin(t)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(t) if a is not type(None)]
        if len(args) != len(typing.get_args(t)) and len(args) == 1:
            return args[0], True
    return t, False


def list_element(t: Any) -> Optional[Any]:
    """list[X] -> X; None for anything that is not a homogeneous list."""
    if typing.get_origin(t) is list:
        args = typing.get_args(t)
        return args[0] if len(args) == 1 else None
    return None


def scalar_kind(t: Any) -> Optional[str]:
    # exact match: bool must not pass as int, datetime must not pass as date
    if isinstance(t, type):
        return SCALAR_KINDS.get(t)
    return None


def is_pydantic_model(t: Any) -> bool:
    return isinstance(t, type) and issubclass(t, BaseModel)


def is_request_model(t: Any) -> bool:
    return is_pydantic_model(t) or (isinstance(t, type) and dataclasses.is_dataclass(t))


def model_fields(model: type) -> list[ModelField]:
    """Fields of a pydantic model or dataclass in declaration order, with Annotated metadata."""
    if is_pydantic_model(model):
        out = []
        for name, info in model.model_fields.items():
            out.append(
                ModelField(
                    name=name,
                    annotation=info.annotation,
                    metadata=tuple(info.metadata),
                    required=info.is_required(),
                    alias=info.alias,
                    description=info.description,
                )
            )
        return out

    hints = typing.get_type_hints(model, include_extras=True)
    out = []
    for f in dataclasses.fields(model):
        annotation = hints.get(f.name, f.type)
        metadata: tuple[Any, ...] = ()
        if typing.get_origin(annotation) is Annotated:
            annotation, *extra = typing.get_args(annotation)
            metadata = tuple(extra)
        required = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        out.append(ModelField(name=f.name, annotation=annotation, metadata=metadata, required=required))
    return out


def own_doc(obj: Any) -> str:
    """Docstring defined on obj itself (not inherited, not dataclass-synthesised)."""
    doc = getattr(obj, "__doc__", None)
    if not doc:
        return ""
    if isinstance(obj, type):
        if obj.__dict__.get("__doc__") is None:
            return ""
        if dataclasses.is_dataclass(obj) and doc.startswith(f"{obj.__name__}("):
            return ""
    return inspect.cleandoc(doc)
