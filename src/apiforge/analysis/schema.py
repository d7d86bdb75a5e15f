from __future__ import annotations

import enum
import typing
from collections import deque
from typing import Any, Iterable

from apiforge.analysis.typeinfo import (
    SCALAR_KINDS,
    is_request_model,
    model_fields,
    own_doc,
    split_optional,
    type_name,
)
from apiforge.domain.models import ManifestField, ManifestType


def _build_type(t: Any, queue: deque) -> ManifestType:
    tid = type_name(t)

    inner, optional = split_optional(t)
    if optional:
        queue.append(inner)
        return ManifestType(id=tid, underlying_kind="optional", nullable=True, elem=type_name(inner))

    if t is bytes:
        return ManifestType(id=tid, underlying_kind="bytes")
    if t is Any:
        return ManifestType(id=tid, underlying_kind="any")
    if isinstance(t, type) and t in SCALAR_KINDS:
        return ManifestType(id=tid, underlying_kind=SCALAR_KINDS[t])
    if isinstance(t, type) and issubclass(t, enum.Enum):
        return ManifestType(id=tid, underlying_kind="enum", doc=own_doc(t) or None)

    origin = typing.get_origin(t)
    args = typing.get_args(t)
    if origin in (list, set, frozenset) and len(args) == 1:
        queue.append(args[0])
        return ManifestType(id=tid, underlying_kind="list", elem=type_name(args[0]))
    if origin is tuple and len(args) == 2 and args[1] is Ellipsis:
        queue.append(args[0])
        return ManifestType(id=tid, underlying_kind="list", elem=type_name(args[0]))
    if origin is dict and len(args) == 2:
        key, value = args
        queue.append(key)
        queue.append(value)
        warnings = None
        if key is not str:
            warnings = [f"non-string dict key type {type_name(key)} not supported in JSON"]
        return ManifestType(
            id=tid,
            underlying_kind="dict",
            key=type_name(key),
            value=type_name(value),
            warnings=warnings,
        )

    if is_request_model(t):
        fields = []
        for f in model_fields(t):
            queue.append(f.annotation)
            _, nullable = split_optional(f.annotation)
            fields.append(
                ManifestField(
                    name=f.name,
                    json_name=f.alias or f.name,
                    type_id=type_name(f.annotation),
                    required=f.required and not nullable,
                    doc=f.description or None,
                )
            )
        return ManifestType(id=tid, underlying_kind="model", fields=fields, doc=own_doc(t) or None)

    return ManifestType(id=tid, underlying_kind="unknown", warnings=[f"unsupported type: {tid}"])


def collect_types(roots: Iterable[Any]) -> list[ManifestType]:
    """Breadth-first walk of request/response types; result sorted by id."""
    visited: dict[str, ManifestType] = {}
    queue: deque = deque(roots)
    while queue:
        t = queue.popleft()
        tid = type_name(t)
        if tid in visited:
            continue
        visited[tid] = _build_type(t, queue)
    return [visited[k] for k in sorted(visited)]


def parse_doc(doc: str) -> tuple[str, str]:
    """(summary, description): the first line and the full text."""
    doc = doc.strip()
    if not doc:
        return "", ""
    return doc.splitlines()[0].strip(), doc
