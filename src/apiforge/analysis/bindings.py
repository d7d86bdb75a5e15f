from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from apiforge.analysis.typeinfo import (
    is_request_model,
    list_element,
    model_fields,
    scalar_kind,
    split_optional,
    type_name,
)
from apiforge.binding import BindingMarker, Body, Header, Path, Query
from apiforge.errors import ValidationError

# {name} or {name...}
_PATH_VAR = re.compile(r"\{([^}]+?)(?:\.\.\.)?\}")

_PATH_TYPES = (str, int)


@dataclass(frozen=True)
class FieldBinding:
    field_name: str
    tag_value: str
    field_type: Any

    def describe(self) -> tuple[str, bool, bool, Optional[str]]:
        """(type_kind, is_optional, is_list, elem_kind) as recorded in the manifest."""
        inner, optional = split_optional(self.field_type)
        elem = list_element(inner)
        if elem is not None:
            elem_kind = scalar_kind(elem) or type_name(elem)
            return f"list[{elem_kind}]", optional, True, elem_kind
        return scalar_kind(inner) or type_name(inner), optional, False, None


@dataclass
class BindingInfo:
    path_bindings: list[FieldBinding] = field(default_factory=list)
    query_bindings: list[FieldBinding] = field(default_factory=list)
    header_bindings: list[FieldBinding] = field(default_factory=list)
    body_bindings: list[FieldBinding] = field(default_factory=list)

    @property
    def has_body(self) -> bool:
        return bool(self.body_bindings)


def extract_path_variables(path: str) -> list[str]:
    """Variable names in order of appearance; ``{rest...}`` is reported as ``rest``."""
    out: list[str] = []
    for name in _PATH_VAR.findall(path):
        if name not in out:
            out.append(name)
    return out


def _is_supported_path_type(t: Any) -> bool:
    return t in _PATH_TYPES


def _is_supported_header_type(t: Any) -> bool:
    inner, _ = split_optional(t)
    return scalar_kind(inner) is not None


def _is_supported_query_type(t: Any) -> bool:
    inner, _ = split_optional(t)
    elem = list_element(inner)
    if elem is not None:
        inner = elem
    return scalar_kind(inner) is not None


def _markers(metadata: tuple[Any, ...]) -> list[BindingMarker]:
    return [m for m in metadata if isinstance(m, BindingMarker)]


def validate_request_type(req_type: Any) -> None:
    if not is_request_model(req_type):
        raise ValidationError(
            "request_not_struct",
            f"request type must be a pydantic model or dataclass, got {type_name(req_type)}",
        )


def analyze_bindings(path: str, req_type: Any) -> BindingInfo:
    """Check request-model bindings against a route pattern and return the binding plan."""
    validate_request_type(req_type)

    path_vars = extract_path_variables(path)
    info = BindingInfo()
    seen_path: dict[str, str] = {}

    for f in model_fields(req_type):
        markers = _markers(f.metadata)
        if not markers:
            continue
        if len(markers) > 1:
            sources = ",".join(m.source for m in markers)
            raise ValidationError(
                "duplicate_binding",
                f"field {f.name} has multiple binding sources: {sources}",
            )

        marker = markers[0]
        binding = FieldBinding(field_name=f.name, tag_value=marker.name, field_type=f.annotation)

        if isinstance(marker, Path):
            if marker.name in seen_path:
                raise ValidationError(
                    "duplicate_path_binding",
                    f"duplicate path binding for {marker.name!r}: fields {seen_path[marker.name]} and {f.name}",
                )
            seen_path[marker.name] = f.name
            if marker.name not in path_vars:
                raise ValidationError(
                    "path_binding_not_in_route",
                    f"path binding {marker.name!r} is not in route pattern",
                )
            if not _is_supported_path_type(f.annotation):
                raise ValidationError(
                    "unsupported_path_type",
                    f"unsupported type for path binding {marker.name!r}: {type_name(f.annotation)}",
                )
            info.path_bindings.append(binding)

        elif isinstance(marker, Query):
            if not _is_supported_query_type(f.annotation):
                raise ValidationError(
                    "unsupported_query_type",
                    f"unsupported type for query binding {marker.name!r}: {type_name(f.annotation)}",
                )
            info.query_bindings.append(binding)

        elif isinstance(marker, Header):
            if not _is_supported_header_type(f.annotation):
                raise ValidationError(
                    "unsupported_header_type",
                    f"unsupported type for header binding {marker.name!r}: {type_name(f.annotation)}",
                )
            info.header_bindings.append(binding)

        elif isinstance(marker, Body):
            info.body_bindings.append(binding)

    for var in path_vars:
        if var not in seen_path:
            raise ValidationError(
                "missing_path_binding",
                f"path variable {{{var}}} has no corresponding field with Path({var!r})",
            )

    return info


def body_field_map(req_type: Any) -> dict[str, str]:
    """JSON body key -> model field name for every Body-bound field."""
    out: dict[str, str] = {}
    for f in model_fields(req_type):
        for m in _markers(f.metadata):
            if isinstance(m, Body):
                out[m.name] = f.name
    return out
