from __future__ import annotations

import keyword
import re
from typing import Dict, Iterable, List

from apiforge.errors import GeneratorError, RegistryError
from apiforge.middleware import validate_context_key

_SAFE = re.compile(r"[^a-zA-Z0-9_]+")
_VAR_SEGMENT = re.compile(r"^\{([^}]+?)(?:\.\.\.)?\}$")

INITIALISMS: Dict[str, str] = {
    "api": "API",
    "css": "CSS",
    "html": "HTML",
    "http": "HTTP",
    "id": "ID",
    "ip": "IP",
    "json": "JSON",
    "sql": "SQL",
    "tls": "TLS",
    "ttl": "TTL",
    "uid": "UID",
    "uri": "URI",
    "url": "URL",
    "uuid": "UUID",
    "xml": "XML",
}


def _checked(key: str) -> str:
    try:
        validate_context_key(key)
    except RegistryError as exc:
        raise GeneratorError(exc.code, exc.message) from exc
    return key


def context_key_to_camel_case(key: str) -> str:
    """request_id -> RequestID, api_key -> APIKey, user -> User."""
    parts = _checked(key).split("_")
    return "".join(INITIALISMS.get(p, p[:1].upper() + p[1:]) for p in parts)


def context_key_to_snake(key: str) -> str:
    """Python identifier for a key's getter; keywords get a trailing underscore."""
    key = _checked(key)
    return f"{key}_" if keyword.iskeyword(key) else key


def accessor_names(key: str) -> tuple[str, str, str]:
    """(with_<key>, <key>, must_<key>)"""
    snake = context_key_to_snake(key)
    return f"with_{key}", snake, f"must_{key}"


def detect_context_key_collisions(keys: Iterable[str]) -> None:
    """
    Two keys must never render to the same token name, and no accessor may
    shadow another key's accessor.
    """
    tokens: Dict[str, str] = {}
    functions: Dict[str, str] = {}

    for key in sorted(keys):
        token = context_key_to_camel_case(key)
        if token in tokens:
            raise GeneratorError(
                "context_key_collision",
                f"context keys {tokens[token]!r} and {key!r} both generate identifier {token}",
            )
        tokens[token] = key

        for fn in accessor_names(key):
            if fn in functions:
                raise GeneratorError(
                    "context_key_collision",
                    f"context key {key!r} generates {fn}() which is already defined by {functions[fn]!r}",
                )
            functions[fn] = key


def route_slug(method: str, path: str) -> str:
    # GET /pets/{id} -> get_pets_by_id
    parts: List[str] = []
    for seg in path.strip("/").split("/"):
        if not seg:
            continue
        m = _VAR_SEGMENT.match(seg)
        if m:
            parts.append(f"by_{m.group(1)}")
        else:
            parts.append(seg)

    body = "_".join(parts) if parts else "root"
    body = _SAFE.sub("_", body).strip("_").lower() or "root"
    return f"{method.lower()}_{body}"


def unique_slugs(routes: Iterable[tuple[str, str]]) -> List[str]:
    """route_slug for each (method, path), with _2, _3 ... appended on clashes."""
    counts: Dict[str, int] = {}
    used: set[str] = set()
    out: List[str] = []
    for method, path in routes:
        base = route_slug(method, path)
        name = base
        while name in used:
            counts[base] = counts.get(base, 1) + 1
            name = f"{base}_{counts[base]}"
        used.add(name)
        out.append(name)
    return out
