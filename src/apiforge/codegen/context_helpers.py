from __future__ import annotations

import logging
from typing import Iterable, List

from apiforge.codegen.dispatch import HEADER
from apiforge.codegen.naming import accessor_names, context_key_to_camel_case, detect_context_key_collisions
from apiforge.codegen.typeexpr import import_lines, type_aliases, type_expr
from apiforge.domain.models import ManifestContextKey

logger = logging.getLogger(__name__)


def generate_context_helpers(package: str, context_keys: Iterable[ManifestContextKey]) -> str:
    """
    Typed accessors for every provided context key, or "" when there are none.

    Each key gets a capability token plus ``with_<key>``/``<key>``/``must_<key>``;
    both go through apiforge.context, so they read and write the same values.
    """
    keys = sorted(context_keys, key=lambda k: k.key)
    if not keys:
        return ""

    detect_context_key_collisions(k.key for k in keys)

    aliases = type_aliases(k.type for k in keys)

    out: List[str] = [
        HEADER,
        f'"""Typed context accessors for {package}."""',
        "from __future__ import annotations",
        "",
        "import typing as _typing",
        "",
        "from apiforge import context as _ctx",
    ]
    if aliases:
        out.append("")
        out.extend(import_lines(aliases))

    exprs = {
        k.key: type_expr(k.type, aliases, "invalid_context_type", f"context key {k.key!r}") for k in keys
    }

    out.append("")
    for k in keys:
        token = context_key_to_camel_case(k.key)
        out.append(f"{token}: _ctx.Cap[{exprs[k.key]}] = _ctx.Cap({k.key!r}, {exprs[k.key]})")

    for k in keys:
        expr = exprs[k.key]
        with_fn, get_fn, must_fn = accessor_names(k.key)
        out.extend(
            [
                "",
                "",
                f"def {with_fn}(ctx: _ctx.Context, value: {expr}) -> _ctx.Context:",
                f"    return _ctx.put(ctx, {k.key!r}, value)",
                "",
                "",
                f"def {get_fn}(ctx: _ctx.Context) -> tuple[_typing.Optional[{expr}], bool]:",
                f"    return _ctx.get_typed(ctx, {k.key!r}, {expr})",
                "",
                "",
                f"def {must_fn}(ctx: _ctx.Context) -> {expr}:",
                f"    return _ctx.must_typed(ctx, {k.key!r}, {expr})",
            ]
        )

    logger.debug("rendered %d context accessor set(s) for %s", len(keys), package)
    return "\n".join(out) + "\n"
