"""Manifest type strings rendered as expressions over aliased module imports."""
from __future__ import annotations

import ast
import re
from typing import Dict, Iterable, List

from apiforge.errors import GeneratorError

_DOTTED = re.compile(r"(?<![\w.])([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+)")


def split_qualified(dotted: str) -> tuple[str, str]:
    """myapp.models.User -> (myapp.models, User); nested classes stay on the right."""
    parts = dotted.split(".")
    for i, p in enumerate(parts):
        if p[:1].isupper() and i > 0:
            return ".".join(parts[:i]), ".".join(parts[i:])
    return ".".join(parts[:-1]), parts[-1]


def type_aliases(types: Iterable[str]) -> Dict[str, str]:
    """Module -> ``_tN`` alias for every module a type string refers to, numbered in sorted order."""
    modules = set()
    for t in types:
        for dotted in _DOTTED.findall(t):
            modules.add(split_qualified(dotted)[0])
    return {m: f"_t{i}" for i, m in enumerate(sorted(modules))}


def import_lines(aliases: Dict[str, str]) -> List[str]:
    return [f"import {module} as {aliases[module]}" for module in sorted(aliases)]


def type_expr(type_str: str, aliases: Dict[str, str], code: str, subject: str) -> str:
    """
    Rewrite ``pkg.mod.Name`` references to ``_tN.Name``.

    Raises GeneratorError(code) when the result is not a Python expression,
    e.g. for classes defined inside a function.
    """

    def repl(m: re.Match) -> str:
        module, attr = split_qualified(m.group(1))
        return f"{aliases[module]}.{attr}"

    expr = _DOTTED.sub(repl, type_str)
    try:
        ast.parse(expr, mode="eval")
    except SyntaxError as exc:
        raise GeneratorError(code, f"{subject} has a type that cannot be rendered: {type_str}") from exc
    return expr
