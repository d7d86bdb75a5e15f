from __future__ import annotations

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

PYPROJECT = "pyproject.toml"

# "name @ file:///abs/path" or "name[extra] @ file:../rel"
_FILE_DEP = re.compile(r"@\s*(file:[^\s;]+)")


def find_project_root(start: Path) -> Optional[Path]:
    """Nearest directory at or above `start` holding a pyproject.toml."""
    cur = start.resolve()
    if cur.is_file():
        cur = cur.parent
    for d in (cur, *cur.parents):
        if (d / PYPROJECT).is_file():
            return d
    return None


def _import_root(d: Path) -> Path:
    src = d / "src"
    return src if src.is_dir() else d


def _file_url_path(url: str, base: Path) -> Path:
    parsed = urlparse(url)
    raw = unquote(parsed.path or parsed.netloc)
    p = Path(raw)
    return p if p.is_absolute() else (base / p)


def local_sources(project_dir: Path) -> list[Path]:
    """
    Import roots of local path dependencies declared by the project.

    Reads ``[tool.uv.sources]`` entries with a ``path`` key and PEP 508
    ``name @ file://...`` dependencies. Each one resolves to its ``src/``
    directory when it has one. Missing directories are skipped.
    """
    pyproject = project_dir / PYPROJECT
    if not pyproject.is_file():
        return []
    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring unreadable %s: %s", pyproject, exc)
        return []

    found: list[Path] = []

    sources = data.get("tool", {}).get("uv", {}).get("sources", {})
    for name in sorted(sources):
        entry = sources[name]
        entries = entry if isinstance(entry, list) else [entry]
        for e in entries:
            if isinstance(e, dict) and isinstance(e.get("path"), str):
                found.append((project_dir / e["path"]).resolve())

    deps = list(data.get("project", {}).get("dependencies", []) or [])
    for extra in sorted(data.get("project", {}).get("optional-dependencies", {}) or {}):
        deps.extend(data["project"]["optional-dependencies"][extra] or [])
    for dep in deps:
        m = _FILE_DEP.search(dep)
        if m:
            found.append(_file_url_path(m.group(1), project_dir).resolve())

    out: list[Path] = []
    for d in found:
        if not d.is_dir():
            logger.debug("local source %s does not exist; skipped", d)
            continue
        root = _import_root(d)
        if root not in out:
            out.append(root)
    return out


def _apiforge_root() -> Path:
    # .../<root>/apiforge/discovery/project.py -> <root>
    return Path(__file__).resolve().parents[2]


def build_search_paths(project_dir: Path, extra: Iterable[Path] = ()) -> list[str]:
    """Ordered, de-duplicated sys.path entries for the discovery sandbox."""
    candidates: list[Path] = [project_dir, project_dir / "src"]
    candidates.extend(local_sources(project_dir))
    candidates.extend(extra)
    for entry in os.environ.get("PYTHONPATH", "").split(os.pathsep):
        if entry:
            candidates.append(Path(entry))
    candidates.append(_apiforge_root())

    out: list[str] = []
    for c in candidates:
        c = c.resolve()
        if not c.is_dir():
            continue
        s = str(c)
        if s not in out:
            out.append(s)
    return out


def resolve_module_dir(module: str, search_paths: Iterable[str]) -> Optional[Path]:
    """
    Directory of a package (or of a module's parent) found on `search_paths`,
    located on disk without importing it.
    """
    parts = module.split(".")
    for root in search_paths:
        base = Path(root).joinpath(*parts)
        if base.is_dir():
            return base
        if base.with_suffix(".py").is_file():
            return base.parent
    return None
