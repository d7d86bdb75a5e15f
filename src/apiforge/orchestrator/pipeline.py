from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from apiforge.codegen.client import generate_client
from apiforge.codegen.context_helpers import generate_context_helpers
from apiforge.codegen.dispatch import generate_dispatch
from apiforge.config import ApiforgeConfig
from apiforge.discovery.project import build_search_paths, find_project_root, resolve_module_dir
from apiforge.discovery.sandbox import discover
from apiforge.domain.models import Manifest
from apiforge.errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerateResult:
    manifest: Manifest
    project_root: str
    dispatch_path: str
    context_path: Optional[str]
    endpoints: int
    context_keys: int
    client_path: Optional[str] = None


def _package_dir(module: str, search_paths: list[str]) -> Path:
    found = resolve_module_dir(module, search_paths)
    if found is None:
        raise GenerationError(f"cannot locate package {module} on {search_paths}")
    return found


def _write(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise GenerationError(f"writing {path}: {exc}") from exc
    logger.info("wrote %s", path)


def run_discover(config: ApiforgeConfig, project_dir: Path) -> Manifest:
    project_dir = project_dir.resolve()
    return discover(
        config.package,
        config.middleware_package,
        project_dir=project_dir,
        timeout=config.discover_timeout,
    )


def run_generate(config: ApiforgeConfig, project_dir: Path) -> GenerateResult:
    """
    Discover, render every output, then write.

    Nothing is written unless discovery and all rendering succeed.
    """
    project_dir = project_dir.resolve()
    root = find_project_root(project_dir) or project_dir
    search_paths = build_search_paths(root)

    manifest = run_discover(config, root)

    dispatch_src = generate_dispatch(manifest, config.package)
    context_src: Optional[str] = None
    if config.middleware_package and manifest.context_keys:
        context_src = generate_context_helpers(config.middleware_package, manifest.context_keys)

    client_src: Optional[str] = None
    if config.client_filename:
        client_src = generate_client(manifest, config.package)

    dispatch_path = _package_dir(config.package, search_paths) / config.output_filename
    context_path: Optional[Path] = None
    if context_src and config.middleware_package:
        context_path = _package_dir(config.middleware_package, search_paths) / config.context_filename

    _write(dispatch_path, dispatch_src)
    if context_path is not None and context_src:
        _write(context_path, context_src)

    client_path: Optional[Path] = None
    if client_src is not None and config.client_filename:
        client_path = dispatch_path.parent / config.client_filename
        _write(client_path, client_src)

    return GenerateResult(
        manifest=manifest,
        project_root=str(root),
        dispatch_path=str(dispatch_path),
        context_path=str(context_path) if context_path else None,
        endpoints=len(manifest.endpoints),
        context_keys=len(manifest.context_keys),
        client_path=str(client_path) if client_path else None,
    )
