"""
Discovery sandbox.

A target project's registrations are ordinary code, so the only faithful way
to know what it registers is to run it. ``discover`` does that in a fresh
interpreter inside a throwaway directory and reads the manifest back from
stdout.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from apiforge.discovery.project import build_search_paths, find_project_root
from apiforge.domain.models import Manifest
from apiforge.errors import DiscoveryError

logger = logging.getLogger(__name__)

DRIVER_FILENAME = "driver.py"
DESCRIPTOR_FILENAME = "sandbox.json"

# sys.path has to be in place before apiforge itself can be imported
DRIVER_SOURCE = textwrap.dedent(
    f"""\
    import json
    import sys

    with open({DESCRIPTOR_FILENAME!r}, encoding="utf-8") as fh:
        _paths = json.load(fh)["search_paths"]
    sys.path[:0] = [p for p in _paths if p not in sys.path]

    from apiforge.discovery.driver import driver_main

    sys.exit(driver_main({DESCRIPTOR_FILENAME!r}))
    """
)


def render_descriptor(target: str, middleware: Optional[str], search_paths: list[str]) -> str:
    payload = {
        "middleware": middleware,
        "search_paths": search_paths,
        "target": target,
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _write(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise DiscoveryError("setup", f"failed to write {path.name}: {exc}") from exc


def discover(
    target: str,
    middleware: Optional[str] = None,
    project_dir: Optional[Path] = None,
    timeout: Optional[float] = None,
    extra_paths: Iterable[Path] = (),
) -> Manifest:
    """
    Run the target's ``register(app)`` (and ``register_middleware(registry)``
    when `middleware` is given) in a sandboxed interpreter and return the
    validated Manifest.

    `timeout` bounds the subprocess in seconds; None waits indefinitely.
    """
    if not target:
        raise DiscoveryError("setup", "target module cannot be empty")

    start = Path(project_dir) if project_dir is not None else Path.cwd()
    root = find_project_root(start) or start.resolve()
    search_paths = build_search_paths(root, extra_paths)
    logger.debug("discovery search paths: %s", search_paths)

    with tempfile.TemporaryDirectory(prefix="apiforge-discover-") as tmp:
        tmp_dir = Path(tmp)
        _write(tmp_dir / DRIVER_FILENAME, DRIVER_SOURCE)
        _write(tmp_dir / DESCRIPTOR_FILENAME, render_descriptor(target, middleware, search_paths))

        env = dict(os.environ)
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        env.pop("PYTHONPATH", None)

        logger.info("discovering endpoints in %s", target)
        try:
            proc = subprocess.run(
                [sys.executable, DRIVER_FILENAME],
                cwd=tmp_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise DiscoveryError("run", f"runner timed out after {timeout}s") from exc
        except OSError as exc:
            raise DiscoveryError("spawn", f"failed to start runner: {exc}") from exc

    if proc.returncode != 0:
        raise DiscoveryError("run", f"runner failed (exit {proc.returncode})\nstderr: {proc.stderr}")

    try:
        manifest = Manifest.from_json(proc.stdout)
    except PydanticValidationError as exc:
        raise DiscoveryError("parse", f"failed to parse manifest: {exc}\noutput: {proc.stdout}") from exc

    logger.info(
        "discovered %d endpoint(s), %d middleware, %d context key(s)",
        len(manifest.endpoints),
        len(manifest.middlewares),
        len(manifest.context_keys),
    )
    return manifest
