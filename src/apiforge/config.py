from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from apiforge.errors import ConfigError


class ApiforgeConfig(BaseModel):
    """``[tool.apiforge]`` settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    package: str
    middleware_package: Optional[str] = None
    output_filename: str = "_generated_http.py"
    context_filename: str = "_generated_context.py"
    client_filename: Optional[str] = None
    discover_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("package", "middleware_package")
    @classmethod
    def _dotted_module(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        parts = v.split(".")
        if not v or not all(p.isidentifier() for p in parts):
            raise ValueError(f"{v!r} is not a dotted module name")
        return v

    @field_validator("output_filename", "context_filename", "client_filename")
    @classmethod
    def _plain_py_file(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if "/" in v or "\\" in v or not v.endswith(".py") or not v[:-3].isidentifier():
            raise ValueError(f"{v!r} must be a plain module filename like _generated_http.py")
        return v


def build_config(data: dict[str, Any]) -> ApiforgeConfig:
    try:
        return ApiforgeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid apiforge configuration: {exc}") from exc


def read_tool_table(project_dir: Path) -> dict[str, Any]:
    """Raw ``[tool.apiforge]`` table, or {} when the file or the table is absent."""
    pyproject = project_dir / "pyproject.toml"
    if not pyproject.is_file():
        return {}
    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{pyproject}: {exc}") from exc
    table = data.get("tool", {}).get("apiforge", {})
    if not isinstance(table, dict):
        raise ConfigError(f"{pyproject}: [tool.apiforge] must be a table")
    return dict(table)


def load_config(project_dir: Path, **overrides: Any) -> ApiforgeConfig:
    """
    Load ``[tool.apiforge]`` from the project's pyproject.toml, then apply overrides.

    Keys in the file may use dashes (``middleware-package``) or underscores.
    """
    table = {k.replace("-", "_"): v for k, v in read_tool_table(project_dir).items()}
    table.update({k: v for k, v in overrides.items() if v is not None})
    if not table.get("package"):
        raise ConfigError(
            f"{project_dir / 'pyproject.toml'}: missing [tool.apiforge] package "
            "(or pass --package)"
        )
    return build_config(table)
