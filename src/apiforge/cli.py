from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from apiforge.config import load_config
from apiforge.errors import ApiforgeError
from apiforge.orchestrator.pipeline import run_discover, run_generate


app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _project_path(project: str) -> Path:
    project_path = Path(project).expanduser().resolve()
    if not project_path.exists():
        raise typer.BadParameter(f"Project path does not exist: {project_path}")
    if not project_path.is_dir():
        raise typer.BadParameter(f"Project path is not a directory: {project_path}")
    return project_path


def _fail(exc: Exception) -> None:
    err_console.print(f"[red]error[/red] {exc}", markup=True, highlight=False)
    raise typer.Exit(code=1)


@app.command()
def generate(
    project: str = typer.Argument(".", help="Project directory (holds pyproject.toml)"),
    package: Optional[str] = typer.Option(None, help="Module that defines register(app)"),
    middleware_package: Optional[str] = typer.Option(None, help="Module that defines register_middleware(registry)"),
    timeout: Optional[float] = typer.Option(None, help="Discovery timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _setup_logging(verbose)
    project_path = _project_path(project)

    try:
        config = load_config(
            project_path,
            package=package,
            middleware_package=middleware_package,
            discover_timeout=timeout,
        )
        result = run_generate(config, project_path)
    except ApiforgeError as exc:
        _fail(exc)
        return

    console.print(f"[bold green]apiforge[/bold green] generate: {result.project_root}")
    console.print(f"Endpoints: [bold]{result.endpoints}[/bold]")
    console.print(f"Context keys: {result.context_keys}")
    console.print(f"Dispatch: {result.dispatch_path}")
    if result.context_path:
        console.print(f"Context helpers: {result.context_path}")
    if result.client_path:
        console.print(f"Client: {result.client_path}")


@app.command()
def discover(
    project: str = typer.Argument(".", help="Project directory (holds pyproject.toml)"),
    package: Optional[str] = typer.Option(None, help="Module that defines register(app)"),
    middleware_package: Optional[str] = typer.Option(None, help="Module that defines register_middleware(registry)"),
    timeout: Optional[float] = typer.Option(None, help="Discovery timeout in seconds"),
    format: str = typer.Option("table", help="Output format: table|json"),
    out: Optional[str] = typer.Option(None, help="Write the manifest JSON to this path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _setup_logging(verbose)
    project_path = _project_path(project)

    fmt = format.lower().strip()
    if fmt not in ("table", "json"):
        raise typer.BadParameter("format must be one of: table, json")

    try:
        config = load_config(
            project_path,
            package=package,
            middleware_package=middleware_package,
            discover_timeout=timeout,
        )
        manifest = run_discover(config, project_path)
    except ApiforgeError as exc:
        _fail(exc)
        return

    text = manifest.to_json()
    if out:
        out_path = Path(out).expanduser()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        console.print(f"[bold green]Wrote[/bold green] manifest to: {out_path}")

    if fmt == "json":
        if not out:
            typer.echo(text, nl=False)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("HANDLER")
    table.add_column("SHAPE", no_wrap=True)
    table.add_column("MIDDLEWARE")

    for ep in manifest.endpoints:
        table.add_row(
            ep.method,
            ep.path,
            ep.handler_key,
            ep.shape,
            ", ".join(m.name for m in ep.middlewares),
        )

    console.print(f"[bold]Endpoints:[/bold] {len(manifest.endpoints)}")
    console.print(table)
    if manifest.context_keys:
        console.print("")
        console.print("[bold]Context keys:[/bold]")
        for k in manifest.context_keys:
            console.print(f"  {k.key:<24} {k.type}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
