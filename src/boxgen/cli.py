from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError as ConfigValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from boxgen.extractors.annotations.parser import parse_directory
from boxgen.orchestrator.config import BuildConfig
from boxgen.orchestrator.errors import ConfigError, GenerationError
from boxgen.orchestrator.pipeline import run_build
from boxgen.orchestrator.project import detect_module_name
from boxgen.validation.validator import validate_all

__version__ = "0.1.0"

app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose)],
        force=True,
    )


def _version(value: bool) -> None:
    if value:
        console.print(f"box {__version__}")
        raise typer.Exit()


@app.callback()
def root(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Generate Google Cloud deployment artifacts from @box: handler annotations."""


def _handlers_dir(handlers: str) -> Path:
    path = Path(handlers).expanduser()
    if not path.exists():
        raise typer.BadParameter(f"Handlers directory does not exist: {path}")
    if not path.is_dir():
        raise typer.BadParameter(f"Handlers path is not a directory: {path}")
    return path


@app.command()
def generate(
    handlers: str = typer.Option("./handlers", "--handlers", help="Directory containing annotated handlers"),
    output: str = typer.Option("./build", "--output", help="Output directory for generated artifacts"),
    project: str = typer.Option(..., "--project", help="GCP project ID"),
    region: str = typer.Option("us-central1", "--region", help="GCP region"),
    env: str = typer.Option("dev", "--env", help="Environment (dev, staging, production)"),
    module: Optional[str] = typer.Option(
        None, "--module", help="Root module name (read from pyproject.toml if omitted)"
    ),
    clean: bool = typer.Option(False, "--clean", help="Remove the output directory first"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    strict: bool = typer.Option(False, "--strict", help="Do not generate when validation errors exist"),
) -> None:
    _configure_logging(verbose)
    handlers_dir = _handlers_dir(handlers)

    try:
        module_name = module or detect_module_name(Path.cwd())
        config = BuildConfig(
            handlers_dir=handlers_dir,
            output_dir=Path(output).expanduser(),
            project_id=project,
            region=region,
            environment=env,
            module_name=module_name,
            clean=clean,
            verbose=verbose,
            strict=strict,
        )
    except ConfigError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        err_console.print("Pass --module explicitly or run from the project root.")
        raise typer.Exit(code=1)
    except ConfigValidationError as e:
        raise typer.BadParameter(str(e))

    console.print(f"[bold green]box[/bold green] generate: {handlers_dir} -> {config.output_dir}")
    console.print(f"Project: [bold]{config.project_id}[/bold]  Region: {config.region}  Env: {config.environment}")

    try:
        result = run_build(config)
    except GenerationError as e:
        err_console.print(f"[bold red]Generation failed[/bold red] ({e.stage}): {e}")
        raise typer.Exit(code=1)

    console.print("")
    console.print(f"Handlers found: [bold]{len(result.handlers)}[/bold]")
    console.print(f"Parse errors: {len(result.parse_errors)}")
    console.print(
        f"Validation issues: {len(result.validation_errors)} "
        f"({len(result.blocking_errors)} blocking)"
    )

    if result.blocked:
        err_console.print("[bold red]Generation skipped[/bold red]: fix the validation errors or drop --strict")
        raise typer.Exit(code=1)

    stats = result.stats
    console.print(f"Functions: {stats.functions}")
    console.print(f"Container services: {stats.services}")
    console.print(f"Files written: {stats.files_written}")
    console.print(f"[bold green]Done[/bold green]: {stats.output_dir}")


@app.command()
def routes(
    handlers: str = typer.Option("./handlers", "--handlers", help="Directory containing annotated handlers"),
    format: str = typer.Option("table", help="Output format: table|json"),
) -> None:
    """List discovered handlers and their diagnostics without generating anything."""
    handlers_dir = _handlers_dir(handlers)
    fmt = format.lower().strip()
    if fmt not in ("table", "json"):
        raise typer.BadParameter("format must be one of: table, json")

    parsed = parse_directory(handlers_dir)
    diagnostics = validate_all(parsed.handlers)

    if fmt == "json":
        payload = {
            "handlers": [
                {
                    "name": h.name,
                    "module": h.module,
                    "target": h.target.value if h.target else None,
                    "method": h.route.method if h.route else None,
                    "path": h.route.path if h.route else None,
                    "group": h.group_name,
                    "auth": h.auth.value,
                    "file": h.file_path,
                    "line": h.line,
                }
                for h in parsed.handlers
            ],
            "parse_errors": [
                {"file": e.file_path, "line": e.line, "message": e.message}
                for e in parsed.errors
            ],
            "validation_errors": [
                {
                    "handler": e.handler,
                    "annotation": e.annotation,
                    "reason": e.reason,
                    "severity": e.severity.value,
                }
                for e in diagnostics
            ],
        }
        console.print(json.dumps(payload, indent=2), markup=False, highlight=False, soft_wrap=True)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("HANDLER")
    table.add_column("TARGET", no_wrap=True)
    table.add_column("GROUP")
    table.add_column("FILE:LINE", no_wrap=True)

    for h in parsed.handlers:
        table.add_row(
            h.route.method if h.route else "-",
            h.route.path if h.route else "-",
            h.name,
            h.target.value if h.target else "-",
            h.group_name,
            f"{h.file_path}:{h.line}",
        )

    console.print(f"[bold]Handlers:[/bold] {len(parsed.handlers)}")
    console.print(table)

    for e in parsed.errors:
        console.print(f"[yellow]parse[/yellow] {escape(str(e))}")
    for e in diagnostics:
        color = {"error": "red", "warning": "yellow", "info": "cyan"}[e.severity.value]
        console.print(f"[{color}]{e.severity.value}[/{color}] {escape(str(e))}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
