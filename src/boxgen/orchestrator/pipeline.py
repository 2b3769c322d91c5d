from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Sequence

from jinja2 import TemplateError

from boxgen.domain.models import (
    DeploymentTarget,
    Handler,
    ParseError,
    Severity,
    ValidationError,
    filter_target,
    group_services,
)
from boxgen.emitters.containers import emit_containers
from boxgen.emitters.functions import emit_functions
from boxgen.emitters.gateway import emit_gateway
from boxgen.emitters.terraform import emit_terraform
from boxgen.extractors.annotations.parser import parse_directory
from boxgen.orchestrator.config import BuildConfig
from boxgen.orchestrator.errors import GenerationError
from boxgen.validation.validator import validate_all

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerateStats:
    functions: int = 0
    services: int = 0
    gateway: bool = False
    terraform: bool = False
    files_written: int = 0
    output_dir: str = ""


@dataclass(frozen=True)
class BuildResult:
    handlers: tuple[Handler, ...]
    parse_errors: tuple[ParseError, ...]
    validation_errors: tuple[ValidationError, ...]
    stats: GenerateStats | None = None  # None when generation was skipped
    blocked: bool = False

    @property
    def blocking_errors(self) -> list[ValidationError]:
        return [e for e in self.validation_errors if e.blocking]


_LOG_LEVEL = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.INFO: logging.INFO,
}


def _run_stage(stage: str, fn: Callable[[Sequence[Handler], BuildConfig], list[Path]],
               handlers: Sequence[Handler], config: BuildConfig) -> list[Path]:
    try:
        return fn(handlers, config)
    except (OSError, TemplateError) as e:
        logger.error("failed to generate %s: %s", stage, e)
        raise GenerationError(stage, f"failed to generate {stage}: {e}") from e


def _routable(handlers: Iterable[Handler]) -> list[Handler]:
    out: list[Handler] = []
    for h in handlers:
        if h.route is None:
            logger.warning("Skipping %s (%s:%d): no @box:path annotation", h.name, h.file_path, h.line)
            continue
        out.append(h)
    return out


def generate(handlers: Iterable[Handler], config: BuildConfig) -> GenerateStats:
    """
    Emit every artifact for the given handlers under config.output_dir.

    Handlers without a route are skipped with a warning. Fail-fast: the first I/O or template failure raises GenerationError naming
    the stage. Output written before the failure is left in place.
    """
    handlers = _routable(handlers)
    out = Path(config.output_dir)

    if config.clean:
        logger.info("Cleaning output directory %s", out)
        try:
            shutil.rmtree(out)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise GenerationError("clean", f"failed to clean output directory: {e}") from e

    try:
        out.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise GenerationError("output", f"failed to create output directory: {e}") from e

    functions = filter_target(handlers, DeploymentTarget.FUNCTION)
    groups = group_services(handlers)
    written: list[Path] = []

    if functions:
        written += _run_stage("cloud functions", emit_functions, functions, config)

    if groups:
        containers = filter_target(handlers, DeploymentTarget.CONTAINER)
        written += _run_stage("containers", emit_containers, containers, config)

    if handlers:
        written += _run_stage("gateway", emit_gateway, handlers, config)
        written += _run_stage("terraform", emit_terraform, handlers, config)
    else:
        logger.info("No handlers found; nothing to generate")

    stats = GenerateStats(
        functions=len(functions),
        services=len(groups),
        gateway=bool(handlers),
        terraform=bool(handlers),
        files_written=len(written),
        output_dir=str(out),
    )
    logger.info(
        "Build complete: %d functions, %d services, %d files in %s",
        stats.functions,
        stats.services,
        stats.files_written,
        out,
    )
    return stats


def log_diagnostics(parse_errors: Iterable[ParseError], validation_errors: Iterable[ValidationError]) -> None:
    for pe in parse_errors:
        logger.warning("Parse error: %s", pe)
    for ve in validation_errors:
        logger.log(_LOG_LEVEL[ve.severity], "Validation: %s", ve)


def run_build(config: BuildConfig) -> BuildResult:
    """
    Parse, validate and generate.

    Diagnostics never stop generation unless config.strict is set and at
    least one blocking (error severity) validation diagnostic exists.
    """
    logger.info("Scanning handlers in %s", config.handlers_dir)
    parsed = parse_directory(config.handlers_dir)
    validation = validate_all(parsed.handlers)

    log_diagnostics(parsed.errors, validation)

    result = BuildResult(
        handlers=parsed.handlers,
        parse_errors=parsed.errors,
        validation_errors=tuple(validation),
    )

    if config.strict and result.blocking_errors:
        logger.error(
            "Generation skipped: %d blocking validation errors", len(result.blocking_errors)
        )
        return replace(result, blocked=True)

    return replace(result, stats=generate(parsed.handlers, config))
