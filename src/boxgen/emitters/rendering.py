from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from jinja2 import BaseLoader, Environment, StrictUndefined

from boxgen.domain.models import DeploymentTarget, Handler
from boxgen.domain.naming import to_kebab_case, to_snake_case

logger = logging.getLogger(__name__)

GENERATED_BY = "Generated by box build system"

EXECUTABLE_MODE = 0o755


@dataclass(frozen=True)
class RenderedFile:
    """One generated artifact, relative to the emitter's output directory."""

    path: str  # posix-style, e.g. "create-account/deploy.sh"
    content: str
    executable: bool = False


_env = Environment(
    loader=BaseLoader(),
    autoescape=False,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)
_env.filters["kebab"] = to_kebab_case
_env.filters["snake"] = to_snake_case


def render_template(source: str, **context: Any) -> str:
    return _env.from_string(source).render(generated_by=GENERATED_BY, **context)


def dump_yaml(data: Any, header: str = "") -> str:
    """Serialize with insertion order kept so identical input gives identical bytes."""
    body = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, width=120)
    return header + body


def dump_yaml_documents(documents: Iterable[Any], header: str = "") -> str:
    body = yaml.safe_dump_all(
        list(documents), default_flow_style=False, sort_keys=False, width=120
    )
    return header + body


def write_files(root: Path, files: Iterable[RenderedFile]) -> list[Path]:
    """
    Write rendered files under root, creating parent directories as needed.

    Files flagged executable get mode 0755. Raises OSError on the first
    failure; files written before it stay on disk.
    """
    root = Path(root)
    written: list[Path] = []
    for f in files:
        target = root / f.path
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(f.content)
        if f.executable:
            os.chmod(target, EXECUTABLE_MODE)
        written.append(target)
        logger.debug("Wrote %s", target)
    return written


def platform_memory(memory: Optional[str], default_mb: int) -> str:
    """
    Convert an annotation memory value to the platform's binary unit form.

    "256MB" -> "256Mi", "1GB" -> "1Gi"; unset falls back to default_mb.
    """
    if not memory:
        return f"{default_mb}Mi"
    if memory.endswith("GB"):
        return memory[:-2] + "Gi"
    if memory.endswith("MB"):
        return memory[:-2] + "Mi"
    return memory


def function_name(handler: Handler) -> str:
    return to_kebab_case(handler.name)


def service_name(group: str) -> str:
    return to_kebab_case(group)


def backend_address(handler: Handler, project_id: str, region: str) -> str:
    """Public URL the platform assigns to the handler's deployed backend."""
    if handler.target is DeploymentTarget.FUNCTION:
        return f"https://{region}-{project_id}.cloudfunctions.net/{function_name(handler)}"
    if handler.target is DeploymentTarget.CONTAINER:
        return f"https://{service_name(handler.group_name)}-{region}.run.app"
    return ""


def relative_posix(target: Path, start: Path) -> str:
    """Relative path from start to target, always with forward slashes."""
    rel = os.path.relpath(os.path.abspath(target), os.path.abspath(start))
    return Path(rel).as_posix()


def import_path(handler: Handler) -> str:
    return handler.module or handler.package
