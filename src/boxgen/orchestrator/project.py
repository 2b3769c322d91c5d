from __future__ import annotations

import tomllib
from pathlib import Path

from boxgen.orchestrator.errors import ConfigError


def detect_module_name(project_root: Path) -> str:
    """
    Read the caller's distribution name from pyproject.toml.

    Looks at [project].name first, then [tool.poetry].name.
    """
    manifest = Path(project_root) / "pyproject.toml"
    try:
        with manifest.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"pyproject.toml not found in {project_root}") from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid pyproject.toml: {e}") from e

    name = data.get("project", {}).get("name") or (
        data.get("tool", {}).get("poetry", {}).get("name")
    )
    if not name:
        raise ConfigError(f"No project name declared in {manifest}")
    return str(name)
