from __future__ import annotations

import os
from pathlib import Path

from boxgen.repo.ignore import is_handler_source, should_ignore_dir


def scan_handler_files(root: Path, max_files: int | None = None) -> list[Path]:
    """
    Return handler source files under root, sorted for a stable scan order.

    Hidden, dependency and build directories are pruned; test modules are
    skipped.
    """
    out: list[Path] = []
    for dirpath, dirs, files in _walk(root):
        root_p = Path(dirpath)

        # prune ignored dirs
        dirs[:] = sorted(d for d in dirs if not should_ignore_dir(root_p / d))

        for f in sorted(files):
            p = root_p / f
            if is_handler_source(p):
                out.append(p)
                if max_files is not None and len(out) >= max_files:
                    return out
    return out


def _walk(root: Path):
    return os.walk(root)


def module_base_for(root: Path) -> Path:
    """
    Directory that dotted import paths are computed from.

    Starts at the parent of the scanned root and climbs while that directory is
    itself a regular package, so `src/app/handlers` yields `app.handlers.*`.
    """
    base = root.resolve().parent
    while (base / "__init__.py").exists() and base.parent != base:
        base = base.parent
    return base


def module_name_for(file_path: Path, base: Path) -> tuple[str, str]:
    """
    Return (dotted module path, package name) for a source file.

    handlers/users.py          -> ("handlers.users", "users")
    handlers/users/__init__.py -> ("handlers.users", "users")
    """
    rel = file_path.resolve().relative_to(base.resolve())
    parts = list(rel.with_suffix("").parts)
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    if not parts:
        parts = [file_path.resolve().parent.name]
    return ".".join(parts), parts[-1]
