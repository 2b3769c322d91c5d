from __future__ import annotations

from pathlib import Path

DEFAULT_IGNORES = {
    "__pycache__",
    "node_modules",
    "venv",
    "env",
    "site-packages",
    "dist",
    "build",
    "vendor",
}

TEST_FILE_NAMES = {"conftest.py"}


def should_ignore_dir(dir_path: Path) -> bool:
    # hidden dirs cover .git, .venv, .mypy_cache, .pytest_cache, ...
    name = dir_path.name
    return name.startswith(".") or name in DEFAULT_IGNORES


def is_handler_source(file_path: Path) -> bool:
    name = file_path.name
    if not name.endswith(".py") or name.startswith("."):
        return False
    if name in TEST_FILE_NAMES:
        return False
    return not (name.startswith("test_") or name.endswith("_test.py"))
