from __future__ import annotations

import ast
import logging
from pathlib import Path
from typing import Iterable, Optional

from boxgen.domain.models import Handler, ParseError, ParseResult
from boxgen.extractors.annotations.builder import (
    AnnotationSyntaxError,
    HandlerBuilder,
    split_annotation,
)
from boxgen.extractors.annotations.comments import scan_annotation_block
from boxgen.repo.scanner import module_base_for, module_name_for, scan_handler_files

logger = logging.getLogger(__name__)


def parse_source(
    source: str,
    file_path: str = "",
    module: str = "",
    package: str = "",
) -> ParseResult:
    """
    Extract annotated handlers from Python source.

    Only module-level `def` / `async def` declarations are candidates. Their
    annotation block is the contiguous run of `#` comments directly above the
    declaration (above the first decorator, if any). Uses ast only; does not
    import/execute code.
    """
    if not package:
        package = Path(file_path).stem if file_path else "default"

    try:
        tree = ast.parse(source, filename=file_path or "<source>")
    except SyntaxError as e:
        return ParseResult(
            errors=(
                ParseError(
                    file_path=file_path,
                    line=e.lineno or 0,
                    message=f"Failed to parse file: {e.msg}",
                ),
            )
        )

    lines = source.splitlines()
    handlers: list[Handler] = []
    errors: list[ParseError] = []

    for node in _iter_top_level_functions(tree):
        builder = HandlerBuilder(
            name=node.name,
            package=package,
            module=module,
            file_path=file_path,
            line=node.lineno,
        )
        annotated = False

        for comment in scan_annotation_block(lines, _declaration_start(node) - 1):
            try:
                parsed = split_annotation(comment.text)
                if parsed is None:
                    continue
                annotated = True
                builder.apply(*parsed)
            except AnnotationSyntaxError as e:
                annotated = True
                errors.append(
                    ParseError(
                        file_path=file_path,
                        line=comment.line_no,
                        message=str(e),
                        annotation=comment.text,
                    )
                )

        handler = builder.build()
        if handler is not None:
            handlers.append(handler)
        elif annotated:
            logger.debug(
                "Skipping %s in %s: no @box:function or @box:container annotation",
                node.name,
                file_path,
            )

    return ParseResult(handlers=tuple(handlers), errors=tuple(errors))


def parse_file(path: Path, base: Optional[Path] = None) -> ParseResult:
    """
    Parse a single handler file.

    `base` is the directory dotted module paths are relative to; by default it
    is derived from the file's own directory. Raises OSError if the file
    cannot be read.
    """
    path = Path(path)
    if base is None:
        base = module_base_for(path.parent)
    module, package = module_name_for(path, base)

    source = path.read_text(encoding="utf-8")
    result = parse_source(source, file_path=str(path.resolve()), module=module, package=package)
    logger.debug(
        "Parsed %s: %d handlers, %d errors", path, len(result.handlers), len(result.errors)
    )
    return result


def parse_directory(root: Path) -> ParseResult:
    """
    Recursively parse every handler file under root.

    A file that cannot be read is reported as a ParseError and the walk
    continues.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Handlers directory does not exist: {root}")

    base = module_base_for(root)
    result = ParseResult()

    for f in scan_handler_files(root):
        try:
            file_result = parse_file(f, base=base)
        except (OSError, UnicodeDecodeError) as e:
            file_result = ParseResult(
                errors=(
                    ParseError(
                        file_path=str(f.resolve()),
                        line=0,
                        message=f"Failed to read file: {e}",
                    ),
                )
            )
        result = result.merged(file_result)

    logger.info(
        "Scanned %s: %d handlers, %d parse errors",
        root,
        len(result.handlers),
        len(result.errors),
    )
    return result


def _iter_top_level_functions(tree: ast.Module) -> Iterable[ast.FunctionDef | ast.AsyncFunctionDef]:
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            yield node


def _declaration_start(node: ast.FunctionDef | ast.AsyncFunctionDef) -> int:
    # decorators sit between the annotation block and the `def` line
    lines = [node.lineno] + [d.lineno for d in node.decorator_list]
    return min(lines)
