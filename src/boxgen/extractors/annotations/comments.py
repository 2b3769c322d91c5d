from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class LineKind(str, Enum):
    BLANK = "blank"
    COMMENT = "comment"
    CODE = "code"


class ScanState(str, Enum):
    SCANNING_UP = "scanning_up"
    IN_BLOCK = "in_block"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CommentLine:
    line_no: int  # 1-based
    text: str     # comment body, markers and surrounding whitespace stripped


def classify_line(line: str) -> LineKind:
    stripped = line.strip()
    if not stripped:
        return LineKind.BLANK
    if stripped.startswith("#"):
        return LineKind.COMMENT
    return LineKind.CODE


def strip_comment_marker(line: str) -> str:
    return line.strip().lstrip("#").strip()


def scan_annotation_block(lines: Sequence[str], decl_index: int) -> list[CommentLine]:
    """
    Collect the comment block attached to the declaration at lines[decl_index].

    Walks upward from the line just above the declaration. Only the contiguous
    run of comment lines touching the declaration belongs to it; the first
    blank or code line ends the block. Returned top-down.
    """
    state = ScanState.SCANNING_UP
    block: list[CommentLine] = []

    i = decl_index - 1
    while state is not ScanState.STOPPED:
        if i < 0:
            state = ScanState.STOPPED
            continue

        kind = classify_line(lines[i])
        if kind is LineKind.COMMENT:
            state = ScanState.IN_BLOCK
            block.append(CommentLine(line_no=i + 1, text=strip_comment_marker(lines[i])))
            i -= 1
        else:
            state = ScanState.STOPPED

    block.reverse()
    return block
