"""Find diagram blocks in Markdown text and replace them with rendered SVG."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from .errors import MermanError
from .layout import DEFAULT_LAYOUT, LayoutConfig
from .metrics import DEFAULT_METRICS, TextMetrics
from .pipeline import render_diagram

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScannerConfig:
    begin_marker: str = "```merman\n"
    end_marker: str = "```\n"
    output_begin: str = "<!-- merman:begin -->\n"
    output_end: str = "\n<!-- merman:end -->\n"
    error_prefix: str = "<!-- merman:error"


DEFAULT_SCANNER = ScannerConfig()


@dataclass(frozen=True)
class Block:
    """One fenced description: ``text[start:end]`` is the whole fence."""

    index: int
    start: int
    end: int
    line: int
    source: str


@dataclass(frozen=True)
class BlockFailure:
    index: int
    line: int
    code: str
    message: str


@dataclass
class ScanResult:
    text: str
    rendered: int = 0
    failures: List[BlockFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def find_blocks(text: str, config: ScannerConfig = DEFAULT_SCANNER) -> List[Block]:
    """Locate every complete begin/end marker pair in document order.

    An unterminated block stops the scan; the remaining text is left alone.
    """
    blocks: List[Block] = []
    cursor = 0
    while True:
        start = text.find(config.begin_marker, cursor)
        if start < 0:
            break
        body_start = start + len(config.begin_marker)
        body_end = text.find(config.end_marker, body_start)
        line = text.count("\n", 0, start) + 1
        if body_end < 0:
            log.warning("unterminated diagram block at line %d; leaving the rest unchanged", line)
            break
        end = body_end + len(config.end_marker)
        blocks.append(
            Block(
                index=len(blocks),
                start=start,
                end=end,
                line=line,
                source=text[body_start:body_end],
            )
        )
        cursor = end
    return blocks


def transform_document(
    text: str,
    *,
    config: ScannerConfig = DEFAULT_SCANNER,
    layout_config: LayoutConfig = DEFAULT_LAYOUT,
    metrics: TextMetrics = DEFAULT_METRICS,
) -> ScanResult:
    """Render every block of ``text`` independently.

    Rendered blocks are swapped for the output marker pair around the SVG.
    A block that fails keeps its original bytes and gains a one-line error
    annotation in front of it. An annotation already sitting on the line
    above a block is replaced, so re-running on the output does not stack
    them.
    """
    result = ScanResult(text=text)
    replacements: List[Tuple[int, int, str]] = []
    for block in find_blocks(text, config):
        try:
            svg = render_diagram(
                block.source,
                config=layout_config,
                metrics=metrics,
                id_prefix=f"merman-{block.index}",
            )
        except MermanError as exc:
            log.warning(
                "diagram block %d at line %d failed: [%s] %s",
                block.index,
                block.line,
                exc.code,
                exc.message,
            )
            result.failures.append(
                BlockFailure(index=block.index, line=block.line, code=exc.code, message=exc.message)
            )
            annotation = f"{config.error_prefix} {exc.code}: {_comment_safe(exc.message)} -->\n"
            replacements.append((_annotation_start(text, block, config), block.start, annotation))
            continue
        log.debug("rendered diagram block %d at line %d", block.index, block.line)
        replacements.append(
            (
                _annotation_start(text, block, config),
                block.end,
                config.output_begin + svg + config.output_end,
            )
        )
        result.rendered += 1

    out = text
    for start, end, replacement in reversed(replacements):
        out = out[:start] + replacement + out[end:]
    result.text = out
    return result


def _annotation_start(text: str, block: Block, config: ScannerConfig) -> int:
    """Offset of an error annotation left on the line above ``block`` by an
    earlier run, or ``block.start`` when there is none."""
    if block.start == 0:
        return block.start
    line_start = text.rfind("\n", 0, block.start - 1) + 1
    previous = text[line_start : block.start]
    if previous.startswith(config.error_prefix) and previous.endswith("-->\n"):
        return line_start
    return block.start


def _comment_safe(message: str) -> str:
    flat = " ".join(message.split())
    while "--" in flat:
        flat = flat.replace("--", "- -")
    return flat


__all__ = [
    "Block",
    "BlockFailure",
    "DEFAULT_SCANNER",
    "ScanResult",
    "ScannerConfig",
    "find_blocks",
    "transform_document",
]
