"""
State Machine Classifier
========================
Deterministic state machine that turns a page's composed lines (top to
bottom) into structural blocks: headings, list items, grid tables and
paragraphs.

Per line, the tests run in fixed priority order:
    heading > table continuation > table start > list item > paragraph

Each step is a pure transition ``(state, line) -> (state, blocks)``; every
container close goes through ``flush``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .columns import infer_row
from .config import LayoutThresholds
from .models import (
    Block,
    BlockType,
    ComposedLine,
    ListKind,
    PageStats,
    TableRow,
    TextRun,
)

logger = logging.getLogger(__name__)

# ─── Marker Patterns ──────────────────────────────────────────────────────────

# "• item", "- item", "* item"
BULLET_PATTERN = re.compile(r"^[•\-\*]\s")

# "1. item", "12) item"
ORDERED_PATTERN = re.compile(r"^(\d+)[.\)]\s")

# Marker only, whitespace is trimmed separately
MARKER_PATTERN = re.compile(r"^(?:[•\-\*]|\d+[.\)])")

# Longer ordinals are still list items but carry no start number
MAX_ORDINAL_DIGITS = 9


class ParserState(Enum):
    """Open container while walking a page."""
    IDLE = "IDLE"
    IN_LIST = "IN_LIST"
    IN_TABLE = "IN_TABLE"


@dataclass(frozen=True)
class ClassifierState:
    """Per-page classifier state. At most one container is open."""
    mode: ParserState = ParserState.IDLE
    list_kind: Optional[ListKind] = None
    table_columns: tuple[float, ...] = ()
    table_rows: tuple[TableRow, ...] = ()


IDLE = ClassifierState()


# ─── Line Tests ───────────────────────────────────────────────────────────────


def heading_level(
    composed: ComposedLine,
    stats: PageStats,
    thresholds: LayoutThresholds,
) -> Optional[int]:
    """2 or 3 for lines set noticeably larger than body text, else None."""
    median = stats.median_glyph_height
    if composed.max_height <= median * thresholds.heading_ratio:
        return None
    return 2 if composed.max_height > median * thresholds.heading_h2_ratio else 3


def continues_table(
    composed: ComposedLine,
    columns: tuple[float, ...],
    thresholds: LayoutThresholds,
) -> bool:
    """
    Whether a line extends the open table.

    A multi-run line continues it when one of its later runs starts on an
    established column. A single-run line continues it only when it starts on
    a column other than the first (text wrapped inside a later cell); a lone
    run at the first column reads as body text and closes the table.
    """
    tolerance = thresholds.column_tolerance

    def aligned(x: float, candidates) -> bool:
        return any(abs(x - c) < tolerance for c in candidates)

    starts = composed.item_starts
    if not starts:
        return False
    if len(starts) >= 2:
        return any(aligned(x, columns) for x in starts[1:])
    return aligned(starts[0], columns[1:])


def starts_table(composed: ComposedLine, thresholds: LayoutThresholds) -> bool:
    return (
        len(composed.item_starts) >= 2
        and any(g > thresholds.table_gap for g in composed.gaps)
    )


def match_list(text: str) -> Optional[tuple[ListKind, Optional[int]]]:
    """List kind and ordinal for a line starting with a list marker."""
    if BULLET_PATTERN.match(text):
        return ListKind.BULLET, None
    m = ORDERED_PATTERN.match(text)
    if m:
        digits = m.group(1)
        if len(digits) > MAX_ORDINAL_DIGITS:
            return ListKind.ORDERED, None
        return ListKind.ORDERED, int(digits)
    return None


def strip_marker(runs: list[TextRun]) -> list[TextRun]:
    """Remove the leading list marker and the whitespace around the content."""
    text = "".join(r.text for r in runs)
    m = MARKER_PATTERN.match(text)
    remaining = m.end() if m else 0

    stripped: list[TextRun] = []
    for run in runs:
        value = run.text
        if remaining:
            cut = min(remaining, len(value))
            value = value[cut:]
            remaining -= cut
        if not stripped:
            value = value.lstrip()
        if value:
            stripped.append(run.model_copy(update={"text": value}))

    if stripped:
        last = stripped[-1]
        value = last.text.rstrip()
        if value:
            stripped[-1] = last.model_copy(update={"text": value})
        else:
            stripped.pop()
    return stripped


# ─── Transitions ──────────────────────────────────────────────────────────────


def flush(
    state: ClassifierState, page_number: int = 1
) -> tuple[ClassifierState, list[Block]]:
    """Close whatever container is open."""
    if state.mode == ParserState.IN_TABLE and state.table_rows:
        table = Block(
            type=BlockType.TABLE,
            page_number=page_number,
            columns=list(state.table_columns),
            rows=list(state.table_rows),
        )
        logger.debug(
            f"Closed table on page {page_number}: "
            f"{len(table.columns)} columns, {len(table.rows)} rows"
        )
        return IDLE, [table]
    return IDLE, []


def transition(
    state: ClassifierState,
    composed: ComposedLine,
    stats: PageStats,
    thresholds: LayoutThresholds = LayoutThresholds(),
    page_number: int = 1,
) -> tuple[ClassifierState, list[Block]]:
    """Consume one line; return the next state and any completed blocks."""
    blocks: list[Block] = []

    # ─── 1. Heading ───
    level = heading_level(composed, stats, thresholds)
    if level is not None:
        state, blocks = flush(state, page_number)
        blocks.append(Block(
            type=BlockType.HEADING,
            page_number=page_number,
            level=level,
            runs=composed.runs,
        ))
        return state, blocks

    # ─── 2. Table continuation ───
    if state.mode == ParserState.IN_TABLE:
        if continues_table(composed, state.table_columns, thresholds):
            row = infer_row(composed, list(state.table_columns), thresholds)
            return replace(state, table_rows=state.table_rows + (row,)), blocks
        state, blocks = flush(state, page_number)

    # ─── 3. Table start ───
    if starts_table(composed, thresholds):
        columns = tuple(composed.item_starts)
        if state.mode == ParserState.IN_LIST:
            logger.debug(f"Table opens over a {state.list_kind.value} list")
        row = infer_row(composed, list(columns), thresholds)
        return ClassifierState(
            mode=ParserState.IN_TABLE,
            table_columns=columns,
            table_rows=(row,),
        ), blocks

    # ─── 4. List item ───
    marker = match_list(composed.text)
    if marker:
        kind, number = marker
        if state.mode == ParserState.IN_LIST and state.list_kind != kind:
            logger.debug(
                f"List switches from {state.list_kind.value} to {kind.value}"
            )
        blocks.append(Block(
            type=BlockType.LIST_ITEM,
            page_number=page_number,
            list_kind=kind,
            number=number,
            runs=strip_marker(composed.runs),
        ))
        return ClassifierState(mode=ParserState.IN_LIST, list_kind=kind), blocks

    # ─── 5. Paragraph ───
    blocks.append(Block(
        type=BlockType.PARAGRAPH,
        page_number=page_number,
        runs=composed.runs,
    ))
    return IDLE, blocks


class StateMachineParser:
    """
    Finite State Machine that transforms the composed lines of one page into
    an ordered block sequence. State is reset for every page.
    """

    def __init__(self, thresholds: Optional[LayoutThresholds] = None):
        self.thresholds = thresholds or LayoutThresholds()
        self.state = IDLE

    def reset(self):
        """Reset the state machine for a fresh page."""
        self.state = IDLE

    def parse(
        self,
        lines: list[ComposedLine],
        stats: PageStats,
        page_number: int = 1,
    ) -> list[Block]:
        """Classify a page's lines into blocks."""
        self.reset()
        blocks: list[Block] = []

        for composed in lines:
            self.state, emitted = transition(
                self.state, composed, stats, self.thresholds, page_number
            )
            blocks.extend(emitted)

        self.state, emitted = flush(self.state, page_number)
        blocks.extend(emitted)
        return blocks
