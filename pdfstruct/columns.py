"""
Table Column Inferencer
=======================
Slots the tokens of a table line into the column set fixed when the table
opened. Columns never grow after that; the margin absorbs small drift.
"""

from __future__ import annotations

from .config import LayoutThresholds
from .models import NBSP, ComposedLine, TableRow, TextRun


def column_for(x: float, columns: list[float], margin: float) -> int:
    """Index of the greatest column start at or left of ``x + margin``."""
    index = 0
    for c, start in enumerate(columns):
        if start <= x + margin:
            index = c
    return index


def infer_row(
    composed: ComposedLine,
    columns: list[float],
    thresholds: LayoutThresholds = LayoutThresholds(),
) -> TableRow:
    """Build one table row with exactly ``len(columns)`` cells."""
    cells: list[list[TextRun]] = [[] for _ in columns]

    for token, run in zip(composed.line.tokens, composed.token_runs):
        cell = cells[column_for(token.x, columns, thresholds.column_margin)]
        if cell:
            cell.append(TextRun(text=" "))
        cell.append(run)

    for cell in cells:
        if not cell:
            cell.append(TextRun(text=NBSP))

    return TableRow(cells=cells)
