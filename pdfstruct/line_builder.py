"""
Line Builder
============
Groups a page's tokens into visual lines and composes each line's text.

Clustering tolerance and heading baselines are derived from the page's own
median glyph height rather than fixed constants, so small vertical jitter
(superscripts, diacritics) stays on its line.
"""

from __future__ import annotations

import logging
import math

from .config import LayoutThresholds
from .models import (
    ComposedLine,
    FontStyle,
    Line,
    PageStats,
    TextRun,
    TextToken,
)

logger = logging.getLogger(__name__)


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def sanitize_tokens(tokens: list[TextToken]) -> list[TextToken]:
    """Drop blank tokens and tokens without a usable position."""
    kept: list[TextToken] = []
    for token in tokens:
        if not token.text.strip():
            continue
        if not (math.isfinite(token.x) and math.isfinite(token.y)):
            logger.debug(f"Dropping token with non-finite position: {token.text!r}")
            continue
        if not (math.isfinite(token.width) and math.isfinite(token.height)):
            token = token.model_copy(update={
                "width": _finite(token.width),
                "height": _finite(token.height),
            })
        kept.append(token)
    return kept


def compute_page_stats(
    tokens: list[TextToken],
    thresholds: LayoutThresholds = LayoutThresholds(),
) -> PageStats:
    """Median glyph height over every token of the page (upper median)."""
    heights = sorted(
        abs(t.height) for t in tokens
        if math.isfinite(t.height) and abs(t.height) > 0
    )
    if not heights:
        return PageStats(median_glyph_height=thresholds.default_glyph_height)
    return PageStats(median_glyph_height=heights[len(heights) // 2])


def cluster_lines(
    tokens: list[TextToken],
    stats: PageStats,
    thresholds: LayoutThresholds = LayoutThresholds(),
) -> list[Line]:
    """
    Group tokens into lines, top to bottom.

    Each token joins the first existing cluster whose representative y lies
    within the tolerance; otherwise it starts a new cluster keyed by its own y.
    """
    tolerance = stats.median_glyph_height * thresholds.cluster_tolerance_ratio
    clusters: dict[float, list[TextToken]] = {}

    for token in sanitize_tokens(tokens):
        found_key = None
        for key in clusters:
            if abs(key - token.y) < tolerance:
                found_key = key
                break
        if found_key is None:
            clusters[token.y] = [token]
        else:
            clusters[found_key].append(token)

    return [
        Line(y=y, tokens=sorted(clusters[y], key=lambda t: t.x))
        for y in sorted(clusters, reverse=True)
    ]


def compose_line(
    line: Line,
    styles: dict[str, FontStyle],
    thresholds: LayoutThresholds = LayoutThresholds(),
) -> ComposedLine:
    """
    Rebuild a line's text, runs, item starts and wide gaps.

    Runs are one per token and are never merged; inferred spaces are plain
    runs of their own.
    """
    runs: list[TextRun] = []
    token_runs: list[TextRun] = []
    item_starts: list[float] = []
    gaps: list[float] = []
    last_end = None

    for token in line.tokens:
        style = styles.get(token.font_ref)
        run = TextRun(text=token.text, bold=bool(style and style.is_bold))

        if last_end is None:
            item_starts.append(token.x)
        else:
            gap = token.x - last_end
            if gap > thresholds.space_gap:
                runs.append(TextRun(text=" "))
            if gap > thresholds.item_gap:
                gaps.append(gap)
                item_starts.append(token.x)

        runs.append(run)
        token_runs.append(run)
        last_end = token.x + token.width

    return ComposedLine(
        line=line,
        text="".join(r.text for r in runs),
        runs=runs,
        token_runs=token_runs,
        item_starts=item_starts,
        gaps=gaps,
    )
