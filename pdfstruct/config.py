"""
Layout Thresholds
=================
Tunable constants for the layout heuristics. All distances are in page
layout units (PDF points); ratios are relative to the page's median glyph
height.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LayoutThresholds:
    """Heuristic parameters shared by the line builder and the classifier."""

    # Line clustering: tokens closer than ratio * median height share a line
    cluster_tolerance_ratio: float = 0.5

    # Heading detection
    heading_ratio: float = 1.2
    heading_h2_ratio: float = 1.5

    # Horizontal gaps
    space_gap: float = 2.0
    item_gap: float = 20.0
    table_gap: float = 30.0

    # Table columns
    column_tolerance: float = 20.0
    column_margin: float = 10.0

    # Used when a page has no token with a positive height
    default_glyph_height: float = 12.0
