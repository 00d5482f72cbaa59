"""
Data Models
===========
Pydantic models for tokens, lines, reconstructed blocks and conversion output.
All models are serializable to JSON for the HTTP service and token dumps.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


NBSP = "\u00a0"


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockType(str, Enum):
    """Kind of structural block reconstructed from a page."""
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST_ITEM = "list_item"
    TABLE = "table"


class ListKind(str, Enum):
    """Marker family of a list item."""
    BULLET = "bullet"
    ORDERED = "ordered"


# ─── Token Models ─────────────────────────────────────────────────────────────


class FontStyle(BaseModel):
    """Style table entry for one font reference."""
    family: str = ""

    @computed_field
    @property
    def is_bold(self) -> bool:
        return "bold" in self.family.lower()


class TextToken(BaseModel):
    """
    One positioned run of characters as reported by the token source.
    Coordinates are in page space with y growing toward the top of the page.
    """
    model_config = ConfigDict(frozen=True)

    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    font_ref: str = ""
    page_index: int = Field(default=0, ge=0)


class PageTokens(BaseModel):
    """Everything the token source yields for a single page."""
    page_number: int = Field(ge=1)
    tokens: list[TextToken] = Field(default_factory=list)
    styles: dict[str, FontStyle] = Field(default_factory=dict)
    error: Optional[str] = Field(
        default=None,
        description="Set when the page could not be decoded and was skipped",
    )


class PageStats(BaseModel):
    """Per-page typography statistics."""
    median_glyph_height: float


# ─── Line Models ──────────────────────────────────────────────────────────────


class Line(BaseModel):
    """Tokens sharing one vertical cluster, sorted left to right."""
    y: float
    tokens: list[TextToken] = Field(default_factory=list)

    @property
    def max_height(self) -> float:
        return max((abs(t.height) for t in self.tokens), default=0.0)


class TextRun(BaseModel):
    """A styled piece of text inside a block."""
    text: str
    bold: bool = False


class ComposedLine(BaseModel):
    """
    A line with its reconstructed text and layout signals.

    `runs` includes the inferred inter-token spaces; `token_runs` holds one
    run per token, in token order, for column slotting.
    """
    line: Line
    text: str = ""
    runs: list[TextRun] = Field(default_factory=list)
    token_runs: list[TextRun] = Field(default_factory=list)
    item_starts: list[float] = Field(default_factory=list)
    gaps: list[float] = Field(default_factory=list)

    @property
    def max_height(self) -> float:
        return self.line.max_height


# ─── Block Models ─────────────────────────────────────────────────────────────


class TableRow(BaseModel):
    """One grid row; always one cell per table column."""
    cells: list[list[TextRun]] = Field(default_factory=list)

    @property
    def texts(self) -> list[str]:
        return ["".join(r.text for r in cell) for cell in self.cells]


class Block(BaseModel):
    """
    A reconstructed structural block.
    Tables carry their rows; every other kind carries text runs.
    """
    type: BlockType
    page_number: int = Field(default=1, ge=1)
    runs: list[TextRun] = Field(default_factory=list)
    level: Optional[int] = None
    list_kind: Optional[ListKind] = None
    number: Optional[int] = None
    columns: list[float] = Field(default_factory=list)
    rows: list[TableRow] = Field(default_factory=list)

    @computed_field
    @property
    def text(self) -> str:
        if self.type == BlockType.TABLE:
            return "\n".join(" | ".join(row.texts) for row in self.rows)
        return "".join(r.text for r in self.runs)


class PageResult(BaseModel):
    """Blocks reconstructed from one page."""
    page_number: int = Field(ge=1)
    line_count: int = 0
    token_count: int = 0
    blocks: list[Block] = Field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None


# ─── Conversion Result Models ────────────────────────────────────────────────


class DocumentMetadata(BaseModel):
    """Metadata about the source document."""
    name: str = ""
    source_pdf: str = ""
    total_pages: int = 0
    file_hash: str = ""
    file_size_bytes: int = 0


class ConversionVersion(BaseModel):
    """Version tracking for a conversion run."""
    converter_version: str = "1.0.0"
    conversion_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    token_count: int = 0
    block_count: int = 0


class ConversionReport(BaseModel):
    """Post-conversion structural report."""
    total_pages: int = 0
    empty_pages: list[int] = Field(default_factory=list)
    skipped_pages: list[int] = Field(default_factory=list)
    line_count: int = 0
    headings: int = 0
    paragraphs: int = 0
    list_items: int = 0
    tables: int = 0
    table_rows: int = 0
    mismatched_table_rows: int = 0

    @computed_field
    @property
    def block_count(self) -> int:
        return self.headings + self.paragraphs + self.list_items + self.tables


class ConversionResult(BaseModel):
    """
    Complete output of a conversion run.
    This is the top-level JSON structure returned by the service.
    """
    document: DocumentMetadata
    version: ConversionVersion
    pages: list[PageResult] = Field(default_factory=list)
    report: ConversionReport = Field(default_factory=ConversionReport)
    html: str = ""
