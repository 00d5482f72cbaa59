"""
Token Sources
=============
Produce positioned text tokens per page, plus the font style table.

PdfTokenSource reads PDF files with PyMuPDF (fitz); JsonTokenSource replays
a token dump written by the engine. Both normalize raw items of the form
``{text, transform: [a, b, c, d, e, f], width, font_ref}`` into TextTokens:
``transform[4]``/``transform[5]`` are x/y and ``|transform[3]|`` is the
glyph height.
"""

from __future__ import annotations

import json
import logging
import math
import re
from pathlib import Path
from typing import Iterable, Iterator, Optional

import fitz  # PyMuPDF

from .errors import ExtractionError
from .models import FontStyle, PageTokens, TextToken

logger = logging.getLogger(__name__)

# Unpaired UTF-16 halves survive JSON decoding but cannot be encoded
_SURROGATES = re.compile(r"[\ud800-\udfff]")


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def token_from_item(item: dict, page_index: int = 0) -> TextToken:
    """
    Build a TextToken from a raw token-source item.

    A missing or short transform yields non-finite coordinates; the line
    clusterer drops such tokens.
    """
    transform = item.get("transform") or []
    if len(transform) < 6:
        logger.debug(f"Malformed transform on page {page_index + 1}: {transform!r}")
        transform = [math.nan] * 6

    return TextToken(
        text=_SURROGATES.sub("", str(item.get("text", item.get("str", "")))),
        x=_as_float(transform[4]),
        y=_as_float(transform[5]),
        width=_as_float(item.get("width", 0.0)),
        height=abs(_as_float(transform[3])),
        font_ref=str(item.get("font_ref", item.get("fontName", ""))),
        page_index=page_index,
    )


def token_to_item(token: TextToken) -> dict:
    """Inverse of token_from_item, used for token dumps."""
    return {
        "text": token.text,
        "transform": [token.height, 0.0, 0.0, token.height, token.x, token.y],
        "width": token.width,
        "font_ref": token.font_ref,
    }


def page_from_dict(data: dict, page_number: int) -> PageTokens:
    """Build PageTokens from one page of the token contract."""
    page_index = page_number - 1
    styles = {
        ref: FontStyle(family=str((style or {}).get("family", "")))
        for ref, style in (data.get("styles") or {}).items()
    }
    tokens = [token_from_item(item, page_index) for item in data.get("items") or []]
    return PageTokens(page_number=page_number, tokens=tokens, styles=styles)


def dump_pages(pages: Iterable[PageTokens]) -> dict:
    """Serialize pages back into the token contract."""
    return {
        "pages": [
            {
                "page_number": page.page_number,
                "items": [token_to_item(t) for t in page.tokens],
                "styles": {
                    ref: {"family": style.family}
                    for ref, style in page.styles.items()
                },
            }
            for page in pages
        ]
    }


class PdfTokenSource:
    """
    Handles PDF ingestion and token extraction.

    Every text span of ``page.get_text("dict")`` becomes one token. PyMuPDF
    measures y downward from the top edge, so the span origin is flipped
    against the page height.
    """

    def __init__(
        self,
        page_range: Optional[tuple[int, int]] = None,
        skip_failed_pages: bool = False,
    ):
        self.page_range = page_range
        self.skip_failed_pages = skip_failed_pages

    def get_page_count(self, pdf_path: str) -> int:
        """Get total number of pages in the PDF."""
        with self._open(pdf_path) as doc:
            return doc.page_count

    def iter_pages(
        self,
        pdf_path: str,
        progress_callback: Optional[callable] = None,
    ) -> Iterator[PageTokens]:
        """
        Yield PageTokens lazily, one page at a time.

        Args:
            pdf_path: Path to the PDF file.
            progress_callback: Optional callable(current, total).

        Raises:
            ExtractionError: If the file or one of its pages cannot be decoded.
        """
        with self._open(pdf_path) as doc:
            total_pages = doc.page_count

            # Determine page range (1-indexed)
            start_page = 1
            end_page = total_pages
            if self.page_range:
                start_page = max(1, self.page_range[0])
                end_page = min(total_pages, self.page_range[1])

            logger.info(
                f"Extracting tokens from {pdf_path} "
                f"(pages {start_page} to {end_page})"
            )

            for page_idx in range(start_page - 1, end_page):
                page_num = page_idx + 1
                try:
                    page = doc[page_idx]
                    page_tokens = self._extract_page(page, page_idx)
                except Exception as e:
                    if not self.skip_failed_pages:
                        raise ExtractionError(
                            f"Failed to decode page {page_num}: {e}", page_num
                        ) from e
                    logger.warning(f"Skipping page {page_num}: {e}")
                    page_tokens = PageTokens(page_number=page_num, error=str(e))

                yield page_tokens

                if progress_callback:
                    progress_callback(
                        page_num - start_page + 1, end_page - start_page + 1
                    )

    def _open(self, pdf_path: str) -> fitz.Document:
        try:
            return fitz.open(pdf_path)
        except (RuntimeError, ValueError) as e:
            raise ExtractionError(f"Cannot open PDF {pdf_path}: {e}") from e

    def _extract_page(self, page: fitz.Page, page_idx: int) -> PageTokens:
        page_height = page.rect.height
        tokens: list[TextToken] = []
        styles: dict[str, FontStyle] = {}

        page_dict = page.get_text("dict")
        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:  # Text only
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    font = span.get("font", "")
                    x0, _, x1, _ = span["bbox"]
                    origin_x, origin_y = span["origin"]
                    size = float(span.get("size", 0.0))

                    tokens.append(token_from_item({
                        "text": span.get("text", ""),
                        "transform": [
                            size, 0.0, 0.0, size,
                            origin_x, page_height - origin_y,
                        ],
                        "width": x1 - x0,
                        "font_ref": font,
                    }, page_idx))
                    styles.setdefault(font, FontStyle(family=font))

        logger.debug(f"Page {page_idx + 1}: {len(tokens)} tokens")
        return PageTokens(page_number=page_idx + 1, tokens=tokens, styles=styles)


class JsonTokenSource:
    """
    Replays the token contract from JSON.

    Accepts a path to a dump file or already-parsed data of the form
    ``{"pages": [{"items": [...], "styles": {...}}, ...]}``.
    """

    def __init__(self, source, skip_failed_pages: bool = False):
        self.source = source
        self.skip_failed_pages = skip_failed_pages

    def _load(self) -> dict:
        data = self.source
        if not isinstance(data, dict):
            try:
                with open(self.source, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, TypeError, json.JSONDecodeError) as e:
                raise ExtractionError(f"Cannot read token dump {self.source}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("pages", []), list):
            raise ExtractionError("Token dump must be an object with a \"pages\" list")
        return data

    def get_page_count(self) -> int:
        return len(self._load().get("pages") or [])

    def iter_pages(self) -> Iterator[PageTokens]:
        data = self._load()
        for idx, page in enumerate(data.get("pages") or []):
            page_number = idx + 1
            try:
                page_number = int(page.get("page_number") or page_number)
                page_tokens = page_from_dict(page, page_number)
            except (AttributeError, TypeError, ValueError) as e:
                if not self.skip_failed_pages:
                    raise ExtractionError(
                        f"Malformed token data for page {page_number}: {e}",
                        page_number,
                    ) from e
                logger.warning(f"Skipping page {page_number}: {e}")
                page_tokens = PageTokens(
                    page_number=max(page_number, 1), error=str(e)
                )
            yield page_tokens


def write_token_dump(pages: Iterable[PageTokens], filepath: Path):
    """Save a token dump that JsonTokenSource can replay."""
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(dump_pages(pages), f, indent=2, ensure_ascii=False)
