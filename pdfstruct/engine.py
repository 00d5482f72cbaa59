"""
PDF Structure Engine
====================
Main orchestrator that combines token extraction, line building, state
machine classification, validation and HTML emission into a complete
conversion pipeline.

Usage:
    engine = ConversionEngine(config)
    result = engine.convert("path/to/document.pdf")
    # result.html is the reconstructed fragment

Architecture:
    PDF → PdfTokenSource → PageTokens → cluster_lines → compose_line →
    StateMachineParser → Blocks → render_html (per page) → ConversionResult

Pages are processed one at a time, end to end, in page order. One engine
runs one conversion at a time; overlapping requests are rejected.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from . import __version__
from .config import LayoutThresholds
from .emitter import render_html
from .errors import ConverterBusyError
from .line_builder import cluster_lines, compose_line, compute_page_stats
from .models import (
    ConversionResult,
    ConversionVersion,
    DocumentMetadata,
    PageResult,
    PageTokens,
)
from .state_machine import StateMachineParser
from .token_source import JsonTokenSource, PdfTokenSource, write_token_dump
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ConverterConfig:
    """Configuration for the conversion engine."""

    # Layout heuristics
    thresholds: LayoutThresholds = field(default_factory=LayoutThresholds)

    # Processing
    page_range: Optional[tuple[int, int]] = None
    skip_failed_pages: bool = False

    # Output settings (nothing is written when output_dir is None)
    output_dir: Optional[str] = None
    document_id: Optional[str] = None
    save_raw_tokens: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ConversionEngine:
    """
    Main PDF structure conversion engine.

    Orchestrates the full pipeline:
        1. Token extraction (per page, lazily)
        2. Line clustering and composition
        3. State machine classification
        4. HTML emission
        5. Validation
    """

    def __init__(self, config: Optional[ConverterConfig] = None):
        self.config = config or ConverterConfig()
        self._busy = threading.Lock()
        self._setup_logging()

    @property
    def busy(self) -> bool:
        """True while a conversion is in flight."""
        return self._busy.locked()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        pkg_logger = logging.getLogger("pdfstruct")
        pkg_logger.setLevel(log_level)

        # Console handler
        if not pkg_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            pkg_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            pkg_logger.addHandler(file_handler)

    @contextmanager
    def _exclusive(self):
        if not self._busy.acquire(blocking=False):
            raise ConverterBusyError("A conversion is already in progress")
        try:
            yield
        finally:
            self._busy.release()

    # ─── Page Pipeline ────────────────────────────────────────────────────────

    def convert_page(self, page: PageTokens) -> tuple[PageResult, str]:
        """
        Convert a single page into blocks and its HTML fragment.

        Classifier state is created fresh for every page.
        """
        if page.error is not None:
            return PageResult(
                page_number=page.page_number,
                skipped=True,
                error=page.error,
            ), ""

        thresholds = self.config.thresholds
        stats = compute_page_stats(page.tokens, thresholds)
        lines = cluster_lines(page.tokens, stats, thresholds)
        composed = [compose_line(line, page.styles, thresholds) for line in lines]

        parser = StateMachineParser(thresholds)
        blocks = parser.parse(composed, stats, page.page_number)

        if not lines:
            logger.info(f"Page {page.page_number}: no text tokens")
        else:
            logger.info(
                f"Page {page.page_number}: {len(lines)} lines → {len(blocks)} blocks "
                f"(median glyph height {stats.median_glyph_height:.2f})"
            )

        result = PageResult(
            page_number=page.page_number,
            line_count=len(lines),
            token_count=len(page.tokens),
            blocks=blocks,
        )
        return result, render_html(blocks)

    def convert_pages(
        self,
        pages: Iterable[PageTokens],
        document: Optional[DocumentMetadata] = None,
    ) -> ConversionResult:
        """
        Convert a page sequence into one result.

        The whole sequence succeeds or fails as a unit: an ExtractionError
        raised by the page iterator propagates and no partial result is
        returned.

        Raises:
            ConverterBusyError: If another conversion is still running.
            ExtractionError: If the token source fails on a page.
        """
        with self._exclusive():
            return self._run(pages, document or DocumentMetadata())

    def _run(
        self,
        pages: Iterable[PageTokens],
        document: DocumentMetadata,
    ) -> ConversionResult:
        start_time = time.time()
        page_results: list[PageResult] = []
        fragments: list[str] = []
        kept_tokens: list[PageTokens] = []

        for page in pages:
            result, fragment = self.convert_page(page)
            page_results.append(result)
            fragments.append(fragment)
            if self.config.save_raw_tokens:
                kept_tokens.append(page)

        logger.info("Validating reconstructed structure")
        report = ValidationEngine().validate(page_results)

        if not document.total_pages:
            document.total_pages = len(page_results)

        result = ConversionResult(
            document=document,
            version=ConversionVersion(
                converter_version=__version__,
                token_count=sum(p.token_count for p in page_results),
                block_count=report.block_count,
            ),
            pages=page_results,
            report=report,
            html="".join(fragments),
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Conversion complete in {elapsed:.2f}s — "
            f"{len(page_results)} pages, {report.block_count} blocks"
        )

        if self.config.output_dir:
            self._save_outputs(result, kept_tokens)

        return result

    # ─── Entry Points ─────────────────────────────────────────────────────────

    def convert(
        self,
        pdf_path: str,
        progress_callback: Optional[callable] = None,
    ) -> ConversionResult:
        """
        Convert a PDF file into an HTML fragment.

        Args:
            pdf_path: Path to the PDF file to convert.
            progress_callback: Callback(page_num, total_pages) called on each page.

        Returns:
            ConversionResult with blocks per page, report and HTML.

        Raises:
            FileNotFoundError: If the PDF file doesn't exist.
            ExtractionError: If the PDF or one of its pages cannot be decoded.
            ConverterBusyError: If another conversion is still running.
        """
        pdf_path = os.path.abspath(pdf_path)

        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        with self._exclusive():
            logger.info(f"Starting conversion of: {pdf_path}")

            source = PdfTokenSource(
                page_range=self.config.page_range,
                skip_failed_pages=self.config.skip_failed_pages,
            )
            document = self._build_document_metadata(pdf_path)
            document.total_pages = source.get_page_count(pdf_path)

            return self._run(
                source.iter_pages(pdf_path, progress_callback=progress_callback),
                document,
            )

    def convert_tokens(self, source) -> ConversionResult:
        """
        Convert a token dump (path or parsed data) into an HTML fragment.

        Raises:
            ExtractionError: If the dump or one of its pages is malformed.
            ConverterBusyError: If another conversion is still running.
        """
        with self._exclusive():
            token_source = JsonTokenSource(
                source, skip_failed_pages=self.config.skip_failed_pages
            )
            name = Path(source).stem if isinstance(source, (str, Path)) else "tokens"
            document = DocumentMetadata(
                name=name,
                total_pages=token_source.get_page_count(),
            )
            return self._run(token_source.iter_pages(), document)

    # ─── Metadata & Output ────────────────────────────────────────────────────

    def _build_document_metadata(self, pdf_path: str) -> DocumentMetadata:
        """Build document metadata from file info."""
        return DocumentMetadata(
            name=Path(pdf_path).stem,
            source_pdf=os.path.basename(pdf_path),
            file_hash=self._compute_file_hash(pdf_path),
            file_size_bytes=os.path.getsize(pdf_path),
        )

    def _compute_file_hash(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _document_id(self, document: DocumentMetadata) -> str:
        """Filesystem-safe identifier for output files."""
        name = self.config.document_id or document.name or "document"
        clean_name = "".join(
            c if c.isalnum() or c in "-_" else "_"
            for c in name
        )
        return clean_name[:50]

    def _save_outputs(self, result: ConversionResult, pages: list[PageTokens]):
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        doc_id = self._document_id(result.document)

        html_file = output_dir / f"{doc_id}.html"
        try:
            html_file.write_text(result.html, encoding="utf-8")
            logger.info(f"Saved HTML output: {html_file}")
        except OSError as e:
            logger.error(f"Failed to save HTML: {e}")

        self._save_json(result, output_dir / f"{doc_id}_result.json")

        if self.config.save_raw_tokens:
            tokens_file = output_dir / f"{doc_id}_tokens.json"
            try:
                write_token_dump(pages, tokens_file)
                logger.info(f"Saved token snapshot: {tokens_file}")
            except OSError as e:
                logger.error(f"Failed to save token snapshot: {e}")

    def _save_json(self, result: ConversionResult, filepath: Path):
        """Save ConversionResult to JSON file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(
                    result.model_dump(mode="json"),
                    f, indent=2, ensure_ascii=False, default=str,
                )
            logger.info(f"Saved JSON output: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON: {e}")
