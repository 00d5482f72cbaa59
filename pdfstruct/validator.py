"""
Validation Engine
=================
Post-conversion validation and reporting.

After converting each document, generates a report:
    - Total / Empty / Skipped Pages
    - Lines Reconstructed
    - Headings, Paragraphs, List Items
    - Tables and Table Rows
    - Table rows whose cell count drifted from the table's columns

Never silently ignores failures.
"""

from __future__ import annotations

import logging

from .models import BlockType, ConversionReport, PageResult

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates converted pages and produces a structural report.
    """

    def validate(self, pages: list[PageResult]) -> ConversionReport:
        """
        Run full validation on converted pages.

        Args:
            pages: Per-page conversion results, in page order.

        Returns:
            ConversionReport with block counts and detected issues.
        """
        report = ConversionReport()

        if not pages:
            logger.warning("No pages to validate")
            return report

        report.total_pages = len(pages)

        for page in pages:
            if page.skipped:
                report.skipped_pages.append(page.page_number)
                continue
            if not page.blocks:
                report.empty_pages.append(page.page_number)

            report.line_count += page.line_count

            for block in page.blocks:
                if block.type == BlockType.HEADING:
                    report.headings += 1
                elif block.type == BlockType.PARAGRAPH:
                    report.paragraphs += 1
                elif block.type == BlockType.LIST_ITEM:
                    report.list_items += 1
                elif block.type == BlockType.TABLE:
                    report.tables += 1
                    report.table_rows += len(block.rows)
                    for row in block.rows:
                        if len(row.cells) != len(block.columns):
                            report.mismatched_table_rows += 1
                            logger.error(
                                f"Table row on page {page.page_number} has "
                                f"{len(row.cells)} cells for "
                                f"{len(block.columns)} columns"
                            )

        # Log summary
        logger.info("=" * 60)
        logger.info("CONVERSION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Pages: {report.total_pages}")
        logger.info(f"Empty Pages: {len(report.empty_pages)}")
        logger.info(f"Skipped Pages: {len(report.skipped_pages)}")
        logger.info(f"Lines: {report.line_count}")
        logger.info(f"Headings: {report.headings}")
        logger.info(f"Paragraphs: {report.paragraphs}")
        logger.info(f"List Items: {report.list_items}")
        logger.info(f"Tables: {report.tables} ({report.table_rows} rows)")
        if report.mismatched_table_rows:
            logger.info(f"Mismatched Table Rows: {report.mismatched_table_rows}")
        logger.info("=" * 60)

        return report
