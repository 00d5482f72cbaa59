"""Exceptions surfaced to callers of the conversion engine."""

from __future__ import annotations

from typing import Optional


class ConversionError(RuntimeError):
    """Base class for conversion failures."""


class ExtractionError(ConversionError):
    """The token source could not decode the document or one of its pages."""

    def __init__(self, message: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.page_number = page_number


class ConverterBusyError(ConversionError):
    """A conversion was requested while another one is still running."""
