"""
PDF Structure Engine
====================
Rebuilds semantic structure (paragraphs, headings, lists, grid tables) from
the positioned text tokens of a PDF, with no structural markup to read.

Architecture:
    - Token Source: Yields positioned, styled text tokens per page
    - Line Builder: Clusters tokens into visual lines and composes their text
    - State Machine: Classifies lines into headings, lists, tables, paragraphs
    - Column Inferencer: Slots table-row tokens into fixed column positions
    - Emitter: Serializes the block sequence to an HTML fragment

Version: 1.0.0
"""

__version__ = "1.0.0"
