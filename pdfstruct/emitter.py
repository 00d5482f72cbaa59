"""
Block Emitter
=============
Serializes a block sequence into an HTML fragment with lxml.

Contiguous list items of the same kind share one list container; tables
wrap their rows in a scrollable container. No structural inference happens
here.
"""

from __future__ import annotations

import re

from lxml import etree

from .models import Block, BlockType, ListKind, TableRow, TextRun

# Characters lxml refuses in text nodes, lone surrogates included
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

TABLE_WRAPPER_STYLE = "overflow-x:auto;width:100%;"
TABLE_STYLE = "border-collapse:collapse;width:100%;"
CELL_STYLE = "border:1px solid #ddd;padding:8px;vertical-align:top;"


def _append_text(parent: etree._Element, text: str):
    text = _INVALID_XML_CHARS.sub("", text)
    if len(parent):
        last = parent[-1]
        last.tail = (last.tail or "") + text
    else:
        parent.text = (parent.text or "") + text


def append_runs(parent: etree._Element, runs: list[TextRun]):
    """Append runs as text, wrapping bold runs in <strong>."""
    for run in runs:
        if run.bold:
            strong = etree.SubElement(parent, "strong")
            strong.text = _INVALID_XML_CHARS.sub("", run.text)
        else:
            _append_text(parent, run.text)


def _build_row(tbody: etree._Element, row: TableRow):
    tr = etree.SubElement(tbody, "tr")
    for cell in row.cells:
        td = etree.SubElement(tr, "td", style=CELL_STYLE)
        append_runs(td, cell)


def _build_table(block: Block) -> etree._Element:
    wrapper = etree.Element(
        "div", {"data-table-wrapper": "true", "style": TABLE_WRAPPER_STYLE}
    )
    table = etree.SubElement(wrapper, "table", border="1", style=TABLE_STYLE)
    tbody = etree.SubElement(table, "tbody")
    for row in block.rows:
        if row.cells:
            _build_row(tbody, row)
    return wrapper


def build_elements(blocks: list[Block]) -> list[etree._Element]:
    """Turn blocks into top-level HTML elements."""
    elements: list[etree._Element] = []
    current_list = None
    current_kind = None

    for block in blocks:
        if block.type == BlockType.LIST_ITEM:
            if current_list is None or current_kind != block.list_kind:
                current_kind = block.list_kind
                tag = "ul" if current_kind == ListKind.BULLET else "ol"
                current_list = etree.Element(tag)
                if tag == "ol" and block.number not in (None, 1):
                    current_list.set("start", str(block.number))
                elements.append(current_list)
            li = etree.SubElement(current_list, "li")
            append_runs(li, block.runs)
            continue

        current_list = None
        current_kind = None

        if block.type == BlockType.HEADING:
            el = etree.Element(f"h{block.level or 3}")
            append_runs(el, block.runs)
        elif block.type == BlockType.TABLE:
            el = _build_table(block)
        else:
            el = etree.Element("p")
            append_runs(el, block.runs)
        elements.append(el)

    return elements


def render_html(blocks: list[Block]) -> str:
    """Serialize blocks to an HTML fragment string."""
    return "".join(
        etree.tostring(el, method="html", encoding="unicode")
        for el in build_elements(blocks)
    )
