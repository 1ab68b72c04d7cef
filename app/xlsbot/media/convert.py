"""Spreadsheet conversion -- first worksheet of an ``.xlsx`` to an HTML table.

One canonical table render feeds both outputs: an indented copy for chat
snippets and a standalone document for file delivery. Output depends only
on the workbook bytes.
"""

from __future__ import annotations

import datetime as dt
import html
import io
import logging
import re
from dataclasses import dataclass
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from ..dispatch.errors import ParseError
from ..util.async_helpers import run_sync

logger = logging.getLogger(__name__)

PREVIEW_FILENAME = "table_preview.html"

_BLOCK_TAGS = frozenset({"html", "head", "body", "table", "thead", "tbody", "tfoot", "tr"})
_TOKEN_RE = re.compile(r"<(/?)([A-Za-z][A-Za-z0-9]*)[^>]*>|<![^>]*>|[^<]+")


@dataclass(frozen=True, slots=True)
class ConversionResult:
    preview_html: str
    downloadable_html: str
    sheet_name: str = ""


@dataclass(frozen=True, slots=True)
class _RenderedSheet:
    name: str
    table_html: str


def parse_first_sheet_as_html(data: bytes) -> str:
    """Return the canonical ``<table>`` render of the first worksheet."""
    return _render_first_sheet(data).table_html


def _render_first_sheet(data: bytes) -> _RenderedSheet:
    if not data:
        raise ParseError("Empty file is not a spreadsheet")
    try:
        workbook = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as exc:
        raise ParseError(f"Not a readable .xlsx workbook: {exc}") from exc
    try:
        sheet = first_worksheet(workbook)
        return _RenderedSheet(name=sheet.title, table_html=render_sheet(sheet))
    finally:
        workbook.close()


def first_worksheet(workbook: Workbook) -> Worksheet:
    """The leftmost tab, which must be a worksheet rather than a chartsheet."""
    if not workbook.sheetnames:
        raise ParseError("Workbook has no sheets")
    first = workbook[workbook.sheetnames[0]]
    if not isinstance(first, Worksheet):
        raise ParseError(f"First sheet {first.title!r} is not a worksheet")
    return first


def render_sheet(sheet: Worksheet) -> str:
    spans: dict[tuple[int, int], tuple[int, int]] = {}
    covered: set[tuple[int, int]] = set()
    for merged in sheet.merged_cells.ranges:
        spans[(merged.min_row, merged.min_col)] = (
            merged.max_row - merged.min_row + 1,
            merged.max_col - merged.min_col + 1,
        )
        for row in range(merged.min_row, merged.max_row + 1):
            for col in range(merged.min_col, merged.max_col + 1):
                if (row, col) != (merged.min_row, merged.min_col):
                    covered.add((row, col))

    max_row = max(sheet.max_row, 1)
    max_col = max(sheet.max_column, 1)
    parts = ["<table>"]
    rows = sheet.iter_rows(min_row=1, max_row=max_row, min_col=1, max_col=max_col, values_only=True)
    for r, values in enumerate(rows, start=1):
        parts.append("<tr>")
        for c, value in enumerate(values, start=1):
            if (r, c) in covered:
                continue
            attrs = ""
            rowspan, colspan = spans.get((r, c), (1, 1))
            if rowspan > 1:
                attrs += f' rowspan="{rowspan}"'
            if colspan > 1:
                attrs += f' colspan="{colspan}"'
            text = html.escape(format_cell(value)).replace("\n", "<br/>")
            parts.append(f"<td{attrs}>{text}</td>")
        parts.append("</tr>")
    parts.append("</table>")
    return "".join(parts)


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def pretty_html(markup: str, indent: str = "  ") -> str:
    """Put each block-level tag on its own indented line.

    Text and inline elements (cells included) are emitted verbatim, so the
    table contents are identical before and after.
    """
    lines: list[str] = []
    inline: list[str] = []
    depth = 0

    def flush() -> None:
        if inline:
            lines.append(indent * depth + "".join(inline))
            inline.clear()

    for match in _TOKEN_RE.finditer(markup):
        token = match.group(0)
        tag = (match.group(2) or "").lower()
        if tag in _BLOCK_TAGS:
            flush()
            if match.group(1):
                depth = max(depth - 1, 0)
                lines.append(indent * depth + token)
            else:
                lines.append(indent * depth + token)
                depth += 1
        elif token.startswith("<!"):
            flush()
            lines.append(indent * depth + token)
        elif token.strip() or inline:
            inline.append(token)
    flush()
    return "\n".join(lines) + "\n"


def standalone_document(table_html: str, title: str = "") -> str:
    return (
        "<!DOCTYPE html>"
        "<html><head>"
        '<meta charset="utf-8"/>'
        f"<title>{html.escape(title or 'Table preview')}</title>"
        "</head><body>"
        f"{table_html}"
        "</body></html>"
    )


class SpreadsheetConverter:
    """Turns workbook bytes into a chat preview and a downloadable page."""

    async def convert(self, data: bytes) -> ConversionResult:
        rendered = await run_sync(_render_first_sheet, data)
        logger.info(
            "[convert] sheet %r rendered (%d bytes of html)",
            rendered.name, len(rendered.table_html),
        )
        return ConversionResult(
            preview_html=pretty_html(rendered.table_html),
            downloadable_html=standalone_document(rendered.table_html, rendered.name),
            sheet_name=rendered.name,
        )
