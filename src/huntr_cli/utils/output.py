"""Rendering of list results as table, JSON, CSV, Excel or PDF."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape as xml_escape

import pandas as pd
from rich import box
from rich.console import Console
from rich.table import Table
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, TableStyle
from reportlab.platypus import Table as PdfTable

from huntr_cli.utils.console import console, is_headless

logger = logging.getLogger(__name__)

MIN_DAYS = 1
MAX_DAYS = 365


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"
    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"


def parse_fields(value: Optional[str]) -> Optional[list[str]]:
    """Split a comma-separated --fields value, dropping blanks."""
    if not value:
        return None
    fields = [f.strip() for f in value.split(",") if f.strip()]
    return fields or None


def parse_types(value: Optional[str]) -> Optional[list[str]]:
    return parse_fields(value)


def validate_fields(available: list[str], requested: Optional[list[str]] = None) -> list[str]:
    """
    Check requested fields against what a command can output.

    Returns all available fields when nothing was requested.

    Raises:
        ValueError: listing the unknown fields and the valid ones.
    """
    if not requested:
        return list(available)

    invalid = [f for f in requested if f not in available]
    if invalid:
        raise ValueError(
            f"Unknown field(s): {', '.join(invalid)}\n"
            f"Available fields: {', '.join(available)}"
        )
    return requested


def parse_days(value: Optional[int], week: bool = False) -> Optional[int]:
    """Validate --days (1..365); --week means 7 unless --days is given."""
    if value is not None:
        if value < MIN_DAYS or value > MAX_DAYS:
            raise ValueError(f"Days must be a number between {MIN_DAYS} and {MAX_DAYS}")
        return value
    if week:
        return 7
    return None


def _cell(value: Any) -> Any:
    return "" if value is None else value


def select(rows: list[dict[str, Any]], fields: list[str]) -> list[dict[str, Any]]:
    """Project rows onto fields, in order, with missing values as ''."""
    return [{f: _cell(row.get(f)) for f in fields} for row in rows]


def to_dataframe(rows: list[dict[str, Any]], fields: list[str]) -> pd.DataFrame:
    return pd.DataFrame(select(rows, fields), columns=fields)


def format_csv(rows: list[dict[str, Any]], fields: list[str]) -> str:
    """CSV text; fields with commas, quotes or newlines are quoted."""
    return to_dataframe(rows, fields).to_csv(index=False, lineterminator="\n")


def format_json(rows: list[dict[str, Any]], fields: list[str]) -> str:
    return json.dumps([{f: row.get(f) for f in fields} for row in rows], indent=2, default=str)


def build_table(rows: list[dict[str, Any]], fields: list[str], title: Optional[str] = None) -> Table:
    table = Table(title=title, box=None if is_headless() else box.ROUNDED)
    for name in fields:
        table.add_column(name, style="cyan" if name == fields[0] else None, overflow="fold")
    for row in select(rows, fields):
        table.add_row(*(str(row[f]) for f in fields))
    return table


def write_excel(rows: list[dict[str, Any]], fields: list[str], path: Path, title: str = "Data") -> Path:
    # Excel caps sheet names at 31 characters
    to_dataframe(rows, fields).to_excel(path, index=False, sheet_name=title[:31] or "Data", engine="openpyxl")
    logger.debug(f"Wrote {len(rows)} rows to {path}")
    return path


def write_pdf(rows: list[dict[str, Any]], fields: list[str], path: Path, title: str = "Data") -> Path:
    """Landscape PDF: title, generation time, then one table with a repeated header row."""
    styles = getSampleStyleSheet()
    cell_style = styles["BodyText"]
    doc = SimpleDocTemplate(
        str(path),
        pagesize=landscape(letter),
        leftMargin=40,
        rightMargin=40,
        topMargin=40,
        bottomMargin=40,
        title=title,
    )

    generated = datetime.now(timezone.utc).isoformat(timespec="seconds")
    story = [
        Paragraph(xml_escape(title), styles["Title"]),
        Paragraph(f"Generated: {generated}", styles["Normal"]),
        Spacer(1, 12),
    ]

    if rows:
        data = [list(fields)] + [
            [Paragraph(xml_escape(str(row[f])), cell_style) for f in fields]
            for row in select(rows, fields)
        ]
        table = PdfTable(data, colWidths=[doc.width / len(fields)] * len(fields), repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e8e8e8")),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        story.append(table)
    else:
        story.append(Paragraph("No results.", styles["Normal"]))

    doc.build(story)
    logger.debug(f"Wrote {len(rows)} rows to {path}")
    return path


def render(
    rows: list[dict[str, Any]],
    fields: list[str],
    fmt: OutputFormat = OutputFormat.TABLE,
    title: str = "Data",
    output: Optional[Path] = None,
) -> Optional[Path]:
    """
    Print rows in the requested format, or write them to a file.

    Text formats go to stdout unless ``output`` is given. Excel and PDF always
    write a file, ``<title>.xlsx`` or ``<title>.pdf`` by default. Returns the
    written path, if any.
    """
    if fmt == OutputFormat.EXCEL:
        path = output or Path(f"{title}.xlsx")
        return write_excel(rows, fields, path, title)

    if fmt == OutputFormat.PDF:
        path = output or Path(f"{title}.pdf")
        return write_pdf(rows, fields, path, title)

    if fmt == OutputFormat.TABLE:
        if output is None:
            if not rows:
                console.print("[dim]No results.[/dim]")
            else:
                console.print(build_table(rows, fields, title))
            return None
        with open(output, "w", encoding="utf-8") as f:
            Console(file=f, width=200, no_color=True).print(build_table(rows, fields, title))
        return output

    if fmt == OutputFormat.JSON:
        text = format_json(rows, fields)
    else:
        text = format_csv(rows, fields)

    if output is not None:
        output.write_text(text if text.endswith("\n") else text + "\n", encoding="utf-8")
        return output

    # Plain print: rich would reflow JSON/CSV and interpret brackets
    print(text.rstrip("\n"))
    return None
