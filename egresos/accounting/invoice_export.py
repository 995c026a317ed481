"""Excel and PDF rendering of XML expense exports, plus the export-then-clear flow."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Callable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

import config
from egresos.accounting.aggregation import AggregationEngine, ExportMatrix, RowKind
from egresos.accounting.errors import ExportRenderError
from egresos.accounting.numbers import format_number
from egresos.accounting.storage import XmlStore

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1E40AF", end_color="1E40AF", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
BOLD_FONT = Font(bold=True)
BORDER = Border(
    left=Side(style="thin"), right=Side(style="thin"),
    top=Side(style="thin"), bottom=Side(style="thin"),
)
NUMBER_FORMAT = "#,##0.00"
BOLD_KINDS = {RowKind.TITLE, RowKind.SUBTOTAL, RowKind.SPLIT, RowKind.TOTAL}

FORMATS = {"excel": "xlsx", "pdf": "pdf"}


def export_excel(matrix: ExportMatrix, output_path: str | Path) -> Path:
    """Write the matrix to a single-sheet workbook."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = matrix.title[:31]

    for row_idx, row in enumerate(matrix.rows, 1):
        for col, value in enumerate(row.cells, 1):
            cell = ws.cell(row=row_idx, column=col, value=value)
            if row.kind == RowKind.HEADER:
                cell.fill = HEADER_FILL
                cell.font = HEADER_FONT
                cell.alignment = Alignment(horizontal="center", wrap_text=True)
                cell.border = BORDER
                continue
            if row.kind == RowKind.BLANK:
                continue
            if isinstance(value, (int, float)):
                cell.number_format = NUMBER_FORMAT
                cell.alignment = Alignment(horizontal="right")
            if row.kind in BOLD_KINDS:
                cell.font = BOLD_FONT
            if row.kind == RowKind.DATA:
                cell.border = BORDER

    for col in range(1, matrix.width + 1):
        max_len = max(
            (len(_display(ws.cell(row=r, column=col).value)) for r in range(1, ws.max_row + 1)),
            default=10,
        )
        ws.column_dimensions[get_column_letter(col)].width = min(max(max_len + 2, 12), 45)

    ws.freeze_panes = "A2"
    wb.save(str(output_path))
    logger.info(f"Excel exported to {output_path}")
    return output_path


def _display(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def export_pdf(matrix: ExportMatrix, output_path: str | Path) -> Path:
    """Landscape tabular report with bold header, titles and totals."""
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import B4, landscape
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import mm
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    doc = SimpleDocTemplate(
        str(output_path), pagesize=landscape(B4),
        leftMargin=14 * mm, rightMargin=14 * mm,
        topMargin=14 * mm, bottomMargin=14 * mm,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ExportTitle", parent=styles["Title"], fontSize=14, spaceAfter=6, alignment=0)
    cell_style = ParagraphStyle("ExportCell", parent=styles["Normal"], fontSize=8, leading=10)
    bold_cell_style = ParagraphStyle("ExportCellBold", parent=cell_style, fontName="Helvetica-Bold")

    data = []
    for row in matrix.rows:
        if row.kind == RowKind.HEADER:
            data.append([_display(v) for v in row.cells])
            continue
        style = bold_cell_style if row.kind in BOLD_KINDS else cell_style
        data.append([Paragraph(_escape(_display(v)), style) for v in row.cells])

    table_style = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1E40AF")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.grey),
    ]
    for idx, row in enumerate(matrix.rows):
        if row.kind == RowKind.DATA:
            table_style.append(("LINEBELOW", (0, idx), (-1, idx), 0.25, colors.lightgrey))
        elif row.kind == RowKind.TOTAL:
            table_style.append(("LINEABOVE", (0, idx), (-1, idx), 0.75, colors.black))

    t = Table(data, colWidths=matrix.column_widths, repeatRows=1)
    t.setStyle(TableStyle(table_style))

    elements = [
        Paragraph(_escape(matrix.title), title_style),
        Spacer(1, 4 * mm),
        t,
    ]
    doc.build(elements)
    logger.info(f"PDF exported to {output_path}")
    return output_path


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


RENDERERS: dict[str, Callable[[ExportMatrix, Path], Path]] = {
    "excel": export_excel,
    "pdf": export_pdf,
}


def export_file_name(fmt: str, today: date | None = None) -> str:
    today = today or date.today()
    return f"facturas_xml_{today.isoformat()}.{FORMATS[fmt]}"


async def export_and_clear(
    store: XmlStore,
    engine: AggregationEngine,
    fmt: str,
    output_dir: str | Path | None = None,
    allow_missing_category: bool = False,
    file_names: list[str] | None = None,
    renderers: dict[str, Callable[[ExportMatrix, Path], Path]] | None = None,
) -> Path:
    """Export the working set and remove the exported documents from the store.

    The file is fully written (temp file + rename) before anything is deleted.
    If rendering fails the store stays exactly as it was.
    """
    if fmt not in FORMATS:
        raise ValueError(f"Unknown export format: {fmt}")
    renderers = renderers or RENDERERS

    records = await store.list_all()
    if file_names is not None:
        wanted = set(file_names)
        records = [r for r in records if r.file_name in wanted]

    if fmt == "pdf":
        matrix = engine.build_report(records, allow_missing_category)
    else:
        matrix = engine.build_export(records, allow_missing_category)

    output_dir = Path(output_dir or config.EXPORT_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)
    final_path = output_dir / export_file_name(fmt)

    fd, tmp_name = tempfile.mkstemp(suffix=f".{FORMATS[fmt]}", dir=str(output_dir))
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        renderers[fmt](matrix, tmp_path)
        os.replace(tmp_path, final_path)
    except Exception as e:
        if tmp_path.exists():
            tmp_path.unlink()
        logger.error(f"Export render failed, store left untouched: {e}", exc_info=True)
        raise ExportRenderError(f"Error exportando a {fmt.upper()}: {e}") from e

    # Only the rendered snapshot: documents loaded while rendering stay in the store
    failures = await store.remove_many(matrix.file_names)
    for name, reason in failures:
        logger.warning(f"Exported {name} but could not remove it: {reason}")

    logger.info(f"Exported {len(matrix.file_names)} XML to {final_path}")
    return final_path
