"""File exports of the cycle count variance report (CSV, Excel, PDF)."""

from __future__ import annotations

import csv
import io as _io
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

EXPORT_FORMATS = {
    "csv": ("text/csv", "csv"),
    "excel": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "pdf": ("application/pdf", "pdf"),
}

REPORT_HEADERS = [
    "Item", "SKU", "Category", "Batch", "System Qty", "Counted Qty",
    "Variance", "Variance %", "Unit Cost", "Variance Cost", "Flagged", "Adjusted",
]

HEADER_FILL = "366092"


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def report_rows(report: Dict[str, Any]) -> List[List[Any]]:
    """Flatten the rows of a variance report into table rows."""
    return [
        [
            _cell(row["name"]),
            _cell(row["sku"]),
            _cell(row["category"]),
            _cell(row["batch_number"]),
            _cell(row["system_quantity"]),
            _cell(row["counted_quantity"]),
            _cell(row["variance"]),
            _cell(row["variance_percent"]),
            _cell(row["unit_cost"]),
            _cell(row["variance_cost"]),
            _cell(row["flagged"]),
            _cell(row["adjustment_made"]),
        ]
        for row in report["items"]
    ]


def summary_lines(report: Dict[str, Any]) -> List[Tuple[str, Any]]:
    cycle_count = report["cycle_count"]
    summary = report["summary"]
    return [
        ("Count number", cycle_count.count_number),
        ("Status", cycle_count.status.value),
        ("Items counted", f"{summary.items_counted} / {summary.total_items}"),
        ("Items with variance", summary.items_with_variance),
        ("Items flagged", report["items_flagged"]),
        ("Net variance cost", summary.total_variance_cost),
        ("Absolute variance cost", summary.absolute_variance_cost),
        ("Accuracy %", summary.accuracy_percent if summary.accuracy_percent is not None else "n/a"),
    ]


def create_csv_export(data: list, headers: list) -> BytesIO:
    """CSV with a UTF-8 BOM so spreadsheet tools detect the encoding."""
    output = BytesIO()
    output.write(b"\xef\xbb\xbf")
    text_output = _io.StringIO()
    writer = csv.writer(text_output, delimiter=",", quotechar='"', quoting=csv.QUOTE_MINIMAL)
    writer.writerow(headers)
    for row in data:
        writer.writerow(row)
    output.write(text_output.getvalue().encode("utf-8"))
    output.seek(0)
    return output


def create_excel_export(
    data: list,
    headers: list,
    sheet_name: str = "Report",
    summary: Optional[List[Tuple[str, Any]]] = None,
) -> BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31]

    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for row_idx, row_data in enumerate(data, 2):
        for col_idx, value in enumerate(row_data, 1):
            ws.cell(row=row_idx, column=col_idx, value=value)
    for column in ws.columns:
        width = max(len(str(cell.value or "")) for cell in column)
        ws.column_dimensions[column[0].column_letter].width = min(width + 2, 50)

    if summary:
        sheet = wb.create_sheet("Summary")
        for row_idx, (label, value) in enumerate(summary, 1):
            sheet.cell(row=row_idx, column=1, value=label).font = Font(bold=True)
            sheet.cell(row=row_idx, column=2, value=_cell(value))
        sheet.column_dimensions["A"].width = 26
        sheet.column_dimensions["B"].width = 24

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def create_pdf_export(
    data: list,
    headers: list,
    title: str = "Report",
    summary: Optional[List[Tuple[str, Any]]] = None,
) -> BytesIO:
    output = BytesIO()
    doc = SimpleDocTemplate(output, pagesize=landscape(A4))
    elements = []
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("CountTitle", parent=styles["Heading1"], fontSize=20, spaceAfter=20, alignment=1)
    elements.append(Paragraph(title, title_style))

    if summary:
        summary_table = Table([[label, _cell(value)] for label, value in summary], hAlign="LEFT")
        summary_table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        elements.append(summary_table)
        elements.append(Spacer(1, 0.3 * inch))

    col_width = 10 * inch / len(headers)
    table = Table([headers] + data, colWidths=[col_width] * len(headers), repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(f"#{HEADER_FILL}")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTSIZE", (0, 0), (-1, -1), 7),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    elements.append(table)
    doc.build(elements)
    output.seek(0)
    return output


def export_report(report: Dict[str, Any], export_format: str) -> Tuple[BytesIO, str, str]:
    """Render a variance report as ``(file, media_type, filename)``.

    Raises:
        ValueError: for an unknown format.
    """
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {export_format}")
    media_type, extension = EXPORT_FORMATS[export_format]
    count_number = report["cycle_count"].count_number
    title = f"Cycle Count {count_number}"
    rows = report_rows(report)

    if export_format == "pdf":
        output = create_pdf_export(rows, REPORT_HEADERS, title, summary_lines(report))
    elif export_format == "excel":
        output = create_excel_export(rows, REPORT_HEADERS, count_number, summary_lines(report))
    else:
        output = create_csv_export(rows, REPORT_HEADERS)

    return output, media_type, f"cycle_count_{count_number}.{extension}"
