# nightaudit/export.py
import csv
from io import BytesIO, StringIO
from typing import List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from nightaudit import models

# (section, label, value). value None marks a section heading row.
ExportRow = Tuple[str, str, Optional[object]]

EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def report_rows(report: models.DailyCloseReport) -> List[ExportRow]:
    """Flatten a closing report into labelled rows, in display order."""
    rows: List[ExportRow] = [
        ("Report", "Business Date", report.close_date.isoformat()),
        ("Report", "Club", report.club_id),
        ("Report", "Operator", report.operator_name or ""),
        ("Report", "Closed At (UTC)", report.closed_at.strftime("%Y-%m-%d %H:%M:%S") if report.closed_at else ""),
    ]

    payments = report.payment_summary or {}
    for method in sorted(payments):
        rows.append(("Payments", method, float(payments[method])))
    rows.append(("Payments", "Total Collected", float(report.total_collected or 0.0)))
    rows.append(("Payments", "Transactions", int(report.transaction_count or 0)))

    charges = report.charge_summary or {}
    for category in sorted(charges):
        rows.append(("Charges", category, float(charges[category])))
    rows.append(("Charges", "Total Charged", float(report.total_charged or 0.0)))
    rows.append(("Charges", "Charge Lines", int(report.charge_count or 0)))

    stats = report.booking_stats or {}
    for key in sorted(k for k in stats if k not in {"total", "total_players"}):
        rows.append(("Bookings", key, int(stats[key])))
    rows.append(("Bookings", "Total Bookings", int(stats.get("total", 0))))
    rows.append(("Bookings", "Total Players", int(stats.get("total_players", 0))))

    rows.append(("Folios", "Open Folios", int(report.open_folio_count or 0)))
    rows.append(("Folios", "Open Balance", float(report.open_folio_balance or 0.0)))

    rows.append(("Cash", "Declared Cash", report.cash_declared if report.cash_declared is not None else ""))
    rows.append(("Cash", "Expected Cash", float(payments.get("cash", 0.0))))
    rows.append(("Cash", "Variance", report.cash_variance if report.cash_variance is not None else ""))
    rows.append(("Cash", "Notes", report.notes or ""))
    return rows


def export_filename(report: models.DailyCloseReport, ext: str) -> str:
    return f"Daily_Close_{report.close_date.strftime('%Y%m%d')}.{ext}"


def create_excel_workbook(report: models.DailyCloseReport) -> BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = "Daily Close"

    headers = ["Section", "Item", "Value"]
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    border = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )

    for col_idx, header in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col_idx)
        cell.value = header
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = header_alignment
        cell.border = border

    data_alignment = Alignment(horizontal="left", vertical="center")
    number_alignment = Alignment(horizontal="right", vertical="center")
    total_font = Font(bold=True)

    for row_idx, (section, label, value) in enumerate(report_rows(report), start=2):
        ws.cell(row=row_idx, column=1).value = section
        ws.cell(row=row_idx, column=2).value = label
        ws.cell(row=row_idx, column=3).value = value

        for col_idx in range(1, 4):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = border
            cell.alignment = data_alignment

        value_cell = ws.cell(row=row_idx, column=3)
        if isinstance(value, float):
            value_cell.number_format = "#,##0.00"
            value_cell.alignment = number_alignment
        elif isinstance(value, int):
            value_cell.number_format = "0"
            value_cell.alignment = number_alignment
        if label.startswith("Total") or label == "Variance":
            for col_idx in range(1, 4):
                ws.cell(row=row_idx, column=col_idx).font = total_font

    for col_idx, width in enumerate([14, 24, 18], start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width

    ws.freeze_panes = "A2"

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def create_csv_content(report: models.DailyCloseReport) -> StringIO:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\r\n")
    writer.writerow(["Section", "Item", "Value"])
    for section, label, value in report_rows(report):
        writer.writerow([section, label, format_value(value)])
    output.seek(0)
    return output
