# nightaudit/routers/daily_close.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from nightaudit import schemas
from nightaudit.auth import ClubAccess, operator_from_user, require_permission
from nightaudit.export import EXCEL_MEDIA_TYPE, create_csv_content, create_excel_workbook, export_filename
from nightaudit.report_store import report_payload, report_summary_payload

router = APIRouter(prefix="/daily-close", tags=["daily-close"])


@router.get("/preview", response_model=schemas.Summary)
def preview(
    date: Optional[str] = Query(None, description="Date in YYYY-MM-DD format, defaults to today"),
    access: ClubAccess = Depends(require_permission("view")),
):
    """Live summary for an open day, or the stored report for a closed one."""
    return access.service.get_preview(date)


@router.post("/auto-noshow", response_model=schemas.NoShowResult)
def auto_noshow(
    data: schemas.AutoNoShowRequest,
    access: ClubAccess = Depends(require_permission("noshow")),
):
    return access.service.auto_no_show(data.date, operator=operator_from_user(access.user))


@router.post("/execute", response_model=schemas.ClosingReportOut)
def execute(
    data: schemas.ExecuteRequest,
    access: ClubAccess = Depends(require_permission("execute")),
):
    report = access.service.execute(
        data.date,
        operator=operator_from_user(access.user),
        declared_cash=data.declared_cash,
        notes=data.notes,
    )
    return report_payload(report)


@router.get("/reports", response_model=schemas.ReportPageOut)
def list_reports(
    date: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(30, ge=1, le=100),
    access: ClubAccess = Depends(require_permission("view")),
):
    result = access.service.list_reports(
        date=date,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return {
        "items": [report_summary_payload(r) for r in result.items],
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
    }


@router.get("/reports/{report_date}", response_model=schemas.ClosingReportOut)
def get_report(
    report_date: str,
    access: ClubAccess = Depends(require_permission("view")),
):
    return report_payload(access.service.get_report(report_date))


@router.get("/close-status", response_model=schemas.CloseStatus)
def close_status(
    date: Optional[str] = Query(None, description="Date in YYYY-MM-DD format, defaults to today"),
    access: ClubAccess = Depends(require_permission("view")),
):
    return access.service.close_status(date)


@router.get("/reports/{report_date}/export-excel")
def export_report_excel(
    report_date: str,
    access: ClubAccess = Depends(require_permission("view")),
):
    report = access.service.get_report(report_date)
    excel_file = create_excel_workbook(report)
    filename = export_filename(report, "xlsx")
    return StreamingResponse(
        iter([excel_file.getvalue()]),
        media_type=EXCEL_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/reports/{report_date}/export-csv")
def export_report_csv(
    report_date: str,
    access: ClubAccess = Depends(require_permission("view")),
):
    report = access.service.get_report(report_date)
    csv_file = create_csv_content(report)
    filename = export_filename(report, "csv")
    return StreamingResponse(
        iter([csv_file.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
