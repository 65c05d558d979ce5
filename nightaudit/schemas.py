# nightaudit/schemas.py

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from datetime import date as Date

# ------------------------------------------------------------------
# OPERATOR
# ------------------------------------------------------------------


class Operator(BaseModel):
    id: Optional[str] = None
    name: str


# ------------------------------------------------------------------
# PREVIEW / SUMMARY
# ------------------------------------------------------------------


class OpenFolios(BaseModel):
    count: int = 0
    balance: float = 0.0


class NoShowCandidate(BaseModel):
    id: int
    order_no: Optional[str] = None
    tee_time: datetime
    player_name: str = ""
    player_count: int = 0


class UnsettledBooking(BaseModel):
    id: int
    order_no: Optional[str] = None
    player_name: str = ""
    folio_id: Optional[int] = None
    pending_fee: float = 0.0


class Summary(BaseModel):
    date: Date
    is_closed: bool = False
    payment_summary: Dict[str, float] = {}
    total_collected: float = 0.0
    charge_summary: Dict[str, float] = {}
    total_charged: float = 0.0
    booking_stats: Dict[str, int] = {}
    open_folios: OpenFolios = OpenFolios()
    no_show_candidates: List[NoShowCandidate] = []
    unsettled_completed: List[UnsettledBooking] = []
    transaction_count: int = 0
    charge_count: int = 0
    # Club-local wall time: when a live preview was built, or when the day was closed.
    generated_at: Optional[datetime] = None


# ------------------------------------------------------------------
# NO-SHOW
# ------------------------------------------------------------------


class AutoNoShowRequest(BaseModel):
    date: Optional[str] = None


class NoShowResult(BaseModel):
    date: Date
    marked_count: int = 0
    booking_ids: List[int] = []
    failed_ids: List[int] = []


# ------------------------------------------------------------------
# EXECUTE / REPORTS
# ------------------------------------------------------------------


class ExecuteRequest(BaseModel):
    date: Optional[str] = None
    declared_cash: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ClosingReportOut(BaseModel):
    id: int
    club_id: str
    date: Date
    status: str
    payment_summary: Dict[str, float]
    total_collected: float
    charge_summary: Dict[str, float]
    total_charged: float
    booking_stats: Dict[str, int]
    transaction_count: int
    charge_count: int
    open_folios: OpenFolios
    cash_declared: Optional[float] = None
    cash_variance: Optional[float] = None
    notes: Optional[str] = None
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    closed_at: datetime


class ClosingReportSummary(BaseModel):
    id: int
    date: Date
    total_collected: float
    total_charged: float
    transaction_count: int
    cash_declared: Optional[float] = None
    cash_variance: Optional[float] = None
    operator_name: Optional[str] = None
    closed_at: datetime

class ReportPageOut(BaseModel):
    items: List[ClosingReportSummary]
    total: int
    page: int
    page_size: int


class CloseStatus(BaseModel):
    date: Date
    is_closed: bool
    closed_at: Optional[datetime] = None
    operator_name: Optional[str] = None
