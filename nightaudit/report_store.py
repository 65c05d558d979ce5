# nightaudit/report_store.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from nightaudit import models
from nightaudit.audit import record_audit
from nightaudit.business_date import to_utc_naive, utcnow
from nightaudit.errors import ConflictError, TransientError, ValidationError
from nightaudit.timeouts import TRANSIENT_DB_ERRORS, call_with_timeout

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 30

REPORTS = "daily_close_reports"
CLAIMS = "daily_close_claims"

T = TypeVar("T")


@dataclass(frozen=True)
class ReportFilter:
    date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(frozen=True)
class ReportPage:
    items: List[models.DailyCloseReport]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class CloseClaim:
    club_id: str
    close_date: date
    token: str
    expires_at: datetime


def report_payload(report: models.DailyCloseReport) -> dict:
    return {
        "id": report.id,
        "club_id": report.club_id,
        "date": report.close_date,
        "status": report.status or "closed",
        "payment_summary": dict(report.payment_summary or {}),
        "total_collected": float(report.total_collected or 0.0),
        "charge_summary": dict(report.charge_summary or {}),
        "total_charged": float(report.total_charged or 0.0),
        "booking_stats": dict(report.booking_stats or {}),
        "transaction_count": int(report.transaction_count or 0),
        "charge_count": int(report.charge_count or 0),
        "open_folios": {
            "count": int(report.open_folio_count or 0),
            "balance": float(report.open_folio_balance or 0.0),
        },
        "cash_declared": report.cash_declared,
        "cash_variance": report.cash_variance,
        "notes": report.notes or "",
        "operator_id": report.operator_id,
        "operator_name": report.operator_name,
        "closed_at": report.closed_at,
    }


def report_summary_payload(report: models.DailyCloseReport) -> dict:
    return {
        "id": report.id,
        "date": report.close_date,
        "total_collected": float(report.total_collected or 0.0),
        "total_charged": float(report.total_charged or 0.0),
        "transaction_count": int(report.transaction_count or 0),
        "cash_declared": report.cash_declared,
        "cash_variance": report.cash_variance,
        "operator_name": report.operator_name,
        "closed_at": report.closed_at,
    }


class ReportStore:
    """
    Append-only store of closing reports, one per (club, date).

    Also owns the durable execution claim: a row in `daily_close_claims`
    whose unique key makes "insert if absent" the single-writer guard.
    Every call is bounded by `timeout_seconds`.
    """

    def __init__(
        self,
        session_factory,
        club_id: str,
        claim_ttl_seconds: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
        timeout_seconds: float = 10.0,
    ):
        self.session_factory = session_factory
        self.club_id = club_id
        self.claim_ttl_seconds = float(claim_ttl_seconds)
        self.clock = clock
        self.timeout_seconds = float(timeout_seconds)

    def _bounded(self, fn: Callable[[], T], source: str) -> T:
        return call_with_timeout(fn, self.timeout_seconds, source)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def find(self, target: date) -> Optional[models.DailyCloseReport]:
        return self._bounded(lambda: self._find(target), REPORTS)

    def _find(self, target: date) -> Optional[models.DailyCloseReport]:
        with self.session_factory() as db:
            return (
                db.query(models.DailyCloseReport)
                .filter(
                    models.DailyCloseReport.club_id == self.club_id,
                    models.DailyCloseReport.close_date == target,
                )
                .first()
            )

    def list(
        self,
        flt: Optional[ReportFilter] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ReportPage:
        flt = flt or ReportFilter()
        if flt.start_date and flt.end_date and flt.start_date > flt.end_date:
            raise ValidationError("start_date must be <= end_date")
        page = max(1, int(page or 1))
        page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or DEFAULT_PAGE_SIZE)))
        return self._bounded(lambda: self._list(flt, page, page_size), REPORTS)

    def _list(self, flt: ReportFilter, page: int, page_size: int) -> ReportPage:
        with self.session_factory() as db:
            q = db.query(models.DailyCloseReport).filter(models.DailyCloseReport.club_id == self.club_id)
            if flt.date:
                q = q.filter(models.DailyCloseReport.close_date == flt.date)
            else:
                if flt.start_date:
                    q = q.filter(models.DailyCloseReport.close_date >= flt.start_date)
                if flt.end_date:
                    q = q.filter(models.DailyCloseReport.close_date <= flt.end_date)
            total = q.count()
            items = (
                q.order_by(models.DailyCloseReport.close_date.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
        return ReportPage(items=items, total=total, page=page, page_size=page_size)

    def insert(self, report: models.DailyCloseReport, audit: Optional[dict] = None) -> models.DailyCloseReport:
        """
        Insert a report (and its audit row) in one transaction.

        A second report for the same (club, date) is a conflict; the stored
        one is never touched. A timed-out insert may still commit; a retry
        then sees the day as closed.
        """
        report.club_id = self.club_id
        return self._bounded(lambda: self._insert(report, audit), REPORTS)

    def _insert(self, report: models.DailyCloseReport, audit: Optional[dict]) -> models.DailyCloseReport:
        with self.session_factory() as db:
            db.add(report)
            if audit:
                record_audit(db, club_id=self.club_id, **audit)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ConflictError(
                    f"{report.close_date.isoformat()} is already closed",
                    reason=ConflictError.ALREADY_CLOSED,
                )
            except TRANSIENT_DB_ERRORS as e:
                db.rollback()
                print(f"[DAILY_CLOSE] Report insert failed: {str(e)[:240]}")
                raise TransientError("Closing report could not be saved", source=REPORTS)
            db.refresh(report)
            return report

    # ------------------------------------------------------------------
    # Execution claim
    # ------------------------------------------------------------------

    def claim(self, target: date, operator_name: Optional[str] = None) -> CloseClaim:
        return self._bounded(lambda: self._claim(target, operator_name), CLAIMS)

    def _claim(self, target: date, operator_name: Optional[str]) -> CloseClaim:
        now = to_utc_naive(self.clock())
        expires_at = now + timedelta(seconds=self.claim_ttl_seconds)
        token = uuid.uuid4().hex

        for _ in range(2):
            with self.session_factory() as db:
                db.add(
                    models.DailyCloseClaim(
                        club_id=self.club_id,
                        close_date=target,
                        claim_token=token,
                        operator_name=operator_name,
                        claimed_at=now,
                        expires_at=expires_at,
                    )
                )
                try:
                    db.commit()
                    return CloseClaim(club_id=self.club_id, close_date=target, token=token, expires_at=expires_at)
                except IntegrityError:
                    db.rollback()
                except TRANSIENT_DB_ERRORS as e:
                    db.rollback()
                    print(f"[DAILY_CLOSE] Claim insert failed: {str(e)[:240]}")
                    raise TransientError("Could not acquire the close claim", source=CLAIMS)

                # Someone holds the claim; take it over only if it has expired.
                taken_over = db.execute(
                    delete(models.DailyCloseClaim).where(
                        models.DailyCloseClaim.club_id == self.club_id,
                        models.DailyCloseClaim.close_date == target,
                        models.DailyCloseClaim.expires_at <= now,
                    )
                ).rowcount
                db.commit()
                if not taken_over:
                    break
                print(f"[DAILY_CLOSE] Took over expired close claim for {target.isoformat()}")

        raise ConflictError(
            f"A daily close for {target.isoformat()} is already in progress",
            reason=ConflictError.IN_PROGRESS,
        )

    def release(self, claim: CloseClaim) -> None:
        try:
            self._bounded(lambda: self._release(claim), CLAIMS)
        except TransientError as e:
            # The claim expires on its own after the TTL.
            print(f"[DAILY_CLOSE] Failed to release close claim for {claim.close_date.isoformat()}: {e}")

    def _release(self, claim: CloseClaim) -> None:
        with self.session_factory() as db:
            try:
                db.execute(
                    delete(models.DailyCloseClaim).where(
                        models.DailyCloseClaim.club_id == claim.club_id,
                        models.DailyCloseClaim.close_date == claim.close_date,
                        models.DailyCloseClaim.claim_token == claim.token,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                print(f"[DAILY_CLOSE] Failed to release close claim for {claim.close_date.isoformat()}: {str(e)[:240]}")
