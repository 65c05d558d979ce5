# nightaudit/close_executor.py
"""
Daily close execution.

A business date is OPEN until a closing report exists for it, CLOSING while
an execution holds the claim, and CLOSED once the report insert commits.
CLOSED is terminal: nothing here updates or deletes a report.
"""
from __future__ import annotations

import math
import threading
from datetime import date, datetime
from typing import Callable, Optional, Set, Tuple

from nightaudit import models, schemas
from nightaudit.business_date import to_utc_naive, utcnow
from nightaudit.errors import ConflictError, ValidationError
from nightaudit.ledger import LedgerAggregator
from nightaudit.money import money, q2, to_decimal
from nightaudit.report_store import ReportStore

CASH_METHOD = "cash"


def compute_cash_variance(declared_cash: Optional[float], payment_summary: dict) -> Optional[float]:
    """declared - expected cash. None when no cash was declared."""
    if declared_cash is None:
        return None
    expected = to_decimal(payment_summary.get(CASH_METHOD, 0))
    return float(q2(to_decimal(declared_cash) - expected))


def _validate(operator: Optional[schemas.Operator], declared_cash) -> Optional[float]:
    if operator is None or not str(operator.name or "").strip():
        raise ValidationError("Operator identity is required to close a day")
    if declared_cash is None:
        return None
    try:
        value = float(declared_cash)
    except (TypeError, ValueError):
        raise ValidationError("declared_cash must be a number")
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValidationError("declared_cash must be a non-negative amount")
    return money(value)


class CloseExecutor:
    def __init__(
        self,
        aggregator: LedgerAggregator,
        store: ReportStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.aggregator = aggregator
        self.store = store
        self.clock = clock
        # Same-process fast path; the durable claim row is the real guard.
        self._inflight: Set[Tuple[str, date]] = set()
        self._inflight_lock = threading.Lock()

    def _already_closed(self, target: date) -> ConflictError:
        return ConflictError(f"{target.isoformat()} is already closed", reason=ConflictError.ALREADY_CLOSED)

    def _enter(self, key: Tuple[str, date]) -> None:
        with self._inflight_lock:
            if key in self._inflight:
                raise ConflictError(
                    f"A daily close for {key[1].isoformat()} is already in progress",
                    reason=ConflictError.IN_PROGRESS,
                )
            self._inflight.add(key)

    def _leave(self, key: Tuple[str, date]) -> None:
        with self._inflight_lock:
            self._inflight.discard(key)

    def execute(
        self,
        target: date,
        operator: Optional[schemas.Operator],
        declared_cash: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> models.DailyCloseReport:
        declared = _validate(operator, declared_cash)

        if self.store.find(target) is not None:
            raise self._already_closed(target)

        key = (self.store.club_id, target)
        self._enter(key)
        try:
            claim = self.store.claim(target, operator_name=operator.name)
            try:
                # A close may have committed between the first check and the claim.
                if self.store.find(target) is not None:
                    raise self._already_closed(target)

                summary = self.aggregator.aggregate(target)
                report = self._build_report(target, summary, operator, declared, notes)
                saved = self.store.insert(report, audit=self._audit_entry(target, summary, operator))
            finally:
                self.store.release(claim)
        finally:
            self._leave(key)

        print(
            f"[DAILY_CLOSE] Closed club={saved.club_id} date={target.isoformat()} "
            f"collected={saved.total_collected:.2f} variance={saved.cash_variance} by={saved.operator_name}"
        )
        return saved

    def _build_report(
        self,
        target: date,
        summary: schemas.Summary,
        operator: schemas.Operator,
        declared: Optional[float],
        notes: Optional[str],
    ) -> models.DailyCloseReport:
        closed_at = to_utc_naive(self.clock())
        return models.DailyCloseReport(
            close_date=target,
            status="closed",
            payment_summary=dict(summary.payment_summary),
            charge_summary=dict(summary.charge_summary),
            booking_stats=dict(summary.booking_stats),
            total_collected=summary.total_collected,
            total_charged=summary.total_charged,
            transaction_count=summary.transaction_count,
            charge_count=summary.charge_count,
            open_folio_count=summary.open_folios.count,
            open_folio_balance=summary.open_folios.balance,
            cash_declared=declared,
            cash_variance=compute_cash_variance(declared, summary.payment_summary),
            notes=(notes or "").strip(),
            operator_id=operator.id,
            operator_name=operator.name,
            closed_at=closed_at,
            created_at=closed_at,
        )

    def _audit_entry(self, target: date, summary: schemas.Summary, operator: schemas.Operator) -> dict:
        return {
            "action": "execute",
            "description": f"Completed daily close for {target.isoformat()}, collected {summary.total_collected:.2f}",
            "details": {
                "date": target.isoformat(),
                "total_collected": summary.total_collected,
                "total_charged": summary.total_charged,
            },
            "operator_id": operator.id,
            "operator_name": operator.name,
        }
