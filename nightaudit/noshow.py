# nightaudit/noshow.py
from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from nightaudit import models, schemas
from nightaudit.audit import record_audit
from nightaudit.business_date import local_day_bounds, to_club_local_naive, to_utc_naive, utcnow
from nightaudit.errors import TransientError
from nightaudit.timeouts import call_with_timeout

NO_SHOW_REASON = "Auto no-show at daily close"
SYSTEM_OPERATOR = "system"

_BLOCKING = {s.value for s in models.NO_SHOW_BLOCKING_STATUSES}


def _status_str(value) -> str:
    return str(getattr(value, "value", value) or "")


@dataclass(frozen=True)
class BookingSnapshot:
    id: int
    order_no: Optional[str]
    player_name: str
    party_size: int
    status: str
    tee_time: datetime
    folio_id: Optional[int]
    # Statuses the booking has ever been moved into.
    reached: Tuple[str, ...] = ()


def snapshot_booking(b: models.Booking) -> BookingSnapshot:
    return BookingSnapshot(
        id=int(b.id),
        order_no=b.order_no,
        player_name=b.player_name or "",
        party_size=int(b.party_size or 0),
        status=_status_str(b.status),
        tee_time=b.tee_time.tee_time,
        folio_id=b.folio_id,
        reached=tuple(_status_str(h.to_status) for h in (b.status_history or [])),
    )


def is_no_show_eligible(booking: BookingSnapshot, now_local: datetime) -> bool:
    """
    Confirmed, tee time strictly in the past, and never checked in, played,
    completed or cancelled.
    """
    if booking.status != models.BookingStatus.confirmed.value:
        return False
    if not booking.tee_time < now_local:
        return False
    return not any(s in _BLOCKING for s in booking.reached)


class NoShowResolver:
    def __init__(
        self,
        session_factory,
        club_id: str,
        tz: ZoneInfo,
        clock: Callable[[], datetime] = utcnow,
        timeout_seconds: float = 10.0,
    ):
        self.session_factory = session_factory
        self.club_id = club_id
        self.tz = tz
        self.clock = clock
        self.timeout_seconds = float(timeout_seconds)

    def find_candidates(self, target: date, now: Optional[datetime] = None) -> List[BookingSnapshot]:
        now_local = to_club_local_naive(now or self.clock(), self.tz)
        snapshots = call_with_timeout(lambda: self._load_confirmed(target), self.timeout_seconds, "bookings")
        return [b for b in snapshots if is_no_show_eligible(b, now_local)]

    def _load_confirmed(self, target: date) -> List[BookingSnapshot]:
        day_start, day_end = local_day_bounds(target)
        with self.session_factory() as db:
            rows = (
                db.query(models.Booking)
                .join(models.TeeTime, models.TeeTime.id == models.Booking.tee_time_id)
                .options(selectinload(models.Booking.tee_time), selectinload(models.Booking.status_history))
                .filter(
                    models.Booking.club_id == self.club_id,
                    models.Booking.status == models.BookingStatus.confirmed,
                    models.TeeTime.tee_time >= day_start,
                    models.TeeTime.tee_time < day_end,
                )
                .order_by(models.TeeTime.tee_time.asc(), models.Booking.id.asc())
                .all()
            )
            return [snapshot_booking(b) for b in rows]

    def _mark_one(self, booking_id: int, stamped_at: datetime, operator_name: str) -> bool:
        with self.session_factory() as db:
            try:
                result = db.execute(
                    update(models.Booking)
                    .where(
                        models.Booking.id == booking_id,
                        models.Booking.status == models.BookingStatus.confirmed,
                    )
                    .values(status=models.BookingStatus.no_show, updated_at=stamped_at)
                )
                if result.rowcount != 1:
                    # Checked in or cancelled since the candidate scan.
                    db.rollback()
                    return False
                db.add(
                    models.BookingStatusChange(
                        booking_id=booking_id,
                        from_status=models.BookingStatus.confirmed.value,
                        to_status=models.BookingStatus.no_show.value,
                        changed_at=stamped_at,
                        changed_by=operator_name,
                        reason=NO_SHOW_REASON,
                    )
                )
                db.commit()
                return True
            except SQLAlchemyError:
                db.rollback()
                raise

    def resolve(self, target: date, operator: Optional[schemas.Operator] = None) -> schemas.NoShowResult:
        now = self.clock()
        stamped_at = to_utc_naive(now)
        operator_name = (operator.name if operator else "") or SYSTEM_OPERATOR

        candidates = self.find_candidates(target, now=now)
        marked: List[int] = []
        failed: List[int] = []
        for booking in candidates:
            try:
                mark = partial(self._mark_one, booking.id, stamped_at, operator_name)
                if call_with_timeout(mark, self.timeout_seconds, "bookings"):
                    marked.append(booking.id)
            except (SQLAlchemyError, TransientError) as e:
                print(f"[NO_SHOW] Failed to mark booking {booking.id}: {str(e)[:240]}")
                failed.append(booking.id)

        if marked:
            try:
                call_with_timeout(
                    lambda: self._record(target, marked, failed, operator, operator_name),
                    self.timeout_seconds,
                    "audit_logs",
                )
            except TransientError as e:
                print(f"[NO_SHOW] Failed to write audit log: {e}")

        print(
            f"[NO_SHOW] club={self.club_id} date={target.isoformat()} "
            f"candidates={len(candidates)} marked={len(marked)} failed={len(failed)}"
        )
        return schemas.NoShowResult(date=target, marked_count=len(marked), booking_ids=marked, failed_ids=failed)

    def _record(self, target: date, marked: List[int], failed: List[int], operator, operator_name: str) -> None:
        with self.session_factory() as db:
            try:
                record_audit(
                    db,
                    club_id=self.club_id,
                    action="auto_noshow",
                    description=f"Daily close auto-marked {len(marked)} no-show booking(s) for {target.isoformat()}",
                    details={"date": target.isoformat(), "count": len(marked), "booking_ids": marked, "failed_ids": failed},
                    operator_id=operator.id if operator else None,
                    operator_name=operator_name,
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                print(f"[NO_SHOW] Failed to write audit log: {str(e)[:240]}")
