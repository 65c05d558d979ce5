# nightaudit/ledger.py
"""
Ledger aggregation for a business date.

Reads folio payments and charges, settled dining orders, the day's bookings
and every folio balance for one club, and folds them into a `Summary`.
The reads are independent, so they run concurrently (one session each) and
are joined with a bounded timeout. Nothing here writes or caches.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from nightaudit import models, schemas
from nightaudit.business_date import local_day_bounds, to_club_local_naive, utc_window, utcnow
from nightaudit.errors import TransientError
from nightaudit.money import q2, to_decimal
from nightaudit.noshow import BookingSnapshot, is_no_show_eligible, snapshot_booking
from nightaudit.timeouts import TRANSIENT_DB_ERRORS

# Dining bills posted to a folio already show up as folio charges.
DINING_FOLIO_METHOD = "folio"
DINING_CATEGORY = "dining"
UNTAGGED = "other"


def _tag(value: Optional[str]) -> str:
    tag = str(value or "").strip()
    return tag or UNTAGGED


def sum_by_tag(rows: Iterable[Tuple[Optional[str], object]]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for tag, amount in rows:
        key = _tag(tag)
        totals[key] = totals.get(key, Decimal("0")) + to_decimal(amount)
    return {k: q2(v) for k, v in totals.items()}


def booking_stats(bookings: Iterable[BookingSnapshot]) -> Dict[str, int]:
    stats = {s.value: 0 for s in models.BookingStatus}
    total = 0
    players = 0
    for b in bookings:
        total += 1
        players += int(b.party_size or 0)
        stats[b.status] = stats.get(b.status, 0) + 1
    stats["total"] = total
    stats["total_players"] = players
    return stats


class LedgerAggregator:
    def __init__(
        self,
        session_factory,
        club_id: str,
        tz: ZoneInfo,
        timeout_seconds: float = 10.0,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.club_id = club_id
        self.tz = tz
        self.timeout_seconds = float(timeout_seconds)
        self.max_workers = max(1, int(max_workers))
        self.clock = clock

    # ------------------------------------------------------------------
    # Source reads (each runs on its own session)
    # ------------------------------------------------------------------

    def _read_payments(self, start: datetime, end: datetime) -> List[Tuple[Optional[str], float]]:
        with self.session_factory() as db:
            rows = (
                db.query(models.FolioPayment.method, models.FolioPayment.amount)
                .filter(
                    models.FolioPayment.club_id == self.club_id,
                    models.FolioPayment.status == "success",
                    models.FolioPayment.created_at >= start,
                    models.FolioPayment.created_at < end,
                )
                .all()
            )
            return [(r[0], r[1]) for r in rows]

    def _read_charges(self, start: datetime, end: datetime) -> List[Tuple[Optional[str], float]]:
        with self.session_factory() as db:
            rows = (
                db.query(models.FolioCharge.category, models.FolioCharge.amount)
                .filter(
                    models.FolioCharge.club_id == self.club_id,
                    models.FolioCharge.status != "voided",
                    models.FolioCharge.created_at >= start,
                    models.FolioCharge.created_at < end,
                )
                .all()
            )
            return [(r[0], r[1]) for r in rows]

    def _read_dining_orders(self, start: datetime, end: datetime) -> List[Tuple[Optional[str], float]]:
        with self.session_factory() as db:
            rows = (
                db.query(models.DiningOrder.pay_method, models.DiningOrder.total_amount)
                .filter(
                    models.DiningOrder.club_id == self.club_id,
                    models.DiningOrder.status == "settled",
                    models.DiningOrder.settled_at >= start,
                    models.DiningOrder.settled_at < end,
                )
                .all()
            )
            return [(r[0], r[1]) for r in rows if _tag(r[0]) != DINING_FOLIO_METHOD]

    def _read_bookings(self, target: date) -> List[BookingSnapshot]:
        day_start, day_end = local_day_bounds(target)
        with self.session_factory() as db:
            rows = (
                db.query(models.Booking)
                .join(models.TeeTime, models.TeeTime.id == models.Booking.tee_time_id)
                .options(selectinload(models.Booking.tee_time), selectinload(models.Booking.status_history))
                .filter(
                    models.Booking.club_id == self.club_id,
                    models.TeeTime.tee_time >= day_start,
                    models.TeeTime.tee_time < day_end,
                )
                .order_by(models.TeeTime.tee_time.asc(), models.Booking.id.asc())
                .all()
            )
            return [snapshot_booking(b) for b in rows]

    def _read_folio_balances(self) -> Dict[int, Decimal]:
        with self.session_factory() as db:
            charged = (
                db.query(
                    models.FolioCharge.folio_id.label("folio_id"),
                    func.sum(models.FolioCharge.amount).label("total"),
                )
                .filter(models.FolioCharge.club_id == self.club_id, models.FolioCharge.status != "voided")
                .group_by(models.FolioCharge.folio_id)
                .subquery()
            )
            paid = (
                db.query(
                    models.FolioPayment.folio_id.label("folio_id"),
                    func.sum(models.FolioPayment.amount).label("total"),
                )
                .filter(models.FolioPayment.club_id == self.club_id, models.FolioPayment.status == "success")
                .group_by(models.FolioPayment.folio_id)
                .subquery()
            )
            rows = (
                db.query(models.Folio.id, charged.c.total, paid.c.total)
                .outerjoin(charged, charged.c.folio_id == models.Folio.id)
                .outerjoin(paid, paid.c.folio_id == models.Folio.id)
                .filter(models.Folio.club_id == self.club_id)
                .all()
            )
            return {int(folio_id): q2(to_decimal(c) - to_decimal(p)) for folio_id, c, p in rows}

    # ------------------------------------------------------------------
    # Fan-out / join
    # ------------------------------------------------------------------

    def _gather(self, reads: Dict[str, Callable[[], object]]) -> Dict[str, object]:
        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(reads)), thread_name_prefix="ledger-read")
        try:
            futures = {name: pool.submit(fn) for name, fn in reads.items()}
            done, pending = wait(futures.values(), timeout=self.timeout_seconds)
            if pending:
                late = sorted(name for name, f in futures.items() if f in pending)
                print(f"[DAILY_CLOSE] Ledger read timed out after {self.timeout_seconds}s: {', '.join(late)}")
                raise TransientError(
                    f"Timed out reading {', '.join(late)} after {self.timeout_seconds:g}s",
                    source=late[0],
                )
            results = {}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except TRANSIENT_DB_ERRORS as e:
                    print(f"[DAILY_CLOSE] Ledger read '{name}' failed: {str(e)[:240]}")
                    raise TransientError(f"Data source '{name}' is unavailable", source=name)
            return results
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def aggregate(self, target: date) -> schemas.Summary:
        start, end = utc_window(target, self.tz)
        data = self._gather(
            {
                "payments": lambda: self._read_payments(start, end),
                "charges": lambda: self._read_charges(start, end),
                "dining_orders": lambda: self._read_dining_orders(start, end),
                "bookings": lambda: self._read_bookings(target),
                "folios": self._read_folio_balances,
            }
        )
        now_local = to_club_local_naive(self.clock(), self.tz)
        return build_summary(target, data, now_local)


def build_summary(target: date, data: Dict[str, object], now_local: datetime) -> schemas.Summary:
    dining = list(data["dining_orders"])
    payment_rows = list(data["payments"]) + dining
    charge_rows = list(data["charges"]) + [(DINING_CATEGORY, amount) for _, amount in dining]

    payment_totals = sum_by_tag(payment_rows)
    charge_totals = sum_by_tag(charge_rows)

    bookings: List[BookingSnapshot] = list(data["bookings"])
    balances: Dict[int, Decimal] = dict(data["folios"])

    outstanding = [b for b in balances.values() if b != 0]

    candidates = [
        schemas.NoShowCandidate(
            id=b.id,
            order_no=b.order_no,
            tee_time=b.tee_time,
            player_name=b.player_name,
            player_count=b.party_size,
        )
        for b in bookings
        if is_no_show_eligible(b, now_local)
    ]

    unsettled = []
    for b in bookings:
        if b.status != models.BookingStatus.completed.value or b.folio_id is None:
            continue
        pending = balances.get(b.folio_id, Decimal("0"))
        if pending > 0:
            unsettled.append(
                schemas.UnsettledBooking(
                    id=b.id,
                    order_no=b.order_no,
                    player_name=b.player_name,
                    folio_id=b.folio_id,
                    pending_fee=float(pending),
                )
            )

    return schemas.Summary(
        date=target,
        is_closed=False,
        payment_summary={k: float(v) for k, v in payment_totals.items()},
        total_collected=float(q2(sum(payment_totals.values(), Decimal("0")))),
        charge_summary={k: float(v) for k, v in charge_totals.items()},
        total_charged=float(q2(sum(charge_totals.values(), Decimal("0")))),
        booking_stats=booking_stats(bookings),
        open_folios=schemas.OpenFolios(
            count=len(outstanding),
            balance=float(q2(sum(outstanding, Decimal("0")))),
        ),
        no_show_candidates=candidates,
        unsettled_completed=unsettled,
        transaction_count=len(payment_rows),
        charge_count=len(charge_rows),
        generated_at=now_local,
    )
