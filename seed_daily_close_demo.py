"""
Seed daily close demo data (local/dev).

Creates, for one business date of the configured club:
- folios with green fee / cart fee charges (one voided)
- payments across cash / wechat / card, plus a failed payment that must not count
- settled dining orders, one paid directly and one posted to a folio
- bookings in every interesting state, including confirmed past tee times
  that the auto no-show step will pick up

This is a script (not an API) so it is only run on a local machine.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.orm import Session

from nightaudit.business_date import to_utc_naive
from nightaudit.config import load_config
from nightaudit.database import Base, SessionLocal, engine
from nightaudit import models


def _local_dt(d: date, hh: int, mm: int) -> datetime:
    # Tee times are stored as club-local wall-clock time.
    return datetime.combine(d, time(hour=hh, minute=mm))


def _utc_at(d: date, hh: int, mm: int, tz) -> datetime:
    return to_utc_naive(datetime.combine(d, time(hour=hh, minute=mm)).replace(tzinfo=tz))


def _folio(db: Session, club_id: str, folio_no: str, owner: str) -> models.Folio:
    f = db.query(models.Folio).filter(models.Folio.club_id == club_id, models.Folio.folio_no == folio_no).first()
    if f:
        return f
    f = models.Folio(club_id=club_id, folio_no=folio_no, owner_name=owner, status="open")
    db.add(f)
    db.flush()
    return f


def seed(db: Session, club_id: str, tz, target: date) -> dict:
    key = target.strftime("%Y%m%d")
    if db.query(models.Folio).filter(models.Folio.club_id == club_id, models.Folio.folio_no == f"DEMO-{key}-1").first():
        return {"skipped": True}

    f1 = _folio(db, club_id, f"DEMO-{key}-1", "Li Wei")
    f2 = _folio(db, club_id, f"DEMO-{key}-2", "Zhang Min")
    f3 = _folio(db, club_id, f"DEMO-{key}-3", "Chen Jie")

    charges = [
        (f1, "green_fee", 800.0, "posted", 9),
        (f1, "cart_fee", 200.0, "posted", 9),
        (f2, "green_fee", 400.0, "posted", 10),
        (f2, "cart_fee", 100.0, "posted", 10),
        (f3, "green_fee", 400.0, "voided", 11),
    ]
    for folio, category, amount, status, hh in charges:
        db.add(
            models.FolioCharge(
                folio_id=folio.id,
                club_id=club_id,
                category=category,
                description=f"Demo {category}",
                amount=amount,
                status=status,
                created_at=_utc_at(target, hh, 0, tz),
            )
        )

    payments = [
        (f1, "cash", 1000.0, "success", 15),
        (f2, "wechat", 300.0, "success", 16),
        (f2, "card", 50.0, "failed", 16),
    ]
    for folio, method, amount, status, hh in payments:
        db.add(
            models.FolioPayment(
                folio_id=folio.id,
                club_id=club_id,
                method=method,
                amount=amount,
                status=status,
                reference_no=f"DEMO-{key}-{method.upper()}",
                created_at=_utc_at(target, hh, 30, tz),
            )
        )

    db.add(
        models.DiningOrder(
            club_id=club_id,
            order_no=f"DN-{key}-1",
            outlet_name="Clubhouse",
            total_amount=180.0,
            pay_method="alipay",
            status="settled",
            settled_at=_utc_at(target, 13, 0, tz),
        )
    )
    db.add(
        models.DiningOrder(
            club_id=club_id,
            order_no=f"DN-{key}-2",
            outlet_name="Clubhouse",
            total_amount=95.0,
            pay_method="folio",
            status="settled",
            folio_id=f2.id,
            settled_at=_utc_at(target, 13, 30, tz),
        )
    )

    bookings = [
        ("Li Wei", 2, models.BookingStatus.completed, 7, f1),
        ("Zhang Min", 1, models.BookingStatus.completed, 7, f2),
        ("Wang Fang", 4, models.BookingStatus.confirmed, 8, None),
        ("Zhao Lei", 2, models.BookingStatus.confirmed, 8, None),
        ("Sun Yu", 1, models.BookingStatus.cancelled, 9, None),
        ("Zhou Hao", 3, models.BookingStatus.confirmed, 17, None),
    ]
    for idx, (name, size, status, hh, folio) in enumerate(bookings, start=1):
        tt = models.TeeTime(club_id=club_id, tee_time=_local_dt(target, hh, 10 * idx % 60), hole="1", capacity=4)
        db.add(tt)
        db.flush()
        db.add(
            models.Booking(
                club_id=club_id,
                tee_time_id=tt.id,
                order_no=f"BK-{key}-{idx:03d}",
                player_name=name,
                party_size=size,
                status=status,
                folio_id=folio.id if folio else None,
                created_at=_utc_at(target - timedelta(days=1), 12, 0, tz),
            )
        )

    db.commit()
    return {"skipped": False, "folios": 3, "bookings": len(bookings)}


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser()
    p.add_argument("--date", help="Business date to seed (YYYY-MM-DD). Default: today in the club timezone.")
    args = p.parse_args(argv)

    config = load_config()
    tz = config.tz
    if args.date:
        try:
            target = datetime.strptime(args.date, "%Y-%m-%d").date()
        except ValueError:
            print("Invalid --date. Use YYYY-MM-DD.", file=sys.stderr)
            return 2
    else:
        target = datetime.now(timezone.utc).astimezone(tz).date()

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        result = seed(db, config.club_id, tz, target)

    if result.get("skipped"):
        print(f"Demo data for {target.isoformat()} already present (club={config.club_id}).")
    else:
        print(f"Seed complete: {result['folios']} folio(s), {result['bookings']} booking(s) for {target.isoformat()}.")
    print(f"Try: GET /daily-close/preview?date={target.isoformat()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
