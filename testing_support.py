"""
Shared fixtures for the root-level unittest modules.

Importing this module first points the import-time engine in
`nightaudit.database` at an in-memory SQLite database, so test runs never
touch a real DATABASE_URL. Each test then builds its own throwaway SQLite
file with `TempDatabase`.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("CLUB_ID", "club-test")

import shutil
import tempfile
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from nightaudit import models
from nightaudit.config import NightAuditConfig
from nightaudit.database import Base

CLUB_ID = "club-test"
OTHER_CLUB_ID = "club-other"
TZ_NAME = "Asia/Shanghai"
TZ = ZoneInfo(TZ_NAME)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def local(d: date, hh: int, mm: int = 0) -> datetime:
    """Naive club-local wall clock (how tee times are stored)."""
    return datetime.combine(d, time(hour=hh, minute=mm))


def utc(d: date, hh: int, mm: int = 0) -> datetime:
    """Naive UTC for a club-local wall clock (how ledger timestamps are stored)."""
    return local(d, hh, mm).replace(tzinfo=TZ).astimezone(timezone.utc).replace(tzinfo=None)


def clock_at(d: date, hh: int, mm: int = 0) -> FixedClock:
    return FixedClock(local(d, hh, mm).replace(tzinfo=TZ).astimezone(timezone.utc))


def make_config(club_id: str = CLUB_ID, **overrides) -> NightAuditConfig:
    values = {
        "club_id": club_id,
        "timezone": TZ_NAME,
        "data_access_timeout_seconds": 5.0,
        "close_claim_ttl_seconds": 300.0,
        "role_cache_ttl_seconds": 300.0,
        "aggregator_max_workers": 4,
    }
    values.update(overrides)
    return NightAuditConfig(**values)


class TempDatabase:
    def __init__(self):
        self.dir = tempfile.mkdtemp(prefix="nightaudit-test-")
        self.engine = create_engine(
            f"sqlite:///{os.path.join(self.dir, 'test.db')}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def close(self) -> None:
        self.engine.dispose()
        shutil.rmtree(self.dir, ignore_errors=True)


# ------------------------------------------------------------------
# Seed helpers (each commits)
# ------------------------------------------------------------------

def add_folio(db, club_id: str = CLUB_ID, folio_no: str = None, status: str = "open") -> models.Folio:
    folio = models.Folio(club_id=club_id, folio_no=folio_no, owner_name="Guest", status=status)
    db.add(folio)
    db.commit()
    return folio


def add_payment(db, folio, method, amount, at, status="success", club_id=CLUB_ID) -> models.FolioPayment:
    row = models.FolioPayment(
        folio_id=folio.id, club_id=club_id, method=method, amount=amount, status=status, created_at=at
    )
    db.add(row)
    db.commit()
    return row


def add_charge(db, folio, category, amount, at, status="posted", club_id=CLUB_ID) -> models.FolioCharge:
    row = models.FolioCharge(
        folio_id=folio.id, club_id=club_id, category=category, amount=amount, status=status, created_at=at
    )
    db.add(row)
    db.commit()
    return row


def add_dining(db, amount, pay_method, settled_at, status="settled", folio=None, club_id=CLUB_ID) -> models.DiningOrder:
    row = models.DiningOrder(
        club_id=club_id,
        total_amount=amount,
        pay_method=pay_method,
        status=status,
        folio_id=folio.id if folio else None,
        settled_at=settled_at,
    )
    db.add(row)
    db.commit()
    return row


def add_booking(
    db,
    tee_time: datetime,
    status=models.BookingStatus.confirmed,
    party_size: int = 1,
    folio=None,
    history=(),
    player_name: str = "Guest",
    club_id: str = CLUB_ID,
) -> models.Booking:
    tt = models.TeeTime(club_id=club_id, tee_time=tee_time, hole="1", capacity=4)
    db.add(tt)
    db.flush()
    booking = models.Booking(
        club_id=club_id,
        tee_time_id=tt.id,
        order_no=f"BK-{tt.id:04d}",
        player_name=player_name,
        party_size=party_size,
        status=status,
        folio_id=folio.id if folio else None,
    )
    db.add(booking)
    db.flush()
    for to_status in history:
        db.add(models.BookingStatusChange(booking_id=booking.id, to_status=getattr(to_status, "value", to_status)))
    db.commit()
    return booking


def add_user(db, email: str, role: str = "admin", name: str = "Night Manager", club_id: str = None) -> models.User:
    user = models.User(name=name, email=email, password="not-a-real-hash", role=role, club_id=club_id)
    db.add(user)
    db.commit()
    return user


def seed_june_first(db, d: date = date(2025, 6, 1)) -> None:
    """Payments {cash: 1000, wechat: 500}, charges {green_fee: 1200, cart_fee: 300}."""
    folio = add_folio(db, folio_no="F-0601")
    add_charge(db, folio, "green_fee", 1200, utc(d, 9))
    add_charge(db, folio, "cart_fee", 300, utc(d, 9, 5))
    add_payment(db, folio, "cash", 1000, utc(d, 15))
    add_payment(db, folio, "wechat", 500, utc(d, 15, 10))
