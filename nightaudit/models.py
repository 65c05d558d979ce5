# nightaudit/models.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Date,
    ForeignKey,
    Enum,
    Float,
    Text,
    JSON,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship
import enum

from nightaudit.database import Base
from nightaudit.business_date import utcnow_naive


class UserRole(str, enum.Enum):
    admin = "admin"
    general_manager = "general_manager"
    club_staff = "club_staff"
    player = "player"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(200), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    # Built-in roles come from UserRole; clubs may define more in `roles`.
    role = Column(String(50), default=UserRole.player.value)
    club_id = Column(String(64), nullable=True, index=True)


class Role(Base):
    """Club-defined role. Maintained by the RBAC module; read-only here."""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("club_id", "code", name="uq_roles_club_code"),)
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    name = Column(String(120), nullable=True)
    status = Column(String(20), default="active")
    # {"daily_close": {"view": true, "execute": false}, ...}
    permissions = Column(JSON, nullable=True)


class TeeTime(Base):
    __tablename__ = "tee_times"
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    # Club-local wall-clock time.
    tee_time = Column(DateTime, nullable=False, index=True)
    hole = Column(String(10), nullable=True)
    capacity = Column(Integer, default=4)
    created_at = Column(DateTime, default=utcnow_naive)

    bookings = relationship("Booking", back_populates="tee_time")


class BookingStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    checked_in = "checked_in"
    playing = "playing"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


# A booking that ever reached one of these was attended or withdrawn, never a no-show.
NO_SHOW_BLOCKING_STATUSES = (
    BookingStatus.checked_in,
    BookingStatus.playing,
    BookingStatus.completed,
    BookingStatus.cancelled,
)


class Booking(Base):
    __tablename__ = "bookings"
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    tee_time_id = Column(Integer, ForeignKey("tee_times.id"), nullable=False)
    order_no = Column(String(40), nullable=True, index=True)
    player_name = Column(String(200), nullable=False)
    party_size = Column(Integer, default=1)
    status = Column(Enum(BookingStatus, name="booking_status"), default=BookingStatus.pending)
    folio_id = Column(Integer, ForeignKey("folios.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive)

    tee_time = relationship("TeeTime", back_populates="bookings")
    folio = relationship("Folio", foreign_keys=[folio_id])
    status_history = relationship(
        "BookingStatusChange",
        back_populates="booking",
        order_by="BookingStatusChange.id",
        cascade="all, delete-orphan",
    )


class BookingStatusChange(Base):
    __tablename__ = "booking_status_changes"
    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    changed_at = Column(DateTime, default=utcnow_naive)
    changed_by = Column(String(120), nullable=True)
    reason = Column(String(255), nullable=True)

    booking = relationship("Booking", back_populates="status_history")


class Folio(Base):
    __tablename__ = "folios"
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    folio_no = Column(String(40), nullable=True, index=True)
    owner_name = Column(String(200), nullable=True)
    booking_id = Column(Integer, nullable=True)
    status = Column(String(20), default="open")  # open/closed
    created_at = Column(DateTime, default=utcnow_naive)

    charges = relationship("FolioCharge", back_populates="folio", cascade="all, delete-orphan")
    payments = relationship("FolioPayment", back_populates="folio", cascade="all, delete-orphan")


class FolioCharge(Base):
    __tablename__ = "folio_charges"
    id = Column(Integer, primary_key=True, index=True)
    folio_id = Column(Integer, ForeignKey("folios.id"), nullable=False, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    category = Column(String(50), nullable=True)  # green_fee | cart_fee | dining | ...
    description = Column(String(255), nullable=True)
    amount = Column(Float, default=0.0)
    status = Column(String(20), default="posted")  # posted/voided
    created_at = Column(DateTime, default=utcnow_naive, index=True)

    folio = relationship("Folio", back_populates="charges")


class FolioPayment(Base):
    __tablename__ = "folio_payments"
    id = Column(Integer, primary_key=True, index=True)
    folio_id = Column(Integer, ForeignKey("folios.id"), nullable=False, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    method = Column(String(30), nullable=True)  # cash | wechat | alipay | card | member_card | ...
    amount = Column(Float, default=0.0)
    status = Column(String(20), default="success")  # success/failed/refunded
    reference_no = Column(String(60), nullable=True)
    created_at = Column(DateTime, default=utcnow_naive, index=True)

    folio = relationship("Folio", back_populates="payments")


class DiningOrder(Base):
    __tablename__ = "dining_orders"
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    order_no = Column(String(40), nullable=True)
    outlet_name = Column(String(120), nullable=True)
    total_amount = Column(Float, default=0.0)
    # "folio" means the bill was posted to a folio as a charge.
    pay_method = Column(String(30), nullable=True)
    status = Column(String(20), default="open")  # open/settled/cancelled
    folio_id = Column(Integer, ForeignKey("folios.id"), nullable=True)
    settled_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow_naive)


class DailyCloseReport(Base):
    __tablename__ = "daily_close_reports"
    __table_args__ = (UniqueConstraint("club_id", "close_date", name="uq_daily_close_club_date"),)
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    close_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), default="closed")
    payment_summary = Column(JSON, nullable=False)
    charge_summary = Column(JSON, nullable=False)
    booking_stats = Column(JSON, nullable=False)
    total_collected = Column(Float, default=0.0)
    total_charged = Column(Float, default=0.0)
    transaction_count = Column(Integer, default=0)
    charge_count = Column(Integer, default=0)
    open_folio_count = Column(Integer, default=0)
    open_folio_balance = Column(Float, default=0.0)
    cash_declared = Column(Float, nullable=True)
    cash_variance = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    operator_id = Column(String(64), nullable=True)
    operator_name = Column(String(120), nullable=True)
    closed_at = Column(DateTime, nullable=False, default=utcnow_naive)
    created_at = Column(DateTime, default=utcnow_naive)


class DailyCloseClaim(Base):
    __tablename__ = "daily_close_claims"
    __table_args__ = (UniqueConstraint("club_id", "close_date", name="uq_daily_close_claim_club_date"),)
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False)
    close_date = Column(Date, nullable=False)
    claim_token = Column(String(64), nullable=False)
    operator_name = Column(String(120), nullable=True)
    claimed_at = Column(DateTime, nullable=False, default=utcnow_naive)
    expires_at = Column(DateTime, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(String(64), nullable=False, index=True)
    module = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    operator_id = Column(String(64), nullable=True)
    operator_name = Column(String(120), nullable=True)
    created_at = Column(DateTime, default=utcnow_naive, index=True)


class ImmutableRecordError(Exception):
    pass


def _forbid_update(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only and cannot be updated")


def _forbid_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only and cannot be deleted")


for _append_only in (DailyCloseReport, AuditLog):
    event.listen(_append_only, "before_update", _forbid_update)
    event.listen(_append_only, "before_delete", _forbid_delete)
