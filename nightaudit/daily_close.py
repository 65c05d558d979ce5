# nightaudit/daily_close.py
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Optional, Set
from zoneinfo import ZoneInfo

from nightaudit import models, schemas
from nightaudit.business_date import parse_business_date, to_club_local_naive, utcnow
from nightaudit.close_executor import CloseExecutor
from nightaudit.config import NightAuditConfig, load_config
from nightaudit.errors import ConflictError, NotFoundError
from nightaudit.ledger import LedgerAggregator
from nightaudit.noshow import NoShowResolver
from nightaudit.permissions import RolePermissionCache, role_loader
from nightaudit.report_store import ReportFilter, ReportPage, ReportStore
from nightaudit.timeouts import call_with_timeout


def summary_from_report(report: models.DailyCloseReport, tz: ZoneInfo) -> schemas.Summary:
    """Projection of a closed day: everything comes from the stored report."""
    return schemas.Summary(
        date=report.close_date,
        is_closed=True,
        payment_summary=dict(report.payment_summary or {}),
        total_collected=float(report.total_collected or 0.0),
        charge_summary=dict(report.charge_summary or {}),
        total_charged=float(report.total_charged or 0.0),
        booking_stats=dict(report.booking_stats or {}),
        open_folios=schemas.OpenFolios(
            count=int(report.open_folio_count or 0),
            balance=float(report.open_folio_balance or 0.0),
        ),
        no_show_candidates=[],
        unsettled_completed=[],
        transaction_count=int(report.transaction_count or 0),
        charge_count=int(report.charge_count or 0),
        generated_at=to_club_local_naive(report.closed_at, tz) if report.closed_at else None,
    )


class DailyCloseService:
    """
    Daily close / night audit for one club.

    Wires the aggregator, no-show resolver, report store and executor over a
    shared session factory and clock. Dates may be given as `date`,
    "YYYY-MM-DD" or None (today in the club timezone).
    """

    def __init__(
        self,
        session_factory,
        config: NightAuditConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.club_id = config.club_id
        self.clock = clock
        self.aggregator = LedgerAggregator(
            session_factory,
            club_id=config.club_id,
            tz=config.tz,
            timeout_seconds=config.data_access_timeout_seconds,
            max_workers=config.aggregator_max_workers,
            clock=clock,
        )
        self.resolver = NoShowResolver(
            session_factory,
            club_id=config.club_id,
            tz=config.tz,
            clock=clock,
            timeout_seconds=config.data_access_timeout_seconds,
        )
        self.store = ReportStore(
            session_factory,
            club_id=config.club_id,
            claim_ttl_seconds=config.close_claim_ttl_seconds,
            clock=clock,
            timeout_seconds=config.data_access_timeout_seconds,
        )
        self.executor = CloseExecutor(self.aggregator, self.store, clock=clock)

    def business_date(self, value=None):
        return parse_business_date(value, self.config.tz, now=self.clock())

    def get_preview(self, value=None) -> schemas.Summary:
        target = self.business_date(value)
        report = self.store.find(target)
        if report is not None:
            return summary_from_report(report, self.config.tz)
        return self.aggregator.aggregate(target)

    def auto_no_show(self, value=None, operator: Optional[schemas.Operator] = None) -> schemas.NoShowResult:
        target = self.business_date(value)
        if self.store.find(target) is not None:
            raise ConflictError(f"{target.isoformat()} is already closed", reason=ConflictError.ALREADY_CLOSED)
        return self.resolver.resolve(target, operator)

    def execute(
        self,
        value=None,
        operator: Optional[schemas.Operator] = None,
        declared_cash: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> models.DailyCloseReport:
        target = self.business_date(value)
        return self.executor.execute(target, operator, declared_cash=declared_cash, notes=notes)

    def get_report(self, value) -> models.DailyCloseReport:
        target = self.business_date(value)
        report = self.store.find(target)
        if report is None:
            raise NotFoundError(f"No closing report found for {target.isoformat()}")
        return report

    def list_reports(
        self,
        date=None,
        start_date=None,
        end_date=None,
        page: int = 1,
        page_size: int = 30,
    ) -> ReportPage:
        tz = self.config.tz
        flt = ReportFilter(
            date=parse_business_date(date, tz) if date else None,
            start_date=parse_business_date(start_date, tz) if start_date else None,
            end_date=parse_business_date(end_date, tz) if end_date else None,
        )
        return self.store.list(flt, page=page, page_size=page_size)

    def close_status(self, value=None) -> schemas.CloseStatus:
        target = self.business_date(value)
        report = self.store.find(target)
        if report is None:
            return schemas.CloseStatus(date=target, is_closed=False)
        return schemas.CloseStatus(
            date=target,
            is_closed=True,
            closed_at=report.closed_at,
            operator_name=report.operator_name,
        )


class ServiceRegistry:
    """
    One service and one role cache per club, built on first use.

    Only known clubs get an entry: the configured club, or a club with at
    least one row in `roles`.
    """

    def __init__(self, session_factory, config: NightAuditConfig, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.config = config
        self.clock = clock
        self._services: Dict[str, DailyCloseService] = {}
        self._role_caches: Dict[str, RolePermissionCache] = {}
        self._known: Set[str] = {config.club_id}
        self._lock = threading.Lock()

    def _has_roles(self, club: str) -> bool:
        def read() -> bool:
            with self.session_factory() as db:
                return db.query(models.Role.id).filter(models.Role.club_id == club).first() is not None

        return call_with_timeout(read, self.config.data_access_timeout_seconds, "roles")

    def club(self, club_id: Optional[str] = None) -> str:
        """Resolve a requested club id; unknown clubs are a NotFoundError."""
        club = str(club_id or "").strip() or self.config.club_id
        with self._lock:
            if club in self._known:
                return club
        if not self._has_roles(club):
            raise NotFoundError(f"Unknown club: {club[:64]}")
        with self._lock:
            self._known.add(club)
        return club

    def service(self, club_id: Optional[str] = None) -> DailyCloseService:
        club = self.club(club_id)
        with self._lock:
            svc = self._services.get(club)
            if svc is None:
                svc = DailyCloseService(self.session_factory, replace(self.config, club_id=club), clock=self.clock)
                self._services[club] = svc
            return svc

    def permissions(self, club_id: Optional[str] = None) -> RolePermissionCache:
        club = self.club(club_id)
        with self._lock:
            cache = self._role_caches.get(club)
            if cache is None:
                cache = RolePermissionCache(
                    role_loader(self.session_factory, club, self.config.data_access_timeout_seconds),
                    ttl_seconds=self.config.role_cache_ttl_seconds,
                    clock=self.clock,
                )
                self._role_caches[club] = cache
            return cache


_registry: Optional[ServiceRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ServiceRegistry:
    global _registry
    with _registry_lock:
        if _registry is None:
            from nightaudit.database import SessionLocal

            _registry = ServiceRegistry(SessionLocal, load_config())
        return _registry
