import testing_support as ts

import os
import unittest
from datetime import date, datetime, timezone
from unittest import mock

from nightaudit import models, schemas
from nightaudit.business_date import parse_business_date, utc_window
from nightaudit.config import LEGACY_DEFAULT_CLUB_ID, NightAuditConfig, load_config, resolve_club_id
from nightaudit.daily_close import DailyCloseService, ServiceRegistry
from nightaudit.database import _engine_kwargs_for
from nightaudit.errors import ConflictError, NotFoundError, ValidationError

D = date(2025, 6, 1)
OPERATOR = schemas.Operator(id="7", name="Night Manager")


class DailyCloseServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = ts.TempDatabase()
        self.session = self.db.Session()
        self.clock = ts.clock_at(D, 22)
        self.service = DailyCloseService(self.db.Session, ts.make_config(), clock=self.clock)

    def tearDown(self):
        self.session.close()
        self.db.close()

    def test_preview_of_open_day_is_live(self):
        ts.seed_june_first(self.session)
        booking = ts.add_booking(self.session, ts.local(D, 20))

        preview = self.service.get_preview("2025-06-01")

        self.assertFalse(preview.is_closed)
        self.assertEqual(preview.total_collected, 1500.0)
        self.assertEqual(preview.total_charged, 1500.0)
        self.assertEqual([c.id for c in preview.no_show_candidates], [booking.id])

    def test_preview_of_closed_day_comes_from_the_report(self):
        ts.seed_june_first(self.session)
        self.service.execute(D, OPERATOR, declared_cash=1000)

        # Late posting after the close must not change what the closed day shows.
        folio = ts.add_folio(self.session)
        ts.add_payment(self.session, folio, "cash", 50, ts.utc(D, 21))
        ts.add_booking(self.session, ts.local(D, 20))

        preview = self.service.get_preview(D)

        self.assertTrue(preview.is_closed)
        self.assertEqual(preview.total_collected, 1500.0)
        self.assertEqual(preview.payment_summary, {"cash": 1000.0, "wechat": 500.0})
        self.assertEqual(preview.no_show_candidates, [])

    def test_generated_at_stays_club_local_after_close(self):
        ts.seed_june_first(self.session)
        live = self.service.get_preview(D)

        self.service.execute(D, OPERATOR)
        closed = self.service.get_preview(D)

        self.assertEqual(live.generated_at, datetime(2025, 6, 1, 22, 0))
        self.assertEqual(closed.generated_at, datetime(2025, 6, 1, 22, 0))

    def test_preview_defaults_to_today_in_club_timezone(self):
        # 2025-06-01 17:00 UTC is already 2025-06-02 01:00 in Shanghai.
        self.clock.now = datetime(2025, 6, 1, 17, 0, tzinfo=timezone.utc)

        self.assertEqual(self.service.get_preview(None).date, date(2025, 6, 2))
        self.assertEqual(self.service.get_preview("").date, date(2025, 6, 2))

    def test_bad_date_is_a_validation_error(self):
        for bad in ("2025-13-01", "01/06/2025", "yesterday"):
            with self.assertRaises(ValidationError):
                self.service.get_preview(bad)

    def test_auto_no_show_refused_once_closed(self):
        ts.add_booking(self.session, ts.local(D, 8))
        self.service.execute(D, OPERATOR)

        with self.assertRaises(ConflictError) as ctx:
            self.service.auto_no_show(D, OPERATOR)
        self.assertEqual(ctx.exception.reason, ConflictError.ALREADY_CLOSED)

    def test_auto_no_show_then_close_counts_no_shows(self):
        ts.add_booking(self.session, ts.local(D, 8), party_size=2)
        ts.add_booking(self.session, ts.local(D, 9), status=models.BookingStatus.completed)

        result = self.service.auto_no_show("2025-06-01", OPERATOR)
        report = self.service.execute("2025-06-01", OPERATOR)

        self.assertEqual(result.marked_count, 1)
        self.assertEqual(report.booking_stats["no_show"], 1)
        self.assertEqual(report.booking_stats["completed"], 1)
        self.assertEqual(report.booking_stats["confirmed"], 0)

    def test_get_report_and_close_status(self):
        with self.assertRaises(NotFoundError):
            self.service.get_report("2025-06-01")
        self.assertFalse(self.service.close_status("2025-06-01").is_closed)

        self.service.execute(D, OPERATOR)

        self.assertEqual(self.service.get_report("2025-06-01").close_date, D)
        status = self.service.close_status("2025-06-01")
        self.assertTrue(status.is_closed)
        self.assertEqual(status.operator_name, "Night Manager")
        self.assertIsNotNone(status.closed_at)

    def test_list_reports_accepts_string_dates(self):
        for day in (1, 2, 3):
            self.clock.now = ts.clock_at(date(2025, 6, day), 23).now
            self.service.execute(date(2025, 6, day), OPERATOR)

        page = self.service.list_reports(start_date="2025-06-02", end_date="2025-06-03")

        self.assertEqual(page.total, 2)
        self.assertEqual([r.close_date.day for r in page.items], [3, 2])

        with self.assertRaises(ValidationError):
            self.service.list_reports(start_date="2025-06-03", end_date="2025-06-02")


class ServiceRegistryTests(unittest.TestCase):
    def setUp(self):
        self.db = ts.TempDatabase()

    def tearDown(self):
        self.db.close()

    def test_one_service_per_club(self):
        with self.db.Session() as db:
            db.add(models.Role(club_id=ts.OTHER_CLUB_ID, code="club_staff", status="active", permissions={}))
            db.commit()
        registry = ServiceRegistry(self.db.Session, ts.make_config())

        default = registry.service(None)
        self.assertIs(default, registry.service(ts.CLUB_ID))
        self.assertEqual(default.club_id, ts.CLUB_ID)

        other = registry.service(ts.OTHER_CLUB_ID)
        self.assertEqual(other.club_id, ts.OTHER_CLUB_ID)
        self.assertEqual(other.config.timezone, ts.TZ_NAME)
        self.assertIsNot(registry.permissions(ts.CLUB_ID), registry.permissions(ts.OTHER_CLUB_ID))

    def test_unknown_club_gets_no_entry(self):
        registry = ServiceRegistry(self.db.Session, ts.make_config())

        for club in ("junk-1", "junk-2"):
            with self.assertRaises(NotFoundError):
                registry.service(club)
            with self.assertRaises(NotFoundError):
                registry.permissions(club)

        self.assertEqual(registry._services, {})
        self.assertEqual(registry._role_caches, {})


class ConfigTests(unittest.TestCase):
    def test_club_id_is_required(self):
        with mock.patch.dict(os.environ, {"CLUB_ID": "", "ALLOW_LEGACY_DEFAULT_CLUB_ID": ""}):
            with self.assertRaises(RuntimeError):
                resolve_club_id()

    def test_legacy_club_id_only_behind_flag(self):
        with mock.patch.dict(os.environ, {"CLUB_ID": "", "ALLOW_LEGACY_DEFAULT_CLUB_ID": "1"}):
            self.assertEqual(resolve_club_id(), LEGACY_DEFAULT_CLUB_ID)

    def test_load_config_reads_environment(self):
        env = {
            "CLUB_ID": "club-42",
            "CLUB_TIMEZONE": "Europe/London",
            "DATA_ACCESS_TIMEOUT_SECONDS": "2.5",
            "CLOSE_CLAIM_TTL_SECONDS": "not-a-number",
        }
        with mock.patch.dict(os.environ, env):
            config = load_config()

        self.assertEqual(config.club_id, "club-42")
        self.assertEqual(config.timezone, "Europe/London")
        self.assertEqual(config.data_access_timeout_seconds, 2.5)
        self.assertEqual(config.close_claim_ttl_seconds, 300.0)

    def test_invalid_values_are_rejected(self):
        with self.assertRaises(ValueError):
            NightAuditConfig(club_id="  ")
        with self.assertRaises(ValueError):
            NightAuditConfig(club_id="club-1", timezone="Mars/Olympus_Mons")


class EngineTimeoutTests(unittest.TestCase):
    def test_postgres_engine_carries_connect_pool_and_statement_timeouts(self):
        kwargs = _engine_kwargs_for("postgresql+psycopg://user:pw@db.example.com:5432/club", 2.5)

        self.assertEqual(kwargs["pool_timeout"], 2.5)
        args = kwargs["connect_args"]
        self.assertEqual(args["connect_timeout"], 3)
        self.assertEqual(args["options"], "-c statement_timeout=2500")
        self.assertIsNone(args["prepare_threshold"])

    def test_mysql_engine_carries_connection_timeout(self):
        kwargs = _engine_kwargs_for("mysql+mysqlconnector://root:@localhost:3306/nightaudit", 10.0)

        self.assertEqual(kwargs["pool_timeout"], 10.0)
        self.assertEqual(kwargs["connect_args"], {"connection_timeout": 10})

    def test_sqlite_bounds_lock_waits_without_pool_timeout(self):
        kwargs = _engine_kwargs_for("sqlite://", 4.0)

        self.assertNotIn("pool_timeout", kwargs)
        self.assertEqual(kwargs["connect_args"], {"check_same_thread": False, "timeout": 4.0})


class BusinessDateTests(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_business_date("2025-06-01", ts.TZ), D)
        self.assertEqual(parse_business_date(D, ts.TZ), D)
        with self.assertRaises(ValidationError):
            parse_business_date(datetime(2025, 6, 1, 8, 0), ts.TZ)

    def test_utc_window_covers_local_day(self):
        start, end = utc_window(D, ts.TZ)
        self.assertEqual(start, datetime(2025, 5, 31, 16, 0))
        self.assertEqual(end, datetime(2025, 6, 1, 16, 0))


if __name__ == "__main__":
    unittest.main()
