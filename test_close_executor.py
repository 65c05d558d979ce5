import testing_support as ts

import threading
import time
import unittest
from datetime import date

from nightaudit import models, schemas
from nightaudit.close_executor import CloseExecutor, compute_cash_variance
from nightaudit.errors import ConflictError, TransientError, ValidationError
from nightaudit.ledger import LedgerAggregator
from nightaudit.report_store import ReportStore

D = date(2025, 6, 1)
OPERATOR = schemas.Operator(id="7", name="Night Manager")


class FailingAggregator:
    def aggregate(self, target):
        raise TransientError("Timed out reading payments after 10s", source="payments")


class CloseExecutorTests(unittest.TestCase):
    def setUp(self):
        self.db = ts.TempDatabase()
        self.session = self.db.Session()
        self.clock = ts.clock_at(D, 23)
        self.executor = self._executor()

    def tearDown(self):
        self.session.close()
        self.db.close()

    def _store(self):
        return ReportStore(self.db.Session, club_id=ts.CLUB_ID, claim_ttl_seconds=300, clock=self.clock)

    def _executor(self, aggregator=None):
        aggregator = aggregator or LedgerAggregator(
            self.db.Session, club_id=ts.CLUB_ID, tz=ts.TZ, timeout_seconds=10, clock=self.clock
        )
        return CloseExecutor(aggregator, self._store(), clock=self.clock)

    def _reports(self):
        self.session.expire_all()
        return self.session.query(models.DailyCloseReport).all()

    def _claims(self):
        self.session.expire_all()
        return self.session.query(models.DailyCloseClaim).all()

    def test_june_first_close_and_second_attempt_conflicts(self):
        ts.seed_june_first(self.session)

        report = self.executor.execute(D, OPERATOR, declared_cash=1000)

        self.assertEqual(report.close_date, D)
        self.assertEqual(report.club_id, ts.CLUB_ID)
        self.assertEqual(report.total_collected, 1500.0)
        self.assertEqual(report.total_charged, 1500.0)
        self.assertEqual(report.payment_summary, {"cash": 1000.0, "wechat": 500.0})
        self.assertEqual(report.cash_declared, 1000.0)
        self.assertEqual(report.cash_variance, 0.0)
        self.assertEqual(report.operator_name, "Night Manager")
        self.assertEqual(report.operator_id, "7")

        with self.assertRaises(ConflictError) as ctx:
            self.executor.execute(D, OPERATOR, declared_cash=1000)
        self.assertEqual(ctx.exception.reason, ConflictError.ALREADY_CLOSED)

        self.assertEqual(len(self._reports()), 1)
        self.assertEqual(self._claims(), [])
        audits = self.session.query(models.AuditLog).filter_by(action="execute").all()
        self.assertEqual(len(audits), 1)

    def test_cash_variance_absent_without_declaration(self):
        ts.seed_june_first(self.session)

        report = self.executor.execute(D, OPERATOR)

        self.assertIsNone(report.cash_declared)
        self.assertIsNone(report.cash_variance)

    def test_cash_variance_is_declared_minus_expected(self):
        ts.seed_june_first(self.session)

        report = self.executor.execute(D, OPERATOR, declared_cash=980.55, notes="  short in till 2  ")

        self.assertEqual(report.cash_variance, -19.45)
        self.assertEqual(round(report.cash_declared - report.cash_variance, 2), report.payment_summary["cash"])
        self.assertEqual(report.notes, "short in till 2")

    def test_declared_cash_without_cash_payments(self):
        folio = ts.add_folio(self.session)
        ts.add_payment(self.session, folio, "wechat", 300, ts.utc(D, 12))

        report = self.executor.execute(D, OPERATOR, declared_cash=25)

        self.assertEqual(report.cash_variance, 25.0)

    def test_closing_an_empty_day(self):
        report = self.executor.execute(D, OPERATOR)

        self.assertEqual(report.total_collected, 0.0)
        self.assertEqual(report.payment_summary, {})
        self.assertEqual(report.booking_stats["total"], 0)

    def test_validation_happens_before_any_side_effect(self):
        cases = [
            (None, None),
            (schemas.Operator(id="1", name="   "), None),
            (OPERATOR, -0.01),
            (OPERATOR, float("nan")),
            (OPERATOR, float("inf")),
            (OPERATOR, "lots"),
        ]
        for operator, declared in cases:
            with self.assertRaises(ValidationError):
                self.executor.execute(D, operator, declared_cash=declared)

        self.assertEqual(self._reports(), [])
        self.assertEqual(self._claims(), [])

    def test_concurrent_executes_produce_one_report(self):
        ts.seed_june_first(self.session)
        self._run_concurrently(lambda i: self.executor, n=8)

    def test_concurrent_executes_across_instances_produce_one_report(self):
        ts.seed_june_first(self.session)
        executors = [self._executor() for _ in range(6)]
        self._run_concurrently(lambda i: executors[i], n=6)

    def _run_concurrently(self, executor_for, n):
        barrier = threading.Barrier(n)
        results = []
        lock = threading.Lock()

        def worker(i):
            operator = schemas.Operator(id=str(i), name=f"Operator {i}")
            barrier.wait()
            try:
                outcome = executor_for(i).execute(D, operator, declared_cash=1000)
            except Exception as e:  # surfaced by the assertions below
                outcome = e
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        reports = [r for r in results if isinstance(r, models.DailyCloseReport)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        self.assertEqual(len(results), n)
        self.assertEqual(len(reports), 1, results)
        self.assertEqual(len(conflicts), n - 1, results)
        for c in conflicts:
            self.assertIn(c.reason, {ConflictError.ALREADY_CLOSED, ConflictError.IN_PROGRESS})
        self.assertEqual(len(self._reports()), 1)
        self.assertEqual(self._claims(), [])

    def test_failed_aggregation_releases_claim_and_writes_nothing(self):
        ts.seed_june_first(self.session)
        failing = self._executor(aggregator=FailingAggregator())

        with self.assertRaises(TransientError) as ctx:
            failing.execute(D, OPERATOR, declared_cash=1000)
        self.assertTrue(ctx.exception.retryable)

        self.assertEqual(self._reports(), [])
        self.assertEqual(self._claims(), [])
        self.assertEqual(self.session.query(models.AuditLog).count(), 0)

        # Retry succeeds once the source is back.
        report = self.executor.execute(D, OPERATOR, declared_cash=1000)
        self.assertEqual(report.cash_variance, 0.0)

    def test_live_claim_blocks_and_expired_claim_is_taken_over(self):
        ts.seed_june_first(self.session)
        self._store().claim(D, operator_name="crashed worker")

        with self.assertRaises(ConflictError) as ctx:
            self.executor.execute(D, OPERATOR)
        self.assertEqual(ctx.exception.reason, ConflictError.IN_PROGRESS)
        self.assertEqual(self._reports(), [])

        self.clock.advance(seconds=301)
        report = self.executor.execute(D, OPERATOR)

        self.assertEqual(report.close_date, D)
        self.assertEqual(self._claims(), [])

    def test_hung_store_read_after_claim_is_a_transient_failure(self):
        ts.seed_june_first(self.session)
        store = ReportStore(
            self.db.Session, club_id=ts.CLUB_ID, claim_ttl_seconds=300, clock=self.clock, timeout_seconds=0.5
        )
        executor = CloseExecutor(
            LedgerAggregator(self.db.Session, club_id=ts.CLUB_ID, tz=ts.TZ, timeout_seconds=10, clock=self.clock),
            store,
            clock=self.clock,
        )
        unblock = threading.Event()
        self.addCleanup(unblock.set)
        real_find = store._find
        calls = []

        # The re-check after the claim is the second lookup.
        def hanging_find(target):
            calls.append(target)
            if len(calls) == 2:
                unblock.wait(10)
                return None
            return real_find(target)

        store._find = hanging_find
        started = time.monotonic()
        with self.assertRaises(TransientError) as ctx:
            executor.execute(D, OPERATOR, declared_cash=1000)
        elapsed = time.monotonic() - started
        unblock.set()

        self.assertLess(elapsed, 3)
        self.assertEqual(ctx.exception.source, "daily_close_reports")
        self.assertEqual(self._reports(), [])
        self.assertEqual(self._claims(), [])

        report = self.executor.execute(D, OPERATOR, declared_cash=1000)
        self.assertEqual(report.total_collected, 1500.0)


class CashVarianceTests(unittest.TestCase):
    def test_none_when_not_declared(self):
        self.assertIsNone(compute_cash_variance(None, {"cash": 100.0}))

    def test_missing_cash_counts_as_zero(self):
        self.assertEqual(compute_cash_variance(12.5, {"wechat": 100.0}), 12.5)

    def test_exact_to_the_cent(self):
        variance = compute_cash_variance(100.1, {"cash": 100.3})
        self.assertEqual(variance, -0.2)


if __name__ == "__main__":
    unittest.main()
