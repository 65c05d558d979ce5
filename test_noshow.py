import testing_support as ts

import threading
import unittest
from datetime import date, datetime

from sqlalchemy.exc import OperationalError

from nightaudit import models, schemas
from nightaudit.noshow import NO_SHOW_REASON, BookingSnapshot, NoShowResolver, is_no_show_eligible

D = date(2025, 6, 1)


class EligibilityTests(unittest.TestCase):
    NOW = datetime(2025, 6, 1, 22, 0)

    def snap(self, status="confirmed", tee_time=datetime(2025, 6, 1, 20, 0), reached=()):
        return BookingSnapshot(
            id=1, order_no="BK-1", player_name="A", party_size=2, status=status,
            tee_time=tee_time, folio_id=None, reached=reached,
        )

    def test_confirmed_past_booking_is_eligible(self):
        self.assertTrue(is_no_show_eligible(self.snap(), self.NOW))

    def test_tee_time_must_be_strictly_in_the_past(self):
        self.assertFalse(is_no_show_eligible(self.snap(tee_time=self.NOW), self.NOW))
        self.assertFalse(is_no_show_eligible(self.snap(tee_time=datetime(2025, 6, 1, 22, 30)), self.NOW))

    def test_only_confirmed_bookings(self):
        for status in ("pending", "checked_in", "playing", "completed", "cancelled", "no_show"):
            self.assertFalse(is_no_show_eligible(self.snap(status=status), self.NOW), status)

    def test_history_into_attended_state_blocks(self):
        for reached in ("checked_in", "playing", "completed", "cancelled"):
            self.assertFalse(is_no_show_eligible(self.snap(reached=("confirmed", reached)), self.NOW), reached)
        self.assertTrue(is_no_show_eligible(self.snap(reached=("pending", "confirmed")), self.NOW))


class NoShowResolverTests(unittest.TestCase):
    def setUp(self):
        self.db = ts.TempDatabase()
        self.session = self.db.Session()
        self.clock = ts.clock_at(D, 22)
        self.resolver = NoShowResolver(self.db.Session, club_id=ts.CLUB_ID, tz=ts.TZ, clock=self.clock)
        self.operator = schemas.Operator(id="7", name="Night Manager")

    def tearDown(self):
        self.session.close()
        self.db.close()

    def _status(self, booking_id):
        self.session.expire_all()
        return self.session.get(models.Booking, booking_id).status

    def test_two_hours_ago_confirmed_booking_becomes_no_show(self):
        booking = ts.add_booking(self.session, ts.local(D, 20), party_size=3)

        result = self.resolver.resolve(D, self.operator)

        self.assertEqual(result.marked_count, 1)
        self.assertEqual(result.booking_ids, [booking.id])
        self.assertEqual(result.failed_ids, [])
        self.assertEqual(self._status(booking.id), models.BookingStatus.no_show)

        history = self.session.query(models.BookingStatusChange).filter_by(booking_id=booking.id).all()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].from_status, "confirmed")
        self.assertEqual(history[0].to_status, "no_show")
        self.assertEqual(history[0].reason, NO_SHOW_REASON)
        self.assertEqual(history[0].changed_by, "Night Manager")

        rerun = self.resolver.resolve(D, self.operator)
        self.assertEqual(rerun.marked_count, 0)
        self.assertEqual(rerun.booking_ids, [])

    def test_writes_one_audit_entry_per_run_that_marked_something(self):
        ts.add_booking(self.session, ts.local(D, 19))
        ts.add_booking(self.session, ts.local(D, 20))

        self.resolver.resolve(D, self.operator)
        self.resolver.resolve(D, self.operator)

        logs = self.session.query(models.AuditLog).filter_by(action="auto_noshow").all()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].module, "daily_close")
        self.assertEqual(logs[0].details["count"], 2)
        self.assertEqual(logs[0].operator_id, "7")

    def test_leaves_other_bookings_alone(self):
        future = ts.add_booking(self.session, ts.local(D, 23))
        at_now = ts.add_booking(self.session, ts.local(D, 22))
        pending = ts.add_booking(self.session, ts.local(D, 9), status=models.BookingStatus.pending)
        checked_in = ts.add_booking(self.session, ts.local(D, 9), status=models.BookingStatus.checked_in)
        reverted = ts.add_booking(
            self.session, ts.local(D, 9), history=(models.BookingStatus.checked_in, models.BookingStatus.confirmed)
        )
        yesterday = ts.add_booking(self.session, ts.local(date(2025, 5, 31), 9))
        other_club = ts.add_booking(self.session, ts.local(D, 9), club_id=ts.OTHER_CLUB_ID)

        result = self.resolver.resolve(D, self.operator)

        self.assertEqual(result.marked_count, 0)
        self.assertEqual(self._status(future.id), models.BookingStatus.confirmed)
        self.assertEqual(self._status(at_now.id), models.BookingStatus.confirmed)
        self.assertEqual(self._status(pending.id), models.BookingStatus.pending)
        self.assertEqual(self._status(checked_in.id), models.BookingStatus.checked_in)
        self.assertEqual(self._status(reverted.id), models.BookingStatus.confirmed)
        self.assertEqual(self._status(yesterday.id), models.BookingStatus.confirmed)
        self.assertEqual(self._status(other_club.id), models.BookingStatus.confirmed)
        self.assertEqual(self.session.query(models.AuditLog).count(), 0)

    def test_system_operator_when_none_given(self):
        booking = ts.add_booking(self.session, ts.local(D, 8))

        self.resolver.resolve(D)

        change = self.session.query(models.BookingStatusChange).filter_by(booking_id=booking.id).one()
        self.assertEqual(change.changed_by, "system")

    def test_one_failure_does_not_block_the_rest(self):
        first_id = ts.add_booking(self.session, ts.local(D, 8)).id
        second_id = ts.add_booking(self.session, ts.local(D, 9)).id
        third_id = ts.add_booking(self.session, ts.local(D, 10)).id

        class FlakyResolver(NoShowResolver):
            def _mark_one(self, booking_id, stamped_at, operator_name):
                if booking_id == second_id:
                    raise OperationalError("UPDATE bookings", {}, Exception("lock timeout"))
                return super()._mark_one(booking_id, stamped_at, operator_name)

        flaky = FlakyResolver(self.db.Session, club_id=ts.CLUB_ID, tz=ts.TZ, clock=self.clock)
        result = flaky.resolve(D, self.operator)

        self.assertEqual(result.marked_count, 2)
        self.assertEqual(sorted(result.booking_ids), sorted([first_id, third_id]))
        self.assertEqual(result.failed_ids, [second_id])
        self.assertEqual(self._status(second_id), models.BookingStatus.confirmed)

    def test_hung_update_is_counted_as_failed(self):
        first_id = ts.add_booking(self.session, ts.local(D, 8)).id
        second_id = ts.add_booking(self.session, ts.local(D, 9)).id
        unblock = threading.Event()
        self.addCleanup(unblock.set)

        class StuckResolver(NoShowResolver):
            def _mark_one(self, booking_id, stamped_at, operator_name):
                if booking_id == first_id:
                    unblock.wait(10)
                    return False
                return super()._mark_one(booking_id, stamped_at, operator_name)

        stuck = StuckResolver(self.db.Session, club_id=ts.CLUB_ID, tz=ts.TZ, clock=self.clock, timeout_seconds=0.3)
        result = stuck.resolve(D, self.operator)
        unblock.set()

        self.assertEqual(result.booking_ids, [second_id])
        self.assertEqual(result.failed_ids, [first_id])
        self.assertEqual(self._status(first_id), models.BookingStatus.confirmed)

    def test_conditional_update_skips_booking_that_changed(self):
        booking = ts.add_booking(self.session, ts.local(D, 8))
        booking.status = models.BookingStatus.checked_in
        self.session.commit()

        marked = self.resolver._mark_one(booking.id, datetime(2025, 6, 1, 14, 0), "system")

        self.assertFalse(marked)
        self.assertEqual(self._status(booking.id), models.BookingStatus.checked_in)
        self.assertEqual(self.session.query(models.BookingStatusChange).count(), 0)


if __name__ == "__main__":
    unittest.main()
