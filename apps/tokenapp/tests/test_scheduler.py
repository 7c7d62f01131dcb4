from datetime import date, time, timedelta
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings

from apps.tokenapp.exceptions import (
    ConcurrencyConflict,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    PermissionScope,
    StaleDate,
    Timeout,
)
from apps.tokenapp.models import Token, TokenStatus
from apps.tokenapp.services.change_notifier import ChangeNotifier
from apps.tokenapp.services.deadline import Deadline
from apps.tokenapp.services.position_estimator import Position
from apps.tokenapp.services.queue_key import OfficialScope, resolve
from apps.tokenapp.services.queue_scheduler import Slot
from apps.tokenapp.services.token_store import DjangoTokenStore
from utils.distributed_locks import DistributedLock

from .helpers import (
    SERVICE_DATE,
    FixedRandom,
    book_and_check_in,
    make_scheduler,
    revenue_key,
)


class CompetingCheckInStore(DjangoTokenStore):
    """Moves a pending token to ``competing_status`` just before a check-in update"""

    def __init__(self, competing_status):
        self.competing_status = competing_status

    def conditional_update(self, token_id, expected_status, **changes):
        if expected_status == TokenStatus.PENDING and changes.get("status") == TokenStatus.WAITING:
            Token.objects.filter(id=token_id).update(status=self.competing_status)
        return super().conditional_update(token_id, expected_status, **changes)


class SchedulerTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.scheduler = make_scheduler()
        self.clock = self.scheduler.clock
        self.notifier = self.scheduler.notifier
        self.key = revenue_key()
        self.scope = OfficialScope(self.key.office_id, self.key.department_id)

    def book(self, citizen_id="citizen-1", queue_key=None, **kwargs):
        queue_key = queue_key or self.key
        return self.scheduler.book(citizen_id, queue_key, Slot(queue_key.service_date), **kwargs)

    def serving_count(self, queue_key=None):
        return Token.objects.filter(
            queue_key=str(queue_key or self.key), status=TokenStatus.SERVING
        ).count()


class BookTest(SchedulerTestCase):
    def test_book_creates_pending_token(self):
        token = self.book(
            document_refs={"aadhaar": "doc-1"},
            office_name="Pune Collectorate",
            service_name="Income certificate",
        )

        self.assertEqual(token.status, TokenStatus.PENDING)
        self.assertRegex(token.token_number, r"^JS-261019-\d{3}$")
        self.assertEqual(token.queue_key, str(self.key))
        self.assertEqual(token.citizen_id, "citizen-1")
        self.assertEqual(token.document_refs, {"aadhaar": "doc-1"})
        self.assertEqual(token.created_at, self.clock())
        self.assertEqual(token.booked_at, self.clock())
        self.assertTrue(Token.objects.filter(id=token.id).exists())

    def test_book_keeps_slot_time(self):
        token = self.scheduler.book("citizen-1", self.key, Slot(SERVICE_DATE, time(11, 15)))
        self.assertEqual(token.appointment_time, time(11, 15))

    def test_book_publishes_creation_event(self):
        token = self.book()

        self.assertEqual(self.notifier.transitions(), [(token.token_number, None, "pending")])

    def test_book_for_a_future_date(self):
        future_key = revenue_key(SERVICE_DATE + timedelta(days=3))
        token = self.book(queue_key=future_key)

        self.assertEqual(token.appointment_date, SERVICE_DATE + timedelta(days=3))
        self.assertRegex(token.token_number, r"^JS-261022-\d{3}$")

    def test_book_rejects_blank_citizen(self):
        with self.assertRaises(InvalidArgument):
            self.book(citizen_id="  ")

    def test_book_rejects_slot_outside_queue_date(self):
        with self.assertRaises(InvalidArgument):
            self.scheduler.book("citizen-1", self.key, Slot(SERVICE_DATE + timedelta(days=1)))

    def test_book_rejects_past_dates(self):
        with self.assertRaises(StaleDate):
            self.book(queue_key=revenue_key(SERVICE_DATE - timedelta(days=3)))

    def test_book_rejects_closed_weekday(self):
        sunday = date(2026, 10, 25)
        with self.assertRaises(InvalidArgument):
            self.book(queue_key=revenue_key(sunday))

    def test_book_rejects_malformed_document_refs(self):
        with self.assertRaises(InvalidArgument):
            self.book(document_refs=["aadhaar"])

    @override_settings(JANSEVA={"TOKEN_NUMBER_ATTEMPTS": 2})
    def test_colliding_numbers_widen_the_suffix(self):
        self.scheduler.rng = FixedRandom(5)

        first = self.book("citizen-1")
        second = self.book("citizen-2")

        self.assertEqual(first.token_number, "JS-261019-005")
        self.assertEqual(second.token_number, "JS-261019-0005")

    def test_token_numbers_are_unique(self):
        numbers = {self.book(f"citizen-{i}").token_number for i in range(30)}
        self.assertEqual(len(numbers), 30)


class CheckInTest(SchedulerTestCase):
    def test_check_in_moves_token_to_waiting(self):
        token = self.book()
        self.clock.advance(minutes=45)

        token = self.scheduler.check_in(token.id, scope=self.scope)

        self.assertEqual(token.status, TokenStatus.WAITING)
        # Queue order follows arrival, not booking
        self.assertEqual(token.created_at, self.clock())
        self.assertEqual(token.booked_at, self.clock() - timedelta(minutes=45))
        self.assertEqual(
            self.notifier.transitions()[-1], (token.token_number, "pending", "waiting")
        )

    def test_check_in_by_token_number(self):
        token = self.book()

        checked_in = self.scheduler.check_in(token.token_number.lower())

        self.assertEqual(checked_in.id, token.id)
        self.assertEqual(checked_in.status, TokenStatus.WAITING)

    def test_check_in_is_idempotent(self):
        token = self.book()
        first = self.scheduler.check_in(token.id)
        self.clock.advance(minutes=5)
        event_count = len(self.notifier.events)

        second = self.scheduler.check_in(token.id)

        self.assertEqual(second.status, TokenStatus.WAITING)
        self.assertEqual(second.created_at, first.created_at)
        self.assertEqual(len(self.notifier.events), event_count)

    def test_check_in_of_serving_token_returns_it_unchanged(self):
        token = self.book()
        self.scheduler.check_in(token.id)
        self.scheduler.call_next(self.key, "clerk-1")

        again = self.scheduler.check_in(token.id)

        self.assertEqual(again.status, TokenStatus.SERVING)

    def test_check_in_for_another_day_is_stale(self):
        tomorrow = revenue_key(SERVICE_DATE + timedelta(days=1))
        token = self.book(queue_key=tomorrow)

        with self.assertRaises(StaleDate):
            self.scheduler.check_in(token.id)

        token.refresh_from_db()
        self.assertEqual(token.status, TokenStatus.PENDING)

    def test_check_in_after_the_appointment_day_is_stale(self):
        token = self.book()
        self.clock.advance(days=1)

        with self.assertRaises(StaleDate):
            self.scheduler.check_in(token.id)

    def test_check_in_of_cancelled_token_is_rejected(self):
        token = self.book()
        self.scheduler.cancel(token.id)

        with self.assertRaises(InvalidTransition):
            self.scheduler.check_in(token.id)

    def test_check_in_outside_official_scope(self):
        token = self.book()

        with self.assertRaises(PermissionScope):
            self.scheduler.check_in(token.id, scope=OfficialScope(self.key.office_id, "TRANSPORT"))

        token.refresh_from_db()
        self.assertEqual(token.status, TokenStatus.PENDING)

    def test_check_in_of_unknown_token(self):
        with self.assertRaises(NotFound):
            self.scheduler.check_in("JS-261019-999")

    def test_check_in_with_expired_deadline_makes_no_change(self):
        token = self.book()
        event_count = len(self.notifier.events)

        with self.assertRaises(Timeout):
            self.scheduler.check_in(token.id, timeout=0)

        token.refresh_from_db()
        self.assertEqual(token.status, TokenStatus.PENDING)
        self.assertEqual(len(self.notifier.events), event_count)

    def test_check_in_returns_token_admitted_by_another_counter(self):
        scheduler = make_scheduler(store=CompetingCheckInStore(TokenStatus.WAITING))
        token = scheduler.book("citizen-1", self.key, Slot(SERVICE_DATE))

        admitted = scheduler.check_in(token.id)

        self.assertEqual(admitted.id, token.id)
        self.assertEqual(admitted.status, TokenStatus.WAITING)
        # Only the booking was published; the other counter owns the check-in
        self.assertEqual(
            [new for _, _, new in scheduler.notifier.transitions()], [TokenStatus.PENDING]
        )

    def test_check_in_losing_to_a_cancellation_is_a_conflict(self):
        scheduler = make_scheduler(store=CompetingCheckInStore(TokenStatus.CANCELLED))
        token = scheduler.book("citizen-1", self.key, Slot(SERVICE_DATE))

        with self.assertRaises(ConcurrencyConflict):
            scheduler.check_in(token.id)

        token.refresh_from_db()
        self.assertEqual(token.status, TokenStatus.CANCELLED)


class CallNextTest(SchedulerTestCase):
    def test_empty_queue_returns_none(self):
        self.assertIsNone(self.scheduler.call_next(self.key, "clerk-1", scope=self.scope))
        self.assertEqual(self.notifier.events, [])

    def test_call_next_follows_check_in_order(self):
        a = self.book("citizen-a")
        b = self.book("citizen-b")
        c = self.book("citizen-c")

        for token in (c, a, b):
            self.clock.advance(minutes=1)
            self.scheduler.check_in(token.id)

        served = []
        for _ in range(3):
            self.clock.advance(minutes=10)
            served.append(self.scheduler.call_next(self.key, "clerk-1").id)

        self.assertEqual(served, [c.id, a.id, b.id])

    def test_normal_cycle(self):
        a, b = book_and_check_in(self.scheduler, self.key, 2)

        self.clock.advance(minutes=1)
        first_call = self.clock()
        serving = self.scheduler.call_next(self.key, "clerk-1", scope=self.scope)

        self.assertEqual(serving.id, a.id)
        self.assertEqual(serving.status, TokenStatus.SERVING)
        self.assertEqual(serving.served_by, "clerk-1")
        self.assertEqual(serving.called_at, first_call)
        self.assertEqual(self.serving_count(), 1)

        self.clock.advance(minutes=12)
        serving = self.scheduler.call_next(self.key, "clerk-2", scope=self.scope)

        a.refresh_from_db()
        self.assertEqual(a.status, TokenStatus.COMPLETED)
        self.assertEqual(a.served_by, "clerk-1")
        self.assertEqual(a.served_at, self.clock())
        self.assertEqual(serving.id, b.id)
        self.assertEqual(serving.served_by, "clerk-2")
        self.assertEqual(self.serving_count(), 1)

        self.assertEqual(
            self.notifier.transitions()[-3:],
            [
                (a.token_number, "waiting", "serving"),
                (a.token_number, "serving", "completed"),
                (b.token_number, "waiting", "serving"),
            ],
        )

    def test_last_call_completes_serving_and_returns_none(self):
        (a,) = book_and_check_in(self.scheduler, self.key, 1)
        self.scheduler.call_next(self.key, "clerk-1")

        self.assertIsNone(self.scheduler.call_next(self.key, "clerk-1"))

        a.refresh_from_db()
        self.assertEqual(a.status, TokenStatus.COMPLETED)
        self.assertEqual(self.serving_count(), 0)

    def test_pending_tokens_are_not_called(self):
        self.book()
        self.assertIsNone(self.scheduler.call_next(self.key, "clerk-1"))

    def test_queue_keys_are_independent(self):
        transport = resolve(self.key.office_id, "TRANSPORT", SERVICE_DATE)
        (revenue_token,) = book_and_check_in(self.scheduler, self.key, 1)
        (transport_token,) = book_and_check_in(self.scheduler, transport, 1, "driver")

        self.assertEqual(self.scheduler.call_next(transport, "clerk-9").id, transport_token.id)
        self.assertEqual(self.scheduler.call_next(self.key, "clerk-1").id, revenue_token.id)
        self.assertEqual(self.serving_count(self.key), 1)
        self.assertEqual(self.serving_count(transport), 1)

    def test_call_next_accepts_string_key(self):
        (a,) = book_and_check_in(self.scheduler, self.key, 1)
        self.assertEqual(self.scheduler.call_next(str(self.key), "clerk-1").id, a.id)

    def test_call_next_requires_official(self):
        with self.assertRaises(InvalidArgument):
            self.scheduler.call_next(self.key, "")

    def test_call_next_outside_scope(self):
        with self.assertRaises(PermissionScope):
            self.scheduler.call_next(self.key, "clerk-1", scope=OfficialScope("OFF2", "REVENUE"))

    def test_call_next_times_out_while_queue_is_locked(self):
        book_and_check_in(self.scheduler, self.key, 1)
        lock = DistributedLock(self.key.lock_name, timeout=0)
        self.assertTrue(lock.acquire())
        try:
            with self.assertRaises(Timeout):
                self.scheduler.call_next(self.key, "clerk-1", timeout=0.05)
        finally:
            lock.release()

        self.assertEqual(self.serving_count(), 0)

    @override_settings(JANSEVA={"QUEUE_LOCK_TIMEOUT": 0})
    def test_busy_queue_without_deadline_is_a_conflict(self):
        lock = DistributedLock(self.key.lock_name, timeout=0)
        self.assertTrue(lock.acquire())
        try:
            with self.assertRaises(ConcurrencyConflict) as ctx:
                self.scheduler.call_next(self.key, "clerk-1")
        finally:
            lock.release()

        self.assertTrue(ctx.exception.retryable)

    def test_lost_race_is_a_conflict(self):
        (a,) = book_and_check_in(self.scheduler, self.key, 1)
        original = self.scheduler.store.conditional_update
        self.scheduler.store.conditional_update = lambda *args, **kwargs: False
        try:
            with self.assertRaises(ConcurrencyConflict):
                self.scheduler.call_next(self.key, "clerk-1")
        finally:
            self.scheduler.store.conditional_update = original

        a.refresh_from_db()
        self.assertEqual(a.status, TokenStatus.WAITING)

    def test_deadline_between_steps_leaves_completion_and_retry_promotes(self):
        a, b = book_and_check_in(self.scheduler, self.key, 2)
        self.scheduler.call_next(self.key, "clerk-1")

        # Still in time before completing the serving token, too late after
        with patch.object(Deadline, "expired", side_effect=[False, True]):
            with self.assertRaises(Timeout):
                self.scheduler.call_next(self.key, "clerk-1", timeout=30)

        a.refresh_from_db()
        b.refresh_from_db()
        self.assertEqual(a.status, TokenStatus.COMPLETED)
        self.assertEqual(b.status, TokenStatus.WAITING)
        self.assertEqual(self.serving_count(), 0)
        self.assertEqual(
            self.notifier.transitions()[-1], (a.token_number, "serving", "completed")
        )

        serving = self.scheduler.call_next(self.key, "clerk-1")

        self.assertEqual(serving.id, b.id)
        self.assertEqual(serving.status, TokenStatus.SERVING)
        a.refresh_from_db()
        self.assertEqual(a.status, TokenStatus.COMPLETED)


class SkipTest(SchedulerTestCase):
    def test_skip_reinserts_behind_fifth_waiting_token(self):
        tokens = book_and_check_in(self.scheduler, self.key, 7)
        skipped = self.scheduler.call_next(self.key, "clerk-1")
        self.assertEqual(skipped.id, tokens[0].id)

        self.clock.advance(minutes=3)
        result = self.scheduler.skip(skipped.id, "clerk-1", scope=self.scope)

        self.assertEqual(result.status, TokenStatus.WAITING)
        self.assertEqual(result.created_at, tokens[5].created_at + timedelta(seconds=1))
        self.assertIsNone(result.served_by)
        self.assertIsNone(result.called_at)
        self.assertEqual(self.scheduler.position(result.id).rank, 6)
        self.assertEqual(self.serving_count(), 0)

        self.assertEqual(
            self.notifier.transitions()[-2:],
            [
                (skipped.token_number, "serving", "skipped-pending-requeue"),
                (skipped.token_number, "skipped-pending-requeue", "waiting"),
            ],
        )

    def test_skip_with_short_queue_goes_to_tail(self):
        tokens = book_and_check_in(self.scheduler, self.key, 4)
        skipped = self.scheduler.call_next(self.key, "clerk-1")

        self.clock.advance(minutes=3)
        result = self.scheduler.skip(skipped.id, "clerk-1")

        self.assertEqual(result.created_at, self.clock())
        self.assertEqual(self.scheduler.position(result.id), Position(4, 60))
        self.assertEqual(self.scheduler.position(tokens[1].id).rank, 1)

    def test_skip_waiting_token(self):
        tokens = book_and_check_in(self.scheduler, self.key, 6)

        result = self.scheduler.skip(tokens[0].id, "clerk-1")

        self.assertEqual(result.created_at, tokens[5].created_at + timedelta(seconds=1))
        self.assertEqual(self.scheduler.position(result.id).rank, 6)
        self.assertEqual(
            self.notifier.transitions()[-2][1:], ("waiting", "skipped-pending-requeue")
        )

    def test_skipped_token_is_called_again_later(self):
        tokens = book_and_check_in(self.scheduler, self.key, 3)
        first = self.scheduler.call_next(self.key, "clerk-1")
        self.clock.advance(minutes=2)
        self.scheduler.skip(first.id, "clerk-1")

        order = [self.scheduler.call_next(self.key, "clerk-1").id for _ in range(3)]

        self.assertEqual(order, [tokens[1].id, tokens[2].id, tokens[0].id])

    def test_skip_pending_token_is_rejected(self):
        token = self.book()
        with self.assertRaises(InvalidTransition):
            self.scheduler.skip(token.id, "clerk-1")

    def test_skip_outside_scope(self):
        (token,) = book_and_check_in(self.scheduler, self.key, 1)
        with self.assertRaises(PermissionScope):
            self.scheduler.skip(token.id, "clerk-1", scope=OfficialScope("OFF1", "TRANSPORT"))


class CompleteAndCancelTest(SchedulerTestCase):
    def test_complete_serving_token(self):
        book_and_check_in(self.scheduler, self.key, 2)
        serving = self.scheduler.call_next(self.key, "clerk-1")
        self.clock.advance(minutes=8)

        completed = self.scheduler.complete(serving.id, "clerk-2", scope=self.scope)

        self.assertEqual(completed.status, TokenStatus.COMPLETED)
        self.assertEqual(completed.served_by, "clerk-2")
        self.assertEqual(completed.served_at, self.clock())
        self.assertEqual(self.serving_count(), 0)

    def test_complete_non_serving_token_is_rejected(self):
        (token,) = book_and_check_in(self.scheduler, self.key, 1)
        with self.assertRaises(InvalidTransition):
            self.scheduler.complete(token.id, "clerk-1")

    def test_cancel_pending_and_waiting_tokens(self):
        pending = self.book("citizen-1")
        (waiting,) = book_and_check_in(self.scheduler, self.key, 1, "citizen-w")

        self.assertEqual(self.scheduler.cancel(pending.id).status, TokenStatus.CANCELLED)
        cancelled = self.scheduler.cancel(waiting.id, citizen_id="citizen-w-0")
        self.assertEqual(cancelled.status, TokenStatus.CANCELLED)
        self.assertIsNone(self.scheduler.call_next(self.key, "clerk-1"))

    def test_cancel_serving_or_terminal_token_is_rejected(self):
        book_and_check_in(self.scheduler, self.key, 1)
        serving = self.scheduler.call_next(self.key, "clerk-1")

        with self.assertRaises(InvalidTransition):
            self.scheduler.cancel(serving.id)

        self.scheduler.complete(serving.id, "clerk-1")
        with self.assertRaises(InvalidTransition):
            self.scheduler.cancel(serving.id)

    def test_cancel_requires_ownership(self):
        token = self.book("citizen-1")

        with self.assertRaises(PermissionScope):
            self.scheduler.cancel(token.id, citizen_id="citizen-2")

        token.refresh_from_db()
        self.assertEqual(token.status, TokenStatus.PENDING)


class ReadModelTest(SchedulerTestCase):
    def test_position_of_waiting_tokens(self):
        tokens = book_and_check_in(self.scheduler, self.key, 3)

        self.assertEqual(self.scheduler.position(tokens[0].id), Position(1, 15))
        self.assertEqual(self.scheduler.position(tokens[2].token_number), Position(3, 45))

    def test_position_of_non_waiting_tokens_is_zero(self):
        pending = self.book()
        self.assertEqual(self.scheduler.position(pending.id), Position(0, 0))

        book_and_check_in(self.scheduler, self.key, 1, "other")
        serving = self.scheduler.call_next(self.key, "clerk-1")
        self.assertEqual(self.scheduler.position(serving.id), Position(0, 0))

    def test_snapshot_and_stats(self):
        self.book("late-citizen")
        tokens = book_and_check_in(self.scheduler, self.key, 4)
        self.scheduler.call_next(self.key, "clerk-1")
        self.scheduler.call_next(self.key, "clerk-1")

        snapshot = self.scheduler.snapshot(self.key)

        self.assertEqual(snapshot.queue_key, self.key)
        self.assertEqual(snapshot.serving.id, tokens[1].id)
        self.assertEqual([t.id for t, _ in snapshot.waiting], [tokens[2].id, tokens[3].id])
        self.assertEqual([p.rank for _, p in snapshot.waiting], [1, 2])
        self.assertEqual(snapshot.average_service_minutes, 15)

        self.assertEqual(
            self.scheduler.stats(self.key),
            {"total": 5, "served": 1, "waiting": 3, "serving": 1},
        )

    def test_tokens_for_citizen_latest_first(self):
        today = self.book("citizen-1")
        later = self.book("citizen-1", queue_key=revenue_key(SERVICE_DATE + timedelta(days=2)))
        self.book("citizen-2")

        tokens = self.scheduler.tokens_for_citizen("citizen-1")

        self.assertEqual([t.id for t in tokens], [later.id, today.id])

    @override_settings(TIME_ZONE="Asia/Kolkata")
    def test_forecast_buckets_served_tokens_by_hour(self):
        book_and_check_in(self.scheduler, self.key, 3)
        # First call at 09:33
        self.scheduler.call_next(self.key, "clerk-1")
        self.clock.advance(minutes=10)
        self.scheduler.call_next(self.key, "clerk-1")
        self.clock.advance(minutes=36)
        self.scheduler.call_next(self.key, "clerk-1")
        self.clock.advance(minutes=6)
        self.scheduler.call_next(self.key, "clerk-1")

        forecast = self.scheduler.forecast(self.key.office_id, self.key.department_id)

        self.assertEqual(
            [load.to_dict() for load in forecast[:3]],
            [
                {"hour": "09:00", "served": 2, "average_service_minutes": 23},
                {"hour": "10:00", "served": 1, "average_service_minutes": 6},
                {"hour": "11:00", "served": 0, "average_service_minutes": 0},
            ],
        )
        self.assertEqual(len(forecast), 9)

    def test_forecast_rejects_blank_department(self):
        with self.assertRaises(InvalidArgument):
            self.scheduler.forecast(self.key.office_id, " ")


class BrokenNotifier(ChangeNotifier):
    def publish(self, event):
        raise RuntimeError("channel layer down")


class NotifierFailureTest(SchedulerTestCase):
    def test_operations_succeed_when_notifications_fail(self):
        scheduler = make_scheduler(notifier=BrokenNotifier())

        token = scheduler.book("citizen-1", self.key, Slot(SERVICE_DATE))
        token = scheduler.check_in(token.id)
        serving = scheduler.call_next(self.key, "clerk-1")

        self.assertEqual(serving.id, token.id)
        self.assertEqual(serving.status, TokenStatus.SERVING)
