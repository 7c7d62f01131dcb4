"""
Queue Scheduler

The state machine governing a token from booking to completion:

    pending --check_in--> waiting --call_next--> serving --call_next/complete--> completed
    serving|waiting --skip--> skipped-pending-requeue --> waiting
    pending|waiting --cancel--> cancelled

Every mutation of a waiting/serving token runs under the per-queue-key lock
and is applied as a conditional update on the token's expected status, so
at most one token is serving per queue key and callers observe a lost race
as ``ConcurrencyConflict``. Change events are published after the lock has
been released.
"""

import logging
from contextlib import contextmanager
from datetime import timedelta

from django.utils import timezone

from utils.distributed_locks import distributed_lock

from ..conf import get_setting
from ..exceptions import (
    ConcurrencyConflict,
    InvalidArgument,
    InvalidTransition,
    PermissionScope,
    StaleDate,
    Timeout,
    TokenNumberTaken,
)
from ..models import Token, TokenStatus
from .change_notifier import ChannelsChangeNotifier, TokenChangeEvent
from .deadline import Deadline
from .load_forecast import LoadForecaster
from .position_estimator import PositionEstimator
from .queue_key import QueueKey, ensure_scope, resolve
from .token_number import candidate_numbers
from .token_store import DjangoTokenStore

logger = logging.getLogger(__name__)

ADMITTED_STATUSES = (TokenStatus.WAITING, TokenStatus.SERVING)
SKIPPABLE_STATUSES = (TokenStatus.SERVING, TokenStatus.WAITING)
CANCELLABLE_STATUSES = (TokenStatus.PENDING, TokenStatus.WAITING)


class Slot:
    """Appointment slot chosen by the citizen"""

    def __init__(self, date, time=None):
        self.date = date
        self.time = time

    def __repr__(self):
        return f"Slot(date={self.date!r}, time={self.time!r})"


class QueueSnapshot:
    """Serving token and ranked waiting list of one queue key"""

    def __init__(self, queue_key, serving, waiting, average_service_minutes):
        self.queue_key = queue_key
        self.serving = serving
        self.waiting = waiting
        self.average_service_minutes = average_service_minutes


class QueueScheduler:
    """
    Owns all token status transitions.

    Args:
        store: Entity store; defaults to the Django ORM store.
        notifier: Change notifier; defaults to the channels broadcaster.
        clock: Callable returning the current aware datetime.
        rng: Random source for token numbers.
    """

    def __init__(self, store=None, notifier=None, clock=None, rng=None):
        self.store = store or DjangoTokenStore()
        self.notifier = notifier or ChannelsChangeNotifier()
        self.clock = clock or timezone.now
        self.rng = rng
        self.estimator = PositionEstimator(self.store)
        self.forecaster = LoadForecaster(self.store)

    def now(self):
        return self.clock()

    def service_date(self):
        return timezone.localdate(self.now())

    # ------------------------------------------------------------------
    # Booking & check-in
    # ------------------------------------------------------------------

    def book(
        self,
        citizen_id,
        queue_key,
        slot,
        document_refs=None,
        office_name="",
        department_name="",
        service_name="",
    ):
        """
        Create a pending token for ``slot`` in ``queue_key``.

        Pending tokens are not part of the ordered waiting set, so no queue
        lock is taken.

        Raises:
            InvalidArgument: Blank citizen, slot outside the queue date,
                closed weekday or malformed document references.
            StaleDate: The slot date is already in the past.
        """
        queue_key = self._require_key(queue_key)

        if citizen_id is None or not str(citizen_id).strip():
            raise InvalidArgument("citizen_id is required", detail={"field": "citizen_id"})
        if slot.date != queue_key.service_date:
            raise InvalidArgument(
                f"Slot date {slot.date} does not belong to queue {queue_key}",
                detail={"field": "slot"},
            )
        if document_refs is not None and not isinstance(document_refs, dict):
            raise InvalidArgument(
                "document_refs must map document kinds to references",
                detail={"field": "document_refs"},
            )

        today = self.service_date()
        if slot.date < today:
            raise StaleDate(slot.date, today)
        if slot.date.weekday() in get_setting("CLOSED_WEEKDAYS"):
            raise InvalidArgument(
                f"Offices are closed on {slot.date:%A}", detail={"field": "slot"}
            )

        now = self.now()
        token = None

        for token_number in candidate_numbers(slot.date, self.rng):
            if self.store.number_exists(token_number):
                continue

            candidate = Token(
                token_number=token_number,
                citizen_id=str(citizen_id),
                office_id=queue_key.office_id,
                department_id=queue_key.department_id,
                queue_key=str(queue_key),
                office_name=office_name or "",
                department_name=department_name or "",
                service_name=service_name or "",
                status=TokenStatus.PENDING,
                appointment_date=slot.date,
                appointment_time=slot.time,
                document_refs=dict(document_refs or {}),
                created_at=now,
                booked_at=now,
            )
            try:
                token = self.store.insert(candidate)
            except TokenNumberTaken:
                logger.info(f"Token number {token_number} taken concurrently, drawing another")
                continue
            break

        logger.info(f"Booked token {token.token_number} for citizen {citizen_id} in {queue_key}")
        self.notifier.publish_all(
            [self._event(token, None, TokenStatus.PENDING, now)]
        )
        return token

    def check_in(self, token_ref, scope=None, timeout=None):
        """
        Admit an arrived citizen into the waiting set.

        Repeated check-ins of a waiting or serving token return it unchanged.
        The check-in instant, not the booking instant, orders the queue.

        Raises:
            NotFound, PermissionScope, StaleDate, InvalidTransition,
            ConcurrencyConflict, Timeout
        """
        deadline = Deadline.start("check_in", timeout)
        token = self.store.get_by_reference(token_ref)
        queue_key = token.get_queue_key()
        ensure_scope(scope, queue_key)

        today = self.service_date()
        if token.appointment_date != today:
            raise StaleDate(token.appointment_date, today, token_ref=token.token_number)

        if token.status in ADMITTED_STATUSES:
            logger.debug(f"Token {token.token_number} already admitted ({token.status})")
            return token
        if token.status != TokenStatus.PENDING:
            raise InvalidTransition(token.token_number, token.status, "check in")

        events = []
        try:
            with self._queue_lock(queue_key, deadline, "check_in"):
                token = self.store.get(token.id)
                if token.status in ADMITTED_STATUSES:
                    return token
                if token.status != TokenStatus.PENDING:
                    raise InvalidTransition(token.token_number, token.status, "check in")

                self._check_deadline(deadline)
                now = self.now()
                admitted = self.store.conditional_update(
                    token.id, TokenStatus.PENDING, status=TokenStatus.WAITING, created_at=now
                )
                if not admitted:
                    # Another writer may have admitted it first
                    current = self.store.get(token.id)
                    if current.status in ADMITTED_STATUSES:
                        logger.info(f"Token {token.token_number} admitted concurrently")
                        return current
                    self._lost_race(token, TokenStatus.WAITING)

                events.append(self._event(token, TokenStatus.PENDING, TokenStatus.WAITING, now))
                logger.info(f"Token {token.token_number} pending -> waiting")
                token = self.store.get(token.id)
        finally:
            self.notifier.publish_all(events)

        return token

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def call_next(self, queue_key, official_id, scope=None, timeout=None):
        """
        Complete the currently serving token (if any) and promote the
        earliest waiting token to serving.

        Both steps commit individually. If the deadline passes between them
        the serving token stays completed and the next call promotes.

        Returns:
            The newly serving token, or None when nobody is waiting.
        """
        queue_key = self._require_key(queue_key)
        official_id = self._require_official(official_id)
        ensure_scope(scope, queue_key)
        deadline = Deadline.start("call_next", timeout)

        events = []
        try:
            with self._queue_lock(queue_key, deadline, "call_next"):
                serving = self.store.find_serving(queue_key)
                if serving is not None:
                    self._check_deadline(deadline)
                    now = self.now()
                    self._transition(
                        serving,
                        TokenStatus.COMPLETED,
                        events,
                        now,
                        served_at=now,
                        served_by=serving.served_by or official_id,
                    )

                self._check_deadline(deadline)

                waiting = self.store.query_waiting(queue_key)
                if not waiting:
                    logger.info(f"Queue {queue_key} is empty")
                    return None

                now = self.now()
                return self._transition(
                    waiting[0],
                    TokenStatus.SERVING,
                    events,
                    now,
                    served_by=official_id,
                    served_at=now,
                    called_at=now,
                )
        finally:
            self.notifier.publish_all(events)

    def skip(self, token_ref, official_id, scope=None, timeout=None):
        """
        Defer a serving or waiting token.

        The token is re-queued just behind the 5th waiting token by giving it
        that token's queue timestamp plus one second; with fewer than five
        waiting it goes to the tail.
        """
        official_id = self._require_official(official_id)
        deadline = Deadline.start("skip", timeout)
        token = self.store.get_by_reference(token_ref)
        queue_key = token.get_queue_key()
        ensure_scope(scope, queue_key)

        events = []
        try:
            with self._queue_lock(queue_key, deadline, "skip"):
                token = self.store.get(token.id)
                if token.status not in SKIPPABLE_STATUSES:
                    raise InvalidTransition(token.token_number, token.status, "skip")

                others = [t for t in self.store.query_waiting(queue_key) if t.id != token.id]
                reinsert_after = get_setting("SKIP_REINSERT_AFTER")
                now = self.now()

                if len(others) >= reinsert_after:
                    anchor = others[reinsert_after - 1]
                    new_created_at = anchor.created_at + timedelta(
                        seconds=get_setting("SKIP_REINSERT_OFFSET_SECONDS")
                    )
                else:
                    new_created_at = now

                self._check_deadline(deadline)

                old_status = token.status
                updated = self.store.conditional_update(
                    token.id,
                    old_status,
                    status=TokenStatus.WAITING,
                    created_at=new_created_at,
                    served_by=None,
                    served_at=None,
                    called_at=None,
                )
                if not updated:
                    self._lost_race(token, TokenStatus.WAITING)

                events.append(
                    self._event(token, old_status, TokenStatus.SKIPPED_PENDING_REQUEUE, now)
                )
                events.append(
                    self._event(
                        token, TokenStatus.SKIPPED_PENDING_REQUEUE, TokenStatus.WAITING, now
                    )
                )
                logger.info(
                    f"Token {token.token_number} skipped by {official_id}, "
                    f"re-queued at {new_created_at.isoformat()}"
                )
                token = self.store.get(token.id)
        finally:
            self.notifier.publish_all(events)

        return token

    def complete(self, token_ref, official_id, scope=None, timeout=None):
        """Mark the serving token as completed."""
        official_id = self._require_official(official_id)
        deadline = Deadline.start("complete", timeout)
        token = self.store.get_by_reference(token_ref)
        queue_key = token.get_queue_key()
        ensure_scope(scope, queue_key)

        events = []
        try:
            with self._queue_lock(queue_key, deadline, "complete"):
                token = self.store.get(token.id)
                if token.status != TokenStatus.SERVING:
                    raise InvalidTransition(token.token_number, token.status, "complete")

                self._check_deadline(deadline)
                now = self.now()
                token = self._transition(
                    token,
                    TokenStatus.COMPLETED,
                    events,
                    now,
                    served_at=now,
                    served_by=official_id,
                )
        finally:
            self.notifier.publish_all(events)

        return token

    def cancel(self, token_ref, citizen_id=None, timeout=None):
        """
        Cancel a pending or waiting token. When ``citizen_id`` is given it
        must be the citizen who booked the token.
        """
        deadline = Deadline.start("cancel", timeout)
        token = self.store.get_by_reference(token_ref)

        if citizen_id is not None and str(citizen_id) != token.citizen_id:
            raise PermissionScope(f"Token '{token.token_number}' belongs to another citizen")

        events = []
        try:
            with self._queue_lock(token.get_queue_key(), deadline, "cancel"):
                token = self.store.get(token.id)
                if token.status not in CANCELLABLE_STATUSES:
                    raise InvalidTransition(token.token_number, token.status, "cancel")

                self._check_deadline(deadline)
                token = self._transition(token, TokenStatus.CANCELLED, events, self.now())
        finally:
            self.notifier.publish_all(events)

        return token

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def position(self, token_ref):
        """Rank and estimated wait of a token; (0, 0) unless waiting."""
        token = self.store.get_by_reference(token_ref)
        return self.estimator.position(token)

    def snapshot(self, queue_key):
        queue_key = self._require_key(queue_key)
        minutes = self.estimator.average_service_minutes(queue_key)
        waiting = self.store.query_waiting(queue_key)
        return QueueSnapshot(
            queue_key=queue_key,
            serving=self.store.find_serving(queue_key),
            waiting=self.estimator.rank_waiting(waiting, queue_key, minutes),
            average_service_minutes=minutes,
        )

    def stats(self, queue_key):
        queue_key = self._require_key(queue_key)
        statuses = [token.status for token in self.store.list_tokens(queue_key)]
        return {
            "total": len(statuses),
            "served": statuses.count(TokenStatus.COMPLETED),
            "waiting": statuses.count(TokenStatus.WAITING) + statuses.count(TokenStatus.PENDING),
            "serving": statuses.count(TokenStatus.SERVING),
        }

    def tokens_for_citizen(self, citizen_id):
        return self.store.list_for_citizen(citizen_id)

    def forecast(self, office_id, department_id):
        """Served count and average service time per opening hour."""
        queue_key = resolve(office_id, department_id, self.service_date())
        return self.forecaster.forecast(queue_key.office_id, queue_key.department_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _queue_lock(self, queue_key, deadline, operation):
        wait = get_setting("QUEUE_LOCK_TIMEOUT")
        if deadline is not None:
            wait = min(wait, deadline.remaining())

        with distributed_lock(
            queue_key.lock_name,
            expires=get_setting("QUEUE_LOCK_EXPIRES"),
            timeout=wait,
            poll_interval=get_setting("QUEUE_LOCK_POLL_INTERVAL"),
            owner=operation,
        ) as acquired:
            if not acquired:
                if deadline is not None and deadline.expired():
                    raise Timeout(operation, deadline.seconds)
                raise ConcurrencyConflict(
                    f"Queue {queue_key} is busy, retry {operation}",
                    detail={"queue_key": str(queue_key)},
                )
            yield

    def _transition(self, token, new_status, events, now, **changes):
        old_status = token.status
        if not self.store.conditional_update(token.id, old_status, status=new_status, **changes):
            self._lost_race(token, new_status)

        events.append(self._event(token, old_status, new_status, now))
        logger.info(f"Token {token.token_number} {old_status} -> {new_status}")
        return self.store.get(token.id)

    def _lost_race(self, token, new_status):
        logger.warning(
            f"Lost race moving token {token.token_number} {token.status} -> {new_status}"
        )
        raise ConcurrencyConflict(
            f"Token '{token.token_number}' changed concurrently",
            detail={"token_id": str(token.id), "expected_status": str(token.status)},
        )

    @staticmethod
    def _event(token, old_status, new_status, now):
        return TokenChangeEvent(
            queue_key=token.queue_key,
            token_id=token.id,
            old_status=old_status,
            new_status=new_status,
            timestamp=now,
            token_number=token.token_number,
        )

    @staticmethod
    def _check_deadline(deadline):
        if deadline is not None:
            deadline.check()

    @staticmethod
    def _require_key(queue_key):
        if isinstance(queue_key, QueueKey):
            return queue_key
        return QueueKey.parse(queue_key)

    @staticmethod
    def _require_official(official_id):
        if official_id is None or not str(official_id).strip():
            raise InvalidArgument("official_id is required", detail={"field": "official_id"})
        return str(official_id)
