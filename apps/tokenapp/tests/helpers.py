import random
import threading
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from apps.tokenapp.services.change_notifier import ChangeNotifier
from apps.tokenapp.services.queue_key import resolve
from apps.tokenapp.services.queue_scheduler import QueueScheduler, Slot

IST = ZoneInfo("Asia/Kolkata")

# A Monday; offices are closed on Sundays
SERVICE_DATE = date(2026, 10, 19)
OPENING_TIME = datetime(2026, 10, 19, 9, 30, tzinfo=IST)


class FakeClock:
    """Deterministic clock that only moves when told to"""

    def __init__(self, now=OPENING_TIME):
        self._now = now
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self._now

    def advance(self, **kwargs):
        with self._lock:
            self._now += timedelta(**kwargs)
            return self._now

    def set(self, now):
        with self._lock:
            self._now = now


class RecordingNotifier(ChangeNotifier):
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def publish(self, event):
        with self._lock:
            self.events.append(event)

    def transitions(self):
        return [(e.token_number, e.old_status, e.new_status) for e in self.events]


def make_scheduler(store=None, clock=None, notifier=None, seed=7):
    return QueueScheduler(
        store=store,
        notifier=notifier or RecordingNotifier(),
        clock=clock or FakeClock(),
        rng=random.Random(seed),
    )


def revenue_key(service_date=SERVICE_DATE):
    return resolve("OFF-PUNE-01", "REVENUE", service_date)


def book_and_check_in(scheduler, queue_key, count, citizen_prefix="citizen", step_minutes=1):
    """Book ``count`` tokens and check them in one after another"""
    tokens = []
    for i in range(count):
        token = scheduler.book(f"{citizen_prefix}-{i}", queue_key, Slot(queue_key.service_date))
        scheduler.clock.advance(minutes=step_minutes)
        tokens.append(scheduler.check_in(token.id))
    return tokens


class FixedRandom:
    """Always draws the same token number suffix"""

    def __init__(self, value):
        self.value = value

    def randrange(self, stop):
        return self.value % stop
