"""
Scheduler configuration.

Values come from ``settings.JANSEVA`` and fall back to the defaults below.
Settings are read on every access so ``override_settings`` works in tests.
"""

from django.conf import settings

DEFAULTS = {
    "TOKEN_PREFIX": "JS",
    "TOKEN_NUMBER_ATTEMPTS": 20,
    "AVERAGE_SERVICE_MINUTES": 15,
    "DEPARTMENT_SERVICE_MINUTES": {},
    "HISTORICAL_SERVICE_SAMPLE": 20,
    "HISTORICAL_MIN_SAMPLES": 3,
    "SKIP_REINSERT_AFTER": 5,
    "SKIP_REINSERT_OFFSET_SECONDS": 1,
    "CLOSED_WEEKDAYS": [6],
    "QUEUE_LOCK_TIMEOUT": 10,
    "QUEUE_LOCK_EXPIRES": 60,
    "QUEUE_LOCK_POLL_INTERVAL": 0.05,
    "FORECAST_SAMPLE": 500,
    "FORECAST_OPENING_HOUR": 9,
    "FORECAST_CLOSING_HOUR": 17,
}


def get_setting(name):
    """Return a scheduler setting, falling back to its default."""
    overrides = getattr(settings, "JANSEVA", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
