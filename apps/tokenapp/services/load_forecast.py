"""
Hourly load of a department, used by officials to plan counter staffing.

Recent completed tokens are bucketed by the local hour they were called.
Each opening hour reports how many tokens were served in it and their
average service time.
"""

import logging

from django.utils import timezone

from ..conf import get_setting
from .position_estimator import MAX_VALID_DURATION, MIN_VALID_DURATION

logger = logging.getLogger(__name__)


class HourlyLoad:
    def __init__(self, hour, served, average_service_minutes):
        self.hour = hour
        self.served = served
        self.average_service_minutes = average_service_minutes

    def __repr__(self):
        return (
            f"HourlyLoad(hour={self.hour}, served={self.served}, "
            f"average_service_minutes={self.average_service_minutes})"
        )

    @property
    def label(self):
        return f"{self.hour:02d}:00"

    def to_dict(self):
        return {
            "hour": self.label,
            "served": self.served,
            "average_service_minutes": self.average_service_minutes,
        }


class LoadForecaster:
    def __init__(self, store):
        self.store = store

    def forecast(self, office_id, department_id):
        """
        One HourlyLoad per opening hour, earliest first.

        Hours with no completed tokens report zero. Outlier durations are
        counted as served but left out of the average.
        """
        opening = get_setting("FORECAST_OPENING_HOUR")
        closing = get_setting("FORECAST_CLOSING_HOUR")
        buckets = {hour: [] for hour in range(opening, closing + 1)}

        tokens = self.store.recent_completed(
            office_id, department_id, get_setting("FORECAST_SAMPLE")
        )
        for token in tokens:
            hour = timezone.localtime(token.called_at).hour
            if hour in buckets:
                buckets[hour].append((token.served_at - token.called_at).total_seconds() / 60)

        logger.debug(
            f"Load forecast for {office_id}/{department_id} from {len(tokens)} completed tokens"
        )

        loads = []
        for hour, minutes in buckets.items():
            valid = [m for m in minutes if MIN_VALID_DURATION < m < MAX_VALID_DURATION]
            average = int(round(sum(valid) / len(valid))) if valid else 0
            loads.append(HourlyLoad(hour, len(minutes), average))
        return loads
