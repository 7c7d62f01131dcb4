import logging

from ..conf import get_setting
from ..models import TokenStatus

logger = logging.getLogger(__name__)

# Service durations outside this window (minutes) are treated as outliers
MIN_VALID_DURATION = 0
MAX_VALID_DURATION = 120


class Position:
    """Rank of a waiting token and its predicted wait"""

    def __init__(self, rank, estimated_wait_minutes):
        self.rank = rank
        self.estimated_wait_minutes = estimated_wait_minutes

    def __eq__(self, other):
        if not isinstance(other, Position):
            return NotImplemented
        return (self.rank, self.estimated_wait_minutes) == (
            other.rank,
            other.estimated_wait_minutes,
        )

    def __repr__(self):
        return f"Position(rank={self.rank}, estimated_wait_minutes={self.estimated_wait_minutes})"

    def to_dict(self):
        return {"rank": self.rank, "estimated_wait_minutes": self.estimated_wait_minutes}


NOT_WAITING = Position(0, 0)


class PositionEstimator:
    """
    Computes queue rank and estimated wait for waiting tokens.

    Rank is 1 + the number of waiting tokens of the same queue key ordered
    before the token by (created_at, id). Estimated wait is rank multiplied
    by the average service time of the department.
    """

    def __init__(self, store):
        self.store = store

    def position(self, token):
        if token.status != TokenStatus.WAITING:
            return NOT_WAITING

        waiting = self.store.query_waiting(token.get_queue_key())
        sort_key = (token.created_at, token.id)
        ahead = sum(1 for other in waiting if (other.created_at, other.id) < sort_key)
        rank = ahead + 1

        minutes = self.average_service_minutes(token.get_queue_key())
        return Position(rank, int(round(rank * minutes)))

    def rank_waiting(self, waiting, queue_key, minutes=None):
        """
        Position for every token of an already ordered waiting list.

        Returns:
            List of (token, Position) tuples.
        """
        if minutes is None:
            minutes = self.average_service_minutes(queue_key)
        return [
            (token, Position(rank, int(round(rank * minutes))))
            for rank, token in enumerate(waiting, start=1)
        ]

    def average_service_minutes(self, queue_key):
        """
        Average minutes spent serving one token: historical figure for the
        department when enough samples exist, otherwise the configured value.
        """
        historical = self.historical_service_minutes(queue_key)
        if historical is not None:
            return historical

        per_department = get_setting("DEPARTMENT_SERVICE_MINUTES") or {}
        if queue_key.department_id in per_department:
            return per_department[queue_key.department_id]

        return get_setting("AVERAGE_SERVICE_MINUTES")

    def historical_service_minutes(self, queue_key):
        durations = self.store.recent_service_durations(
            queue_key.office_id,
            queue_key.department_id,
            get_setting("HISTORICAL_SERVICE_SAMPLE"),
        )

        minutes = [d.total_seconds() / 60 for d in durations]
        valid = [m for m in minutes if MIN_VALID_DURATION < m < MAX_VALID_DURATION]

        if len(valid) < get_setting("HISTORICAL_MIN_SAMPLES"):
            return None

        average = sum(valid) / len(valid)
        logger.debug(
            f"Historical service time for {queue_key.office_id}/{queue_key.department_id}: "
            f"{average:.1f} min over {len(valid)} tokens"
        )
        return average
