"""
Change notification for token status transitions.

Delivery is best-effort: a failure to hand an event over is logged and never
propagated to the scheduler operation that produced it.
"""

import logging

logger = logging.getLogger(__name__)


class TokenChangeEvent:
    """A committed status transition of one token."""

    def __init__(self, queue_key, token_id, old_status, new_status, timestamp, token_number=""):
        self.queue_key = str(queue_key)
        self.token_id = str(token_id)
        self.old_status = str(old_status) if old_status is not None else None
        self.new_status = str(new_status)
        self.timestamp = timestamp
        self.token_number = token_number

    def __repr__(self):
        return (
            f"TokenChangeEvent({self.token_number or self.token_id}: "
            f"{self.old_status} -> {self.new_status})"
        )

    def to_dict(self):
        return {
            "queue_key": self.queue_key,
            "token_id": self.token_id,
            "token_number": self.token_number,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "timestamp": self.timestamp.isoformat(),
        }


class ChangeNotifier:
    """Sink for token change events."""

    def publish(self, event):
        raise NotImplementedError

    def publish_all(self, events):
        for event in events:
            try:
                self.publish(event)
            except Exception:
                logger.exception(f"Failed to publish {event!r}")


class ChannelsChangeNotifier(ChangeNotifier):
    """
    Hands events to a Celery task that fans them out to the queue's
    channel layer group, where dashboard websockets are subscribed.
    """

    def publish(self, event):
        from ..tasks import broadcast_token_event

        broadcast_token_event.delay(event.to_dict())
        logger.debug(f"Queued broadcast of {event!r}")
