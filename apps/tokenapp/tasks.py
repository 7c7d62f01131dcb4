import logging

from asgiref.sync import async_to_sync
from celery import shared_task
from channels.layers import get_channel_layer

from .services.queue_key import QueueKey

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def broadcast_token_event(event):
    """Send a token change event to every dashboard watching its queue"""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer configured, dropping token event")
        return

    group_name = QueueKey.parse(event["queue_key"]).group_name

    async_to_sync(channel_layer.group_send)(
        group_name,
        {
            "type": "token.update",
            "event": event,
        },
    )
    logger.debug(f"Broadcast {event['token_id']} {event['old_status']} -> {event['new_status']}")
