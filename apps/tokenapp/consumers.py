import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.core.serializers.json import DjangoJSONEncoder

from utils.exceptions import JanSevaError

from .permissions import get_official_scope
from .serializers import QueueSnapshotSerializer
from .services.queue_key import ensure_scope, resolve
from .services.queue_scheduler import QueueScheduler

logger = logging.getLogger(__name__)


class QueueConsumer(AsyncWebsocketConsumer):
    """
    Live dashboard feed for one queue key.

    Sends a snapshot of the queue on connect, then relays every token change
    event broadcast to the queue's group.

    Close codes:
        4000: malformed queue key in the URL
        4001: unauthenticated
        4003: official not assigned to this office department
    """

    async def connect(self):
        kwargs = self.scope["url_route"]["kwargs"]
        self.queue_key = None

        try:
            self.queue_key = resolve(
                kwargs.get("office_id"), kwargs.get("department_id"), kwargs.get("service_date")
            )
        except JanSevaError as e:
            logger.warning(f"Rejected queue websocket with bad key {kwargs}: {e.message}")
            await self.close(code=4000)
            return

        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            logger.warning(f"Unauthenticated connection to queue {self.queue_key}")
            await self.close(code=4001)
            return

        try:
            await database_sync_to_async(self.check_scope)(user)
        except JanSevaError as e:
            logger.warning(f"User {user.pk} denied access to queue {self.queue_key}: {e.message}")
            await self.close(code=4003)
            return

        self.group_name = self.queue_key.group_name
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        logger.info(f"User {user.pk} watching queue {self.queue_key}")
        await self.send_snapshot()

    async def disconnect(self, close_code):
        if getattr(self, "group_name", None):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
        logger.info(f"Queue websocket for {self.queue_key} closed with code {close_code}")

    async def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or "")
        except json.JSONDecodeError:
            await self.send_error("Invalid JSON format")
            return

        message_type = data.get("type", "")

        if message_type == "ping":
            await self.send_json_message({"type": "pong", "timestamp": data.get("timestamp")})
        elif message_type == "get_snapshot":
            await self.send_snapshot()
        else:
            await self.send_error(f"Unknown message type: {message_type}")

    async def token_update(self, event):
        """Relay a token change broadcast by ``broadcast_token_event``"""
        await self.send_json_message({"type": "token_update", "data": event["event"]})

    async def send_snapshot(self):
        data = await database_sync_to_async(self.get_snapshot)()
        await self.send_json_message({"type": "queue_snapshot", "data": data})

    async def send_error(self, message):
        await self.send_json_message({"type": "error", "message": message})

    async def send_json_message(self, payload):
        await self.send(text_data=json.dumps(payload, cls=DjangoJSONEncoder))

    def check_scope(self, user):
        ensure_scope(get_official_scope(user), self.queue_key)

    def get_snapshot(self):
        scheduler = QueueScheduler()
        snapshot = scheduler.snapshot(self.queue_key)
        stats = scheduler.stats(self.queue_key)
        return QueueSnapshotSerializer((snapshot, stats)).data
