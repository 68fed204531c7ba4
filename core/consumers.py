# core/consumers.py

import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

logger = logging.getLogger(__name__)


class BookingUpdatesConsumer(AsyncWebsocketConsumer):
    """
    Streams status changes of one booking to its customer, its detailer
    and admins. Group: booking_<booking_id>.
    """

    async def connect(self):
        self.booking_id = self.scope['url_route']['kwargs']['booking_id']
        self.room_group_name = f'booking_{self.booking_id}'

        user = self.scope.get('user')
        if user is None or not user.is_authenticated or not await self._can_follow(user):
            await self.close()
            return

        await self.channel_layer.group_add(self.room_group_name, self.channel_name)
        await self.accept()
        logger.debug(f"Websocket joined {self.room_group_name}")

    async def disconnect(self, close_code):
        if hasattr(self, 'room_group_name'):
            await self.channel_layer.group_discard(self.room_group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        # Read-only stream
        pass

    async def send_notification(self, event):
        await self.send(text_data=json.dumps(event['message']))

    @database_sync_to_async
    def _can_follow(self, user):
        from django.core.exceptions import ValidationError
        from core.models import Booking

        if user.is_staff or user.role == 'admin':
            return True
        try:
            booking = Booking.objects.select_related('detailer').get(id=self.booking_id)
        except (Booking.DoesNotExist, ValidationError):
            return False
        if booking.user_id == user.id:
            return True
        return bool(booking.detailer_id and booking.detailer.user_id == user.id)
