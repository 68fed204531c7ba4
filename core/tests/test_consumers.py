from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import TransactionTestCase

from core.booking_manager import Actor, BookingManager
from core.routing import websocket_urlpatterns

from .factories import QuietSideEffectsMixin, make_booking, make_detailer, make_user


class BookingUpdatesConsumerTests(QuietSideEffectsMixin, TransactionTestCase):

    def setUp(self):
        super().setUp()
        self.customer = make_user('alice')
        self.detailer = make_detailer('bob')
        self.booking = make_booking(user=self.customer, status='offered', detailer=self.detailer)

    def communicator(self, user):
        communicator = WebsocketCommunicator(
            URLRouter(websocket_urlpatterns), f'/ws/bookings/{self.booking.id}/'
        )
        communicator.scope['user'] = user
        return communicator

    def test_customer_receives_status_updates(self):
        communicator = self.communicator(self.customer)
        booking_id = self.booking.id
        actor = Actor.for_user(self.detailer.user)

        async def scenario():
            connected, _ = await communicator.connect()
            self.assertTrue(connected)
            await database_sync_to_async(BookingManager.advance)(booking_id, 'accepted', actor)
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return message

        message = async_to_sync(scenario)()

        self.assertEqual(message['type'], 'booking_status')
        self.assertEqual(message['booking_id'], str(booking_id))
        self.assertEqual(message['status'], 'accepted')
        self.assertEqual(message['detailer_id'], self.detailer.id)

    def test_strangers_and_anonymous_are_refused(self):
        for user in (make_user('mallory'), AnonymousUser()):
            communicator = self.communicator(user)

            async def scenario():
                connected, _ = await communicator.connect()
                return connected

            self.assertFalse(async_to_sync(scenario)())
