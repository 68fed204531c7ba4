# core/routing.py

from django.urls import path

from .consumers import BookingUpdatesConsumer

websocket_urlpatterns = [
    path('ws/bookings/<uuid:booking_id>/', BookingUpdatesConsumer.as_asgi()),
]
