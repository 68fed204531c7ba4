# core/tests/factories.py

import hashlib
import hmac
import json
import time as time_module
from datetime import date, time, timedelta
from decimal import Decimal
from unittest import mock

from core.models import (
    Booking,
    CustomUser,
    Detailer,
    DetailerAvailability,
    Service,
)

TORONTO = (43.6532, -79.3832)


def make_user(username, role='customer', **extra):
    extra.setdefault('email', f'{username}@example.com')
    return CustomUser.objects.create_user(username=username, password='pw-12345', role=role, **extra)


def make_detailer(username='detailer', location=TORONTO, radius=25, is_active=True,
                  organization=None, weekdays=range(7), start=time(8, 0), end=time(18, 0),
                  connect_account='acct_test_123', phone='4165550100', **extra):
    user = make_user(username, role='detailer', phone_number=phone)
    detailer = user.detailer_profile
    detailer.full_name = extra.pop('full_name', username.title())
    detailer.phone = phone
    detailer.latitude, detailer.longitude = location if location else (None, None)
    detailer.service_radius_km = Decimal(str(radius))
    detailer.is_active = is_active
    detailer.organization = organization
    detailer.stripe_connect_account_id = connect_account
    for field, value in extra.items():
        setattr(detailer, field, value)
    detailer.save()

    for weekday in weekdays:
        DetailerAvailability.objects.create(
            detailer=detailer, weekday=weekday, start_time=start, end_time=end,
        )
    return detailer


def make_service(name='Full Detail', price=Decimal('100.00')):
    return Service.objects.create(name=name, price=price)


def make_booking(user=None, service=None, status='requires_payment', payment_status='unpaid',
                 detailer=None, scheduled_date=None, start=time(10, 0), end=time(12, 0),
                 location=(43.6600, -79.3900), total=Decimal('100.00'), **extra):
    user = user or make_user(f'customer{Booking.objects.count() + 1}')
    service = service or make_service()
    return Booking.objects.create(
        user=user,
        service=service,
        detailer=detailer,
        status=status,
        payment_status=payment_status,
        scheduled_date=scheduled_date or date.today() + timedelta(days=3),
        scheduled_time_start=start,
        scheduled_time_end=end,
        latitude=location[0] if location else None,
        longitude=location[1] if location else None,
        city='Toronto',
        address_line1='1 King St W',
        service_price=total,
        total_amount=total,
        **extra,
    )


def stripe_signature(payload: str, secret: str, timestamp=None) -> str:
    timestamp = int(timestamp or time_module.time())
    signed = f'{timestamp}.{payload}'.encode('utf-8')
    digest = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


def stripe_event(event_type, obj, event_id='evt_test_1'):
    return json.dumps({
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'data': {'object': obj},
    })


class QuietSideEffectsMixin:
    """Replaces Celery notification dispatch with mocks for the test."""

    def setUp(self):
        super().setUp()
        patchers = {
            'booking_notify': mock.patch('core.booking_manager.queue_detailer_notification'),
            'payout_notify': mock.patch('core.services.payouts.queue_detailer_notification'),
        }
        self.mocks = {}
        for name, patcher in patchers.items():
            self.mocks[name] = patcher.start()
            self.addCleanup(patcher.stop)
