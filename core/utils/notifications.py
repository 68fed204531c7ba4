# core/utils/notifications.py

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from twilio.rest import Client

from core.emails import build_detailer_email, send_html_email

logger = logging.getLogger(__name__)


NOTIFICATION_TYPES = ('new_booking', 'booking_cancelled', 'booking_reminder', 'payout_processed')


class SmsRegion(str, Enum):
    US_CANADA = 'US'
    UK = 'UK'
    UNKNOWN = 'unknown'


# Region -> settings attribute holding the Twilio sending number
SMS_FROM_NUMBER_SETTINGS = {
    SmsRegion.US_CANADA: 'TWILIO_PHONE_NUMBER_US',
    SmsRegion.UK: 'TWILIO_PHONE_NUMBER_UK',
}

DEFAULT_SMS_REGION = SmsRegion.US_CANADA


def normalize_phone(phone: str):
    """
    Normalize a phone number to E.164 and infer its region.

    Returns (formatted, SmsRegion). Local numbers are interpreted as
    North American when they have 10 digits (or 11 starting with 1) and
    as UK when they start with 44.
    """
    cleaned = re.sub(r'[^\d+]', '', phone or '')

    if not cleaned.startswith('+'):
        if len(cleaned) == 10:
            cleaned = '+1' + cleaned
        elif len(cleaned) == 11 and cleaned.startswith('1'):
            cleaned = '+' + cleaned
        elif cleaned.startswith('44'):
            cleaned = '+' + cleaned

    if cleaned.startswith('+1'):
        region = SmsRegion.US_CANADA
    elif cleaned.startswith('+44'):
        region = SmsRegion.UK
    else:
        region = SmsRegion.UNKNOWN

    return cleaned, region


def sms_from_number(region: SmsRegion) -> str:
    setting_name = SMS_FROM_NUMBER_SETTINGS.get(region)
    number = getattr(settings, setting_name, '') if setting_name else ''
    if not number:
        number = getattr(settings, SMS_FROM_NUMBER_SETTINGS[DEFAULT_SMS_REGION], '')
    return number


def build_sms_message(notification_type: str, data: dict) -> str:
    service = data.get('service_name', '')
    date = data.get('scheduled_date', '')
    time = data.get('scheduled_time', '')
    city = data.get('location_city', '')

    if notification_type == 'new_booking':
        return f"New job! {service} on {date} at {time}. Location: {city}. Check app to accept."
    if notification_type == 'booking_cancelled':
        return f"Booking cancelled: {service} on {date} at {time} has been cancelled."
    if notification_type == 'booking_reminder':
        return f"Reminder: You have {service} tomorrow at {time} in {city}. Check app for details."
    if notification_type == 'payout_processed':
        amount = int(data.get('amount') or 0) / 100
        return (
            f"Payout of ${amount:.2f} processed for {data.get('week_start', '')} - "
            f"{data.get('week_end', '')} ({data.get('total_jobs', 0)} jobs)."
        )
    return 'You have a new notification from CleanSwift.'


def send_sms(phone: str, message: str) -> str:
    """Send an SMS through Twilio and return the message SID."""
    account_sid = getattr(settings, 'TWILIO_ACCOUNT_SID', '')
    auth_token = getattr(settings, 'TWILIO_AUTH_TOKEN', '')
    if not account_sid or not auth_token:
        raise RuntimeError('Twilio credentials not configured')

    formatted, region = normalize_phone(phone)
    from_number = sms_from_number(region)
    if not from_number:
        raise RuntimeError(f'Twilio phone number not configured for region: {region.value}')

    client = Client(account_sid, auth_token)
    sms = client.messages.create(
        body=message,
        from_=from_number,
        to=formatted,
    )
    return sms.sid


def _channel_result(future):
    try:
        return future.result(), None
    except Exception as e:
        return None, str(e)


def send_detailer_notification(detailer_id, notification_type: str, data: dict) -> dict:
    """
    Send SMS and/or email to a detailer, honouring their preferences.

    Both channels are attempted independently and in parallel. Every
    attempt is recorded in NotificationLog. Returns
    {sms_sent, email_sent, sms_provider_id?, email_provider_id?, sms_error?, email_error?}.
    """
    from core.models import Detailer, DetailerNotificationPreferences, NotificationLog

    result = {'sms_sent': False, 'email_sent': False}
    data = data or {}

    try:
        detailer = Detailer.objects.select_related('user').get(id=detailer_id)
    except Detailer.DoesNotExist:
        logger.warning(f"Notification {notification_type} skipped: detailer {detailer_id} not found")
        return result

    prefs, _ = DetailerNotificationPreferences.objects.get_or_create(detailer=detailer)

    phone = detailer.phone or detailer.user.phone_number or ''
    email = detailer.user.email or ''
    name = detailer.full_name or detailer.user.get_full_name() or detailer.user.username

    wants_sms = prefs.allows(notification_type, 'sms') and bool(phone)
    wants_email = prefs.allows(notification_type, 'email') and bool(email)

    if not wants_sms and not wants_email:
        logger.info(f"Detailer {detailer_id} has no enabled channel for {notification_type}")
        return result

    sms_future = email_future = None
    with ThreadPoolExecutor(max_workers=2) as pool:
        if wants_sms:
            sms_future = pool.submit(send_sms, phone, build_sms_message(notification_type, data))
        if wants_email:
            subject, html, plain = build_detailer_email(notification_type, data, name)
            email_future = pool.submit(send_html_email, email, subject, html, plain)

    # Log rows are written here, on the calling thread's connection
    if sms_future is not None:
        sid, error = _channel_result(sms_future)
        result['sms_sent'] = error is None
        if error is None:
            result['sms_provider_id'] = sid
            logger.info(f"SMS {notification_type} sent to detailer {detailer_id}: {sid}")
        else:
            result['sms_error'] = error
            logger.error(f"SMS {notification_type} to detailer {detailer_id} failed: {error}")
        NotificationLog.objects.create(
            detailer=detailer,
            notification_type=notification_type,
            channel='sms',
            recipient=normalize_phone(phone)[0],
            status='sent' if error is None else 'failed',
            provider_id=sid or '',
            error_message=error or '',
            metadata=data,
        )

    if email_future is not None:
        message_id, error = _channel_result(email_future)
        result['email_sent'] = error is None
        if error is None:
            result['email_provider_id'] = message_id
            logger.info(f"Email {notification_type} sent to detailer {detailer_id}")
        else:
            result['email_error'] = error
            logger.error(f"Email {notification_type} to detailer {detailer_id} failed: {error}")
        NotificationLog.objects.create(
            detailer=detailer,
            notification_type=notification_type,
            channel='email',
            recipient=email,
            status='sent' if error is None else 'failed',
            provider_id=message_id or '',
            error_message=error or '',
            metadata=data,
        )

    return result


def booking_notification_data(booking) -> dict:
    """Template context for booking-related notifications."""
    customer = booking.user
    return {
        'booking_id': str(booking.id),
        'service_name': booking.service.name if booking.service_id else '',
        'scheduled_date': booking.scheduled_date.isoformat() if booking.scheduled_date else '',
        'scheduled_time': booking.scheduled_time_start.strftime('%H:%M') if booking.scheduled_time_start else '',
        'customer_name': customer.get_full_name() or customer.username,
        'location_city': booking.city,
        'location_address': booking.address_line1,
    }


def queue_detailer_notification(detailer_id, notification_type: str, data: dict) -> None:
    """
    Hand a notification to the Celery worker. Failures to enqueue are
    logged and never reach the caller.
    """
    from core.tasks import send_detailer_notification_task

    try:
        send_detailer_notification_task.delay(detailer_id, notification_type, data)
    except Exception:
        logger.exception(f"Could not queue {notification_type} notification for detailer {detailer_id}")


def broadcast_booking_update(booking) -> None:
    """
    Push the booking's current state to websocket subscribers of booking_<id>.
    """
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        async_to_sync(channel_layer.group_send)(
            f'booking_{booking.id}',
            {
                'type': 'send_notification',
                'message': {
                    'type': 'booking_status',
                    'booking_id': str(booking.id),
                    'status': booking.status,
                    'payment_status': booking.payment_status,
                    'detailer_id': booking.detailer_id,
                },
            },
        )
    except Exception as e:
        logger.warning(f"Realtime update for booking {booking.id} not delivered: {e}")
