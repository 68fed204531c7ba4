# core/tasks.py

from celery import shared_task
from datetime import timedelta
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_detailer_notification_task(self, detailer_id, notification_type: str, data: dict):
    """
    Deliver a detailer notification (SMS + email) outside the request cycle.
    """
    from core.utils.notifications import send_detailer_notification

    result = send_detailer_notification(detailer_id, notification_type, data)
    if not result['sms_sent'] and not result['email_sent'] and (
        result.get('sms_error') or result.get('email_error')
    ):
        logger.warning(f"Notification {notification_type} to detailer {detailer_id} failed on every channel")
    return result


@shared_task
def run_weekly_payouts_task():
    """
    Batch last week's pending transfers (Celery beat, Wednesday 09:00 UTC).
    """
    from core.services.payouts import run_weekly_payouts

    stats = run_weekly_payouts()
    logger.info(f"Weekly payout task finished: {stats}")
    return stats


@shared_task
def sync_processing_transfers_task():
    """
    Reconcile transfers stuck in processing with Stripe (Celery beat, hourly).
    """
    from core.services.payouts import sync_processing_transfers

    stats = sync_processing_transfers()
    if stats["errors"]:
        logger.warning(f"Transfer sync finished with errors: {stats}")
    return stats


def send_booking_reminders(now=None) -> int:
    """
    Remind detailers of accepted bookings scheduled for tomorrow.
    Each booking is reminded once (reminder_sent_at).
    """
    from core.models import Booking
    from core.utils.notifications import booking_notification_data, queue_detailer_notification

    now = now or timezone.now()
    tomorrow = timezone.localdate(now) + timedelta(days=1)

    bookings = Booking.objects.filter(
        status='accepted',
        scheduled_date=tomorrow,
        reminder_sent_at__isnull=True,
        detailer__isnull=False,
    ).select_related('service', 'user')

    sent = 0
    for booking in bookings:
        # Claim the booking first so overlapping runs do not double-send
        claimed = Booking.objects.filter(
            id=booking.id, reminder_sent_at__isnull=True
        ).update(reminder_sent_at=now)
        if not claimed:
            continue

        queue_detailer_notification(
            booking.detailer_id, 'booking_reminder', booking_notification_data(booking)
        )
        sent += 1

    logger.info(f"Queued {sent} booking reminders for {tomorrow}")
    return sent


@shared_task
def send_booking_reminders_task():
    return send_booking_reminders()
