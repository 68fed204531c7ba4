# core/booking_manager.py


"""
Booking lifecycle: the only place that writes Booking.status.

Legal path:
    pending -> requires_payment -> paid -> offered -> accepted -> in_progress -> completed
with cancelled / no_show reachable from any non-terminal state.
"""
import logging
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from .models import (
    Booking,
    BookingTimelineEntry,
    DETAILER_REQUIRED_STATUSES,
    TERMINAL_STATUSES,
)
from .utils.notifications import (
    booking_notification_data,
    broadcast_booking_update,
    queue_detailer_notification,
)

logger = logging.getLogger(__name__)


class BookingTransitionError(ValueError):
    pass


SYSTEM = 'system'
ADMIN = 'admin'
DETAILER = 'detailer'
CUSTOMER = 'customer'


@dataclass(frozen=True)
class Actor:
    role: str
    user: object = None

    @classmethod
    def system(cls):
        return cls(role=SYSTEM)

    @classmethod
    def for_user(cls, user):
        if user.is_superuser or user.is_staff or user.role == 'admin':
            return cls(role=ADMIN, user=user)
        if user.role == 'detailer':
            return cls(role=DETAILER, user=user)
        return cls(role=CUSTOMER, user=user)


_CANCEL_STATES = {'cancelled', 'no_show'}

ALLOWED_TRANSITIONS = {
    'pending': {'requires_payment'} | _CANCEL_STATES,
    'requires_payment': {'paid'} | _CANCEL_STATES,
    'paid': {'offered'} | _CANCEL_STATES,
    'offered': {'accepted'} | _CANCEL_STATES,
    'accepted': {'in_progress'} | _CANCEL_STATES,
    'in_progress': {'completed'} | _CANCEL_STATES,
    'completed': set(),
    'cancelled': set(),
    'no_show': set(),
}

DETAILER_TRANSITIONS = {
    ('offered', 'accepted'),
    ('accepted', 'in_progress'),
    ('in_progress', 'completed'),
}

# Timestamp stamped when a booking enters the status
STATUS_TIMESTAMPS = {
    'accepted': 'accepted_at',
    'in_progress': 'started_at',
    'completed': 'completed_at',
    'cancelled': 'cancelled_at',
}

VALID_STATUSES = {value for value, _ in Booking.STATUS_CHOICES}


class BookingManager:
    """
    Validates and applies booking status transitions under a row lock.
    """

    @staticmethod
    def check_authorized(booking, new_status, actor):
        """Raise BookingTransitionError if actor may not move booking to new_status."""
        old_status = booking.status

        if actor.role == ADMIN:
            return

        if actor.role == SYSTEM:
            if new_status not in ALLOWED_TRANSITIONS.get(old_status, set()):
                raise BookingTransitionError(
                    f"Illegal transition {old_status} -> {new_status} for booking {booking.id}."
                )
            return

        if actor.role == DETAILER:
            profile = getattr(actor.user, 'detailer_profile', None)
            if profile is None or booking.detailer_id != profile.id:
                raise BookingTransitionError("Only the assigned detailer can update this booking.")
            if (old_status, new_status) not in DETAILER_TRANSITIONS:
                raise BookingTransitionError(
                    f"Detailers cannot move a booking from {old_status} to {new_status}."
                )
            return

        if actor.role == CUSTOMER:
            if actor.user is None or booking.user_id != actor.user.id:
                raise BookingTransitionError("You can only update your own bookings.")
            if new_status != 'cancelled':
                raise BookingTransitionError("Customers can only cancel bookings.")
            if old_status in TERMINAL_STATUSES or old_status == 'in_progress':
                raise BookingTransitionError(
                    f"Booking in status {old_status} can no longer be cancelled."
                )
            return

        raise BookingTransitionError(f"Unknown actor role: {actor.role}")

    @staticmethod
    def advance(booking_id, new_status, actor, detailer=None, note=""):
        """
        Move a booking to new_status on behalf of actor.

        detailer, when given, is attached in the same write (system and admin
        only). Returns the updated booking; raises BookingTransitionError when
        the booking is missing, the move is illegal or the actor lacks rights.
        """
        if new_status not in VALID_STATUSES:
            raise BookingTransitionError(f"Unknown booking status: {new_status}")

        with transaction.atomic():
            try:
                booking = Booking.objects.select_for_update().get(id=booking_id)
            except (Booking.DoesNotExist, ValidationError, ValueError):
                raise BookingTransitionError(f"Booking {booking_id} not found.")

            old_status = booking.status
            if old_status == new_status:
                raise BookingTransitionError(f"Booking {booking.id} is already {new_status}.")

            BookingManager.check_authorized(booking, new_status, actor)

            if detailer is not None:
                if actor.role not in (SYSTEM, ADMIN):
                    raise BookingTransitionError("Only the platform can assign a detailer.")
                booking.detailer = detailer

            if new_status in DETAILER_REQUIRED_STATUSES and booking.detailer_id is None:
                raise BookingTransitionError(
                    f"Booking {booking.id} cannot be {new_status} without a detailer."
                )

            booking.status = new_status
            update_fields = ['status', 'detailer', 'updated_at']
            stamp = STATUS_TIMESTAMPS.get(new_status)
            if stamp:
                setattr(booking, stamp, timezone.now())
                update_fields.append(stamp)
            booking.save(update_fields=update_fields)

            BookingTimelineEntry.objects.create(
                booking=booking,
                from_status=old_status,
                to_status=new_status,
                actor_role=actor.role,
                note=note or "",
            )

            if new_status == 'completed':
                from .services.payouts import create_pending_transfer_for_booking

                # Own savepoint: a payout ledger failure must not undo the completion
                try:
                    with transaction.atomic():
                        create_pending_transfer_for_booking(booking)
                except Exception:
                    logger.exception(f"Failed to create detailer transfer for booking {booking.id}")

        logger.info(f"Booking {booking.id}: {old_status} -> {new_status} by {actor.role}")
        BookingManager._after_transition(booking, old_status, new_status)
        return booking

    @staticmethod
    def _after_transition(booking, old_status, new_status):
        if booking.detailer_id and new_status == 'offered':
            queue_detailer_notification(
                booking.detailer_id, 'new_booking', booking_notification_data(booking)
            )
        elif booking.detailer_id and new_status == 'cancelled':
            queue_detailer_notification(
                booking.detailer_id, 'booking_cancelled', booking_notification_data(booking)
            )

        broadcast_booking_update(booking)
