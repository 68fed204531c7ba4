# core/services/assignment.py

"""
Auto-assignment of paid bookings to the closest eligible detailer.
"""
import logging

from django.core.cache import cache
from django.db.models import Q
from geopy.distance import geodesic

from core.booking_manager import Actor, BookingManager, BookingTransitionError
from core.models import Booking, Detailer

logger = logging.getLogger(__name__)

# Bookings holding a detailer's time slot
BUSY_STATUSES = ('offered', 'accepted', 'in_progress')


def _windows_overlap(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


def is_detailer_eligible(detailer, booking, busy_slots=None):
    """
    Returns (eligible: bool, distance_km: float | None, reason: str).
    """
    if not detailer.is_active:
        return False, None, "Detailer is not active."

    if detailer.organization_id and not detailer.organization.is_active:
        return False, None, "Detailer's organization is inactive."

    weekday = booking.scheduled_date.weekday()
    covered = any(
        slot.weekday == weekday and slot.covers(booking.scheduled_time_start, booking.scheduled_time_end)
        for slot in detailer.availability.all()
    )
    if not covered:
        return False, None, "Detailer is not available at the scheduled time."

    if (detailer.latitude is None or detailer.longitude is None
            or booking.latitude is None or booking.longitude is None):
        return False, None, "Location data missing."

    distance_km = geodesic(
        (detailer.latitude, detailer.longitude),
        (booking.latitude, booking.longitude),
    ).km
    if distance_km > float(detailer.service_radius_km):
        return False, distance_km, f"Booking is {distance_km:.1f} km away (radius {detailer.service_radius_km} km)."

    if busy_slots is None:
        busy_slots = list(
            Booking.objects.filter(
                detailer=detailer,
                scheduled_date=booking.scheduled_date,
                status__in=BUSY_STATUSES,
            ).exclude(id=booking.id).values_list('scheduled_time_start', 'scheduled_time_end')
        )
    for start, end in busy_slots:
        if _windows_overlap(start, end, booking.scheduled_time_start, booking.scheduled_time_end):
            return False, distance_km, "Detailer already has a booking in this time window."

    return True, distance_km, ""


def find_eligible_detailers(booking):
    """Eligible detailers for booking as [(detailer, distance_km)], closest first."""
    candidates = (
        Detailer.objects.filter(is_active=True)
        .filter(Q(organization__isnull=True) | Q(organization__is_active=True))
        .filter(availability__weekday=booking.scheduled_date.weekday())
        .select_related('organization')
        .prefetch_related('availability')
        .distinct()
    )

    busy_by_detailer = {}
    for detailer_id, start, end in Booking.objects.filter(
        scheduled_date=booking.scheduled_date,
        status__in=BUSY_STATUSES,
        detailer__isnull=False,
    ).exclude(id=booking.id).values_list('detailer_id', 'scheduled_time_start', 'scheduled_time_end'):
        busy_by_detailer.setdefault(detailer_id, []).append((start, end))

    eligible = []
    for detailer in candidates:
        ok, distance_km, _ = is_detailer_eligible(
            detailer, booking, busy_slots=busy_by_detailer.get(detailer.id, [])
        )
        if ok:
            eligible.append((detailer, distance_km))

    eligible.sort(key=lambda pair: (pair[1], pair[0].id))
    return eligible


def assign_detailer(booking_id):
    """
    Offer a paid booking to the closest eligible detailer.

    Returns the assigned Detailer, or None when the booking is not
    assignable or nobody qualifies. The status write goes through the
    booking state machine.
    """
    lock_key = f"assign_lock_{booking_id}"
    if not cache.add(lock_key, "locked", timeout=5):
        logger.info(f"Assignment for booking {booking_id} already running")
        return None

    try:
        try:
            booking = Booking.objects.get(id=booking_id)
        except Booking.DoesNotExist:
            logger.warning(f"Cannot auto-assign: booking {booking_id} not found")
            return None

        if booking.status != 'paid' or booking.detailer_id is not None:
            logger.info(f"Booking {booking_id} not assignable (status={booking.status}, detailer={booking.detailer_id})")
            return None

        eligible = find_eligible_detailers(booking)
        if not eligible:
            logger.info(f"No eligible detailer for booking {booking_id}")
            return None

        detailer, distance_km = eligible[0]
        try:
            BookingManager.advance(
                booking.id,
                'offered',
                Actor.system(),
                detailer=detailer,
                note=f"Auto-assigned ({distance_km:.1f} km)",
            )
        except BookingTransitionError as e:
            # Lost a race with another writer; the booking moved on
            logger.warning(f"Auto-assignment of booking {booking_id} aborted: {e}")
            return None

        logger.info(f"Booking {booking_id} offered to detailer {detailer.id} ({distance_km:.1f} km)")
        return detailer
    finally:
        cache.delete(lock_key)
