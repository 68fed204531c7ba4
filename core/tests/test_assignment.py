from datetime import time

from django.core.cache import cache
from django.test import TestCase

from core.models import Booking, Organization
from core.services.assignment import assign_detailer, find_eligible_detailers

from .factories import QuietSideEffectsMixin, make_booking, make_detailer

# ~3 km and ~15 km from the default booking location (downtown Toronto)
NEAR = (43.6800, -79.3900)
FAR = (43.7950, -79.3900)
# Hamilton, ~60 km away
OUT_OF_RANGE = (43.2557, -79.8711)


class AutoAssignmentTests(QuietSideEffectsMixin, TestCase):

    def setUp(self):
        super().setUp()
        cache.clear()

    def test_closest_eligible_detailer_wins(self):
        far = make_detailer('far', location=FAR)
        near = make_detailer('near', location=NEAR)
        booking = make_booking(status='paid', payment_status='paid')

        detailer = assign_detailer(booking.id)

        self.assertEqual(detailer, near)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'offered')
        self.assertEqual(booking.detailer, near)
        self.assertNotEqual(booking.detailer, far)

    def test_no_eligible_detailer_leaves_booking_paid(self):
        make_detailer('hamilton', location=OUT_OF_RANGE)
        booking = make_booking(status='paid', payment_status='paid')

        self.assertIsNone(assign_detailer(booking.id))

        booking.refresh_from_db()
        self.assertEqual(booking.status, 'paid')
        self.assertIsNone(booking.detailer)

    def test_inactive_detailer_skipped(self):
        make_detailer('sleepy', location=NEAR, is_active=False)
        booking = make_booking(status='paid', payment_status='paid')
        self.assertEqual(find_eligible_detailers(booking), [])

    def test_inactive_organization_skipped(self):
        org = Organization.objects.create(name='Closed Co', is_active=False)
        make_detailer('member', location=NEAR, organization=org)
        booking = make_booking(status='paid', payment_status='paid')
        self.assertEqual(find_eligible_detailers(booking), [])

    def test_availability_must_cover_whole_window(self):
        make_detailer('early', location=NEAR, start=time(8, 0), end=time(11, 0))
        booking = make_booking(status='paid', payment_status='paid', start=time(10, 0), end=time(12, 0))
        self.assertEqual(find_eligible_detailers(booking), [])

    def test_availability_must_match_weekday(self):
        booking = make_booking(status='paid', payment_status='paid')
        other_days = [d for d in range(7) if d != booking.scheduled_date.weekday()]
        make_detailer('weekender', location=NEAR, weekdays=other_days)
        self.assertEqual(find_eligible_detailers(booking), [])

    def test_overlapping_booking_blocks_detailer(self):
        near = make_detailer('busy', location=NEAR)
        existing = make_booking(status='accepted', payment_status='paid', detailer=near,
                                start=time(11, 0), end=time(13, 0))
        booking = make_booking(status='paid', payment_status='paid',
                               scheduled_date=existing.scheduled_date,
                               start=time(10, 0), end=time(12, 0))
        self.assertEqual(find_eligible_detailers(booking), [])

    def test_back_to_back_booking_does_not_block(self):
        near = make_detailer('tight', location=NEAR)
        existing = make_booking(status='accepted', payment_status='paid', detailer=near,
                                start=time(8, 0), end=time(10, 0))
        booking = make_booking(status='paid', payment_status='paid',
                               scheduled_date=existing.scheduled_date,
                               start=time(10, 0), end=time(12, 0))
        self.assertEqual([d for d, _ in find_eligible_detailers(booking)], [near])

    def test_cancelled_booking_does_not_block(self):
        near = make_detailer('free', location=NEAR)
        existing = make_booking(status='cancelled', detailer=near)
        booking = make_booking(status='paid', payment_status='paid',
                               scheduled_date=existing.scheduled_date)
        self.assertEqual(len(find_eligible_detailers(booking)), 1)

    def test_only_paid_unassigned_bookings_are_assigned(self):
        make_detailer('near', location=NEAR)
        booking = make_booking(status='requires_payment')
        self.assertIsNone(assign_detailer(booking.id))
        self.assertEqual(Booking.objects.get(id=booking.id).status, 'requires_payment')

    def test_lock_held_elsewhere_skips_assignment(self):
        make_detailer('near', location=NEAR)
        booking = make_booking(status='paid', payment_status='paid')
        cache.add(f'assign_lock_{booking.id}', 'locked', timeout=5)

        self.assertIsNone(assign_detailer(booking.id))
        self.assertEqual(Booking.objects.get(id=booking.id).status, 'paid')
