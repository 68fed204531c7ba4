from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import DetailerTransfer, WeeklyPayoutBatch

from .factories import QuietSideEffectsMixin, make_booking, make_detailer, make_user

NEAR = (43.6800, -79.3900)


class BookingApiTests(QuietSideEffectsMixin, TestCase):

    def setUp(self):
        super().setUp()
        cache.clear()
        self.client = APIClient()
        self.customer = make_user('alice')
        self.admin = make_user('root', role='admin')
        self.detailer = make_detailer('bob', location=NEAR)

    def url(self, booking, suffix=''):
        return f'/api/bookings/{booking.id}/{suffix}'

    def test_requires_authentication(self):
        self.assertEqual(self.client.get('/api/bookings/').status_code, 401)

    def test_customer_sees_only_own_bookings(self):
        mine = make_booking(user=self.customer)
        make_booking(user=make_user('mallory'))
        self.client.force_authenticate(self.customer)

        response = self.client.get('/api/bookings/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual([b['id'] for b in response.data['results']], [str(mine.id)])

    def test_booking_detail_includes_timeline(self):
        booking = make_booking(user=self.customer, status='accepted', detailer=self.detailer)
        self.client.force_authenticate(self.customer)
        self.client.post(self.url(booking, 'advance/'), {'status': 'cancelled', 'note': 'changed plans'}, format='json')

        response = self.client.get(self.url(booking))

        self.assertEqual(response.data['status'], 'cancelled')
        self.assertEqual(response.data['timeline'][0]['note'], 'changed plans')
        self.assertEqual(response.data['timeline'][0]['actor_role'], 'customer')
        self.assertIsNone(response.data['payment'])

    def test_detailer_advances_assigned_booking(self):
        booking = make_booking(user=self.customer, status='offered', detailer=self.detailer)
        self.client.force_authenticate(self.detailer.user)

        response = self.client.post(self.url(booking, 'advance/'), {'status': 'accepted'}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'accepted')
        self.assertIsNotNone(response.data['accepted_at'])

    def test_illegal_transition_is_bad_request(self):
        booking = make_booking(user=self.customer, status='offered', detailer=self.detailer)
        self.client.force_authenticate(self.detailer.user)

        response = self.client.post(self.url(booking, 'advance/'), {'status': 'completed'}, format='json')

        self.assertEqual(response.status_code, 400)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'offered')

    def test_unknown_status_value_rejected(self):
        booking = make_booking(user=self.customer)
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url(booking, 'advance/'), {'status': 'teleported'}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_other_users_booking_is_not_found(self):
        booking = make_booking(user=make_user('mallory'))
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url(booking, 'advance/'), {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, 404)

    def test_assign_is_admin_only(self):
        booking = make_booking(user=self.customer, status='paid', payment_status='paid')
        self.client.force_authenticate(self.customer)
        self.assertEqual(self.client.post(self.url(booking, 'assign/'), {}, format='json').status_code, 403)

    def test_admin_auto_assign(self):
        booking = make_booking(user=self.customer, status='paid', payment_status='paid')
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url(booking, 'assign/'), {}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'offered')
        self.assertEqual(response.data['detailer'], self.detailer.id)

    def test_admin_auto_assign_without_candidates(self):
        self.detailer.is_active = False
        self.detailer.save()
        booking = make_booking(user=self.customer, status='paid', payment_status='paid')
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url(booking, 'assign/'), {}, format='json')

        self.assertEqual(response.status_code, 409)

    def test_admin_assigns_specific_detailer(self):
        other = make_detailer('carol')
        booking = make_booking(user=self.customer, status='paid', payment_status='paid')
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url(booking, 'assign/'), {'detailer_id': other.id}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['detailer'], other.id)
        self.assertEqual(response.data['detailer_name'], 'Carol')

    def test_assign_unknown_detailer(self):
        booking = make_booking(user=self.customer, status='paid', payment_status='paid')
        self.client.force_authenticate(self.admin)
        response = self.client.post(self.url(booking, 'assign/'), {'detailer_id': 424242}, format='json')
        self.assertEqual(response.status_code, 400)


class PayoutApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.detailer = make_detailer('payee')
        self.other = make_detailer('other')
        self.batch = WeeklyPayoutBatch.objects.create(
            detailer=self.detailer,
            week_start_date='2026-10-05',
            week_end_date='2026-10-11',
            total_amount_cents=8500,
            total_transfers=1,
            status='processing',
        )
        self.transfer = DetailerTransfer.objects.create(
            booking=make_booking(status='completed', payment_status='paid', detailer=self.detailer),
            detailer=self.detailer,
            amount_cents=8500,
            platform_fee_cents=1500,
            status='processing',
            weekly_payout_batch=self.batch,
        )
        DetailerTransfer.objects.create(
            booking=make_booking(status='completed', payment_status='paid', detailer=self.other),
            detailer=self.other,
            amount_cents=4000,
            status='failed',
            retry_count=3,
        )

    def test_detailer_sees_own_transfers(self):
        self.client.force_authenticate(self.detailer.user)

        response = self.client.get('/api/transfers/')

        self.assertEqual(response.status_code, 200)
        results = response.data['results']
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['amount_cents'], 8500)
        self.assertEqual(results[0]['display_status'], 'Processing')
        self.assertEqual(str(results[0]['week_start_date']), '2026-10-05')

    def test_admin_sees_everything(self):
        self.client.force_authenticate(make_user('root', role='admin'))
        response = self.client.get('/api/transfers/')
        self.assertEqual(response.data['count'], 2)
        statuses = {t['display_status'] for t in response.data['results']}
        self.assertIn('Failed - needs manual review', statuses)

    def test_payout_batches_scoped_to_detailer(self):
        self.client.force_authenticate(self.other.user)
        self.assertEqual(self.client.get('/api/payout_batches/').data['count'], 0)

        self.client.force_authenticate(self.detailer.user)
        response = self.client.get('/api/payout_batches/')
        self.assertEqual(response.data['results'][0]['total_amount_cents'], 8500)
