from datetime import date, datetime, time, timezone as dt_timezone
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from core.models import DetailerTransfer
from core.tasks import (
    run_weekly_payouts_task,
    send_booking_reminders,
    send_detailer_notification_task,
    sync_processing_transfers_task,
)

from .factories import QuietSideEffectsMixin, make_booking, make_detailer

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=dt_timezone.utc)
TOMORROW = date(2026, 10, 20)


class BookingReminderTests(QuietSideEffectsMixin, TestCase):

    def setUp(self):
        super().setUp()
        patcher = mock.patch('core.utils.notifications.queue_detailer_notification')
        self.queue = patcher.start()
        self.addCleanup(patcher.stop)
        self.detailer = make_detailer('bob')

    def test_reminds_accepted_bookings_for_tomorrow_once(self):
        booking = make_booking(status='accepted', payment_status='paid', detailer=self.detailer,
                               scheduled_date=TOMORROW, start=time(9, 30))

        self.assertEqual(send_booking_reminders(now=NOW), 1)
        self.assertEqual(send_booking_reminders(now=NOW), 0)

        self.queue.assert_called_once()
        detailer_id, notification_type, data = self.queue.call_args.args
        self.assertEqual(detailer_id, self.detailer.id)
        self.assertEqual(notification_type, 'booking_reminder')
        self.assertEqual(data['scheduled_time'], '09:30')
        booking.refresh_from_db()
        self.assertEqual(booking.reminder_sent_at, NOW)

    def test_other_days_and_statuses_skipped(self):
        make_booking(status='offered', detailer=self.detailer, scheduled_date=TOMORROW)
        make_booking(status='accepted', detailer=self.detailer, scheduled_date=date(2026, 10, 21))
        make_booking(status='accepted', detailer=self.detailer, scheduled_date=TOMORROW,
                     reminder_sent_at=NOW)

        self.assertEqual(send_booking_reminders(now=NOW), 0)
        self.queue.assert_not_called()


class CeleryTaskTests(TestCase):

    def test_notification_task_delegates(self):
        expected = {'sms_sent': True, 'email_sent': False}
        with mock.patch('core.utils.notifications.send_detailer_notification', return_value=expected) as send:
            result = send_detailer_notification_task.apply(args=(7, 'new_booking', {'booking_id': 'x'})).get()

        send.assert_called_once_with(7, 'new_booking', {'booking_id': 'x'})
        self.assertEqual(result, expected)

    def test_weekly_payout_task(self):
        stats = {'batches_created': 0, 'transfers_processed': 0, 'total_amount_cents': 0, 'errors': []}
        with mock.patch('core.services.payouts.run_weekly_payouts', return_value=stats) as run:
            self.assertEqual(run_weekly_payouts_task.apply().get(), stats)
        run.assert_called_once_with()

    def test_transfer_sync_task(self):
        stats = {'batches_checked': 1, 'transfers_updated': 2, 'errors': []}
        with mock.patch('core.services.payouts.sync_processing_transfers', return_value=stats) as run:
            self.assertEqual(sync_processing_transfers_task.apply().get(), stats)
        run.assert_called_once_with()

    def test_transfer_sync_is_scheduled(self):
        from cleanswift_project.celery import app

        tasks = {entry['task'] for entry in app.conf.beat_schedule.values()}
        self.assertIn('core.tasks.sync_processing_transfers_task', tasks)


@override_settings(STRIPE_SECRET_KEY='sk_test_123')
class ManagementCommandTests(QuietSideEffectsMixin, TestCase):

    def test_weekly_payouts_as_of(self):
        stats = {'batches_created': 1, 'transfers_processed': 2, 'total_amount_cents': 12750, 'errors': []}
        out = StringIO()
        with mock.patch('core.management.commands.run_weekly_payouts.run_weekly_payouts', return_value=stats) as run:
            call_command('run_weekly_payouts', '--as-of', '2026-10-14', stdout=out)

        self.assertEqual(run.call_args.kwargs['now'].date(), date(2026, 10, 14))
        self.assertIn('2026-10-05 to 2026-10-11', out.getvalue())
        self.assertIn('Batches=1', out.getvalue())

    def test_weekly_payouts_bad_date(self):
        with self.assertRaises(CommandError):
            call_command('run_weekly_payouts', '--as-of', '14/10/2026', stdout=StringIO())

    def test_retry_dry_run_does_not_call_stripe(self):
        detailer = make_detailer('retry')
        transfer = DetailerTransfer.objects.create(
            booking=make_booking(status='completed', payment_status='paid', detailer=detailer),
            detailer=detailer,
            amount_cents=5000,
            status='retry_pending',
            retry_count=1,
        )
        out = StringIO()
        with mock.patch('core.services.payouts.create_connect_transfer') as create:
            call_command('retry_failed_transfers', '--dry-run', stdout=out)

        create.assert_not_called()
        self.assertIn(f'Transfer #{transfer.id}', out.getvalue())
        self.assertIn('attempt 2/3', out.getvalue())

    def test_retry_command_resubmits(self):
        detailer = make_detailer('retry')
        transfer = DetailerTransfer.objects.create(
            booking=make_booking(status='completed', payment_status='paid', detailer=detailer),
            detailer=detailer,
            amount_cents=5000,
            status='retry_pending',
            retry_count=1,
        )
        out = StringIO()
        with mock.patch('core.services.payouts.create_connect_transfer', return_value='tr_cmd'):
            call_command('retry_failed_transfers', stdout=out)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, 'processing')
        self.assertIn('Re-submitted 1 transfer(s)', out.getvalue())

    def test_sync_transfer_status_command(self):
        detailer = make_detailer('synced')
        transfer = DetailerTransfer.objects.create(
            booking=make_booking(status='completed', payment_status='paid', detailer=detailer),
            detailer=detailer,
            amount_cents=5000,
            status='processing',
            stripe_transfer_id='tr_cmd',
        )
        out = StringIO()
        with mock.patch(
            'core.services.payouts.retrieve_transfer',
            return_value={'id': 'tr_cmd', 'amount': 5000, 'reversed': False},
        ):
            call_command('sync_transfer_status', '--stale-minutes', '0', stdout=out)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, 'succeeded')
        self.assertIn('updated 1 transfer(s)', out.getvalue())
