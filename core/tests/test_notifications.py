from types import SimpleNamespace
from unittest import mock

from django.test import SimpleTestCase, TestCase, override_settings

from core.emails import EmailNotConfigured, build_detailer_email, send_html_email
from core.models import DetailerNotificationPreferences, NotificationLog
from core.utils.notifications import (
    SmsRegion,
    build_sms_message,
    normalize_phone,
    send_detailer_notification,
    send_sms,
    sms_from_number,
)

from .factories import make_detailer

BOOKING_DATA = {
    'booking_id': 'b-1',
    'service_name': 'Full Detail',
    'scheduled_date': '2026-10-20',
    'scheduled_time': '10:00',
    'location_city': 'Toronto',
}


class PhoneTests(SimpleTestCase):

    def test_north_american_numbers(self):
        self.assertEqual(normalize_phone('(416) 555-0100'), ('+14165550100', SmsRegion.US_CANADA))
        self.assertEqual(normalize_phone('1-416-555-0100'), ('+14165550100', SmsRegion.US_CANADA))

    def test_uk_numbers(self):
        self.assertEqual(normalize_phone('44 7700 900123'), ('+447700900123', SmsRegion.UK))
        self.assertEqual(normalize_phone('+447700900123')[1], SmsRegion.UK)

    def test_other_country_is_unknown(self):
        self.assertEqual(normalize_phone('+2348012345678')[1], SmsRegion.UNKNOWN)

    @override_settings(TWILIO_PHONE_NUMBER_US='+15550001111', TWILIO_PHONE_NUMBER_UK='+447000000000')
    def test_from_number_by_region(self):
        self.assertEqual(sms_from_number(SmsRegion.UK), '+447000000000')
        self.assertEqual(sms_from_number(SmsRegion.UNKNOWN), '+15550001111')

    @override_settings(TWILIO_PHONE_NUMBER_US='+15550001111', TWILIO_PHONE_NUMBER_UK='')
    def test_uk_falls_back_to_default_number(self):
        self.assertEqual(sms_from_number(SmsRegion.UK), '+15550001111')


class MessageTemplateTests(SimpleTestCase):

    def test_sms_bodies(self):
        self.assertIn('New job!', build_sms_message('new_booking', BOOKING_DATA))
        self.assertIn('cancelled', build_sms_message('booking_cancelled', BOOKING_DATA))
        payout = build_sms_message('payout_processed', {'amount': 12750, 'total_jobs': 2})
        self.assertIn('$127.50', payout)

    def test_email_templates(self):
        subject, html, plain = build_detailer_email('new_booking', BOOKING_DATA, 'Dora')
        self.assertIn('Full Detail', subject)
        self.assertIn('Hi Dora', html)
        self.assertIn('Toronto', plain)

        subject, _, _ = build_detailer_email('something_else', {}, 'Dora')
        self.assertTrue(subject)


class ProviderTests(SimpleTestCase):

    @override_settings(TWILIO_ACCOUNT_SID='', TWILIO_AUTH_TOKEN='')
    def test_sms_requires_credentials(self):
        with self.assertRaises(RuntimeError):
            send_sms('4165550100', 'hi')

    @override_settings(TWILIO_ACCOUNT_SID='AC123', TWILIO_AUTH_TOKEN='tok', TWILIO_PHONE_NUMBER_US='+15550001111')
    def test_sms_sent_through_twilio(self):
        with mock.patch('core.utils.notifications.Client') as client_cls:
            client_cls.return_value.messages.create.return_value = SimpleNamespace(sid='SM1')
            sid = send_sms('416 555 0100', 'hello')

        self.assertEqual(sid, 'SM1')
        client_cls.return_value.messages.create.assert_called_once_with(
            body='hello', from_='+15550001111', to='+14165550100',
        )

    @override_settings(SENDGRID_API_KEY='')
    def test_email_requires_api_key(self):
        with self.assertRaises(EmailNotConfigured):
            send_html_email('a@example.com', 's', '<p>h</p>', 'h')

    @override_settings(SENDGRID_API_KEY='SG.key')
    def test_email_returns_message_id(self):
        response = SimpleNamespace(status_code=202, headers={'X-Message-Id': 'msg-1'})
        with mock.patch('core.emails.SendGridAPIClient') as client_cls:
            client_cls.return_value.send.return_value = response
            self.assertEqual(send_html_email('a@example.com', 's', '<p>h</p>', 'h'), 'msg-1')

    @override_settings(SENDGRID_API_KEY='SG.key')
    def test_email_non_2xx_raises(self):
        response = SimpleNamespace(status_code=400, headers={})
        with mock.patch('core.emails.SendGridAPIClient') as client_cls:
            client_cls.return_value.send.return_value = response
            with self.assertRaises(RuntimeError):
                send_html_email('a@example.com', 's', '<p>h</p>', 'h')


class DetailerNotificationTests(TestCase):

    def setUp(self):
        self.detailer = make_detailer('dora')
        sms = mock.patch('core.utils.notifications.send_sms', return_value='SM123')
        email = mock.patch('core.utils.notifications.send_html_email', return_value='msg-456')
        self.send_sms = sms.start()
        self.send_email = email.start()
        self.addCleanup(sms.stop)
        self.addCleanup(email.stop)

    def test_both_channels_sent_and_logged(self):
        result = send_detailer_notification(self.detailer.id, 'new_booking', BOOKING_DATA)

        self.assertEqual(result['sms_sent'], True)
        self.assertEqual(result['email_sent'], True)
        self.assertEqual(result['sms_provider_id'], 'SM123')
        self.assertEqual(result['email_provider_id'], 'msg-456')

        logs = {log.channel: log for log in NotificationLog.objects.filter(detailer=self.detailer)}
        self.assertEqual(set(logs), {'sms', 'email'})
        self.assertEqual(logs['sms'].recipient, '+14165550100')
        self.assertEqual(logs['email'].recipient, 'dora@example.com')
        self.assertTrue(all(log.status == 'sent' for log in logs.values()))

    def test_one_channel_failing_does_not_block_the_other(self):
        self.send_sms.side_effect = RuntimeError('Twilio down')

        result = send_detailer_notification(self.detailer.id, 'new_booking', BOOKING_DATA)

        self.assertFalse(result['sms_sent'])
        self.assertEqual(result['sms_error'], 'Twilio down')
        self.assertTrue(result['email_sent'])
        failed = NotificationLog.objects.get(channel='sms')
        self.assertEqual(failed.status, 'failed')
        self.assertEqual(failed.error_message, 'Twilio down')

    def test_preferences_are_honoured(self):
        prefs = DetailerNotificationPreferences.objects.get(detailer=self.detailer)
        prefs.new_booking_sms = False
        prefs.save()

        result = send_detailer_notification(self.detailer.id, 'new_booking', BOOKING_DATA)

        self.assertFalse(result['sms_sent'])
        self.send_sms.assert_not_called()
        self.assertTrue(result['email_sent'])

    def test_payout_sms_is_off_by_default(self):
        send_detailer_notification(self.detailer.id, 'payout_processed', {'amount': 100})
        self.send_sms.assert_not_called()
        self.send_email.assert_called_once()

    def test_global_email_toggle(self):
        DetailerNotificationPreferences.objects.filter(detailer=self.detailer).update(email_enabled=False)
        send_detailer_notification(self.detailer.id, 'booking_reminder', BOOKING_DATA)
        self.send_email.assert_not_called()
        self.send_sms.assert_called_once()

    def test_unknown_detailer(self):
        result = send_detailer_notification(999999, 'new_booking', BOOKING_DATA)
        self.assertEqual(result, {'sms_sent': False, 'email_sent': False})
        self.assertFalse(NotificationLog.objects.exists())
