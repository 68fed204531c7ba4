# core/management/commands/run_weekly_payouts.py


from datetime import datetime

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.services.payouts import previous_week_window, run_weekly_payouts


class Command(BaseCommand):
    help = "Batch last week's pending detailer transfers into one Stripe transfer per solo detailer."

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            help='Run as if today were this date (YYYY-MM-DD); the previous Monday-Sunday week is paid.',
        )

    def handle(self, *args, **options):
        now = None
        if options.get('as_of'):
            try:
                day = datetime.strptime(options['as_of'], '%Y-%m-%d')
            except ValueError:
                raise CommandError('--as-of must be YYYY-MM-DD')
            now = timezone.make_aware(day)

        week_start, week_end = previous_week_window(now)
        self.stdout.write(f'Processing weekly payouts for {week_start} to {week_end}...')

        stats = run_weekly_payouts(now=now)

        for error in stats['errors']:
            self.stderr.write(self.style.ERROR(f'  ✗ {error}'))

        self.stdout.write(
            self.style.SUCCESS(
                f"Weekly payouts completed. Batches={stats['batches_created']} "
                f"transfers={stats['transfers_processed']} "
                f"amount_cents={stats['total_amount_cents']}"
            )
        )
