# core/management/commands/sync_transfer_status.py

from datetime import timedelta

from django.core.management.base import BaseCommand

from core.services.payouts import sync_processing_transfers


class Command(BaseCommand):
    help = 'Check transfers stuck in processing against Stripe and apply the result'

    def add_arguments(self, parser):
        parser.add_argument(
            '--stale-minutes',
            type=int,
            default=60,
            help='Only check transfers untouched for this many minutes (default: 60)',
        )

    def handle(self, *args, **options):
        stats = sync_processing_transfers(stale_after=timedelta(minutes=options['stale_minutes']))

        for error in stats['errors']:
            self.stdout.write(self.style.ERROR(f'  ✗ {error}'))

        self.stdout.write(
            self.style.SUCCESS(
                f"Checked {stats['batches_checked']} batch(es); "
                f"updated {stats['transfers_updated']} transfer(s)."
            )
        )
