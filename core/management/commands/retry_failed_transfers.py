# core/management/commands/retry_failed_transfers.py

from django.core.management.base import BaseCommand

from core.models import DetailerTransfer, MAX_TRANSFER_RETRIES
from core.services.payouts import retry_failed_transfers


class Command(BaseCommand):
    help = f'Re-submit retry_pending detailer transfers (at most {MAX_TRANSFER_RETRIES} attempts each)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=50,
            help='Maximum number of transfers to re-submit (default: 50)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the transfers that would be re-submitted without calling Stripe',
        )

    def handle(self, *args, **options):
        limit = options['limit']

        if options['dry_run']:
            due = DetailerTransfer.objects.filter(
                status='retry_pending',
                retry_count__lt=MAX_TRANSFER_RETRIES,
            ).order_by('created_at')[:limit]
            self.stdout.write(self.style.WARNING('DRY RUN - No changes made.'))
            for transfer in due:
                self.stdout.write(
                    f'  - Transfer #{transfer.id}: {transfer.amount_cents} cents to detailer '
                    f'{transfer.detailer_id} (attempt {transfer.retry_count + 1}/{MAX_TRANSFER_RETRIES})'
                )
            return

        stats = retry_failed_transfers(limit=limit)

        for error in stats['errors']:
            self.stdout.write(self.style.ERROR(f'  ✗ {error}'))

        self.stdout.write(
            self.style.SUCCESS(
                f"Re-submitted {stats['retried']} transfer(s); {stats['exhausted']} exhausted."
            )
        )
