# core/services/payouts.py

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta

import stripe
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.models import (
    Booking,
    DetailerTransfer,
    MAX_TRANSFER_RETRIES,
    WeeklyPayoutBatch,
)
from core.services.stripe_gateway import create_connect_transfer, retrieve_transfer
from core.utils.fees import calculate_platform_fee
from core.utils.notifications import queue_detailer_notification
from core.utils.stripe_money import to_minor_units

logger = logging.getLogger(__name__)


TERMINAL_TRANSFER_STATUSES = ('succeeded', 'failed')


def _payout_currency() -> str:
    return getattr(settings, "STRIPE_PAYOUT_CURRENCY", "cad")


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

def create_pending_transfer_for_booking(booking: Booking) -> DetailerTransfer | None:
    """
    Called when a booking becomes completed. Records what the detailer is owed
    as a pending transfer; the weekly sweep pays it out.

    Idempotent: a booking never gets a second transfer.
    """
    if not booking.detailer_id:
        logger.warning(f"Booking {booking.id} completed without a detailer - no transfer created")
        return None

    if booking.payment_status != "paid":
        logger.warning(
            f"Booking {booking.id} completed with payment_status={booking.payment_status} - no transfer created"
        )
        return None

    detailer = booking.detailer
    fee = calculate_platform_fee(booking.total_amount, detailer=detailer)
    currency = _payout_currency()
    fee_cents = to_minor_units(fee, currency)
    amount_cents = to_minor_units(booking.total_amount, currency) - fee_cents

    transfer, created = DetailerTransfer.objects.get_or_create(
        booking=booking,
        defaults={
            "detailer": detailer,
            "amount_cents": max(amount_cents, 0),
            "platform_fee_cents": fee_cents,
            "status": "pending",
        },
    )
    if created:
        logger.info(
            f"Pending transfer {transfer.id} for booking {booking.id}: "
            f"{transfer.amount_cents} cents (fee {fee_cents}) to detailer {detailer.id}"
        )
    return transfer


def failure_outcome(retry_count: int):
    """
    Returns (new_retry_count, new_status) after one more failed attempt.
    """
    new_count = min(retry_count + 1, MAX_TRANSFER_RETRIES)
    new_status = "retry_pending" if new_count < MAX_TRANSFER_RETRIES else "failed"
    return new_count, new_status


def record_transfer_failure(transfer: DetailerTransfer, error_message: str) -> DetailerTransfer:
    new_count, new_status = failure_outcome(transfer.retry_count)
    transfer.retry_count = new_count
    transfer.status = new_status
    transfer.error_message = error_message or "Transfer failed"
    transfer.save(update_fields=["retry_count", "status", "error_message", "updated_at"])

    if new_status == "failed":
        logger.error(
            f"Transfer {transfer.id} failed permanently after {new_count} attempts: {transfer.error_message}"
        )
    else:
        logger.warning(
            f"Transfer {transfer.id} failed (attempt {new_count}/{MAX_TRANSFER_RETRIES}), queued for retry"
        )
    return transfer


def mark_transfer_processing(transfer: DetailerTransfer, stripe_transfer_id: str) -> DetailerTransfer:
    """A transfer that already finished keeps its status (events may arrive out of order)."""
    fields = ["updated_at"]
    if stripe_transfer_id and transfer.stripe_transfer_id != stripe_transfer_id:
        transfer.stripe_transfer_id = stripe_transfer_id
        fields.append("stripe_transfer_id")
    if transfer.status not in TERMINAL_TRANSFER_STATUSES:
        transfer.status = "processing"
        fields.append("status")
    transfer.save(update_fields=fields)
    return transfer


def mark_transfer_succeeded(transfer: DetailerTransfer, stripe_transfer_id: str = "") -> DetailerTransfer:
    transfer.status = "succeeded"
    transfer.error_message = ""
    fields = ["status", "error_message", "updated_at"]
    if stripe_transfer_id and not transfer.stripe_transfer_id:
        transfer.stripe_transfer_id = stripe_transfer_id
        fields.append("stripe_transfer_id")
    transfer.save(update_fields=fields)
    logger.info(f"Transfer {transfer.id} succeeded")
    return transfer


# =============================================================================
# WEEKLY BATCH STATUS (driven by transfer.* webhooks)
# =============================================================================

def _batch_transfers(batch: WeeklyPayoutBatch, stripe_transfer_id: str):
    qs = DetailerTransfer.objects.filter(weekly_payout_batch=batch)
    if stripe_transfer_id:
        qs = qs | DetailerTransfer.objects.filter(stripe_transfer_id=stripe_transfer_id)
    return qs.distinct()


def apply_batch_transfer_event(batch_id, stripe_transfer_id: str, outcome: str, error_message: str = ""):
    """
    Apply a transfer.created / paid / failed outcome to a weekly batch and
    every transfer it carries. Returns the batch, or None if unknown.
    """
    with transaction.atomic():
        try:
            batch = WeeklyPayoutBatch.objects.select_for_update().get(id=batch_id)
        except (WeeklyPayoutBatch.DoesNotExist, ValueError):
            logger.warning(f"Weekly payout batch {batch_id} not found")
            return None

        transfers = list(_batch_transfers(batch, stripe_transfer_id))
        newly_paid = False

        if outcome == "created":
            if batch.status not in ("paid", "failed"):
                batch.status = "processing"
            if stripe_transfer_id and not batch.stripe_transfer_id:
                batch.stripe_transfer_id = stripe_transfer_id
            for t in transfers:
                mark_transfer_processing(t, stripe_transfer_id)

        elif outcome == "paid":
            newly_paid = batch.status != "paid"
            batch.status = "paid"
            batch.processed_at = batch.processed_at or timezone.now()
            for t in transfers:
                mark_transfer_succeeded(t, stripe_transfer_id)

        elif outcome == "failed":
            batch.status = "failed"
            batch.error_message = error_message or "Transfer failed"
            for t in transfers:
                if t.status != "succeeded":
                    record_transfer_failure(t, batch.error_message)

        else:
            raise ValueError(f"Unknown batch outcome: {outcome}")

        batch.save()

    logger.info(f"Weekly batch {batch.id} -> {batch.status} ({len(transfers)} transfers)")

    if newly_paid:
        queue_detailer_notification(
            batch.detailer_id,
            "payout_processed",
            {
                "amount": batch.total_amount_cents,
                "week_start": batch.week_start_date.isoformat(),
                "week_end": batch.week_end_date.isoformat(),
                "total_jobs": batch.total_transfers,
            },
        )
    return batch


# =============================================================================
# WEEKLY SWEEP
# =============================================================================

def previous_week_window(now=None):
    """(monday, sunday) of the week before the one containing now."""
    today = timezone.localdate(now or timezone.now())
    this_monday = today - timedelta(days=today.weekday())
    week_start = this_monday - timedelta(days=7)
    return week_start, week_start + timedelta(days=6)


def run_weekly_payouts(now=None) -> dict:
    """
    Intended to be run by Celery beat (Wednesday morning UTC).

    Batches every pending, un-batched transfer of solo detailers created up to
    the end of last week into one Stripe transfer per detailer. Transfers left
    behind by an earlier failed sweep ride along with the next one.
    Returns stats for logging/monitoring.
    """
    week_start, week_end = previous_week_window(now)
    stats = {"batches_created": 0, "transfers_processed": 0, "total_amount_cents": 0, "errors": []}

    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        stats["errors"].append("STRIPE_SECRET_KEY not configured")
        logger.error("Weekly payouts skipped: STRIPE_SECRET_KEY not configured")
        return stats

    pending = (
        DetailerTransfer.objects.filter(
            status="pending",
            weekly_payout_batch__isnull=True,
            detailer__organization__isnull=True,
            created_at__date__lte=week_end,
        )
        .select_related("detailer")
        .order_by("created_at")
    )

    by_detailer = defaultdict(list)
    for t in pending:
        by_detailer[t.detailer].append(t)

    if not by_detailer:
        logger.info(f"No pending transfers for week {week_start}..{week_end}")
        return stats

    currency = _payout_currency()

    for detailer, transfers in by_detailer.items():
        if not detailer.stripe_connect_account_id:
            msg = f"Detailer {detailer.id} has no Stripe Connect account"
            stats["errors"].append(msg)
            logger.warning(msg)
            continue

        with transaction.atomic():
            locked = list(
                DetailerTransfer.objects.select_for_update().filter(
                    id__in=[t.id for t in transfers],
                    status="pending",
                    weekly_payout_batch__isnull=True,
                )
            )
            if not locked:
                continue

            total_cents = sum(t.amount_cents for t in locked)
            batch = WeeklyPayoutBatch.objects.create(
                detailer=detailer,
                week_start_date=week_start,
                week_end_date=week_end,
                total_amount_cents=total_cents,
                total_transfers=len(locked),
                status="pending",
            )

            try:
                stripe_transfer_id = create_connect_transfer(
                    api_key=api_key,
                    amount_cents=total_cents,
                    currency=currency,
                    destination=detailer.stripe_connect_account_id,
                    metadata={
                        "weekly_batch_id": batch.id,
                        "detailer_id": detailer.id,
                        "week_start": week_start.isoformat(),
                        "week_end": week_end.isoformat(),
                        "transfer_count": len(locked),
                    },
                    description=f"Weekly payout {week_start} - {week_end}",
                )
            except (stripe.StripeError, ValueError) as e:
                batch.status = "failed"
                batch.error_message = str(e)
                batch.save(update_fields=["status", "error_message"])
                stats["errors"].append(f"Detailer {detailer.id}: {e}")
                logger.error(f"Weekly payout for detailer {detailer.id} failed: {e}")
                continue

            batch.status = "processing"
            batch.stripe_transfer_id = stripe_transfer_id
            batch.processed_at = timezone.now()
            batch.save(update_fields=["status", "stripe_transfer_id", "processed_at"])

            DetailerTransfer.objects.filter(id__in=[t.id for t in locked]).update(
                status="processing",
                stripe_transfer_id=stripe_transfer_id,
                weekly_payout_batch=batch,
                updated_at=timezone.now(),
            )

        stats["batches_created"] += 1
        stats["transfers_processed"] += len(locked)
        stats["total_amount_cents"] += total_cents

    logger.info(
        f"Weekly payouts {week_start}..{week_end}: {stats['batches_created']} batches, "
        f"{stats['transfers_processed']} transfers, {stats['total_amount_cents']} cents, "
        f"{len(stats['errors'])} errors"
    )
    return stats


# =============================================================================
# MANUAL RETRY
# =============================================================================

def submit_transfer(transfer: DetailerTransfer, api_key: str | None = None) -> DetailerTransfer:
    """
    Re-submit one retry_pending transfer as an individual Stripe transfer.
    A Stripe error is booked as another failed attempt.
    """
    if transfer.status != "retry_pending":
        raise ValueError(f"Transfer {transfer.id} is {transfer.status}, not retry_pending")
    if transfer.retry_count >= MAX_TRANSFER_RETRIES:
        raise ValueError(f"Transfer {transfer.id} exhausted its {MAX_TRANSFER_RETRIES} attempts")

    api_key = api_key or getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise ValueError("STRIPE_SECRET_KEY not configured")

    try:
        stripe_transfer_id = create_connect_transfer(
            api_key=api_key,
            amount_cents=transfer.amount_cents,
            currency=_payout_currency(),
            destination=transfer.detailer.stripe_connect_account_id,
            metadata={
                "transfer_id": transfer.id,
                "booking_id": transfer.booking_id,
                "detailer_id": transfer.detailer_id,
                "retry_attempt": transfer.retry_count + 1,
            },
            description=f"Retry of transfer {transfer.id}",
        )
    except (stripe.StripeError, ValueError) as e:
        return record_transfer_failure(transfer, str(e))

    transfer.status = "processing"
    transfer.stripe_transfer_id = stripe_transfer_id
    transfer.error_message = ""
    transfer.save(update_fields=["status", "stripe_transfer_id", "error_message", "updated_at"])
    logger.info(f"Transfer {transfer.id} re-submitted as {stripe_transfer_id}")
    return transfer


def retry_failed_transfers(limit: int = 50, transfer_ids=None) -> dict:
    """
    Re-submit retry_pending transfers that still have attempts left.
    Not scheduled; run from the admin or `manage.py retry_failed_transfers`.
    """
    stats = {"retried": 0, "exhausted": 0, "errors": []}

    qs = DetailerTransfer.objects.filter(
        status="retry_pending",
        retry_count__lt=MAX_TRANSFER_RETRIES,
    ).select_related("detailer").order_by("created_at")
    if transfer_ids is not None:
        qs = qs.filter(id__in=transfer_ids)

    for transfer in qs[:limit]:
        try:
            result = submit_transfer(transfer)
        except ValueError as e:
            stats["errors"].append(f"Transfer {transfer.id}: {e}")
            continue

        if result.status == "processing":
            stats["retried"] += 1
        else:
            if result.status == "failed":
                stats["exhausted"] += 1
            stats["errors"].append(f"Transfer {transfer.id}: {result.error_message}")

    logger.info(
        f"Transfer retry run: {stats['retried']} re-submitted, {stats['exhausted']} exhausted, "
        f"{len(stats['errors'])} errors"
    )
    return stats


# =============================================================================
# STATUS SYNC (for transfers whose webhook never arrived)
# =============================================================================

def stripe_transfer_outcome(remote) -> str | None:
    """
    'paid', 'failed' or None (still in flight) for a retrieved Stripe transfer.
    """
    status = remote.get("status")
    if status == "paid":
        return "paid"
    if status in ("failed", "canceled"):
        return "failed"
    if status:
        return None
    if remote.get("reversed") or remote.get("reversed_at"):
        return "failed"
    if (remote.get("amount") or 0) > 0:
        return "paid"
    return None


def _failure_text(remote) -> str:
    if remote.get("failure_message"):
        return remote["failure_message"]
    if remote.get("reversed"):
        return "Transfer reversed"
    return "Transfer failed"


def sync_processing_transfers(now=None, stale_after=timedelta(hours=1)) -> dict:
    """
    Ask Stripe about transfers stuck in 'processing' for longer than
    stale_after and apply what it reports. Weekly batches are checked once
    through their shared Stripe transfer; everything else one by one.
    """
    stats = {"batches_checked": 0, "transfers_updated": 0, "errors": []}

    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        stats["errors"].append("STRIPE_SECRET_KEY not configured")
        logger.error("Transfer sync skipped: STRIPE_SECRET_KEY not configured")
        return stats

    cutoff = (now or timezone.now()) - stale_after
    stuck = (
        DetailerTransfer.objects.filter(status="processing", updated_at__lte=cutoff)
        .exclude(stripe_transfer_id="")
        .select_related("weekly_payout_batch")
        .order_by("created_at")
    )

    batches = {}
    singles = []
    for t in stuck:
        batch = t.weekly_payout_batch
        if batch is not None and batch.status != "paid" and batch.stripe_transfer_id:
            batches.setdefault(batch.id, batch)
        else:
            singles.append(t)

    for batch in batches.values():
        stats["batches_checked"] += 1
        try:
            remote = retrieve_transfer(api_key=api_key, transfer_id=batch.stripe_transfer_id)
        except stripe.StripeError as e:
            stats["errors"].append(f"Batch {batch.id}: {e}")
            logger.error(f"Could not fetch {batch.stripe_transfer_id} for batch {batch.id}: {e}")
            continue

        outcome = stripe_transfer_outcome(remote)
        if outcome is None:
            continue
        changed = DetailerTransfer.objects.filter(weekly_payout_batch=batch, status="processing").count()
        error_message = _failure_text(remote) if outcome == "failed" else ""
        apply_batch_transfer_event(batch.id, batch.stripe_transfer_id, outcome, error_message)
        stats["transfers_updated"] += changed

    for t in singles:
        try:
            remote = retrieve_transfer(api_key=api_key, transfer_id=t.stripe_transfer_id)
        except stripe.StripeError as e:
            stats["errors"].append(f"Transfer {t.id}: {e}")
            logger.error(f"Could not fetch {t.stripe_transfer_id} for transfer {t.id}: {e}")
            continue

        outcome = stripe_transfer_outcome(remote)
        if outcome is None:
            continue

        with transaction.atomic():
            locked = DetailerTransfer.objects.select_for_update().get(id=t.id)
            # A webhook may have landed while we were asking
            if locked.status != "processing" or locked.stripe_transfer_id != t.stripe_transfer_id:
                continue
            if outcome == "paid":
                mark_transfer_succeeded(locked)
            else:
                record_transfer_failure(locked, _failure_text(remote))
        stats["transfers_updated"] += 1

    logger.info(
        f"Transfer sync: {stats['batches_checked']} batches checked, "
        f"{stats['transfers_updated']} transfers updated, {len(stats['errors'])} errors"
    )
    return stats
