# core/services/stripe_webhooks.py

"""
Reconciles Stripe webhook events into booking, payment, subscription and
payout state.

Every handler is idempotent: Stripe redelivers on any non-2xx response and
may deliver events out of order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from core.booking_manager import Actor, BookingManager
from core.models import Booking, Detailer, DetailerTransfer, Payment
from core.services import payouts
from core.services.assignment import assign_detailer

logger = logging.getLogger(__name__)


class StripeEventType(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    TRANSFER_CREATED = "transfer.created"
    TRANSFER_PAID = "transfer.paid"
    TRANSFER_FAILED = "transfer.failed"

    @classmethod
    def parse(cls, value: str):
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class SystemContext:
    """Service-level credentials the reconciler acts with."""
    stripe_api_key: str
    webhook_secrets: tuple
    actor: Actor = field(default_factory=Actor.system)

    @classmethod
    def from_settings(cls):
        secrets = (
            getattr(settings, "STRIPE_WEBHOOK_SECRET", ""),
            getattr(settings, "STRIPE_CONNECT_WEBHOOK_SECRET", ""),
        )
        return cls(
            stripe_api_key=getattr(settings, "STRIPE_SECRET_KEY", ""),
            webhook_secrets=tuple(s for s in secrets if s),
        )


def _metadata(obj: dict) -> dict:
    return obj.get("metadata") or {}


def _stripe_id(value) -> str:
    # Expandable fields arrive either as an id or as the expanded object
    if isinstance(value, dict):
        return value.get("id", "")
    return value or ""


class WebhookReconciler:

    def __init__(self, context: SystemContext):
        self.context = context
        self._handlers = {
            StripeEventType.PAYMENT_INTENT_SUCCEEDED: self.handle_payment_succeeded,
            StripeEventType.PAYMENT_INTENT_FAILED: self.handle_payment_failed,
            StripeEventType.PAYMENT_INTENT_CANCELED: self.handle_payment_canceled,
            StripeEventType.SUBSCRIPTION_CREATED: self.handle_subscription_upsert,
            StripeEventType.SUBSCRIPTION_UPDATED: self.handle_subscription_upsert,
            StripeEventType.SUBSCRIPTION_DELETED: self.handle_subscription_deleted,
            StripeEventType.INVOICE_PAYMENT_SUCCEEDED: self.handle_invoice,
            StripeEventType.INVOICE_PAYMENT_FAILED: self.handle_invoice,
            StripeEventType.TRANSFER_CREATED: self.handle_transfer_created,
            StripeEventType.TRANSFER_PAID: self.handle_transfer_paid,
            StripeEventType.TRANSFER_FAILED: self.handle_transfer_failed,
        }

    def handle(self, event: dict) -> dict:
        """
        Dispatch one verified event. Never raises: failures are logged and
        reported in the acknowledgement so Stripe does not redeliver forever.
        """
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        kind = StripeEventType.parse(event_type)
        if kind is None:
            logger.info(f"Unhandled Stripe event type: {event_type}")
            return {"received": True, "event_type": event_type}

        logger.info(f"Stripe event {event.get('id', '')} ({event_type})")
        try:
            self._handlers[kind](obj)
        except Exception as e:
            logger.exception(f"Error handling Stripe event {event_type}")
            return {"received": True, "error": str(e)}
        return {"received": True, "event_type": event_type}

    def _step(self, name: str, fn, *args, **kwargs):
        """Run one independent step; log and swallow its failure."""
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception(f"Webhook step '{name}' failed")
            return None

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    def _resolve_booking_id(self, obj: dict):
        booking_id = _metadata(obj).get("booking_id")
        if not booking_id:
            logger.warning(f"Payment intent {obj.get('id', '')} has no booking_id metadata")
            return None
        try:
            exists = Booking.objects.filter(id=booking_id).exists()
        except (ValidationError, ValueError):
            exists = False
        if not exists:
            logger.warning(f"Payment intent {obj.get('id', '')} references unknown booking {booking_id}")
            return None
        return booking_id

    def _upsert_payment(self, booking_id, obj: dict, status: str):
        amount = obj.get("amount_received") or obj.get("amount") or 0
        payment, created = Payment.objects.update_or_create(
            booking_id=booking_id,
            defaults={
                "amount_cents": int(amount),
                "currency": (obj.get("currency") or "usd").upper(),
                "status": status,
                "stripe_payment_intent_id": obj.get("id", ""),
                "stripe_charge_id": _stripe_id(obj.get("latest_charge")),
            },
        )
        logger.info(f"Payment for booking {booking_id} {'created' if created else 'updated'} ({status})")
        return payment

    def _set_payment_status(self, booking_id, payment_status: str, intent_id: str = ""):
        fields = {"payment_status": payment_status, "updated_at": timezone.now()}
        if intent_id:
            fields["stripe_payment_intent_id"] = intent_id
        Booking.objects.filter(id=booking_id).update(**fields)

    def _confirm_paid(self, booking_id) -> bool:
        booking = Booking.objects.get(id=booking_id)
        if booking.status != "requires_payment":
            logger.info(f"Booking {booking_id} is {booking.status}; status left unchanged")
            return False
        BookingManager.advance(
            booking_id, "paid", self.context.actor, note="Payment confirmed by Stripe"
        )
        return True

    def _assign_and_heal(self, booking_id):
        assign_detailer(booking_id)

        booking = Booking.objects.get(id=booking_id)
        if booking.status == "paid" and booking.detailer_id:
            logger.warning(f"Booking {booking_id} is paid with a detailer attached; moving to offered")
            BookingManager.advance(
                booking_id, "offered", self.context.actor, note="Self-heal after assignment"
            )

    def handle_payment_succeeded(self, obj: dict):
        booking_id = self._resolve_booking_id(obj)
        if booking_id is None:
            return
        if Booking.objects.filter(id=booking_id, payment_status="refunded").exists():
            logger.info(f"Booking {booking_id} already refunded; {obj.get('id', '')} ignored")
            return

        self._step("payment_status", self._set_payment_status, booking_id, "paid", obj.get("id", ""))
        advanced = self._step("advance_to_paid", self._confirm_paid, booking_id)
        if advanced:
            self._step("auto_assign", self._assign_and_heal, booking_id)
        self._step("payment_record", self._upsert_payment, booking_id, obj, "paid")

    def handle_payment_failed(self, obj: dict):
        booking_id = self._resolve_booking_id(obj)
        if booking_id is None:
            return
        self._step("payment_status", self._set_payment_status, booking_id, "failed")
        self._step("payment_record", self._upsert_payment, booking_id, obj, "failed")

    def handle_payment_canceled(self, obj: dict):
        booking_id = self._resolve_booking_id(obj)
        if booking_id is None:
            return
        self._step("payment_status", self._set_payment_status, booking_id, "unpaid")
        self._step("payment_record", self._upsert_payment, booking_id, obj, "failed")

    # ------------------------------------------------------------------
    # Detailer subscriptions
    # ------------------------------------------------------------------

    def handle_subscription_upsert(self, obj: dict):
        detailer_id = _metadata(obj).get("detailer_id")
        subscription_id = obj.get("id", "")
        if not detailer_id:
            logger.warning(f"Subscription {subscription_id} has no detailer_id metadata")
            return

        # First write wins; a later subscription never replaces the recorded one
        updated = Detailer.objects.filter(id=detailer_id).filter(
            Q(stripe_subscription_id__isnull=True) | Q(stripe_subscription_id="")
        ).update(stripe_subscription_id=subscription_id)

        if updated:
            logger.info(f"Detailer {detailer_id} linked to subscription {subscription_id}")
        else:
            logger.info(f"Detailer {detailer_id} missing or already subscribed; {subscription_id} ignored")

    def handle_subscription_deleted(self, obj: dict):
        subscription_id = obj.get("id", "")
        detailer_id = _metadata(obj).get("detailer_id")

        if detailer_id:
            qs = Detailer.objects.filter(id=detailer_id)
        else:
            qs = Detailer.objects.filter(stripe_subscription_id=subscription_id)

        cleared = qs.update(stripe_subscription_id=None)
        if not cleared:
            logger.warning(f"No detailer found for deleted subscription {subscription_id}")
            return
        logger.info(f"Subscription {subscription_id} cleared from {cleared} detailer(s)")

    def handle_invoice(self, obj: dict):
        subscription_id = _stripe_id(obj.get("subscription"))
        if not subscription_id:
            parent = obj.get("parent") or {}
            subscription_id = _stripe_id((parent.get("subscription_details") or {}).get("subscription"))
        if not subscription_id:
            logger.info(f"Invoice {obj.get('id', '')} is not tied to a subscription")
            return

        detailer = Detailer.objects.filter(stripe_subscription_id=subscription_id).first()
        if detailer is None:
            logger.info(f"Invoice {obj.get('id', '')}: no detailer with subscription {subscription_id}")
            return

        logger.info(
            f"Invoice {obj.get('id', '')} for detailer {detailer.id}: status={obj.get('status', '')}, "
            f"amount_paid={obj.get('amount_paid', 0)}"
        )

    # ------------------------------------------------------------------
    # Detailer transfers
    # ------------------------------------------------------------------

    def _locate_transfer(self, obj: dict, allow_stripe_id: bool = True):
        transfer_id = _metadata(obj).get("transfer_id")
        qs = DetailerTransfer.objects.select_for_update()
        if transfer_id:
            try:
                return qs.get(id=transfer_id)
            except (DetailerTransfer.DoesNotExist, ValueError):
                logger.warning(f"Transfer {transfer_id} from Stripe metadata not found")
        if allow_stripe_id and obj.get("id"):
            return qs.filter(stripe_transfer_id=obj["id"]).first()
        return None

    def _batch_id(self, obj: dict):
        return _metadata(obj).get("weekly_batch_id")

    def handle_transfer_created(self, obj: dict):
        batch_id = self._batch_id(obj)
        if batch_id:
            payouts.apply_batch_transfer_event(batch_id, obj.get("id", ""), "created")
            return

        with transaction.atomic():
            transfer = self._locate_transfer(obj, allow_stripe_id=False)
            if transfer is None:
                logger.warning(f"transfer.created {obj.get('id', '')}: no matching detailer transfer")
                return
            payouts.mark_transfer_processing(transfer, obj.get("id", ""))
        logger.info(f"Transfer {transfer.id} recorded as {obj.get('id', '')} ({transfer.status})")

    def handle_transfer_paid(self, obj: dict):
        batch_id = self._batch_id(obj)
        if batch_id:
            payouts.apply_batch_transfer_event(batch_id, obj.get("id", ""), "paid")
            return

        with transaction.atomic():
            transfer = self._locate_transfer(obj)
            if transfer is None:
                logger.warning(f"transfer.paid {obj.get('id', '')}: no matching detailer transfer")
                return
            payouts.mark_transfer_succeeded(transfer, obj.get("id", ""))

    def handle_transfer_failed(self, obj: dict):
        error_message = obj.get("failure_message") or "Transfer failed"
        batch_id = self._batch_id(obj)
        if batch_id:
            payouts.apply_batch_transfer_event(batch_id, obj.get("id", ""), "failed", error_message)
            return

        with transaction.atomic():
            transfer = self._locate_transfer(obj)
            if transfer is None:
                logger.warning(f"transfer.failed {obj.get('id', '')}: no matching detailer transfer")
                return
            if transfer.status == "succeeded":
                logger.info(f"transfer.failed {obj.get('id', '')} ignored: transfer {transfer.id} already succeeded")
                return
            if transfer.stripe_transfer_id and obj.get("id") and transfer.stripe_transfer_id != obj["id"]:
                logger.info(
                    f"transfer.failed {obj['id']} ignored: transfer {transfer.id} is now {transfer.stripe_transfer_id}"
                )
                return
            payouts.record_transfer_failure(transfer, error_message)
