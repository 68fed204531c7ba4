# core/services/payments.py

"""
Customer payments and admin refunds for bookings.
"""
from __future__ import annotations

import logging

import stripe
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.booking_manager import Actor, BookingManager
from core.models import Booking, Payment
from core.services.stripe_gateway import (
    create_payment_intent,
    create_refund,
    reusable_payment_intent,
)
from core.utils.stripe_money import to_minor_units

logger = logging.getLogger(__name__)


class PaymentError(ValueError):
    pass


class PaymentNotConfigured(RuntimeError):
    pass


# Booking.payment_status values from which a customer may (re)start payment
PAYABLE_PAYMENT_STATUSES = ('unpaid', 'requires_payment', 'processing', 'failed')


def _api_key() -> str:
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise PaymentNotConfigured("STRIPE_SECRET_KEY not configured")
    return api_key


def _booking_currency() -> str:
    return getattr(settings, "STRIPE_CURRENCY", "cad")


def start_booking_payment(booking: Booking) -> dict:
    """
    Create (or reuse) the PaymentIntent for a booking and return what the
    client needs to confirm it:
    {client_secret, payment_intent_id, booking_id, amount_cents, currency}.

    The amount always comes from the booking. A pending booking moves to
    requires_payment; the webhook takes it from there.
    """
    if booking.payment_status not in PAYABLE_PAYMENT_STATUSES:
        raise PaymentError(f"Payment not allowed for booking with payment status {booking.payment_status}")
    if booking.status not in ('pending', 'requires_payment'):
        raise PaymentError(f"Payment not allowed for booking with status {booking.status}")
    if not booking.total_amount or booking.total_amount <= 0:
        raise PaymentError("Booking has invalid total amount")

    api_key = _api_key()
    currency = _booking_currency()
    amount_cents = to_minor_units(booking.total_amount, currency)

    intent = reusable_payment_intent(
        api_key=api_key,
        intent_id=booking.stripe_payment_intent_id,
        amount_cents=amount_cents,
    )
    if intent is None:
        intent = create_payment_intent(
            api_key=api_key,
            amount_cents=amount_cents,
            currency=currency,
            metadata={"booking_id": booking.id, "user_id": booking.user_id},
            description=f"CleanSwift Booking {booking.receipt_id}",
        )
        logger.info(f"Booking {booking.id} payment started with {intent.id}")
    else:
        logger.info(f"Booking {booking.id} reusing PaymentIntent {intent.id}")

    if not intent.client_secret:
        raise PaymentError(f"PaymentIntent {intent.id} has no client secret")

    Booking.objects.filter(id=booking.id).update(
        stripe_payment_intent_id=intent.id,
        payment_status='processing',
        updated_at=timezone.now(),
    )

    if booking.status == 'pending':
        BookingManager.advance(
            booking.id, 'requires_payment', Actor.system(), note="Payment intent created"
        )

    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "booking_id": str(booking.id),
        "amount_cents": amount_cents,
        "currency": currency,
    }


def refund_booking(booking_id, amount_cents: int | None = None, reason: str = "", admin=None) -> dict:
    """
    Refund a paid booking through Stripe. Without amount_cents the whole
    remaining payment is refunded.

    A full refund sets payment_status to 'refunded'; a partial refund keeps
    it 'paid'. Booking.status is not touched.
    Returns {refund_id, amount_refunded, full_refund}.
    """
    api_key = _api_key()

    with transaction.atomic():
        try:
            booking = Booking.objects.select_for_update().get(id=booking_id)
        except Booking.DoesNotExist:
            raise PaymentError(f"Booking {booking_id} not found")

        if booking.payment_status != 'paid':
            raise PaymentError(f"Booking payment status is {booking.payment_status}, cannot refund")
        if not booking.stripe_payment_intent_id:
            raise PaymentError("Booking has no associated Stripe PaymentIntent")

        payment = Payment.objects.select_for_update().filter(booking=booking).first()
        if payment is not None:
            paid_cents = payment.amount_cents
            already_refunded = payment.amount_refunded_cents
        else:
            paid_cents = to_minor_units(booking.total_amount, _booking_currency())
            already_refunded = 0

        refundable = paid_cents - already_refunded
        amount_cents = refundable if amount_cents is None else int(amount_cents)
        if amount_cents <= 0 or amount_cents > refundable:
            raise PaymentError(f"Refund amount must be between 1 and {refundable} cents")

        try:
            refund = create_refund(
                api_key=api_key,
                payment_intent_id=booking.stripe_payment_intent_id,
                amount_cents=amount_cents,
                metadata={
                    "booking_id": booking.id,
                    "admin_id": getattr(admin, "id", ""),
                    "reason": reason,
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Refund for booking {booking.id} failed: {e}")
            raise PaymentError(f"Stripe error: {e}")

        full_refund = already_refunded + amount_cents >= paid_cents
        if full_refund:
            booking.payment_status = 'refunded'
            booking.save(update_fields=['payment_status', 'updated_at'])

        if payment is not None:
            payment.amount_refunded_cents = already_refunded + amount_cents
            fields = ['amount_refunded_cents', 'updated_at']
            if full_refund:
                payment.status = 'refunded'
                fields.append('status')
            payment.save(update_fields=fields)

    logger.info(
        f"Booking {booking.id} refunded {amount_cents} cents ({'full' if full_refund else 'partial'}) "
        f"as {refund.id}"
    )
    return {"refund_id": refund.id, "amount_refunded": amount_cents, "full_refund": full_refund}
