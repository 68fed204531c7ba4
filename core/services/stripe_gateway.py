# core/services/stripe_gateway.py

"""
Thin adapter over the Stripe SDK: webhook signature checks, payment intents,
refunds and Connect transfers.
"""
from __future__ import annotations

import json
import logging

import stripe

logger = logging.getLogger(__name__)


class WebhookVerificationError(ValueError):
    pass


def verify_webhook(payload: bytes, sig_header: str, secrets) -> dict:
    """
    Verify a Stripe-Signature header against each configured secret and
    return the parsed event. Raises WebhookVerificationError when no secret
    matches or the body is not JSON.
    """
    try:
        payload_text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    except UnicodeDecodeError as e:
        raise WebhookVerificationError(f"Payload is not UTF-8: {e}")
    secrets = [s for s in secrets if s]
    if not secrets:
        raise WebhookVerificationError("No webhook secret configured")

    last_error = None
    for secret in secrets:
        try:
            stripe.WebhookSignature.verify_header(payload_text, sig_header, secret)
            break
        except stripe.SignatureVerificationError as e:
            last_error = e
    else:
        raise WebhookVerificationError(f"Invalid signature: {last_error}")

    try:
        event = json.loads(payload_text)
    except ValueError as e:
        raise WebhookVerificationError(f"Invalid payload: {e}")

    if not isinstance(event, dict) or "type" not in event:
        raise WebhookVerificationError("Payload is not a Stripe event")
    return event


def create_connect_transfer(*, api_key: str, amount_cents: int, currency: str,
                            destination: str, metadata: dict, description: str = "") -> str:
    """
    Create a Stripe transfer to a connected account and return its id.
    stripe.StripeError propagates to the caller.
    """
    if not destination:
        raise ValueError("Detailer has no Stripe Connect account")
    if amount_cents <= 0:
        raise ValueError("Transfer amount must be > 0")

    stripe.api_key = api_key
    params = {
        "amount": int(amount_cents),
        "currency": (currency or "cad").lower(),
        "destination": destination,
        "metadata": {k: str(v) for k, v in metadata.items()},
    }
    if description:
        params["description"] = description

    tr = stripe.Transfer.create(**params)
    logger.info(f"Stripe transfer {tr.id} created: {amount_cents} {params['currency']} -> {destination}")
    return tr.id


def retrieve_transfer(*, api_key: str, transfer_id: str):
    """Fetch a transfer; stripe.StripeError propagates."""
    stripe.api_key = api_key
    return stripe.Transfer.retrieve(transfer_id)


# PaymentIntent states in which the customer can still complete payment
PAYABLE_INTENT_STATUSES = (
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
)


def reusable_payment_intent(*, api_key: str, intent_id: str, amount_cents: int):
    """
    Return the existing PaymentIntent when it can still be paid for the
    same amount, otherwise None. A lookup failure also yields None so
    the caller creates a fresh intent.
    """
    if not intent_id:
        return None

    stripe.api_key = api_key
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as e:
        logger.warning(f"Could not retrieve PaymentIntent {intent_id}, creating a new one: {e}")
        return None

    if intent.amount != amount_cents:
        logger.warning(
            f"PaymentIntent {intent_id} is for {intent.amount}, expected {amount_cents}; creating a new one"
        )
        return None
    if intent.status not in PAYABLE_INTENT_STATUSES:
        logger.info(f"PaymentIntent {intent_id} is {intent.status}; creating a new one")
        return None
    return intent


def create_payment_intent(*, api_key: str, amount_cents: int, currency: str,
                          metadata: dict, description: str = ""):
    """
    Create a PaymentIntent with automatic payment methods.
    stripe.StripeError propagates to the caller.
    """
    if amount_cents <= 0:
        raise ValueError("Payment amount must be > 0")

    stripe.api_key = api_key
    params = {
        "amount": int(amount_cents),
        "currency": (currency or "cad").lower(),
        "automatic_payment_methods": {"enabled": True},
        "metadata": {k: str(v) for k, v in metadata.items()},
    }
    if description:
        params["description"] = description

    intent = stripe.PaymentIntent.create(**params)
    logger.info(f"PaymentIntent {intent.id} created: {amount_cents} {params['currency']}")
    return intent


def create_refund(*, api_key: str, payment_intent_id: str, amount_cents: int, metadata: dict):
    """
    Refund part or all of a PaymentIntent.
    stripe.StripeError propagates to the caller.
    """
    if not payment_intent_id:
        raise ValueError("Booking has no Stripe PaymentIntent")
    if amount_cents <= 0:
        raise ValueError("Refund amount must be > 0")

    stripe.api_key = api_key
    refund = stripe.Refund.create(
        payment_intent=payment_intent_id,
        amount=int(amount_cents),
        reason="requested_by_customer",
        metadata={k: str(v) for k, v in metadata.items()},
    )
    logger.info(f"Refund {refund.id} created: {amount_cents} against {payment_intent_id}")
    return refund
