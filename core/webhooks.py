# core/webhooks.py

import logging

from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.services.stripe_gateway import WebhookVerificationError, verify_webhook
from core.services.stripe_webhooks import SystemContext, WebhookReconciler

logger = logging.getLogger(__name__)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def stripe_webhook(request):
    """
    Stripe webhook ingress. The raw body is verified before it is parsed;
    once verified the event is always acknowledged with 200.
    """
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')
    if not sig_header:
        logger.warning("Stripe webhook without Stripe-Signature header")
        return Response({"error": "Missing stripe-signature header"}, status=status.HTTP_400_BAD_REQUEST)

    context = SystemContext.from_settings()
    if not context.webhook_secrets:
        logger.error("Stripe webhook received but no webhook secret is configured")
        return Response({"error": "Webhook secret not configured"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    payload = request.body
    if not payload:
        return Response({"error": "Empty request body"}, status=status.HTTP_400_BAD_REQUEST)

    if not context.stripe_api_key:
        logger.error("Stripe webhook received but STRIPE_SECRET_KEY is not configured")
        return Response({"error": "Stripe not configured"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        event = verify_webhook(payload, sig_header, context.webhook_secrets)
    except WebhookVerificationError as e:
        logger.warning(f"Stripe webhook rejected: {e}")
        return Response({"error": f"Webhook signature verification failed: {e}"}, status=status.HTTP_400_BAD_REQUEST)

    result = WebhookReconciler(context).handle(event)
    return Response(result, status=status.HTTP_200_OK)
