# core/views.py

import logging

import stripe
from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .booking_manager import Actor, BookingManager, BookingTransitionError
from .models import Booking, Detailer, DetailerTransfer, WeeklyPayoutBatch
from .permissions import IsAuthenticatedAndAdmin, IsBookingParticipant, is_platform_admin
from .serializers import (
    BookingAdvanceSerializer,
    BookingAssignSerializer,
    BookingRefundSerializer,
    BookingSerializer,
    DetailerTransferSerializer,
    WeeklyPayoutBatchSerializer,
)
from .services.assignment import assign_detailer
from .services.payments import PaymentError, PaymentNotConfigured, refund_booking, start_booking_payment

logger = logging.getLogger(__name__)


# -------------------------
# BOOKING VIEWSET
# -------------------------

class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated, IsBookingParticipant]

    def get_queryset(self):
        """
        Limit which bookings each user can see:
        - Customer: only their own bookings.
        - Detailer: bookings assigned to them.
        - Admin/staff: all bookings.
        """
        qs = Booking.objects.select_related('service', 'detailer', 'detailer__user', 'payment').prefetch_related('timeline')
        user = self.request.user
        if is_platform_admin(user):
            return qs
        return qs.filter(Q(user=user) | Q(detailer__user=user))

    @action(detail=True, methods=['post'])
    def advance(self, request, pk=None):
        """
        POST /api/bookings/<id>/advance/  {"status": "...", "note": "..."}
        Moves the booking through the lifecycle with the caller's role.
        """
        booking = self.get_object()
        serializer = BookingAdvanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            booking = BookingManager.advance(
                booking.id,
                serializer.validated_data['status'],
                Actor.for_user(request.user),
                note=serializer.validated_data.get('note', ''),
            )
        except BookingTransitionError as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        booking = self.get_queryset().get(pk=booking.pk)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticatedAndAdmin])
    def assign(self, request, pk=None):
        """
        POST /api/bookings/<id>/assign/  {"detailer_id": 12}
        Without detailer_id the auto-assignment engine picks the closest detailer.
        """
        booking = self.get_object()
        serializer = BookingAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        detailer_id = serializer.validated_data.get('detailer_id')

        if detailer_id is None:
            detailer = assign_detailer(booking.id)
            if detailer is None:
                return Response(
                    {'detail': 'No eligible detailer found for this booking.'},
                    status=status.HTTP_409_CONFLICT,
                )
        else:
            detailer = Detailer.objects.get(id=detailer_id)
            try:
                BookingManager.advance(
                    booking.id,
                    'offered',
                    Actor.for_user(request.user),
                    detailer=detailer,
                    note='Assigned by admin',
                )
            except BookingTransitionError as e:
                return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        booking = self.get_queryset().get(pk=booking.pk)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        """
        POST /api/bookings/<id>/pay/
        Returns the PaymentIntent client secret for the booking owner.
        """
        booking = self.get_object()
        if booking.user_id != request.user.id:
            return Response(
                {'detail': 'Only the customer who made this booking can pay for it.'},
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            payment = start_booking_payment(booking)
        except (PaymentError, BookingTransitionError) as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except PaymentNotConfigured as e:
            logger.error(f"Payment for booking {booking.id} unavailable: {e}")
            return Response({'detail': 'Payments are not configured.'}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except stripe.StripeError as e:
            logger.error(f"Stripe error starting payment for booking {booking.id}: {e}")
            return Response({'detail': f'Stripe error: {e}'}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(payment)

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticatedAndAdmin])
    def refund(self, request, pk=None):
        """
        POST /api/bookings/<id>/refund/  {"amount_cents": 2500, "reason": "..."}
        Without amount_cents the remaining payment is refunded in full.
        """
        booking = self.get_object()
        serializer = BookingRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = refund_booking(
                booking.id,
                amount_cents=serializer.validated_data.get('amount_cents'),
                reason=serializer.validated_data.get('reason', ''),
                admin=request.user,
            )
        except PaymentError as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except PaymentNotConfigured as e:
            logger.error(f"Refund for booking {booking.id} unavailable: {e}")
            return Response({'detail': 'Payments are not configured.'}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        booking = self.get_queryset().get(pk=booking.pk)
        return Response({**result, 'booking': self.get_serializer(booking).data})


# -------------------------
# PAYOUTS
# -------------------------

class DetailerTransferViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = DetailerTransferSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = DetailerTransfer.objects.select_related('booking', 'weekly_payout_batch')
        user = self.request.user
        if is_platform_admin(user):
            return qs
        return qs.filter(detailer__user=user)


class WeeklyPayoutBatchViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = WeeklyPayoutBatchSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        if is_platform_admin(user):
            return WeeklyPayoutBatch.objects.all()
        return WeeklyPayoutBatch.objects.filter(detailer__user=user)
