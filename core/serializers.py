# core/serializers.py

from rest_framework import serializers

from .models import (
    Booking,
    BookingTimelineEntry,
    Detailer,
    DetailerTransfer,
    Payment,
    WeeklyPayoutBatch,
)


class BookingTimelineEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingTimelineEntry
        fields = ['from_status', 'to_status', 'actor_role', 'note', 'created_at']


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            'amount_cents',
            'currency',
            'status',
            'amount_refunded_cents',
            'stripe_payment_intent_id',
            'created_at',
        ]


# Bookings are read-only through the API; status moves go through /advance/
class BookingSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source='service.name', read_only=True)
    detailer_name = serializers.SerializerMethodField()
    timeline = BookingTimelineEntrySerializer(many=True, read_only=True)
    payment = PaymentSerializer(read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id',
            'receipt_id',
            'user',
            'detailer',
            'detailer_name',
            'organization',
            'service',
            'service_name',
            'addons',
            'vehicle',
            'scheduled_date',
            'scheduled_time_start',
            'scheduled_time_end',
            'address_line1',
            'city',
            'latitude',
            'longitude',
            'status',
            'payment_status',
            'service_price',
            'addons_total',
            'tax_amount',
            'total_amount',
            'accepted_at',
            'started_at',
            'completed_at',
            'cancelled_at',
            'created_at',
            'updated_at',
            'timeline',
            'payment',
        ]
        read_only_fields = fields

    def get_detailer_name(self, obj):
        if not obj.detailer_id:
            return None
        return obj.detailer.full_name or obj.detailer.user.username


class BookingAdvanceSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.STATUS_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class BookingAssignSerializer(serializers.Serializer):
    detailer_id = serializers.IntegerField(required=False)

    def validate_detailer_id(self, value):
        if not Detailer.objects.filter(id=value).exists():
            raise serializers.ValidationError('Detailer not found.')
        return value


class BookingRefundSerializer(serializers.Serializer):
    amount_cents = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DetailerTransferSerializer(serializers.ModelSerializer):
    display_status = serializers.CharField(read_only=True)
    booking_receipt_id = serializers.CharField(source='booking.receipt_id', read_only=True)
    week_start_date = serializers.DateField(source='weekly_payout_batch.week_start_date', read_only=True, default=None)

    class Meta:
        model = DetailerTransfer
        fields = [
            'id',
            'booking',
            'booking_receipt_id',
            'detailer',
            'amount_cents',
            'platform_fee_cents',
            'status',
            'display_status',
            'retry_count',
            'error_message',
            'stripe_transfer_id',
            'weekly_payout_batch',
            'week_start_date',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class WeeklyPayoutBatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = WeeklyPayoutBatch
        fields = [
            'id',
            'detailer',
            'week_start_date',
            'week_end_date',
            'total_amount_cents',
            'total_transfers',
            'status',
            'stripe_transfer_id',
            'processed_at',
        ]
        read_only_fields = fields
