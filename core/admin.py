# core/admin.py

from django.contrib import admin, messages

from .models import (
    Booking,
    BookingTimelineEntry,
    CustomUser,
    Detailer,
    DetailerAvailability,
    DetailerNotificationPreferences,
    DetailerTransfer,
    NotificationLog,
    Organization,
    Payment,
    Service,
    AddOn,
    WeeklyPayoutBatch,
)
from .services.assignment import assign_detailer
from .services.payments import PaymentError, PaymentNotConfigured, refund_booking
from .services.payouts import retry_failed_transfers


class BookingTimelineInline(admin.TabularInline):
    model = BookingTimelineEntry
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'actor_role', 'note', 'created_at')
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        'receipt_id',
        'user',
        'detailer',
        'status',
        'payment_status',
        'scheduled_date',
        'total_amount',
    )
    list_filter = (
        'status',
        'payment_status',
        'scheduled_date',
    )
    search_fields = (
        'receipt_id',
        'user__username',
        'detailer__full_name',
        'stripe_payment_intent_id',
    )
    # Status is owned by the booking state machine
    readonly_fields = ('status', 'payment_status', 'detailer', 'receipt_id')
    inlines = [BookingTimelineInline]
    actions = ['run_auto_assignment', 'refund_selected_bookings']

    def run_auto_assignment(self, request, queryset):
        """
        Admin action: offer each selected paid, unassigned booking to the closest eligible detailer.
        """
        assigned = skipped = 0
        for booking in queryset.filter(status='paid', detailer__isnull=True):
            if assign_detailer(booking.id):
                assigned += 1
            else:
                skipped += 1
        self.message_user(
            request,
            f"Assigned {assigned} booking(s); {skipped} without an eligible detailer.",
        )

    run_auto_assignment.short_description = "Run auto-assignment"

    def refund_selected_bookings(self, request, queryset):
        refunded = 0
        for booking in queryset.filter(payment_status='paid'):
            try:
                refund_booking(booking.id, reason='Refunded from admin', admin=request.user)
            except (PaymentError, PaymentNotConfigured) as e:
                self.message_user(request, f"Booking {booking.receipt_id}: {e}", level=messages.ERROR)
                continue
            refunded += 1
        self.message_user(request, f"Refunded {refunded} booking(s) in full.")

    refund_selected_bookings.short_description = "Refund selected bookings"


@admin.register(DetailerTransfer)
class DetailerTransferAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'detailer',
        'booking',
        'amount_cents',
        'status',
        'retry_count',
        'weekly_payout_batch',
        'created_at',
    )
    list_filter = ('status',)
    search_fields = ('stripe_transfer_id', 'detailer__full_name', 'booking__receipt_id')
    actions = ['retry_selected_transfers']

    def retry_selected_transfers(self, request, queryset):
        ids = list(queryset.values_list('id', flat=True))
        stats = retry_failed_transfers(limit=len(ids) or 1, transfer_ids=ids)
        level = messages.WARNING if stats['errors'] else messages.SUCCESS
        self.message_user(
            request,
            f"Re-submitted {stats['retried']} transfer(s); {stats['exhausted']} exhausted; "
            f"{len(stats['errors'])} error(s).",
            level=level,
        )

    retry_selected_transfers.short_description = "Retry selected transfers"


@admin.register(WeeklyPayoutBatch)
class WeeklyPayoutBatchAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'detailer',
        'week_start_date',
        'week_end_date',
        'total_amount_cents',
        'total_transfers',
        'status',
    )
    list_filter = ('status', 'week_start_date')


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'booking', 'amount_cents', 'currency', 'status', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('stripe_payment_intent_id', 'stripe_charge_id')


class DetailerAvailabilityInline(admin.TabularInline):
    model = DetailerAvailability
    extra = 0


class DetailerNotificationPreferencesInline(admin.StackedInline):
    model = DetailerNotificationPreferences
    can_delete = False


@admin.register(Detailer)
class DetailerAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'full_name',
        'user',
        'organization',
        'is_active',
        'pricing_model',
        'service_radius_km',
    )
    list_filter = ('is_active', 'pricing_model')
    search_fields = ('full_name', 'user__username', 'stripe_connect_account_id')
    inlines = [DetailerAvailabilityInline, DetailerNotificationPreferencesInline]


@admin.register(CustomUser)
class CustomUserAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'username',
        'email',
        'phone_number',
        'role',
        'is_active',
        'is_staff',
    )
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('username', 'email', 'phone_number')


@admin.register(NotificationLog)
class NotificationLogAdmin(admin.ModelAdmin):
    list_display = ('id', 'detailer', 'notification_type', 'channel', 'status', 'created_at')
    list_filter = ('channel', 'status', 'notification_type')


admin.site.register(Organization)
admin.site.register(Service)
admin.site.register(AddOn)
