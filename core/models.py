# core/models.py

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.utils import timezone

# --- BOOKING LIFECYCLE CONSTANTS ---

# Statuses in which a booking must have a detailer attached
DETAILER_REQUIRED_STATUSES = ('offered', 'accepted', 'in_progress', 'completed')

TERMINAL_STATUSES = ('completed', 'cancelled', 'no_show')

# Upper bound on automatic transfer failures before manual intervention
MAX_TRANSFER_RETRIES = 3


def generate_receipt_id():
    return f"CS-{uuid.uuid4().hex[:8].upper()}"


# Custom user model (extends AbstractUser)
class CustomUser(AbstractUser):
    ROLE_CHOICES = (
        ('customer', 'Customer'),
        ('detailer', 'Detailer'),
        ('admin', 'Admin'),
    )
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='customer')
    phone_number = models.CharField(max_length=20, blank=True, null=True)

    def __str__(self):
        return self.username


# Multi-detailer business
class Organization(models.Model):
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


# Service provider profile (linked to a user)
class Detailer(models.Model):
    PRICING_MODEL_CHOICES = (
        ('percentage', 'Percentage of booking'),
        ('subscription', 'Monthly subscription'),
    )

    user = models.OneToOneField(
        CustomUser,
        on_delete=models.CASCADE,
        related_name='detailer_profile',
    )
    full_name = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    organization = models.ForeignKey(
        Organization,
        on_delete=models.SET_NULL,
        related_name='members',
        null=True,
        blank=True,
    )
    is_active = models.BooleanField(default=False)

    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    service_radius_km = models.DecimalField(max_digits=6, decimal_places=2, default=25)

    pricing_model = models.CharField(
        max_length=20,
        choices=PRICING_MODEL_CHOICES,
        default='percentage',
    )
    stripe_connect_account_id = models.CharField(max_length=255, blank=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True)
    # Set/cleared by Stripe subscription lifecycle webhooks
    stripe_subscription_id = models.CharField(max_length=255, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.full_name or self.user.username} (Detailer)"

    @property
    def is_solo(self) -> bool:
        return self.organization_id is None


class DetailerAvailability(models.Model):
    WEEKDAY_CHOICES = (
        (0, 'Monday'),
        (1, 'Tuesday'),
        (2, 'Wednesday'),
        (3, 'Thursday'),
        (4, 'Friday'),
        (5, 'Saturday'),
        (6, 'Sunday'),
    )

    detailer = models.ForeignKey(
        Detailer,
        on_delete=models.CASCADE,
        related_name='availability',
    )
    weekday = models.PositiveSmallIntegerField(choices=WEEKDAY_CHOICES)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        ordering = ['weekday', 'start_time']

    def __str__(self):
        return f"{self.detailer} {self.get_weekday_display()} {self.start_time}-{self.end_time}"

    def covers(self, start, end) -> bool:
        return self.start_time <= start and end <= self.end_time


# Per-event, per-channel opt-ins for detailer notifications
class DetailerNotificationPreferences(models.Model):
    detailer = models.OneToOneField(
        Detailer,
        on_delete=models.CASCADE,
        related_name='notification_preferences',
    )
    sms_enabled = models.BooleanField(default=True)
    email_enabled = models.BooleanField(default=True)

    new_booking_sms = models.BooleanField(default=True)
    new_booking_email = models.BooleanField(default=True)
    booking_cancelled_sms = models.BooleanField(default=True)
    booking_cancelled_email = models.BooleanField(default=True)
    booking_reminder_sms = models.BooleanField(default=True)
    booking_reminder_email = models.BooleanField(default=True)
    payout_sms = models.BooleanField(default=False)
    payout_email = models.BooleanField(default=True)

    def __str__(self):
        return f"Notification preferences for {self.detailer}"

    def allows(self, notification_type: str, channel: str) -> bool:
        """
        Global channel toggle first, then the per-event flag.
        Unknown event types are allowed when the channel is on.
        """
        if not getattr(self, f"{channel}_enabled"):
            return False
        prefix = 'payout' if notification_type == 'payout_processed' else notification_type
        return getattr(self, f"{prefix}_{channel}", True)


class Service(models.Model):
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    duration_minutes = models.PositiveIntegerField(default=60)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class AddOn(models.Model):
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)

    def __str__(self):
        return self.name


class Vehicle(models.Model):
    user = models.ForeignKey(
        CustomUser,
        on_delete=models.CASCADE,
        related_name='vehicles',
    )
    make = models.CharField(max_length=100)
    model = models.CharField(max_length=100)
    year = models.PositiveIntegerField(null=True, blank=True)
    license_plate = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return f"{self.year or ''} {self.make} {self.model}".strip()


class Booking(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),                    # created at checkout
        ('requires_payment', 'Requires payment'),  # payment intent created
        ('paid', 'Paid'),                          # paid, waiting for a detailer
        ('offered', 'Offered'),                    # offered to a detailer
        ('accepted', 'Accepted'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('no_show', 'No show'),
    )

    PAYMENT_STATUS_CHOICES = (
        ('unpaid', 'Unpaid'),
        ('requires_payment', 'Requires payment'),
        ('processing', 'Processing'),
        ('paid', 'Paid'),
        ('refunded', 'Refunded'),
        ('failed', 'Failed'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    receipt_id = models.CharField(max_length=20, unique=True, default=generate_receipt_id, editable=False)

    user = models.ForeignKey(
        CustomUser,
        on_delete=models.CASCADE,
        related_name='bookings',
    )

    # Null until auto-assignment (or an admin) picks a detailer
    detailer = models.ForeignKey(
        Detailer,
        on_delete=models.SET_NULL,
        related_name='bookings',
        null=True,
        blank=True,
    )
    organization = models.ForeignKey(
        Organization,
        on_delete=models.SET_NULL,
        related_name='bookings',
        null=True,
        blank=True,
    )
    service = models.ForeignKey(
        Service,
        on_delete=models.PROTECT,
        related_name='bookings',
    )
    addons = models.ManyToManyField(AddOn, blank=True, related_name='bookings')
    vehicle = models.ForeignKey(
        Vehicle,
        on_delete=models.SET_NULL,
        related_name='bookings',
        null=True,
        blank=True,
    )

    scheduled_date = models.DateField()
    scheduled_time_start = models.TimeField()
    scheduled_time_end = models.TimeField()

    address_line1 = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default='unpaid',
    )

    # Major units; Stripe amounts (minor units) live on Payment/DetailerTransfer
    service_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    addons_total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    stripe_payment_intent_id = models.CharField(max_length=255, blank=True)

    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(detailer__isnull=False) | ~Q(status__in=DETAILER_REQUIRED_STATUSES),
                name='booking_detailer_required_once_offered',
            ),
        ]

    def __str__(self):
        detailer_name = str(self.detailer) if self.detailer_id else 'unassigned'
        return f"Booking {self.receipt_id} [{self.status}] ({detailer_name})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BookingTimelineEntry(models.Model):
    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name='timeline',
    )
    from_status = models.CharField(max_length=20)
    to_status = models.CharField(max_length=20)
    actor_role = models.CharField(max_length=20)
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.booking_id}: {self.from_status} -> {self.to_status} by {self.actor_role}"


# One payment per booking; upserted by the Stripe webhook
class Payment(models.Model):
    STATUS_CHOICES = (
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    )

    booking = models.OneToOneField(
        Booking,
        on_delete=models.CASCADE,
        related_name='payment',
    )
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=3, default='USD')
    amount_refunded_cents = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True)
    stripe_charge_id = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Payment {self.amount_cents} {self.currency} [{self.status}] for {self.booking_id}"


class WeeklyPayoutBatch(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
    )

    detailer = models.ForeignKey(
        Detailer,
        on_delete=models.CASCADE,
        related_name='payout_batches',
    )
    week_start_date = models.DateField()
    week_end_date = models.DateField()
    total_amount_cents = models.PositiveIntegerField(default=0)
    total_transfers = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    stripe_transfer_id = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-week_start_date']

    def __str__(self):
        return f"Batch #{self.id} {self.week_start_date}..{self.week_end_date} [{self.status}]"


# Payout ledger entry: what a detailer is owed for one completed booking
class DetailerTransfer(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('succeeded', 'Succeeded'),
        ('failed', 'Failed'),
        ('retry_pending', 'Retry pending'),
    )

    booking = models.OneToOneField(
        Booking,
        on_delete=models.CASCADE,
        related_name='transfer',
    )
    detailer = models.ForeignKey(
        Detailer,
        on_delete=models.CASCADE,
        related_name='transfers',
    )
    amount_cents = models.PositiveIntegerField()
    platform_fee_cents = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    retry_count = models.PositiveSmallIntegerField(default=0)
    error_message = models.TextField(blank=True)
    stripe_transfer_id = models.CharField(max_length=255, blank=True, db_index=True)
    weekly_payout_batch = models.ForeignKey(
        WeeklyPayoutBatch,
        on_delete=models.SET_NULL,
        related_name='transfers',
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Transfer #{self.id} {self.amount_cents}c [{self.status}] for {self.booking_id}"

    @property
    def display_status(self) -> str:
        if self.status == 'pending' and self.weekly_payout_batch_id is None:
            return "Awaiting next weekly batch"
        if self.status == 'failed' and self.retry_count >= MAX_TRANSFER_RETRIES:
            return "Failed - needs manual review"
        return self.get_status_display()


class NotificationLog(models.Model):
    CHANNEL_CHOICES = (
        ('sms', 'SMS'),
        ('email', 'Email'),
    )
    STATUS_CHOICES = (
        ('sent', 'Sent'),
        ('failed', 'Failed'),
    )

    detailer = models.ForeignKey(
        Detailer,
        on_delete=models.CASCADE,
        related_name='notification_logs',
    )
    notification_type = models.CharField(max_length=50)
    channel = models.CharField(max_length=10, choices=CHANNEL_CHOICES)
    recipient = models.CharField(max_length=255)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES)
    provider_id = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.notification_type} via {self.channel} to {self.recipient} [{self.status}]"
