# core/urls.py

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views
from .webhooks import stripe_webhook

router = DefaultRouter()
router.register(r'bookings', views.BookingViewSet, basename='bookings')
router.register(r'transfers', views.DetailerTransferViewSet, basename='transfers')
router.register(r'payout_batches', views.WeeklyPayoutBatchViewSet, basename='payout_batches')

urlpatterns = [
    path('', include(router.urls)),

    # Stripe
    path('webhooks/stripe/', stripe_webhook, name='stripe_webhook'),
]
