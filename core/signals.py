# core/signals.py


from django.db.models.signals import post_save
from django.dispatch import receiver
from .models import CustomUser, Detailer, DetailerNotificationPreferences

@receiver(post_save, sender=CustomUser)
def ensure_detailer_profile(sender, instance: CustomUser, created, **kwargs):
    if instance.role == "detailer":
        Detailer.objects.get_or_create(
            user=instance,
            defaults={
                "full_name": instance.get_full_name(),
                "phone": instance.phone_number or "",
                "is_active": False,
            },
        )


@receiver(post_save, sender=Detailer)
def ensure_notification_preferences(sender, instance: Detailer, created, **kwargs):
    if created:
        DetailerNotificationPreferences.objects.get_or_create(detailer=instance)
