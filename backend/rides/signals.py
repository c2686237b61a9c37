"""Push configuration changes to the in-process caches."""

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from services.configuration import invalidate_distance_radius_cache
from .models import AppSetting


@receiver(post_save, sender=AppSetting)
@receiver(post_delete, sender=AppSetting)
def app_setting_changed(sender, instance, **kwargs):
    if instance.key == AppSetting.DISTANCE_RADIUS:
        invalidate_distance_radius_cache()
