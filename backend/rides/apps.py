"""Rides app configuration."""

from django.apps import AppConfig


class RidesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rides'

    def ready(self):
        # AppSetting changes invalidate the cached search radius
        from . import signals  # noqa: F401
