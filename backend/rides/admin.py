"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, FareRate, AppSetting


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin"""
    list_display = ['id', 'customer', 'rider', 'vehicle', 'status', 'fare', 'created_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'vehicle', 'created_at']
    search_fields = ['customer__username', 'rider__username', 'pickup_address', 'drop_address']
    readonly_fields = ['distance', 'fare', 'otp', 'created_at', 'updated_at', 'accepted_at', 'completed_at', 'cancelled_at']
    filter_horizontal = ['blacklisted_riders']
    date_hierarchy = 'created_at'


@admin.register(FareRate)
class FareRateAdmin(admin.ModelAdmin):
    list_display = ("vehicle_type", "minimum_rate", "per_km_rate", "updated_at")


@admin.register(AppSetting)
class AppSettingAdmin(admin.ModelAdmin):
    list_display = ("key", "value", "unit", "description", "updated_at")
    search_fields = ("key",)
