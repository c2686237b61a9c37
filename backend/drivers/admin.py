from django.contrib import admin
from drivers.models import DriverProfile


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Vehicle details for riders; on-duty state lives in memory, not here"""

    list_display = ["user", "vehicle_type", "plate_number"]
    list_filter = ["vehicle_type"]
    search_fields = ["user__username", "plate_number"]
    autocomplete_fields = ["user"]
    ordering = ("user__username",)
