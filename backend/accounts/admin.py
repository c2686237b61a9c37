from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User
from drivers.models import DriverProfile


class DriverProfileInline(admin.StackedInline):
    model = DriverProfile
    can_delete = False
    fields = ["vehicle_type", "plate_number"]


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Customers and riders; riders get their vehicle edited inline"""

    inlines = [DriverProfileInline]
    list_display = ["username", "role", "vehicle", "completed_rides", "is_active"]
    list_filter = ["role", "driver_profile__vehicle_type", "is_active"]
    list_select_related = ["driver_profile"]
    search_fields = ["username", "phone_number", "driver_profile__plate_number"]
    ordering = ("-completed_rides", "username")

    # Incremented when a ride completes
    readonly_fields = ["completed_rides"]

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Ride Info", {"fields": ("role", "phone_number", "completed_rides")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Ride Info", {"fields": ("role", "phone_number")}),
    )

    @admin.display(description="Vehicle", ordering="driver_profile__vehicle_type")
    def vehicle(self, obj):
        profile = getattr(obj, "driver_profile", None)
        return profile.get_vehicle_type_display() if profile else "-"

    def get_inlines(self, request, obj):
        # Only riders carry a vehicle profile
        if obj is None or not obj.is_rider:
            return []
        return super().get_inlines(request, obj)
