from django.db import models
from django.conf import settings

from rides.models import VEHICLE_CHOICES

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Rider vehicle details. Availability lives in the in-memory on-duty registry."""
    
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')
    
    # Vehicle details
    vehicle_type = models.CharField(max_length=20, choices=VEHICLE_CHOICES)
    plate_number = models.CharField(max_length=20, unique=True)
    
    class Meta:
        db_table = 'driver_profiles'
        
    def __str__(self):
        return f"{self.user.username} - {self.vehicle_type} ({self.plate_number})"
