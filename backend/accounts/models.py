from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_CUSTOMER = 'customer'
    ROLE_RIDER = 'rider'

    ROLE_CHOICES = [
        (ROLE_CUSTOMER, 'Customer'),
        (ROLE_RIDER, 'Rider'),
    ]
    
    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    phone_number = models.CharField(max_length=15, blank=True)
    completed_rides = models.IntegerField(default=0)
    
    class Meta:
        db_table = 'users'

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    @property
    def is_rider(self) -> bool:
        return self.role == self.ROLE_RIDER

    @property
    def is_customer(self) -> bool:
        return self.role == self.ROLE_CUSTOMER
        
    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
