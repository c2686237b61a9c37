from django.db import models
from django.conf import settings


# Vehicle types
VEHICLE_MOTORCYCLE = 'Single Motorcycle'
VEHICLE_TRICYCLE = 'Tricycle'
VEHICLE_CAB = 'Cab'

VEHICLE_CHOICES = [
    (VEHICLE_MOTORCYCLE, 'Single Motorcycle'),
    (VEHICLE_TRICYCLE, 'Tricycle'),
    (VEHICLE_CAB, 'Cab'),
]

VEHICLE_TYPES = [value for value, _ in VEHICLE_CHOICES]

# Ride statuses
STATUS_SEARCHING = 'SEARCHING_FOR_RIDER'
STATUS_START = 'START'
STATUS_ARRIVED = 'ARRIVED'
STATUS_COMPLETED = 'COMPLETED'
STATUS_CANCELLED = 'CANCELLED'
STATUS_TIMEOUT = 'TIMEOUT'

# Payment methods
PAYMENT_CASH = 'CASH'
PAYMENT_GCASH = 'GCASH'

PAYMENT_CHOICES = [
    (PAYMENT_CASH, 'Cash'),
    (PAYMENT_GCASH, 'GCash'),
]


class Ride(models.Model):
    """A customer's ride request and its lifecycle from search to a terminal state."""

    STATUS_CHOICES = [
        (STATUS_SEARCHING, 'Searching for rider'),
        (STATUS_START, 'Rider en route'),
        (STATUS_ARRIVED, 'Rider arrived'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_TIMEOUT, 'Timed out'),
    ]

    CANCELLED_BY_CHOICES = [
        ('customer', 'Customer'),
        ('rider', 'Rider'),
        ('system', 'System'),
    ]

    # Foreign keys
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='customer_rides'
    )

    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rider_rides'
    )

    vehicle = models.CharField(max_length=20, choices=VEHICLE_CHOICES)

    # Pickup location
    pickup_address = models.TextField()
    pickup_latitude = models.FloatField()
    pickup_longitude = models.FloatField()
    pickup_landmark = models.CharField(max_length=255, blank=True, default='')

    # Drop location
    drop_address = models.TextField()
    drop_latitude = models.FloatField()
    drop_longitude = models.FloatField()
    drop_landmark = models.CharField(max_length=255, blank=True, default='')

    passenger_count = models.PositiveSmallIntegerField(default=1)

    # Computed once at creation
    distance = models.FloatField(help_text="Pickup to drop distance in km")
    fare = models.FloatField()

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SEARCHING, db_index=True)
    otp = models.CharField(max_length=4)

    # Drivers who declined or cancelled this ride; never offered it again
    blacklisted_riders = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name='blacklisted_rides'
    )

    # Cancellation
    cancelled_by = models.CharField(max_length=10, choices=CANCELLED_BY_CHOICES, null=True, blank=True)
    cancelled_by_name = models.CharField(max_length=150, null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    # Payment (only after completion)
    payment_method = models.CharField(max_length=10, choices=PAYMENT_CHOICES, null=True, blank=True)
    payment_confirmed_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-created_at']

    def __str__(self):
        return f"Ride #{self.id} - {self.customer} - {self.status}"


class FareRate(models.Model):
    """Per-vehicle fare configuration; missing rows fall back to DEFAULT_FARE_RATES."""

    vehicle_type = models.CharField(max_length=20, choices=VEHICLE_CHOICES, unique=True)
    minimum_rate = models.FloatField()
    per_km_rate = models.FloatField()
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'fare_rates'
        ordering = ['vehicle_type']

    def __str__(self):
        return f"{self.vehicle_type}: min {self.minimum_rate}, {self.per_km_rate}/km"


class AppSetting(models.Model):
    """Numeric runtime settings editable from the admin (e.g. DISTANCE_RADIUS in km)."""

    DISTANCE_RADIUS = 'DISTANCE_RADIUS'

    KEY_CHOICES = [
        (DISTANCE_RADIUS, 'Rider search radius'),
    ]

    key = models.CharField(max_length=50, choices=KEY_CHOICES, unique=True)
    value = models.FloatField()
    unit = models.CharField(max_length=10, blank=True, default='')
    description = models.CharField(max_length=255, blank=True, default='')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'app_settings'

    def __str__(self):
        return f"{self.key} = {self.value}{self.unit}"
