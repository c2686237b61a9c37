import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


VEHICLE_CHOICES = [('Single Motorcycle', 'Single Motorcycle'), ('Tricycle', 'Tricycle'), ('Cab', 'Cab')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='AppSetting',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(choices=[('DISTANCE_RADIUS', 'Rider search radius')], max_length=50, unique=True)),
                ('value', models.FloatField()),
                ('unit', models.CharField(blank=True, default='', max_length=10)),
                ('description', models.CharField(blank=True, default='', max_length=255)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'app_settings',
            },
        ),
        migrations.CreateModel(
            name='FareRate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('vehicle_type', models.CharField(choices=VEHICLE_CHOICES, max_length=20, unique=True)),
                ('minimum_rate', models.FloatField()),
                ('per_km_rate', models.FloatField()),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'fare_rates',
                'ordering': ['vehicle_type'],
            },
        ),
        migrations.CreateModel(
            name='Ride',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('vehicle', models.CharField(choices=VEHICLE_CHOICES, max_length=20)),
                ('pickup_address', models.TextField()),
                ('pickup_latitude', models.FloatField()),
                ('pickup_longitude', models.FloatField()),
                ('pickup_landmark', models.CharField(blank=True, default='', max_length=255)),
                ('drop_address', models.TextField()),
                ('drop_latitude', models.FloatField()),
                ('drop_longitude', models.FloatField()),
                ('drop_landmark', models.CharField(blank=True, default='', max_length=255)),
                ('passenger_count', models.PositiveSmallIntegerField(default=1)),
                ('distance', models.FloatField(help_text='Pickup to drop distance in km')),
                ('fare', models.FloatField()),
                ('status', models.CharField(choices=[('SEARCHING_FOR_RIDER', 'Searching for rider'), ('START', 'Rider en route'), ('ARRIVED', 'Rider arrived'), ('COMPLETED', 'Completed'), ('CANCELLED', 'Cancelled'), ('TIMEOUT', 'Timed out')], db_index=True, default='SEARCHING_FOR_RIDER', max_length=20)),
                ('otp', models.CharField(max_length=4)),
                ('cancelled_by', models.CharField(blank=True, choices=[('customer', 'Customer'), ('rider', 'Rider'), ('system', 'System')], max_length=10, null=True)),
                ('cancelled_by_name', models.CharField(blank=True, max_length=150, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, null=True)),
                ('payment_method', models.CharField(blank=True, choices=[('CASH', 'Cash'), ('GCASH', 'GCash')], max_length=10, null=True)),
                ('payment_confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('blacklisted_riders', models.ManyToManyField(blank=True, related_name='blacklisted_rides', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='customer_rides', to=settings.AUTH_USER_MODEL)),
                ('rider', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='rider_rides', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'rides',
                'ordering': ['-created_at'],
            },
        ),
    ]
