from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Customer APIs
    path('', views.create_ride, name='create-ride'),
    path('fares/', views.fare_estimate, name='fare-estimate'),
    path('<int:ride_id>/payment/', views.set_payment_method, name='payment-method'),

    # Shared
    path('mine/', views.my_rides, name='my-rides'),
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),

    # Rider Ride Actions
    path('searching/', views.searching_rides, name='searching-rides'),
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/status/', views.update_ride_status, name='update-ride-status'),
]
