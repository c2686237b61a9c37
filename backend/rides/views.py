"""
HTTP fallback for ride operations.

The same lifecycle functions back the WebSocket consumers; these endpoints
let clients that are momentarily offline (or scripts) act on rides. Events
are published over the channel layer exactly as they are for socket calls.
"""

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.utils.geo import distance_km
from realtime.broadcast import publish_events
from services.dispatch import get_dispatch_manager
from services.pricing import compute_fares
from services.ride_management import (
    RideError,
    RideResult,
    accept_ride as accept_ride_service,
    cancel_ride as cancel_ride_service,
    create_ride as create_ride_service,
    get_ride,
    is_ride_participant,
    list_searching_rides,
    list_user_rides,
    serialize_ride,
    set_payment_method as set_payment_method_service,
    update_ride_status as update_ride_status_service,
)
from .serializers import (
    FareEstimateSerializer,
    PaymentMethodSerializer,
    RideCancelSerializer,
    RideSerializer,
    RideStatusSerializer,
)

logger = logging.getLogger(__name__)


def _error_response(exc: RideError) -> Response:
    return Response({'success': False, **exc.as_dict()}, status=exc.http_status)


def _apply_result(result: RideResult):
    """Publish events and start/stop the dispatch loop after a successful operation."""
    manager = get_dispatch_manager()
    if result.ride is not None:
        if result.stop_dispatch:
            manager.stop(result.ride.id, result.stop_dispatch)
        if result.start_dispatch:
            manager.start(result.ride.id)
    publish_events(result.events)


def _result_response(request, result: RideResult, http_status=status.HTTP_200_OK, **extra) -> Response:
    ride_data = serialize_ride(result.ride, include_otp=result.ride.customer_id == request.user.id)
    return Response({
        'success': True,
        'message': result.message,
        'changed': result.changed,
        'ride': ride_data,
        **extra,
    }, status=http_status)


# ==================== Customer Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_ride(request):
    """Create a ride request and start searching for riders"""
    try:
        result = create_ride_service(request.user, request.data)
    except RideError as e:
        return _error_response(e)

    _apply_result(result)
    return _result_response(
        request, result,
        http_status=status.HTTP_201_CREATED,
        fares=(result.extra or {}).get('fares', {}),
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def fare_estimate(request):
    """Fares for every vehicle type between two points (no ride is created)"""
    serializer = FareEstimateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    pickup = serializer.validated_data['pickup']
    drop = serializer.validated_data['drop']
    distance = distance_km(pickup['latitude'], pickup['longitude'], drop['latitude'], drop['longitude'])
    return Response({
        'distance': distance,
        'fares': compute_fares(distance),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def set_payment_method(request, ride_id):
    """Choose CASH or GCASH for a completed ride"""
    serializer = PaymentMethodSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = set_payment_method_service(request.user, ride_id, serializer.validated_data['payment_method'])
    except RideError as e:
        return _error_response(e)

    _apply_result(result)
    return _result_response(request, result)


# ==================== Shared Ride APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_rides(request):
    """Rides where the user is the customer or the rider (optional ?status=)"""
    rides = list_user_rides(request.user, status=request.query_params.get('status'))
    data = [
        RideSerializer(ride, context={'include_otp': ride.customer_id == request.user.id}).data
        for ride in rides
    ]
    return Response({'count': len(data), 'rides': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    try:
        ride = get_ride(ride_id)
    except RideError as e:
        return _error_response(e)

    if not is_ride_participant(request.user, ride.id):
        return Response(
            {'success': False, 'error': 'not_ride_participant', 'message': 'You are not part of this ride'},
            status=status.HTTP_403_FORBIDDEN
        )
    return Response(serialize_ride(ride, include_otp=ride.customer_id == request.user.id))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    """
    Cancel ride by customer or rider

    A rider cancelling a ride that is still searching declines the offer:
    the ride stays open for other riders.
    """
    serializer = RideCancelSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = cancel_ride_service(request.user, ride_id, serializer.validated_data.get('reason'))
    except RideError as e:
        return _error_response(e)

    _apply_result(result)
    return _result_response(request, result, **(result.extra or {}))


# ==================== Rider Ride APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def searching_rides(request):
    """Rides still looking for a rider, without the ones this rider declined"""
    if not request.user.is_rider:
        return Response(
            {'error': 'Only riders can list searching rides'},
            status=status.HTTP_403_FORBIDDEN
        )
    rides = list_searching_rides(exclude_rider_id=request.user.id)
    return Response({'count': len(rides), 'rides': RideSerializer(rides, many=True).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_ride(request, ride_id):
    """Accept a searching ride (rider must be on duty over the WebSocket)"""
    try:
        result = accept_ride_service(request.user, ride_id)
    except RideError as e:
        return _error_response(e)

    _apply_result(result)
    return _result_response(request, result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_ride_status(request, ride_id):
    """Advance an assigned ride: START -> ARRIVED -> COMPLETED"""
    serializer = RideStatusSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = update_ride_status_service(ride_id, serializer.validated_data['status'], actor=request.user)
    except RideError as e:
        return _error_response(e)

    _apply_result(result)
    return _result_response(request, result)
