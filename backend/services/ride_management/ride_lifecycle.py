"""
Core ride lifecycle operations.

Every transition re-checks the ride's status in the same UPDATE that writes
it (`filter(status=expected).update(...)`), so concurrent accept/cancel/
timeout paths resolve without locks: the loser sees zero rows updated.

Operations never talk to the channel layer themselves. They return a
RideResult listing the events to publish and whether the ride's dispatch
loop must start or stop; the caller applies it once the transaction has
committed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, FrozenSet

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from common.utils.geo import calculate_distance, distance_km
from common.utils.otp import generate_otp
from rides.models import (
    Ride,
    PAYMENT_CHOICES,
    STATUS_SEARCHING,
    STATUS_START,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_TIMEOUT,
)
from rides.serializers import RideSerializer, RideCreateSerializer
from services import events
from services.configuration import DistanceRadiusProvider, get_distance_radius_provider
from services.events import OutboundEvent
from services.matching.registry import OnDutyRegistry, get_on_duty_registry
from services.pricing import compute_fares
from .exceptions import (
    InvalidRideRequestError,
    RideNotFoundError,
    NotRideParticipantError,
    RideNotAvailableError,
    RideAlreadyCompletedError,
    VehicleMismatchError,
    DriverTooFarError,
    DriverNotAvailableError,
    LocationSyncRequiredError,
)
from .state_machine import CANCELLABLE_STATUSES, UPDATABLE_STATUSES, can_transition

User = get_user_model()
logger = logging.getLogger(__name__)

NOT_AVAILABLE_MESSAGE = "Ride is no longer available for assignment"
STATUS_CHANGED_MESSAGE = "Ride status changed, please refresh and try again"

# Dispatch stop reasons
STOP_ACCEPTED = "accepted"
STOP_CANCELLED = "cancelled"
STOP_COMPLETED = "completed"
STOP_TIMEOUT = "timeout"


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[Ride] = None
    message: str = ""
    changed: bool = True
    events: List[OutboundEvent] = field(default_factory=list)
    start_dispatch: bool = False
    stop_dispatch: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RideSnapshot:
    """The fields the dispatch loop re-reads on every tick."""
    ride_id: int
    status: str
    vehicle: str
    pickup_latitude: float
    pickup_longitude: float
    blacklisted_rider_ids: FrozenSet[int] = frozenset()


# ===================== Queries =====================

def serialize_ride(ride: Ride, include_otp: bool = False) -> Dict[str, Any]:
    """Plain-dict ride payload safe to put on the channel layer."""
    data = RideSerializer(ride, context={'include_otp': include_otp}).data
    return dict(data)


def get_ride(ride_id) -> Ride:
    """Fetch a ride or raise RideNotFoundError / InvalidRideRequestError."""
    try:
        ride_pk = int(ride_id)
    except (TypeError, ValueError, OverflowError):
        raise InvalidRideRequestError("Invalid ride id", details={"ride_id": ride_id})

    ride = (
        Ride.objects
        .select_related('customer', 'rider__driver_profile')
        .filter(pk=ride_pk)
        .first()
    )
    if ride is None:
        raise RideNotFoundError("Ride not found", details={"ride_id": ride_pk})
    return ride


def get_ride_snapshot(ride_id: int) -> Optional[RideSnapshot]:
    ride = Ride.objects.filter(pk=ride_id).only(
        'id', 'status', 'vehicle', 'pickup_latitude', 'pickup_longitude'
    ).first()
    if ride is None:
        return None
    return RideSnapshot(
        ride_id=ride.id,
        status=ride.status,
        vehicle=ride.vehicle,
        pickup_latitude=ride.pickup_latitude,
        pickup_longitude=ride.pickup_longitude,
        blacklisted_rider_ids=frozenset(ride.blacklisted_riders.values_list('id', flat=True)),
    )


def list_searching_rides(exclude_rider_id: Optional[int] = None) -> List[Ride]:
    """All rides still looking for a rider, minus the ones `exclude_rider_id` declined."""
    rides = Ride.objects.filter(status=STATUS_SEARCHING).select_related('customer')
    if exclude_rider_id is not None:
        rides = rides.exclude(blacklisted_riders__id=exclude_rider_id)
    return list(rides.order_by('created_at'))


def list_user_rides(user, status: Optional[str] = None) -> List[Ride]:
    """Rides where the user is the customer or the assigned rider."""
    rides = Ride.objects.filter(Q(customer=user) | Q(rider=user)).select_related(
        'customer', 'rider__driver_profile'
    )
    if status:
        rides = rides.filter(status=status)
    return list(rides)


def get_active_ride_ids(user) -> List[int]:
    """Ids of the user's rides that have not reached a terminal state."""
    return list(
        Ride.objects.filter(
            Q(customer=user) | Q(rider=user),
            status__in=CANCELLABLE_STATUSES,
        ).values_list('id', flat=True)
    )


def is_ride_participant(user, ride_id) -> bool:
    return Ride.objects.filter(Q(customer=user) | Q(rider=user), pk=ride_id).exists()


def _rider_vehicle_type(rider) -> Optional[str]:
    profile = getattr(rider, 'driver_profile', None)
    return getattr(profile, 'vehicle_type', None)


# ===================== Customer Operations =====================

@transaction.atomic
def create_ride(customer, data: Dict[str, Any]) -> RideResult:
    """
    Create a ride and announce it to every on-duty rider.

    Args:
        customer: User model instance (customer)
        data: vehicle, pickup {address, latitude, longitude, landmark},
              drop {...}, passenger_count

    Returns:
        RideResult with the created ride; start_dispatch is set

    Raises:
        NotRideParticipantError: If the user is not a customer
        InvalidRideRequestError: If the request fails validation
    """
    if not customer.is_customer:
        raise NotRideParticipantError("Only customers can request rides")

    serializer = RideCreateSerializer(data=data)
    if not serializer.is_valid():
        raise InvalidRideRequestError("Invalid ride request", details={"errors": serializer.errors})

    validated = serializer.validated_data
    pickup = validated['pickup']
    drop = validated['drop']
    vehicle = validated['vehicle']

    distance = distance_km(pickup['latitude'], pickup['longitude'], drop['latitude'], drop['longitude'])
    fares = compute_fares(distance)

    ride = Ride.objects.create(
        customer=customer,
        vehicle=vehicle,
        pickup_address=pickup['address'],
        pickup_latitude=pickup['latitude'],
        pickup_longitude=pickup['longitude'],
        pickup_landmark=pickup.get('landmark', ''),
        drop_address=drop['address'],
        drop_latitude=drop['latitude'],
        drop_longitude=drop['longitude'],
        drop_landmark=drop.get('landmark', ''),
        passenger_count=validated['passenger_count'],
        distance=distance,
        fare=fares[vehicle],
        otp=generate_otp(),
        status=STATUS_SEARCHING,
    )
    logger.info("Ride %s created by customer %s (%s, %.2fkm, fare %.2f)",
                ride.id, customer.id, vehicle, distance, ride.fare)

    # Sent to all vehicle types; rider apps filter locally
    offer = events.to_on_duty(events.NEW_RIDE_OFFER, {"ride": serialize_ride(ride)})

    return RideResult(
        success=True,
        ride=ride,
        message="Ride requested. Searching for nearby riders...",
        events=[offer],
        start_dispatch=True,
        extra={"fares": fares},
    )


@transaction.atomic
def set_payment_method(customer, ride_id, payment_method: str) -> RideResult:
    """Record how a completed ride is paid and tell the rider."""
    if payment_method not in dict(PAYMENT_CHOICES):
        raise InvalidRideRequestError(
            "Invalid payment method",
            details={"allowed": [value for value, _ in PAYMENT_CHOICES]},
        )

    ride = get_ride(ride_id)
    if ride.customer_id != customer.id:
        raise NotRideParticipantError("Only the customer can select the payment method")
    if ride.status != STATUS_COMPLETED:
        raise RideNotAvailableError(
            "Payment method can only be selected after the ride is completed",
            details={"ride_id": ride.id, "status": ride.status},
        )

    ride.payment_method = payment_method
    ride.payment_confirmed_at = timezone.now()
    ride.save(update_fields=['payment_method', 'payment_confirmed_at', 'updated_at'])

    result_events = [events.to_ride(events.RIDE_UPDATED, ride.id, {"ride": serialize_ride(ride)})]
    if ride.rider_id:
        result_events.append(events.to_user(events.PAYMENT_METHOD_SELECTED, ride.rider_id, {
            "ride_id": ride.id,
            "payment_method": payment_method,
            "customer_name": customer.display_name,
            "fare": ride.fare,
        }))

    return RideResult(success=True, ride=ride, message="Payment method saved", events=result_events)


# ===================== Rider Operations =====================

@transaction.atomic
def accept_ride(
    rider,
    ride_id,
    registry: Optional[OnDutyRegistry] = None,
    radius_provider: Optional[DistanceRadiusProvider] = None,
) -> RideResult:
    """
    Assign a searching ride to the rider.

    Args:
        rider: User model instance (rider)
        ride_id: ID of the ride to accept
        registry: On-duty registry holding the rider's live location
        radius_provider: Source of the maximum pickup distance

    Returns:
        RideResult with the accepted ride; stop_dispatch is set

    Raises:
        RideNotAvailableError: Ride is no longer searching (or the rider declined it)
        VehicleMismatchError: Rider's vehicle differs from the requested one
        LocationSyncRequiredError: Rider is on duty but has no presence record
        DriverNotAvailableError: Rider is not on duty
        DriverTooFarError: Rider is outside the search radius of the pickup
    """
    if registry is None:
        registry = get_on_duty_registry()
    if radius_provider is None:
        radius_provider = get_distance_radius_provider()

    if not rider.is_rider:
        raise NotRideParticipantError("Only riders can accept rides")

    ride = get_ride(ride_id)

    if ride.status != STATUS_SEARCHING:
        raise RideNotAvailableError(NOT_AVAILABLE_MESSAGE, details={"ride_id": ride.id, "status": ride.status})

    if ride.blacklisted_riders.filter(pk=rider.pk).exists():
        raise RideNotAvailableError(
            "You have declined this ride and can no longer accept it",
            details={"ride_id": ride.id},
        )

    presence = registry.get(rider.id)
    vehicle_type = _rider_vehicle_type(rider) or (presence.vehicle_type if presence else None)
    if vehicle_type != ride.vehicle:
        raise VehicleMismatchError(
            f"This ride requires a {ride.vehicle}. Your vehicle type is {vehicle_type}. "
            f"Please accept rides that match your vehicle type.",
            details={"ride_id": ride.id, "required_vehicle": ride.vehicle, "your_vehicle": vehicle_type},
        )

    if presence is None:
        if registry.is_group_member(rider.id):
            raise LocationSyncRequiredError(
                "Your location data needs to sync. Please wait a moment and try again, "
                "or toggle your duty status off and on.",
                details={"ride_id": ride.id},
            )
        raise DriverNotAvailableError(
            "You must be on duty with a valid location to accept rides. Please go on duty first.",
            details={"ride_id": ride.id},
        )

    distance = calculate_distance(
        presence.coords.latitude, presence.coords.longitude,
        ride.pickup_latitude, ride.pickup_longitude,
    )
    max_distance = radius_provider.get_meters()
    if distance > max_distance:
        raise DriverTooFarError(
            f"You are too far from the pickup location ({distance / 1000:.2f}km away). "
            f"Maximum allowed distance is {max_distance / 1000:.2f}km. "
            f"Please move closer to accept this ride.",
            details={
                "ride_id": ride.id,
                "distance_km": round(distance / 1000, 2),
                "max_distance_km": round(max_distance / 1000, 2),
            },
        )

    now = timezone.now()
    updated = Ride.objects.filter(
        pk=ride.pk, status=STATUS_SEARCHING, rider__isnull=True,
    ).update(rider=rider, status=STATUS_START, accepted_at=now, updated_at=now)
    if not updated:
        raise RideNotAvailableError(NOT_AVAILABLE_MESSAGE, details={"ride_id": ride.id})

    ride = get_ride(ride.id)
    logger.info("Ride %s accepted by rider %s (%.0fm from pickup)", ride.id, rider.id, distance)

    payload = serialize_ride(ride)
    return RideResult(
        success=True,
        ride=ride,
        message="Ride accepted. Navigate to the pickup location.",
        events=[
            events.to_ride(events.RIDE_ACCEPTED, ride.id, {"ride": payload}),
            events.to_ride(events.RIDE_UPDATED, ride.id, {"ride": payload}),
            # Lets every other rider drop the offer
            events.to_on_duty(events.RIDE_ACCEPTED, {"ride_id": ride.id, "rider_id": rider.id}),
        ],
        stop_dispatch=STOP_ACCEPTED,
    )


@transaction.atomic
def update_ride_status(ride_id, status: str, actor=None) -> RideResult:
    """
    Move an assigned ride forward (START -> ARRIVED -> COMPLETED).

    A ride that is already COMPLETED is left untouched and reported as a
    success. Passing `actor` restricts the update to the assigned rider.
    """
    if status not in UPDATABLE_STATUSES:
        raise InvalidRideRequestError(
            f"Invalid status {status!r}",
            details={"allowed": list(UPDATABLE_STATUSES)},
        )

    ride = get_ride(ride_id)

    if ride.status == STATUS_COMPLETED:
        return RideResult(success=True, ride=ride, message="Ride is already completed", changed=False)

    if actor is not None and ride.rider_id != actor.id:
        raise NotRideParticipantError("Only the assigned rider can update this ride")

    if ride.rider_id is None:
        raise RideNotAvailableError("Ride has no assigned rider", details={"ride_id": ride.id, "status": ride.status})

    if ride.status == status:
        return RideResult(success=True, ride=ride, message=f"Ride is already {status}", changed=False)

    if not can_transition(ride.status, status):
        raise RideNotAvailableError(
            f"Cannot change ride status from {ride.status} to {status}",
            details={"ride_id": ride.id, "status": ride.status},
        )

    now = timezone.now()
    fields = {"status": status, "updated_at": now}
    if status == STATUS_COMPLETED:
        fields["completed_at"] = now

    updated = Ride.objects.filter(pk=ride.pk, status=ride.status).update(**fields)
    if not updated:
        current = get_ride(ride.id)
        if current.status == STATUS_COMPLETED:
            return RideResult(success=True, ride=current, message="Ride is already completed", changed=False)
        raise RideNotAvailableError(STATUS_CHANGED_MESSAGE, details={"ride_id": ride.id, "status": current.status})

    ride = get_ride(ride.id)
    logger.info("Ride %s status -> %s", ride.id, status)

    payload = serialize_ride(ride)
    result_events = [events.to_ride(events.RIDE_UPDATED, ride.id, {"ride": payload})]
    stop_reason = None

    if status == STATUS_COMPLETED:
        _increment_completed_rides(ride)
        result_events.append(events.to_ride(events.RIDE_COMPLETED, ride.id, {"ride": payload}))
        result_events.append(events.to_on_duty(events.RIDE_COMPLETED, {"ride_id": ride.id}))
        stop_reason = STOP_COMPLETED

    return RideResult(
        success=True,
        ride=ride,
        message=f"Ride status updated to {status}",
        events=result_events,
        stop_dispatch=stop_reason,
    )


def _increment_completed_rides(ride: Ride):
    try:
        with transaction.atomic():
            User.objects.filter(pk__in=[ride.customer_id, ride.rider_id]).update(
                completed_rides=F('completed_rides') + 1
            )
    except Exception:
        logger.exception("Failed to update completed ride counters for ride %s", ride.id)


# ===================== Cancellation =====================

@transaction.atomic
def cancel_ride(actor, ride_id, reason: Optional[str] = None) -> RideResult:
    """
    Cancel a ride as its customer or rider.

    Customer: the ride is CANCELLED and everyone involved is told.
    Rider while the ride is still searching (declining the offer): the rider
    is blacklisted for this ride and the ride stays searchable for others.
    Rider after accepting: blacklisted, and the ride is CANCELLED.

    Raises:
        NotRideParticipantError: If the actor may not cancel this ride
        RideAlreadyCompletedError: If the ride is completed
        RideNotAvailableError: If the ride is in another non-cancellable state
    """
    ride = get_ride(ride_id)

    is_customer = ride.customer_id == actor.id
    is_assigned_rider = ride.rider_id is not None and ride.rider_id == actor.id
    is_declining_rider = actor.is_rider and ride.status == STATUS_SEARCHING

    if not (is_customer or is_assigned_rider or is_declining_rider):
        raise NotRideParticipantError("Only the customer or the assigned rider can cancel this ride")

    if ride.status == STATUS_COMPLETED:
        raise RideAlreadyCompletedError("Cannot cancel a completed ride", details={"ride_id": ride.id})

    if ride.status not in CANCELLABLE_STATUSES:
        raise RideNotAvailableError(
            f"Cannot cancel a ride that is {ride.status}",
            details={"ride_id": ride.id, "status": ride.status},
        )

    reason = (reason or "").strip() or "No reason provided"

    if is_customer:
        return _cancel_by_customer(ride, actor, reason)
    if ride.status == STATUS_SEARCHING:
        return _decline_by_rider(ride, actor)
    return _cancel_by_rider(ride, actor, reason)


def _cancel_by_customer(ride: Ride, customer, reason: str) -> RideResult:
    assigned_rider_id = ride.rider_id
    _mark_cancelled(ride, expected_status=ride.status, cancelled_by='customer', actor=customer, reason=reason)
    ride = get_ride(ride.id)
    logger.info("Ride %s cancelled by customer %s", ride.id, customer.id)

    payload = serialize_ride(ride)
    result_events = [
        events.to_ride(events.RIDE_CANCELLED, ride.id, {"ride": payload, "cancelled_by": "customer"}),
    ]
    if assigned_rider_id:
        result_events.append(events.to_user(events.PASSENGER_CANCELLED_RIDE, assigned_rider_id, {
            "ride_id": ride.id,
            "customer_name": customer.display_name,
            "reason": reason,
        }))
    result_events.append(events.to_on_duty(events.RIDE_CANCELLED, {"ride_id": ride.id, "cancelled_by": "customer"}))

    return RideResult(
        success=True,
        ride=ride,
        message="Ride cancelled successfully",
        events=result_events,
        stop_dispatch=STOP_CANCELLED,
        extra={"was_assigned": assigned_rider_id is not None},
    )


def _decline_by_rider(ride: Ride, rider) -> RideResult:
    reset = Ride.objects.filter(pk=ride.pk, status=STATUS_SEARCHING).update(
        rider=None, updated_at=timezone.now()
    )
    if not reset:
        # Accepted or cancelled since it was read
        raise RideNotAvailableError(NOT_AVAILABLE_MESSAGE, details={"ride_id": ride.id})
    ride.blacklisted_riders.add(rider)
    ride = get_ride(ride.id)
    logger.info("Rider %s declined ride %s (blacklisted)", rider.id, ride.id)

    return RideResult(
        success=True,
        ride=ride,
        message="Ride declined",
        # Only the declining rider drops it; the ride stays live for everyone else
        events=[events.to_user(events.RIDE_REMOVED_FOR_DRIVER, rider.id, {"ride_id": ride.id})],
    )


def _cancel_by_rider(ride: Ride, rider, reason: str) -> RideResult:
    ride.blacklisted_riders.add(rider)
    _mark_cancelled(ride, expected_status=ride.status, cancelled_by='rider', actor=rider, reason=reason)
    ride = get_ride(ride.id)
    logger.info("Ride %s cancelled by rider %s", ride.id, rider.id)

    payload = serialize_ride(ride)
    return RideResult(
        success=True,
        ride=ride,
        message="Ride cancelled successfully",
        events=[
            events.to_ride(events.RIDE_CANCELLED, ride.id, {"ride": payload, "cancelled_by": "rider"}),
            events.to_user(events.RIDER_CANCELLED_RIDE, ride.customer_id, {
                "ride_id": ride.id,
                "rider_name": rider.display_name,
                "reason": reason,
            }),
            events.to_on_duty(events.RIDE_CANCELLED, {"ride_id": ride.id, "cancelled_by": "rider"}),
        ],
        stop_dispatch=STOP_CANCELLED,
    )


def _mark_cancelled(ride: Ride, expected_status: str, cancelled_by: str, actor, reason: str):
    now = timezone.now()
    updated = Ride.objects.filter(pk=ride.pk, status=expected_status).update(
        status=STATUS_CANCELLED,
        cancelled_by=cancelled_by,
        cancelled_by_name=actor.display_name,
        cancelled_at=now,
        cancellation_reason=reason,
        updated_at=now,
    )
    if not updated:
        current = Ride.objects.filter(pk=ride.pk).values_list('status', flat=True).first()
        if current == STATUS_COMPLETED:
            raise RideAlreadyCompletedError("Cannot cancel a completed ride", details={"ride_id": ride.id})
        raise RideNotAvailableError(STATUS_CHANGED_MESSAGE, details={"ride_id": ride.id, "status": current})


# ===================== System Operations =====================

@transaction.atomic
def timeout_ride(ride_id: int) -> RideResult:
    """
    Expire a ride nobody accepted.

    Only a ride that is still SEARCHING_FOR_RIDER is changed; calling this
    again (or after another path resolved the ride) returns changed=False
    and no events.
    """
    now = timezone.now()
    updated = Ride.objects.filter(pk=ride_id, status=STATUS_SEARCHING).update(
        status=STATUS_TIMEOUT,
        rider=None,
        cancelled_by='system',
        cancelled_by_name='System',
        cancelled_at=now,
        cancellation_reason='No rider accepted the ride in time',
        updated_at=now,
    )
    ride = Ride.objects.filter(pk=ride_id).first()

    if not updated:
        return RideResult(success=True, ride=ride, message="Ride is no longer searching", changed=False)

    logger.info("Ride %s timed out without a rider", ride_id)
    return RideResult(
        success=True,
        ride=ride,
        message="No rider accepted the ride in time",
        events=[
            events.to_ride(events.RIDE_TIMEOUT, ride_id, {"ride_id": ride_id, "ride": serialize_ride(ride)}),
            events.to_on_duty(events.RIDE_TIMEOUT, {"ride_id": ride_id}),
            events.to_on_duty(events.RIDE_CANCELLED, {"ride_id": ride_id, "cancelled_by": "system"}),
        ],
        stop_dispatch=STOP_TIMEOUT,
    )
