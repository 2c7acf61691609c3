import logging
import math

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from services.container import get_ride_services
from services.ride_management import Actor, RideError, NoDriversAvailable
from .errors import error_response
from .serializers import (
    RideSerializer,
    RideCreateSerializer,
    RideCancelSerializer,
    VerifyOtpSerializer,
    CompleteRideSerializer,
    RateRideSerializer,
    RideHistoryQuerySerializer,
)

logger = logging.getLogger(__name__)


def _driver_only(request):
    if not request.user.is_driver:
        return Response(
            {'error': 'unauthorized', 'message': 'Only drivers can perform this action'},
            status=status.HTTP_403_FORBIDDEN
        )
    return None


# ==================== Rider Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_ride_request(request):
    """Create a new ride request and broadcast it to nearby drivers"""
    if not request.user.is_rider:
        return Response(
            {'error': 'unauthorized', 'message': 'Only riders can create ride requests'},
            status=status.HTTP_403_FORBIDDEN
        )

    serializer = RideCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    services = get_ride_services()
    try:
        ride = services.dispatch.request_ride(request.user, **serializer.validated_data)
    except NoDriversAvailable as exc:
        # The ride is still open and can be cancelled or retried later
        return Response({
            **RideSerializer(exc.ride).data,
            'error': exc.code,
            'message': exc.message,
            'driver_candidates': 0,
        }, status=status.HTTP_201_CREATED)
    except RideError as exc:
        return error_response(exc)

    offer = services.offers.get(ride.id)
    return Response({
        **RideSerializer(ride).data,
        'message': 'Notifying nearby drivers...',
        'driver_candidates': len(offer.candidates) if offer else 0,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_current_ride(request):
    """Current non-terminal ride of the rider or driver, if any"""
    ride = get_ride_services().lifecycle.current_ride_for(request.user)
    if ride is None:
        return Response({'ride': None, 'message': 'No active ride'})
    return Response({'ride': RideSerializer(ride).data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_history(request):
    """Past and current rides of the caller, newest first"""
    serializer = RideHistoryQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    ride_status = serializer.validated_data['status']
    page = serializer.validated_data['page']
    limit = serializer.validated_data['limit']

    rides = get_ride_services().lifecycle.ride_history(
        request.user, None if ride_status == 'all' else ride_status
    )
    total = rides.count()
    offset = (page - 1) * limit

    return Response({
        'rides': RideSerializer(rides[offset:offset + limit], many=True).data,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': math.ceil(total / limit),
        },
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    try:
        ride = get_ride_services().lifecycle.get_ride(ride_id, request.user)
    except RideError as exc:
        return error_response(exc)
    return Response(RideSerializer(ride).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    """Cancel a ride (rider or assigned driver)"""
    serializer = RideCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        ride, penalty = get_ride_services().dispatch.cancel_ride(
            ride_id, Actor.for_user(request.user), serializer.validated_data['reason']
        )
    except RideError as exc:
        return error_response(exc)

    return Response({
        'message': 'Ride cancelled successfully',
        'penalty': str(penalty),
        'ride': RideSerializer(ride).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def rate_ride(request, ride_id):
    serializer = RateRideSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        ride = get_ride_services().lifecycle.rate(
            ride_id,
            Actor.for_user(request.user),
            serializer.validated_data['rating'],
            serializer.validated_data['comment'],
        )
    except RideError as exc:
        return error_response(exc)
    return Response({'message': 'Thanks for your feedback', 'ride': RideSerializer(ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def resend_otp(request, ride_id):
    """Send a fresh pickup code, e.g. after the previous one expired"""
    try:
        ride = get_ride_services().lifecycle.resend_start_otp(ride_id, Actor.for_user(request.user))
    except RideError as exc:
        return error_response(exc)
    return Response({'message': 'A new pickup code was sent to the rider', 'ride': RideSerializer(ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def verify_otp(request, ride_id):
    """Check the pickup code and start the ride (driver or rider)"""
    serializer = VerifyOtpSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        ride = get_ride_services().lifecycle.verify_otp(
            ride_id, Actor.for_user(request.user), serializer.validated_data['code']
        )
    except RideError as exc:
        return error_response(exc)
    return Response({'message': 'Ride started', 'ride': RideSerializer(ride).data})


# ==================== Driver Ride Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_ride(request, ride_id):
    """Accept a ride request that was offered to this driver"""
    denied = _driver_only(request)
    if denied:
        return denied

    try:
        ride = get_ride_services().dispatch.accept_ride(ride_id, request.user)
    except RideError as exc:
        return error_response(exc)

    return Response({
        'message': 'Ride accepted. Navigate to the pickup location.',
        'ride': RideSerializer(ride).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_arrived(request, ride_id):
    denied = _driver_only(request)
    if denied:
        return denied

    try:
        ride = get_ride_services().lifecycle.mark_arrived(ride_id, request.user)
    except RideError as exc:
        return error_response(exc)
    return Response({'message': 'Rider notified of your arrival', 'ride': RideSerializer(ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_otp(request, ride_id):
    """Ask for the pickup code; the rider receives it out of band"""
    denied = _driver_only(request)
    if denied:
        return denied

    try:
        ride = get_ride_services().lifecycle.issue_start_otp(ride_id, Actor.for_user(request.user))
    except RideError as exc:
        return error_response(exc)
    return Response({'message': 'Pickup code sent to the rider', 'ride': RideSerializer(ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_ride(request, ride_id):
    """Complete a ride - called by driver when rider reaches destination"""
    denied = _driver_only(request)
    if denied:
        return denied

    serializer = CompleteRideSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        ride = get_ride_services().lifecycle.complete(ride_id, request.user, **serializer.validated_data)
    except RideError as exc:
        return error_response(exc)

    return Response({'message': 'Ride completed successfully', 'ride': RideSerializer(ride).data})
