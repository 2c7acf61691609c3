from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from drivers.serializers import (
    DriverProfileSerializer,
    DriverStatusSerializer,
    LocationUpdateSerializer,
)
from rides.errors import error_response
from rides.serializers import RideSerializer
from services.container import get_ride_services
from services.ride_management import DriverNotFound, RideError

from drivers import services


# Utility: Ensure request.user is a driver
def require_driver(user):
    if not user.is_driver:
        return False, Response({"error": "unauthorized", "message": "Only drivers allowed"}, status=403)
    # Fresh read, the profile cached on request.user may be stale
    try:
        return True, services.get_driver_profile(user.id)
    except DriverNotFound as exc:
        return False, error_response(exc)


class DriverProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile  # Response object

        serializer = DriverProfileSerializer(profile, context={"request": request})
        return Response(serializer.data)


#    NOTE: WS can replace this in future, but HTTP fallback remains.
class DriverStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({
            "status": "online" if profile.is_online else "offline",
            "current_ride": profile.current_ride_id,
        })

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        try:
            services.set_driver_online(request.user.id, new_status == "online")
        except RideError as exc:
            return error_response(exc)

        return Response({
            "message": f"Status updated to {new_status}",
            "status": new_status
        })


#    A candidate to move fully to WS. Keep HTTP fallback.
class DriverLocationUpdateView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({
            "latitude": float(profile.current_latitude) if profile.has_location else None,
            "longitude": float(profile.current_longitude) if profile.has_location else None,
            "last_updated": profile.last_location_update,
        })

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]

        try:
            profile = services.update_driver_location(request.user.id, lat, lon)
        except RideError as exc:
            return error_response(exc)
        services.publish_location_to_ride(profile)

        return Response({
            "message": "Location updated",
            "latitude": float(lat),
            "longitude": float(lon),
        })


class DriverCurrentRideView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        ride = get_ride_services().lifecycle.current_ride_for(request.user)
        if ride is None:
            return Response({"ride": None, "message": "No active ride"})
        return Response({"ride": RideSerializer(ride).data})
