from django.urls import path
from .views import (
    DriverProfileView,
    DriverStatusView,
    DriverLocationUpdateView,
    DriverCurrentRideView,
)

urlpatterns = [
    path("profile/", DriverProfileView.as_view(), name="driver-profile"),
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("current-ride/", DriverCurrentRideView.as_view(), name="driver-current-ride"),
]
