from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Driver APIs (driver profile, availability, location, current ride)
    path('api/driver/', include('drivers.urls')),  # drivers.urls have all the driver-related endpoints

    # Rides endpoints (at /api/rides/)
    path('api/rides/', include('rides.urls')),      # rides.urls have the ride lifecycle endpoints
]
