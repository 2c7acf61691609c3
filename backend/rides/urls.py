from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Rider APIs
    path('request/', views.create_ride_request, name='create-ride'),
    path('current/', views.get_current_ride, name='current-ride'),
    path('history/', views.ride_history, name='ride-history'),
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),
    path('<int:ride_id>/rate/', views.rate_ride, name='rate-ride'),
    path('<int:ride_id>/verify-otp/', views.verify_otp, name='verify-otp'),
    path('<int:ride_id>/resend-otp/', views.resend_otp, name='resend-otp'),

    # Driver Ride Actions
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/arrive/', views.mark_arrived, name='arrive'),
    path('<int:ride_id>/start-otp/', views.start_otp, name='start-otp'),
    path('<int:ride_id>/complete/', views.complete_ride, name='complete-ride'),
]
