from django.urls import path
from . import views

urlpatterns = [
    path('register', views.donor_register_view, name='donor-register'),
    path('profile', views.donor_profile_view, name='donor-profile'),
    path('availability', views.donor_availability_view, name='donor-availability'),
    path('nearby', views.donor_nearby_view, name='donor-nearby'),
    path('meta/blood-types', views.blood_types_view, name='donor-blood-types'),
]
