"""emresource URL Configuration

Every route below ``auth/``, ``emergency/``, ``donor/`` and ``facilities/``
answers with the JSON envelope from ``emresource.api``.
"""
from django.contrib import admin
from django.urls import path, include

from emergency import views as emergency_views

urlpatterns = [
    path('admin/', admin.site.urls),

    path('auth/', include('accounts.urls')),
    path('emergency/', include('emergency.urls')),
    path('donor/', include('donor.urls')),
    path('facilities/nearby', emergency_views.facilities_nearby_view, name='facilities-nearby'),
]
