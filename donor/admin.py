from django.contrib import admin
from .models import BloodDonor

@admin.register(BloodDonor)
class BloodDonorAdmin(admin.ModelAdmin):
    list_display = ['get_name', 'blood_type', 'city', 'phone', 'is_available', 'is_verified', 'status']
    list_filter = ['blood_type', 'is_available', 'is_verified', 'status']
    search_fields = ['user__name', 'user__email', 'phone', 'city']
    readonly_fields = ['availability_updated_at', 'rating_average', 'rating_count', 'created_at', 'updated_at']
