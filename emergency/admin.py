from django.contrib import admin

from .models import EmergencyRequest, MedicalFacility, Response


class ResponseInline(admin.TabularInline):
    model = Response
    extra = 0
    fields = ['responder', 'status', 'message', 'responded_at']
    readonly_fields = ['responder', 'responded_at']


@admin.register(EmergencyRequest)
class EmergencyRequestAdmin(admin.ModelAdmin):
    list_display = ['id', 'resource_type', 'urgency', 'blood_type', 'city', 'status', 'created_at']
    list_filter = ['resource_type', 'urgency', 'status', 'visibility']
    search_fields = ['description', 'city', 'patient_name', 'requester__email']
    readonly_fields = ['urgency_rank', 'status_changed_at', 'fulfilled_at', 'created_at', 'updated_at']
    inlines = [ResponseInline]


@admin.register(MedicalFacility)
class MedicalFacilityAdmin(admin.ModelAdmin):
    list_display = ['name', 'facility_type', 'city', 'phone', 'is_verified', 'is_active']
    list_filter = ['facility_type', 'is_verified', 'is_active']
    search_fields = ['name', 'city', 'address']
