from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from donor.models import BloodType


class ResourceType(models.TextChoices):
    BLOOD = 'blood', 'Blood'
    OXYGEN = 'oxygen', 'Oxygen'
    AMBULANCE = 'ambulance', 'Ambulance'
    BED = 'bed', 'Bed'
    MEDICINE = 'medicine', 'Medicine'
    PLASMA = 'plasma', 'Plasma'
    PLATELETS = 'platelets', 'Platelets'


class Urgency(models.TextChoices):
    CRITICAL = 'critical', 'Critical'
    HIGH = 'high', 'High'
    MEDIUM = 'medium', 'Medium'
    LOW = 'low', 'Low'


# Lower rank sorts first.
URGENCY_RANK = {
    Urgency.CRITICAL: 0,
    Urgency.HIGH: 1,
    Urgency.MEDIUM: 2,
    Urgency.LOW: 3,
}


class RequestStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    FULFILLED = 'fulfilled', 'Fulfilled'
    CANCELLED = 'cancelled', 'Cancelled'
    EXPIRED = 'expired', 'Expired'


TERMINAL_STATUSES = (RequestStatus.FULFILLED, RequestStatus.CANCELLED, RequestStatus.EXPIRED)


class Visibility(models.TextChoices):
    PUBLIC = 'public', 'Public'
    DONORS_ONLY = 'donors_only', 'Donors only'
    FACILITIES_ONLY = 'facilities_only', 'Facilities only'


class ResponseStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    DECLINED = 'declined', 'Declined'


def _latitude_field(**kwargs):
    return models.DecimalField(
        max_digits=9,
        decimal_places=6,
        validators=[MinValueValidator(-90), MaxValueValidator(90)],
        **kwargs,
    )


def _longitude_field(**kwargs):
    return models.DecimalField(
        max_digits=9,
        decimal_places=6,
        validators=[MinValueValidator(-180), MaxValueValidator(180)],
        **kwargs,
    )


class EmergencyRequest(models.Model):
    requester = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='emergency_requests')
    resource_type = models.CharField(max_length=20, choices=ResourceType.choices)
    urgency = models.CharField(max_length=10, choices=Urgency.choices, default=Urgency.MEDIUM)
    urgency_rank = models.PositiveSmallIntegerField(default=URGENCY_RANK[Urgency.MEDIUM], editable=False)
    blood_type = models.CharField(max_length=3, choices=BloodType.choices, blank=True)

    patient_name = models.CharField(max_length=120, blank=True)
    patient_age = models.PositiveSmallIntegerField(null=True, blank=True, validators=[MaxValueValidator(130)])
    patient_condition = models.CharField(max_length=255, blank=True)
    hospital = models.CharField(max_length=255, blank=True)

    latitude = _latitude_field()
    longitude = _longitude_field()
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100)
    zipcode = models.CharField(max_length=12, blank=True)

    contact_phone = models.CharField(max_length=20, blank=True)
    contact_email = models.EmailField(blank=True)
    description = models.CharField(max_length=500)
    quantity_units = models.PositiveIntegerField(null=True, blank=True)
    quantity_description = models.CharField(max_length=255, blank=True)
    deadline = models.DateTimeField(null=True, blank=True)
    visibility = models.CharField(max_length=20, choices=Visibility.choices, default=Visibility.PUBLIC)

    status = models.CharField(max_length=10, choices=RequestStatus.choices, default=RequestStatus.ACTIVE)
    status_changed_at = models.DateTimeField(null=True, blank=True)
    fulfilled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='fulfilled_emergency_requests',
    )
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    resolution_notes = models.CharField(max_length=500, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['urgency_rank', '-created_at', '-id']
        indexes = [
            models.Index(fields=['latitude', 'longitude'], name='request_location_idx'),
            models.Index(fields=['resource_type', 'status', 'urgency_rank'], name='request_type_status_idx'),
            models.Index(fields=['blood_type', 'status'], name='request_blood_status_idx'),
            models.Index(fields=['deadline', 'status'], name='request_deadline_status_idx'),
        ]

    def __str__(self):
        return f"{self.get_resource_type_display()} ({self.urgency}) - {self.city}"

    def save(self, *args, **kwargs):
        self.urgency_rank = URGENCY_RANK[Urgency(self.urgency)]
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'urgency' in update_fields:
            kwargs['update_fields'] = set(update_fields) | {'urgency_rank'}
        super().save(*args, **kwargs)

    @property
    def is_active(self):
        return self.status == RequestStatus.ACTIVE


class Response(models.Model):
    request = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name='responses')
    responder = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='emergency_responses')
    message = models.CharField(max_length=500, blank=True)
    contact_phone = models.CharField(max_length=20, blank=True)
    contact_email = models.EmailField(blank=True)
    available_on = models.DateField(null=True, blank=True)
    available_time = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=10, choices=ResponseStatus.choices, default=ResponseStatus.PENDING)
    responded_at = models.DateTimeField(default=timezone.now)
    status_changed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['responded_at', 'id']
        constraints = [
            models.UniqueConstraint(fields=['request', 'responder'], name='one_response_per_responder'),
        ]

    def __str__(self):
        return f"{self.responder} -> request #{self.request_id} ({self.status})"


class FacilityType(models.TextChoices):
    HOSPITAL = 'hospital', 'Hospital'
    CLINIC = 'clinic', 'Clinic'
    PHARMACY = 'pharmacy', 'Pharmacy'
    DIAGNOSTIC = 'diagnostic', 'Diagnostic centre'
    BLOOD_BANK = 'blood_bank', 'Blood bank'
    OXYGEN_SUPPLIER = 'oxygen_supplier', 'Oxygen supplier'


class MedicalFacility(models.Model):
    name = models.CharField(max_length=200)
    facility_type = models.CharField(max_length=20, choices=FacilityType.choices)
    operator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='facilities',
    )
    latitude = _latitude_field()
    longitude = _longitude_field()
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100)
    zipcode = models.CharField(max_length=12, blank=True)
    phone = models.CharField(max_length=20)
    emergency_phone = models.CharField(max_length=20, blank=True)
    has_emergency_service = models.BooleanField(default=False)
    has_ambulance_service = models.BooleanField(default=False)
    has_blood_bank = models.BooleanField(default=False)
    has_oxygen_supply = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'medical facilities'
        ordering = ['name', 'id']
        indexes = [
            models.Index(fields=['latitude', 'longitude'], name='facility_location_idx'),
            models.Index(fields=['facility_type', 'city'], name='facility_type_city_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_facility_type_display()})"
