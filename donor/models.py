from datetime import timedelta

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


class BloodType(models.TextChoices):
    A_POS = 'A+', 'A+'
    A_NEG = 'A-', 'A-'
    B_POS = 'B+', 'B+'
    B_NEG = 'B-', 'B-'
    AB_POS = 'AB+', 'AB+'
    AB_NEG = 'AB-', 'AB-'
    O_POS = 'O+', 'O+'
    O_NEG = 'O-', 'O-'


class DonorStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'
    SUSPENDED = 'suspended', 'Suspended'


class BloodDonor(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='donor_profile')

    blood_type = models.CharField(max_length=3, choices=BloodType.choices)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100, blank=True)
    zipcode = models.CharField(max_length=12, blank=True)
    phone = models.CharField(max_length=20)
    latitude = models.DecimalField(
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[MinValueValidator(-90), MaxValueValidator(90)],
        help_text="Decimal latitude between -90 and 90"
    )
    longitude = models.DecimalField(
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
        validators=[MinValueValidator(-180), MaxValueValidator(180)],
        help_text="Decimal longitude between -180 and 180"
    )
    location_verified = models.BooleanField(default=False)

    is_available = models.BooleanField(default=True)
    availability_updated_at = models.DateTimeField(null=True, blank=True)
    last_donated_at = models.DateField(null=True, blank=True)

    # Disclosure preferences applied before a donor appears in search results
    show_full_name = models.BooleanField(default=True)
    show_phone = models.BooleanField(default=False)
    show_email = models.BooleanField(default=True)
    show_exact_location = models.BooleanField(default=False)
    max_disclosure_km = models.PositiveIntegerField(
        default=10,
        validators=[MinValueValidator(1), MaxValueValidator(100)],
    )

    is_verified = models.BooleanField(default=False)
    rating_average = models.DecimalField(
        max_digits=3,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(5)],
    )
    rating_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, choices=DonorStatus.choices, default=DonorStatus.ACTIVE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['latitude', 'longitude'], name='donor_location_idx'),
            models.Index(fields=['blood_type', 'is_available'], name='donor_type_available_idx'),
            models.Index(fields=['city', 'blood_type'], name='donor_city_type_idx'),
        ]

    @property
    def get_name(self):
        return self.user.name or self.user.email

    def __str__(self):
        return f"{self.get_name} ({self.blood_type})"

    def mark_availability(self, available: bool, last_donated_at=None):
        self.is_available = available
        self.availability_updated_at = timezone.now()
        fields = ["is_available", "availability_updated_at", "updated_at"]
        if last_donated_at is not None:
            self.last_donated_at = last_donated_at
            fields.append("last_donated_at")
        self.save(update_fields=fields)

    @property
    def donation_recovery_days(self) -> int:
        return int(getattr(settings, "DONATION_RECOVERY_DAYS", 56))

    @property
    def next_eligible_donation_date(self):
        if not self.last_donated_at:
            return None
        return self.last_donated_at + timedelta(days=self.donation_recovery_days)
