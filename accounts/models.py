from django.contrib.auth.base_user import AbstractBaseUser, BaseUserManager
from django.contrib.auth.models import PermissionsMixin
from django.db import models
from django.utils import timezone


def normalize_email(email):
    return (email or '').strip().lower()


class Role(models.TextChoices):
    REQUESTER = 'requester', 'Requester'
    DONOR = 'donor', 'Blood donor'
    FACILITY_OPERATOR = 'facility_operator', 'Facility operator'
    ADMIN = 'admin', 'Administrator'


class OtpPurpose(models.TextChoices):
    SIGNUP = 'signup', 'Sign up'
    SIGNIN = 'signin', 'Sign in'


class IdentityManager(BaseUserManager):
    use_in_migrations = True

    def get_by_natural_key(self, email):
        return self.get(email=normalize_email(email))

    def create_user(self, email, password=None, **extra_fields):
        email = normalize_email(email)
        if not email:
            raise ValueError('An email address is required')
        identity = self.model(email=email, **extra_fields)
        if password:
            identity.set_password(password)
        else:
            identity.set_unusable_password()
        identity.save(using=self._db)
        return identity

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('role', Role.ADMIN)
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_verified', True)
        return self.create_user(email, password, **extra_fields)


class Identity(AbstractBaseUser, PermissionsMixin):
    email = models.EmailField(max_length=254, unique=True)
    name = models.CharField(max_length=120, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.REQUESTER)
    is_verified = models.BooleanField(default=False)
    provider_subject = models.CharField(max_length=255, null=True, blank=True, unique=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)

    objects = IdentityManager()

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = 'identity'
        verbose_name_plural = 'identities'
        ordering = ['-date_joined', '-id']

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._stored_role = instance.__dict__.get('role')
        return instance

    def save(self, *args, **kwargs):
        self.email = normalize_email(self.email)
        stored_role = getattr(self, '_stored_role', None)
        if self.pk and stored_role and stored_role != self.role:
            raise ValueError('An identity keeps the role it was created with')
        super().save(*args, **kwargs)
        self._stored_role = self.role

    def get_full_name(self):
        return self.name or self.email

    def get_short_name(self):
        return self.name.split(' ')[0] if self.name else self.email

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    def __str__(self):
        return self.email


class OneTimeCredential(models.Model):
    """At most one row per (email, purpose): that row is the live code for the pair."""

    email = models.EmailField(max_length=254)
    purpose = models.CharField(max_length=10, choices=OtpPurpose.choices)
    code_digest = models.CharField(max_length=64)
    issued_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['email', 'purpose'], name='unique_credential_per_email_purpose'),
        ]

    def is_live(self, now=None):
        return self.expires_at > (now or timezone.now())

    def __str__(self):
        return f"{self.email} ({self.purpose})"


class PendingAuthContext(models.Model):
    """Bridges OTP issuance and verification for exactly one client session."""

    session_key = models.CharField(max_length=40, unique=True)
    purpose = models.CharField(max_length=10, choices=OtpPurpose.choices)
    email = models.EmailField(max_length=254)
    payload = models.JSONField(default=dict, blank=True)
    expires_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.purpose} for {self.email}"
