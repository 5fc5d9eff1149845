from django.contrib import admin

from .models import Identity, OneTimeCredential, PendingAuthContext


@admin.register(Identity)
class IdentityAdmin(admin.ModelAdmin):
    list_display = ['email', 'name', 'role', 'is_verified', 'is_active', 'date_joined']
    list_filter = ['role', 'is_verified', 'is_active']
    search_fields = ['email', 'name']
    readonly_fields = ['password', 'last_login', 'date_joined', 'provider_subject']
    exclude = ['groups', 'user_permissions']

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return self.readonly_fields + ['role']
        return self.readonly_fields


@admin.register(OneTimeCredential)
class OneTimeCredentialAdmin(admin.ModelAdmin):
    list_display = ['email', 'purpose', 'issued_at', 'expires_at']
    list_filter = ['purpose']
    search_fields = ['email']
    exclude = ['code_digest']


@admin.register(PendingAuthContext)
class PendingAuthContextAdmin(admin.ModelAdmin):
    list_display = ['email', 'purpose', 'session_key', 'expires_at']
    list_filter = ['purpose']
    search_fields = ['email']
    exclude = ['payload']
