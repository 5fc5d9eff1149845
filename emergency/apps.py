from django.apps import AppConfig


class EmergencyConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'emergency'
    verbose_name = 'Emergency requests & facilities'
