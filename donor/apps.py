from django.apps import AppConfig


class DonorConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'donor'
    verbose_name = 'Blood donors'

    def ready(self):
        # Registers the address geocoding receiver.
        from . import signals  # noqa: F401
