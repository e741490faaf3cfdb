from django.apps import AppConfig


class LogisticsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'logistics'

    def ready(self):
        # Register the delivery broadcast receiver
        import logistics.signals  # noqa: F401
