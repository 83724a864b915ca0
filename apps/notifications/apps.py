from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.notifications'
    verbose_name = "Order Notifications"

    def ready(self):
        import apps.notifications.receivers  # noqa: F401
