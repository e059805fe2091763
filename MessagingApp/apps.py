import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class MessagingAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "MessagingApp"
    verbose_name = "Messaging"

    def ready(self):
        # Presence is process-local: start from an empty registry
        from MessagingApp.presence import get_router

        get_router().reset()
        logger.debug("connection router initialised")
