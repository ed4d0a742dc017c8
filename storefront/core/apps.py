# storefront/core/apps.py

from django.apps import AppConfig


class CoreConfig(AppConfig):
    name = 'storefront.core'
    label = 'core'
    verbose_name = 'Store domain and use cases'

    # Entities here are plain dataclasses, the tables live in Infrastructure.
    default_auto_field = 'django.db.models.BigAutoField'
