from django.apps import AppConfig


class InfrastructureConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'storefront.infrastructure'
    label = 'infrastructure'
    verbose_name = 'Persistence and external gateways'
