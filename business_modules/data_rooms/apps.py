from django.apps import AppConfig


class DataRoomsConfig(AppConfig):
    """Data Room Sharing module configuration."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'business_modules.data_rooms'
    label = 'data_rooms'
    verbose_name = 'Data Room Sharing'
