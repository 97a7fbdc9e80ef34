from django.apps import AppConfig


class DiveConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "dive"
    verbose_name = "Dive"
