from django.apps import AppConfig


class SolostorePipelineConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "solostore_pipeline"
    label = "solostore_pipeline"
