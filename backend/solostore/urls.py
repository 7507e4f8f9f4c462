from django.urls import include, path

urlpatterns = [
    path("", include("solostore_pipeline.urls")),
]
