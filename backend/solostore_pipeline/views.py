import uuid

from rest_framework import viewsets

from .models import App, BuildJob, DomainVerification
from .serializers import AppSerializer, BuildJobSerializer, DomainVerificationSerializer


class OwnerScopedViewSet(viewsets.ReadOnlyModelViewSet):
    owner_lookup = "owner"

    def scope(self, queryset):
        if self.request.user.is_staff:
            return queryset
        return queryset.filter(**{self.owner_lookup: self.request.user})


class AppViewSet(OwnerScopedViewSet):
    serializer_class = AppSerializer

    def get_queryset(self):
        queryset = self.scope(App.objects.select_related("domain_verification"))
        status = self.request.query_params.get("status")
        if status:
            queryset = queryset.filter(status=status)
        return queryset


class BuildJobViewSet(OwnerScopedViewSet):
    serializer_class = BuildJobSerializer
    owner_lookup = "app__owner"

    def get_queryset(self):
        queryset = self.scope(BuildJob.objects.all())
        app_id = self.request.query_params.get("app")
        if app_id:
            try:
                queryset = queryset.filter(app_id=uuid.UUID(app_id))
            except ValueError:
                return queryset.none()
        return queryset


class DomainVerificationViewSet(OwnerScopedViewSet):
    serializer_class = DomainVerificationSerializer

    def get_queryset(self):
        return self.scope(DomainVerification.objects.all())
