from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import pipeline_api
from .views import AppViewSet, BuildJobViewSet, DomainVerificationViewSet

router = DefaultRouter()
router.register("apps", AppViewSet, basename="app")
router.register("builds", BuildJobViewSet, basename="build")
router.register("verifications", DomainVerificationViewSet, basename="verification")

urlpatterns = [
    path("api/v1/", include(router.urls)),
    path("api/apps", pipeline_api.apps_collection, name="pipeline-apps"),
    path("api/apps/<uuid:app_id>", pipeline_api.app_detail, name="pipeline-app-detail"),
    path("api/apps/<uuid:app_id>/submit", pipeline_api.app_submit, name="pipeline-app-submit"),
    path("api/apps/<uuid:app_id>/unpublish", pipeline_api.app_unpublish, name="pipeline-app-unpublish"),
    path("api/apps/<uuid:app_id>/builds", pipeline_api.app_builds, name="pipeline-app-builds"),
    path("api/builds/<uuid:job_id>/status", pipeline_api.build_status, name="pipeline-build-status"),
    path("api/builds/<uuid:job_id>/cancel", pipeline_api.build_cancel, name="pipeline-build-cancel"),
    path("api/verifications", pipeline_api.verifications_collection, name="pipeline-verifications"),
    path(
        "api/verifications/<uuid:verification_id>",
        pipeline_api.verification_detail,
        name="pipeline-verification-detail",
    ),
    path(
        "api/verifications/<uuid:verification_id>/check",
        pipeline_api.verification_check,
        name="pipeline-verification-check",
    ),
    path(
        "api/verifications/<uuid:verification_id>/force",
        pipeline_api.verification_force,
        name="pipeline-verification-force",
    ),
    path("api/draft", pipeline_api.draft_detail, name="pipeline-draft"),
    path("api/draft/peek", pipeline_api.draft_peek, name="pipeline-draft-peek"),
    path("api/review/<uuid:app_id>/approve", pipeline_api.review_approve, name="pipeline-review-approve"),
    path("api/review/<uuid:app_id>/reject", pipeline_api.review_reject, name="pipeline-review-reject"),
    path("api/platform-settings", pipeline_api.platform_settings, name="pipeline-platform-settings"),
    path("api/events", pipeline_api.events_feed, name="pipeline-events"),
    path("api/events/unread-count", pipeline_api.events_unread_count, name="pipeline-events-unread-count"),
    path("api/events/read-all", pipeline_api.events_mark_all_read, name="pipeline-events-read-all"),
    path("api/events/<int:event_id>/read", pipeline_api.event_mark_read, name="pipeline-event-read"),
]
