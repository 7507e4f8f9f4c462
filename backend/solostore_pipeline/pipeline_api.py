import json
import logging
import uuid
from functools import wraps
from typing import Any, Dict

from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt

from . import builds, drafts, publication, verifier
from .errors import PipelineError, ValidationFailure
from .models import App, BuildJob, DomainVerification, PipelineEvent
from .platform_config import get_platform_settings, platform_settings_to_payload, update_platform_settings
from .status_sync import build_status_payload, event_to_payload, mark_all_read, mark_read, unread_count

logger = logging.getLogger(__name__)

EVENTS_PAGE_LIMIT = 200


def _parse_json(request: HttpRequest) -> Dict[str, Any]:
    if request.body:
        try:
            return json.loads(request.body.decode("utf-8"))
        except json.JSONDecodeError:
            return {}
    return {}


def _require_staff(request: HttpRequest):
    if not request.user.is_authenticated or not request.user.is_staff:
        return JsonResponse({"error": "Staff access required"}, status=403)
    return None


def _method_not_allowed() -> JsonResponse:
    return JsonResponse({"error": "method not allowed"}, status=405)


def pipeline_errors(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except PipelineError as exc:
            if exc.http_status >= 500:
                logger.error("%s failed: %s", view.__name__, exc.message)
            return JsonResponse(exc.to_payload(), status=exc.http_status)

    return wrapper


def _iso(value):
    return value.isoformat() if value else None


def app_to_payload(app: App) -> Dict[str, Any]:
    verification = app.domain_verification
    return {
        "id": str(app.id),
        "owner_id": app.owner_id,
        "name": app.name,
        "package_name": app.package_name,
        "website_url": app.website_url,
        "config": app.config_json or {},
        "status": app.status,
        "domain_verification_id": str(verification.id) if verification else None,
        "domain_verified": bool(verification and verification.is_verified),
        "latest_build_job_id": str(app.latest_build_job_id) if app.latest_build_job_id else None,
        "package_artifact_ref": app.package_artifact_ref or None,
        "package_size_bytes": app.package_size_bytes,
        "package_sha256": app.package_sha256 or None,
        "rejection_reason": app.rejection_reason or None,
        "published_at": _iso(app.published_at),
        "created_at": _iso(app.created_at),
        "updated_at": _iso(app.updated_at),
    }


def verification_to_payload(record: DomainVerification) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "domain": record.domain,
        "method": record.method,
        "status": record.status,
        "verified_via": record.verified_via or None,
        "verified_at": _iso(record.verified_at),
        "last_checked_at": _iso(record.last_checked_at),
        "last_error": record.last_error or None,
        "instructions": verifier.instructions_for(record),
        "created_at": _iso(record.created_at),
    }


def _owned_app(request: HttpRequest, app_id: str) -> App:
    if request.user.is_staff:
        return get_object_or_404(App, id=app_id)
    return get_object_or_404(App, id=app_id, owner=request.user)


def _owned_job(request: HttpRequest, job_id: str) -> BuildJob:
    if request.user.is_staff:
        return get_object_or_404(BuildJob.objects.select_related("app"), id=job_id)
    return get_object_or_404(BuildJob.objects.select_related("app"), id=job_id, app__owner=request.user)


def _owned_verification(request: HttpRequest, verification_id: str) -> DomainVerification:
    if request.user.is_staff:
        return get_object_or_404(DomainVerification, id=verification_id)
    return get_object_or_404(DomainVerification, id=verification_id, owner=request.user)


@csrf_exempt
@login_required
@pipeline_errors
def apps_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "POST":
        app = publication.create_app(request.user, _parse_json(request))
        return JsonResponse({"app": app_to_payload(app)}, status=201)
    if request.method != "GET":
        return _method_not_allowed()
    apps = App.objects.filter(owner=request.user).select_related("domain_verification")
    status = request.GET.get("status")
    if status:
        apps = apps.filter(status=status)
    return JsonResponse({"apps": [app_to_payload(app) for app in apps]})


@csrf_exempt
@login_required
@pipeline_errors
def app_detail(request: HttpRequest, app_id: str) -> JsonResponse:
    app = _owned_app(request, app_id)
    if request.method == "DELETE":
        publication.delete_app(app.id)
        return JsonResponse({"deleted": True})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse({"app": app_to_payload(app)})


@csrf_exempt
@login_required
@pipeline_errors
def app_submit(request: HttpRequest, app_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    app = publication.submit(_owned_app(request, app_id).id)
    return JsonResponse({"app": app_to_payload(app)})


@csrf_exempt
@login_required
@pipeline_errors
def app_unpublish(request: HttpRequest, app_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    app = publication.unpublish(_owned_app(request, app_id).id, actor=request.user)
    return JsonResponse({"app": app_to_payload(app)})


@csrf_exempt
@login_required
@pipeline_errors
def app_builds(request: HttpRequest, app_id: str) -> JsonResponse:
    app = _owned_app(request, app_id)
    if request.method == "POST":
        job = builds.start_build(app.id, actor=request.user)
        return JsonResponse({"job": build_status_payload(job)}, status=202)
    if request.method != "GET":
        return _method_not_allowed()
    jobs = BuildJob.objects.filter(app=app).order_by("-created_at")
    return JsonResponse({"jobs": [build_status_payload(job) for job in jobs]})


@csrf_exempt
@login_required
@pipeline_errors
def build_status(request: HttpRequest, job_id: str) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    job = _owned_job(request, job_id)
    return JsonResponse(builds.get_build_status(job.id))


@csrf_exempt
@login_required
@pipeline_errors
def build_cancel(request: HttpRequest, job_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    job = builds.cancel_build(_owned_job(request, job_id).id, actor=request.user)
    return JsonResponse(build_status_payload(job))


@csrf_exempt
@login_required
@pipeline_errors
def verifications_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "POST":
        payload = _parse_json(request)
        record, _instructions = verifier.initiate(request.user, payload.get("domain"), payload.get("method") or "dns_txt")
        return JsonResponse({"verification": verification_to_payload(record)}, status=201)
    if request.method != "GET":
        return _method_not_allowed()
    records = DomainVerification.objects.filter(owner=request.user)
    return JsonResponse({"verifications": [verification_to_payload(record) for record in records]})


@csrf_exempt
@login_required
@pipeline_errors
def verification_detail(request: HttpRequest, verification_id: str) -> JsonResponse:
    record = _owned_verification(request, verification_id)
    if request.method == "DELETE":
        verifier.delete_verification(record.id)
        return JsonResponse({"deleted": True})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse({"verification": verification_to_payload(record)})


@csrf_exempt
@login_required
@pipeline_errors
def verification_check(request: HttpRequest, verification_id: str) -> JsonResponse:
    if request.method != "POST":
        return _method_not_allowed()
    record = _owned_verification(request, verification_id)
    if _parse_json(request).get("background"):
        verifier.enqueue_check(record.id)
        return JsonResponse({"verification": verification_to_payload(record), "queued": True}, status=202)
    record = verifier.check(record.id)
    return JsonResponse({"verification": verification_to_payload(record)})


@csrf_exempt
@login_required
@pipeline_errors
def verification_force(request: HttpRequest, verification_id: str) -> JsonResponse:
    if staff_error := _require_staff(request):
        return staff_error
    if request.method != "POST":
        return _method_not_allowed()
    record = verifier.force_verify(get_object_or_404(DomainVerification, id=verification_id).id, actor=request.user)
    return JsonResponse({"verification": verification_to_payload(record)})


@csrf_exempt
@login_required
@pipeline_errors
def draft_detail(request: HttpRequest) -> JsonResponse:
    owner_id = request.user.pk
    if request.method == "PUT":
        payload = _parse_json(request)
        if "payload" not in payload:
            raise ValidationFailure("payload is required", errors=["payload: required"])
        drafts.save(owner_id, payload.get("step"), payload.get("payload"))
        if payload.get("flush"):
            drafts.flush(owner_id)
        return JsonResponse({"accepted": True}, status=202)
    if request.method == "DELETE":
        return JsonResponse({"cleared": drafts.clear(owner_id)})
    if request.method != "GET":
        return _method_not_allowed()
    drafts.flush(owner_id)
    draft = drafts.load(owner_id)
    if draft is None:
        return JsonResponse({"error": "no draft"}, status=404)
    return JsonResponse({"draft": {**draft, "saved_at": _iso(draft["saved_at"])}})


@csrf_exempt
@login_required
def draft_peek(request: HttpRequest) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse({"draft": drafts.peek(request.user.pk)})


@csrf_exempt
@login_required
@pipeline_errors
def review_approve(request: HttpRequest, app_id: str) -> JsonResponse:
    if staff_error := _require_staff(request):
        return staff_error
    if request.method != "POST":
        return _method_not_allowed()
    app = publication.approve(get_object_or_404(App, id=app_id).id, actor=request.user)
    return JsonResponse({"app": app_to_payload(app)})


@csrf_exempt
@login_required
@pipeline_errors
def review_reject(request: HttpRequest, app_id: str) -> JsonResponse:
    if staff_error := _require_staff(request):
        return staff_error
    if request.method != "POST":
        return _method_not_allowed()
    payload = _parse_json(request)
    app = publication.reject(get_object_or_404(App, id=app_id).id, payload.get("reason"), actor=request.user)
    return JsonResponse({"app": app_to_payload(app)})


@csrf_exempt
@login_required
@pipeline_errors
def platform_settings(request: HttpRequest) -> JsonResponse:
    if request.method == "PATCH":
        if staff_error := _require_staff(request):
            return staff_error
        payload = _parse_json(request)
        row = update_platform_settings(
            actor=request.user,
            review_mode=payload.get("review_mode"),
            bypass_dns=payload.get("bypass_dns"),
            bypass_build=payload.get("bypass_build"),
        )
        return JsonResponse({"settings": platform_settings_to_payload(row)})
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse({"settings": platform_settings_to_payload(get_platform_settings())})


@csrf_exempt
@login_required
@pipeline_errors
def events_feed(request: HttpRequest) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    try:
        since = int(request.GET.get("since") or 0)
        limit = int(request.GET.get("limit") or EVENTS_PAGE_LIMIT)
    except ValueError as exc:
        raise ValidationFailure("since and limit must be integers", errors=["since/limit: not an integer"]) from exc
    if since < 0 or not 1 <= limit <= EVENTS_PAGE_LIMIT:
        raise ValidationFailure(
            f"since must be >= 0 and limit between 1 and {EVENTS_PAGE_LIMIT}",
            errors=[f"since: {since}", f"limit: {limit}"],
        )
    audience = request.GET.get("audience") or "owner"
    if audience == "operators":
        if staff_error := _require_staff(request):
            return staff_error
        events = PipelineEvent.objects.filter(audience="operators")
    else:
        events = PipelineEvent.objects.filter(owner=request.user, audience="owner")
    subject_id = request.GET.get("subject_id")
    if subject_id:
        try:
            events = events.filter(subject_id=uuid.UUID(subject_id))
        except ValueError as exc:
            raise ValidationFailure("subject_id must be a UUID", errors=["subject_id: not a UUID"]) from exc
    if request.GET.get("unread") in ("1", "true"):
        events = events.filter(read_at__isnull=True)
    page = list(events.filter(id__gt=since).order_by("id")[:limit])
    return JsonResponse(
        {
            "events": [event_to_payload(event) for event in page],
            "next_since": page[-1].id if page else since,
        }
    )


@csrf_exempt
@login_required
def events_unread_count(request: HttpRequest) -> JsonResponse:
    if request.method != "GET":
        return _method_not_allowed()
    return JsonResponse({"unread": unread_count(request.user.pk)})


@csrf_exempt
@login_required
def event_mark_read(request: HttpRequest, event_id: int) -> JsonResponse:
    if request.method not in ("POST", "PATCH"):
        return _method_not_allowed()
    event = mark_read(request.user.pk, event_id)
    if event is None:
        return JsonResponse({"error": "not found"}, status=404)
    return JsonResponse({"event": event_to_payload(event), "unread": unread_count(request.user.pk)})


@csrf_exempt
@login_required
def events_mark_all_read(request: HttpRequest) -> JsonResponse:
    if request.method not in ("POST", "PATCH"):
        return _method_not_allowed()
    return JsonResponse({"marked": mark_all_read(request.user.pk), "unread": 0})
