import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from django.db import transaction
from django.utils import timezone

from . import drafts
from .errors import (
    BuildNotCompleted,
    DomainNotVerified,
    InvalidDomain,
    InvalidTransition,
    ValidationFailure,
)
from .models import NON_TERMINAL_BUILD_STATUSES, App, BuildJob
from .platform_config import current_review_mode
from .schemas import APP_PAYLOAD_SCHEMA, validate_payload
from .status_sync import emit_app_event
from .verifier import find_verified_for, normalize_domain

logger = logging.getLogger(__name__)

# (state, action) -> allowed target states. Submit picks its target from the
# review mode read at submit time.
TRANSITIONS: Dict[Tuple[str, str], Tuple[str, ...]] = {
    ("draft", "start_build"): ("building",),
    ("rejected", "start_build"): ("building",),
    ("building", "build_completed"): ("draft",),
    ("building", "build_failed"): ("draft",),
    ("draft", "submit"): ("pending_review", "published"),
    ("pending_review", "approve"): ("published",),
    ("pending_review", "reject"): ("rejected",),
    ("published", "unpublish"): ("unpublished",),
}

APP_CORE_FIELDS = ("name", "package_name", "website_url")


def allowed_targets(state: str, action: str) -> Tuple[str, ...]:
    targets = TRANSITIONS.get((state, action))
    if not targets:
        raise InvalidTransition(state, action)
    return targets


def check_invariants(app: App) -> List[str]:
    violations = []
    if app.status == "published":
        if not app.package_artifact_ref:
            violations.append("published app has no package artifact")
        verification = app.domain_verification
        if verification is None or not verification.is_verified:
            violations.append("published app has no verified domain")
    if app.pk:
        active = BuildJob.objects.filter(app_id=app.pk, status__in=NON_TERMINAL_BUILD_STATUSES).count()
        if app.status == "building" and active != 1:
            violations.append(f"building app has {active} active build jobs")
        if app.status != "building" and active:
            violations.append(f"{app.status} app has {active} active build jobs")
    if app.rejection_reason and app.status != "rejected":
        violations.append(f"{app.status} app carries a rejection reason")
    return violations


def _locked_app(app_id) -> App:
    return App.objects.select_for_update().get(pk=app_id)


def _apply(app: App, action: str, target: str, **changes: Any) -> App:
    if target not in allowed_targets(app.status, action):
        raise InvalidTransition(app.status, action, f"cannot {action} from {app.status} to {target}")
    previous = app.status
    snapshot = {field: getattr(app, field) for field in changes}
    app.status = target
    for field, value in changes.items():
        setattr(app, field, value)
    violations = check_invariants(app)
    if violations:
        app.status = previous
        for field, value in snapshot.items():
            setattr(app, field, value)
        raise InvalidTransition(previous, action, "; ".join(violations))
    app.save()
    emit_app_event(app, previous)
    logger.info("app %s %s: %s -> %s", app.id, action, previous, target)
    return app


def _app_domain(website_url: str) -> Optional[str]:
    try:
        return normalize_domain(urlsplit(website_url).hostname or "")
    except InvalidDomain:
        return None


def resolve_verified_domain(app: App):
    """Return the verified record backing ``app``, linking one by host if needed."""
    verification = app.domain_verification
    if verification is not None and verification.is_verified:
        return verification
    domain = _app_domain(app.website_url)
    if not domain:
        return None
    verification = find_verified_for(app.owner_id, domain)
    if verification is not None:
        app.domain_verification = verification
    return verification


def create_app(owner, payload: Dict[str, Any]) -> App:
    errors = validate_payload(payload, APP_PAYLOAD_SCHEMA)
    if errors:
        raise ValidationFailure("invalid app payload", errors=errors)
    domain = _app_domain(payload["website_url"])
    if not domain:
        raise InvalidDomain(f"invalid website url: {payload['website_url']}", errors=["website_url: invalid host"])
    config = {key: value for key, value in payload.items() if key not in APP_CORE_FIELDS}
    with transaction.atomic():
        app = App.objects.create(
            owner=owner,
            name=payload["name"].strip(),
            package_name=payload["package_name"].strip(),
            website_url=payload["website_url"].strip(),
            config_json=config,
            domain_verification=find_verified_for(owner, domain),
        )
        emit_app_event(app, "")
    drafts.clear(owner.pk)
    logger.info("app created id=%s owner=%s domain=%s", app.id, owner.pk, domain)
    return app


def delete_app(app_id) -> None:
    with transaction.atomic():
        app = _locked_app(app_id)
        if app.status == "building":
            raise InvalidTransition(app.status, "delete")
        app.delete()
    logger.info("app deleted id=%s", app_id)


def mark_build_started(app: App, job: BuildJob) -> App:
    return _apply(
        app,
        "start_build",
        "building",
        latest_build_job=job,
        package_artifact_ref="",
        package_size_bytes=None,
        package_sha256="",
        rejection_reason="",
    )


def _build_owns_app(app: App, job: BuildJob) -> bool:
    if app.status != "building" or app.latest_build_job_id != job.id:
        logger.warning("build %s finished but app %s is %s", job.id, app.id, app.status)
        return False
    return True


def mark_build_completed(app: App, job: BuildJob) -> App:
    if not _build_owns_app(app, job):
        return app
    return _apply(
        app,
        "build_completed",
        "draft",
        package_artifact_ref=job.artifact_ref,
        package_size_bytes=job.artifact_size_bytes,
        package_sha256=job.artifact_sha256,
    )


def mark_build_failed(app: App, job: BuildJob) -> App:
    if not _build_owns_app(app, job):
        return app
    return _apply(app, "build_failed", "draft")


def submit(app_id) -> App:
    with transaction.atomic():
        app = _locked_app(app_id)
        allowed_targets(app.status, "submit")
        job = app.latest_build_job
        if job is None or job.status != "completed" or not app.package_artifact_ref:
            raise BuildNotCompleted("the latest build has not completed", app_id=str(app.id))
        verification = resolve_verified_domain(app)
        if verification is None:
            raise DomainNotVerified("the app domain is not verified", app_id=str(app.id))
        mode = current_review_mode()
        if mode == "auto":
            return _apply(app, "submit", "published", published_at=timezone.now())
        return _apply(app, "submit", "pending_review")


def approve(app_id, actor=None) -> App:
    with transaction.atomic():
        app = _locked_app(app_id)
        app = _apply(app, "approve", "published", published_at=timezone.now())
    logger.info("app %s approved by %s", app.id, getattr(actor, "pk", None))
    return app


def reject(app_id, reason: str, actor=None) -> App:
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationFailure("a rejection reason is required", errors=["reason: required"])
    with transaction.atomic():
        app = _locked_app(app_id)
        app = _apply(app, "reject", "rejected", rejection_reason=reason)
    logger.info("app %s rejected by %s", app.id, getattr(actor, "pk", None))
    return app


def unpublish(app_id, actor=None) -> App:
    with transaction.atomic():
        app = _locked_app(app_id)
        app = _apply(app, "unpublish", "unpublished")
    logger.info("app %s unpublished by %s", app.id, getattr(actor, "pk", None))
    return app
