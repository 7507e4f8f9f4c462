import logging
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from . import packaging, publication
from .errors import BuildInProgress, DomainNotVerified, InvalidTransition
from .jobs import dispatch_on_commit
from .models import NON_TERMINAL_BUILD_STATUSES, TERMINAL_BUILD_STATUSES, App, BuildJob
from .platform_config import build_bypass_enabled
from .status_sync import build_status_payload, emit_build_event
from .storage import get_storage_registry

logger = logging.getLogger(__name__)

RUN_TASK = "solostore_pipeline.worker_tasks.run_build_job"


def _log_line(message: str) -> str:
    return f"{timezone.now().isoformat()} {message}"


def _cas(job: BuildJob, logs: Optional[List[str]] = None, **changes: Any) -> bool:
    """Write ``changes`` only if nobody touched the job since it was read.

    Terminal jobs are never written. Returns False when the write was
    superseded; the in-memory job is then stale and must be discarded.
    """
    now = timezone.now()
    if "progress" in changes:
        changes["progress"] = max(job.progress, min(int(changes["progress"]), 100))
    if logs:
        changes["logs"] = list(job.logs or []) + [_log_line(line) for line in logs]
    updated = BuildJob.objects.filter(
        pk=job.pk, revision=job.revision, status__in=NON_TERMINAL_BUILD_STATUSES
    ).update(revision=F("revision") + 1, updated_at=now, **changes)
    if not updated:
        return False
    for field, value in changes.items():
        setattr(job, field, value)
    job.revision += 1
    job.updated_at = now
    return True


def _progress(job: BuildJob, progress: int, logs: List[str]) -> bool:
    if not _cas(job, logs=logs, progress=progress):
        return False
    emit_build_event(job, kind="build.progress")
    return True


def _advance(job: BuildJob, status: str, progress: int, logs: List[str], **changes: Any) -> bool:
    if not _cas(job, logs=logs, status=status, progress=progress, **changes):
        return False
    emit_build_event(job)
    return True


def _finish(job: BuildJob, status: str, logs: List[str], error_code: str = "", error_message: str = "", **changes) -> bool:
    # App before job, the same lock order start_build uses.
    with transaction.atomic():
        app = App.objects.select_for_update().get(pk=job.app_id)
        if status == "completed":
            changes["progress"] = 100
        if not _cas(
            job,
            logs=logs,
            status=status,
            error_code=error_code,
            error_message=error_message,
            finished_at=timezone.now(),
            **changes,
        ):
            return False
        job.app = app
        emit_build_event(job)
        if status == "completed":
            publication.mark_build_completed(app, job)
        else:
            publication.mark_build_failed(app, job)
    _clear_work(job, keep_package=status == "completed")
    logger.info("build %s finished status=%s error_code=%s", job.id, status, error_code or "-")
    return True


def _terminate(job: BuildJob, error_code: str, message: str) -> bool:
    """Force a non-terminal job to failed, retrying past concurrent stage advances."""
    while True:
        if _finish(job, "failed", [message], error_code=error_code, error_message=message):
            return True
        job.refresh_from_db()
        if job.is_terminal:
            return False


def _record_dispatch(job_id, dispatch_id: str) -> None:
    BuildJob.objects.filter(pk=job_id).update(dispatch_id=dispatch_id)


def start_build(app_id, actor=None) -> BuildJob:
    with transaction.atomic():
        app = App.objects.select_for_update().get(pk=app_id)
        if publication.resolve_verified_domain(app) is None:
            raise DomainNotVerified("the app domain is not verified", app_id=str(app.id))
        active = BuildJob.objects.filter(app=app, status__in=NON_TERMINAL_BUILD_STATUSES).first()
        if active is not None:
            raise BuildInProgress("a build is already running for this app", app_id=str(app.id), job_id=str(active.id))
        publication.allowed_targets(app.status, "start_build")
        bypassed = build_bypass_enabled()
        queued_line = f"Build queued for {app.package_name}"
        if bypassed:
            queued_line += " (bypass_build: packaging and signing are skipped)"
        try:
            with transaction.atomic():
                job = BuildJob.objects.create(
                    app=app,
                    status="queued",
                    progress=0,
                    logs=[_log_line(queued_line)],
                    bypassed=bypassed,
                    requested_by=actor if getattr(actor, "pk", None) else None,
                )
        except IntegrityError as exc:
            raise BuildInProgress("a build is already running for this app", app_id=str(app.id)) from exc
        publication.mark_build_started(app, job)
        job.app = app
        emit_build_event(job)
        dispatch_on_commit(RUN_TASK, str(job.id), on_dispatched=partial(_record_dispatch, job.id))
    logger.info("build %s queued for app %s by %s", job.id, app.id, getattr(actor, "pk", None))
    return job


def _work_key(job: BuildJob, name: str) -> str:
    return f"work/{job.app_id}/{job.id}/{name}"


def _read_work(job: BuildJob, name: str) -> bytes:
    data = get_storage_registry().get_bytes(_work_key(job, name))
    if data is None:
        raise packaging.PackagingError(f"intermediate {name} is missing")
    return data


def _write_work(job: BuildJob, name: str, data: bytes) -> None:
    get_storage_registry().put_bytes(key=_work_key(job, name), data=data, content_type="application/zip")


def _clear_work(job: BuildJob, keep_package: bool = False) -> None:
    registry = get_storage_registry()
    for name in ("unsigned.zip", "signed.zip"):
        registry.delete(_work_key(job, name))
    # A package uploaded by a job that did not complete is never referenced.
    if not keep_package:
        packaging.discard_package(job.app, job)


def _step_queued(job: BuildJob) -> bool:
    return _advance(job, "building", 10, ["Build started"], started_at=timezone.now())


def _step_building(job: BuildJob) -> bool:
    if job.bypassed:
        archive, lines = packaging.placeholder_package(job.app, job)
    else:
        archive, lines = packaging.build_package(job.app, job)
    _write_work(job, "unsigned.zip", archive)
    if not _progress(job, 60, lines):
        return False
    return _advance(job, "signing", 70, ["Signing package"])


def _step_signing(job: BuildJob) -> bool:
    unsigned = _read_work(job, "unsigned.zip")
    if job.bypassed:
        signed, line = unsigned, "Signing skipped (bypass_build is on)"
    else:
        signed, signature = packaging.sign_package(unsigned)
        line = f"Package signed (HMAC-SHA256 {signature[:12]})"
    _write_work(job, "signed.zip", signed)
    if not _progress(job, 80, [line]):
        return False
    return _advance(job, "uploading", 85, ["Uploading package"])


def _step_uploading(job: BuildJob) -> bool:
    stored = packaging.upload_package(job.app, job, _read_work(job, "signed.zip"))
    if not _progress(job, 95, [f"Uploaded {stored['size_bytes']} bytes"]):
        return False
    return _finish(
        job,
        "completed",
        ["Build completed"],
        artifact_ref=stored["reference"],
        artifact_size_bytes=stored["size_bytes"],
        artifact_sha256=stored["sha256"],
    )


STEP_HANDLERS = {
    "queued": _step_queued,
    "building": _step_building,
    "signing": _step_signing,
    "uploading": _step_uploading,
}


def _expired(job: BuildJob, now=None) -> bool:
    now = now or timezone.now()
    return job.created_at + timedelta(seconds=settings.PIPELINE_BUILD_TIMEOUT_SECONDS) < now


def advance_build_job(job_id) -> Optional[str]:
    """Run one stage of the job. Returns the new status, or None if nothing was applied."""
    job = BuildJob.objects.select_related("app").get(pk=job_id)
    if job.is_terminal:
        return None
    if _expired(job):
        if not _terminate(job, "timeout", "Build timed out"):
            return None
        return job.status
    stage = job.status
    try:
        applied = STEP_HANDLERS[stage](job)
    except Exception as exc:
        logger.exception("build %s failed during %s", job.id, stage)
        message = f"{stage} failed: {exc}"
        # A rolled-back terminal write leaves the in-memory revision ahead of the row.
        job.refresh_from_db()
        if job.is_terminal or not _finish(job, "failed", [message], error_code="build_failed", error_message=message):
            return None
        return job.status
    if not applied:
        logger.info("build %s: %s transition superseded, stopping", job.id, stage)
        job.refresh_from_db(fields=["status"])
        _clear_work(job, keep_package=job.status == "completed")
        return None
    return job.status


def run_build_job(job_id) -> Optional[str]:
    status = None
    while True:
        step = advance_build_job(job_id)
        if step is None:
            return status
        status = step
        if status in TERMINAL_BUILD_STATUSES:
            return status


def cancel_build(job_id, actor=None) -> BuildJob:
    job = BuildJob.objects.get(pk=job_id)
    if job.is_terminal:
        raise InvalidTransition(job.status, "cancel")
    who = getattr(actor, "username", None) or "owner"
    if not _terminate(job, "cancelled", f"Build cancelled by {who}"):
        raise InvalidTransition(job.status, "cancel")
    return job


def get_build_status(job_id) -> Dict[str, Any]:
    return build_status_payload(BuildJob.objects.get(pk=job_id))


def fail_stale_builds(now=None) -> List[str]:
    now = now or timezone.now()
    ceiling = now - timedelta(seconds=settings.PIPELINE_BUILD_TIMEOUT_SECONDS)
    failed = []
    for job in BuildJob.objects.filter(status__in=NON_TERMINAL_BUILD_STATUSES, created_at__lt=ceiling):
        if _terminate(job, "timeout", "Build timed out"):
            failed.append(str(job.id))
    if failed:
        logger.warning("timed out %d stale build(s): %s", len(failed), ", ".join(failed))
    return failed
