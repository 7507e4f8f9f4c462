import logging
import time
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from .models import NON_TERMINAL_BUILD_STATUSES, TERMINAL_BUILD_STATUSES, App, BuildJob, PipelineEvent
from .notifications import get_notifier_registry

logger = logging.getLogger(__name__)

REVIEW_RELEVANT_APP_STATUSES = ("pending_review", "published", "rejected", "unpublished")
STAGE_RANK = {status: rank for rank, status in enumerate(NON_TERMINAL_BUILD_STATUSES)}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def event_to_payload(event: PipelineEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "owner_id": event.owner_id,
        "audience": event.audience,
        "kind": event.kind,
        "subject_type": event.subject_type,
        "subject_id": str(event.subject_id),
        "sequence": event.sequence,
        "status": event.status,
        "progress": event.progress,
        "payload": event.payload_json or {},
        "read_at": _iso(event.read_at),
        "created_at": _iso(event.created_at),
    }


def _fan_out(events: List[PipelineEvent]) -> None:
    try:
        registry = get_notifier_registry()
        for event in events:
            registry.notify_event(event_to_payload(event))
    except Exception:
        logger.exception("notification fan-out raised for %d event(s)", len(events))


def notify(owner_id, event: Dict[str, Any]) -> List[PipelineEvent]:
    """Record a push notification for ``owner_id`` and deliver it after commit.

    ``event`` carries ``kind``, ``subject_type``, ``subject_id``, ``sequence``,
    ``status`` and optionally ``progress``, ``payload`` and ``operators``.
    When ``operators`` is true, a second copy is addressed to the operator
    audience with the same sequence.
    """
    audiences = ["owner"]
    if event.get("operators"):
        audiences.append("operators")
    rows = [
        PipelineEvent.objects.create(
            owner_id=owner_id,
            audience=audience,
            kind=event["kind"],
            subject_type=event["subject_type"],
            subject_id=event["subject_id"],
            sequence=event["sequence"],
            status=event["status"],
            progress=event.get("progress"),
            payload_json=event.get("payload") or {},
        )
        for audience in audiences
    ]
    transaction.on_commit(lambda: _fan_out(rows))
    return rows


def next_sequence(subject_type: str, subject_id) -> int:
    current = PipelineEvent.objects.filter(subject_type=subject_type, subject_id=subject_id).aggregate(
        value=Max("sequence")
    )["value"]
    return (current or 0) + 1


def emit_build_event(job: BuildJob, kind: str = "build.status") -> List[PipelineEvent]:
    # BuildJob.revision is bumped by every compare-and-swap write, so it
    # orders this job's events without another counter.
    return notify(
        job.app.owner_id,
        {
            "kind": kind,
            "subject_type": "build",
            "subject_id": job.id,
            "sequence": job.revision,
            "status": job.status,
            "progress": job.progress,
            "payload": {
                "app_id": str(job.app_id),
                "app_name": job.app.name,
                "error_code": job.error_code,
                "error_message": job.error_message,
                "artifact_ref": job.artifact_ref,
                "log": (job.logs or [""])[-1],
            },
        },
    )


def emit_app_event(app: App, previous_status: str) -> List[PipelineEvent]:
    return notify(
        app.owner_id,
        {
            "kind": "app.status",
            "subject_type": "app",
            "subject_id": app.id,
            "sequence": next_sequence("app", app.id),
            "status": app.status,
            "operators": app.status in REVIEW_RELEVANT_APP_STATUSES,
            "payload": {
                "app_name": app.name,
                "previous_status": previous_status,
                "rejection_reason": app.rejection_reason,
                "package_artifact_ref": app.package_artifact_ref,
            },
        },
    )


def _owner_inbox(owner_id):
    return PipelineEvent.objects.filter(owner_id=owner_id, audience="owner")


def unread_count(owner_id) -> int:
    return _owner_inbox(owner_id).filter(read_at__isnull=True).count()


def mark_read(owner_id, event_id) -> Optional[PipelineEvent]:
    """Mark one of the owner's events read. Returns None if the owner has no such event."""
    event = _owner_inbox(owner_id).filter(pk=event_id).first()
    if event is not None and event.read_at is None:
        event.read_at = timezone.now()
        event.save(update_fields=["read_at"])
    return event


def mark_all_read(owner_id) -> int:
    return _owner_inbox(owner_id).filter(read_at__isnull=True).update(read_at=timezone.now())


def build_status_payload(job: BuildJob) -> Dict[str, Any]:
    terminal = job.status in TERMINAL_BUILD_STATUSES
    return {
        "id": str(job.id),
        "app_id": str(job.app_id),
        "status": job.status,
        "progress": job.progress,
        "logs": list(job.logs or []),
        "error_code": job.error_code or None,
        "error_message": job.error_message or None,
        "artifact_ref": job.artifact_ref or None,
        "artifact_size_bytes": job.artifact_size_bytes,
        "artifact_sha256": job.artifact_sha256 or None,
        "sequence": job.revision,
        "bypassed": job.bypassed,
        "terminal": terminal,
        "poll_after_ms": None if terminal else settings.PIPELINE_POLL_INTERVAL_MS,
        "started_at": _iso(job.started_at),
        "finished_at": _iso(job.finished_at),
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
    }


class StatusTracker:
    """Observer-side view of one build job, fed by push events or polls.

    Updates are applied by state value: a terminal status is final, stale
    sequences and stage regressions are ignored, and progress never drops.
    """

    def __init__(self):
        self.status: Optional[str] = None
        self.progress = 0
        self.sequence: Optional[int] = None
        self.observed: List[int] = []

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_BUILD_STATUSES

    def snapshot(self) -> Dict[str, Any]:
        return {"status": self.status, "progress": self.progress, "sequence": self.sequence, "terminal": self.terminal}

    def apply(self, update: Dict[str, Any]) -> Dict[str, Any]:
        status = update.get("status")
        sequence = update.get("sequence")
        if self.terminal:
            return self.snapshot()
        if sequence is not None and self.sequence is not None and sequence <= self.sequence:
            return self.snapshot()
        reported = update.get("progress")
        if status == "completed":
            self.status = status
            self.progress = 100
        elif status in TERMINAL_BUILD_STATUSES or status in STAGE_RANK:
            if status not in STAGE_RANK or self.status is None or STAGE_RANK[status] >= STAGE_RANK[self.status]:
                self.status = status
            if reported is not None:
                self.progress = min(max(self.progress, int(reported)), 99)
        if sequence is not None:
            self.sequence = sequence
        self.observed.append(self.progress)
        return self.snapshot()


def poll_build_status(
    fetch: Callable[[], Dict[str, Any]],
    interval_ms: Optional[int] = None,
    max_wait_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_update: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> Dict[str, Any]:
    """Poll ``fetch`` until the job is terminal or ``max_wait_seconds`` elapses.

    Returns the tracker snapshot; ``terminal`` is false only on timeout.
    """
    tracker = StatusTracker()
    default_interval = interval_ms or settings.PIPELINE_POLL_INTERVAL_MS
    waited = 0.0
    while True:
        payload = fetch()
        snapshot = tracker.apply(payload)
        if on_update:
            on_update(snapshot)
        if tracker.terminal:
            return snapshot
        delay = (payload.get("poll_after_ms") or default_interval) / 1000.0
        if max_wait_seconds is not None and waited + delay > max_wait_seconds:
            logger.info("stopped polling after %.1fs status=%s", waited, tracker.status)
            return snapshot
        sleep(delay)
        waited += delay
