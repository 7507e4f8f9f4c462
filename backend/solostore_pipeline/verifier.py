import logging
import re
import secrets
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import challenges
from .errors import AlreadyVerified, ForceVerifyDisabled, InUse, InvalidDomain, VerificationFailed
from .jobs import dispatch_on_commit
from .models import DomainVerification
from .platform_config import force_verify_enabled

logger = logging.getLogger(__name__)

METHODS = ("dns_txt", "file")
APP_RELEASED_STATUSES = ("rejected", "unpublished")

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def normalize_domain(value: Any) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        raise InvalidDomain("domain is required", errors=["domain: required"])
    if "://" in raw:
        raw = urlsplit(raw).hostname or ""
    else:
        raw = raw.split("/", 1)[0].split("@")[-1].split(":", 1)[0]
    raw = raw.rstrip(".")
    try:
        raw = raw.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise InvalidDomain(f"invalid domain: {value}", errors=[f"domain: {value!r}"]) from exc
    labels = raw.split(".")
    if (
        len(raw) > 253
        or len(labels) < 2
        or not all(_LABEL_RE.match(label) for label in labels)
        or labels[-1].isdigit()
    ):
        raise InvalidDomain(f"invalid domain: {value}", errors=[f"domain: {value!r}"])
    return raw


def new_challenge_token() -> str:
    return secrets.token_urlsafe(32)


def instructions_for(record: DomainVerification) -> Dict[str, Any]:
    if record.method == "file":
        return {
            "method": "file",
            "file_path": settings.PIPELINE_VERIFICATION_FILE_PATH,
            "file_url": challenges.verification_file_url(record.domain),
            "file_contents": record.challenge_token,
        }
    return {
        "method": "dns_txt",
        "record_type": "TXT",
        "record_name": challenges.dns_record_name(record.domain),
        "record_value": challenges.dns_record_value(record.challenge_token),
    }


def find_verified_for(owner, domain: str) -> Optional[DomainVerification]:
    return (
        DomainVerification.objects.filter(owner=owner, domain=domain, status="verified")
        .order_by("-verified_at")
        .first()
    )


def initiate(owner, domain: Any, method: str = "dns_txt") -> Tuple[DomainVerification, Dict[str, Any]]:
    method = str(method or "dns_txt").strip().lower()
    if method not in METHODS:
        raise InvalidDomain(f"unknown verification method: {method}", errors=[f"method: {method!r}"])
    normalized = normalize_domain(domain)
    if find_verified_for(owner, normalized):
        raise AlreadyVerified(f"{normalized} is already verified", domain=normalized)
    record = DomainVerification.objects.create(
        owner=owner,
        domain=normalized,
        method=method,
        challenge_token=new_challenge_token(),
    )
    logger.info("domain verification initiated id=%s domain=%s method=%s", record.id, normalized, method)
    return record, instructions_for(record)


def _lookup(record: DomainVerification) -> Tuple[bool, str]:
    try:
        if record.method == "file":
            matched = challenges.file_matches(record.domain, record.challenge_token)
        else:
            matched = challenges.dns_txt_matches(record.domain, record.challenge_token)
    except challenges.ChallengeLookupError as exc:
        return False, str(exc)
    if not matched:
        return False, "challenge value not found"
    return True, ""


def check(verification_id) -> DomainVerification:
    record = DomainVerification.objects.get(pk=verification_id)
    if record.is_verified:
        return record
    # The lookup runs outside the lock; only the final write is serialized.
    matched, error = _lookup(record)
    now = timezone.now()
    with transaction.atomic():
        locked = DomainVerification.objects.select_for_update().get(pk=record.pk)
        locked.last_checked_at = now
        if locked.is_verified:
            locked.save(update_fields=["last_checked_at", "updated_at"])
            return locked
        if matched:
            locked.status = "verified"
            locked.verified_at = now
            locked.verified_via = "check"
            locked.last_error = ""
        else:
            locked.status = "failed"
            locked.last_error = error
        locked.save(update_fields=["status", "verified_at", "verified_via", "last_error", "last_checked_at", "updated_at"])
    if not matched:
        logger.info("domain verification failed id=%s domain=%s error=%s", locked.id, locked.domain, error)
        raise VerificationFailed(error, verification_id=str(locked.id), domain=locked.domain)
    logger.info("domain verified id=%s domain=%s", locked.id, locked.domain)
    return locked


def enqueue_check(verification_id) -> None:
    dispatch_on_commit("solostore_pipeline.worker_tasks.check_domain_verification", str(verification_id))


def force_verify(verification_id, actor=None) -> DomainVerification:
    if not force_verify_enabled():
        raise ForceVerifyDisabled("force verification is disabled", verification_id=str(verification_id))
    with transaction.atomic():
        locked = DomainVerification.objects.select_for_update().get(pk=verification_id)
        if locked.is_verified:
            return locked
        locked.status = "verified"
        locked.verified_at = timezone.now()
        locked.verified_via = "force"
        locked.last_error = ""
        locked.save(update_fields=["status", "verified_at", "verified_via", "last_error", "updated_at"])
    logger.warning(
        "domain force-verified id=%s domain=%s by=%s", locked.id, locked.domain, getattr(actor, "pk", None)
    )
    return locked


def delete_verification(verification_id) -> None:
    with transaction.atomic():
        record = DomainVerification.objects.select_for_update().get(pk=verification_id)
        blocking = list(
            record.apps.exclude(status__in=APP_RELEASED_STATUSES).values_list("id", flat=True)
        )
        if blocking:
            raise InUse(
                f"{record.domain} is referenced by {len(blocking)} app(s)",
                verification_id=str(record.id),
                app_ids=[str(app_id) for app_id in blocking],
            )
        record.delete()
    logger.info("domain verification deleted id=%s", verification_id)
