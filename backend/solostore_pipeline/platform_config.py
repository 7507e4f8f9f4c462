import logging
from typing import Any, Dict, Optional

from .errors import ValidationFailure
from .models import PlatformSettings

logger = logging.getLogger(__name__)

REVIEW_MODES = {"auto", "manual"}


def get_platform_settings() -> PlatformSettings:
    settings_row, _created = PlatformSettings.objects.get_or_create(pk=1)
    return settings_row


def current_review_mode() -> str:
    return get_platform_settings().review_mode


def force_verify_enabled() -> bool:
    return bool(get_platform_settings().bypass_dns)


def build_bypass_enabled() -> bool:
    return bool(get_platform_settings().bypass_build)


def update_platform_settings(
    *,
    actor=None,
    review_mode: Optional[str] = None,
    bypass_dns: Optional[bool] = None,
    bypass_build: Optional[bool] = None,
) -> PlatformSettings:
    settings_row = get_platform_settings()
    update_fields = ["updated_at", "updated_by"]
    if review_mode is not None:
        mode = str(review_mode).strip().lower()
        if mode not in REVIEW_MODES:
            raise ValidationFailure("review_mode must be auto or manual", errors=[f"review_mode: {review_mode!r}"])
        settings_row.review_mode = mode
        update_fields.append("review_mode")
    if bypass_dns is not None:
        if not isinstance(bypass_dns, bool):
            raise ValidationFailure("bypass_dns must be a boolean", errors=[f"bypass_dns: {bypass_dns!r}"])
        settings_row.bypass_dns = bypass_dns
        update_fields.append("bypass_dns")
    if bypass_build is not None:
        if not isinstance(bypass_build, bool):
            raise ValidationFailure("bypass_build must be a boolean", errors=[f"bypass_build: {bypass_build!r}"])
        settings_row.bypass_build = bypass_build
        update_fields.append("bypass_build")
    settings_row.updated_by = actor if getattr(actor, "pk", None) else None
    settings_row.save(update_fields=update_fields)
    logger.info(
        "platform settings updated review_mode=%s bypass_dns=%s bypass_build=%s by=%s",
        settings_row.review_mode,
        settings_row.bypass_dns,
        settings_row.bypass_build,
        getattr(actor, "pk", None),
    )
    return settings_row


def platform_settings_to_payload(settings_row: PlatformSettings) -> Dict[str, Any]:
    return {
        "review_mode": settings_row.review_mode,
        "bypass_dns": settings_row.bypass_dns,
        "bypass_build": settings_row.bypass_build,
        "updated_at": settings_row.updated_at.isoformat() if settings_row.updated_at else None,
    }
