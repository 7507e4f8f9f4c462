import logging
from typing import Any, Dict, List

from django.conf import settings

from .notifiers.aws_sns import AwsSnsNotifier
from .notifiers.discord import DiscordNotifier

logger = logging.getLogger(__name__)

DEFAULT_AUDIENCES = ("owner", "operators")


class NotifierRegistry:
    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    def list_enabled_notifiers(self, audience: str = "owner"):
        notifications = self.config.get("notifications") if isinstance(self.config.get("notifications"), dict) else {}
        if notifications.get("enabled", True) is False:
            return []
        enabled = []
        for channel in notifications.get("channels") or []:
            if not isinstance(channel, dict):
                continue
            if channel.get("enabled", True) is False:
                continue
            ctype = str(channel.get("type") or "").strip().lower()
            channel_cfg = channel.get(ctype) if isinstance(channel.get(ctype), dict) else {}
            audiences = channel_cfg.get("audiences") or DEFAULT_AUDIENCES
            if audience not in audiences:
                continue
            if ctype == "discord":
                webhook = str(channel_cfg.get("webhook_url") or "").strip()
                if webhook:
                    enabled.append(DiscordNotifier(channel_cfg, webhook))
            elif ctype == "aws_sns":
                if channel_cfg.get("topic_arn"):
                    enabled.append(AwsSnsNotifier(channel_cfg))
        return enabled

    def notify_event(self, event: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        for notifier in self.list_enabled_notifiers(str(event.get("audience") or "owner")):
            try:
                notifier.notify(event)
            except Exception as exc:
                errors.append(f"{getattr(notifier, 'notifier_type', 'unknown')}: {exc.__class__.__name__}")
        if errors:
            logger.warning(
                "notification fan-out failed kind=%s subject=%s errors=%s",
                event.get("kind"),
                event.get("subject_id"),
                errors,
            )
        return errors


def get_notifier_registry() -> NotifierRegistry:
    return NotifierRegistry(getattr(settings, "PIPELINE_NOTIFICATIONS", {}))
