from typing import Any, Dict

import requests


class DiscordNotifier:
    notifier_type = "discord"

    def __init__(self, config: Dict[str, Any], webhook_url: str):
        self.config = config or {}
        self.webhook_url = webhook_url

    def notify(self, event: Dict[str, Any]):
        kind = event.get("kind") or "event"
        status = event.get("status") or "unknown"
        payload_data = event.get("payload") or {}
        lines = [
            f"[{kind}] {payload_data.get('app_name') or event.get('subject_id')}: {status}",
            f"Subject: {event.get('subject_type')} {event.get('subject_id')} #{event.get('sequence')}",
        ]
        if event.get("progress") is not None:
            lines.append(f"Progress: {event.get('progress')}%")
        reason = payload_data.get("rejection_reason") or payload_data.get("error_message")
        if reason:
            lines.append(f"Reason: {reason}")
        payload: Dict[str, Any] = {
            "content": "\n".join(lines),
        }
        username = str((self.config.get("username") or "")).strip()
        avatar = str((self.config.get("avatar_url") or "")).strip()
        if username:
            payload["username"] = username
        if avatar:
            payload["avatar_url"] = avatar
        response = requests.post(self.webhook_url, json=payload, timeout=10)
        response.raise_for_status()
