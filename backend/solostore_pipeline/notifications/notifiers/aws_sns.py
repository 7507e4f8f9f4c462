import json
from typing import Any, Dict

import boto3


class AwsSnsNotifier:
    notifier_type = "aws_sns"

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    def notify(self, event: Dict[str, Any]):
        topic_arn = str(self.config.get("topic_arn") or "").strip()
        if not topic_arn:
            return
        region = str(self.config.get("region") or "").strip()
        prefix = str(self.config.get("subject_prefix") or "").strip()
        client = boto3.client("sns", region_name=region) if region else boto3.client("sns")
        subject = f"{prefix} {event.get('kind', 'event')} {event.get('status', '')}".strip()
        attrs = {
            "kind": {"DataType": "String", "StringValue": str(event.get("kind") or "")},
            "audience": {"DataType": "String", "StringValue": str(event.get("audience") or "owner")},
            "owner_id": {"DataType": "String", "StringValue": str(event.get("owner_id") or "")},
        }
        client.publish(
            TopicArn=topic_arn,
            Subject=subject[:100],
            Message=json.dumps(event, default=str),
            MessageAttributes=attrs,
        )
