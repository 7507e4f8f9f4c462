import os
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError


class S3StorageProvider:
    provider_type = "s3"

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        self.bucket = str(self.config.get("bucket") or "").strip()
        self.region = str(self.config.get("region") or os.environ.get("AWS_DEFAULT_REGION") or os.environ.get("AWS_REGION") or "").strip()
        self.prefix = str(self.config.get("prefix") or "solostore").strip().strip("/")
        self.kms_key_id = str(self.config.get("kms_key_id") or "").strip()
        self.acl = str(self.config.get("acl") or "private").strip() or "private"
        self.client = boto3.client("s3", region_name=self.region) if self.region else boto3.client("s3")

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{str(key).lstrip('/')}"

    def put_bytes(self, *, key: str, data: bytes, content_type: str) -> Dict[str, Any]:
        if not self.bucket:
            raise RuntimeError("s3 bucket is required")
        s3_key = self._key(key)
        extra: Dict[str, Any] = {"ContentType": content_type}
        if self.kms_key_id:
            extra["ServerSideEncryption"] = "aws:kms"
            extra["SSEKMSKeyId"] = self.kms_key_id
        self.client.put_object(Bucket=self.bucket, Key=s3_key, Body=data, ACL=self.acl, **extra)
        return {
            "provider": "s3",
            "bucket": self.bucket,
            "region": self.region,
            "key": s3_key,
            "content_type": content_type,
            "size_bytes": len(data),
        }

    def get_bytes(self, key: str) -> Optional[bytes]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise
        return response["Body"].read()

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=self._key(key))

    def permanent_reference(self, metadata: Dict[str, Any]) -> str:
        bucket = metadata.get("bucket") or self.bucket
        return f"s3://{bucket}/{metadata.get('key') or ''}"
