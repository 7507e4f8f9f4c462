import logging
from typing import Any, Dict, Optional

from django.conf import settings

from .providers.local import LocalStorageProvider
from .providers.s3 import S3StorageProvider

logger = logging.getLogger(__name__)


def _build_provider(entry: Dict[str, Any]):
    ptype = str(entry.get("type") or "").strip().lower()
    options = entry.get(ptype) or {}
    if ptype == "local":
        return LocalStorageProvider(options)
    if ptype == "s3":
        # An s3 entry without a bucket is a placeholder left by env defaults.
        if not str(options.get("bucket") or "").strip():
            return None
        return S3StorageProvider(options)
    logger.warning("unknown storage provider type %r", ptype)
    return None


def _package_key(app_id: str, job_id: str, filename: str) -> str:
    return f"packages/{app_id}/{job_id}/{filename}"


class StorageProviderRegistry:
    """Routes pipeline blobs (packages, drafts, build work files) to the primary provider."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        storage = self.config.get("storage")
        storage = storage if isinstance(storage, dict) else {}
        self.providers: Dict[str, Any] = {}
        for entry in storage.get("providers") or []:
            name = str(entry.get("name") or "").strip() if isinstance(entry, dict) else ""
            if not name:
                continue
            provider = _build_provider(entry)
            if provider is not None:
                self.providers[name] = provider
        primary = storage.get("primary")
        self.primary_name = str((primary or {}).get("name") or "").strip() if isinstance(primary, dict) else ""
        self._primary = None

    @property
    def primary(self):
        if self._primary is None:
            if self.primary_name in self.providers:
                self._primary = self.providers[self.primary_name]
            elif self.providers:
                fallback = next(iter(self.providers))
                if self.primary_name:
                    logger.warning("storage provider %r not configured; using %r", self.primary_name, fallback)
                self._primary = self.providers[fallback]
            else:
                self._primary = LocalStorageProvider({})
        return self._primary

    def store_package_bytes(self, *, app_id: str, job_id: str, filename: str, data: bytes) -> Dict[str, Any]:
        stored = self.primary.put_bytes(
            key=_package_key(app_id, job_id, filename),
            data=data,
            content_type="application/zip",
        )
        stored["reference"] = self.primary.permanent_reference(stored)
        return stored

    def delete_package(self, *, app_id: str, job_id: str, filename: str) -> None:
        self.primary.delete(_package_key(app_id, job_id, filename))

    def put_bytes(self, *, key: str, data: bytes, content_type: str) -> Dict[str, Any]:
        return self.primary.put_bytes(key=key, data=data, content_type=content_type)

    def get_bytes(self, key: str) -> Optional[bytes]:
        return self.primary.get_bytes(key)

    def delete(self, key: str) -> None:
        self.primary.delete(key)


def get_storage_registry() -> StorageProviderRegistry:
    return StorageProviderRegistry(getattr(settings, "PIPELINE_STORAGE", {}))
