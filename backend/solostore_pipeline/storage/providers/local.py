import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


def _safe_key(key: str) -> Path:
    parts = [re.sub(r"[^a-zA-Z0-9._-]+", "-", part) for part in str(key or "").split("/") if part not in ("", ".", "..")]
    if not parts:
        raise ValueError("storage key is required")
    return Path(*parts)


class LocalStorageProvider:
    provider_type = "local"

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        self.base_path = Path(
            str(self.config.get("base_path") or os.environ.get("PIPELINE_STORAGE_LOCAL_PATH") or "/tmp/solostore-pipeline")
        )

    def _path(self, key: str) -> Path:
        return self.base_path / _safe_key(key)

    def put_bytes(self, *, key: str, data: bytes, content_type: str) -> Dict[str, Any]:
        full_path = self._path(key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        # Readers never observe a partially written object.
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=str(full_path.parent))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, full_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return {
            "provider": "local",
            "key": str(_safe_key(key)),
            "path": str(full_path),
            "content_type": content_type,
            "size_bytes": len(data),
        }

    def get_bytes(self, key: str) -> Optional[bytes]:
        full_path = self._path(key)
        if not full_path.exists():
            return None
        return full_path.read_bytes()

    def delete(self, key: str) -> None:
        full_path = self._path(key)
        if full_path.exists():
            full_path.unlink()

    def permanent_reference(self, metadata: Dict[str, Any]) -> str:
        return f"local://{metadata.get('key') or ''}"
