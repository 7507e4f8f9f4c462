import base64
import binascii
import hashlib
import hmac
import io
import json
import re
import zipfile
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from .models import App, BuildJob
from .storage import get_storage_registry

SIGNATURE_ENTRY = "META-INF/SIGNATURE.json"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]+)*?);base64,(?P<data>.*)$", re.S)
_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}


class PackagingError(Exception):
    pass


def decode_data_url(value: str) -> Optional[Tuple[str, bytes]]:
    """Return ``(mime, bytes)`` for a base64 data URL, or None for plain URLs."""
    match = _DATA_URL_RE.match(str(value or "").strip())
    if not match:
        return None
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise PackagingError("asset is not valid base64") from exc
    return match.group("mime") or "application/octet-stream", data


def _asset_entry(prefix: str, value: str) -> Optional[Tuple[str, bytes]]:
    decoded = decode_data_url(value)
    if decoded is None:
        return None
    mime, data = decoded
    return f"{prefix}.{_EXTENSIONS.get(mime, 'bin')}", data


def web_manifest(app: App, icon_paths: List[str]) -> Dict[str, Any]:
    config = app.config_json or {}
    orientation = config.get("orientation") or "portrait"
    return {
        "name": app.name,
        "short_name": app.name[:12],
        "description": config.get("short_description") or "",
        "start_url": app.website_url,
        "scope": app.website_url,
        "display": "fullscreen" if config.get("is_fullscreen") else "standalone",
        "orientation": "any" if orientation == "both" else orientation,
        "background_color": config.get("splash_color") or "#ffffff",
        "theme_color": config.get("accent_color") or "#15803d",
        "icons": [{"src": path, "sizes": "512x512", "purpose": "any maskable"} for path in icon_paths],
    }


def launcher_config(app: App, job: BuildJob) -> Dict[str, Any]:
    config = app.config_json or {}
    return {
        "package_name": app.package_name,
        "version": config.get("version") or "1.0.0",
        "website_url": app.website_url,
        "category": config.get("category") or "Other",
        "features": {
            "offline": bool(config.get("enable_offline_mode")),
            "push_notifications": bool(config.get("enable_push_notifications")),
            "fullscreen": bool(config.get("is_fullscreen")),
        },
        "build_id": str(job.id),
        "built_at": timezone.now().isoformat(),
    }


def build_package(app: App, job: BuildJob) -> Tuple[bytes, List[str]]:
    """Render the unsigned package archive. Returns ``(archive, log_lines)``."""
    config = app.config_json or {}
    entries: Dict[str, bytes] = {}
    logs: List[str] = []
    icon_paths: List[str] = []
    icon = _asset_entry("icons/icon", config.get("icon") or "")
    if icon:
        entries[icon[0]] = icon[1]
        icon_paths.append(icon[0])
        logs.append(f"Packed icon ({len(icon[1])} bytes)")
    else:
        logs.append("No icon supplied; launcher default will be used")
    graphic = _asset_entry("store/feature-graphic", config.get("feature_graphic") or "")
    if graphic:
        entries[graphic[0]] = graphic[1]
    screenshots = config.get("screenshots") or []
    for index, value in enumerate(screenshots):
        shot = _asset_entry(f"store/screenshot-{index + 1}", value)
        if shot:
            entries[shot[0]] = shot[1]
    if screenshots:
        logs.append(f"Packed {len(screenshots)} screenshot(s)")
    entries["manifest.json"] = json.dumps(web_manifest(app, icon_paths), indent=2, sort_keys=True).encode("utf-8")
    entries["app.json"] = json.dumps(launcher_config(app, job), indent=2, sort_keys=True).encode("utf-8")
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name in sorted(entries):
            archive.writestr(name, entries[name])
    logs.append(f"Rendered package for {app.package_name} with {len(entries)} entries")
    return buffer.getvalue(), logs


def placeholder_package(app: App, job: BuildJob) -> Tuple[bytes, List[str]]:
    """Stand-in archive for builds run with the bypass flag: launcher config only."""
    document = {**launcher_config(app, job), "placeholder": True}
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("app.json", json.dumps(document, indent=2, sort_keys=True))
    return buffer.getvalue(), ["Packaging skipped (bypass_build is on)"]


def _entry_digests(archive: zipfile.ZipFile) -> Dict[str, str]:
    return {
        name: hashlib.sha256(archive.read(name)).hexdigest()
        for name in sorted(archive.namelist())
        if name != SIGNATURE_ENTRY
    }


def sign_package(data: bytes) -> Tuple[bytes, str]:
    """Append an HMAC-SHA256 signature entry. Returns ``(signed_archive, signature)``."""
    key = str(settings.PIPELINE_SIGNING_KEY or "").encode("utf-8")
    if not key:
        raise PackagingError("signing key is not configured")
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        digests = _entry_digests(archive)
    canonical = json.dumps(digests, sort_keys=True, separators=(",", ":")).encode("utf-8")
    signature = hmac.new(key, canonical, hashlib.sha256).hexdigest()
    document = {
        "algorithm": "HMAC-SHA256",
        "key_id": settings.PIPELINE_SIGNING_KEY_ID,
        "entries": digests,
        "signature": signature,
    }
    buffer = io.BytesIO(data)
    with zipfile.ZipFile(buffer, "a", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(SIGNATURE_ENTRY, json.dumps(document, indent=2, sort_keys=True))
    return buffer.getvalue(), signature


def verify_signature(data: bytes) -> bool:
    key = str(settings.PIPELINE_SIGNING_KEY or "").encode("utf-8")
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        if SIGNATURE_ENTRY not in archive.namelist():
            return False
        document = json.loads(archive.read(SIGNATURE_ENTRY))
        digests = _entry_digests(archive)
    if digests != document.get("entries"):
        return False
    canonical = json.dumps(digests, sort_keys=True, separators=(",", ":")).encode("utf-8")
    expected = hmac.new(key, canonical, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, str(document.get("signature") or ""))


def upload_package(app: App, job: BuildJob, data: bytes) -> Dict[str, Any]:
    filename = package_filename(app)
    stored = get_storage_registry().store_package_bytes(
        app_id=str(app.id), job_id=str(job.id), filename=filename, data=data
    )
    stored["sha256"] = hashlib.sha256(data).hexdigest()
    stored["size_bytes"] = len(data)
    return stored


def package_filename(app: App) -> str:
    return f"{app.package_name}.zip"


def discard_package(app: App, job: BuildJob) -> None:
    get_storage_registry().delete_package(app_id=str(app.id), job_id=str(job.id), filename=package_filename(app))
