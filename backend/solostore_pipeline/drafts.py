import copy
import hashlib
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

from django.conf import settings
from django.db import connection, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .errors import ValidationFailure
from .models import DraftIndex
from .schemas import DRAFT_PAYLOAD_SCHEMA, validate_payload
from .storage import get_storage_registry

logger = logging.getLogger(__name__)

WIZARD_STEPS = ("website_url", "app_details", "appearance_media", "features", "review")


class _Slot:
    __slots__ = ("pending", "timer", "in_flight")

    def __init__(self):
        self.pending: Optional[Tuple[int, Dict[str, Any]]] = None
        self.timer: Optional[threading.Timer] = None
        self.in_flight = False


class DraftDebouncer:
    """Coalesces rapid saves into one write per owner.

    At most one write per owner runs at a time; an edit that arrives while a
    write is in flight is held and re-armed once that write finishes.
    """

    def __init__(self, write: Callable[[Any, int, Dict[str, Any]], Any], window: Optional[float] = None):
        self._write = write
        self.window = window
        self._cond = threading.Condition()
        self._slots: Dict[Any, _Slot] = {}

    def _window(self) -> float:
        if self.window is not None:
            return self.window
        return float(settings.PIPELINE_DRAFT_DEBOUNCE_SECONDS)

    def _arm(self, owner_id, slot: _Slot) -> None:
        if slot.timer is not None:
            slot.timer.cancel()
        slot.timer = threading.Timer(self._window(), self._fire, args=(owner_id,))
        slot.timer.daemon = True
        slot.timer.start()

    def _release(self, owner_id, slot: _Slot) -> None:
        slot.in_flight = False
        if slot.pending is not None:
            self._arm(owner_id, slot)
        elif self._slots.get(owner_id) is slot:
            del self._slots[owner_id]
        self._cond.notify_all()

    def submit(self, owner_id, step: int, payload: Dict[str, Any]) -> None:
        with self._cond:
            slot = self._slots.setdefault(owner_id, _Slot())
            slot.pending = (step, payload)
            if not slot.in_flight:
                self._arm(owner_id, slot)

    def has_pending(self, owner_id) -> bool:
        with self._cond:
            slot = self._slots.get(owner_id)
            return bool(slot and (slot.pending is not None or slot.in_flight))

    def _take(self, owner_id) -> Optional[Tuple[_Slot, Tuple[int, Dict[str, Any]]]]:
        slot = self._slots.get(owner_id)
        if slot is None or slot.in_flight or slot.pending is None:
            return None
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        pending, slot.pending = slot.pending, None
        slot.in_flight = True
        return slot, pending

    def _fire(self, owner_id) -> None:
        with self._cond:
            taken = self._take(owner_id)
        if taken is None:
            return
        slot, (step, payload) = taken
        try:
            self._write(owner_id, step, payload)
        except Exception:
            logger.exception("debounced draft write failed owner=%s", owner_id)
        finally:
            # Timer threads own their database connection.
            connection.close()
            with self._cond:
                self._release(owner_id, slot)

    def flush(self, owner_id) -> bool:
        """Write the pending edit now. Returns False if nothing was pending."""
        with self._cond:
            slot = self._slots.get(owner_id)
            while slot is not None and slot.in_flight:
                self._cond.wait()
                slot = self._slots.get(owner_id)
            taken = self._take(owner_id)
            if taken is None:
                return False
        slot, (step, payload) = taken
        try:
            self._write(owner_id, step, payload)
        finally:
            with self._cond:
                self._release(owner_id, slot)
        return True

    def discard(self, owner_id) -> None:
        with self._cond:
            slot = self._slots.get(owner_id)
            if slot is None:
                return
            slot.pending = None
            if slot.timer is not None:
                slot.timer.cancel()
                slot.timer = None
            while slot.in_flight:
                self._cond.wait()
            if self._slots.get(owner_id) is slot:
                del self._slots[owner_id]


def _content_key(owner_id, digest: str) -> str:
    return f"drafts/{owner_id}/{digest}.json"


def _domain_of(website_url: str) -> str:
    raw = str(website_url or "").strip()
    if not raw:
        return ""
    if "://" not in raw:
        raw = f"https://{raw}"
    try:
        return (urlsplit(raw).hostname or "")[:253]
    except ValueError:
        return ""


def summarize(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": str(payload.get("name") or "")[:120],
        "domain": _domain_of(payload.get("website_url") or ""),
        "has_icon": bool(payload.get("icon")),
        "has_feature_graphic": bool(payload.get("feature_graphic")),
        "screenshot_count": len(payload.get("screenshots") or []),
    }


def persist(owner_id, step: int, payload: Dict[str, Any]) -> DraftIndex:
    """Write both tiers now: content blob first, then the index row."""
    saved_at = timezone.now()
    body = json.dumps(
        {"step": step, "payload": payload, "saved_at": saved_at.isoformat()},
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")
    digest = hashlib.sha256(body).hexdigest()
    key = _content_key(owner_id, digest)
    registry = get_storage_registry()
    registry.put_bytes(key=key, data=body, content_type="application/json")
    with transaction.atomic():
        previous = DraftIndex.objects.select_for_update().filter(owner_id=owner_id).first()
        old_key = previous.content_key if previous else ""
        index, _created = DraftIndex.objects.update_or_create(
            owner_id=owner_id,
            defaults={
                "step": step,
                "content_key": key,
                "content_sha256": digest,
                "saved_at": saved_at,
                **summarize(payload),
            },
        )
    if old_key and old_key != key:
        registry.delete(old_key)
    logger.debug("draft saved owner=%s step=%s key=%s", owner_id, step, key)
    return index


_debouncer: Optional[DraftDebouncer] = None
_debouncer_lock = threading.Lock()


def get_debouncer() -> DraftDebouncer:
    global _debouncer
    with _debouncer_lock:
        if _debouncer is None:
            _debouncer = DraftDebouncer(persist)
        return _debouncer


def _validate(step: Any, payload: Any) -> None:
    errors = []
    if isinstance(step, bool) or not isinstance(step, int) or not 0 <= step < len(WIZARD_STEPS):
        errors.append(f"step: must be an integer between 0 and {len(WIZARD_STEPS) - 1}")
    errors.extend(validate_payload(payload, DRAFT_PAYLOAD_SCHEMA))
    if errors:
        raise ValidationFailure("invalid draft", errors=errors)


def save(owner_id, step: int, payload: Dict[str, Any]) -> None:
    _validate(step, payload)
    get_debouncer().submit(owner_id, step, copy.deepcopy(payload))


def flush(owner_id) -> bool:
    return get_debouncer().flush(owner_id)


def load(owner_id) -> Optional[Dict[str, Any]]:
    index = DraftIndex.objects.filter(owner_id=owner_id).first()
    if index is None:
        return None
    body = get_storage_registry().get_bytes(index.content_key)
    if body is None:
        logger.warning("draft content missing owner=%s key=%s", owner_id, index.content_key)
        return None
    if hashlib.sha256(body).hexdigest() != index.content_sha256:
        logger.warning("draft content digest mismatch owner=%s key=%s", owner_id, index.content_key)
        return None
    document = json.loads(body)
    return {
        "step": document["step"],
        "payload": document["payload"],
        "saved_at": parse_datetime(document["saved_at"]),
    }


def peek(owner_id) -> Optional[Dict[str, Any]]:
    index = DraftIndex.objects.filter(owner_id=owner_id).first()
    if index is None:
        return None
    return {
        "step": index.step,
        "step_name": WIZARD_STEPS[index.step] if index.step < len(WIZARD_STEPS) else "",
        "name": index.name,
        "domain": index.domain,
        "has_icon": index.has_icon,
        "has_feature_graphic": index.has_feature_graphic,
        "screenshot_count": index.screenshot_count,
        "saved_at": index.saved_at.isoformat(),
    }


def clear(owner_id) -> bool:
    get_debouncer().discard(owner_id)
    with transaction.atomic():
        index = DraftIndex.objects.select_for_update().filter(owner_id=owner_id).first()
        if index is None:
            return False
        key = index.content_key
        index.delete()
    get_storage_registry().delete(key)
    logger.info("draft cleared owner=%s", owner_id)
    return True
