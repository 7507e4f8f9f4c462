import threading
from unittest.mock import patch

from solostore_pipeline import drafts
from solostore_pipeline.errors import ValidationFailure
from solostore_pipeline.models import DraftIndex
from solostore_pipeline.storage import get_storage_registry
from solostore_pipeline.storage.providers.local import LocalStorageProvider

from .base import PipelineTestCase

PAYLOAD = {
    "website_url": "https://example.com",
    "name": "Example",
    "short_description": "An example app",
    "icon": "data:image/png;base64,iVBORw0KGgo=",
    "screenshots": ["data:image/png;base64,AAAA", "data:image/png;base64,BBBB"],
    "is_fullscreen": True,
}


class DraftStoreTests(PipelineTestCase):
    def tearDown(self):
        drafts.get_debouncer().discard(self.owner.pk)
        super().tearDown()

    def test_round_trip(self):
        drafts.save(self.owner.pk, 2, PAYLOAD)
        self.assertTrue(drafts.flush(self.owner.pk))
        loaded = drafts.load(self.owner.pk)
        self.assertEqual(loaded["step"], 2)
        self.assertEqual(loaded["payload"], PAYLOAD)
        self.assertIsNotNone(loaded["saved_at"])

    def test_peek_reads_only_the_summary(self):
        drafts.persist(self.owner.pk, 2, PAYLOAD)
        with patch.object(LocalStorageProvider, "get_bytes") as get_bytes:
            summary = drafts.peek(self.owner.pk)
            get_bytes.assert_not_called()
        self.assertEqual(summary["step"], 2)
        self.assertEqual(summary["step_name"], "appearance_media")
        self.assertEqual(summary["name"], "Example")
        self.assertEqual(summary["domain"], "example.com")
        self.assertTrue(summary["has_icon"])
        self.assertFalse(summary["has_feature_graphic"])
        self.assertEqual(summary["screenshot_count"], 2)

    def test_clear_removes_both_tiers(self):
        index = drafts.persist(self.owner.pk, 1, PAYLOAD)
        self.assertTrue(drafts.clear(self.owner.pk))
        self.assertIsNone(drafts.peek(self.owner.pk))
        self.assertIsNone(drafts.load(self.owner.pk))
        self.assertIsNone(get_storage_registry().get_bytes(index.content_key))
        self.assertFalse(drafts.clear(self.owner.pk))

    def test_clear_drops_a_pending_save(self):
        drafts.save(self.owner.pk, 1, PAYLOAD)
        drafts.clear(self.owner.pk)
        self.assertFalse(drafts.flush(self.owner.pk))
        self.assertIsNone(drafts.peek(self.owner.pk))

    def test_overwrite_replaces_content_and_removes_old_blob(self):
        first = drafts.persist(self.owner.pk, 1, PAYLOAD)
        first_key = first.content_key
        drafts.persist(self.owner.pk, 3, {**PAYLOAD, "name": "Renamed"})
        self.assertEqual(DraftIndex.objects.filter(owner=self.owner).count(), 1)
        self.assertIsNone(get_storage_registry().get_bytes(first_key))
        self.assertEqual(drafts.load(self.owner.pk)["payload"]["name"], "Renamed")

    def test_failed_content_write_leaves_previous_draft_intact(self):
        drafts.persist(self.owner.pk, 1, PAYLOAD)
        with patch.object(LocalStorageProvider, "put_bytes", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                drafts.persist(self.owner.pk, 4, {**PAYLOAD, "name": "Lost"})
        self.assertEqual(drafts.peek(self.owner.pk)["step"], 1)
        self.assertEqual(drafts.load(self.owner.pk)["payload"], PAYLOAD)

    def test_corrupt_content_is_not_returned(self):
        index = drafts.persist(self.owner.pk, 1, PAYLOAD)
        get_storage_registry().put_bytes(key=index.content_key, data=b"{}", content_type="application/json")
        self.assertIsNone(drafts.load(self.owner.pk))

    def test_save_validates_step_and_payload(self):
        with self.assertRaises(ValidationFailure):
            drafts.save(self.owner.pk, 9, PAYLOAD)
        with self.assertRaises(ValidationFailure):
            drafts.save(self.owner.pk, 1, {"screenshots": ["x"] * 9})
        with self.assertRaises(ValidationFailure):
            drafts.save(self.owner.pk, 1, ["not", "an", "object"])
        self.assertFalse(drafts.get_debouncer().has_pending(self.owner.pk))

    def test_save_copies_the_payload(self):
        payload = {"name": "Before"}
        drafts.save(self.owner.pk, 0, payload)
        payload["name"] = "After"
        drafts.flush(self.owner.pk)
        self.assertEqual(drafts.load(self.owner.pk)["payload"], {"name": "Before"})


class DebouncerTests(PipelineTestCase):
    def test_rapid_saves_coalesce_into_one_write(self):
        writes = []
        done = threading.Event()

        def write(owner_id, step, payload):
            writes.append((owner_id, step, payload))
            done.set()

        debouncer = drafts.DraftDebouncer(write, window=0.05)
        for step in range(4):
            debouncer.submit("o1", step, {"step": step})
        self.assertTrue(done.wait(5))
        self.assertEqual(writes, [("o1", 3, {"step": 3})])

    def test_flush_writes_immediately(self):
        writes = []
        debouncer = drafts.DraftDebouncer(lambda *args: writes.append(args), window=60)
        debouncer.submit("o1", 1, {"a": 1})
        self.assertTrue(debouncer.flush("o1"))
        self.assertEqual(writes, [("o1", 1, {"a": 1})])
        self.assertFalse(debouncer.flush("o1"))
        self.assertFalse(debouncer.has_pending("o1"))

    def test_owners_are_debounced_independently(self):
        writes = []
        debouncer = drafts.DraftDebouncer(lambda *args: writes.append(args), window=60)
        debouncer.submit("o1", 1, {})
        debouncer.submit("o2", 2, {})
        debouncer.flush("o2")
        self.assertEqual(writes, [("o2", 2, {})])
        self.assertTrue(debouncer.has_pending("o1"))
        debouncer.discard("o1")
        self.assertFalse(debouncer.has_pending("o1"))

    def test_edit_during_in_flight_write_is_held_until_it_finishes(self):
        started = threading.Event()
        release = threading.Event()
        second_done = threading.Event()
        lock = threading.Lock()
        state = {"active": 0, "max_active": 0}
        writes = []

        def write(owner_id, step, payload):
            with lock:
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
            writes.append(step)
            if step == 1:
                started.set()
                release.wait(5)
            with lock:
                state["active"] -= 1
            if step == 2:
                second_done.set()

        debouncer = drafts.DraftDebouncer(write, window=0.01)
        debouncer.submit("o1", 1, {})
        self.assertTrue(started.wait(5))
        debouncer.submit("o1", 2, {})
        self.assertEqual(writes, [1])
        release.set()
        self.assertTrue(second_done.wait(5))
        self.assertEqual(writes, [1, 2])
        self.assertEqual(state["max_active"], 1)
