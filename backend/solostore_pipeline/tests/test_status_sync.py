from unittest.mock import patch

import requests
from django.test import override_settings

from solostore_pipeline.notifications import NotifierRegistry
from solostore_pipeline.status_sync import StatusTracker, emit_app_event, notify, poll_build_status

from .base import PipelineTestCase

DISCORD_OPERATORS = {
    "notifications": {
        "enabled": True,
        "channels": [
            {
                "type": "discord",
                "discord": {"webhook_url": "https://discord.test/webhook", "audiences": ["operators"]},
            }
        ],
    }
}


class StatusTrackerTests(PipelineTestCase):
    def test_progress_never_drops(self):
        tracker = StatusTracker()
        for sequence, progress in enumerate([10, 8, 40], start=1):
            tracker.apply({"status": "building", "progress": progress, "sequence": sequence})
        self.assertEqual(tracker.observed, [10, 10, 40])

    def test_progress_is_capped_below_100_until_completed(self):
        tracker = StatusTracker()
        tracker.apply({"status": "uploading", "progress": 100, "sequence": 1})
        self.assertEqual(tracker.progress, 99)
        tracker.apply({"status": "completed", "progress": 100, "sequence": 2})
        self.assertEqual(tracker.progress, 100)

    def test_terminal_status_is_authoritative(self):
        tracker = StatusTracker()
        tracker.apply({"status": "failed", "progress": 40, "sequence": 5})
        snapshot = tracker.apply({"status": "signing", "progress": 70, "sequence": 6})
        self.assertEqual(snapshot["status"], "failed")
        self.assertEqual(snapshot["progress"], 40)
        self.assertTrue(snapshot["terminal"])

    def test_late_older_push_is_ignored(self):
        tracker = StatusTracker()
        tracker.apply({"status": "uploading", "progress": 85, "sequence": 5})
        tracker.apply({"status": "building", "progress": 10, "sequence": 1})
        self.assertEqual(tracker.status, "uploading")
        self.assertEqual(tracker.progress, 85)

    def test_stage_regression_without_sequence_is_ignored(self):
        tracker = StatusTracker()
        tracker.apply({"status": "signing", "progress": 70})
        tracker.apply({"status": "building", "progress": 20})
        self.assertEqual(tracker.status, "signing")
        self.assertEqual(tracker.progress, 70)


class PollTests(PipelineTestCase):
    def test_stops_once_terminal(self):
        responses = iter(
            [
                {"status": "queued", "progress": 0, "sequence": 0, "poll_after_ms": 500},
                {"status": "building", "progress": 10, "sequence": 1, "poll_after_ms": 500},
                {"status": "completed", "progress": 100, "sequence": 7, "poll_after_ms": None},
            ]
        )
        sleeps = []
        final = poll_build_status(lambda: next(responses), sleep=sleeps.append)
        self.assertTrue(final["terminal"])
        self.assertEqual(final["progress"], 100)
        self.assertEqual(sleeps, [0.5, 0.5])

    def test_gives_up_after_max_wait(self):
        sleeps = []
        final = poll_build_status(
            lambda: {"status": "building", "progress": 10, "poll_after_ms": 1000},
            max_wait_seconds=3,
            sleep=sleeps.append,
        )
        self.assertFalse(final["terminal"])
        self.assertEqual(sleeps, [1.0, 1.0, 1.0])

    def test_repolling_terminal_job_has_no_side_effects(self):
        calls = []

        def fetch():
            calls.append(1)
            return {"status": "failed", "progress": 40, "sequence": 3, "poll_after_ms": None}

        first = poll_build_status(fetch, sleep=lambda _delay: None)
        second = poll_build_status(fetch, sleep=lambda _delay: None)
        self.assertEqual(first, second)
        self.assertEqual(len(calls), 2)


class NotifierRegistryTests(PipelineTestCase):
    def test_channels_are_filtered_by_audience(self):
        registry = NotifierRegistry(DISCORD_OPERATORS)
        self.assertEqual(registry.list_enabled_notifiers("owner"), [])
        notifiers = registry.list_enabled_notifiers("operators")
        self.assertEqual([notifier.notifier_type for notifier in notifiers], ["discord"])

    def test_disabled_config_has_no_channels(self):
        registry = NotifierRegistry({"notifications": {"enabled": False, "channels": DISCORD_OPERATORS["notifications"]["channels"]}})
        self.assertEqual(registry.list_enabled_notifiers("operators"), [])

    def test_notify_event_collects_errors(self):
        registry = NotifierRegistry(DISCORD_OPERATORS)
        with patch(
            "solostore_pipeline.notifications.notifiers.discord.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            errors = registry.notify_event({"audience": "operators", "kind": "app.status", "status": "pending_review"})
        self.assertEqual(errors, ["discord: ConnectionError"])


class FanOutTests(PipelineTestCase):
    def setUp(self):
        super().setUp()
        # PipelineTestCase disables channels.
        overrides = override_settings(PIPELINE_NOTIFICATIONS=DISCORD_OPERATORS)
        overrides.enable()
        self.addCleanup(overrides.disable)

    def test_review_transition_is_pushed_to_operators_after_commit(self):
        app = self.make_app(status="pending_review")
        with patch("solostore_pipeline.notifications.notifiers.discord.requests.post") as post:
            with self.captureOnCommitCallbacks(execute=True):
                events = emit_app_event(app, "draft")
                post.assert_not_called()
        self.assertEqual(sorted(event.audience for event in events), ["operators", "owner"])
        post.assert_called_once()
        self.assertIn("pending_review", post.call_args.kwargs["json"]["content"])

    def test_fan_out_failure_does_not_propagate(self):
        app = self.make_app(status="pending_review")
        with patch(
            "solostore_pipeline.notifications.notifiers.discord.requests.post",
            side_effect=requests.Timeout("slow"),
        ):
            with self.captureOnCommitCallbacks(execute=True):
                emit_app_event(app, "draft")
        self.assertEqual(app.owner.pipeline_events.count(), 2)

    def test_owner_only_events_skip_operator_channels(self):
        app = self.make_app()
        with patch("solostore_pipeline.notifications.notifiers.discord.requests.post") as post:
            with self.captureOnCommitCallbacks(execute=True):
                notify(
                    self.owner.pk,
                    {
                        "kind": "app.status",
                        "subject_type": "app",
                        "subject_id": app.id,
                        "sequence": 1,
                        "status": "draft",
                    },
                )
        post.assert_not_called()
