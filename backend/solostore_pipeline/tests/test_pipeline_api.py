import json
from unittest.mock import patch

from solostore_pipeline import builds, drafts
from solostore_pipeline.models import App, BuildJob, DomainVerification, PipelineEvent

from .base import PipelineTestCase

APP_PAYLOAD = {
    "website_url": "https://example.com",
    "name": "Example",
    "package_name": "com.example.app",
    "short_description": "An example app",
}


class PipelineApiTestCase(PipelineTestCase):
    def setUp(self):
        super().setUp()
        self.client.force_login(self.owner)

    def tearDown(self):
        drafts.get_debouncer().discard(self.owner.pk)
        super().tearDown()

    def _post(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type="application/json")

    def _put(self, url, payload):
        return self.client.put(url, data=json.dumps(payload), content_type="application/json")

    def _patch(self, url, payload):
        return self.client.patch(url, data=json.dumps(payload), content_type="application/json")


class AppEndpointTests(PipelineApiTestCase):
    def test_requires_login(self):
        self.client.logout()
        response = self.client.get("/api/apps")
        self.assertEqual(response.status_code, 302)

    def test_create_and_list(self):
        self.make_verification("example.com")
        response = self._post("/api/apps", APP_PAYLOAD)
        self.assertEqual(response.status_code, 201)
        body = response.json()["app"]
        self.assertEqual(body["status"], "draft")
        self.assertTrue(body["domain_verified"])
        listing = self.client.get("/api/apps").json()["apps"]
        self.assertEqual([item["id"] for item in listing], [body["id"]])

    def test_create_rejects_invalid_payload(self):
        response = self._post("/api/apps", {**APP_PAYLOAD, "package_name": "Not A Package"})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error"], "validation_failed")
        self.assertTrue(any(line.startswith("package_name:") for line in body["details"]))
        self.assertFalse(App.objects.exists())

    def test_other_owner_gets_404(self):
        app = self.make_app()
        self.client.force_login(self.other)
        self.assertEqual(self.client.get(f"/api/apps/{app.id}").status_code, 404)
        self.assertEqual(self._post(f"/api/apps/{app.id}/builds").status_code, 404)
        self.assertFalse(BuildJob.objects.exists())

    def test_build_start_status_and_submit(self):
        app = self.make_app()
        response = self._post(f"/api/apps/{app.id}/builds")
        self.assertEqual(response.status_code, 202)
        job_id = response.json()["job"]["id"]
        self.assertEqual(response.json()["job"]["status"], "queued")

        second = self._post(f"/api/apps/{app.id}/builds")
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"], "build_in_progress")

        builds.run_build_job(job_id)
        status = self.client.get(f"/api/builds/{job_id}/status").json()
        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["progress"], 100)
        self.assertTrue(status["terminal"])
        self.assertIsNone(status["poll_after_ms"])

        submitted = self._post(f"/api/apps/{app.id}/submit")
        self.assertEqual(submitted.status_code, 200)
        self.assertEqual(submitted.json()["app"]["status"], "pending_review")

    def test_submit_from_published_is_an_invalid_transition(self):
        app = self.make_app(status="published", package_artifact_ref="local:packages/x.zip")
        response = self._post(f"/api/apps/{app.id}/submit")
        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["error"], "invalid_transition")
        self.assertEqual(body["context"]["current_state"], "published")

    def test_cancel_build(self):
        app = self.make_app()
        job = builds.start_build(app.id)
        response = self._post(f"/api/builds/{job.id}/cancel")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "failed")
        self.assertEqual(response.json()["error_code"], "cancelled")
        again = self._post(f"/api/builds/{job.id}/cancel")
        self.assertEqual(again.status_code, 409)

    def test_status_rejects_wrong_method(self):
        app = self.make_app()
        job = builds.start_build(app.id)
        self.assertEqual(self._post(f"/api/builds/{job.id}/status").status_code, 405)

    def test_router_lists_only_own_apps(self):
        mine = self.make_app()
        self.make_app(owner=self.other, domain_verification=self.make_verification(owner=self.other))
        response = self.client.get("/api/v1/apps/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()], [str(mine.id)])


class VerificationEndpointTests(PipelineApiTestCase):
    def test_initiate_and_check(self):
        response = self._post("/api/verifications", {"domain": "https://Example.com/path"})
        self.assertEqual(response.status_code, 201)
        body = response.json()["verification"]
        self.assertEqual(body["domain"], "example.com")
        self.assertEqual(body["status"], "pending")
        record_value = body["instructions"]["record_value"]

        with patch("solostore_pipeline.challenges.lookup_dns_txt", return_value=[]):
            failed = self._post(f"/api/verifications/{body['id']}/check")
        self.assertEqual(failed.status_code, 422)
        self.assertEqual(failed.json()["error"], "verification_failed")
        self.assertEqual(DomainVerification.objects.get(id=body["id"]).status, "failed")

        with patch("solostore_pipeline.challenges.lookup_dns_txt", return_value=[record_value]):
            passed = self._post(f"/api/verifications/{body['id']}/check")
        self.assertEqual(passed.status_code, 200)
        self.assertEqual(passed.json()["verification"]["status"], "verified")

    def test_invalid_domain(self):
        response = self._post("/api/verifications", {"domain": "not a domain"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "invalid_domain")

    def test_force_requires_staff_and_enabled_flag(self):
        record = self.make_verification(status="pending")
        self.assertEqual(self._post(f"/api/verifications/{record.id}/force").status_code, 403)

        self.client.force_login(self.staff)
        disabled = self._post(f"/api/verifications/{record.id}/force")
        self.assertEqual(disabled.status_code, 403)
        self.assertEqual(disabled.json()["error"], "force_verify_disabled")

        settings_response = self._patch("/api/platform-settings", {"bypass_dns": True})
        self.assertEqual(settings_response.status_code, 200)
        self.assertTrue(settings_response.json()["settings"]["bypass_dns"])

        forced = self._post(f"/api/verifications/{record.id}/force")
        self.assertEqual(forced.status_code, 200)
        self.assertEqual(forced.json()["verification"]["verified_via"], "force")

    def test_owner_cannot_change_platform_settings(self):
        response = self._patch("/api/platform-settings", {"review_mode": "auto"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.client.get("/api/platform-settings").json()["settings"]["review_mode"], "manual")

    def test_delete_in_use_verification_is_refused(self):
        app = self.make_app()
        response = self.client.delete(f"/api/verifications/{app.domain_verification_id}")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "in_use")


class DraftEndpointTests(PipelineApiTestCase):
    def test_save_load_peek_and_clear(self):
        self.assertEqual(self.client.get("/api/draft").status_code, 404)
        self.assertIsNone(self.client.get("/api/draft/peek").json()["draft"])

        response = self._put("/api/draft", {"step": 1, "payload": {"name": "Example"}})
        self.assertEqual(response.status_code, 202)

        loaded = self.client.get("/api/draft")
        self.assertEqual(loaded.status_code, 200)
        self.assertEqual(loaded.json()["draft"]["step"], 1)
        self.assertEqual(loaded.json()["draft"]["payload"], {"name": "Example"})

        summary = self.client.get("/api/draft/peek").json()["draft"]
        self.assertEqual(summary["name"], "Example")
        self.assertEqual(summary["step_name"], "app_details")

        self.assertTrue(self.client.delete("/api/draft").json()["cleared"])
        self.assertEqual(self.client.get("/api/draft").status_code, 404)

    def test_flush_on_save(self):
        self._put("/api/draft", {"step": 0, "payload": {"website_url": "https://example.com"}, "flush": True})
        self.assertEqual(self.client.get("/api/draft/peek").json()["draft"]["domain"], "example.com")

    def test_invalid_draft(self):
        response = self._put("/api/draft", {"step": 7, "payload": {}})
        self.assertEqual(response.status_code, 400)
        self.assertTrue(any(line.startswith("step:") for line in response.json()["details"]))
        missing = self._put("/api/draft", {"step": 0})
        self.assertEqual(missing.status_code, 400)


class ReviewEndpointTests(PipelineApiTestCase):
    def _pending_app(self):
        return self.make_app(status="pending_review", package_artifact_ref="local:packages/x.zip")

    def test_review_requires_staff(self):
        app = self._pending_app()
        self.assertEqual(self._post(f"/api/review/{app.id}/approve").status_code, 403)
        app.refresh_from_db()
        self.assertEqual(app.status, "pending_review")

    def test_reject_requires_reason(self):
        app = self._pending_app()
        self.client.force_login(self.staff)
        response = self._post(f"/api/review/{app.id}/reject", {"reason": "  "})
        self.assertEqual(response.status_code, 400)
        rejected = self._post(f"/api/review/{app.id}/reject", {"reason": "icon missing"})
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()["app"]["rejection_reason"], "icon missing")

    def test_approve(self):
        app = self._pending_app()
        self.client.force_login(self.staff)
        response = self._post(f"/api/review/{app.id}/approve")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["app"]["status"], "published")
        self.assertIsNotNone(response.json()["app"]["published_at"])


class EventsFeedTests(PipelineApiTestCase):
    def test_cursor_paging(self):
        app = self.make_app()
        builds.start_build(app.id)
        first = self.client.get("/api/events").json()
        kinds = [event["kind"] for event in first["events"]]
        self.assertIn("app.status", kinds)
        self.assertIn("build.status", kinds)
        self.assertTrue(all(event["audience"] == "owner" for event in first["events"]))

        later = self.client.get("/api/events", {"since": first["next_since"]}).json()
        self.assertEqual(later["events"], [])
        self.assertEqual(later["next_since"], first["next_since"])

    def test_filters_by_subject(self):
        app = self.make_app()
        job = builds.start_build(app.id)
        body = self.client.get("/api/events", {"subject_id": str(job.id)}).json()
        self.assertTrue(body["events"])
        self.assertTrue(all(event["subject_id"] == str(job.id) for event in body["events"]))
        self.assertEqual(self.client.get("/api/events", {"subject_id": "nope"}).status_code, 400)

    def test_other_owner_sees_nothing(self):
        app = self.make_app()
        builds.start_build(app.id)
        self.client.force_login(self.other)
        self.assertEqual(self.client.get("/api/events").json()["events"], [])

    def test_operator_feed_requires_staff(self):
        self.assertEqual(self.client.get("/api/events", {"audience": "operators"}).status_code, 403)

    def test_rejects_out_of_range_limit_and_cursor(self):
        for params in ({"limit": "-1"}, {"limit": "0"}, {"limit": "500"}, {"since": "-5"}, {"limit": "ten"}):
            response = self.client.get("/api/events", params)
            self.assertEqual(response.status_code, 400, params)
            self.assertEqual(response.json()["error"], "validation_failed")
        self.assertEqual(self.client.get("/api/events", {"limit": "1"}).status_code, 200)


class EventReadStateTests(PipelineApiTestCase):
    def setUp(self):
        super().setUp()
        self.app = self.make_app()
        builds.start_build(self.app.id)

    def _unread(self):
        return self.client.get("/api/events/unread-count").json()["unread"]

    def test_unread_count_and_mark_one_read(self):
        events = self.client.get("/api/events").json()["events"]
        self.assertTrue(events)
        self.assertTrue(all(event["read_at"] is None for event in events))
        self.assertEqual(self._unread(), len(events))

        response = self._post(f"/api/events/{events[0]['id']}/read")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIsNotNone(body["event"]["read_at"])
        self.assertEqual(body["unread"], len(events) - 1)
        self.assertEqual(self._unread(), len(events) - 1)

        again = self._post(f"/api/events/{events[0]['id']}/read").json()
        self.assertEqual(again["event"]["read_at"], body["event"]["read_at"])

        unread = self.client.get("/api/events", {"unread": "1"}).json()["events"]
        self.assertEqual([event["id"] for event in unread], [event["id"] for event in events[1:]])

    def test_read_all(self):
        total = self._unread()
        response = self._post("/api/events/read-all")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"marked": total, "unread": 0})
        self.assertEqual(self._unread(), 0)
        self.assertEqual(self.client.get("/api/events", {"unread": "true"}).json()["events"], [])

    def test_read_state_is_scoped_to_the_owner(self):
        event_id = self.client.get("/api/events").json()["events"][0]["id"]
        total = self._unread()
        self.client.force_login(self.other)
        self.assertEqual(self._unread(), 0)
        self.assertEqual(self._post(f"/api/events/{event_id}/read").status_code, 404)
        self.assertEqual(self._post("/api/events/read-all").json()["marked"], 0)
        self.client.force_login(self.owner)
        self.assertEqual(self._unread(), total)

    def test_operator_events_are_not_owner_inbox_items(self):
        builds.run_build_job(BuildJob.objects.get(app=self.app).id)
        self.assertEqual(self._post(f"/api/apps/{self.app.id}/submit").status_code, 200)
        operator_event = PipelineEvent.objects.filter(audience="operators").first()
        self.assertIsNotNone(operator_event)
        self.assertEqual(self._post(f"/api/events/{operator_event.id}/read").status_code, 404)

    def test_methods(self):
        event_id = self.client.get("/api/events").json()["events"][0]["id"]
        self.assertEqual(self.client.get(f"/api/events/{event_id}/read").status_code, 405)
        self.assertEqual(self.client.get("/api/events/read-all").status_code, 405)
        self.assertEqual(self._post("/api/events/unread-count").status_code, 405)

    def test_requires_login(self):
        self.client.logout()
        response = self.client.get("/api/events/unread-count")
        self.assertNotEqual(response.status_code, 200)


class PlatformSettingsEndpointTests(PipelineApiTestCase):
    def test_bypass_build_is_operator_only(self):
        self.assertFalse(self.client.get("/api/platform-settings").json()["settings"]["bypass_build"])
        self.assertEqual(self._patch("/api/platform-settings", {"bypass_build": True}).status_code, 403)

        self.client.force_login(self.staff)
        response = self._patch("/api/platform-settings", {"bypass_build": True})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["settings"]["bypass_build"])
        self.assertEqual(self._patch("/api/platform-settings", {"bypass_build": "yes"}).status_code, 400)

        self.client.force_login(self.owner)
        app = self.make_app()
        started = self._post(f"/api/apps/{app.id}/builds")
        self.assertEqual(started.status_code, 202)
        job = BuildJob.objects.get(app=app)
        self.assertTrue(job.bypassed)
        status = self.client.get(f"/api/builds/{job.id}/status").json()
        self.assertTrue(status["bypassed"])
