import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

from django.db import connection

from solostore_pipeline import builds, verifier
from solostore_pipeline.errors import BuildInProgress, VerificationFailed
from solostore_pipeline.models import BuildJob, DomainVerification
from solostore_pipeline.publication import check_invariants

from .base import PipelineTransactionTestCase

WORKERS = 6


class ConcurrentStartBuildTests(PipelineTransactionTestCase):
    def test_simultaneous_starts_create_one_job(self):
        app = self.make_app()
        barrier = threading.Barrier(WORKERS, timeout=10)

        def start(_):
            try:
                barrier.wait()
                builds.start_build(app.id)
                return "ok"
            except BuildInProgress:
                return "busy"
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(start, range(WORKERS)))

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("busy"), WORKERS - 1)
        self.assertEqual(BuildJob.objects.filter(app=app).count(), 1)
        self.assertEqual(BuildJob.objects.filter(app=app, status="queued").count(), 1)
        app.refresh_from_db()
        self.assertEqual(app.status, "building")
        self.assertEqual(check_invariants(app), [])


class ConcurrentCheckTests(PipelineTransactionTestCase):
    def test_a_late_failed_lookup_never_downgrades_a_verified_record(self):
        record, instructions = verifier.initiate(self.owner, "example.com")
        barrier = threading.Barrier(2, timeout=10)
        lock = threading.Lock()
        answers = [[instructions["record_value"]], []]

        def lookup(_domain):
            with lock:
                answer = answers.pop(0)
            # Both lookups finish before either result is written.
            barrier.wait()
            return answer

        def check(_):
            try:
                return verifier.check(record.id).status
            except VerificationFailed:
                return "failed"
            finally:
                connection.close()

        with patch("solostore_pipeline.challenges.lookup_dns_txt", side_effect=lookup):
            with ThreadPoolExecutor(max_workers=2) as pool:
                outcomes = list(pool.map(check, range(2)))

        self.assertIn("verified", outcomes)
        record = DomainVerification.objects.get(pk=record.pk)
        self.assertEqual(record.status, "verified")
        self.assertEqual(record.verified_via, "check")
        self.assertIsNotNone(record.verified_at)
        self.assertEqual(record.last_error, "")
