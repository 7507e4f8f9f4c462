from django.core.management.base import BaseCommand

from solostore_pipeline.builds import fail_stale_builds


class Command(BaseCommand):
    help = "Force-fail build jobs that stayed non-terminal past PIPELINE_BUILD_TIMEOUT_SECONDS."

    def handle(self, *args, **options):
        failed = fail_stale_builds()
        if not failed:
            self.stdout.write("No stale builds.")
            return
        for job_id in failed:
            self.stdout.write(f"Timed out: {job_id}")
        self.stdout.write(f"Timed out {len(failed)} build(s).")
