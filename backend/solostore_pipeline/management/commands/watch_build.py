import uuid

from django.core.management.base import BaseCommand, CommandError

from solostore_pipeline.builds import get_build_status
from solostore_pipeline.models import BuildJob
from solostore_pipeline.status_sync import poll_build_status


class Command(BaseCommand):
    help = "Poll a build job until it reaches a terminal state."

    def add_arguments(self, parser):
        parser.add_argument("job_id")
        parser.add_argument("--interval-ms", type=int, default=None)
        parser.add_argument("--max-wait", type=float, default=600.0, help="Give up after this many seconds")

    def handle(self, *args, **options):
        try:
            job_id = uuid.UUID(options["job_id"])
        except ValueError as exc:
            raise CommandError(f"Invalid job id: {options['job_id']}") from exc
        if not BuildJob.objects.filter(id=job_id).exists():
            raise CommandError(f"BuildJob {job_id} not found.")

        def _report(snapshot):
            self.stdout.write(f"{snapshot['status']} {snapshot['progress']}%")

        final = poll_build_status(
            lambda: get_build_status(job_id),
            interval_ms=options["interval_ms"],
            max_wait_seconds=options["max_wait"],
            on_update=_report,
        )
        if not final["terminal"]:
            raise CommandError(f"BuildJob {job_id} still {final['status']} after {options['max_wait']}s.")
        status = get_build_status(job_id)
        if status["status"] == "failed":
            self.stdout.write(f"Failed ({status['error_code']}): {status['error_message']}")
        else:
            self.stdout.write(f"Completed: {status['artifact_ref']}")
