import uuid

from django.core.management.base import BaseCommand, CommandError

from solostore_pipeline.builds import advance_build_job, run_build_job
from solostore_pipeline.models import BuildJob


class Command(BaseCommand):
    help = "Run a queued build job in this process (for PIPELINE_ASYNC_MODE=manual)."

    def add_arguments(self, parser):
        parser.add_argument("job_id")
        parser.add_argument("--step", action="store_true", help="Advance a single stage only")

    def handle(self, *args, **options):
        try:
            job_id = uuid.UUID(options["job_id"])
        except ValueError as exc:
            raise CommandError(f"Invalid job id: {options['job_id']}") from exc
        if not BuildJob.objects.filter(id=job_id).exists():
            raise CommandError(f"BuildJob {job_id} not found.")
        if options["step"]:
            status = advance_build_job(job_id)
        else:
            status = run_build_job(job_id)
        if status is None:
            self.stdout.write("Nothing to do; the job is terminal or was superseded.")
            return
        self.stdout.write(f"Status: {status}")
