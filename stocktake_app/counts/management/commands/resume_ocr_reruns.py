from django.core.management.base import BaseCommand

from counts.models import ACTIVE_RERUN_STATUSES, OcrRerunJob, RerunJobStatus
from counts.services.rerun import run_rerun_job


class Command(BaseCommand):
    help = (
        "Run queued OCR rerun jobs, and running jobs whose runner stopped sending "
        "heartbeats, to completion in this process. Jobs with a live runner are skipped."
    )

    def add_arguments(self, parser):
        parser.add_argument("--job", type=int, help="Only resume this job id.")

    def handle(self, *args, **options):
        jobs = OcrRerunJob.objects.filter(status__in=ACTIVE_RERUN_STATUSES).order_by("created_at", "id")
        if options.get("job"):
            jobs = jobs.filter(id=options["job"])
        job_ids = list(jobs.values_list("id", flat=True))
        if not job_ids:
            self.stdout.write("No OCR rerun jobs to resume.")
            return
        for job_id in job_ids:
            job = run_rerun_job(job_id)
            if job.status == RerunJobStatus.RUNNING:
                self.stdout.write(f"Job {job.id} is running in another process; skipped.")
                continue
            progress = job.progress()
            self.stdout.write(
                f"Job {job.id} {job.status}: {progress['current']}/{progress['total']} "
                f"({progress['successCount']} ok, {progress['failureCount']} failed)"
            )
