"""
Run one cron sweep over schedule automation rules.

Usage:
    python manage.py run_automation_scheduler
"""

from django.core.management.base import BaseCommand

from automations.jobs import AutomationSchedulerJob


class Command(BaseCommand):
    help = "Fire schedule automation rules due this minute"

    def handle(self, *args, **options):
        result = AutomationSchedulerJob.perform_now()
        self.stdout.write(self.style.SUCCESS(f"Queued {result['queued']} scheduled rule runs"))
        for run_id in result["run_ids"]:
            self.stdout.write(f"  Run ID: {run_id}")
