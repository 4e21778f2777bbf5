"""
Register the recurring Django-Q2 schedules the background core relies on.

Creates:
    - the every-minute automation cron sweep
    - the periodic sweep for stuck agent tasks

Usage:
    python manage.py setup_background_schedules [--recovery-minutes=5]
"""

from django.core.management.base import BaseCommand

from agents.scheduler import RECOVERY_SCHEDULE_NAME, register_recovery_schedule
from automations.scheduler import SCHEDULER_SCHEDULE_NAME, register_scheduler_schedule


class Command(BaseCommand):
    help = "Register the automation cron sweep and the stuck agent task sweep"

    def add_arguments(self, parser):
        parser.add_argument(
            "--recovery-minutes",
            type=int,
            default=5,
            help="Interval of the stuck agent task sweep (default: 5)",
        )

    def handle(self, *args, **options):
        register_scheduler_schedule()
        self.stdout.write(self.style.SUCCESS(f"Registered schedule: {SCHEDULER_SCHEDULE_NAME}"))

        register_recovery_schedule(minutes=options["recovery_minutes"])
        self.stdout.write(self.style.SUCCESS(f"Registered schedule: {RECOVERY_SCHEDULE_NAME}"))
