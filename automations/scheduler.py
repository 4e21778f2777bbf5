"""
Cron triggers for schedule automation rules.

AutomationSchedulerJob runs CronTrigger.sweep() once a minute through a
Django-Q2 schedule. A rule fires when the current minute matches its cron
expression in its own timezone, at most once per minute: the rule's
last_executed_at is the watermark, claimed with a conditional update before
the run is created.
"""

from __future__ import annotations

import logging
from datetime import datetime

import pytz
from croniter import croniter
from django.db.models import Q
from django.utils import timezone

from .models import AutomationRule, AutomationRuleRun, TriggerType

logger = logging.getLogger(__name__)

SCHEDULER_SCHEDULE_NAME = "automations_scheduler"


class CronTrigger:
    """Evaluates every enabled schedule rule against the current minute."""

    def sweep(self, now: datetime | None = None) -> list[AutomationRuleRun]:
        """
        Fire every schedule rule due this minute.

        A rule that fails for any reason is logged and skipped; the sweep
        always goes on to the remaining rules.

        Returns:
            The pending runs created and queued by this sweep.
        """
        now = now or timezone.now()
        minute_start = now.replace(second=0, microsecond=0)

        rules = (
            AutomationRule.objects.unscoped_for_system_job()
            .filter(trigger_type=TriggerType.SCHEDULE, enabled=True)
            .select_related("tenant")
            .order_by("id")
        )

        runs = []
        for rule in rules:
            try:
                run = self.process_rule(rule, now, minute_start)
            except Exception as e:
                logger.exception(f"Failed to process scheduled rule {rule.pk}: {e}")
                continue
            if run is not None:
                runs.append(run)

        if runs:
            logger.info(f"Cron sweep at {minute_start.isoformat()} queued {len(runs)} rule runs")
        return runs

    def process_rule(
        self, rule: AutomationRule, now: datetime, minute_start: datetime
    ) -> AutomationRuleRun | None:
        if not rule.tenant.automations_enabled:
            return None
        if not self.should_trigger(rule, minute_start):
            return None
        if self.already_ran_this_minute(rule, minute_start):
            logger.debug(f"Scheduled rule {rule.pk} already ran at {rule.last_executed_at}")
            return None
        if not self.claim_minute(rule, now, minute_start):
            logger.debug(f"Scheduled rule {rule.pk} was claimed by a concurrent sweep")
            return None
        return self.create_and_queue_run(rule, now)

    def should_trigger(self, rule: AutomationRule, minute_start: datetime) -> bool:
        expression = rule.cron_expression
        if not expression:
            return False

        if not croniter.is_valid(expression):
            logger.error(f"Invalid cron '{expression}' for rule {rule.pk}, skipping")
            return False

        try:
            tz = pytz.timezone(rule.timezone_name)
        except pytz.UnknownTimeZoneError:
            logger.error(f"Unknown timezone '{rule.timezone_name}' for rule {rule.pk}, skipping")
            return False

        return croniter.match(expression, minute_start.astimezone(tz))

    def already_ran_this_minute(self, rule: AutomationRule, minute_start: datetime) -> bool:
        return rule.last_executed_at is not None and rule.last_executed_at >= minute_start

    def claim_minute(self, rule: AutomationRule, now: datetime, minute_start: datetime) -> bool:
        """
        Move the watermark to ``now`` unless another sweep already did this minute.
        """
        claimed = (
            AutomationRule.objects.filter(pk=rule.pk)
            .filter(Q(last_executed_at__isnull=True) | Q(last_executed_at__lt=minute_start))
            .update(last_executed_at=now)
        )
        if claimed:
            rule.last_executed_at = now
        return bool(claimed)

    def create_and_queue_run(self, rule: AutomationRule, now: datetime) -> AutomationRuleRun:
        from .jobs import AutomationRuleExecutionJob

        run = AutomationRuleRun.objects.create(
            tenant_id=rule.tenant_id,
            collective_id=rule.collective_id,
            automation_rule=rule,
            trigger_source=AutomationRuleRun.TriggerSource.SCHEDULE,
            trigger_data={"scheduled_at": now.isoformat()},
            status=AutomationRuleRun.Status.PENDING,
        )

        # Schedule runs start their own chain
        task_id = AutomationRuleExecutionJob.perform_later(
            automation_rule_run_id=run.pk,
            tenant_id=rule.tenant_id,
        )
        AutomationRuleRun.objects.filter(pk=run.pk).update(task_id=task_id)
        run.task_id = task_id

        logger.info(f"Queued scheduled rule {rule.pk} ({rule.name}) as run {run.pk}")
        return run


def register_scheduler_schedule() -> bool:
    """
    Create (or replace) the Django-Q2 schedule that runs the sweep every minute.

    Returns:
        True if the schedule was created.
    """
    from django_q.models import Schedule

    from .jobs import AutomationSchedulerJob

    Schedule.objects.filter(name=SCHEDULER_SCHEDULE_NAME).delete()
    Schedule.objects.create(
        name=SCHEDULER_SCHEDULE_NAME,
        func=AutomationSchedulerJob.task_path(),
        schedule_type=Schedule.MINUTES,
        minutes=1,
        repeats=-1,
    )
    logger.info(f"Registered Django-Q2 schedule '{SCHEDULER_SCHEDULE_NAME}' every minute")
    return True
