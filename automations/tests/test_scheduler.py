"""
Tests for cron triggers.
"""

from datetime import datetime, timezone as dt_timezone
from unittest.mock import patch

import pytest

from accounts.models import Tenant
from automations.jobs import AutomationRuleExecutionJob, AutomationSchedulerJob
from automations.models import AutomationRule, AutomationRuleRun, TriggerType
from automations.scheduler import CronTrigger
from execution.context import ExecutionContext
from execution.exceptions import UnexpectedContextError


def utc(hour, minute, second=0, day=15):
    return datetime(2024, 1, day, hour, minute, second, tzinfo=dt_timezone.utc)


@pytest.fixture
def tenant():
    return Tenant.objects.create(name="Acme", slug="acme", subdomain="acme")


@pytest.fixture
def mock_async_task():
    with patch("django_q.tasks.async_task") as mock:
        mock.return_value = "task-abc"
        yield mock


def schedule_rule(tenant, cron, timezone_name="UTC", last_executed_at=None, **kwargs):
    return AutomationRule.objects.create(
        tenant=tenant,
        name=f"Every {cron}",
        trigger_type=TriggerType.SCHEDULE,
        trigger_config={"cron": cron, "timezone": timezone_name},
        actions=[{"type": "internal_action", "action": "log"}],
        last_executed_at=last_executed_at,
        **kwargs,
    )


@pytest.mark.django_db
class TestCronTrigger:
    """Tests for the minute sweep."""

    def test_fires_once_per_minute(self, tenant, mock_async_task):
        rule = schedule_rule(tenant, "*/5 * * * *", last_executed_at=utc(11, 55))
        trigger = CronTrigger()

        runs = trigger.sweep(now=utc(12, 5, 0))

        assert len(runs) == 1
        run = runs[0]
        assert run.status == AutomationRuleRun.Status.PENDING
        assert run.trigger_source == AutomationRuleRun.TriggerSource.SCHEDULE
        assert run.task_id == "task-abc"
        rule.refresh_from_db()
        assert rule.last_executed_at == utc(12, 5, 0)

        assert trigger.sweep(now=utc(12, 5, 30)) == []
        assert AutomationRuleRun.objects.filter(automation_rule=rule).count() == 1

        args, kwargs = mock_async_task.call_args
        assert args[0] == AutomationRuleExecutionJob.task_path()
        assert kwargs["automation_rule_run_id"] == run.pk
        assert kwargs["tenant_id"] == tenant.pk

    def test_fires_again_next_matching_minute(self, tenant, mock_async_task):
        rule = schedule_rule(tenant, "*/5 * * * *")
        trigger = CronTrigger()

        trigger.sweep(now=utc(12, 5))
        trigger.sweep(now=utc(12, 10))

        assert AutomationRuleRun.objects.filter(automation_rule=rule).count() == 2

    def test_non_matching_minute(self, tenant, mock_async_task):
        schedule_rule(tenant, "*/5 * * * *")

        assert CronTrigger().sweep(now=utc(12, 6)) == []
        mock_async_task.assert_not_called()

    def test_rule_timezone(self, tenant, mock_async_task):
        schedule_rule(tenant, "0 9 * * *", timezone_name="America/New_York")
        trigger = CronTrigger()

        assert trigger.sweep(now=utc(9, 0)) == []
        # 09:00 EST is 14:00 UTC
        assert len(trigger.sweep(now=utc(14, 0))) == 1

    def test_bad_rules_do_not_abort_sweep(self, tenant, mock_async_task):
        schedule_rule(tenant, "not a cron")
        schedule_rule(tenant, "* * * * *", timezone_name="Mars/Olympus_Mons")
        good = schedule_rule(tenant, "* * * * *")

        runs = CronTrigger().sweep(now=utc(12, 0))

        assert [run.automation_rule_id for run in runs] == [good.pk]

    def test_rule_error_logged_and_skipped(self, tenant, mock_async_task, caplog):
        first = schedule_rule(tenant, "* * * * *")
        second = schedule_rule(tenant, "* * * * *")

        with patch.object(CronTrigger, "should_trigger", side_effect=[RuntimeError("db hiccup"), True]):
            runs = CronTrigger().sweep(now=utc(12, 0))

        assert [run.automation_rule_id for run in runs] == [second.pk]
        assert f"Failed to process scheduled rule {first.pk}" in caplog.text

    def test_disabled_rules_and_tenants_skipped(self, tenant, mock_async_task):
        schedule_rule(tenant, "* * * * *", enabled=False)
        other = Tenant.objects.create(name="Globex", slug="globex", subdomain="globex", automations_enabled=False)
        schedule_rule(other, "* * * * *")

        assert CronTrigger().sweep(now=utc(12, 0)) == []

    def test_event_rules_ignored(self, tenant, mock_async_task):
        AutomationRule.objects.create(
            tenant=tenant,
            name="Event rule",
            trigger_type=TriggerType.EVENT,
            trigger_config={"event_type": "note.created", "cron": "* * * * *"},
        )

        assert CronTrigger().sweep(now=utc(12, 0)) == []

    def test_concurrent_sweep_loses_claim(self, tenant, mock_async_task):
        """A sweep holding a stale copy of the rule cannot fire it a second time."""
        schedule_rule(tenant, "*/5 * * * *", last_executed_at=utc(11, 55))
        stale = AutomationRule.objects.get()
        trigger = CronTrigger()

        trigger.sweep(now=utc(12, 5, 0))
        run = trigger.process_rule(stale, utc(12, 5, 1), utc(12, 5))

        assert run is None
        assert AutomationRuleRun.objects.count() == 1


@pytest.mark.django_db
class TestAutomationSchedulerJob:
    """Tests for the system job wrapping the sweep."""

    def test_runs_sweep(self, tenant, mock_async_task):
        schedule_rule(tenant, "* * * * *")

        result = AutomationSchedulerJob.perform_now()

        assert result["queued"] == 1
        assert ExecutionContext.current().is_empty

    def test_refuses_tenant_context(self, tenant):
        ExecutionContext.set(tenant_id=tenant.pk)

        with pytest.raises(UnexpectedContextError):
            AutomationSchedulerJob.perform_now()
