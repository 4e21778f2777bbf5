"""
Tests for agent queue background jobs.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from accounts.models import Collective, Tenant
from agents.jobs import AgentQueueProcessorJob, RecoverStuckAgentTasksJob
from agents.models import Agent, AgentTaskRun
from agents.navigator import BaseNavigator, NavigatorResult
from execution.context import ExecutionContext
from execution.exceptions import UnexpectedContextError

captured = []


class ContextCapturingNavigator(BaseNavigator):
    def run(self, task, max_steps):
        captured.append(ExecutionContext.current())
        return NavigatorResult(success=True, final_message="ok")


@pytest.fixture(autouse=True)
def _reset_captured():
    captured.clear()
    yield
    captured.clear()


@pytest.fixture
def tenant():
    return Tenant.objects.create(name="Acme", slug="acme", subdomain="acme", ai_agents_enabled=True)


@pytest.fixture
def collective(tenant):
    return Collective.objects.create(tenant=tenant, name="Team", handle="team")


@pytest.fixture
def agent():
    return Agent.objects.create(name="Scout", handle="scout")


@pytest.fixture
def navigator():
    with patch.object(AgentQueueProcessorJob, "navigator_class", ContextCapturingNavigator):
        yield


@pytest.mark.django_db
class TestAgentQueueProcessorJob:
    """Tests for the queue processor job."""

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_runs_task_in_its_context(self, mock_kick, navigator, agent, tenant, collective):
        run = AgentTaskRun.create_queued(agent=agent, tenant=tenant, task="Review", collective=collective)

        result = AgentQueueProcessorJob.perform_now(agent_id=agent.pk, tenant_id=tenant.pk)

        assert result["task_run_id"] == run.pk
        assert len(captured) == 1
        assert captured[0].tenant_id == tenant.pk
        assert captured[0].collective_id == collective.pk
        assert captured[0].agent_task_run_id == run.pk
        assert ExecutionContext.current().is_empty

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_rearms_after_task(self, mock_kick, navigator, agent, tenant):
        AgentTaskRun.create_queued(agent=agent, tenant=tenant, task="Review")

        result = AgentQueueProcessorJob.perform_now(agent_id=agent.pk, tenant_id=tenant.pk)

        assert result["rescheduled"] is True
        mock_kick.assert_called_once_with(agent, tenant)

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_empty_queue_does_not_rearm(self, mock_kick, navigator, agent, tenant):
        result = AgentQueueProcessorJob.perform_now(agent_id=agent.pk, tenant_id=tenant.pk)

        assert result["task_run_id"] is None
        assert result["rescheduled"] is False
        mock_kick.assert_not_called()

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_agents_disabled_for_tenant(self, mock_kick, navigator, agent, tenant):
        tenant.ai_agents_enabled = False
        tenant.save()
        run = AgentTaskRun.create_queued(agent=agent, tenant=tenant, task="Review")

        result = AgentQueueProcessorJob.perform_now(agent_id=agent.pk, tenant_id=tenant.pk)

        assert result["rescheduled"] is False
        run.refresh_from_db()
        assert run.status == AgentTaskRun.Status.QUEUED
        assert captured == []

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_missing_agent(self, mock_kick, navigator, tenant):
        result = AgentQueueProcessorJob.perform_now(agent_id=999, tenant_id=tenant.pk)

        assert result == {"task_run_id": None, "rescheduled": False}

    def test_queue_drains_through_rearm_chain(self, navigator, agent, tenant):
        """With inline Django-Q2 tasks each re-arm runs the next step immediately."""
        runs = [AgentTaskRun.create_queued(agent=agent, tenant=tenant, task=f"task {i}") for i in range(3)]

        def run_inline(path, *args, **kwargs):
            AgentQueueProcessorJob.perform_now(agent_id=kwargs["agent_id"], tenant_id=kwargs["tenant_id"])
            return "inline"

        with patch("django_q.tasks.async_task", side_effect=run_inline):
            AgentQueueProcessorJob.perform_now(agent_id=agent.pk, tenant_id=tenant.pk)

        assert [ctx.agent_task_run_id for ctx in captured] == [run.pk for run in runs]
        assert AgentTaskRun.objects.filter(status=AgentTaskRun.Status.COMPLETED).count() == 3


@pytest.mark.django_db
class TestRecoverStuckAgentTasksJob:
    """Tests for the cross-tenant stuck task sweep."""

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_recovers_across_tenants(self, mock_kick, agent, tenant):
        other_tenant = Tenant.objects.create(name="Globex", slug="globex", subdomain="globex")
        long_ago = timezone.now() - timedelta(hours=1)
        for owner in (tenant, other_tenant):
            AgentTaskRun.objects.create(
                agent=agent,
                tenant=owner,
                task="stuck",
                status=AgentTaskRun.Status.RUNNING,
                started_at=long_ago,
            )

        result = RecoverStuckAgentTasksJob.perform_now()

        assert result == {"recovered": 2, "queues_kicked": 2}
        assert AgentTaskRun.objects.filter(status=AgentTaskRun.Status.FAILED).count() == 2
        assert mock_kick.call_count == 2
        assert ExecutionContext.current().is_empty

    @patch("agents.jobs.on_agent_task_queue_changed")
    def test_nothing_stuck(self, mock_kick, agent, tenant):
        AgentTaskRun.create_queued(agent=agent, tenant=tenant, task="waiting")

        result = RecoverStuckAgentTasksJob.perform_now()

        assert result == {"recovered": 0, "queues_kicked": 0}
        mock_kick.assert_not_called()

    def test_refuses_tenant_context(self, tenant):
        ExecutionContext.set(tenant_id=tenant.pk)

        with pytest.raises(UnexpectedContextError):
            RecoverStuckAgentTasksJob.perform_now()
