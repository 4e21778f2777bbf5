"""
Background jobs for the agent task queue.

Usage:
    from agents.scheduler import enqueue_agent_task

    enqueue_agent_task(agent=agent, tenant=tenant, task="Summarize this week's decisions")
    # Queues AgentQueueProcessorJob, which claims and runs tasks one at a time
"""

from __future__ import annotations

import logging

from django.utils import timezone

from accounts.models import Tenant
from execution.jobs import SystemJob, TenantScopedJob

from .models import Agent, AgentTaskRun
from .scheduler import AgentTaskScheduler, get_stuck_task_timeout, on_agent_task_queue_changed

logger = logging.getLogger(__name__)


class AgentQueueProcessorJob(TenantScopedJob):
    """
    Advance one agent's task queue in one tenant by a single task.

    After acting on a claimed task, successful or not, the job re-enqueues
    itself so the queue keeps draining without a long-lived loop.
    """

    # Override to inject a navigator (tests); defaults to HARMONIC_AGENT_NAVIGATOR
    navigator_class = None

    def perform(self, *, agent_id: int, tenant_id: int) -> dict:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        agent = Agent.objects.filter(pk=agent_id).first()

        if tenant is None or agent is None:
            logger.warning(f"Agent queue kick for missing agent={agent_id} or tenant={tenant_id}")
            return {"task_run_id": None, "rescheduled": False}
        if not agent.is_active or not tenant.ai_agents_enabled:
            logger.info(f"Agents disabled for agent={agent_id} tenant={tenant_id}, skipping")
            return {"task_run_id": None, "rescheduled": False}

        scheduler = AgentTaskScheduler(navigator_class=self.navigator_class)
        step = scheduler.process_next(agent, tenant, on_claimed=self._enter_task_context)

        if step.reschedule:
            self.schedule_next(agent, tenant)

        return {
            "task_run_id": step.task_run.pk if step.task_run else None,
            "rescheduled": step.reschedule,
            "error": step.error,
        }

    def _enter_task_context(self, task_run: AgentTaskRun) -> None:
        self.establish_tenant(task_run.tenant)
        if task_run.collective is not None:
            self.establish_collective(task_run.collective)
        self.establish_task_run(task_run)

    def schedule_next(self, agent: Agent, tenant: Tenant) -> None:
        on_agent_task_queue_changed(agent, tenant)


class RecoverStuckAgentTasksJob(SystemJob):
    """
    Cross-tenant sweep for task runs left running by crashed workers.

    Queues that are never kicked again would otherwise keep their stuck run
    forever; this fails those runs and re-kicks the affected queues.
    """

    def perform(self) -> dict:
        cutoff = timezone.now() - get_stuck_task_timeout()
        pairs = (
            AgentTaskRun.objects.unscoped_for_system_job()
            .filter(status=AgentTaskRun.Status.RUNNING, started_at__lt=cutoff)
            .order_by()
            .values_list("agent_id", "tenant_id")
            .distinct()
        )

        scheduler = AgentTaskScheduler()
        recovered_total = 0
        kicked = []
        for agent_id, tenant_id in list(pairs):
            agent = Agent.objects.get(pk=agent_id)
            tenant = Tenant.objects.get(pk=tenant_id)

            recovered = self.with_tenant(
                tenant, lambda: scheduler.recover_stuck_tasks(agent, tenant)
            )
            recovered_total += recovered
            if recovered:
                on_agent_task_queue_changed(agent, tenant)
                kicked.append((agent_id, tenant_id))

        if recovered_total:
            logger.warning(f"Recovered {recovered_total} stuck agent tasks across {len(kicked)} queues")
        return {"recovered": recovered_total, "queues_kicked": len(kicked)}
