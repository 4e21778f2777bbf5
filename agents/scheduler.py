"""
Serialized per-agent task queue.

Within one (agent, tenant) pair tasks run strictly one at a time, oldest
first. Each scheduler step claims at most one task under a row lock on the
agent, runs it, and reports whether the queue should be re-armed; the job
adapter (agents.jobs.AgentQueueProcessorJob) does the actual re-enqueue.
A crashed step therefore only delays the queue: the next step's stuck-task
recovery fails the orphaned run and moves on.

Claim algorithm, all under the agent row lock:
    1. Fail running tasks older than the stuck timeout.
    2. If a task is still running, stop; it re-arms the queue when it ends.
    3. Move the oldest queued task to running.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import Agent, AgentTaskRun
from .navigator import BaseNavigator, NavigatorResult, get_navigator_class
from .pricing import calculate_cost

logger = logging.getLogger(__name__)


def get_stuck_task_timeout() -> timedelta:
    return timedelta(minutes=settings.HARMONIC_AGENT_STUCK_TIMEOUT_MINUTES)


@dataclass
class SchedulerStep:
    """Result of one scheduler step."""

    task_run: AgentTaskRun | None = None
    recovered: int = 0
    error: str | None = None

    @property
    def reschedule(self) -> bool:
        """Whether the queue must be re-armed (a task was claimed and acted on)."""
        return self.task_run is not None


class AgentTaskScheduler:
    """Claims, recovers and executes task runs for one agent in one tenant."""

    def __init__(
        self,
        navigator_class: type[BaseNavigator] | None = None,
        stuck_timeout: timedelta | None = None,
    ):
        self.navigator_class = navigator_class or get_navigator_class()
        self.stuck_timeout = stuck_timeout or get_stuck_task_timeout()

    def process_next(
        self,
        agent: Agent,
        tenant,
        on_claimed: Callable[[AgentTaskRun], None] | None = None,
    ) -> SchedulerStep:
        """
        Claim and run at most one task.

        Args:
            agent: Agent whose queue to advance.
            tenant: Tenant the queue belongs to.
            on_claimed: Called with the claimed run before it executes
                (the job adapter establishes the task's context here).

        Returns:
            SchedulerStep; ``reschedule`` is True whenever a task was claimed,
            whether it succeeded, failed, or the step itself crashed.
        """
        task_run = self.claim_next_task(agent, tenant)
        if task_run is None:
            return SchedulerStep()

        try:
            if on_claimed is not None:
                on_claimed(task_run)
            self.run_task(task_run)
        except Exception as e:
            # The run stays 'running' and is healed by stuck-task recovery.
            logger.exception(
                f"Agent task step crashed for task_run={task_run.pk} agent={agent.pk}: {e}"
            )
            return SchedulerStep(task_run=task_run, error=str(e))

        return SchedulerStep(task_run=task_run)

    def claim_next_task(self, agent: Agent, tenant) -> AgentTaskRun | None:
        """
        Atomically move the oldest queued task to running.

        Returns None if another task is still running or nothing is queued.
        """
        with transaction.atomic():
            # Row lock on the agent serializes claims for this agent only.
            locked = Agent.objects.select_for_update().filter(pk=agent.pk).first()
            if locked is None:
                return None

            self.recover_stuck_tasks(agent, tenant)

            runs = AgentTaskRun.objects.filter(agent=agent, tenant=tenant)
            if runs.filter(status=AgentTaskRun.Status.RUNNING).exists():
                logger.debug(
                    f"Agent {agent.pk} already has a running task in tenant {tenant.pk}"
                )
                return None

            next_task = (
                runs.filter(status=AgentTaskRun.Status.QUEUED)
                .order_by("created_at", "id")
                .first()
            )
            if next_task is None:
                return None

            now = timezone.now()
            claimed = AgentTaskRun.objects.filter(
                pk=next_task.pk, status=AgentTaskRun.Status.QUEUED
            ).update(status=AgentTaskRun.Status.RUNNING, started_at=now, updated_at=now)
            if not claimed:
                return None

            next_task.refresh_from_db()

        logger.info(
            f"Claimed agent task {next_task.pk} for agent {agent.pk} in tenant {tenant.pk}"
        )
        return next_task

    def recover_stuck_tasks(self, agent: Agent, tenant, now=None) -> int:
        """
        Fail running tasks whose worker has presumably died.

        Returns:
            Number of task runs recovered.
        """
        now = now or timezone.now()
        cutoff = now - self.stuck_timeout
        stuck_tasks = AgentTaskRun.objects.filter(
            agent=agent,
            tenant=tenant,
            status=AgentTaskRun.Status.RUNNING,
            started_at__lt=cutoff,
        )

        recovered = 0
        for task in stuck_tasks:
            logger.warning(
                f"Recovering stuck agent task id={task.pk} agent_id={agent.pk} "
                f"started_at={task.started_at} duration={(now - task.started_at).total_seconds()}s"
            )
            recovered += AgentTaskRun.objects.filter(
                pk=task.pk, status=AgentTaskRun.Status.RUNNING
            ).update(
                status=AgentTaskRun.Status.FAILED,
                success=False,
                error=(
                    f"Task timed out after {self.stuck_timeout} - "
                    "job may have crashed or been killed"
                ),
                completed_at=now,
                updated_at=now,
            )
        return recovered

    def run_task(self, task_run: AgentTaskRun) -> AgentTaskRun:
        """
        Execute the claimed task and record its outcome.

        A navigator that raises is recorded as a failed run; nothing is retried.
        """
        navigator = self.navigator_class(
            agent=task_run.agent,
            tenant=task_run.tenant,
            collective=task_run.collective,
            model=task_run.model_name,
        )

        try:
            result = navigator.run(task=task_run.task, max_steps=task_run.max_steps)
        except Exception as e:
            logger.error(f"Agent task {task_run.pk} raised: {e}", exc_info=True)
            result = NavigatorResult(success=False, error=str(e))

        return self.record_result(task_run, result)

    def record_result(self, task_run: AgentTaskRun, result: NavigatorResult) -> AgentTaskRun:
        """
        Finalize a running task with the navigator's outcome.

        Only a run that is still 'running' is finalized. A result for a run
        already failed by stuck-task recovery leaves its status alone and is
        kept in ``late_result``.
        """
        status = AgentTaskRun.Status.COMPLETED if result.success else AgentTaskRun.Status.FAILED
        cost = calculate_cost(task_run.model_name, result.input_tokens, result.output_tokens)
        now = timezone.now()

        finalized = AgentTaskRun.objects.filter(
            pk=task_run.pk, status=AgentTaskRun.Status.RUNNING
        ).update(
            status=status,
            success=result.success,
            final_message=result.final_message or "",
            error=result.error,
            steps_count=len(result.steps),
            steps_data=[step.to_dict() for step in result.steps],
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            total_tokens=result.total_tokens,
            estimated_cost_usd=cost,
            completed_at=now,
            updated_at=now,
        )

        if not finalized:
            AgentTaskRun.objects.filter(pk=task_run.pk).update(
                late_result={
                    "status": status.value,
                    "success": result.success,
                    "error": result.error,
                    "final_message": result.final_message or "",
                    "total_tokens": result.total_tokens,
                    "estimated_cost_usd": str(cost),
                    "reported_at": now.isoformat(),
                },
                updated_at=now,
            )
            task_run.refresh_from_db()
            logger.warning(
                f"Agent task {task_run.pk} finished after being marked {task_run.status}; "
                "kept its result in late_result"
            )
            return task_run

        task_run.refresh_from_db()
        logger.info(
            f"Agent task {task_run.pk} {task_run.status} "
            f"(tokens={task_run.total_tokens}, cost=${task_run.estimated_cost_usd})"
        )
        return task_run


def on_agent_task_queue_changed(agent: Agent, tenant) -> str:
    """
    Kick the claim loop for (agent, tenant).

    Called whenever a task is queued and by each job's own re-arm step.
    Redundant kicks are harmless: a kick that finds a running task exits.
    """
    from .jobs import AgentQueueProcessorJob

    return AgentQueueProcessorJob.perform_later(agent_id=agent.pk, tenant_id=tenant.pk)


def enqueue_agent_task(
    *,
    agent: Agent,
    tenant,
    task: str,
    initiated_by=None,
    collective=None,
    max_steps: int | None = None,
) -> AgentTaskRun:
    """Queue a task for an agent and kick its queue."""
    task_run = AgentTaskRun.create_queued(
        agent=agent,
        tenant=tenant,
        task=task,
        initiated_by=initiated_by,
        collective=collective,
        max_steps=max_steps,
    )
    logger.info(f"Queued agent task {task_run.pk} for agent {agent.pk} in tenant {tenant.pk}")
    on_agent_task_queue_changed(agent, tenant)
    return task_run


RECOVERY_SCHEDULE_NAME = "agents_recover_stuck_tasks"


def register_recovery_schedule(minutes: int = 5) -> bool:
    """Create (or replace) the Django-Q2 schedule for the stuck-task sweep."""
    from django_q.models import Schedule

    from .jobs import RecoverStuckAgentTasksJob

    Schedule.objects.filter(name=RECOVERY_SCHEDULE_NAME).delete()
    Schedule.objects.create(
        name=RECOVERY_SCHEDULE_NAME,
        func=RecoverStuckAgentTasksJob.task_path(),
        schedule_type=Schedule.MINUTES,
        minutes=minutes,
        repeats=-1,
    )
    logger.info(f"Registered Django-Q2 schedule '{RECOVERY_SCHEDULE_NAME}' every {minutes} minutes")
    return True
