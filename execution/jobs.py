"""
Base classes for background jobs dispatched through Django-Q2.

Do not subclass Job directly. Every job is either:
    - TenantScopedJob: works inside exactly one tenant, which it resolves from
      its own arguments and establishes explicitly before touching tenant data.
    - SystemJob: works across tenants (maintenance, sweeps) and must start with
      no tenant context at all.

Every run goes through ContextGuard, so jobs start with a clean context and
hand the caller's context back when they finish.

Usage:
    class SendReminderJob(TenantScopedJob):
        def perform(self, *, reminder_id, tenant_id):
            tenant = Tenant.objects.filter(id=tenant_id).first()
            if tenant is None:
                return
            self.establish_tenant(tenant)
            reminder = Reminder.objects.for_current_tenant().get(id=reminder_id)
            ...

    SendReminderJob.perform_later(reminder_id=1, tenant_id=2)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from .context import ExecutionContext
from .exceptions import MissingContextError, UnexpectedContextError
from .guard import ContextGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keyword arguments Django-Q2 consumes itself instead of passing to the task.
RESERVED_TASK_OPTIONS = frozenset(
    {
        "hook",
        "group",
        "save",
        "sync",
        "cached",
        "ack_failure",
        "iter_count",
        "iter_cached",
        "chain",
        "broker",
        "timeout",
        "task_name",
        "cluster",
        "q_options",
    }
)


class Job:
    """A unit of work the job runtime can run now or enqueue for later."""

    #: Django-Q2 task timeout in seconds
    timeout = 600

    def perform(self, **kwargs: Any) -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement perform()")

    def check_preconditions(self) -> None:
        """Hook run before the context guard engages."""

    def execute(self, **kwargs: Any) -> Any:
        self.check_preconditions()
        with ContextGuard():
            logger.info(f"{type(self).__name__} starting {kwargs}")
            result = self.perform(**kwargs)
            logger.info(f"{type(self).__name__} finished")
            return result

    @classmethod
    def task_path(cls) -> str:
        """Dotted path Django-Q2 workers resolve to run this job."""
        return f"{cls.__module__}.{cls.__qualname__}.perform_now"

    @classmethod
    def perform_now(cls, **kwargs: Any) -> Any:
        return cls().execute(**kwargs)

    @classmethod
    def perform_later(cls, **kwargs: Any) -> str:
        """
        Enqueue this job with Django-Q2.

        Arguments must be serializable identifiers, never model instances.

        Returns:
            The Django-Q2 task id.
        """
        from django_q.tasks import async_task

        clashing = RESERVED_TASK_OPTIONS.intersection(kwargs)
        if clashing:
            raise ValueError(
                f"{cls.__name__} arguments clash with Django-Q2 options: {sorted(clashing)}"
            )

        task_id = async_task(
            cls.task_path(),
            task_name=f"{cls.__name__}",
            timeout=cls.timeout,
            **kwargs,
        )
        logger.debug(f"Queued {cls.__name__} as task {task_id} with {kwargs}")
        return task_id


class TenantScopedJob(Job):
    """
    Job that operates within a single tenant.

    The tenant is resolved from the job's arguments, never from ambient state,
    and must be established with establish_tenant() before any tenant-scoped
    query runs.
    """

    def establish_tenant(self, tenant) -> None:
        ExecutionContext.set(tenant_id=tenant.pk)

    def establish_collective(self, collective) -> None:
        """Scope to a collective. Call after establish_tenant()."""
        if collective.tenant_id != ExecutionContext.tenant_id():
            raise MissingContextError(
                f"Collective {collective.pk} does not belong to the current tenant "
                f"({ExecutionContext.tenant_id()})."
            )
        ExecutionContext.set(collective_id=collective.pk)

    def establish_task_run(self, task_run) -> None:
        ExecutionContext.set(agent_task_run_id=task_run.pk)

    def establish_automation_run(self, run) -> None:
        ExecutionContext.set(automation_run_id=run.pk)

    def clear_collective(self) -> None:
        """Drop the collective scope, keeping the tenant."""
        ExecutionContext.set(collective_id=None)

    def require_tenant(self) -> int:
        tenant_id = ExecutionContext.tenant_id()
        if tenant_id is None:
            raise MissingContextError(
                f"{type(self).__name__} requires tenant context but none was set. "
                "Call establish_tenant(tenant) before accessing tenant-scoped data."
            )
        return tenant_id


class SystemJob(Job):
    """
    Job that intentionally operates outside any tenant context.

    Runs a no-tenant check before anything else; a tenant context at that
    point means a dispatch bug and fails fast with UnexpectedContextError.
    """

    def check_preconditions(self) -> None:
        self.verify_no_tenant_context()

    def verify_no_tenant_context(self) -> None:
        tenant_id = ExecutionContext.tenant_id()
        if tenant_id is None:
            return
        raise UnexpectedContextError(
            f"{type(self).__name__} is a SystemJob and should not have tenant context set. "
            f"Found tenant_id: {tenant_id}. This indicates a bug in job dispatch."
        )

    @contextmanager
    def tenant_context(self, tenant) -> Iterator[None]:
        """Temporarily scope to ``tenant``; the scope is cleared on every exit path."""
        try:
            ExecutionContext.set(tenant_id=tenant.pk)
            yield
        finally:
            ExecutionContext.set(tenant_id=None, collective_id=None)

    @contextmanager
    def tenant_and_collective_context(self, tenant, collective) -> Iterator[None]:
        try:
            ExecutionContext.set(tenant_id=tenant.pk, collective_id=collective.pk)
            yield
        finally:
            ExecutionContext.set(tenant_id=None, collective_id=None)

    def with_tenant(self, tenant, body: Callable[[], T]) -> T:
        with self.tenant_context(tenant):
            return body()

    def with_tenant_and_collective(self, tenant, collective, body: Callable[[], T]) -> T:
        with self.tenant_and_collective_context(tenant, collective):
            return body()
