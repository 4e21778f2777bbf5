"""
Tests for the Job / TenantScopedJob / SystemJob base classes.
"""

from unittest.mock import patch

import pytest

from accounts.models import Collective, Tenant
from execution.context import ExecutionContext
from execution.exceptions import MissingContextError, UnexpectedContextError
from execution.jobs import SystemJob, TenantScopedJob


class RecordingTenantJob(TenantScopedJob):
    def perform(self, *, tenant_id, collective_id=None):
        seen = {"at_start": ExecutionContext.current()}
        tenant = Tenant.objects.get(pk=tenant_id)
        self.establish_tenant(tenant)
        if collective_id:
            self.establish_collective(Collective.objects.get(pk=collective_id))
        seen["tenant_id"] = self.require_tenant()
        seen["collective_id"] = ExecutionContext.collective_id()
        return seen


class ForgetfulTenantJob(TenantScopedJob):
    def perform(self):
        return self.require_tenant()


class NarrowingTenantJob(TenantScopedJob):
    def perform(self, *, tenant_id, collective_id):
        self.establish_tenant(Tenant.objects.get(pk=tenant_id))
        self.establish_collective(Collective.objects.get(pk=collective_id))
        self.clear_collective()
        return ExecutionContext.current()


class SweepJob(SystemJob):
    def perform(self, *, tenants=()):
        seen = []
        for tenant in tenants:
            seen.append(self.with_tenant(tenant, ExecutionContext.tenant_id))
        seen.append(ExecutionContext.tenant_id())
        return seen


class FailingSweepJob(SystemJob):
    def perform(self, *, tenant):
        with self.tenant_context(tenant):
            raise RuntimeError("sweep failed")


@pytest.fixture
def tenant():
    return Tenant.objects.create(name="Acme", slug="acme", subdomain="acme")


@pytest.fixture
def other_tenant():
    return Tenant.objects.create(name="Globex", slug="globex", subdomain="globex")


@pytest.fixture
def collective(tenant):
    return Collective.objects.create(tenant=tenant, name="Team", handle="team")


@pytest.mark.django_db
class TestTenantScopedJob:
    """Tests for tenant-scoped jobs."""

    def test_starts_with_clean_context(self, tenant, other_tenant):
        """Leftover context from the caller is not visible to the job."""
        ExecutionContext.set(tenant_id=other_tenant.pk)

        seen = RecordingTenantJob.perform_now(tenant_id=tenant.pk)

        assert seen["at_start"].is_empty
        assert seen["tenant_id"] == tenant.pk

    def test_restores_caller_context(self, tenant, other_tenant):
        ExecutionContext.set(tenant_id=other_tenant.pk)

        RecordingTenantJob.perform_now(tenant_id=tenant.pk)

        assert ExecutionContext.tenant_id() == other_tenant.pk

    def test_establish_collective(self, tenant, collective):
        seen = RecordingTenantJob.perform_now(tenant_id=tenant.pk, collective_id=collective.pk)

        assert seen["collective_id"] == collective.pk
        assert ExecutionContext.current().is_empty

    def test_clear_collective_keeps_tenant(self, tenant, collective):
        seen = NarrowingTenantJob.perform_now(tenant_id=tenant.pk, collective_id=collective.pk)

        assert seen.tenant_id == tenant.pk
        assert seen.collective_id is None

    def test_collective_from_another_tenant_rejected(self, other_tenant, collective):
        with pytest.raises(MissingContextError):
            RecordingTenantJob.perform_now(tenant_id=other_tenant.pk, collective_id=collective.pk)

        assert ExecutionContext.current().is_empty

    def test_missing_tenant_raises(self):
        with pytest.raises(MissingContextError):
            ForgetfulTenantJob.perform_now()

    def test_context_cleared_after_failure(self):
        with pytest.raises(MissingContextError):
            ForgetfulTenantJob.perform_now()

        assert ExecutionContext.current().is_empty


@pytest.mark.django_db
class TestSystemJob:
    """Tests for system-scoped jobs."""

    def test_runs_without_tenant(self):
        assert SweepJob.perform_now() == [None]

    def test_tenant_context_is_fatal(self, tenant):
        """A system job dispatched with a tenant context fails before doing anything."""
        ExecutionContext.set(tenant_id=tenant.pk)

        with patch.object(SweepJob, "perform") as mock_perform:
            with pytest.raises(UnexpectedContextError):
                SweepJob.perform_now()

        mock_perform.assert_not_called()
        assert ExecutionContext.tenant_id() == tenant.pk

    def test_with_tenant_scopes_and_clears(self, tenant, other_tenant):
        seen = SweepJob.perform_now(tenants=[tenant, other_tenant])

        assert seen == [tenant.pk, other_tenant.pk, None]

    def test_tenant_context_cleared_on_error(self, tenant):
        job = FailingSweepJob()

        with pytest.raises(RuntimeError):
            job.perform(tenant=tenant)

        assert ExecutionContext.tenant_id() is None

    def test_tenant_and_collective_context(self, tenant, collective):
        job = SweepJob()

        seen = job.with_tenant_and_collective(
            tenant, collective, lambda: (ExecutionContext.tenant_id(), ExecutionContext.collective_id())
        )

        assert seen == (tenant.pk, collective.pk)
        assert ExecutionContext.current().is_empty


class TestPerformLater:
    """Tests for enqueueing through Django-Q2."""

    @patch("django_q.tasks.async_task")
    def test_enqueues_task_path(self, mock_async_task):
        mock_async_task.return_value = "task-123"

        task_id = ForgetfulTenantJob.perform_later(tenant_id=5)

        assert task_id == "task-123"
        assert ForgetfulTenantJob.task_path().endswith("test_jobs.ForgetfulTenantJob.perform_now")
        mock_async_task.assert_called_once_with(
            ForgetfulTenantJob.task_path(),
            task_name="ForgetfulTenantJob",
            timeout=ForgetfulTenantJob.timeout,
            tenant_id=5,
        )

    @patch("django_q.tasks.async_task")
    def test_reserved_argument_rejected(self, mock_async_task):
        with pytest.raises(ValueError):
            ForgetfulTenantJob.perform_later(chain={"depth": 1})

        mock_async_task.assert_not_called()

    def test_cluster_retry_outlasts_job_timeout(self, settings):
        cluster = settings.Q_CLUSTER

        assert cluster["timeout"] >= ForgetfulTenantJob.timeout
        assert cluster["retry"] > cluster["timeout"]
