"""
Background jobs for automation rules.

Usage:
    from automations.jobs import AutomationRuleExecutionJob

    AutomationRuleExecutionJob.perform_later(
        automation_rule_run_id=run.id,
        tenant_id=run.tenant_id,
        chain_state=chain.to_payload(),
    )
"""

from __future__ import annotations

import logging

from accounts.models import Tenant
from execution.jobs import SystemJob, TenantScopedJob

from .chain import AutomationChain, set_chain
from .executor import AutomationExecutor
from .models import AutomationRuleRun, WebhookDelivery
from .scheduler import CronTrigger
from .webhooks import WebhookDeliveryService

logger = logging.getLogger(__name__)


class AutomationRuleExecutionJob(TenantScopedJob):
    """Execute one pending AutomationRuleRun inside its tenant."""

    def perform(
        self,
        *,
        automation_rule_run_id: int,
        tenant_id: int,
        chain_state: dict | None = None,
    ) -> dict:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        if tenant is None:
            logger.warning(f"Tenant {tenant_id} not found for automation run {automation_rule_run_id}")
            return {"run_id": automation_rule_run_id, "status": None}

        self.establish_tenant(tenant)

        run = (
            AutomationRuleRun.objects.for_current_tenant()
            .select_related("automation_rule", "automation_rule__agent", "triggered_by_event")
            .filter(pk=automation_rule_run_id)
            .first()
        )
        if run is None:
            logger.warning(f"AutomationRuleRun {automation_rule_run_id} not found in tenant {tenant_id}")
            return {"run_id": automation_rule_run_id, "status": None}

        if run.collective is not None:
            self.establish_collective(run.collective)

        # Older runs may only carry their chain on the row
        set_chain(AutomationChain.from_payload(chain_state if chain_state is not None else run.chain_metadata))
        self.establish_automation_run(run)

        AutomationExecutor(run).execute()
        return {"run_id": run.pk, "status": run.status}


class AutomationSchedulerJob(SystemJob):
    """
    Minute sweep over schedule rules in every tenant.

    Registered as a Django-Q2 schedule by ``setup_background_schedules``.
    """

    def perform(self) -> dict:
        runs = CronTrigger().sweep()
        return {"queued": len(runs), "run_ids": [run.pk for run in runs]}


class WebhookDeliveryJob(TenantScopedJob):
    """One attempt at an automation webhook delivery, inside its tenant."""

    def perform(self, *, delivery_id: int, tenant_id: int) -> dict:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        if tenant is None:
            logger.warning(f"Tenant {tenant_id} not found for webhook delivery {delivery_id}")
            return {"delivery_id": delivery_id, "status": None}

        self.establish_tenant(tenant)

        delivery = (
            WebhookDelivery.objects.for_current_tenant()
            .select_related("event", "automation_rule_run__automation_rule")
            .filter(pk=delivery_id)
            .first()
        )
        if delivery is None:
            logger.warning(f"WebhookDelivery {delivery_id} not found in tenant {tenant_id}")
            return {"delivery_id": delivery_id, "status": None}

        if delivery.automation_rule_run is not None:
            self.establish_automation_run(delivery.automation_rule_run)

        WebhookDeliveryService().deliver(delivery)
        return {"delivery_id": delivery.pk, "status": delivery.status}
