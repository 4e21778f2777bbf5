"""
Event dispatcher for automation rules.

Finds the enabled event rules a new Event matches, applies chain protection
and rate limits, and queues one AutomationRuleExecutionJob per rule.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from execution.context import ExecutionContext

from .chain import AutomationChain, current_chain
from .conditions import evaluate_all
from .models import AutomationRule, AutomationRuleRun, Event, TriggerType
from .templates import context_from_event

logger = logging.getLogger(__name__)


def get_rate_limit(rule: AutomationRule) -> int:
    """Max runs of one rule per minute: agent rules are kept tighter."""
    limits = getattr(settings, "HARMONIC_AUTOMATION_RATE_LIMITS", {})
    if rule.is_agent_rule:
        return limits.get("agent", 3)
    return limits.get("general", 10)


class AutomationDispatcher:
    """
    Routes events to matching automation rules.

    Every queued rule is recorded on a branch of the ambient chain; the
    branch travels with the downstream run so the cascade stays bounded
    across job boundaries.
    """

    def dispatch(self, event: Event) -> list[AutomationRuleRun]:
        if not event.tenant.automations_enabled:
            logger.debug(f"Automations disabled for tenant {event.tenant_id}, ignoring {event}")
            return []

        rules = self.find_matching_rules(event)
        if not rules:
            logger.debug(f"No automation rules match event {event.event_type}")
            return []

        logger.info(f"Found {len(rules)} automation rules for event {event.event_type} ({event.pk})")

        chain = current_chain()
        runs = []
        for rule in rules:
            run = self.queue_rule_execution(rule, event, chain=chain)
            if run is not None:
                runs.append(run)
        return runs

    def find_matching_rules(self, event: Event) -> list[AutomationRule]:
        """
        Enabled event rules for this event type in the event's tenant.

        Tenant-wide rules match every event; collective rules only match
        events from their collective.
        """
        queryset = (
            AutomationRule.objects.for_tenant_id(event.tenant_id)
            .filter(
                trigger_type=TriggerType.EVENT,
                enabled=True,
                trigger_config__event_type=event.event_type,
            )
            .filter(Q(collective__isnull=True) | Q(collective_id=event.collective_id))
            .select_related("agent", "tenant")
            .order_by("created_at", "id")
        )

        context = context_from_event(event)
        return [rule for rule in queryset if self._matches_rule(rule, event, context)]

    def _matches_rule(self, rule: AutomationRule, event: Event, context: dict) -> bool:
        # An agent must not trigger itself
        if rule.is_agent_rule and event.actor_id and event.actor_id == rule.agent.user_id:
            logger.debug(f"Rule {rule.pk} skipped: event {event.pk} was caused by its own agent")
            return False

        if not evaluate_all(rule.conditions, context):
            logger.debug(f"Rule {rule.pk} skipped due to condition mismatch")
            return False
        return True

    def queue_rule_execution(
        self, rule: AutomationRule, event: Event, chain: AutomationChain | None = None
    ) -> AutomationRuleRun | None:
        """
        Create a pending run for ``rule`` and enqueue it.

        Returns None when the chain or the rate limit refuses the rule.
        """
        if chain is None:
            chain = current_chain()
        if not chain.can_execute(rule):
            return None

        # Recorded before the rate limit, so rate-limited rules still count
        # toward the chain's limits.
        downstream = chain.record_branch(rule, event)

        limit = get_rate_limit(rule)
        recent_runs = AutomationRuleRun.objects.filter(
            automation_rule=rule,
            tenant_id=event.tenant_id,
            created_at__gt=timezone.now() - timedelta(minutes=1),
        ).count()
        if recent_runs >= limit:
            logger.info(
                f"Rate limiting rule {rule.pk} ({recent_runs} runs in last minute, limit: {limit})"
            )
            return None

        chain_state = downstream.to_payload()
        run = AutomationRuleRun.objects.create(
            tenant_id=event.tenant_id,
            collective=rule.collective,
            automation_rule=rule,
            triggered_by_event=event,
            trigger_source=AutomationRuleRun.TriggerSource.EVENT,
            trigger_data={
                "event_type": event.event_type,
                "event_id": event.pk,
                "actor_id": event.actor_id,
                "subject_type": event.subject_type,
                "subject_id": event.subject_id,
            },
            chain_metadata=chain_state,
            status=AutomationRuleRun.Status.PENDING,
        )
        self._queue_async_execution(run, chain_state)
        return run

    def _queue_async_execution(self, run: AutomationRuleRun, chain_state: dict | None) -> None:
        from .jobs import AutomationRuleExecutionJob

        task_id = AutomationRuleExecutionJob.perform_later(
            automation_rule_run_id=run.pk,
            tenant_id=run.tenant_id,
            chain_state=chain_state,
        )
        AutomationRuleRun.objects.filter(pk=run.pk).update(task_id=task_id)
        run.task_id = task_id

        logger.info(f"Queued automation run {run.pk} for rule {run.automation_rule_id} as task {task_id}")


def emit_event(
    *,
    tenant,
    event_type: str,
    collective=None,
    actor=None,
    subject_type: str = "",
    subject_id: int | None = None,
    data: dict | None = None,
) -> Event:
    """
    Record an event and dispatch it to automation rules.

    Events emitted while an automation run executes are linked to that run
    and dispatched within its chain.

    Example:
        from automations.dispatcher import emit_event

        emit_event(
            tenant=tenant,
            collective=collective,
            event_type="note.created",
            actor=request.user,
            subject_type="note",
            subject_id=note.id,
            data={"text": note.text},
        )
    """
    event = Event.objects.create(
        tenant=tenant,
        collective=collective,
        event_type=event_type,
        actor=actor,
        subject_type=subject_type,
        subject_id=subject_id,
        data=data or {},
        automation_rule_run_id=ExecutionContext.automation_run_id(),
    )
    AutomationDispatcher().dispatch(event)
    return event
