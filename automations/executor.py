"""
Executes a single AutomationRuleRun.

Agent rules queue a task for their agent; general rules run their action
list. The outcome, success or failure, is always written to the run; runs
that queued webhook deliveries finish when the last delivery settles.
"""

from __future__ import annotations

import logging

from agents.scheduler import enqueue_agent_task

from .actions import ActionContext, execute_action
from .models import AutomationRuleRun, WebhookDelivery
from .templates import context_from_event, context_from_trigger_data, render
from .webhooks import enqueue_delivery

logger = logging.getLogger(__name__)


class AutomationExecutor:
    """Runs one automation rule run from pending to a final status."""

    def __init__(self, run: AutomationRuleRun):
        self.run = run
        self.rule = run.automation_rule
        self.event = run.triggered_by_event

    def execute(self) -> AutomationRuleRun:
        if not self.run.mark_running():
            # Redelivered or concurrently picked up job
            logger.info(
                f"Automation run {self.run.pk} is {self.run.status}, not pending; skipping"
            )
            return self.run

        if not self.rule.enabled:
            self.run.mark_skipped("Rule is disabled")
            return self.run

        try:
            if self.rule.is_agent_rule:
                self._execute_agent_rule()
            else:
                self._execute_general_rule()
            self.rule.increment_execution_count()
        except Exception as e:
            logger.error(f"Automation run {self.run.pk} failed: {e}", exc_info=True)
            self.run.mark_failed(str(e))

        return self.run

    def template_context(self) -> dict:
        if self.event is not None:
            return context_from_event(self.event)
        return context_from_trigger_data(self.run.trigger_data)

    def _execute_agent_rule(self) -> None:
        agent = self.rule.agent
        if not agent.is_active:
            self.run.mark_failed("Agent is not active")
            return

        task = render(self.rule.task_template or "", self.template_context())
        if not task.strip():
            self.run.mark_failed("Task prompt is empty")
            return

        # Event actor for event triggers, the rule's author otherwise
        initiated_by = self.event.actor if self.event and self.event.actor_id else self.rule.created_by

        task_run = enqueue_agent_task(
            agent=agent,
            tenant=self.rule.tenant,
            task=task,
            initiated_by=initiated_by,
            collective=self.rule.collective,
            max_steps=self.rule.max_steps,
        )
        self.run.link_to_task_run(task_run)
        self.run.mark_completed([{"type": "trigger_agent", "task_run_id": task_run.pk}])

    def _execute_general_rule(self) -> None:
        actions = self.rule.actions
        if not isinstance(actions, list):
            self.run.mark_failed("Actions must be a list")
            return

        context = ActionContext(
            run=self.run,
            rule=self.rule,
            template_context=self.template_context(),
        )
        executed = [execute_action(index, action, context) for index, action in enumerate(actions)]

        deliveries = list(
            self.run.webhook_deliveries.filter(status=WebhookDelivery.Status.PENDING).order_by("id")
        )
        if not deliveries:
            self.run.mark_completed(executed)
            return

        # Finished by the last delivery to settle
        self.run.record_actions(executed)
        for delivery in deliveries:
            enqueue_delivery(delivery)
        self.run.refresh_from_db()
