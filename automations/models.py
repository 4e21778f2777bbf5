"""
Automation rule models.

Rules fire on events (e.g., note created, commitment joined) or on cron
schedules. Each firing is recorded as an AutomationRuleRun that carries the
chain snapshot used for loop and storm prevention.
"""

from django.contrib.auth import get_user_model
from django.db import models
from django.db.models import F
from django.utils import timezone

from accounts.managers import TenantScopedQuerySet

User = get_user_model()


class Event(models.Model):
    """
    Something that happened in a tenant that automation rules may react to.
    """

    tenant = models.ForeignKey(
        "accounts.Tenant",
        on_delete=models.CASCADE,
        related_name="events",
    )
    collective = models.ForeignKey(
        "accounts.Collective",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="events",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Dotted event type (e.g., 'note.created')",
    )
    actor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="automation_events",
    )
    subject_type = models.CharField(max_length=50, blank=True)
    subject_id = models.PositiveBigIntegerField(null=True, blank=True)
    data = models.JSONField(default=dict, blank=True)

    # Set when the event was emitted while an automation run was executing
    automation_rule_run = models.ForeignKey(
        "automations.AutomationRuleRun",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="emitted_events",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant", "event_type"], name="automations_event_type_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} #{self.pk}"


class TriggerType(models.TextChoices):
    EVENT = "event", "Event"
    SCHEDULE = "schedule", "Schedule"


class AutomationRule(models.Model):
    """
    A tenant's rule: when triggered, run its actions (or queue its agent task).

    trigger_config holds {"event_type": ...} for event rules and
    {"cron": ..., "timezone": ...} for schedule rules. Agent rules may add
    {"max_steps": ...}.
    """

    tenant = models.ForeignKey(
        "accounts.Tenant",
        on_delete=models.CASCADE,
        related_name="automation_rules",
    )
    collective = models.ForeignKey(
        "accounts.Collective",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="automation_rules",
        help_text="Optional collective scope. If not set, the rule is tenant-wide.",
    )
    agent = models.ForeignKey(
        "agents.Agent",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="automation_rules",
        help_text="Agent whose task queue this rule feeds (agent rules only)",
    )

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    trigger_type = models.CharField(
        max_length=20,
        choices=TriggerType.choices,
        db_index=True,
    )
    trigger_config = models.JSONField(default=dict, blank=True)
    conditions = models.JSONField(
        default=list,
        blank=True,
        help_text="All must pass, e.g. [{'field': 'event.type', 'operator': '==', 'value': 'note.created'}]",
    )
    actions = models.JSONField(
        default=list,
        blank=True,
        help_text="Action list, or {'task': '...'} for agent rules",
    )

    webhook_secret = models.CharField(
        max_length=128,
        blank=True,
        help_text="HMAC secret for signing this rule's webhook deliveries",
    )

    enabled = models.BooleanField(default=True, db_index=True)
    last_executed_at = models.DateTimeField(null=True, blank=True)
    execution_count = models.PositiveIntegerField(default=0)

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_automation_rules",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["tenant", "trigger_type", "enabled"],
                name="automations_rule_trigger_idx",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.trigger_type})"

    @property
    def is_agent_rule(self) -> bool:
        return self.agent_id is not None

    @property
    def event_type(self) -> str | None:
        return (self.trigger_config or {}).get("event_type")

    @property
    def cron_expression(self) -> str | None:
        return (self.trigger_config or {}).get("cron")

    @property
    def timezone_name(self) -> str:
        return (self.trigger_config or {}).get("timezone") or "UTC"

    @property
    def max_steps(self) -> int | None:
        value = (self.trigger_config or {}).get("max_steps")
        return int(value) if value else None

    @property
    def task_template(self) -> str | None:
        if not self.is_agent_rule:
            return None
        if isinstance(self.actions, str):
            return self.actions
        if isinstance(self.actions, dict):
            return self.actions.get("task")
        return None

    def increment_execution_count(self) -> None:
        updates = {"execution_count": F("execution_count") + 1}
        # Schedule rules keep the watermark the cron sweep claimed
        if self.trigger_type != TriggerType.SCHEDULE:
            updates["last_executed_at"] = timezone.now()
        AutomationRule.objects.filter(pk=self.pk).update(**updates)


class AutomationRuleRun(models.Model):
    """One firing of an automation rule."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RUNNING = "running", "Running"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        SKIPPED = "skipped", "Skipped"

    class TriggerSource(models.TextChoices):
        EVENT = "event", "Event"
        SCHEDULE = "schedule", "Schedule"
        WEBHOOK = "webhook", "Webhook"
        MANUAL = "manual", "Manual"
        TEST = "test", "Test"

    tenant = models.ForeignKey(
        "accounts.Tenant",
        on_delete=models.CASCADE,
        related_name="automation_rule_runs",
    )
    collective = models.ForeignKey(
        "accounts.Collective",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="automation_rule_runs",
    )
    automation_rule = models.ForeignKey(
        AutomationRule,
        on_delete=models.CASCADE,
        related_name="runs",
    )
    triggered_by_event = models.ForeignKey(
        Event,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="triggered_runs",
    )
    agent_task_run = models.ForeignKey(
        "agents.AgentTaskRun",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="automation_rule_runs",
    )

    trigger_source = models.CharField(
        max_length=20,
        choices=TriggerSource.choices,
        default=TriggerSource.EVENT,
    )
    trigger_data = models.JSONField(default=dict, blank=True)
    chain_metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Chain snapshot: depth, executed_rule_ids, origin_event_id",
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    actions_executed = models.JSONField(default=list, blank=True)
    error = models.TextField(null=True, blank=True)
    task_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Background task ID",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["automation_rule", "created_at"],
                name="automations_run_rule_idx",
            ),
            models.Index(fields=["tenant", "status"], name="automations_run_status_idx"),
        ]

    def __str__(self):
        return f"Run {self.pk} of rule {self.automation_rule_id} ({self.status})"

    def mark_running(self) -> bool:
        """
        Move pending -> running.

        Returns False if the run was already claimed (e.g., redelivered task).
        """
        now = timezone.now()
        claimed = AutomationRuleRun.objects.filter(
            pk=self.pk, status=self.Status.PENDING
        ).update(status=self.Status.RUNNING, started_at=now, updated_at=now)
        if claimed:
            self.status = self.Status.RUNNING
            self.started_at = now
        return bool(claimed)

    def mark_completed(self, executed_actions: list | None = None) -> None:
        self.status = self.Status.COMPLETED
        self.actions_executed = executed_actions or []
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "actions_executed", "completed_at", "updated_at"])

    def mark_failed(self, message: str) -> None:
        self.status = self.Status.FAILED
        self.error = message
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "error", "completed_at", "updated_at"])

    def mark_skipped(self, reason: str) -> None:
        self.status = self.Status.SKIPPED
        self.error = reason
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "error", "completed_at", "updated_at"])

    def link_to_task_run(self, task_run) -> None:
        self.agent_task_run = task_run
        self.save(update_fields=["agent_task_run", "updated_at"])

    def record_actions(self, executed_actions: list) -> None:
        """Store action results without finishing the run."""
        self.actions_executed = executed_actions
        self.save(update_fields=["actions_executed", "updated_at"])

    def has_pending_deliveries(self) -> bool:
        return self.webhook_deliveries.filter(
            status__in=WebhookDelivery.UNSETTLED_STATUSES
        ).exists()

    def update_status_from_actions(self) -> None:
        """
        Finish a running run once all of its webhook deliveries have settled.

        Called by the delivery service whenever a delivery succeeds or fails
        for good.
        """
        if self.status != self.Status.RUNNING or self.has_pending_deliveries():
            return

        deliveries = list(self.webhook_deliveries.order_by("created_at", "id"))
        succeeded = [d for d in deliveries if d.status == WebhookDelivery.Status.SUCCESS]
        first_error = next((d.error for d in deliveries if d.status == WebhookDelivery.Status.FAILED), None)

        now = timezone.now()
        if len(succeeded) == len(deliveries):
            updates = {"status": self.Status.COMPLETED, "error": None}
        elif succeeded:
            updates = {"status": self.Status.COMPLETED, "error": f"Some actions failed: {first_error}"}
        else:
            updates = {"status": self.Status.FAILED, "error": first_error or "All actions failed"}

        finished = AutomationRuleRun.objects.filter(
            pk=self.pk, status=self.Status.RUNNING
        ).update(completed_at=now, updated_at=now, **updates)
        if finished:
            self.refresh_from_db()


class WebhookDelivery(models.Model):
    """
    One outbound webhook request queued by an automation run.

    Failed attempts are retried with backoff by automations.webhooks until the
    delivery succeeds or runs out of attempts.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RETRYING = "retrying", "Retrying"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"

    UNSETTLED_STATUSES = (Status.PENDING, Status.RETRYING)

    class Method(models.TextChoices):
        POST = "POST", "POST"
        PUT = "PUT", "PUT"
        PATCH = "PATCH", "PATCH"

    tenant = models.ForeignKey(
        "accounts.Tenant",
        on_delete=models.CASCADE,
        related_name="webhook_deliveries",
    )
    automation_rule_run = models.ForeignKey(
        AutomationRuleRun,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_deliveries",
    )
    event = models.ForeignKey(
        Event,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_deliveries",
    )

    url = models.URLField(max_length=2000)
    method = models.CharField(max_length=10, choices=Method.choices, default=Method.POST)
    headers = models.JSONField(default=dict, blank=True)
    secret = models.CharField(max_length=128, blank=True)
    request_body = models.TextField()
    timeout_seconds = models.PositiveSmallIntegerField(default=30)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    attempt_count = models.PositiveSmallIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    response_code = models.PositiveSmallIntegerField(null=True, blank=True)
    response_body = models.TextField(blank=True)
    error = models.TextField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "webhook deliveries"

    def __str__(self):
        return f"Delivery {self.pk} to {self.url} ({self.status})"
